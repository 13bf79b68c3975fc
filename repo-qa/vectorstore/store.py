"""ChromaDB-backed vector store for documentation chunks.

One collection holds every repository; each chunk carries `scope` (the
repository it belongs to) and `document_id` in its metadata so queries can be
scoped and re-ingesting a document replaces its previous chunks.
"""

import logging
import os
from typing import Optional

import chromadb

from common.errors import VectorStoreError
from schemas.document import Chunk, Embedding
from schemas.retrieval import RetrievedMatch

logger = logging.getLogger(__name__)

DEFAULT_PERSIST_DIR = "data/chroma"
DEFAULT_COLLECTION = "repo_docs"


def _clean_metadata(meta: dict) -> dict:
    """Chroma only accepts scalar metadata values."""
    cleaned = {}
    for key, value in meta.items():
        if value is None:
            continue
        if isinstance(value, (str, int, float, bool)):
            cleaned[key] = value
        else:
            cleaned[key] = str(value)
    return cleaned


def _scope_where(scope: str, document_id: Optional[str] = None) -> dict:
    if document_id is None:
        return {"scope": scope}
    return {"$and": [{"scope": scope}, {"document_id": document_id}]}


class VectorStore:
    """Thin wrapper over a cosine-space ChromaDB collection."""

    def __init__(
        self,
        persist_dir: Optional[str] = None,
        collection_name: str = DEFAULT_COLLECTION,
        client=None,
    ):
        if client is None:
            persist_dir = persist_dir or os.getenv("CHROMA_PATH", DEFAULT_PERSIST_DIR)
            os.makedirs(persist_dir, exist_ok=True)
            client = chromadb.PersistentClient(path=persist_dir)
        self.client = client
        self.collection_name = collection_name
        self.collection = self._get_collection()

    def _get_collection(self):
        # Embeddings always come from our own pipeline
        return self.client.get_or_create_collection(
            name=self.collection_name,
            metadata={"hnsw:space": "cosine"},
            embedding_function=None,
        )

    # -------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------

    def replace_document(
        self,
        document_id: str,
        scope: str,
        chunks: list[Chunk],
        embeddings: list[Embedding],
    ) -> int:
        """Replace every stored chunk of `document_id` with the given ones.

        `embeddings` pair 1:1 with `chunks` by chunk id. Returns the number of
        chunks written.
        """
        if len(chunks) != len(embeddings):
            raise VectorStoreError(
                f"Got {len(chunks)} chunks but {len(embeddings)} embeddings for {document_id}"
            )
        for chunk, embedding in zip(chunks, embeddings):
            if chunk.id != embedding.chunk_id:
                raise VectorStoreError(f"Embedding for {embedding.chunk_id} does not match chunk {chunk.id}")
        try:
            where = _scope_where(scope, document_id)
            if not chunks:
                self.collection.delete(where=where)
                return 0
            metadatas = []
            for chunk in chunks:
                meta = dict(chunk.metadata)
                meta.update(
                    scope=scope,
                    document_id=document_id,
                    sequence_index=chunk.sequence_index,
                    overlap_length=chunk.overlap_length,
                )
                metadatas.append(_clean_metadata(meta))
            new_ids = [c.id for c in chunks]
            self.collection.upsert(
                ids=new_ids,
                embeddings=[e.vector for e in embeddings],
                documents=[c.text for c in chunks],
                metadatas=metadatas,
            )
            # Old chunks go only once the new ones are in place
            existing = self.collection.get(where=where, include=[])["ids"]
            stale = sorted(set(existing) - set(new_ids))
            if stale:
                self.collection.delete(ids=stale)
        except Exception as e:
            raise VectorStoreError(f"Failed to store chunks for {document_id}: {e}") from e

        logger.debug("Stored %d chunks for %s (scope %s)", len(chunks), document_id, scope)
        return len(chunks)

    def delete_scope(self, scope: str) -> None:
        try:
            self.collection.delete(where=_scope_where(scope))
        except Exception as e:
            raise VectorStoreError(f"Failed to delete scope {scope}: {e}") from e

    def reset(self) -> None:
        """Drop and recreate the collection."""
        try:
            self.client.delete_collection(self.collection_name)
        except Exception as e:
            logger.debug("Collection %s did not exist: %s", self.collection_name, e)
        self.collection = self._get_collection()
        logger.info("Reset collection '%s'", self.collection_name)

    # -------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------

    def query(self, vector: list[float], scope: str, n_results: int = 10) -> list[RetrievedMatch]:
        """Nearest chunks within `scope`, ordered by similarity descending.

        Similarity is 1 - cosine distance, so it lies in [-1, 1].
        """
        try:
            total = self.collection.count()
            if total == 0 or n_results <= 0:
                return []
            results = self.collection.query(
                query_embeddings=[vector],
                n_results=min(n_results, total),
                where=_scope_where(scope),
                include=["documents", "metadatas", "distances"],
            )
        except Exception as e:
            raise VectorStoreError(f"Vector query failed: {e}") from e

        matches = []
        if results and results["ids"] and results["ids"][0]:
            for i, chunk_id in enumerate(results["ids"][0]):
                meta = results["metadatas"][0][i] or {}
                similarity = 1.0 - results["distances"][0][i]
                matches.append(RetrievedMatch(
                    chunk_id=chunk_id,
                    text=results["documents"][0][i] or "",
                    source_url=meta.get("url"),
                    similarity_score=max(-1.0, min(1.0, similarity)),
                    metadata=meta,
                ))
        matches.sort(key=lambda m: m.similarity_score, reverse=True)
        return matches

    def count(self, scope: Optional[str] = None) -> int:
        try:
            if scope is None:
                return self.collection.count()
            return len(self.collection.get(where=_scope_where(scope), include=[])["ids"])
        except Exception as e:
            raise VectorStoreError(f"Count failed: {e}") from e

    def get_stats(self) -> dict:
        return {
            self.collection_name: {
                "count": self.count(),
                "metadata": self.collection.metadata,
            }
        }
