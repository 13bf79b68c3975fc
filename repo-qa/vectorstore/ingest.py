"""Ingestion pipeline: documents → chunk → embed → store in ChromaDB.

Documents are processed concurrently; inside one document the steps run in
order. A failure in any step aborts that document only and is recorded in the
returned stats.

Usage (via the main pipeline):
  python pipeline.py ingest https://github.com/owner/repo
  python pipeline.py ingest https://github.com/owner/repo --docs-dir data/pages/owner-repo
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Optional

from common.errors import EmptyInputError, NoValidInputError
from schemas.document import Document
from vectorstore.chunker import Chunker
from vectorstore.embedder import EMBEDDING_PRICES, DEFAULT_MODEL, EmbeddingPipeline, estimate_cost
from vectorstore.store import VectorStore

logger = logging.getLogger(__name__)

DEFAULT_DOCUMENT_CONCURRENCY = 4


@dataclass
class IngestionStats:
    documents_processed: int = 0
    documents_skipped: int = 0
    documents_failed: int = 0
    chunks_created: int = 0
    embeddings_created: int = 0
    total_tokens_used: int = 0
    processing_time_s: float = 0.0
    model: str = DEFAULT_MODEL
    errors: list[dict] = field(default_factory=list)

    @property
    def estimated_cost_usd(self) -> float:
        price = EMBEDDING_PRICES.get(self.model, EMBEDDING_PRICES[DEFAULT_MODEL])
        return self.total_tokens_used / 1_000_000 * price

    def to_dict(self) -> dict:
        data = asdict(self)
        data["estimated_cost_usd"] = round(self.estimated_cost_usd, 6)
        return data


@dataclass
class DocumentResult:
    document_id: str
    status: str  # "processed" | "skipped" | "failed"
    chunks_created: int = 0
    embeddings_created: int = 0
    tokens_used: int = 0
    model: Optional[str] = None
    step: Optional[str] = None
    error: Optional[str] = None


class IngestionPipeline:
    """Wire a chunker, embedding pipeline and vector store together."""

    def __init__(
        self,
        chunker: Chunker,
        embedder: EmbeddingPipeline,
        store: VectorStore,
        max_workers: int = DEFAULT_DOCUMENT_CONCURRENCY,
    ):
        self.chunker = chunker
        self.embedder = embedder
        self.store = store
        self.max_workers = max_workers

    def ingest_document(self, document: Document, scope: str) -> DocumentResult:
        """Chunk, embed and store one document. Never raises for document-level failures.

        A document that has become blank is skipped, and whatever it stored
        on a previous run is removed.
        """
        doc_id = document.source_id
        step = "chunking"
        try:
            t0 = time.perf_counter()
            try:
                chunks = self.chunker.chunk_document(document)
            except EmptyInputError:
                logger.info("[%s] Skipping empty document", doc_id)
                step = "storing"
                return self._skip(doc_id, scope)

            step = "embedding"
            try:
                result = self.embedder.embed_batch([c.text for c in chunks])
            except NoValidInputError:
                logger.info("[%s] Skipping document with no embeddable chunks", doc_id)
                step = "storing"
                return self._skip(doc_id, scope)
            # Only chunks that received a vector are stored
            embedded_chunks = [chunks[i] for i in result.input_indices]
            embeddings = result.to_embeddings([c.id for c in chunks])

            step = "storing"
            stored = self.store.replace_document(doc_id, scope, embedded_chunks, embeddings)
            logger.info(
                "[%s] %d chunks, %d embeddings, %d tokens in %.1fs",
                doc_id, len(chunks), stored, result.total_tokens, time.perf_counter() - t0,
            )
            return DocumentResult(
                document_id=doc_id,
                status="processed",
                chunks_created=len(chunks),
                embeddings_created=stored,
                tokens_used=result.total_tokens,
                model=result.model,
            )
        except Exception as e:
            logger.error("[%s] Ingestion failed during %s: %s", doc_id, step, e)
            return DocumentResult(document_id=doc_id, status="failed", step=step, error=str(e))

    def _skip(self, doc_id: str, scope: str) -> DocumentResult:
        self.store.replace_document(doc_id, scope, [], [])
        return DocumentResult(document_id=doc_id, status="skipped")

    def ingest_documents(self, documents: list[Document], scope: str) -> IngestionStats:
        """Ingest many documents concurrently and aggregate the outcome."""
        stats = IngestionStats(model=self.embedder.model)
        if not documents:
            logger.warning("No documents to ingest for '%s'", scope)
            return stats

        overall_start = time.perf_counter()
        urls = {d.source_id: d.url for d in documents}
        total = len(documents)
        done = 0

        logger.info("[%s] Ingesting %d documents (%d workers)...", scope, total, self.max_workers)
        with ThreadPoolExecutor(max_workers=max(1, self.max_workers)) as pool:
            futures = {pool.submit(self.ingest_document, doc, scope): doc for doc in documents}
            for future in as_completed(futures):
                result = future.result()
                done += 1
                self._record(stats, result, urls.get(result.document_id))
                logger.info("[%s] Progress: %d/%d documents", scope, done, total)

        stats.processing_time_s = round(time.perf_counter() - overall_start, 2)
        logger.info(
            "[%s] Ingestion complete in %.1fs: %d processed, %d skipped, %d failed, "
            "%d chunks, %d tokens (~$%.4f)",
            scope, stats.processing_time_s, stats.documents_processed, stats.documents_skipped,
            stats.documents_failed, stats.chunks_created, stats.total_tokens_used,
            stats.estimated_cost_usd,
        )
        return stats

    @staticmethod
    def _record(stats: IngestionStats, result: DocumentResult, url: Optional[str]) -> None:
        if result.status == "processed":
            stats.documents_processed += 1
            stats.chunks_created += result.chunks_created
            stats.embeddings_created += result.embeddings_created
            stats.total_tokens_used += result.tokens_used
            if result.model:
                stats.model = result.model
        elif result.status == "skipped":
            stats.documents_skipped += 1
        else:
            stats.documents_failed += 1
            stats.errors.append({
                "step": result.step,
                "document_id": result.document_id,
                "url": url,
                "error": result.error,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            })


def estimate_ingestion_cost(documents: list[Document], chunker: Chunker, model: str = DEFAULT_MODEL) -> dict:
    """Chunk documents locally and estimate what embedding them would cost."""
    texts = []
    for doc in documents:
        try:
            texts.extend(c.text for c in chunker.chunk_document(doc))
        except EmptyInputError:
            continue
    estimate = estimate_cost(texts, model)
    estimate["documents"] = len(documents)
    estimate["chunks"] = len(texts)
    return estimate
