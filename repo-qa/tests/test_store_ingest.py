from unittest.mock import MagicMock

import pytest

from common.errors import NoValidInputError, VectorStoreError
from schemas.document import Chunk, Document, Embedding, SourceType
from vectorstore.chunker import Chunker
from vectorstore.ingest import IngestionPipeline, estimate_ingestion_cost


def make_chunks(document_id: str, texts: list[str]) -> list[Chunk]:
    return [
        Chunk(id=f"{document_id}-{i}", document_id=document_id, text=t, sequence_index=i,
              metadata={"url": f"https://example.com/{document_id}"})
        for i, t in enumerate(texts)
    ]


def make_embeddings(chunks: list[Chunk], vectors: list[list[float]]) -> list[Embedding]:
    return [Embedding(chunk_id=c.id, vector=v, model_id="test") for c, v in zip(chunks, vectors)]


class RejectingUpserts:
    """Collection wrapper whose writes fail; everything else passes through."""

    def __init__(self, inner):
        self.inner = inner

    def upsert(self, **kwargs):
        raise RuntimeError("write rejected")

    def __getattr__(self, name):
        return getattr(self.inner, name)


class TestVectorStore:
    """ChromaDB wrapper: replace, query and scope isolation."""

    def store(self, chroma_store, document_id, scope, texts, vectors) -> int:
        chunks = make_chunks(document_id, texts)
        return chroma_store.replace_document(document_id, scope, chunks, make_embeddings(chunks, vectors))

    def test_replace_then_query(self, chroma_store) -> None:
        written = self.store(chroma_store, "doc", "owner/repo", ["install with pip", "configure the server"],
                             [[1.0, 0.0, 0.0], [0.0, 1.0, 0.0]])

        matches = chroma_store.query([1.0, 0.0, 0.0], "owner/repo", n_results=5)

        assert written == 2
        assert [m.chunk_id for m in matches] == ["doc-0", "doc-1"]
        assert matches[0].similarity_score == pytest.approx(1.0, abs=1e-4)
        assert matches[1].similarity_score == pytest.approx(0.0, abs=1e-4)
        assert matches[0].source_url == "https://example.com/doc"
        assert matches[0].metadata["scope"] == "owner/repo"

    def test_reingest_replaces_previous_chunks(self, chroma_store) -> None:
        self.store(chroma_store, "doc", "owner/repo", ["a", "b", "c"],
                   [[1.0, 0.0, 0.0], [0.0, 1.0, 0.0], [0.0, 0.0, 1.0]])
        self.store(chroma_store, "doc", "owner/repo", ["only one"], [[1.0, 1.0, 0.0]])

        assert chroma_store.count("owner/repo") == 1

    def test_queries_are_scoped(self, chroma_store) -> None:
        self.store(chroma_store, "a", "owner/one", ["alpha"], [[1.0, 0.0, 0.0]])
        self.store(chroma_store, "b", "owner/two", ["beta"], [[1.0, 0.0, 0.0]])

        matches = chroma_store.query([1.0, 0.0, 0.0], "owner/two", n_results=10)

        assert [m.chunk_id for m in matches] == ["b-0"]
        assert chroma_store.count() == 2

    def test_delete_scope(self, chroma_store) -> None:
        self.store(chroma_store, "a", "owner/one", ["alpha"], [[1.0, 0.0, 0.0]])
        self.store(chroma_store, "b", "owner/two", ["beta"], [[0.0, 1.0, 0.0]])

        chroma_store.delete_scope("owner/one")

        assert chroma_store.count("owner/one") == 0
        assert chroma_store.count("owner/two") == 1

    def test_query_on_empty_collection(self, chroma_store) -> None:
        assert chroma_store.query([1.0, 0.0, 0.0], "owner/repo") == []

    def test_length_mismatch_rejected(self, chroma_store) -> None:
        chunks = make_chunks("doc", ["a", "b"])

        with pytest.raises(VectorStoreError):
            chroma_store.replace_document("doc", "owner/repo", chunks, make_embeddings(chunks[:1], [[1.0, 0.0, 0.0]]))

    def test_failed_write_keeps_previous_chunks(self, chroma_store) -> None:
        self.store(chroma_store, "doc", "owner/repo", ["a", "b"], [[1.0, 0.0, 0.0], [0.0, 1.0, 0.0]])
        chroma_store.collection = RejectingUpserts(chroma_store.collection)

        with pytest.raises(VectorStoreError, match="write rejected"):
            self.store(chroma_store, "doc", "owner/repo", ["new"], [[0.0, 0.0, 1.0]])

        chroma_store.collection = chroma_store.collection.inner
        assert chroma_store.count("owner/repo") == 2

    def test_shorter_document_drops_stale_chunks(self, chroma_store) -> None:
        self.store(chroma_store, "doc", "owner/repo", ["a", "b", "c"],
                   [[1.0, 0.0, 0.0], [0.0, 1.0, 0.0], [0.0, 0.0, 1.0]])
        self.store(chroma_store, "other", "owner/repo", ["x"], [[1.0, 1.0, 1.0]])

        self.store(chroma_store, "doc", "owner/repo", ["a"], [[1.0, 0.0, 0.0]])

        ids = {m.chunk_id for m in chroma_store.query([1.0, 0.0, 0.0], "owner/repo", n_results=10)}
        assert ids == {"doc-0", "other-0"}

    def test_misaligned_embeddings_rejected(self, chroma_store) -> None:
        chunks = make_chunks("doc", ["a", "b"])
        embeddings = make_embeddings(list(reversed(chunks)), [[1.0, 0.0, 0.0], [0.0, 1.0, 0.0]])

        with pytest.raises(VectorStoreError, match="does not match"):
            chroma_store.replace_document("doc", "owner/repo", chunks, embeddings)


class TestIngestionPipeline:
    """Per-document isolation and aggregated stats."""

    SCOPE = "owner/repo"

    def make_pipeline(self, embedding_pipeline, chroma_store) -> IngestionPipeline:
        return IngestionPipeline(Chunker(chunk_size=60, chunk_overlap=10), embedding_pipeline, chroma_store, max_workers=2)

    def test_ingests_documents(self, embedding_pipeline, chroma_store) -> None:
        docs = [
            Document(source_id="owner/repo:readme", raw_text="# Repo\n\nInstall it with pip. Then run it.",
                     source_type=SourceType.PRIMARY, url="https://github.com/owner/repo"),
            Document(source_id="owner/repo:guide", raw_text="A guide " * 20, url="https://example.com/guide"),
        ]

        stats = self.make_pipeline(embedding_pipeline, chroma_store).ingest_documents(docs, self.SCOPE)

        assert stats.documents_processed == 2
        assert stats.documents_failed == 0
        assert stats.chunks_created == stats.embeddings_created
        assert chroma_store.count(self.SCOPE) == stats.chunks_created
        assert stats.total_tokens_used > 0
        assert stats.to_dict()["estimated_cost_usd"] >= 0

    def test_failed_and_skipped_documents_are_isolated(self, embedding_pipeline, chroma_store) -> None:
        docs = [
            Document(source_id="good", raw_text="Useful documentation text."),
            Document(source_id="blank", raw_text="   \n  "),
            Document(source_id="bad", raw_text="This page makes the provider go BOOM.", url="https://example.com/bad"),
        ]

        stats = self.make_pipeline(embedding_pipeline, chroma_store).ingest_documents(docs, self.SCOPE)

        assert stats.documents_processed == 1
        assert stats.documents_skipped == 1
        assert stats.documents_failed == 1
        assert len(stats.errors) == 1
        error = stats.errors[0]
        assert error["step"] == "embedding"
        assert error["document_id"] == "bad"
        assert error["url"] == "https://example.com/bad"

    def test_reingest_is_idempotent(self, embedding_pipeline, chroma_store) -> None:
        pipeline = self.make_pipeline(embedding_pipeline, chroma_store)
        doc = Document(source_id="owner/repo:readme", raw_text="Section text. " * 12)

        pipeline.ingest_documents([doc], self.SCOPE)
        first = chroma_store.count(self.SCOPE)
        pipeline.ingest_documents([doc], self.SCOPE)

        assert chroma_store.count(self.SCOPE) == first

    def test_blank_reingest_removes_previous_chunks(self, embedding_pipeline, chroma_store) -> None:
        pipeline = self.make_pipeline(embedding_pipeline, chroma_store)
        pipeline.ingest_documents([Document(source_id="owner/repo:page", raw_text="Page text. " * 30)], self.SCOPE)
        assert chroma_store.count(self.SCOPE) > 1

        stats = pipeline.ingest_documents([Document(source_id="owner/repo:page", raw_text="   ")], self.SCOPE)

        assert stats.documents_skipped == 1
        assert chroma_store.count(self.SCOPE) == 0

    def test_unembeddable_reingest_removes_previous_chunks(self, embedding_pipeline, chroma_store) -> None:
        doc = Document(source_id="owner/repo:page", raw_text="Page text. " * 30)
        self.make_pipeline(embedding_pipeline, chroma_store).ingest_documents([doc], self.SCOPE)
        embedder = MagicMock()
        embedder.embed_batch.side_effect = NoValidInputError("No valid texts to embed")
        pipeline = IngestionPipeline(Chunker(chunk_size=60, chunk_overlap=10), embedder, chroma_store)

        result = pipeline.ingest_document(doc, self.SCOPE)

        assert result.status == "skipped"
        assert chroma_store.count(self.SCOPE) == 0

    def test_store_failure_recorded_as_storing_step(self, embedding_pipeline, chroma_store) -> None:
        class BrokenStore:
            def replace_document(self, *args):
                raise VectorStoreError("disk full")

        pipeline = IngestionPipeline(Chunker(), embedding_pipeline, BrokenStore())
        result = pipeline.ingest_document(Document(source_id="doc", raw_text="text"), self.SCOPE)

        assert result.status == "failed"
        assert result.step == "storing"
        assert "disk full" in result.error

    def test_empty_document_list(self, embedding_pipeline, chroma_store) -> None:
        stats = self.make_pipeline(embedding_pipeline, chroma_store).ingest_documents([], self.SCOPE)

        assert stats.documents_processed == 0
        assert stats.errors == []


class TestEstimateIngestionCost:
    def test_counts_chunks_and_skips_blank(self) -> None:
        docs = [
            Document(source_id="a", raw_text="word " * 100),
            Document(source_id="b", raw_text=""),
        ]

        estimate = estimate_ingestion_cost(docs, Chunker(chunk_size=100, chunk_overlap=0))

        assert estimate["documents"] == 2
        assert estimate["chunks"] == 5
        assert estimate["estimated_tokens"] == 125
