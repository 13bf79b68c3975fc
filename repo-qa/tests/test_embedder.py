import logging
from types import SimpleNamespace
from unittest.mock import MagicMock

import httpx
import openai
import pytest

from common.errors import (
    EmbeddingProviderError,
    NoValidInputError,
    ProviderRateLimitError,
    TransientProviderError,
)
from config.settings import EmbeddingConfig, RetryPolicy
from vectorstore.embedder import (
    EmbeddingPipeline,
    OpenAIEmbeddingProvider,
    estimate_cost,
    estimate_tokens,
)

from conftest import FakeEmbeddingProvider, no_sleep


class CharEncoder:
    """One token per character."""

    def encode(self, text):
        return list(text)

    def decode(self, tokens):
        return "".join(tokens)


class TestEmbedBatch:
    """Sub-batching, ordering and failure handling."""

    def test_splits_into_sub_batches_in_order(self, embedding_pipeline, fake_provider) -> None:
        texts = [f"text number {i}" for i in range(25)]

        result = embedding_pipeline.embed_batch(texts)

        assert sorted(len(c) for c in fake_provider.calls) == [5, 10, 10]
        assert result.input_indices == list(range(25))
        assert result.embeddings == [FakeEmbeddingProvider.vector_for(t) for t in texts]

    def test_explicit_batch_size_overrides_config(self, embedding_pipeline, fake_provider) -> None:
        embedding_pipeline.embed_batch([f"t{i}" for i in range(7)], max_batch_size=3)

        assert sorted(len(c) for c in fake_provider.calls) == [1, 3, 3]

    def test_skips_blank_texts(self, embedding_pipeline, fake_provider, caplog) -> None:
        with caplog.at_level(logging.WARNING, logger="vectorstore.embedder"):
            result = embedding_pipeline.embed_batch(["a", "", "b", "   "])

        assert "Skipping 2 blank texts out of 4" in caplog.text

        assert result.input_indices == [0, 2]
        assert len(result.embeddings) == 2
        assert fake_provider.calls == [["a", "b"]]
        assert [e.chunk_id for e in result.to_embeddings(["x", "y", "z", "w"])] == ["x", "z"]

    def test_all_blank_raises(self, embedding_pipeline, fake_provider) -> None:
        with pytest.raises(NoValidInputError):
            embedding_pipeline.embed_batch(["", "  ", "\n"])
        assert fake_provider.calls == []

    def test_permanent_failure_fails_whole_call(self, embedding_pipeline) -> None:
        texts = [f"ok {i}" for i in range(15)] + ["BOOM"]

        with pytest.raises(EmbeddingProviderError) as exc_info:
            embedding_pipeline.embed_batch(texts)
        assert exc_info.value.batch_index == 1

    def test_transient_failure_is_retried(self, embedding_pipeline, fake_provider) -> None:
        result = embedding_pipeline.embed_batch(["FLAKY one", "two"])

        assert len(result.embeddings) == 2
        assert len(fake_provider.calls) == 2

    def test_exhausted_retries_raise_provider_error(self) -> None:
        provider = MagicMock()
        provider.embed.side_effect = TransientProviderError("down")
        config = EmbeddingConfig(retry=RetryPolicy(max_attempts=2, base_delay=0.0))
        pipeline = EmbeddingPipeline(provider, config, sleep=no_sleep)

        with pytest.raises(EmbeddingProviderError):
            pipeline.embed_batch(["hello"])
        assert provider.embed.call_count == 2

    def test_vector_count_mismatch_rejected(self) -> None:
        provider = MagicMock()
        provider.embed.return_value = SimpleNamespace(vectors=[[0.1]], model="m", total_tokens=1)
        pipeline = EmbeddingPipeline(provider, EmbeddingConfig(), sleep=no_sleep)

        with pytest.raises(EmbeddingProviderError, match="1 vectors for 2 inputs"):
            pipeline.embed_batch(["one", "two"])

    def test_sums_token_usage(self, embedding_pipeline) -> None:
        texts = [f"text {i}" for i in range(12)]

        result = embedding_pipeline.embed_batch(texts)

        assert result.total_tokens == sum(len(t) for t in texts)
        assert result.model == "text-embedding-3-small"

    def test_embed_single(self, embedding_pipeline) -> None:
        assert embedding_pipeline.embed_single("hello") == FakeEmbeddingProvider.vector_for("hello")

    def test_pauses_between_batches(self, fake_provider) -> None:
        sleeps = []
        config = EmbeddingConfig(max_batch_size=2, max_concurrency=1, inter_batch_delay=0.25)
        pipeline = EmbeddingPipeline(fake_provider, config, sleep=sleeps.append)

        pipeline.embed_batch(["a", "b", "c", "d", "e"])

        assert sleeps == [0.25, 0.25]


class TestTruncation:
    def test_long_text_truncated_to_token_limit(self, fake_provider) -> None:
        config = EmbeddingConfig(max_tokens_per_text=5)
        pipeline = EmbeddingPipeline(fake_provider, config, sleep=no_sleep)
        pipeline._encoder = CharEncoder()

        pipeline.embed_batch(["abcdefghij", "abc"])

        assert fake_provider.calls == [["abcde", "abc"]]


class TestOpenAIEmbeddingProvider:
    """SDK response handling and error translation."""

    def make_provider(self):
        provider = OpenAIEmbeddingProvider(api_key="test-key")
        provider.client = MagicMock()
        return provider

    def test_restores_input_order(self) -> None:
        provider = self.make_provider()
        provider.client.embeddings.create.return_value = SimpleNamespace(
            data=[
                SimpleNamespace(index=1, embedding=[0.2]),
                SimpleNamespace(index=0, embedding=[0.1]),
            ],
            model="text-embedding-3-small",
            usage=SimpleNamespace(total_tokens=4),
        )

        result = provider.embed(["first", "second"], "text-embedding-3-small")

        assert result.vectors == [[0.1], [0.2]]
        assert result.total_tokens == 4

    def test_passes_dimensions(self) -> None:
        provider = self.make_provider()
        provider.dimensions = 256
        provider.client.embeddings.create.return_value = SimpleNamespace(data=[], model="m", usage=None)

        provider.embed([], "m")

        assert provider.client.embeddings.create.call_args.kwargs["dimensions"] == 256

    def test_rate_limit_carries_retry_after(self) -> None:
        provider = self.make_provider()
        request = httpx.Request("POST", "https://api.openai.com/v1/embeddings")
        response = httpx.Response(429, headers={"retry-after": "3"}, request=request)
        provider.client.embeddings.create.side_effect = openai.RateLimitError(
            "rate limited", response=response, body=None,
        )

        with pytest.raises(ProviderRateLimitError) as exc_info:
            provider.embed(["x"], "m")
        assert exc_info.value.retry_after == 3.0

    def test_connection_error_is_transient(self) -> None:
        provider = self.make_provider()
        request = httpx.Request("POST", "https://api.openai.com/v1/embeddings")
        provider.client.embeddings.create.side_effect = openai.APIConnectionError(request=request)

        with pytest.raises(TransientProviderError):
            provider.embed(["x"], "m")


class TestCostEstimate:
    def test_estimate_tokens_rounds_up(self) -> None:
        assert estimate_tokens(["abcde"]) == 2
        assert estimate_tokens([]) == 0

    def test_estimate_cost(self) -> None:
        estimate = estimate_cost(["a" * 4_000_000], "text-embedding-3-small")

        assert estimate["estimated_tokens"] == 1_000_000
        assert estimate["estimated_cost_usd"] == pytest.approx(0.02)
