"""Batched embedding generation with retry and bounded concurrency.

Uses text-embedding-3-small (1536 dimensions) by default. Inputs are split
into sub-batches of at most `max_batch_size` texts; each sub-batch is one
provider call wrapped in the shared retry helper, and a small thread pool
runs sub-batches side by side with a pause between batches. Any sub-batch
that exhausts its retries fails the whole call.
"""

import logging
import math
import os
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Callable, Optional, Protocol

import openai
import tiktoken
from openai import OpenAI

from common.errors import (
    EmbeddingProviderError,
    NoValidInputError,
    ProviderRateLimitError,
    TransientProviderError,
)
from common.retry import execute_with_retry
from config.settings import EmbeddingConfig
from schemas.document import Embedding

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "text-embedding-3-small"

# USD per 1M tokens
EMBEDDING_PRICES = {
    "text-embedding-3-small": 0.02,
    "text-embedding-3-large": 0.13,
    "text-embedding-ada-002": 0.10,
}


# ---------------------------------------------------------------------------
# Provider adapters
# ---------------------------------------------------------------------------

@dataclass
class ProviderEmbeddings:
    vectors: list[list[float]]
    model: str
    total_tokens: int = 0


class EmbeddingProvider(Protocol):
    def embed(self, texts: list[str], model: str) -> ProviderEmbeddings:
        ...


def _retry_after_seconds(exc: openai.APIStatusError) -> Optional[float]:
    """Read the Retry-After header of a rate-limit response, if present."""
    headers = getattr(exc.response, "headers", None) or {}
    value = headers.get("retry-after")
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


class OpenAIEmbeddingProvider:
    """OpenAI embeddings endpoint, translating SDK errors into retry signals."""

    def __init__(self, api_key: Optional[str] = None, dimensions: Optional[int] = None):
        # Retries are handled by common.retry, not by the SDK
        self.client = OpenAI(api_key=api_key or os.getenv("OPENAI_API_KEY"), max_retries=0)
        self.dimensions = dimensions

    def embed(self, texts: list[str], model: str) -> ProviderEmbeddings:
        kwargs = {"model": model, "input": texts}
        if self.dimensions:
            kwargs["dimensions"] = self.dimensions
        try:
            response = self.client.embeddings.create(**kwargs)
        except openai.RateLimitError as e:
            raise ProviderRateLimitError(str(e), retry_after=_retry_after_seconds(e)) from e
        except (openai.APIConnectionError, openai.InternalServerError) as e:
            raise TransientProviderError(str(e)) from e

        # Provider may return items out of order; restore input order
        sorted_data = sorted(response.data, key=lambda x: x.index)
        usage = getattr(response, "usage", None)
        return ProviderEmbeddings(
            vectors=[item.embedding for item in sorted_data],
            model=response.model or model,
            total_tokens=usage.total_tokens if usage else 0,
        )


# ---------------------------------------------------------------------------
# Batch pipeline
# ---------------------------------------------------------------------------

@dataclass
class BatchEmbeddingResult:
    """Vectors in input order, with the input position each one belongs to."""

    embeddings: list[list[float]] = field(default_factory=list)
    input_indices: list[int] = field(default_factory=list)
    model: str = DEFAULT_MODEL
    total_tokens: int = 0

    def to_embeddings(self, ids: list[str]) -> list[Embedding]:
        """Pair each vector with `ids[input_index]`, the id of the text it came from."""
        return [
            Embedding(chunk_id=ids[i], vector=vector, model_id=self.model)
            for i, vector in zip(self.input_indices, self.embeddings)
        ]


class EmbeddingPipeline:
    """Generate embeddings for arbitrary-length text lists."""

    def __init__(
        self,
        provider: EmbeddingProvider,
        config: Optional[EmbeddingConfig] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.provider = provider
        self.config = config or EmbeddingConfig()
        self._sleep = sleep
        self._encoder: Optional[tiktoken.Encoding] = None

    @property
    def model(self) -> str:
        return self.config.model

    def _get_encoder(self) -> tiktoken.Encoding:
        if self._encoder is None:
            try:
                self._encoder = tiktoken.encoding_for_model(self.config.model)
            except KeyError:
                self._encoder = tiktoken.get_encoding("cl100k_base")
        return self._encoder

    def _truncate_text(self, text: str) -> str:
        """Truncate text to fit within the embedding model's token limit."""
        limit = self.config.max_tokens_per_text
        # A token is at least one character, so short texts cannot exceed the limit
        if len(text) <= limit:
            return text
        encoder = self._get_encoder()
        tokens = encoder.encode(text)
        if len(tokens) <= limit:
            return text
        logger.warning(
            "Truncating text from %d to %d tokens (first 60 chars: '%.60s')",
            len(tokens), limit, text,
        )
        return encoder.decode(tokens[:limit])

    def _embed_sub_batch(self, batch_idx: int, total_batches: int, texts: list[str]) -> ProviderEmbeddings:
        batch_start = time.perf_counter()
        result = execute_with_retry(
            lambda: self.provider.embed(texts, self.config.model),
            self.config.retry,
            describe=f"Embedding batch {batch_idx + 1}/{total_batches}",
            sleep=self._sleep,
        )
        if len(result.vectors) != len(texts):
            raise EmbeddingProviderError(
                f"Provider returned {len(result.vectors)} vectors for {len(texts)} inputs",
                batch_index=batch_idx,
            )
        logger.info(
            "Embedding batch %d/%d (%d texts) done in %.1fs",
            batch_idx + 1, total_batches, len(texts), time.perf_counter() - batch_start,
        )
        # Pause between batches to stay well within rate limits
        if batch_idx < total_batches - 1 and self.config.inter_batch_delay > 0:
            self._sleep(self.config.inter_batch_delay)
        return result

    def embed_batch(self, texts: list[str], max_batch_size: Optional[int] = None) -> BatchEmbeddingResult:
        """Embed a list of texts, handling batching automatically.

        Blank entries are skipped; `input_indices` on the result maps each
        vector back to its position in `texts`. Raises NoValidInputError when
        nothing is left to embed and EmbeddingProviderError when any
        sub-batch fails for good.
        """
        batch_size = max_batch_size or self.config.max_batch_size
        if batch_size < 1:
            raise ValueError(f"max_batch_size must be positive, got {batch_size}")

        valid = [(i, t) for i, t in enumerate(texts) if t and t.strip()]
        if not valid:
            raise NoValidInputError("No valid texts to embed")
        if len(valid) < len(texts):
            logger.warning("Skipping %d blank texts out of %d", len(texts) - len(valid), len(texts))

        indices = [i for i, _ in valid]
        prepared = [self._truncate_text(t) for _, t in valid]
        batches = [prepared[s:s + batch_size] for s in range(0, len(prepared), batch_size)]
        total_batches = len(batches)

        overall_start = time.perf_counter()
        results: dict[int, ProviderEmbeddings] = {}
        workers = max(1, min(self.config.max_concurrency, total_batches))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = {
                pool.submit(self._embed_sub_batch, idx, total_batches, batch): idx
                for idx, batch in enumerate(batches)
            }
            for future in as_completed(futures):
                idx = futures[future]
                try:
                    results[idx] = future.result()
                except EmbeddingProviderError:
                    for f in futures:
                        f.cancel()
                    raise
                except Exception as e:
                    for f in futures:
                        f.cancel()
                    raise EmbeddingProviderError(
                        f"Embedding batch {idx + 1}/{total_batches} failed: {e}",
                        batch_index=idx,
                    ) from e

        embeddings: list[list[float]] = []
        total_tokens = 0
        model = self.config.model
        for idx in range(total_batches):
            embeddings.extend(results[idx].vectors)
            total_tokens += results[idx].total_tokens
            model = results[idx].model or model

        total_elapsed = time.perf_counter() - overall_start
        logger.info(
            "Embedded %d texts in %d batches in %.1fs (%d tokens)",
            len(embeddings), total_batches, total_elapsed, total_tokens,
        )
        return BatchEmbeddingResult(
            embeddings=embeddings,
            input_indices=indices,
            model=model,
            total_tokens=total_tokens,
        )

    def embed_single(self, text: str) -> list[float]:
        """Embed a single text string (convenience method for queries)."""
        result = self.embed_batch([text])
        return result.embeddings[0]


# ---------------------------------------------------------------------------
# Cost estimation
# ---------------------------------------------------------------------------

def estimate_tokens(texts: list[str]) -> int:
    """Rough token estimate (about 4 characters per token)."""
    total_chars = sum(len(t) for t in texts)
    return math.ceil(total_chars / 4)


def estimate_cost(texts: list[str], model: str = DEFAULT_MODEL) -> dict:
    tokens = estimate_tokens(texts)
    price = EMBEDDING_PRICES.get(model, EMBEDDING_PRICES[DEFAULT_MODEL])
    return {
        "model": model,
        "estimated_tokens": tokens,
        "estimated_cost_usd": tokens / 1_000_000 * price,
    }
