"""Shared fakes for provider-facing components."""

import threading
import uuid

import chromadb
import pytest

from chat.llm import ModelResponse
from common.errors import TransientProviderError
from config.settings import EmbeddingConfig, RetryPolicy
from schemas.conversation import TokenUsage, ToolCall
from schemas.retrieval import RetrievedMatch
from vectorstore.embedder import EmbeddingPipeline, ProviderEmbeddings
from vectorstore.store import VectorStore


def no_sleep(seconds: float) -> None:
    return None


class FakeEmbeddingProvider:
    """Deterministic 3-d vectors; records every call.

    Texts containing "BOOM" fail permanently, texts containing "FLAKY" fail
    with a transient error the first time they are seen.
    """

    def __init__(self):
        self.calls: list[list[str]] = []
        self._seen_flaky = set()
        self._lock = threading.Lock()

    @staticmethod
    def vector_for(text: str) -> list[float]:
        return [1.0 + len(text) % 5, 1.0 + text.count("a"), 0.5]

    def embed(self, texts: list[str], model: str) -> ProviderEmbeddings:
        with self._lock:
            self.calls.append(list(texts))
        for t in texts:
            if "BOOM" in t:
                raise ValueError("provider rejected input")
            if "FLAKY" in t and t not in self._seen_flaky:
                self._seen_flaky.add(t)
                raise TransientProviderError("temporary failure")
        return ProviderEmbeddings(
            vectors=[self.vector_for(t) for t in texts],
            model=model,
            total_tokens=sum(len(t) for t in texts),
        )


class FakeStore:
    """Returns a fixed list of matches; records query arguments."""

    def __init__(self, matches=None, error=None):
        self.matches = matches or []
        self.error = error
        self.queries = []

    def query(self, vector, scope, n_results=10):
        self.queries.append((vector, scope, n_results))
        if self.error:
            raise self.error
        return sorted(self.matches, key=lambda m: m.similarity_score, reverse=True)[:n_results]


class ScriptedLLM:
    """Returns the scripted responses in order; repeats the last one when exhausted.

    A scripted exception instance is raised instead of returned.
    """

    def __init__(self, responses):
        self.responses = list(responses)
        self.calls = []

    def complete(self, messages, tools=None, use_case="chat", json_mode=False):
        self.calls.append({"messages": list(messages), "tools": tools, "use_case": use_case})
        if len(self.calls) <= len(self.responses):
            response = self.responses[len(self.calls) - 1]
        else:
            response = self.responses[-1]
        if isinstance(response, Exception):
            raise response
        return response


def match(chunk_id: str, score: float, text: str = "some documentation text", url=None) -> RetrievedMatch:
    return RetrievedMatch(chunk_id=chunk_id, text=text, source_url=url, similarity_score=score)


def answer(content: str, tokens: int = 10) -> ModelResponse:
    return ModelResponse(
        content=content,
        usage=TokenUsage(prompt_tokens=tokens, completion_tokens=0, total_tokens=tokens),
        model="fake-model",
        finish_reason="stop",
    )


def tool_request(*calls: ToolCall, tokens: int = 10) -> ModelResponse:
    return ModelResponse(
        content=None,
        tool_calls=list(calls),
        usage=TokenUsage(prompt_tokens=tokens, completion_tokens=0, total_tokens=tokens),
        model="fake-model",
        finish_reason="tool_calls",
    )


@pytest.fixture
def fake_provider():
    return FakeEmbeddingProvider()


@pytest.fixture
def embedding_pipeline(fake_provider):
    config = EmbeddingConfig(
        max_batch_size=10,
        max_concurrency=2,
        inter_batch_delay=0.0,
        retry=RetryPolicy(max_attempts=3, base_delay=0.0),
    )
    return EmbeddingPipeline(fake_provider, config, sleep=no_sleep)


@pytest.fixture
def chroma_store():
    return VectorStore(client=chromadb.EphemeralClient(), collection_name=f"test_{uuid.uuid4().hex}")
