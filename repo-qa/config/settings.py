"""Immutable configuration for chunking, embedding, retrieval and chat.

Every component receives its settings object at construction time. Values
default to the tuned production settings; `AppConfig.from_env()` overrides
them from environment variables (call `load_dotenv()` first to pick up a
.env file).
"""

import os
from dataclasses import dataclass, field
from typing import Optional


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    return int(raw) if raw else default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    return float(raw) if raw else default


# ---------------------------------------------------------------------------
# Retry
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff with a cap, plus a default rate-limit wait."""

    max_attempts: int = 3
    base_delay: float = 1.0  # seconds
    multiplier: float = 2.0
    max_delay: float = 10.0
    rate_limit_default_delay: float = 5.0

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

    def backoff_delay(self, failures: int) -> float:
        """Delay before the retry that follows `failures` transient failures (0-based)."""
        return min(self.base_delay * (self.multiplier ** failures), self.max_delay)


# ---------------------------------------------------------------------------
# Ingestion
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ChunkerConfig:
    chunk_size: int = 1000  # characters
    chunk_overlap: int = 200
    split_oversized_tokens: bool = False


@dataclass(frozen=True)
class EmbeddingConfig:
    model: str = "text-embedding-3-small"
    dimensions: Optional[int] = None  # None = model default (1536 for 3-small)
    max_batch_size: int = 100
    max_concurrency: int = 2
    inter_batch_delay: float = 0.1  # seconds
    max_tokens_per_text: int = 8000  # model limit is 8191; leave margin
    retry: RetryPolicy = field(default_factory=RetryPolicy)


# ---------------------------------------------------------------------------
# Retrieval
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RetrievalConfig:
    match_threshold: float = 0.7
    match_count: int = 5
    max_match_count: int = 10
    min_chunks_for_context: int = 1
    # Only decides "trust this enough to skip fallback"; never filters results.
    fallback_threshold: float = 0.5
    max_context_length: int = 4000
    min_snippet_chars: int = 200


# ---------------------------------------------------------------------------
# Chat
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class LLMConfig:
    provider: str = "openai"  # "openai" | "anthropic"
    chat_model: str = "gpt-4o-mini"
    summary_model: str = "gpt-4o"
    chat_max_tokens: int = 1000
    summary_max_tokens: int = 2000
    timeout: float = 60.0
    retry: RetryPolicy = field(default_factory=RetryPolicy)

    def model_for(self, use_case: str) -> str:
        return self.summary_model if use_case == "summary" else self.chat_model

    def max_tokens_for(self, use_case: str) -> int:
        return self.summary_max_tokens if use_case == "summary" else self.chat_max_tokens


@dataclass(frozen=True)
class ToolLoopConfig:
    max_iterations: int = 5
    tool_timeout: float = 30.0  # seconds per tool call
    max_parallel_tools: int = 4


@dataclass(frozen=True)
class WebSearchConfig:
    api_key: Optional[str] = None
    api_url: str = "https://api.tavily.com/search"
    search_depth: str = "advanced"
    default_max_results: int = 10
    include_answer: bool = True
    snippet_length: int = 500
    max_context_length: int = 3000
    timeout: float = 30.0

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)


@dataclass(frozen=True)
class AppConfig:
    chunker: ChunkerConfig = field(default_factory=ChunkerConfig)
    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    retrieval: RetrievalConfig = field(default_factory=RetrievalConfig)
    llm: LLMConfig = field(default_factory=LLMConfig)
    tool_loop: ToolLoopConfig = field(default_factory=ToolLoopConfig)
    web_search: WebSearchConfig = field(default_factory=WebSearchConfig)
    chroma_path: str = "data/chroma"
    collection_name: str = "repo_docs"

    @classmethod
    def from_env(cls) -> "AppConfig":
        """Build a config from environment variables, falling back to defaults."""
        retry = RetryPolicy(max_attempts=_env_int("MAX_RETRIES", 3))
        provider = os.getenv("LLM_PROVIDER", "openai")
        default_chat = "claude-haiku-4-5-20251001" if provider == "anthropic" else "gpt-4o-mini"
        default_summary = "claude-sonnet-4-6" if provider == "anthropic" else "gpt-4o"
        return cls(
            chunker=ChunkerConfig(
                chunk_size=_env_int("CHUNK_SIZE", 1000),
                chunk_overlap=_env_int("CHUNK_OVERLAP", 200),
            ),
            embedding=EmbeddingConfig(
                model=os.getenv("EMBEDDING_MODEL", "text-embedding-3-small"),
                max_batch_size=_env_int("EMBEDDING_BATCH_SIZE", 100),
                max_concurrency=_env_int("EMBEDDING_CONCURRENCY", 2),
                retry=retry,
            ),
            retrieval=RetrievalConfig(
                match_threshold=_env_float("MATCH_THRESHOLD", 0.7),
                match_count=_env_int("MATCH_COUNT", 5),
            ),
            llm=LLMConfig(
                provider=provider,
                chat_model=os.getenv("CHAT_MODEL", default_chat),
                summary_model=os.getenv("SUMMARY_MODEL", default_summary),
                retry=retry,
            ),
            tool_loop=ToolLoopConfig(max_iterations=_env_int("MAX_TOOL_CALLS", 5)),
            web_search=WebSearchConfig(api_key=os.getenv("TAVILY_API_KEY") or None),
            chroma_path=os.getenv("CHROMA_PATH", "data/chroma"),
        )
