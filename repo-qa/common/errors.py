"""Exception taxonomy for ingestion, retrieval and answer generation.

Caller errors (EmptyInputError, NoValidInputError) are raised immediately and
never retried. Provider adapters raise TransientProviderError or
ProviderRateLimitError so the shared retry helper can classify failures
without knowing which SDK produced them.
"""

from typing import Optional


class RepoQAError(Exception):
    """Base class for all project errors."""


class EmptyInputError(RepoQAError, ValueError):
    """Blank text handed to the chunker."""


class NoValidInputError(RepoQAError, ValueError):
    """Every entry of an embedding batch was blank."""


class ContentSourceError(RepoQAError):
    """A content source could not produce a document."""


# ---------------------------------------------------------------------------
# Retry signals (raised by provider adapters, consumed by common.retry)
# ---------------------------------------------------------------------------

class TransientProviderError(RepoQAError):
    """A remote call failed in a way that is worth retrying (timeout, 5xx)."""


class ProviderRateLimitError(TransientProviderError):
    """The provider asked us to slow down.

    `retry_after` is the advertised wait in seconds, when the provider sent one.
    """

    def __init__(self, message: str, retry_after: Optional[float] = None):
        super().__init__(message)
        self.retry_after = retry_after


# ---------------------------------------------------------------------------
# Fatal provider errors
# ---------------------------------------------------------------------------

class EmbeddingProviderError(RepoQAError):
    """Embedding generation failed after all retries for a sub-batch."""

    def __init__(self, message: str, batch_index: Optional[int] = None):
        super().__init__(message)
        self.batch_index = batch_index


class LLMProviderError(RepoQAError):
    """Chat completion failed after all retries.

    Inside the tool loop, `usage` holds the tokens spent by the model calls
    that succeeded before this one.
    """

    def __init__(self, message: str, usage=None):
        super().__init__(message)
        self.usage = usage


class VectorStoreError(RepoQAError):
    """The vector store rejected a read or write."""


# ---------------------------------------------------------------------------
# Tool loop
# ---------------------------------------------------------------------------

class ToolExecutionError(RepoQAError):
    """A tool ran and failed. Folded into the conversation, never propagated."""


class UnknownToolError(ToolExecutionError):
    """The model asked for a tool that is not registered."""


class IterationBudgetExceededError(RepoQAError):
    """The model kept requesting tools until the iteration budget ran out."""

    def __init__(self, max_iterations: int, usage=None, messages=None):
        super().__init__(f"Maximum tool call iterations ({max_iterations}) exceeded")
        self.max_iterations = max_iterations
        self.usage = usage
        self.messages = messages or []
