"""Shared retry helper for embedding and chat provider calls.

Provider adapters raise `TransientProviderError` for failures worth retrying
and `ProviderRateLimitError` when the provider asks us to back off. Anything
else propagates on the first attempt.
"""

import logging
from typing import Callable, Optional, TypeVar

from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
)

from common.errors import ProviderRateLimitError, TransientProviderError
from config.settings import RetryPolicy

logger = logging.getLogger(__name__)

T = TypeVar("T")


class _PolicyWait:
    """Tenacity wait strategy driven by a RetryPolicy.

    Rate-limit signals wait the advertised interval and leave the exponential
    schedule where it was; other transient failures advance it.
    """

    def __init__(self, policy: RetryPolicy):
        self.policy = policy
        self.transient_failures = 0

    def __call__(self, retry_state: RetryCallState) -> float:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        if isinstance(exc, ProviderRateLimitError):
            if exc.retry_after is not None and exc.retry_after >= 0:
                return exc.retry_after
            return self.policy.rate_limit_default_delay
        delay = self.policy.backoff_delay(self.transient_failures)
        self.transient_failures += 1
        return delay


def execute_with_retry(
    fn: Callable[[], T],
    policy: RetryPolicy,
    describe: str = "provider call",
    sleep: Optional[Callable[[float], None]] = None,
) -> T:
    """Call `fn` until it succeeds or `policy.max_attempts` is used up.

    Rate-limit waits still consume an attempt, so the total number of calls
    is bounded by `max_attempts` regardless of what the provider advertises.
    The last exception is re-raised unchanged.
    """

    def _log_retry(retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception()
        logger.warning(
            "%s attempt %d/%d failed (%s), retrying in %.1fs",
            describe,
            retry_state.attempt_number,
            policy.max_attempts,
            exc,
            retry_state.next_action.sleep if retry_state.next_action else 0.0,
        )

    kwargs = {}
    if sleep is not None:
        kwargs["sleep"] = sleep

    retrying = Retrying(
        stop=stop_after_attempt(policy.max_attempts),
        wait=_PolicyWait(policy),
        retry=retry_if_exception_type(TransientProviderError),
        before_sleep=_log_retry,
        reraise=True,
        **kwargs,
    )
    return retrying(fn)
