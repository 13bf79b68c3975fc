"""HTTP plumbing for content sources: request pacing and retried GETs."""

import logging
import threading
import time
from typing import Optional

import requests
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
)

logger = logging.getLogger(__name__)

USER_AGENT = "RepoQA/1.0 (documentation assistant)"

_session = requests.Session()
_session.headers["User-Agent"] = USER_AGENT


class RateLimiter:
    """Keeps at least `min_delay` seconds between consecutive requests, across threads."""

    def __init__(self, min_delay: float = 0.5):
        self.min_delay = min_delay
        self._next_allowed = 0.0
        self._lock = threading.Lock()

    def wait(self) -> None:
        with self._lock:
            now = time.monotonic()
            delay = self._next_allowed - now
            self._next_allowed = max(now, self._next_allowed) + self.min_delay
        if delay > 0:
            time.sleep(delay)


def _log_http_retry(retry_state) -> None:
    logger.warning(
        "GET %s failed (attempt %d): %s",
        retry_state.args[0] if retry_state.args else "?",
        retry_state.attempt_number,
        retry_state.outcome.exception(),
    )


@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=10),
    retry=retry_if_exception_type((requests.ConnectionError, requests.Timeout)),
    before_sleep=_log_http_retry,
    reraise=True,
)
def http_get(
    url: str,
    headers: Optional[dict] = None,
    params: Optional[dict] = None,
    timeout: int = 30,
    rate_limiter: Optional[RateLimiter] = None,
) -> requests.Response:
    """GET through the shared session, retrying connection errors and timeouts.

    The response is returned whatever its status; callers decide what a
    404 or 403 means for them.
    """
    if rate_limiter:
        rate_limiter.wait()
    return _session.get(url, headers=headers, params=params, timeout=timeout)
