"""Retry policy: error classification and capped exponential backoff.

Pure apart from reading the clock. An error carrying an HTTP status
(PlatformError / ProviderError) is classified by that status alone; any
other error by exception type, then by message text.
"""

from __future__ import annotations

import logging
import re
import time

import httpx

from mrlens_core.config import QueueConfig
from mrlens_core.errors import SchemaViolationError

logger = logging.getLogger(__name__)

TRANSIENT = "transient"
RATE_LIMIT = "rate-limit"
PERMANENT = "permanent"
UNKNOWN = "unknown"

_TRANSIENT_RE = re.compile(r"econnrefused|etimedout|timed? ?out|network|connection (?:refused|reset|error)", re.I)
_RATE_LIMIT_RE = re.compile(r"rate limit|\b429\b|too many requests|quota exceeded", re.I)
_PERMANENT_RE = re.compile(r"unauthorized|\b401\b|authentication|forbidden|\b403\b", re.I)
_RETRY_AFTER_RE = re.compile(r"retry\s*after\s*:?\s*(\d+)", re.I)


class RetryPolicy:
    def __init__(self, config: QueueConfig):
        self.max_retries = config.max_retries
        self.base_delay_ms = config.retry_backoff_ms
        self.multiplier = config.retry_backoff_multiplier
        self.max_backoff_ms = config.max_retry_backoff_ms

    def classify(self, error: BaseException) -> str:
        status = getattr(error, "status_code", None)
        if status == 429:
            return RATE_LIMIT
        if status in (401, 403):
            return PERMANENT
        if status == 408 or (isinstance(status, int) and status >= 500):
            return TRANSIENT
        if isinstance(status, int):
            # Any other known status is unclassified.
            return UNKNOWN

        if isinstance(error, SchemaViolationError):
            return PERMANENT
        if isinstance(error, (TimeoutError, ConnectionError, httpx.TransportError)):
            return TRANSIENT

        message = str(error)
        if _TRANSIENT_RE.search(message):
            return TRANSIENT
        if _RATE_LIMIT_RE.search(message):
            return RATE_LIMIT
        if _PERMANENT_RE.search(message):
            return PERMANENT
        return UNKNOWN

    def is_retryable(self, error: BaseException) -> bool:
        return self.classify(error) in (TRANSIENT, RATE_LIMIT)

    def should_retry(self, attempt_number: int, error: BaseException, max_retries: int | None = None) -> bool:
        """``attempt_number`` is one-based: the attempt that just failed."""
        limit = self.max_retries if max_retries is None else max_retries
        if attempt_number >= limit:
            logger.debug("Attempt %d reached the retry limit of %d", attempt_number, limit)
            return False
        if not self.is_retryable(error):
            logger.debug("Error is not retryable (%s): %s", self.classify(error), error)
            return False
        return True

    def backoff_ms(self, retry_count: int) -> int:
        """Delay before retry number ``retry_count`` (zero-based), capped at the max backoff."""
        return int(min(self.base_delay_ms * self.multiplier ** max(retry_count, 0), self.max_backoff_ms))

    def rate_limit_delay_ms(self, error: BaseException) -> int | None:
        """The provider's requested wait, from a ``retry_after`` attribute or a "retry after N" message."""
        retry_after = getattr(error, "retry_after", None)
        if retry_after is not None:
            return int(float(retry_after) * 1000)
        match = _RETRY_AFTER_RE.search(str(error))
        if match:
            return int(match.group(1)) * 1000
        return None

    def next_retry_time(
        self, retry_count: int, error: BaseException | None = None, now: int | None = None
    ) -> int:
        """Epoch ms at which the next attempt becomes eligible.

        A rate-limit error's stated wait wins when it is longer than the backoff.
        """
        now = int(time.time() * 1000) if now is None else now
        delay = self.backoff_ms(retry_count)
        if error is not None and self.classify(error) == RATE_LIMIT:
            requested = self.rate_limit_delay_ms(error)
            if requested is not None:
                delay = max(delay, requested)
        logger.debug("Retry %d scheduled in %dms", retry_count, delay)
        return now + delay
