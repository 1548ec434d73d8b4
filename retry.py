"""
retry.py – Bounded exponential backoff around fallible external calls.

Errors tagged at the client boundary (:class:`errors.ServiceError`) are
classified by their :class:`errors.ErrorKind`.  Anything else falls back to
a substring check on the message, so wrapped callables must keep the
recognisable fragments ("ECONNRESET", "503", "timeout", ...) in their
error text.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Optional, Sequence, TypeVar

from errors import ServiceError

logger = logging.getLogger("sprint-testgen")

T = TypeVar("T")

DEFAULT_RETRYABLE_MARKERS: tuple[str, ...] = (
    "ECONNREFUSED",
    "ECONNRESET",
    "ETIMEDOUT",
    "ENOTFOUND",
    "Network",
    "timeout",
    "429",
    "500",
    "502",
    "503",
    "504",
)


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 3
    initial_delay: float = 1.0
    max_delay: float = 10.0
    backoff_multiplier: float = 2.0
    retryable_markers: Sequence[str] = field(default=DEFAULT_RETRYABLE_MARKERS)

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after failed attempt number *attempt* (0-based)."""
        return min(self.initial_delay * self.backoff_multiplier ** attempt, self.max_delay)

    def is_retryable(self, exc: BaseException) -> bool:
        if isinstance(exc, ServiceError):
            return exc.retryable
        message = str(exc)
        return any(marker in message for marker in self.retryable_markers)


def with_retry(
    operation: Callable[[], T],
    policy: Optional[RetryPolicy] = None,
    *,
    sleep: Callable[[float], None] = time.sleep,
    label: str = "",
) -> T:
    """Run *operation*, retrying transient failures per *policy*.

    Non-retryable errors, and the last error once ``max_retries`` extra
    attempts are used up, propagate unchanged.
    """
    policy = policy or RetryPolicy()
    attempt = 0
    while True:
        try:
            return operation()
        except Exception as exc:
            if not policy.is_retryable(exc) or attempt >= policy.max_retries:
                raise
            delay = policy.delay_for(attempt)
            logger.warning(
                "%s failed (attempt %d/%d): %s – retrying in %.1fs",
                label or "Operation",
                attempt + 1,
                policy.max_retries + 1,
                exc,
                delay,
            )
            sleep(delay)
            attempt += 1
