"""
ChartSync Repository
Introductory remarks: This module is part of the ChartSync codebase.

Bounded retries for transient object store failures.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Optional, TypeVar

from chartsync.config import (DEFAULT_RETRY_ATTEMPTS,
                              DEFAULT_RETRY_BACKOFF_SECONDS)

from .errors import NetworkFailure, TransientNetworkFailure

T = TypeVar("T")

_LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """How often, and how patiently, a single store call is retried.

    ``attempts`` counts the first call, so ``attempts=1`` disables retries.
    The delay before retry ``n`` is ``backoff * 2 ** (n - 1)``.
    """

    attempts: int = DEFAULT_RETRY_ATTEMPTS
    backoff: float = DEFAULT_RETRY_BACKOFF_SECONDS
    sleep_fn: Callable[[float], None] = field(default=time.sleep, compare=False)

    def __post_init__(self) -> None:
        if self.attempts < 1:
            raise ValueError("attempts must be at least 1.")
        if self.backoff < 0:
            raise ValueError("backoff must be non-negative.")


NO_RETRY = RetryPolicy(attempts=1, backoff=0.0)


def call_with_retries(
    operation: Callable[[], T],
    policy: RetryPolicy,
    *,
    name: Optional[str] = None,
) -> T:
    """Run ``operation``, retrying only on :class:`TransientNetworkFailure`.

    Exhausting the policy raises a plain :class:`NetworkFailure` chained to
    the last transient error; every other exception propagates untouched.
    """
    label = name or getattr(operation, "__name__", "<anonymous>")
    attempt = 1
    while True:
        try:
            return operation()
        except TransientNetworkFailure as exc:
            if attempt >= policy.attempts:
                raise NetworkFailure(
                    f"{label} failed after {attempt} attempt(s): {exc}"
                ) from exc
            delay = policy.backoff * (2 ** (attempt - 1))
            _LOGGER.warning(
                "Transient failure in %s (attempt %d/%d), retrying in %.2fs: %s",
                label,
                attempt,
                policy.attempts,
                delay,
                exc,
            )
            policy.sleep_fn(delay)
            attempt += 1
