"""Retry-with-backoff policy for remote git operations.

Only ``NetworkError`` is retried.  Authentication failures, push conflicts
and repository errors propagate on the first attempt: the caller either
cannot recover by retrying or has its own recovery loop.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar

from .errors import NetworkError

T = TypeVar("T")
logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """Capped exponential backoff.

    Attributes:
        max_attempts: Total attempts including the first one (>= 1).
        base_delay: Delay in seconds before the second attempt.
        multiplier: Growth factor per subsequent attempt.
        max_delay: Upper bound for any single delay.
        sleep: Sleep function, injectable for tests.
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 30.0
    sleep: Callable[[float], None] = field(
        default=time.sleep, repr=False, compare=False
    )

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(
                f"max_attempts must be at least 1, got {self.max_attempts}"
            )
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("Retry delays cannot be negative")

    def delay_for(self, attempt: int) -> float:
        """Delay to wait after failed attempt number *attempt* (1-based)."""
        delay = self.base_delay * (self.multiplier ** (attempt - 1))
        return min(delay, self.max_delay)

    def call(
        self,
        func: Callable[..., T],
        *args: Any,
        on_retry: Callable[[int, NetworkError], None] | None = None,
        **kwargs: Any,
    ) -> tuple[T, int]:
        """Call *func*, retrying on ``NetworkError``.

        Args:
            func: The operation to run.
            *args: Positional arguments for func.
            on_retry: Optional hook called as ``on_retry(attempt, error)``
                before sleeping.
            **kwargs: Keyword arguments for func.

        Returns:
            Tuple of ``(result, attempts_used)``.

        Raises:
            NetworkError: The last failure, once ``max_attempts`` is spent.
                Its ``attempts`` attribute holds the number of attempts.
        """
        attempt = 1
        while True:
            try:
                return func(*args, **kwargs), attempt
            except NetworkError as exc:
                if attempt >= self.max_attempts:
                    exc.attempts = attempt
                    logger.warning(
                        "Giving up after %d attempt(s): %s", attempt, exc
                    )
                    raise
                delay = self.delay_for(attempt)
                logger.info(
                    "Attempt %d/%d failed (%s); retrying in %.1fs",
                    attempt,
                    self.max_attempts,
                    exc,
                    delay,
                )
                if on_retry is not None:
                    on_retry(attempt, exc)
                self.sleep(delay)
                attempt += 1
