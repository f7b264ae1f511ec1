"""Retry policy shared by playlist fetches and ffmpeg invocations."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Tuple, Type, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Fixed or exponential backoff between a bounded number of attempts.

    ``max_attempts`` counts the first try, so ``max_attempts=2`` means one retry.
    """

    max_attempts: int = 1
    delay: float = 0.0
    backoff: float = 1.0

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after the given (1-based) failed attempt."""
        return self.delay * (self.backoff ** (attempt - 1))

    def call(
        self,
        func: Callable[[], T],
        retry_on: Tuple[Type[BaseException], ...] = (Exception,),
        label: str = "operation",
        sleep: Callable[[float], None] = time.sleep,
    ) -> T:
        attempts = max(1, self.max_attempts)
        for attempt in range(1, attempts + 1):
            try:
                return func()
            except retry_on as exc:
                if attempt >= attempts:
                    raise
                wait = self.delay_for(attempt)
                logger.warning(f"{label} failed (attempt {attempt}/{attempts}): {exc}; retrying in {wait:.1f}s")
                sleep(wait)
        raise AssertionError("unreachable")


NO_RETRY = RetryPolicy(max_attempts=1)
