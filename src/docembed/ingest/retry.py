"""Generic retry combinator with exponential backoff."""

from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass
from typing import Callable, Generic, TypeVar

from docembed.config import EmbeddingCfg

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Backoff schedule: ``base_delay * multiplier**n``, capped at ``max_delay``.

    With ``jitter`` the actual wait is drawn uniformly from [0, delay].
    """

    max_attempts: int = 10
    base_delay: float = 10.0
    multiplier: float = 2.0
    max_delay: float = 60.0
    jitter: bool = True

    @classmethod
    def from_config(cls, cfg: EmbeddingCfg) -> RetryPolicy:
        return cls(
            max_attempts=cfg.max_attempts,
            base_delay=cfg.starting_delay,
            max_delay=cfg.max_delay,
            jitter=cfg.jitter,
        )

    def delay_for(self, attempt: int) -> float:
        """Wait before retry number *attempt* (0-based)."""
        delay = min(self.base_delay * (self.multiplier**attempt), self.max_delay)
        return random.uniform(0, delay) if self.jitter else delay


@dataclass
class RetryResult(Generic[T]):
    ok: bool
    value: T | None = None
    error: Exception | None = None
    attempts: int = 0


def retry_with_backoff(
    fn: Callable[[], T],
    policy: RetryPolicy,
    sleep: Callable[[float], None] = time.sleep,
) -> RetryResult[T]:
    """Call *fn* until it succeeds or *policy.max_attempts* is exhausted.

    Never raises on *fn* failure; the last exception is carried in the result.
    """
    last_error: Exception | None = None
    attempts = max(1, policy.max_attempts)
    for attempt in range(attempts):
        try:
            return RetryResult(ok=True, value=fn(), attempts=attempt + 1)
        except Exception as exc:
            last_error = exc
            if attempt + 1 >= attempts:
                break
            delay = policy.delay_for(attempt)
            logger.info(
                "Attempt %d/%d failed (%s); retrying in %.1fs",
                attempt + 1,
                attempts,
                exc,
                delay,
            )
            sleep(delay)
    return RetryResult(ok=False, error=last_error, attempts=attempts)
