from __future__ import annotations

import random
from dataclasses import dataclass
from typing import TYPE_CHECKING

from switchboard.errors import RETRYABLE_KINDS
from switchboard.llm.types import ErrorDelta

if TYPE_CHECKING:
    from switchboard.config import RuntimeConfig


@dataclass(frozen=True)
class RetryPolicy:
    """
    Exponential backoff for retryable provider errors.

    ``delay(attempt)`` is ``backoff_base * 2**attempt`` capped at
    ``backoff_max``, with up to ``jitter`` of random spread; a provider's
    ``retry_after`` hint replaces the computed delay (still capped).
    """

    max_retries: int = 2
    backoff_base: float = 0.5
    backoff_max: float = 30.0
    jitter: float = 0.1

    @classmethod
    def from_config(cls, config: RuntimeConfig) -> RetryPolicy:
        return cls(
            max_retries=config.max_retries,
            backoff_base=config.backoff_base,
            backoff_max=config.backoff_max,
        )

    def should_retry(self, error: ErrorDelta, attempt: int) -> bool:
        """*attempt* is the number of retries already made (0 on first failure)."""
        return (
            error.retryable
            and error.kind in RETRYABLE_KINDS
            and attempt < self.max_retries
        )

    def delay(self, attempt: int, retry_after: float | None = None) -> float:
        if retry_after is not None:
            return min(max(retry_after, 0.0), self.backoff_max)
        base = min(self.backoff_base * (2**attempt), self.backoff_max)
        if self.jitter:
            base += random.uniform(0, self.jitter * base)
        return min(base, self.backoff_max)
