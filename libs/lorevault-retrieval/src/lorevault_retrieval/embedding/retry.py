"""Exponential backoff with jitter for provider calls."""

import random
from dataclasses import dataclass


@dataclass(frozen=True)
class RetryPolicy:
    """
    Bounded retry schedule.

    Attributes:
        max_retries: Retries after the first attempt (0 disables retry)
        initial_delay_ms: Delay before the first retry
        max_delay_ms: Ceiling for any single delay, before jitter
        backoff_multiplier: Growth factor per retry
        jitter: Whether to vary each delay by up to 25% either way
    """

    max_retries: int = 3
    initial_delay_ms: float = 200.0
    max_delay_ms: float = 5000.0
    backoff_multiplier: float = 2.0
    jitter: bool = True

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def calculate_delay(self, retry: int) -> float:
        """
        Delay in seconds before retry number ``retry`` (0-based).
        """
        delay_ms = min(
            self.initial_delay_ms * (self.backoff_multiplier**retry),
            self.max_delay_ms,
        )
        if self.jitter:
            delay_ms *= 0.75 + random.random() * 0.5  # noqa: S311
        return delay_ms / 1000.0
