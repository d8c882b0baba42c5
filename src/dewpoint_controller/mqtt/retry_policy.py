"""Backoff between broker reconnect attempts."""

from __future__ import annotations

import random


class RetryPolicy:
    """Exponential backoff with jitter, capped so an unreachable broker is polled at a steady rate.

    The first retry waits ``base_delay_seconds``; each further attempt doubles the wait
    up to ``max_delay_seconds``, plus up to ``jitter_factor`` of random extra.
    """

    def __init__(
        self,
        base_delay_seconds: float = 0.5,
        max_delay_seconds: float = 30.0,
        jitter_factor: float = 0.1,
    ) -> None:
        """Initialize retry policy.

        Args:
            base_delay_seconds: Delay before the first retry
            max_delay_seconds: Maximum delay cap
            jitter_factor: Jitter as fraction of delay (0.1 = up to 10% extra)

        """
        if base_delay_seconds < 0 or max_delay_seconds < base_delay_seconds:
            msg = f"invalid delays: base={base_delay_seconds}, max={max_delay_seconds}"
            raise ValueError(msg)
        self.base_delay_seconds: float = base_delay_seconds
        self.max_delay_seconds: float = max_delay_seconds
        self.jitter_factor: float = jitter_factor

    def get_delay(self, attempt: int) -> float:
        """Seconds to wait before retry number ``attempt`` (0-indexed)."""
        # exponent capped; unbounded attempts overflow the float multiply
        delay = min(self.base_delay_seconds * (2 ** min(attempt, 32)), self.max_delay_seconds)
        return delay + random.uniform(0, delay * self.jitter_factor)

    def __repr__(self) -> str:
        return (
            f"RetryPolicy(base_delay={self.base_delay_seconds}s, "
            f"max_delay={self.max_delay_seconds}s, "
            f"jitter_factor={self.jitter_factor})"
        )
