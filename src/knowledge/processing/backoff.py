"""Retry schedule for outbound publishing.

The policy is plain data so the schedule can be inspected and tested
without sleeping: ``BackoffPolicy().delays()`` is ``[1.0, 2.0, 4.0]``.
"""

from __future__ import annotations

from dataclasses import dataclass

from tenacity import RetryCallState


@dataclass(frozen=True)
class BackoffPolicy:
    """Exponential backoff with a fixed retry budget.

    Attributes:
        max_retries: Retries after the first attempt (total attempts is
            ``max_retries + 1``).
        base_delay_seconds: Delay before the first retry.
        multiplier: Factor applied to each subsequent delay.
    """

    max_retries: int = 3
    base_delay_seconds: float = 1.0
    multiplier: float = 2.0

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def delay_for(self, retry_number: int) -> float:
        """Delay before the given retry (1-based)."""
        if retry_number < 1:
            return 0.0
        return self.base_delay_seconds * (self.multiplier ** (retry_number - 1))

    def delays(self) -> list[float]:
        return [self.delay_for(n) for n in range(1, self.max_retries + 1)]

    def wait(self, retry_state: RetryCallState) -> float:
        """tenacity ``wait`` callable: delay after the current failed attempt."""
        return self.delay_for(retry_state.attempt_number)
