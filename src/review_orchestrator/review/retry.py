# src/review_orchestrator/review/retry.py
from dataclasses import dataclass


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry with exponential backoff, shared by provider calls and publishing."""

    retries: int = 2
    backoff: float = 1.0

    @property
    def attempts(self) -> int:
        return self.retries + 1

    def delay(self, attempt: int) -> float:
        """Seconds to wait after the given 0-based failed attempt."""
        return self.backoff * (2 ** attempt)

    def max_backoff(self) -> float:
        return sum(self.delay(attempt) for attempt in range(self.retries))
