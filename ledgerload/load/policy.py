from __future__ import annotations

from dataclasses import dataclass
from typing import Callable


def no_backoff(attempt: int) -> float:
    return 0.0


def linear_backoff(step_seconds: float) -> Callable[[int], float]:
    """Attempt N waits N * step seconds before running (attempt 0 runs immediately)."""

    def _backoff(attempt: int) -> float:
        return max(0, attempt) * step_seconds

    return _backoff


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry/poll budget with a per-attempt backoff function."""

    max_attempts: int
    backoff: Callable[[int], float] = no_backoff

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

    def delay(self, attempt: int) -> float:
        return max(0.0, float(self.backoff(attempt)))
