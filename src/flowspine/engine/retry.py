"""Retry backoff strategies and the serializable per-workflow retry policy.

Example:
    >>> from flowspine.engine.retry import RetryPolicy
    >>>
    >>> policy = RetryPolicy(backoff="exponential", initial_delay=1.0, max_delay=60.0, jitter=0)
    >>> [policy.next_delay(n) for n in range(4)]
    [1.0, 2.0, 4.0, 8.0]
"""

from __future__ import annotations

import random
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Literal

BackoffKind = Literal["exponential", "linear", "fixed"]

# Smallest delay handed out so a suspended run's wake-up time is strictly in the future.
MIN_DELAY_SECONDS = 0.001


class BackoffStrategy(ABC):
    """Abstract base for backoff strategies."""

    @abstractmethod
    def base_delay_for(self, attempt: int) -> float:
        """Delay in seconds before retry number ``attempt`` (0 = first retry), before jitter."""
        ...


@dataclass
class ExponentialBackoff(BackoffStrategy):
    """Delay = initial_delay * multiplier ** attempt."""

    initial_delay: float = 1.0
    multiplier: float = 2.0

    def base_delay_for(self, attempt: int) -> float:
        return self.initial_delay * (self.multiplier ** attempt)


@dataclass
class LinearBackoff(BackoffStrategy):
    """Delay = initial_delay * (attempt + 1)."""

    initial_delay: float = 1.0

    def base_delay_for(self, attempt: int) -> float:
        return self.initial_delay * (attempt + 1)


@dataclass
class ConstantBackoff(BackoffStrategy):
    """Constant delay between retries."""

    initial_delay: float = 1.0

    def base_delay_for(self, attempt: int) -> float:
        return self.initial_delay


_STRATEGIES: dict[str, type[BackoffStrategy]] = {
    "exponential": ExponentialBackoff,
    "linear": LinearBackoff,
    "fixed": ConstantBackoff,
}


@dataclass(frozen=True)
class RetryPolicy:
    """Retry budget and backoff curve for a workflow's runs.

    Attributes:
        backoff: ``exponential``, ``linear`` or ``fixed``
        initial_delay: Base delay in seconds
        max_delay: Cap applied after jitter
        max_retries: Failures allowed before the run is dead-lettered
        jitter: Fraction of the delay added or removed at random (0 disables)
    """

    backoff: BackoffKind = "exponential"
    initial_delay: float = 1.0
    max_delay: float = 300.0
    max_retries: int = 3
    jitter: float = 0.1
    rng: random.Random = field(default_factory=random.Random, compare=False, repr=False)

    def __post_init__(self) -> None:
        if self.backoff not in _STRATEGIES:
            raise ValueError(f"Unknown backoff '{self.backoff}'; expected one of {sorted(_STRATEGIES)}")
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")

    def strategy(self) -> BackoffStrategy:
        return _STRATEGIES[self.backoff](initial_delay=self.initial_delay)

    def next_delay(self, attempt: int) -> float:
        """Seconds to wait before retry number ``attempt`` (0-based), jittered and capped."""
        delay = self.strategy().base_delay_for(attempt)
        if self.jitter:
            jitter_amount = delay * self.jitter
            delay += self.rng.uniform(-jitter_amount, jitter_amount)
        return max(MIN_DELAY_SECONDS, min(delay, self.max_delay))

    def to_dict(self) -> dict[str, Any]:
        return {
            "backoff": self.backoff,
            "initial_delay": self.initial_delay,
            "max_delay": self.max_delay,
            "max_retries": self.max_retries,
            "jitter": self.jitter,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RetryPolicy:
        # Accept the millisecond keys used by older definitions.
        initial = data.get("initial_delay")
        if initial is None and "initial_delay_ms" in data:
            initial = data["initial_delay_ms"] / 1000.0
        max_delay = data.get("max_delay")
        if max_delay is None and "max_delay_ms" in data:
            max_delay = data["max_delay_ms"] / 1000.0
        return cls(
            backoff=data.get("backoff", "exponential"),
            initial_delay=1.0 if initial is None else float(initial),
            max_delay=300.0 if max_delay is None else float(max_delay),
            max_retries=int(data.get("max_retries", 3)),
            jitter=float(data.get("jitter", 0.1)),
        )
