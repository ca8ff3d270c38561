"""
Retry delay policies.

A policy maps a zero-based retry attempt to a delay in seconds. The two
built-in policies apply jitter differently: ConstantBackoff draws it from
[0, jitter), ExponentialBackoff adds it as a fixed offset.
"""
from __future__ import annotations

import random
from abc import ABC, abstractmethod
from typing import Optional


class BackoffPolicy(ABC):
    """Strategy mapping retry attempt number to a wait duration."""

    @abstractmethod
    def next_delay(self, attempt: int) -> float:
        """
        Delay before the retry following ``attempt``.

        Args:
            attempt: Zero-based retry count

        Returns:
            Delay in seconds, never negative
        """
        ...


def _check_attempt(attempt: int) -> None:
    if attempt < 0:
        raise ValueError(f"attempt must be non-negative, got {attempt}")


class ConstantBackoff(BackoffPolicy):
    """``base + uniform[0, jitter)`` regardless of attempt."""

    def __init__(
        self,
        base: float,
        jitter: float = 0.0,
        rng: Optional[random.Random] = None,
    ):
        if base < 0 or jitter < 0:
            raise ValueError("base and jitter must be non-negative")
        self.base = base
        self.jitter = jitter
        self._rng = rng

    def next_delay(self, attempt: int) -> float:
        _check_attempt(attempt)
        if self.jitter == 0:
            return self.base
        source = self._rng if self._rng is not None else random
        # random() is [0, 1), so the draw never reaches jitter itself
        return self.base + source.random() * self.jitter

    def __repr__(self) -> str:
        return f"ConstantBackoff(base={self.base}, jitter={self.jitter})"


class ExponentialBackoff(BackoffPolicy):
    """
    ``base * multiplier ** attempt + jitter``.

    Not clamped; very large attempts produce very large delays (or an
    OverflowError), which max_retries keeps out of reach in practice.
    """

    def __init__(
        self,
        base: float = 0.5,
        multiplier: float = 2.0,
        jitter: float = 0.05,
    ):
        if base < 0 or multiplier < 0 or jitter < 0:
            raise ValueError("base, multiplier and jitter must be non-negative")
        self.base = base
        self.multiplier = multiplier
        self.jitter = jitter

    def next_delay(self, attempt: int) -> float:
        _check_attempt(attempt)
        return self.base * self.multiplier ** attempt + self.jitter

    def __repr__(self) -> str:
        return (
            f"ExponentialBackoff(base={self.base}, "
            f"multiplier={self.multiplier}, jitter={self.jitter})"
        )


def default_backoff(
    base: float = 0.5,
    multiplier: float = 2.0,
    jitter: float = 0.05,
) -> ExponentialBackoff:
    """Client fallback policy: 500 ms base, doubling, 50 ms jitter."""
    return ExponentialBackoff(base=base, multiplier=multiplier, jitter=jitter)
