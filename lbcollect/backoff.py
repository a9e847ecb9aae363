"""Backoff policies for waits between collector retries.

Every wait in the collector goes through a policy object and an injected
``sleep`` coroutine, so tests can substitute a virtual clock.
"""

from __future__ import annotations

import abc
import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional

from lbcollect.config import (
    CREATE_ERROR_S,
    LIMITS_RETRY_S,
    QUOTA_REJECTED_S,
    RESET_MARGIN_S,
)

# Signature of asyncio.sleep
Sleep = Callable[[float], Awaitable[None]]

default_sleep: Sleep = asyncio.sleep


class BackoffPolicy(abc.ABC):
    """Maps a retry attempt to a delay in seconds."""

    @abc.abstractmethod
    def delay(self, attempt: int = 0, reset_seconds: Optional[float] = None) -> float:
        """Seconds to wait before retry number *attempt* (0-based).

        *reset_seconds* is the provider's own replenishment hint, when known.
        """


@dataclass(frozen=True)
class FixedBackoff(BackoffPolicy):
    """Same delay every time, retried forever."""

    seconds: float

    def delay(self, attempt: int = 0, reset_seconds: Optional[float] = None) -> float:
        return self.seconds


@dataclass(frozen=True)
class CappedBackoff(BackoffPolicy):
    """Exponential growth from *base*, never above *cap*."""

    base: float
    cap: float
    factor: float = 2.0

    def delay(self, attempt: int = 0, reset_seconds: Optional[float] = None) -> float:
        return min(self.cap, self.base * self.factor ** max(attempt, 0))


@dataclass(frozen=True)
class ResetBackoff(BackoffPolicy):
    """Wait for the provider's reset window plus a margin.

    Falls back to *fallback* seconds when the provider gave no hint.
    """

    margin: float = RESET_MARGIN_S
    fallback: float = LIMITS_RETRY_S

    def delay(self, attempt: int = 0, reset_seconds: Optional[float] = None) -> float:
        if reset_seconds is None:
            return self.fallback
        return max(reset_seconds, 0.0) + self.margin


@dataclass(frozen=True)
class RetryPolicy:
    """The set of waits used by the gate and the driver."""

    limits_unavailable: BackoffPolicy = field(default_factory=lambda: FixedBackoff(LIMITS_RETRY_S))
    quota_exhausted: BackoffPolicy = field(default_factory=ResetBackoff)
    quota_rejected: BackoffPolicy = field(default_factory=lambda: FixedBackoff(QUOTA_REJECTED_S))
    create_failed: BackoffPolicy = field(default_factory=lambda: FixedBackoff(CREATE_ERROR_S))
