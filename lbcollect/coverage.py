"""Adaptive stopping rule for backend discovery.

Statistics are kept per colocation (the edge's cluster code) and shared by
every vantage point: a balancer seen from one probe is not new when seen
from another. The decision to abandon a vantage point, however, only
looks at the colocations that vantage point itself has reached (unless
the tracker runs with ``scope="global"``).

A colocation is covered once more than ``max(min_requests,
growth_factor * unique_balancers)`` consecutive observations produced no
new balancer id, so clusters with many backends need proportionally more
confirmation.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Iterable, Optional

from lbcollect.config import GROWTH_FACTOR, MIN_REQUESTS_THRESHOLD
from lbcollect.models import TraceResult


@dataclass
class ColocationStats:
    """Discovery state of one colocation."""

    unique_balancers: set[str] = field(default_factory=set)
    requests_since_last_new: int = 0

    def observe(self, balancer_id: str) -> bool:
        """Count one observation; return True if *balancer_id* was new."""
        if balancer_id in self.unique_balancers:
            self.requests_since_last_new += 1
            return False
        self.unique_balancers.add(balancer_id)
        self.requests_since_last_new = 0
        return True

    def threshold(self, min_requests: int, growth_factor: float) -> float:
        return max(min_requests, growth_factor * len(self.unique_balancers))

    def is_covered(
        self,
        min_requests: int = MIN_REQUESTS_THRESHOLD,
        growth_factor: float = GROWTH_FACTOR,
    ) -> bool:
        return self.requests_since_last_new > self.threshold(min_requests, growth_factor)


class CoverageTracker:
    """Colocation statistics shared by every collection task of a run.

    Updates are synchronous and guarded by a lock, so a read-modify-write
    for one colocation never interleaves with another task's.
    """

    def __init__(
        self,
        min_requests: int = MIN_REQUESTS_THRESHOLD,
        growth_factor: float = GROWTH_FACTOR,
        scope: str = "local",
    ) -> None:
        if scope not in ("local", "global"):
            raise ValueError(f"Unknown coverage scope: {scope!r}")
        self.min_requests = min_requests
        self.growth_factor = growth_factor
        self.scope = scope
        self._stats: dict[str, ColocationStats] = {}
        self._lock = threading.Lock()

    def record(self, colocation: str, balancer_id: str) -> bool:
        """Record one observation; return True if the balancer was new."""
        with self._lock:
            stats = self._stats.get(colocation)
            if stats is None:
                stats = self._stats[colocation] = ColocationStats()
            return stats.observe(balancer_id)

    def is_covered(self, colocation: str) -> bool:
        with self._lock:
            stats = self._stats.get(colocation)
            if stats is None:
                return False
            return stats.is_covered(self.min_requests, self.growth_factor)

    def any_uncovered(self, colocations: Iterable[str]) -> bool:
        return any(not self.is_covered(colo) for colo in colocations)

    def stats(self, colocation: str) -> Optional[ColocationStats]:
        with self._lock:
            stats = self._stats.get(colocation)
            if stats is None:
                return None
            return ColocationStats(set(stats.unique_balancers), stats.requests_since_last_new)

    def colocations(self) -> list[str]:
        with self._lock:
            return sorted(self._stats)

    def snapshot(self) -> dict[str, ColocationStats]:
        """Copies of every colocation's stats, keyed by colocation."""
        return {colo: self.stats(colo) for colo in self.colocations()}

    @property
    def total_balancers(self) -> int:
        with self._lock:
            return sum(len(s.unique_balancers) for s in self._stats.values())

    def view(self) -> VantagePointCoverage:
        """A fresh per-vantage-point view onto this tracker."""
        return VantagePointCoverage(self)


class VantagePointCoverage:
    """What one vantage point has reached, and whether it is worth probing further."""

    def __init__(self, tracker: CoverageTracker) -> None:
        self.tracker = tracker
        self.seen_colocations: set[str] = set()
        self.new_balancers = 0

    def record(self, result: TraceResult) -> bool:
        """Record *result*; return True while probing should continue.

        Results without a balancer id or colocation carry no discovery
        information and are not recorded.
        """
        colo = result.balancer_colocation_center
        balancer_id = result.balancer_id
        if colo and balancer_id:
            self.seen_colocations.add(colo)
            if self.tracker.record(colo, balancer_id):
                self.new_balancers += 1
        return self.should_continue()

    def should_continue(self) -> bool:
        if self.tracker.scope == "global":
            return self.tracker.any_uncovered(self.tracker.colocations())
        return self.tracker.any_uncovered(self.seen_colocations)
