"""Vantage-point selection and sharding."""

from __future__ import annotations

from typing import Iterable, Optional, Sequence, TypeVar

from lbcollect.models import Probe

T = TypeVar("T")


def filter_probes(probes: Iterable[Probe], selector: Optional[str]) -> list[Probe]:
    """Probes whose ASN, city, country, region or continent equals *selector*.

    A missing selector keeps every probe.
    """
    if not selector:
        return list(probes)
    return [p for p in probes if p.matches(selector)]


def unique_probes(probes: Iterable[Probe]) -> list[Probe]:
    """Keep the first probe of each (city, network) pair, preserving order."""
    seen: set[tuple[Optional[str], Optional[str]]] = set()
    unique = []
    for probe in probes:
        if probe.location_key in seen:
            continue
        seen.add(probe.location_key)
        unique.append(probe)
    return unique


def select_probes(
    probes: Sequence[Probe],
    selectors: Sequence[str],
    dedupe: bool = True,
) -> list[Probe]:
    """Apply every selector (or none) and optionally drop redundant vantage points."""
    if selectors:
        selected: list[Probe] = []
        for selector in selectors:
            selected.extend(filter_probes(probes, selector))
    else:
        selected = list(probes)
    return unique_probes(selected) if dedupe else selected


def distribute(items: Sequence[T], count: int) -> list[list[T]]:
    """Split *items* round-robin into *count* shards (some may be empty)."""
    if count < 1:
        raise ValueError("shard count must be at least 1")
    return [list(items[i::count]) for i in range(count)]


def shard_offset(index: int, shard: int, count: int) -> int:
    """Position in shard *shard*'s slice of the first item at or after global *index*.

    Inverse of :func:`distribute`: shard ``i`` holds items ``i, i + count, ...``.
    """
    if index <= shard:
        return 0
    return (index - shard + count - 1) // count
