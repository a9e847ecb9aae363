"""Measurement provider registry."""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from lbcollect.providers.base import MeasurementProvider

_PROVIDER_MAP: dict[str, type[MeasurementProvider]] | None = None


def _load_providers() -> dict[str, type[MeasurementProvider]]:
    from lbcollect.providers.globalping import GlobalpingProvider

    return {
        "globalping": GlobalpingProvider,
    }


def get_provider_map() -> dict[str, type[MeasurementProvider]]:
    """Return the mapping of slug → provider class, loading lazily."""
    global _PROVIDER_MAP
    if _PROVIDER_MAP is None:
        _PROVIDER_MAP = _load_providers()
    return _PROVIDER_MAP


def get_provider(slug: str, api_key: Optional[str] = None, **kwargs) -> MeasurementProvider:
    """Instantiate a provider by slug, bound to *api_key*."""
    pmap = get_provider_map()
    if slug not in pmap:
        raise ValueError(f"Unknown provider: {slug!r}. Available: {list(pmap)}")
    return pmap[slug](api_key, **kwargs)


def list_providers() -> list[str]:
    """Return sorted list of available provider slugs."""
    return sorted(get_provider_map())
