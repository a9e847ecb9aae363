"""Exception hierarchy for lbcollect."""

from __future__ import annotations

from typing import Optional


class CollectorError(Exception):
    """Base class for every error raised by the collector."""


class ConfigurationError(CollectorError):
    """Required inputs are missing or invalid; the run cannot start."""


class ProviderError(CollectorError):
    """The measurement provider could not be reached or answered badly."""

    def __init__(self, message: str, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status


class MeasurementCreateError(ProviderError):
    """The provider rejected a measurement creation request."""

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        error_type: Optional[str] = None,
    ) -> None:
        super().__init__(message, status)
        self.error_type = error_type


class RateLimitedError(MeasurementCreateError):
    """Creation quota is exhausted."""


class NoMatchingProbesError(MeasurementCreateError):
    """No probe matches the location (HTTP 422); a pinned session is gone."""


class MeasurementFailedError(CollectorError):
    """A measurement finished without a usable trace body."""

    def __init__(self, message: str, measurement_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.measurement_id = measurement_id
