"""Abstract base class for measurement providers."""

from __future__ import annotations

import abc

from lbcollect.models import Measurement, MeasurementRequest, Probe, RateLimitState


class MeasurementProvider(abc.ABC):
    """A remote network that runs HTTP measurements from its probes."""

    @property
    @abc.abstractmethod
    def name(self) -> str:
        """Human-readable provider name (e.g. 'Globalping')."""

    @abc.abstractmethod
    async def create_measurement(self, request: MeasurementRequest) -> str:
        """Create a measurement and return its id.

        Raises :class:`~lbcollect.errors.RateLimitedError` when the creation
        quota is exhausted, :class:`~lbcollect.errors.NoMatchingProbesError`
        when no probe matches the requested location (or the reused
        measurement's probes are gone), and
        :class:`~lbcollect.errors.MeasurementCreateError` otherwise.
        """

    @abc.abstractmethod
    async def await_measurement(self, measurement_id: str) -> Measurement:
        """Wait until the measurement is no longer in progress."""

    @abc.abstractmethod
    async def get_limits(self) -> RateLimitState:
        """Current creation quota for this credential."""

    @abc.abstractmethod
    async def list_probes(self) -> list[Probe]:
        """Every probe currently online."""

    async def aclose(self) -> None:
        """Release network resources."""
