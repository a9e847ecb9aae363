"""Measurement driver: create trace measurements and turn them into records.

Three ways of addressing vantage points:

  root        -- free-text location, one probe; the measurement id becomes
                 a pinned session for later requests
  in-session  -- reuse a root measurement's probe by passing its id
  fresh       -- an explicit country/city/network triple, no session

Creation failures surface as :mod:`lbcollect.errors` exceptions; the
caller decides whether to retry, re-root or give up.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from typing import Optional, Sequence, Union

from lbcollect.backoff import RetryPolicy, Sleep, default_sleep
from lbcollect.config import DEFAULT_PROTOCOL, TRACE_PATH
from lbcollect.errors import CollectorError, MeasurementFailedError, RateLimitedError
from lbcollect.models import (
    LocationSpec,
    Measurement,
    MeasurementRequest,
    Probe,
    ProbeMeasurement,
    TraceResult,
)
from lbcollect.parser import parse_trace, target_hostname
from lbcollect.providers.base import MeasurementProvider

logger = logging.getLogger(__name__)

FINISHED = "finished"

# One entry per fan-out slot: the records, or the error that slot hit
BatchOutcome = Union[list[TraceResult], CollectorError]


class MeasurementDriver:
    """Creates measurements on one provider and awaits their results."""

    def __init__(
        self,
        provider: MeasurementProvider,
        protocol: str = DEFAULT_PROTOCOL,
        path: str = TRACE_PATH,
        policy: Optional[RetryPolicy] = None,
        sleep: Sleep = default_sleep,
    ) -> None:
        self.provider = provider
        self.protocol = protocol
        self.path = path
        self.policy = policy or RetryPolicy()
        self.sleep = sleep

    async def create_root(self, host: str, location: str) -> tuple[str, list[TraceResult]]:
        """Measure from one probe matching *location*; return (session id, records)."""
        logger.info("Creating root measurement for %s...", location)
        measurement_id, results = await self._create_and_await(
            host, (LocationSpec(magic=location, limit=1),)
        )
        logger.info("Root measurement created: %s", measurement_id)
        return measurement_id, results

    async def create_in_session(self, host: str, session_id: str) -> list[TraceResult]:
        """Measure again through the probe pinned by *session_id*."""
        _, results = await self._create_and_await(host, session_id)
        return results

    async def create_fresh(self, host: str, probe: Probe) -> list[TraceResult]:
        """Measure from exactly the vantage point described by *probe*."""
        logger.debug("Creating measurement for %s...", probe.label)
        _, results = await self._create_and_await(host, (LocationSpec.for_probe(probe),))
        return results

    async def create_batch(self, host: str, probe: Probe, size: int) -> list[BatchOutcome]:
        """Fan out *size* concurrent fresh measurements against *probe*.

        Collector errors are returned in place of that slot's records; any
        other exception propagates.
        """
        outcomes = await asyncio.gather(
            *(self.create_fresh(host, probe) for _ in range(size)),
            return_exceptions=True,
        )
        for outcome in outcomes:
            if isinstance(outcome, BaseException) and not isinstance(outcome, CollectorError):
                raise outcome
        return list(outcomes)

    async def back_off(self, exc: CollectorError, attempt: int = 0) -> None:
        """Sleep for the delay the retry policy assigns to *exc*."""
        if isinstance(exc, RateLimitedError):
            wait = self.policy.quota_rejected.delay(attempt)
        else:
            wait = self.policy.create_failed.delay(attempt)
        await self.sleep(wait)

    async def _create_and_await(
        self,
        host: str,
        locations: Union[Sequence[LocationSpec], str],
    ) -> tuple[str, list[TraceResult]]:
        request = MeasurementRequest(
            target=target_hostname(host),
            path=self.path,
            protocol=self.protocol,
            locations=locations if isinstance(locations, str) else tuple(locations),
        )
        measurement_id = await self.provider.create_measurement(request)
        measurement = await self.provider.await_measurement(measurement_id)
        return measurement_id, collect_results(measurement)


def collect_results(measurement: Measurement) -> list[TraceResult]:
    """Parse every probe's trace body and attach the probe identity and timings.

    Raises :class:`MeasurementFailedError` if the measurement (or any probe
    result) did not finish, or finished with no body.
    """
    if measurement.status != FINISHED:
        raise MeasurementFailedError(
            f"Measurement {measurement.id} ended with status {measurement.status!r}",
            measurement.id,
        )
    if not measurement.results:
        raise MeasurementFailedError(f"Measurement {measurement.id} has no results", measurement.id)

    records = []
    for probe_result in measurement.results:
        if probe_result.status != FINISHED:
            raise MeasurementFailedError(
                f"Probe {probe_result.probe.label} ended with status {probe_result.status!r}",
                measurement.id,
            )
        if not probe_result.raw_body:
            raise MeasurementFailedError(
                f"Probe {probe_result.probe.label} returned an empty body",
                measurement.id,
            )
        records.append(enrich(parse_trace(probe_result.raw_body), probe_result))
    return records


def enrich(result: TraceResult, probe_result: ProbeMeasurement) -> TraceResult:
    """Fill the vantage-point and timing columns from the provider's response."""
    probe = probe_result.probe
    timings = probe_result.timings
    return replace(
        result,
        client_country=probe.country,
        client_city=probe.city,
        client_asn=probe.asn,
        client_network=probe.network,
        latency_total=timings.total_ms,
        latency_dns=timings.dns_ms,
        latency_tcp=timings.tcp_ms,
        latency_tls=timings.tls_ms,
        latency_first_byte=timings.first_byte_ms,
        latency_download=timings.download_ms,
    )
