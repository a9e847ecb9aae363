"""Globalping measurement provider.

Talks to the public REST API at https://api.globalping.io/v1:

    POST /measurements          create (202 -> {"id": ...})
    GET  /measurements/{id}     poll until status != "in-progress"
    GET  /limits                rateLimit.measurements.create
    GET  /probes                online probe directory
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from lbcollect.backoff import Sleep, default_sleep
from lbcollect.config import GLOBALPING_API_URL, HTTP_TIMEOUT_S, POLL_INTERVAL_S, USER_AGENT
from lbcollect.errors import (
    MeasurementCreateError,
    NoMatchingProbesError,
    ProviderError,
    RateLimitedError,
)
from lbcollect.models import (
    Measurement,
    MeasurementRequest,
    Probe,
    ProbeMeasurement,
    RateLimitState,
    TimingBreakdown,
)
from lbcollect.providers.base import MeasurementProvider

logger = logging.getLogger(__name__)

IN_PROGRESS = "in-progress"


class GlobalpingProvider(MeasurementProvider):
    """Globalping API client bound to one (optional) API token."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: str = GLOBALPING_API_URL,
        timeout: float = HTTP_TIMEOUT_S,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        poll_interval: float = POLL_INTERVAL_S,
        sleep: Sleep = default_sleep,
    ) -> None:
        headers = {"User-Agent": USER_AGENT, "Accept": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers=headers,
            timeout=httpx.Timeout(timeout),
            transport=transport,
        )
        self.poll_interval = poll_interval
        self.sleep = sleep

    @property
    def name(self) -> str:
        return "Globalping"

    async def create_measurement(self, request: MeasurementRequest) -> str:
        try:
            response = await self._client.post("/measurements", json=_request_body(request))
        except httpx.HTTPError as exc:
            raise MeasurementCreateError(f"Measurement request failed: {exc}") from exc

        if response.is_success:
            try:
                return str(response.json()["id"])
            except (ValueError, KeyError, TypeError) as exc:
                raise MeasurementCreateError(
                    f"Unexpected create response: {response.text[:200]!r}",
                    response.status_code,
                ) from exc

        error_type, message = _error_details(response)
        if response.status_code == 429 or error_type == "rate_limit_exceeded":
            raise RateLimitedError(message, response.status_code, error_type)
        if response.status_code == 422:
            raise NoMatchingProbesError(message, response.status_code, error_type)
        raise MeasurementCreateError(message, response.status_code, error_type)

    async def await_measurement(self, measurement_id: str) -> Measurement:
        while True:
            data = await self._get_json(f"/measurements/{measurement_id}")
            if not isinstance(data, dict):
                raise ProviderError(f"Unexpected measurement payload: {data!r}")
            if data.get("status") != IN_PROGRESS:
                try:
                    return _parse_measurement(data)
                except (AttributeError, TypeError, ValueError) as exc:
                    raise ProviderError(f"Malformed measurement {measurement_id}: {exc}") from exc
            await self.sleep(self.poll_interval)

    async def get_limits(self) -> RateLimitState:
        data = await self._get_json("/limits")
        try:
            create = data["rateLimit"]["measurements"]["create"]
            return RateLimitState(
                remaining=int(create["remaining"]),
                reset_seconds=float(create["reset"]),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise ProviderError(f"Unexpected limits payload: {data!r}") from exc

    async def list_probes(self) -> list[Probe]:
        data = await self._get_json("/probes")
        if not isinstance(data, list):
            raise ProviderError(f"Unexpected probe list payload: {str(data)[:200]!r}")
        try:
            return [_parse_probe(item.get("location") or {}, item.get("tags")) for item in data]
        except (AttributeError, TypeError, ValueError) as exc:
            raise ProviderError(f"Malformed probe list: {exc}") from exc

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _get_json(self, path: str) -> Any:
        try:
            response = await self._client.get(path)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as exc:
            raise ProviderError(
                f"GET {path} returned {exc.response.status_code}",
                exc.response.status_code,
            ) from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise ProviderError(f"GET {path} failed: {exc}") from exc


def _request_body(request: MeasurementRequest) -> dict:
    if request.reuses_session:
        locations: Any = request.locations
    else:
        locations = [spec.to_payload() for spec in request.locations]
    return {
        "type": "http",
        "target": request.target,
        "locations": locations,
        "measurementOptions": {
            "request": {"path": request.path, "method": request.method},
            "protocol": request.protocol,
        },
    }


def _error_details(response: httpx.Response) -> tuple[Optional[str], str]:
    """Extract (type, message) from an API error payload."""
    try:
        error = response.json().get("error", {})
    except ValueError:
        error = {}
    message = error.get("message") or f"HTTP {response.status_code}"
    return error.get("type"), message


def _parse_probe(location: dict, tags: Optional[list] = None) -> Probe:
    asn = location.get("asn")
    return Probe(
        country=location.get("country"),
        city=location.get("city"),
        region=location.get("region"),
        continent=location.get("continent"),
        network=location.get("network"),
        asn=int(asn) if asn is not None else None,
        state=location.get("state"),
        tags=tuple(tags or ()),
    )


def _parse_timings(timings: Optional[dict]) -> TimingBreakdown:
    timings = timings or {}
    return TimingBreakdown(
        total_ms=timings.get("total"),
        dns_ms=timings.get("dns"),
        tcp_ms=timings.get("tcp"),
        tls_ms=timings.get("tls"),
        first_byte_ms=timings.get("firstByte"),
        download_ms=timings.get("download"),
    )


def _parse_measurement(data: dict) -> Measurement:
    results = []
    for item in data.get("results") or []:
        result = item.get("result") or {}
        results.append(
            ProbeMeasurement(
                probe=_parse_probe(item.get("probe") or {}),
                status=result.get("status", "unknown"),
                raw_body=result.get("rawBody"),
                status_code=result.get("statusCode"),
                timings=_parse_timings(result.get("timings")),
            )
        )
    return Measurement(id=str(data.get("id")), status=data.get("status", "unknown"), results=results)
