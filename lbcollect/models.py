"""Data models for lbcollect."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Union

from lbcollect.config import (
    BATCH_SIZE,
    DEFAULT_PROTOCOL,
    DEFAULT_PROVIDER,
    GROWTH_FACTOR,
    MAX_CONSECUTIVE_FAILURES,
    MIN_REQUESTS_THRESHOLD,
    PAUSE_EVERY_N_REQUESTS,
    PAUSE_S,
    RESULTS_DIR,
)


@dataclass(frozen=True)
class TraceResult:
    """One probe-to-backend observation.

    Field order is the column order of the output file.
    """

    timestamp: Optional[str] = None
    balancer_id: Optional[str] = None
    balancer_ip: Optional[str] = None
    balancer_country: Optional[str] = None
    balancer_colocation_center: Optional[str] = None
    target_domain: Optional[str] = None
    scheme: Optional[str] = None
    http_version: Optional[str] = None
    tls_version: Optional[str] = None
    client_country: Optional[str] = None
    client_city: Optional[str] = None
    client_asn: Optional[int] = None
    client_network: Optional[str] = None
    latency_total: Optional[float] = None
    latency_dns: Optional[float] = None
    latency_tcp: Optional[float] = None
    latency_tls: Optional[float] = None
    latency_first_byte: Optional[float] = None
    latency_download: Optional[float] = None


@dataclass
class TimingBreakdown:
    """Per-phase timing reported by the provider, in milliseconds."""

    total_ms: Optional[float] = None
    dns_ms: Optional[float] = None
    tcp_ms: Optional[float] = None
    tls_ms: Optional[float] = None
    first_byte_ms: Optional[float] = None
    download_ms: Optional[float] = None


@dataclass(frozen=True)
class Probe:
    """A vantage point from the provider's directory."""

    country: Optional[str] = None
    city: Optional[str] = None
    region: Optional[str] = None
    continent: Optional[str] = None
    network: Optional[str] = None
    asn: Optional[int] = None
    state: Optional[str] = None
    tags: tuple[str, ...] = ()

    @property
    def label(self) -> str:
        return f"{self.city or '?'} - {self.network or '?'}"

    @property
    def location_key(self) -> tuple[Optional[str], Optional[str]]:
        return (self.city, self.network)

    def matches(self, selector: str) -> bool:
        """True if *selector* names this probe's ASN, city, country, region or continent."""
        return selector in (
            str(self.asn) if self.asn is not None else None,
            self.city,
            self.country,
            self.region,
            self.continent,
        )


@dataclass(frozen=True)
class LocationSpec:
    """Where a measurement should run.

    Either a free-text ``magic`` selector, or an explicit
    country/city/network triple pinning one vantage point.
    """

    magic: Optional[str] = None
    country: Optional[str] = None
    city: Optional[str] = None
    network: Optional[str] = None
    limit: int = 1

    @classmethod
    def for_probe(cls, probe: Probe) -> LocationSpec:
        return cls(country=probe.country, city=probe.city, network=probe.network)

    def to_payload(self) -> dict:
        payload: dict = {}
        for key in ("magic", "country", "city", "network"):
            value = getattr(self, key)
            if value is not None:
                payload[key] = value
        payload["limit"] = self.limit
        return payload


@dataclass(frozen=True)
class MeasurementRequest:
    """A single HTTP measurement creation request.

    ``locations`` is either a list of location specs or the id of a
    previous measurement whose probes should be reused.
    """

    target: str
    path: str
    protocol: str = DEFAULT_PROTOCOL
    method: str = "GET"
    locations: Union[tuple[LocationSpec, ...], str] = ()

    @property
    def reuses_session(self) -> bool:
        return isinstance(self.locations, str)


@dataclass
class ProbeMeasurement:
    """Result reported by one probe of a measurement."""

    probe: Probe
    status: str
    raw_body: Optional[str] = None
    status_code: Optional[int] = None
    timings: TimingBreakdown = field(default_factory=TimingBreakdown)


@dataclass
class Measurement:
    """A measurement in a terminal (or polled) state."""

    id: str
    status: str
    results: list[ProbeMeasurement] = field(default_factory=list)


@dataclass(frozen=True)
class RateLimitState:
    """Authoritative creation quota at the moment of the check."""

    remaining: int
    reset_seconds: float


@dataclass
class CollectorConfig:
    """Configuration for a collection run."""

    hosts: list[str] = field(default_factory=list)
    api_keys: list[str] = field(default_factory=list)
    locations: list[str] = field(default_factory=list)
    runs: int = 1
    protocol: str = DEFAULT_PROTOCOL
    mode: str = "session"
    provider: str = DEFAULT_PROVIDER
    batch_size: int = BATCH_SIZE
    output_dir: str = RESULTS_DIR
    min_requests: int = MIN_REQUESTS_THRESHOLD
    growth_factor: float = GROWTH_FACTOR
    coverage_scope: str = "local"
    max_failures: int = MAX_CONSECUTIVE_FAILURES
    max_requests_per_probe: Optional[int] = None
    pause_every: int = PAUSE_EVERY_N_REQUESTS
    pause_seconds: float = PAUSE_S
    dedupe_probes: bool = True
    start_index: int = 0
    progress_file: Optional[str] = None
    submit_url: Optional[str] = None
    verbose: bool = False
    quiet: bool = False


@dataclass
class CollectionSummary:
    """What a finished run produced."""

    output_file: Optional[str] = None
    rows_written: int = 0
    failed_locations: list[str] = field(default_factory=list)
    sessions: dict[str, Optional[str]] = field(default_factory=dict)
