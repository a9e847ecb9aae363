"""Collection engine for lbcollect.

Composes the rate-limit gate, the measurement driver and the coverage
tracker into the collection loops:

    collect_from_location -- pinned-session loop for one (host, location)
    sweep_probes          -- full sweep, one fresh measurement at a time
    sweep_probes_batched  -- full sweep, fixed-size concurrent fan-out
    run_collection        -- every host, sharded across API keys

Each API key gets its own :class:`Shard` (provider, gate, driver) and runs
as a concurrent task; the result writer and coverage tracker are shared.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Sequence

from lbcollect.backoff import RetryPolicy, Sleep, default_sleep
from lbcollect.config import COLLECTION_MODES, COVERAGE_SCOPES, PROGRESS_EVERY, PROTOCOLS
from lbcollect.coverage import CoverageTracker, VantagePointCoverage
from lbcollect.driver import MeasurementDriver
from lbcollect.errors import (
    CollectorError,
    ConfigurationError,
    NoMatchingProbesError,
    ProviderError,
    RateLimitedError,
)
from lbcollect.export import (
    ResultWriter,
    progress_key,
    read_progress,
    result_file_path,
    saved_index,
    write_progress,
)
from lbcollect.gate import RateLimitGate
from lbcollect.local import collect_local
from lbcollect.models import CollectionSummary, CollectorConfig, Probe, TraceResult
from lbcollect.probes import distribute, select_probes, shard_offset
from lbcollect.providers import get_provider
from lbcollect.providers.base import MeasurementProvider
from lbcollect.session import LocationSession, SessionState, SweepCursor

logger = logging.getLogger(__name__)

ProviderFactory = Callable[[str], MeasurementProvider]

# Signature: (progress_key, probe_index, total_probes)
ProgressCallback = Callable[[str, int, int], None]


@dataclass
class Shard:
    """One API key's share of the run."""

    name: str
    gate: RateLimitGate
    driver: MeasurementDriver
    writer: ResultWriter
    coverage: CoverageTracker
    sleep: Sleep = default_sleep

    @property
    def provider(self) -> MeasurementProvider:
        return self.driver.provider


def _log_progress(label: str, done: int, total: int) -> None:
    if done % PROGRESS_EVERY == 0 or done == total:
        logger.info("Progress for %s: %d/%d", label, done, total)


def _persist(shard: Shard, results: list[TraceResult]) -> None:
    """Write *results* and feed them to the shared coverage statistics."""
    shard.writer.append(results)
    for result in results:
        if result.balancer_colocation_center and result.balancer_id:
            shard.coverage.record(result.balancer_colocation_center, result.balancer_id)


# ---------------------------------------------------------------------------
# Pinned-session collection
# ---------------------------------------------------------------------------

async def collect_from_location(
    shard: Shard,
    host: str,
    location: str,
    total_requests: int,
) -> Optional[str]:
    """Collect *total_requests* records for *host* from one probe matching *location*.

    Returns the session (root measurement) id in use at the end. Errors
    creating a root other than a quota rejection propagate to the caller.
    """
    logger.info(
        "Starting collection for %s from %s (Target: %d requests)",
        host,
        location,
        total_requests,
    )
    session = LocationSession(location=location, target=total_requests)

    while not session.done:
        await shard.gate.ensure_capacity()
        if session.needs_root:
            await _create_root(shard, host, session)
        else:
            await _consume_batch(shard, host, session)

    return session.session_id


async def _create_root(shard: Shard, host: str, session: LocationSession) -> None:
    shard.gate.consume()
    try:
        session_id, results = await shard.driver.create_root(host, session.location)
    except RateLimitedError as exc:
        logger.info("Rate limit exceeded creating root measurement for %s. Backing off...", session.location)
        shard.gate.invalidate()
        await shard.driver.back_off(exc)
        return

    _persist(shard, results)
    session.root_created(session_id)
    _log_progress(session.location, session.requests_done, session.target)


async def _consume_batch(shard: Shard, host: str, session: LocationSession) -> None:
    """Spend the locally known quota on requests through the pinned session."""
    logger.info(
        "Rate limit allows %d requests. Proceeding with batch using session %s...",
        shard.gate.remaining,
        session.session_id,
    )
    session.start_batch()

    while shard.gate.remaining > 0 and session.state is SessionState.CONSUMING_BATCH:
        shard.gate.consume()
        try:
            results = await shard.driver.create_in_session(host, session.session_id)
        except RateLimitedError:
            logger.info("Rate limit exceeded during batch. Refreshing limits...")
            shard.gate.invalidate()
            break
        except NoMatchingProbesError:
            logger.info("Root probe unavailable (422). Invalidating session %s...", session.session_id)
            session.invalidate()
            break
        except CollectorError as exc:
            logger.warning("Failed to create measurement from %s for %s: %s", session.location, host, exc)
            await shard.driver.back_off(exc)
            continue

        _persist(shard, results)
        session.result_recorded()
        _log_progress(session.location, session.requests_done, session.target)

    session.end_batch()


# ---------------------------------------------------------------------------
# Full sweep over the probe directory
# ---------------------------------------------------------------------------

class _Pacer:
    """Pause the sweep for a while every N requests."""

    def __init__(self, every: int, seconds: float, sleep: Sleep) -> None:
        self.every = every
        self.seconds = seconds
        self.sleep = sleep
        self.next_pause = every

    async def tick(self, requests_total: int) -> None:
        if self.every <= 0 or requests_total < self.next_pause:
            return
        logger.info("Backing off for %.0fs after %d requests...", self.seconds, requests_total)
        while self.next_pause <= requests_total:
            self.next_pause += self.every
        await self.sleep(self.seconds)


class _Sweep:
    """Shared bookkeeping of the sequential and batched sweeps."""

    def __init__(
        self,
        shard: Shard,
        host: str,
        probes: Sequence[Probe],
        config: CollectorConfig,
        start_index: int,
        on_progress: Optional[ProgressCallback],
    ) -> None:
        self.shard = shard
        self.host = host
        self.probes = probes
        self.on_progress = on_progress
        self.key = progress_key(host, shard.name)
        self.cursor = SweepCursor(
            total=len(probes),
            max_failures=config.max_failures,
            min_requests=config.min_requests,
            max_requests_per_probe=config.max_requests_per_probe,
            index=min(max(start_index, 0), len(probes)),
        )
        self.view: VantagePointCoverage = shard.coverage.view()
        self.pacer = _Pacer(config.pause_every, config.pause_seconds, shard.sleep)
        self.next_log = PROGRESS_EVERY
        logger.info(
            "Starting collection for %s (Target: %d probes, starting at %d)",
            host,
            len(probes),
            self.cursor.index,
        )

    @property
    def probe(self) -> Probe:
        return self.probes[self.cursor.index]

    def record(self, results: list[TraceResult]) -> None:
        self.shard.writer.append(results)
        for result in results:
            self.view.record(result)

    def moved_on(self, reason: str) -> None:
        index, total = self.cursor.progress
        logger.info("%s, moving to next probe %d of %d", reason, index + 1, total)
        self.view = self.shard.coverage.view()
        if self.on_progress:
            self.on_progress(self.key, index, total)

    async def after_request(self) -> None:
        """Log progress every PROGRESS_EVERY requests, then apply the pause schedule."""
        done = self.cursor.requests_total
        if done >= self.next_log:
            index, total = self.cursor.progress
            logger.info("Progress for %s: %d requests, probe %d of %d", self.key, done, min(index + 1, total), total)
            while self.next_log <= done:
                self.next_log += PROGRESS_EVERY
        await self.pacer.tick(done)

    def finished(self) -> None:
        logger.info(
            "Sweep of %s finished: %d requests over %d probes",
            self.key,
            self.cursor.requests_total,
            self.cursor.total,
        )


async def sweep_probes(
    shard: Shard,
    host: str,
    probes: Sequence[Probe],
    config: CollectorConfig,
    start_index: int = 0,
    on_progress: Optional[ProgressCallback] = None,
) -> SweepCursor:
    """Probe every vantage point in *probes* until its coverage is exhausted.

    Each request targets the probe's exact country/city/network. A probe
    is abandoned after ``config.max_failures`` consecutive failures.
    """
    sweep = _Sweep(shard, host, probes, config, start_index, on_progress)
    cursor = sweep.cursor

    while not cursor.done:
        probe = sweep.probe
        await shard.gate.acquire()
        try:
            results = await shard.driver.create_fresh(host, probe)
        except RateLimitedError as exc:
            logger.info("Rate limit exceeded creating measurement for %s", probe.label)
            shard.gate.invalidate()
            await shard.driver.back_off(exc)
            continue
        except CollectorError as exc:
            logger.warning("Measurement for %s from %s failed: %s", host, probe.label, exc)
            if cursor.record_failure():
                sweep.moved_on(f"Max consecutive failures for {probe.label} reached")
            else:
                await shard.driver.back_off(exc, cursor.consecutive_failures - 1)
            await sweep.after_request()
            continue

        sweep.record(results)
        if cursor.record_success(sweep.view.should_continue()):
            sweep.moved_on(f"No new balancer ids from {probe.label}")
        await sweep.after_request()

    sweep.finished()
    return cursor


async def sweep_probes_batched(
    shard: Shard,
    host: str,
    probes: Sequence[Probe],
    config: CollectorConfig,
    start_index: int = 0,
    on_progress: Optional[ProgressCallback] = None,
) -> SweepCursor:
    """Like :func:`sweep_probes`, but issue ``config.batch_size`` requests at once.

    Coverage and the cursor are only updated once the whole batch is back.
    """
    sweep = _Sweep(shard, host, probes, config, start_index, on_progress)
    cursor = sweep.cursor

    while not cursor.done:
        probe = sweep.probe
        available = await shard.gate.ensure_capacity()
        size = max(min(config.batch_size, available), 1)
        shard.gate.consume(size)

        outcomes = await shard.driver.create_batch(host, probe, size)
        errors = [o for o in outcomes if isinstance(o, CollectorError)]
        successes = [o for o in outcomes if not isinstance(o, CollectorError)]
        rate_limited = [e for e in errors if isinstance(e, RateLimitedError)]
        if rate_limited:
            shard.gate.invalidate()

        for results in successes:
            sweep.record(results)

        if successes:
            if cursor.record_success(sweep.view.should_continue(), requests=len(successes)):
                sweep.moved_on(f"No new balancer ids from {probe.label}")
        elif len(rate_limited) == len(errors):
            logger.info("Rate limit exceeded for the whole batch from %s", probe.label)
            await shard.driver.back_off(rate_limited[0])
        else:
            failure = next(e for e in errors if not isinstance(e, RateLimitedError))
            logger.warning("Batch for %s from %s failed: %s", host, probe.label, failure)
            if cursor.record_failure():
                sweep.moved_on(f"Max consecutive failures for {probe.label} reached")
            else:
                await shard.driver.back_off(failure, cursor.consecutive_failures - 1)
        await sweep.after_request()

    sweep.finished()
    return cursor


# ---------------------------------------------------------------------------
# Top-level run
# ---------------------------------------------------------------------------

def validate_config(config: CollectorConfig) -> None:
    """Raise :class:`ConfigurationError` for inputs that make the run impossible."""
    if not config.hosts:
        raise ConfigurationError("No hosts provided")
    if config.mode not in COLLECTION_MODES:
        raise ConfigurationError(f"Unknown mode {config.mode!r}. Available: {', '.join(COLLECTION_MODES)}")
    if config.protocol not in PROTOCOLS:
        raise ConfigurationError(f"Unknown protocol {config.protocol!r}. Available: {', '.join(PROTOCOLS)}")
    if config.runs < 1:
        raise ConfigurationError("Number of runs must be at least 1")
    if config.mode == "local":
        return
    if not config.api_keys:
        raise ConfigurationError("No API keys provided")
    if config.mode == "session" and not config.locations:
        raise ConfigurationError("No locations provided")
    if config.coverage_scope not in COVERAGE_SCOPES:
        raise ConfigurationError(f"Unknown coverage scope {config.coverage_scope!r}")
    if config.batch_size < 1:
        raise ConfigurationError("Batch size must be at least 1")
    if config.max_failures < 1:
        raise ConfigurationError("Max consecutive failures must be at least 1")


def _make_shards(
    config: CollectorConfig,
    providers: list[MeasurementProvider],
    writer: ResultWriter,
    coverage: CoverageTracker,
    policy: Optional[RetryPolicy],
    sleep: Sleep,
) -> list[Shard]:
    shards = []
    for i, provider in enumerate(providers):
        name = f"key{i + 1}"
        label = name if len(providers) > 1 else ""
        shards.append(
            Shard(
                name=name,
                gate=RateLimitGate(provider, policy, sleep, label=label),
                driver=MeasurementDriver(provider, config.protocol, policy=policy, sleep=sleep),
                writer=writer,
                coverage=coverage,
                sleep=sleep,
            )
        )
    return shards


def _open_writer(config: CollectorConfig) -> ResultWriter:
    writer = ResultWriter(result_file_path(config.output_dir))
    writer.write_header()
    logger.info("Saving results to: %s", writer.path)
    return writer


async def _select_sweep_probes(provider: MeasurementProvider, config: CollectorConfig) -> list[Probe]:
    try:
        directory = await provider.list_probes()
    except ProviderError as exc:
        raise ConfigurationError(f"Failed to list probes: {exc}") from exc

    probes = select_probes(directory, config.locations, dedupe=config.dedupe_probes)
    if not probes:
        raise ConfigurationError("No probes match the given locations")
    logger.info("Selected %d of %d probes", len(probes), len(directory))
    return probes


async def run_collection(
    config: CollectorConfig,
    provider_factory: Optional[ProviderFactory] = None,
    coverage: Optional[CoverageTracker] = None,
    policy: Optional[RetryPolicy] = None,
    sleep: Sleep = default_sleep,
) -> CollectionSummary:
    """Run the configured collection for every host and return a summary.

    Raises :class:`ConfigurationError` before any measurement is made (and
    before the result file is created) if the inputs are unusable or the
    probe directory cannot be listed.
    """
    validate_config(config)

    if config.mode == "local":
        writer = _open_writer(config)
        for host in config.hosts:
            writer.append(await collect_local(host, config.runs, config.protocol))
        return CollectionSummary(output_file=str(writer.path), rows_written=writer.rows_written)

    if coverage is None:
        coverage = CoverageTracker(config.min_requests, config.growth_factor, config.coverage_scope)
    if provider_factory is None:
        def provider_factory(key: str) -> MeasurementProvider:
            return get_provider(config.provider, key, sleep=sleep)

    providers = [provider_factory(key) for key in config.api_keys]
    try:
        probes = [] if config.mode == "session" else await _select_sweep_probes(providers[0], config)

        writer = _open_writer(config)
        summary = CollectionSummary(output_file=str(writer.path))
        shards = _make_shards(config, providers, writer, coverage, policy, sleep)
        if config.mode == "session":
            await _run_sessions(shards, config, summary)
        else:
            await _run_sweeps(shards, probes, config, summary)
    finally:
        for provider in providers:
            await provider.aclose()

    summary.rows_written = writer.rows_written
    logger.info("All measurements completed (%d rows)", summary.rows_written)
    return summary


async def _run_sessions(shards: list[Shard], config: CollectorConfig, summary: CollectionSummary) -> None:
    assignments = distribute(config.locations, len(shards))

    async def _run_shard(shard: Shard, host: str, locations: list[str]) -> None:
        for location in locations:
            key = f"{host}|{location}"
            try:
                summary.sessions[key] = await collect_from_location(shard, host, location, config.runs)
            except CollectorError as exc:
                logger.error("Failed to collect from location %s for host %s: %s", location, host, exc)
                summary.failed_locations.append(key)

    for host in config.hosts:
        await asyncio.gather(
            *(_run_shard(s, host, locs) for s, locs in zip(shards, assignments) if locs)
        )


async def _run_sweeps(
    shards: list[Shard],
    probes: list[Probe],
    config: CollectorConfig,
    summary: CollectionSummary,
) -> None:
    sweep: Callable[..., Awaitable[SweepCursor]]
    sweep = sweep_probes_batched if config.mode == "batch" else sweep_probes
    assignments = distribute(probes, len(shards))
    saved = read_progress(config.progress_file) if config.progress_file else {}

    def on_progress(key: str, index: int, total: int) -> None:
        if config.progress_file:
            write_progress(config.progress_file, key, index, total)

    async def _run_shard(shard_no: int, shard: Shard, host: str, assigned: list[Probe]) -> None:
        key = progress_key(host, shard.name)
        # --start-index counts in the full probe list; saved progress is per shard
        start = saved_index(saved, key)
        if start is None:
            start = shard_offset(config.start_index, shard_no, len(shards))
        try:
            await sweep(shard, host, assigned, config, start_index=start, on_progress=on_progress)
        except CollectorError as exc:
            logger.error("Sweep of %s by %s aborted: %s", host, shard.name, exc)
            summary.failed_locations.append(key)

    for host in config.hosts:
        await asyncio.gather(
            *(
                _run_shard(i, s, host, assigned)
                for i, (s, assigned) in enumerate(zip(shards, assignments))
                if assigned
            )
        )
