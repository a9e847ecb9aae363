"""CLI entry point and orchestration for lbcollect."""

from __future__ import annotations

import asyncio
import sys

import click
import httpx

from lbcollect import __version__
from lbcollect.config import (
    BATCH_SIZE,
    COLLECTION_MODES,
    COVERAGE_SCOPES,
    DEFAULT_PROTOCOL,
    GROWTH_FACTOR,
    MAX_CONSECUTIVE_FAILURES,
    MIN_REQUESTS_THRESHOLD,
    PAUSE_EVERY_N_REQUESTS,
    PAUSE_S,
    PROTOCOLS,
    RESULTS_DIR,
)
from lbcollect.models import CollectionSummary, CollectorConfig


def _split(value: str | None) -> list[str]:
    return [v.strip() for v in value.split(",") if v.strip()] if value else []


@click.command()
@click.option("--hosts", default="", help="Comma-separated target hosts (e.g. https://example.com)")
@click.option("--keys", default="", envvar="GLOBALPING_API_KEYS", help="Comma-separated API keys, one shard each")
@click.option("--locations", default="", help="Comma-separated locations (city, country, region, continent or ASN)")
@click.option("-n", "--runs", default=1, help="Requests per location (session and local modes)", show_default=True)
@click.option("--protocol", type=click.Choice(PROTOCOLS, case_sensitive=False), default=DEFAULT_PROTOCOL, show_default=True)
@click.option("-m", "--mode", type=click.Choice(COLLECTION_MODES), default="session", show_default=True)
@click.option("--batch-size", default=BATCH_SIZE, help="Concurrent requests per batch (batch mode)", show_default=True)
@click.option("--min-requests", default=MIN_REQUESTS_THRESHOLD, help="Coverage threshold", show_default=True)
@click.option("--growth-factor", default=GROWTH_FACTOR, help="Threshold growth per unique balancer", show_default=True)
@click.option("--coverage-scope", type=click.Choice(COVERAGE_SCOPES), default="local", show_default=True)
@click.option("--max-failures", default=MAX_CONSECUTIVE_FAILURES, help="Consecutive failures before skipping a probe", show_default=True)
@click.option("--max-per-probe", type=int, default=None, help="Cap on requests per probe (sweep modes)")
@click.option("--pause-every", default=PAUSE_EVERY_N_REQUESTS, help="Pause after this many requests (0 = never)", show_default=True)
@click.option("--pause", "pause_seconds", default=PAUSE_S, help="Pause length in seconds", show_default=True)
@click.option("--all-probes", is_flag=True, help="Keep probes sharing a city and network")
@click.option("--start-index", default=0, help="Position in the selected probe list to start the sweep at", show_default=True)
@click.option("--progress-file", default=None, help="JSON file recording sweep progress for resuming")
@click.option("-o", "--output-dir", default=RESULTS_DIR, help="Directory for result files", show_default=True)
@click.option("--submit-url", default=None, help="POST discovered balancers to this endpoint after the run")
@click.option("-q", "--quiet", is_flag=True, help="Only log warnings and errors")
@click.option("-v", "--verbose", is_flag=True, help="Debug logging")
@click.version_option(version=__version__)
def main(
    hosts: str,
    keys: str,
    locations: str,
    runs: int,
    protocol: str,
    mode: str,
    batch_size: int,
    min_requests: int,
    growth_factor: float,
    coverage_scope: str,
    max_failures: int,
    max_per_probe: int | None,
    pause_every: int,
    pause_seconds: float,
    all_probes: bool,
    start_index: int,
    progress_file: str | None,
    output_dir: str,
    submit_url: str | None,
    quiet: bool,
    verbose: bool,
) -> None:
    """Enumerate the load balancers behind an edge network.

    Requests HOST/cdn-cgi/trace from distributed Globalping probes and
    records which balancer and colocation served each request.
    """
    from lbcollect.display import render_error, setup_logging
    from lbcollect.errors import ConfigurationError

    setup_logging(verbose=verbose, quiet=quiet)

    config = CollectorConfig(
        hosts=_split(hosts),
        api_keys=_split(keys),
        locations=_split(locations),
        runs=runs,
        protocol=protocol.upper(),
        mode=mode,
        batch_size=batch_size,
        output_dir=output_dir,
        min_requests=min_requests,
        growth_factor=growth_factor,
        coverage_scope=coverage_scope,
        max_failures=max_failures,
        max_requests_per_probe=max_per_probe,
        pause_every=pause_every,
        pause_seconds=pause_seconds,
        dedupe_probes=not all_probes,
        start_index=start_index,
        progress_file=progress_file,
        submit_url=submit_url,
        verbose=verbose,
        quiet=quiet,
    )

    try:
        asyncio.run(_run(config))
    except ConfigurationError as exc:
        render_error(str(exc))
        sys.exit(1)
    except KeyboardInterrupt:
        from lbcollect.display import console
        console.print("\n[yellow]Interrupted.[/yellow]")
        sys.exit(130)


async def _run(config: CollectorConfig) -> CollectionSummary:
    """Main async orchestration."""
    from lbcollect.coverage import CoverageTracker
    from lbcollect.display import render_summary, render_warning
    from lbcollect.engine import run_collection
    from lbcollect.export import read_results, submit_results

    coverage = CoverageTracker(config.min_requests, config.growth_factor, config.coverage_scope)
    summary = await run_collection(config, coverage=coverage)

    if config.submit_url and summary.output_file:
        try:
            await submit_results(config.submit_url, read_results(summary.output_file))
        except httpx.HTTPError as exc:
            render_warning(f"Submitting results to {config.submit_url} failed: {exc}")

    if not config.quiet:
        render_summary(summary, coverage)
    return summary


if __name__ == "__main__":
    main()
