"""CSV persistence, progress files and downstream submission."""

from __future__ import annotations

import csv
import json
import logging
import os
import time
from dataclasses import fields
from pathlib import Path
from typing import Iterable, Optional, Union

import httpx

from lbcollect.config import HTTP_TIMEOUT_S, NULL_MARKER, USER_AGENT
from lbcollect.models import TraceResult

logger = logging.getLogger(__name__)

# Header names of the output file, in TraceResult field order
CSV_COLUMNS = [
    "timestamp",
    "balancerId",
    "balancerIp",
    "balancerCountry",
    "balancerColocationCenter",
    "targetDomain",
    "scheme",
    "httpVersion",
    "tlsVersion",
    "clientCountry",
    "clientCity",
    "clientAsn",
    "clientNetwork",
    "latencyTotal",
    "latencyDNS",
    "latencyTCP",
    "latencyTLS",
    "latencyFirstByte",
    "latencyDownload",
]

_FIELD_NAMES = [f.name for f in fields(TraceResult)]


def result_file_path(directory: Union[str, Path]) -> Path:
    """A fresh ``<epoch-ms>_results.csv`` path under *directory*, created if needed."""
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / f"{int(time.time() * 1000)}_results.csv"
    suffix = 1
    while path.exists():
        path = directory / f"{int(time.time() * 1000)}_{suffix}_results.csv"
        suffix += 1
    return path


def to_row(result: TraceResult) -> list[str]:
    """Serialize every field of *result*, missing ones as the null marker."""
    row = []
    for name in _FIELD_NAMES:
        value = getattr(result, name)
        row.append(NULL_MARKER if value is None else str(value))
    return row


class ResultWriter:
    """Append-only CSV sink shared by every collection task of a run."""

    def __init__(self, path: Union[str, Path]) -> None:
        self.path = Path(path)
        self.rows_written = 0

    def write_header(self) -> None:
        """Write the header unless the file already has content."""
        if self.path.exists() and self.path.stat().st_size > 0:
            return
        with open(self.path, "a", newline="") as f:
            csv.writer(f).writerow(CSV_COLUMNS)

    def append(self, results: Iterable[TraceResult]) -> int:
        rows = [to_row(r) for r in results]
        if not rows:
            return 0
        with open(self.path, "a", newline="") as f:
            csv.writer(f).writerows(rows)
        self.rows_written += len(rows)
        return len(rows)


# ---------------------------------------------------------------------------
# Sweep progress (best effort, for resuming after a restart)
# ---------------------------------------------------------------------------

def progress_key(host: str, shard: str) -> str:
    return f"{host}|{shard}"


def read_progress(path: Union[str, Path]) -> dict[str, dict]:
    try:
        with open(path) as f:
            data = json.load(f)
    except FileNotFoundError:
        return {}
    except (OSError, json.JSONDecodeError) as exc:
        logger.warning("Ignoring unreadable progress file %s: %s", path, exc)
        return {}
    if not isinstance(data, dict):
        logger.warning("Ignoring progress file %s: expected an object, got %s", path, type(data).__name__)
        return {}
    return data


def saved_index(progress: dict, key: str) -> Optional[int]:
    """The recorded probe index for *key*, or None if absent or malformed."""
    entry = progress.get(key)
    if not isinstance(entry, dict):
        return None
    index = entry.get("index")
    if isinstance(index, bool) or not isinstance(index, int) or index < 0:
        return None
    return index


def write_progress(path: Union[str, Path], key: str, index: int, total: int) -> None:
    """Record the sweep position for *key*; failures are logged, not raised."""
    data = read_progress(path)
    data[key] = {"index": index, "total": total}
    tmp = f"{path}.tmp"
    try:
        with open(tmp, "w") as f:
            json.dump(data, f, indent=2)
        os.replace(tmp, path)
    except OSError as exc:
        logger.warning("Could not write progress file %s: %s", path, exc)


# ---------------------------------------------------------------------------
# Submission to the shared load-balancer dataset
# ---------------------------------------------------------------------------

def to_submission(results: Iterable[TraceResult]) -> list[dict[str, str]]:
    """Distinct ``{id, ipAddress, country, colocationCenter}`` records.

    Results missing any of the four fields are skipped.
    """
    records: dict[str, dict[str, str]] = {}
    for r in results:
        if not (r.balancer_id and r.balancer_ip and r.balancer_country and r.balancer_colocation_center):
            continue
        records.setdefault(
            r.balancer_id,
            {
                "id": r.balancer_id,
                "ipAddress": r.balancer_ip,
                "country": r.balancer_country,
                "colocationCenter": r.balancer_colocation_center,
            },
        )
    return list(records.values())


def read_results(path: Union[str, Path]) -> list[TraceResult]:
    """Load a result file written by :class:`ResultWriter`."""
    results = []
    with open(path, newline="") as f:
        for row in csv.DictReader(f):
            values = {}
            for name, column in zip(_FIELD_NAMES, CSV_COLUMNS):
                raw = row.get(column)
                if raw in (None, NULL_MARKER):
                    values[name] = None
                elif name == "client_asn":
                    values[name] = int(raw)
                elif name.startswith("latency_"):
                    values[name] = float(raw)
                else:
                    values[name] = raw
            results.append(TraceResult(**values))
    return results


async def submit_results(
    url: str,
    results: Iterable[TraceResult],
    client: Optional[httpx.AsyncClient] = None,
) -> int:
    """POST the submission records to *url*; return how many were sent."""
    payload = to_submission(results)
    if not payload:
        logger.warning("No complete records to submit")
        return 0

    headers = {"User-Agent": USER_AGENT}
    if client is None:
        async with httpx.AsyncClient(timeout=httpx.Timeout(HTTP_TIMEOUT_S)) as own_client:
            resp = await own_client.post(url, json=payload, headers=headers)
    else:
        resp = await client.post(url, json=payload, headers=headers)
    resp.raise_for_status()
    logger.info("Submitted %d load balancers to %s", len(payload), url)
    return len(payload)
