"""Trace collection from this machine, without a measurement provider."""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Optional

import httpx

from lbcollect.config import HTTP_TIMEOUT_S, USER_AGENT
from lbcollect.models import TraceResult
from lbcollect.parser import parse_trace, trace_url

logger = logging.getLogger(__name__)


async def collect_local(
    host: str,
    runs: int,
    protocol: str = "HTTPS",
    client: Optional[httpx.AsyncClient] = None,
) -> list[TraceResult]:
    """Fetch *host*'s trace endpoint *runs* times and parse each response.

    ``protocol`` picks plain HTTP/1.1, HTTP/1.1 over TLS, or HTTP/2.
    Failed requests are logged and skipped.
    """
    url = trace_url(host, scheme="http" if protocol == "HTTP" else "https")
    if client is None:
        async with httpx.AsyncClient(
            http2=protocol == "HTTP2",
            timeout=httpx.Timeout(HTTP_TIMEOUT_S),
            follow_redirects=True,
        ) as own_client:
            return await _collect(own_client, url, runs)
    return await _collect(client, url, runs)


async def _collect(client: httpx.AsyncClient, url: str, runs: int) -> list[TraceResult]:
    results = []
    # A fresh connection per run so each request can land on another balancer
    headers = {"User-Agent": USER_AGENT, "Connection": "close", "Cache-Control": "no-store"}
    for i in range(runs):
        try:
            resp = await client.get(url, headers=headers)
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("Local run %d/%d against %s failed: %s", i + 1, runs, url, exc)
            continue
        if not resp.text.strip():
            logger.warning("Local run %d/%d against %s returned an empty body", i + 1, runs, url)
            continue
        result = parse_trace(resp.text)
        results.append(replace(result, latency_total=round(resp.elapsed.total_seconds() * 1000.0, 3)))
        logger.debug("Local run %d/%d: balancer %s", i + 1, runs, result.balancer_id)
    return results
