"""Parsing of the edge's ``/cdn-cgi/trace`` response body.

The trace endpoint returns a plain-text body of ``key=value`` lines, e.g.::

    fl=29f123
    h=example.com
    ip=203.0.113.7
    ts=1716900000.123
    visit_scheme=https
    colo=FRA
    http=http/2
    loc=DE
    tls=TLSv1.3

Only the keys below are kept; everything else is ignored.
"""

from __future__ import annotations

from typing import Optional
from urllib.parse import urlparse

from lbcollect.config import TRACE_PATH
from lbcollect.models import TraceResult

TRACE_KEYS = {
    "fl": "balancer_id",
    "ip": "balancer_ip",
    "loc": "balancer_country",
    "colo": "balancer_colocation_center",
    "h": "target_domain",
    "visit_scheme": "scheme",
    "http": "http_version",
    "tls": "tls_version",
    "ts": "timestamp",
}


def parse_trace(body: Optional[str]) -> TraceResult:
    """Decode a trace body into a :class:`TraceResult`.

    Malformed lines are skipped. An empty or missing body yields a result
    with every field unset; deciding whether that is usable is up to the
    caller.
    """
    fields: dict[str, str] = {}
    for line in (body or "").splitlines():
        key, sep, value = line.partition("=")
        if not sep:
            continue
        attr = TRACE_KEYS.get(key.strip())
        if attr:
            fields[attr] = value.strip()
    return TraceResult(**fields)


def target_hostname(host: str) -> str:
    """Strip scheme, port and path so *host* can be used as a measurement target."""
    if "://" not in host:
        host = f"//{host}"
    parsed = urlparse(host)
    return parsed.hostname or host.lstrip("/")


def trace_url(host: str, scheme: str = "https") -> str:
    """Full trace URL for *host*, keeping an explicit scheme if one was given."""
    if "://" in host:
        return f"{host.rstrip('/')}{TRACE_PATH}"
    return f"{scheme}://{host.rstrip('/')}{TRACE_PATH}"
