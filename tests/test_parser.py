from dataclasses import fields

import pytest

from lbcollect.models import TraceResult
from lbcollect.parser import TRACE_KEYS, parse_trace, target_hostname, trace_url
from tests.fakes import trace_body


def test_parse_full_trace_body():
    result = parse_trace(trace_body("29f123", colo="FRA", ip="198.51.100.4", loc="DE"))

    assert result.balancer_id == "29f123"
    assert result.balancer_ip == "198.51.100.4"
    assert result.balancer_country == "DE"
    assert result.balancer_colocation_center == "FRA"
    assert result.target_domain == "example.com"
    assert result.scheme == "https"
    assert result.http_version == "http/2"
    assert result.tls_version == "TLSv1.3"
    assert result.timestamp == "1716900000.123"
    # Vantage-point and timing columns are not part of the body
    assert result.client_city is None
    assert result.latency_total is None


def test_only_recognized_keys_are_populated():
    result = parse_trace("fl=abc\ncolo=AMS\n")
    populated = {f.name for f in fields(TraceResult) if getattr(result, f.name) is not None}
    assert populated == {"balancer_id", "balancer_colocation_center"}


def test_every_known_key_maps_to_a_field():
    body = "\n".join(f"{key}=v{i}" for i, key in enumerate(TRACE_KEYS))
    result = parse_trace(body)
    for i, attr in enumerate(TRACE_KEYS.values()):
        assert getattr(result, attr) == f"v{i}"


@pytest.mark.parametrize("body", ["", None, "\n\n"])
def test_empty_input_gives_all_null_result(body):
    assert parse_trace(body) == TraceResult()


def test_unknown_and_malformed_lines_are_ignored():
    result = parse_trace("garbage line\nsliver=none\n=oops\nfl=xyz\r\nwarp\n")
    assert result == TraceResult(balancer_id="xyz")


def test_value_may_contain_equals_sign():
    assert parse_trace("uag=x\nh=a=b\n").target_domain == "a=b"


def test_parse_is_deterministic():
    body = trace_body("abc")
    assert parse_trace(body) == parse_trace(body)


@pytest.mark.parametrize(
    "host, expected",
    [
        ("https://example.com", "example.com"),
        ("http://example.com:8080/path", "example.com"),
        ("example.com", "example.com"),
        ("chatgpt.com/", "chatgpt.com"),
    ],
)
def test_target_hostname(host, expected):
    assert target_hostname(host) == expected


def test_trace_url():
    assert trace_url("https://claude.ai") == "https://claude.ai/cdn-cgi/trace"
    assert trace_url("cloudflare.com/", scheme="http") == "http://cloudflare.com/cdn-cgi/trace"
