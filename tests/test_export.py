import asyncio
import csv
import json
from dataclasses import fields

import httpx
import pytest

from lbcollect.export import (
    CSV_COLUMNS,
    ResultWriter,
    read_progress,
    read_results,
    result_file_path,
    saved_index,
    submit_results,
    to_row,
    to_submission,
    write_progress,
)
from lbcollect.models import TraceResult

COMPLETE = TraceResult(
    timestamp="1716900000.123",
    balancer_id="29f123",
    balancer_ip="203.0.113.7",
    balancer_country="DE",
    balancer_colocation_center="FRA",
    target_domain="example.com",
    scheme="https",
    http_version="http/2",
    tls_version="TLSv1.3",
    client_country="DE",
    client_city="Berlin",
    client_asn=24940,
    client_network="Hetzner Online GmbH",
    latency_total=120.5,
    latency_dns=10.0,
    latency_tcp=20.0,
    latency_tls=30.0,
    latency_first_byte=50.0,
    latency_download=10.5,
)


def test_result_file_is_named_after_creation_time(tmp_path):
    path = result_file_path(tmp_path / "results")

    assert path.parent.is_dir()
    assert path.name.endswith("_results.csv")
    assert path.name.split("_")[0].isdigit()


def test_result_file_names_do_not_collide(tmp_path):
    first = result_file_path(tmp_path)
    first.touch()

    assert result_file_path(tmp_path) != first


def test_missing_fields_serialize_as_null():
    row = to_row(TraceResult(balancer_id="29f123"))

    assert len(row) == len(CSV_COLUMNS)
    assert row[1] == "29f123"
    assert row.count("null") == len(CSV_COLUMNS) - 1


def test_writer_writes_header_once_then_appends(tmp_path):
    path = tmp_path / "out.csv"
    writer = ResultWriter(path)
    writer.write_header()
    writer.append([COMPLETE])
    writer.write_header()
    writer.append([TraceResult(balancer_id="other")])

    with open(path, newline="") as f:
        rows = list(csv.reader(f))
    assert rows[0] == CSV_COLUMNS
    assert len(rows) == 3
    assert rows[1][CSV_COLUMNS.index("latencyDNS")] == "10.0"
    assert writer.rows_written == 2


def test_writer_ignores_empty_batches(tmp_path):
    writer = ResultWriter(tmp_path / "out.csv")

    assert writer.append([]) == 0
    assert not writer.path.exists()


def test_read_results_restores_types(tmp_path):
    writer = ResultWriter(tmp_path / "out.csv")
    writer.write_header()
    writer.append([COMPLETE, TraceResult(balancer_id="bare")])

    loaded = read_results(writer.path)

    assert loaded[0] == COMPLETE
    assert loaded[1] == TraceResult(balancer_id="bare")


def test_submission_is_distinct_and_complete():
    partial = TraceResult(balancer_id="nope", balancer_ip="203.0.113.9")

    records = to_submission([COMPLETE, COMPLETE, partial])

    assert records == [
        {"id": "29f123", "ipAddress": "203.0.113.7", "country": "DE", "colocationCenter": "FRA"}
    ]


def test_submit_results_posts_records():
    seen = []

    def handler(request):
        seen.append(json.loads(request.content))
        return httpx.Response(200, json={"ok": True})

    async def go():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return await submit_results("https://collector.example/api/lbs", [COMPLETE], client=client)

    assert asyncio.run(go()) == 1
    assert seen[0][0]["id"] == "29f123"


def test_submit_results_raises_on_rejection():
    async def go():
        transport = httpx.MockTransport(lambda request: httpx.Response(500))
        async with httpx.AsyncClient(transport=transport) as client:
            await submit_results("https://collector.example/api/lbs", [COMPLETE], client=client)

    with pytest.raises(httpx.HTTPStatusError):
        asyncio.run(go())


def test_submit_results_skips_empty_payload():
    assert asyncio.run(submit_results("https://collector.example/api/lbs", [TraceResult()])) == 0


def test_progress_round_trip_keeps_other_keys(tmp_path):
    path = tmp_path / "progress.json"
    write_progress(path, "example.com|key1", 3, 10)
    write_progress(path, "example.com|key2", 1, 9)
    write_progress(path, "example.com|key1", 4, 10)

    assert read_progress(path) == {
        "example.com|key1": {"index": 4, "total": 10},
        "example.com|key2": {"index": 1, "total": 9},
    }


def test_unreadable_progress_is_ignored(tmp_path):
    path = tmp_path / "progress.json"
    path.write_text("{not json")

    assert read_progress(path) == {}
    assert read_progress(tmp_path / "missing.json") == {}


@pytest.mark.parametrize("content", ["[1, 2]", '"resume"', "42", "null"])
def test_progress_that_is_not_an_object_is_ignored(tmp_path, content):
    path = tmp_path / "progress.json"
    path.write_text(content)

    assert read_progress(path) == {}


def test_writing_over_malformed_progress_starts_fresh(tmp_path):
    path = tmp_path / "progress.json"
    path.write_text("[1, 2]")

    write_progress(path, "example.com|key1", 2, 5)

    assert read_progress(path) == {"example.com|key1": {"index": 2, "total": 5}}


@pytest.mark.parametrize(
    "entry, expected",
    [
        ({"index": 4, "total": 10}, 4),
        ({"index": 0}, 0),
        (3, None),
        ({"index": "4"}, None),
        ({"index": -1}, None),
        ({"index": True}, None),
        ({"total": 10}, None),
    ],
)
def test_saved_index_only_trusts_well_formed_entries(entry, expected):
    assert saved_index({"example.com|key1": entry}, "example.com|key1") == expected
    assert saved_index({}, "example.com|key1") is None


def test_columns_line_up_with_result_fields():
    names = [f.name for f in fields(TraceResult)]

    assert len(CSV_COLUMNS) == len(names)
    assert len(set(CSV_COLUMNS)) == len(CSV_COLUMNS)
    for column, name in zip(CSV_COLUMNS, names):
        assert column.lower() == name.replace("_", "").lower()
