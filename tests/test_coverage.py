import asyncio

import pytest

from lbcollect.coverage import ColocationStats, CoverageTracker
from lbcollect.models import TraceResult


def obs(balancer_id, colo="FRA"):
    return TraceResult(balancer_id=balancer_id, balancer_colocation_center=colo)


def test_new_balancer_resets_counter_and_grows_set():
    stats = ColocationStats()
    assert stats.observe("a") is True
    stats.observe("a")
    stats.observe("a")
    assert stats.requests_since_last_new == 2

    assert stats.observe("b") is True
    assert stats.requests_since_last_new == 0
    assert stats.unique_balancers == {"a", "b"}


def test_seen_balancer_increments_counter_only():
    stats = ColocationStats({"a", "b"}, 4)
    assert stats.observe("b") is False
    assert stats.requests_since_last_new == 5
    assert len(stats.unique_balancers) == 2


@pytest.mark.parametrize(
    "unique, since, threshold, factor, covered",
    [
        (1, 3, 3, 1.0, False),   # must exceed, not reach
        (1, 4, 3, 1.0, True),
        (10, 4, 3, 1.0, False),  # dynamic threshold 10 wins
        (10, 11, 3, 1.0, True),
        (10, 11, 3, 2.0, False),  # 2 * 10 = 20
        (10, 21, 3, 2.0, True),
    ],
)
def test_is_covered_uses_max_of_static_and_dynamic_threshold(unique, since, threshold, factor, covered):
    stats = ColocationStats({f"b{i}" for i in range(unique)}, since)
    assert stats.is_covered(threshold, factor) is covered


def test_tracker_is_shared_across_views():
    tracker = CoverageTracker(min_requests=2)
    berlin = tracker.view()
    paris = tracker.view()

    berlin.record(obs("a"))
    paris.record(obs("a"))
    stats = tracker.stats("FRA")
    assert stats.unique_balancers == {"a"}
    assert stats.requests_since_last_new == 1
    assert berlin.new_balancers == 1
    assert paris.new_balancers == 0


def test_stop_decision_is_local_to_vantage_point():
    tracker = CoverageTracker(min_requests=2)
    first = tracker.view()
    for _ in range(4):
        first.record(obs("a", "FRA"))
    assert tracker.is_covered("FRA")
    assert first.should_continue() is False

    # AMS is still fresh, but only matters for views that reached it
    second = tracker.view()
    assert second.record(obs("x", "AMS")) is True
    assert first.should_continue() is False


def test_global_scope_considers_every_known_colocation():
    tracker = CoverageTracker(min_requests=2, scope="global")
    other = tracker.view()
    other.record(obs("x", "AMS"))

    view = tracker.view()
    for _ in range(4):
        view.record(obs("a", "FRA"))
    assert tracker.is_covered("FRA")
    assert view.should_continue() is True


def test_results_without_ids_are_not_recorded():
    tracker = CoverageTracker()
    view = tracker.view()
    assert view.record(TraceResult(balancer_id="a")) is False
    assert tracker.colocations() == []


def test_unknown_scope_rejected():
    with pytest.raises(ValueError):
        CoverageTracker(scope="galaxy")


def test_concurrent_tasks_do_not_lose_updates():
    tracker = CoverageTracker()

    async def shard(n):
        for i in range(200):
            tracker.record("FRA", "same")
            await asyncio.sleep(0)

    async def main():
        await asyncio.gather(*(shard(n) for n in range(5)))

    asyncio.run(main())
    stats = tracker.stats("FRA")
    assert stats.unique_balancers == {"same"}
    assert stats.requests_since_last_new == 999
    assert tracker.total_balancers == 1
