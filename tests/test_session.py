import pytest

from lbcollect.session import InvalidTransition, LocationSession, SessionState, SweepCursor


def test_session_happy_path():
    session = LocationSession(location="Berlin", target=3)
    assert session.needs_root

    session.root_created("m1")
    assert session.state is SessionState.HAVE_ROOT
    assert session.requests_done == 1

    session.start_batch()
    session.result_recorded()
    assert session.state is SessionState.CONSUMING_BATCH
    session.result_recorded()
    assert session.done
    assert session.session_id == "m1"


def test_quota_drain_returns_to_have_root():
    session = LocationSession(location="Berlin", target=10)
    session.root_created("m1")
    session.start_batch()
    session.result_recorded()
    session.end_batch()
    assert session.state is SessionState.HAVE_ROOT
    assert not session.needs_root


def test_invalidation_requires_a_new_root():
    session = LocationSession(location="Berlin", target=10)
    session.root_created("m1")
    session.start_batch()
    session.invalidate()

    assert session.state is SessionState.ROOT_INVALID
    assert session.session_id is None
    assert session.needs_root

    session.end_batch()  # no-op outside a batch
    session.root_created("m7")
    assert session.state is SessionState.HAVE_ROOT
    assert session.session_id == "m7"
    assert session.requests_done == 2


def test_target_reached_by_root_alone():
    session = LocationSession(location="Berlin", target=1)
    session.root_created("m1")
    assert session.done


def test_zero_target_is_done_immediately():
    assert LocationSession(location="Berlin", target=0).done


def test_illegal_transitions_raise():
    session = LocationSession(location="Berlin", target=5)
    with pytest.raises(InvalidTransition):
        session.start_batch()
    with pytest.raises(InvalidTransition):
        session.result_recorded()
    with pytest.raises(InvalidTransition):
        session.invalidate()


def test_cursor_advances_after_max_failures():
    cursor = SweepCursor(total=2, max_failures=5)
    moved = [cursor.record_failure() for _ in range(5)]

    assert moved == [False, False, False, False, True]
    assert cursor.index == 1
    assert cursor.consecutive_failures == 0
    assert cursor.requests_on_probe == 0
    assert cursor.requests_total == 5


def test_success_resets_failure_streak():
    cursor = SweepCursor(total=1, max_failures=3, min_requests=100)
    cursor.record_failure()
    cursor.record_failure()
    assert cursor.record_success(should_continue=True) is False
    assert cursor.consecutive_failures == 0
    cursor.record_failure()
    cursor.record_failure()
    assert cursor.index == 0


def test_cursor_waits_for_min_requests_before_stopping():
    cursor = SweepCursor(total=3, max_failures=5, min_requests=2)
    assert cursor.record_success(should_continue=False) is False
    assert cursor.record_success(should_continue=False) is False
    assert cursor.record_success(should_continue=False) is True
    assert cursor.progress == (1, 3)


def test_cursor_per_probe_cap():
    cursor = SweepCursor(total=2, max_failures=5, min_requests=300, max_requests_per_probe=1)
    assert cursor.record_success(should_continue=True) is True
    assert cursor.record_success(should_continue=True) is True
    assert cursor.done
    with pytest.raises(InvalidTransition):
        cursor.advance()
