from lbcollect.backoff import CappedBackoff, FixedBackoff, ResetBackoff, RetryPolicy


def test_fixed_backoff_never_grows():
    policy = FixedBackoff(5.0)
    assert [policy.delay(a) for a in range(4)] == [5.0, 5.0, 5.0, 5.0]


def test_capped_backoff_grows_until_cap():
    policy = CappedBackoff(base=1.0, cap=10.0)
    assert [policy.delay(a) for a in range(6)] == [1.0, 2.0, 4.0, 8.0, 10.0, 10.0]


def test_reset_backoff_waits_for_reset_plus_margin():
    policy = ResetBackoff(margin=1.0, fallback=5.0)
    assert policy.delay(reset_seconds=2) == 3.0
    assert policy.delay(reset_seconds=-4) == 1.0
    assert policy.delay() == 5.0


def test_default_retry_policy():
    policy = RetryPolicy()
    assert policy.limits_unavailable.delay(7) == 5.0
    assert policy.quota_exhausted.delay(reset_seconds=30) == 31.0
    assert policy.quota_rejected.delay() == 5.0
    assert policy.create_failed.delay() == 1.0
