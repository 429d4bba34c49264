import pytest

from fileforge.errors import RateLimitError
from fileforge.ratelimit import RateLimiter


def test_window_limits_each_client_separately():
    now = [0.0]
    limiter = RateLimiter(max_requests=2, window_seconds=60, clock=lambda: now[0])
    limiter.check("a")
    limiter.check("a")
    with pytest.raises(RateLimitError) as exc:
        limiter.check("a")
    assert exc.value.retry_after == 60
    limiter.check("b")
    now[0] = 60.0
    limiter.check("a")


def test_closed_windows_are_forgotten():
    now = [0.0]
    limiter = RateLimiter(max_requests=5, window_seconds=60, clock=lambda: now[0])
    for i in range(10_000):
        limiter.check(f"198.51.100.{i}")
    assert len(limiter) == 10_000
    now[0] = 3600.0
    limiter.check("203.0.113.1")
    assert len(limiter) == 1


def test_open_windows_survive_pruning():
    now = [0.0]
    limiter = RateLimiter(max_requests=1, window_seconds=60, clock=lambda: now[0])
    limiter.check("old")
    now[0] = 30.0
    limiter.check("recent")
    now[0] = 61.0
    limiter.check("new")
    assert len(limiter) == 2
    with pytest.raises(RateLimitError):
        limiter.check("recent")


def test_cleanup_reports_removed_clients():
    now = [0.0]
    limiter = RateLimiter(max_requests=1, window_seconds=10, clock=lambda: now[0])
    limiter.check("a")
    limiter.check("b")
    now[0] = 10.0
    assert limiter.cleanup() == 2
    assert len(limiter) == 0
