"""Tests for the fixed-window rate limiter."""

import threading

import pytest

from safehost.core.errors import RateLimitError
from safehost.guard.ratelimit import RateLimiter


class FakeClock:
    def __init__(self, now: float = 600.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def test_first_ten_attempts_pass_then_reject():
    limiter = RateLimiter(clock=FakeClock())
    for expected in range(1, 11):
        assert limiter.check("docker-setup") == expected
    with pytest.raises(RateLimitError) as exc_info:
        limiter.check("docker-setup")
    assert "docker-setup" in exc_info.value.message
    assert exc_info.value.retry_after == pytest.approx(60.0)


def test_rejected_attempts_still_consume_budget():
    limiter = RateLimiter(max_requests=2, clock=FakeClock())
    limiter.check("nginx-reload")
    limiter.check("nginx-reload")
    for _ in range(3):
        with pytest.raises(RateLimitError):
            limiter.check("nginx-reload")
    assert limiter.count("nginx-reload") == 5


def test_operations_are_counted_separately():
    limiter = RateLimiter(max_requests=1, clock=FakeClock())
    limiter.check("redis")
    limiter.check("postgresql")
    with pytest.raises(RateLimitError):
        limiter.check("redis")


def test_new_window_resets_the_count():
    clock = FakeClock()
    limiter = RateLimiter(max_requests=1, clock=clock)
    limiter.check("redis")
    with pytest.raises(RateLimitError):
        limiter.check("redis")
    clock.now += 61
    assert limiter.check("redis") == 1


def test_stale_windows_are_swept():
    clock = FakeClock()
    limiter = RateLimiter(clock=clock)
    limiter.check("redis")
    clock.now += 180
    limiter.check("postgresql")
    assert len(limiter) == 1


def test_concurrent_checks_admit_exactly_the_ceiling():
    limiter = RateLimiter(clock=FakeClock())
    allowed: list[int] = []
    rejected: list[RateLimitError] = []
    barrier = threading.Barrier(15)

    def attempt() -> None:
        barrier.wait()
        try:
            allowed.append(limiter.check("docker-setup"))
        except RateLimitError as e:
            rejected.append(e)

    threads = [threading.Thread(target=attempt) for _ in range(15)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sorted(allowed) == list(range(1, 11))
    assert len(rejected) == 5
