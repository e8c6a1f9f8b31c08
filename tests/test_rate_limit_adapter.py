"""Unit tests for in-memory rate limiter adapter."""

import threading
from unittest.mock import Mock

import pytest

from natours.adapters.rate_limit.in_memory import InMemoryFixedWindowRateLimiter


def test_allows_up_to_limit_in_same_window() -> None:
    clock = Mock(return_value=1000.0)
    limiter = InMemoryFixedWindowRateLimiter(limit=3, window_seconds=60, clock=clock)

    assert limiter.consume("k").allowed is True
    assert limiter.consume("k").allowed is True
    result = limiter.consume("k")
    assert result.allowed is True
    assert result.remaining == 0


def test_blocks_when_over_limit() -> None:
    clock = Mock(return_value=1000.0)
    limiter = InMemoryFixedWindowRateLimiter(limit=2, window_seconds=60, clock=clock)

    assert limiter.consume("k").allowed is True
    assert limiter.consume("k").allowed is True

    blocked = limiter.consume("k")
    assert blocked.allowed is False
    assert blocked.remaining == 0
    assert blocked.retry_after_seconds == 60
    assert blocked.reset_at == 1060


def test_window_starts_at_first_request() -> None:
    clock = Mock(return_value=1005.0)
    limiter = InMemoryFixedWindowRateLimiter(limit=1, window_seconds=10, clock=clock)

    assert limiter.consume("k").allowed is True

    # Still inside the window opened at t=1005 even though t=1010 is a
    # multiple of the window size.
    clock.return_value = 1010.0
    assert limiter.consume("k").allowed is False

    clock.return_value = 1015.0
    assert limiter.consume("k").allowed is True


def test_resets_when_window_elapsed() -> None:
    clock = Mock(return_value=1000.0)
    limiter = InMemoryFixedWindowRateLimiter(limit=1, window_seconds=10, clock=clock)

    assert limiter.consume("k").allowed is True
    assert limiter.consume("k").allowed is False

    clock.return_value = 1010.0
    result = limiter.consume("k")
    assert result.allowed is True
    assert result.remaining == 0


def test_blocked_requests_keep_counting() -> None:
    clock = Mock(return_value=1000.0)
    limiter = InMemoryFixedWindowRateLimiter(limit=1, window_seconds=10, clock=clock)

    limiter.consume("k")
    for _ in range(5):
        assert limiter.consume("k").allowed is False

    clock.return_value = 1009.0
    assert limiter.consume("k").allowed is False


def test_isolated_by_key() -> None:
    clock = Mock(return_value=1000.0)
    limiter = InMemoryFixedWindowRateLimiter(limit=1, window_seconds=60, clock=clock)

    assert limiter.consume("k1").allowed is True
    assert limiter.consume("k1").allowed is False

    assert limiter.consume("k2").allowed is True


def test_expired_keys_are_swept() -> None:
    clock = Mock(return_value=1000.0)
    limiter = InMemoryFixedWindowRateLimiter(limit=1, window_seconds=60, clock=clock)

    for i in range(10_000):
        limiter.consume(f"10.0.{i // 256}.{i % 256}")
    assert len(limiter._state_by_key) == 10_000

    clock.return_value = 1060.0
    limiter.consume("10.1.0.1")

    assert list(limiter._state_by_key) == ["10.1.0.1"]


def test_sweep_keeps_keys_with_open_windows() -> None:
    clock = Mock(return_value=1000.0)
    limiter = InMemoryFixedWindowRateLimiter(limit=1, window_seconds=60, clock=clock)
    limiter.consume("old")

    clock.return_value = 1030.0
    limiter.consume("recent")

    clock.return_value = 1065.0
    limiter.consume("new")

    assert set(limiter._state_by_key) == {"recent", "new"}
    assert limiter.consume("recent").allowed is False


def test_reset_single_key_and_all_keys() -> None:
    limiter = InMemoryFixedWindowRateLimiter(limit=1, window_seconds=60)
    limiter.consume("k1")
    limiter.consume("k2")

    limiter.reset("k1")
    assert limiter.consume("k1").allowed is True
    assert limiter.consume("k2").allowed is False

    limiter.reset()
    assert limiter.consume("k2").allowed is True


def test_concurrent_consumers_never_exceed_limit() -> None:
    limiter = InMemoryFixedWindowRateLimiter(limit=50, window_seconds=60)
    results: list[bool] = []
    results_lock = threading.Lock()

    def worker() -> None:
        for _ in range(20):
            allowed = limiter.consume("same-client").allowed
            with results_lock:
                results.append(allowed)

    threads = [threading.Thread(target=worker) for _ in range(10)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(results) == 200
    assert sum(results) == 50


@pytest.mark.parametrize(
    "kwargs",
    [
        {"limit": 0, "window_seconds": 60},
        {"limit": 1, "window_seconds": 0},
    ],
)
def test_invalid_constructor_args(kwargs: dict) -> None:
    with pytest.raises(ValueError):
        InMemoryFixedWindowRateLimiter(**kwargs)


def test_invalid_consume_args() -> None:
    limiter = InMemoryFixedWindowRateLimiter(limit=1, window_seconds=60)

    with pytest.raises(ValueError):
        limiter.consume("")

    with pytest.raises(ValueError):
        limiter.consume("k", cost=0)
