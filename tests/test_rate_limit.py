import pytest

from app.shared.rate_limit import (
    FixedWindowRateLimiter,
    MemoryWindowStore,
    RedisWindowStore,
    store_from_url,
)
from conftest import FakeClock


def _limiter(clock):
    return FixedWindowRateLimiter(MemoryWindowStore(clock=clock), limit=10, window_seconds=1)


def test_eleventh_request_in_window_is_rejected():
    clock = FakeClock()
    limiter = _limiter(clock)

    decisions = []
    for _ in range(11):
        decisions.append(limiter.hit("10.0.0.1"))
        clock.advance(0.05)

    assert all(d.allowed for d in decisions[:10])
    last = decisions[10]
    assert not last.allowed
    assert last.count == 11
    assert 1 <= last.retry_after <= 1


def test_expired_windows_are_evicted():
    clock = FakeClock()
    store = MemoryWindowStore(clock=clock)
    limiter = FixedWindowRateLimiter(store, limit=10, window_seconds=1)

    for i in range(100):
        limiter.hit(f"198.51.100.{i}")
    assert len(store) == 100

    clock.advance(1.0)
    limiter.hit("198.51.100.7")
    assert len(store) == 1
    assert limiter.hit("198.51.100.7").count == 2


def test_spaced_requests_across_windows_are_allowed():
    clock = FakeClock()
    limiter = _limiter(clock)

    for _ in range(10):
        assert limiter.hit("10.0.0.1").allowed
        clock.advance(0.2)
    # window reset on first hit after expiry
    assert limiter.hit("10.0.0.1").count <= 10


def test_window_resets_after_expiry():
    clock = FakeClock()
    limiter = _limiter(clock)
    for _ in range(12):
        limiter.hit("a")
    assert not limiter.hit("a").allowed

    clock.advance(1.0)

    decision = limiter.hit("a")
    assert decision.allowed
    assert decision.count == 1


def test_clients_are_counted_separately():
    clock = FakeClock()
    limiter = _limiter(clock)
    for _ in range(10):
        limiter.hit("a")
    assert not limiter.hit("a").allowed
    assert limiter.hit("b").allowed


def test_retry_after_rounds_up_remaining_window():
    clock = FakeClock()
    limiter = FixedWindowRateLimiter(MemoryWindowStore(clock=clock), limit=1, window_seconds=5)
    limiter.hit("a")
    clock.advance(1.5)
    assert limiter.hit("a").retry_after == 4


class FakeScript:
    def __init__(self):
        self.counts = {}
        self.calls = []

    def __call__(self, keys, args):
        self.calls.append((keys, args))
        key = keys[0]
        self.counts[key] = self.counts.get(key, 0) + 1
        return [self.counts[key], 400]


class FakeRedis:
    def __init__(self):
        self.script = FakeScript()

    def register_script(self, source):
        assert "INCR" in source and "PEXPIRE" in source
        return self.script


def test_redis_store_uses_atomic_script():
    client = FakeRedis()
    limiter = FixedWindowRateLimiter(RedisWindowStore(client), limit=1, window_seconds=1)

    assert limiter.hit("1.2.3.4").allowed
    decision = limiter.hit("1.2.3.4")

    assert not decision.allowed
    assert decision.retry_after == 1
    assert client.script.calls[0] == (["rate-limit:1.2.3.4"], [1000])


def test_store_from_url():
    assert isinstance(store_from_url("memory://"), MemoryWindowStore)
    with pytest.raises(ValueError):
        store_from_url("ftp://nowhere")
