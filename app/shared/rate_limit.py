from __future__ import annotations

import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional, Protocol

import redis

logger = logging.getLogger("certgen.ratelimit")

KEY_PREFIX = "rate-limit:"

# INCR, start the window on the first hit, report the remaining window.
_FIXED_WINDOW_LUA = """
local count = redis.call('INCR', KEYS[1])
if count == 1 then
  redis.call('PEXPIRE', KEYS[1], ARGV[1])
end
local ttl = redis.call('PTTL', KEYS[1])
if ttl < 0 then
  redis.call('PEXPIRE', KEYS[1], ARGV[1])
  ttl = tonumber(ARGV[1])
end
return {count, ttl}
"""


@dataclass(frozen=True)
class RateDecision:
    allowed: bool
    count: int
    retry_after: Optional[int] = None


class WindowStore(Protocol):
    def hit(self, key: str, window_ms: int) -> tuple[int, int]:
        """Increment ``key`` and return ``(count, remaining_window_ms)``."""


class MemoryWindowStore:
    """Process-local counters; only correct for a single server process.

    Expired windows are swept at most once per window length so the map
    only holds clients seen recently.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._lock = threading.Lock()
        self._windows: dict[str, tuple[int, float]] = {}
        self._next_sweep = 0.0

    def __len__(self) -> int:
        with self._lock:
            return len(self._windows)

    def _sweep(self, now: float) -> None:
        expired = [
            key for key, (_, expires_at) in self._windows.items() if now >= expires_at
        ]
        for key in expired:
            del self._windows[key]

    def hit(self, key: str, window_ms: int) -> tuple[int, int]:
        now = self._clock()
        with self._lock:
            if now >= self._next_sweep:
                self._sweep(now)
                self._next_sweep = now + window_ms / 1000.0
            count, expires_at = self._windows.get(key, (0, 0.0))
            if now >= expires_at:
                count, expires_at = 0, now + window_ms / 1000.0
            count += 1
            self._windows[key] = (count, expires_at)
            return count, int(math.ceil((expires_at - now) * 1000))


class RedisWindowStore:
    """Shared counters; the Lua script makes increment-and-check atomic."""

    def __init__(self, client: "redis.Redis"):
        self._client = client
        self._script = client.register_script(_FIXED_WINDOW_LUA)

    @classmethod
    def from_url(cls, url: str) -> "RedisWindowStore":
        return cls(redis.Redis.from_url(url))

    def hit(self, key: str, window_ms: int) -> tuple[int, int]:
        count, ttl = self._script(keys=[key], args=[window_ms])
        return int(count), int(ttl)


def store_from_url(url: str) -> WindowStore:
    if not url or url.startswith("memory://"):
        return MemoryWindowStore()
    if url.startswith(("redis://", "rediss://", "unix://")):
        return RedisWindowStore.from_url(url)
    raise ValueError(f"Unsupported rate limit storage: {url!r}")


class FixedWindowRateLimiter:
    """Fixed-window request counter keyed by client (IP address)."""

    def __init__(self, store: WindowStore, *, limit: int = 10, window_seconds: int = 1):
        self.store = store
        self.limit = limit
        self.window_ms = int(window_seconds * 1000)

    def hit(self, client: str) -> RateDecision:
        count, remaining_ms = self.store.hit(f"{KEY_PREFIX}{client}", self.window_ms)
        if count <= self.limit:
            return RateDecision(allowed=True, count=count)
        retry_after = max(1, int(math.ceil(remaining_ms / 1000.0)))
        logger.info(
            "[RATE-LIMIT] client=%s count=%s limit=%s retry_after=%s",
            client,
            count,
            self.limit,
            retry_after,
        )
        return RateDecision(allowed=False, count=count, retry_after=retry_after)
