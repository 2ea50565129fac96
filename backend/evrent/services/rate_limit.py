# backend/evrent/services/rate_limit.py
"""
Sliding-window request counters with pluggable storage.

- RedisCounterStore: one sorted set per key (member = hit, score = unix ts).
  Survives restarts and is shared by every app instance. Keys expire on
  their own.
- MemoryCounterStore: per-process store for tests and single-instance
  deployments; stale keys are dropped by cleanup().

A rejected hit is not recorded, so a client hammering past its limit does not
push its own reset time further out.
"""

import asyncio
import logging
import math
import threading
import time
import uuid
from collections import deque
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from redis import Redis

from ..config import settings

logger = logging.getLogger(__name__)

MAX_WINDOW_SECONDS = 3600


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    limit: int
    remaining: int
    retry_after: Optional[int] = None


class CounterStore:
    """Storage backend interface."""

    def hit(self, key: str, limit: int, window: int, now: float) -> tuple[int, float]:
        """
        Record a hit unless it would exceed `limit`.

        Returns (hits in window including this one, oldest hit timestamp).
        """
        raise NotImplementedError

    def cleanup(self, max_window: int = MAX_WINDOW_SECONDS, now: Optional[float] = None) -> int:
        """Drop keys with no hit inside max_window. Returns keys removed."""
        return 0


class RedisCounterStore(CounterStore):
    KEY_PREFIX = "rl"

    def __init__(self, redis: Redis):
        self.redis = redis

    def _key(self, key: str) -> str:
        return f"{self.KEY_PREFIX}:{key}"

    def hit(self, key: str, limit: int, window: int, now: float) -> tuple[int, float]:
        rkey = self._key(key)
        member = f"{now:.6f}:{uuid.uuid4().hex[:8]}"

        pipe = self.redis.pipeline()
        pipe.zremrangebyscore(rkey, 0, now - window)
        pipe.zadd(rkey, {member: now})
        pipe.zcard(rkey)
        pipe.zrange(rkey, 0, 0, withscores=True)
        pipe.expire(rkey, window + 1)
        _, _, count, oldest, _ = pipe.execute()

        if count > limit:
            self.redis.zrem(rkey, member)

        oldest_ts = oldest[0][1] if oldest else now
        return count, oldest_ts


class MemoryCounterStore(CounterStore):
    def __init__(self):
        self._hits: dict[str, deque] = {}
        self._lock = threading.Lock()

    def hit(self, key: str, limit: int, window: int, now: float) -> tuple[int, float]:
        with self._lock:
            hits = self._hits.setdefault(key, deque())
            while hits and now - hits[0] >= window:
                hits.popleft()
            count = len(hits) + 1
            if count <= limit:
                hits.append(now)
            oldest = hits[0] if hits else now
            return count, oldest

    def cleanup(self, max_window: int = MAX_WINDOW_SECONDS, now: Optional[float] = None) -> int:
        now = now if now is not None else time.time()
        removed = 0
        with self._lock:
            for key in list(self._hits):
                hits = self._hits[key]
                while hits and now - hits[0] >= max_window:
                    hits.popleft()
                if not hits:
                    del self._hits[key]
                    removed += 1
        return removed

    def __len__(self) -> int:
        return len(self._hits)


class SlidingWindowLimiter:
    def __init__(self, store: CounterStore):
        self.store = store

    def hit(self, key: str, limit: int, window: int, now: Optional[float] = None) -> RateLimitResult:
        """
        Count a request against `key`.

        limit=0 means disabled: always allowed.
        """
        if limit <= 0:
            return RateLimitResult(allowed=True, limit=0, remaining=0)

        now = now if now is not None else time.time()
        count, oldest = self.store.hit(key, limit, window, now)

        if count > limit:
            retry_after = max(1, math.ceil(oldest + window - now))
            return RateLimitResult(allowed=False, limit=limit, remaining=0, retry_after=retry_after)

        return RateLimitResult(allowed=True, limit=limit, remaining=limit - count)


@lru_cache
def get_limiter() -> SlidingWindowLimiter:
    """App-wide limiter backed by Redis (singleton)."""
    from ..redis_client import redis_client

    return SlidingWindowLimiter(RedisCounterStore(redis_client))


async def rate_limit_cleanup_loop(limiter: Optional[SlidingWindowLimiter] = None) -> None:
    """Periodically drop stale counters from stores that don't expire keys."""
    limiter = limiter or get_limiter()
    logger.info("rate_limit_cleanup_loop started")

    try:
        while True:
            await asyncio.sleep(settings.rate_limit_cleanup_seconds)
            try:
                removed = await asyncio.to_thread(limiter.store.cleanup, MAX_WINDOW_SECONDS)
                if removed:
                    logger.info(f"Rate limit cleanup: {removed} key(s) removed")
            except Exception:
                logger.exception("rate_limit_cleanup_loop error")
    except asyncio.CancelledError:
        logger.info("rate_limit_cleanup_loop cancelled")
