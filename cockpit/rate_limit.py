from __future__ import annotations

import math
import time
from threading import Lock

import redis
import structlog
from fastapi import HTTPException, status

from cockpit.config import settings

log = structlog.get_logger(__name__)

SWEEP_INTERVAL_SECONDS = 60


class RateLimiter:
  """
  Fixed-window rate limiter for the auth endpoints.

  A window opens on the first request for a key and lasts ``window_seconds``.
  Counts live in process memory unless REDIS_URL is set, in which case replicas
  share them in Redis.
  """

  def __init__(self, redis_url: str | None = None) -> None:
    self._lock = Lock()
    # key -> (window opened at, window seconds, count)
    self._counts: dict[str, tuple[float, int, int]] = {}
    self._last_sweep = time.monotonic()
    self._redis: redis.Redis | None = None
    if redis_url:
      self._redis = redis.Redis.from_url(redis_url, decode_responses=True)

  def hit(self, key: str, *, limit: int, window_seconds: int) -> tuple[bool, int]:
    """Count one request. Returns (allowed, retry_after_seconds)."""
    if self._redis is not None:
      try:
        count, ttl = self._incr_redis(f"rl:{key}", window_seconds)
        if count <= limit:
          return True, 0
        return False, max(1, ttl)
      except redis.RedisError as e:
        log.warning("rate_limit.redis_unavailable", error=str(e))

    now = time.monotonic()
    with self._lock:
      if now - self._last_sweep >= SWEEP_INTERVAL_SECONDS:
        self._sweep(now)
      opened_at, _, count = self._counts.get(key, (now, window_seconds, 0))
      if now - opened_at >= window_seconds:
        opened_at, count = now, 0
      if count >= limit:
        return False, max(1, math.ceil(opened_at + window_seconds - now))
      self._counts[key] = (opened_at, window_seconds, count + 1)
    return True, 0

  def _sweep(self, now: float) -> None:
    """Drop closed windows. Caller holds the lock."""
    self._counts = {k: v for k, v in self._counts.items() if now - v[0] < v[1]}
    self._last_sweep = now

  def _incr_redis(self, rk: str, window_seconds: int) -> tuple[int, int]:
    pipe = self._redis.pipeline()
    pipe.incr(rk, 1)
    pipe.expire(rk, int(window_seconds), nx=True)
    pipe.ttl(rk)
    count, _, ttl = pipe.execute()
    return int(count), int(ttl)

  def reset_prefix(self, prefix: str) -> None:
    with self._lock:
      self._counts = {k: v for k, v in self._counts.items() if not k.startswith(prefix)}


limiter = RateLimiter(settings.redis_url)


def rate_limit_or_429(*, key: str, limit: int, window_seconds: int = 60) -> None:
  allowed, retry_after = limiter.hit(key, limit=limit, window_seconds=window_seconds)
  if allowed:
    return
  log.info("rate_limit.rejected", key=key, retry_after=retry_after)
  raise HTTPException(
    status_code=status.HTTP_429_TOO_MANY_REQUESTS,
    detail={"code": "rate_limited", "message": "Too many requests", "retryAfterSeconds": retry_after},
    headers={"Retry-After": str(retry_after)},
  )
