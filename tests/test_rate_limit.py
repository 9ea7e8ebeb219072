from __future__ import annotations

from types import SimpleNamespace

import pytest

from cockpit import rate_limit
from cockpit.rate_limit import SWEEP_INTERVAL_SECONDS, RateLimiter


class _Clock:
  def __init__(self) -> None:
    self.now = 1000.0

  def monotonic(self) -> float:
    return self.now


@pytest.fixture
def clock(monkeypatch: pytest.MonkeyPatch) -> _Clock:
  c = _Clock()
  monkeypatch.setattr(rate_limit, "time", SimpleNamespace(monotonic=c.monotonic))
  return c


@pytest.mark.anyio
async def test_window_opens_on_first_hit(clock: _Clock) -> None:
  rl = RateLimiter()
  assert rl.hit("auth:k", limit=2, window_seconds=60) == (True, 0)
  clock.now += 10
  assert rl.hit("auth:k", limit=2, window_seconds=60) == (True, 0)
  assert rl.hit("auth:k", limit=2, window_seconds=60) == (False, 50)
  clock.now += 50
  assert rl.hit("auth:k", limit=2, window_seconds=60) == (True, 0)


@pytest.mark.anyio
async def test_closed_windows_are_evicted(clock: _Clock) -> None:
  rl = RateLimiter()
  for i in range(50):
    rl.hit(f"auth:login:ip:10.0.0.{i}", limit=5, window_seconds=30)
  rl.hit("auth:slow", limit=5, window_seconds=3600)
  assert len(rl._counts) == 51

  clock.now += SWEEP_INTERVAL_SECONDS
  rl.hit("auth:fresh", limit=5, window_seconds=30)
  assert set(rl._counts) == {"auth:slow", "auth:fresh"}
