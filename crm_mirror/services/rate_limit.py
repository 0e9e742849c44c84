"""Fixed-window request counters with an explicit start/stop lifecycle."""

import asyncio
import time
from dataclasses import dataclass

from crm_mirror.core.logging import get_logger

logger = get_logger(__name__)

@dataclass(frozen=True)
class RateLimitPolicy:
    limit: int
    window_seconds: int

RATE_LIMITS = {
    "webhook": RateLimitPolicy(limit=100, window_seconds=60),
    "api": RateLimitPolicy(limit=60, window_seconds=60),
    "auth": RateLimitPolicy(limit=10, window_seconds=60),
}

@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    reset_at: float

@dataclass
class _Window:
    count: int
    reset_at: float

class FixedWindowRateLimiter:
    def __init__(self, policy: RateLimitPolicy, cleanup_interval: float = 60, clock=time.monotonic):
        self.policy = policy
        self.cleanup_interval = cleanup_interval
        self._clock = clock
        self._windows: dict[str, _Window] = {}
        self._cleanup_task: asyncio.Task | None = None

    def check(self, key: str) -> RateLimitDecision:
        now = self._clock()
        window = self._windows.get(key)
        if window is None or window.reset_at <= now:
            window = _Window(count=0, reset_at=now + self.policy.window_seconds)
            self._windows[key] = window
        window.count += 1
        allowed = window.count <= self.policy.limit
        return RateLimitDecision(
            allowed=allowed,
            limit=self.policy.limit,
            remaining=max(self.policy.limit - window.count, 0),
            reset_at=window.reset_at,
        )

    def purge_expired(self) -> int:
        now = self._clock()
        expired = [key for key, window in self._windows.items() if window.reset_at <= now]
        for key in expired:
            del self._windows[key]
        return len(expired)

    async def _cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self.cleanup_interval)
            self.purge_expired()

    async def start(self) -> None:
        if self._cleanup_task is None:
            self._cleanup_task = asyncio.create_task(self._cleanup_loop())

    async def stop(self) -> None:
        if self._cleanup_task is not None:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
            self._cleanup_task = None
        self._windows.clear()

class RateLimiterRegistry:
    def __init__(self, policies: dict[str, RateLimitPolicy] | None = None, cleanup_interval: float = 60):
        self.limiters = {
            name: FixedWindowRateLimiter(policy, cleanup_interval)
            for name, policy in (policies or RATE_LIMITS).items()
        }

    def check(self, preset: str, key: str) -> RateLimitDecision:
        return self.limiters[preset].check(f"{preset}:{key}")

    async def start(self) -> None:
        for limiter in self.limiters.values():
            await limiter.start()
        logger.info("rate_limiters_started", presets=sorted(self.limiters))

    async def stop(self) -> None:
        for limiter in self.limiters.values():
            await limiter.stop()
        logger.info("rate_limiters_stopped")
