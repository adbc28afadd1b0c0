from __future__ import annotations

import asyncio
import math
import time
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from typing import Protocol

from .observability import log_event
from .routing import RateLimitPolicy

Clock = Callable[[], int]


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class RateLimitRecord:
    key: str
    count: int
    reset_time_ms: int


@dataclass(frozen=True)
class RateLimitStatus:
    limit: int
    remaining: int
    reset_time_ms: int

    def headers(self) -> dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset_time_ms),
        }


@dataclass(frozen=True)
class RateLimitExceeded(Exception):
    limit: int
    reset_time_ms: int
    retry_after_s: int

    def headers(self) -> dict[str, str]:
        return {
            "Retry-After": str(self.retry_after_s),
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": "0",
            "X-RateLimit-Reset": str(self.reset_time_ms),
        }


class RateLimitStore(Protocol):
    """Keyed record storage for the limiter.

    Implementations must be synchronous: the limiter's read-check-increment
    runs without yielding to the event loop.
    """

    def get(self, key: str) -> RateLimitRecord | None: ...

    def set(self, record: RateLimitRecord) -> None: ...

    def delete(self, key: str) -> None: ...

    def items(self) -> Iterator[tuple[str, RateLimitRecord]]: ...

    def __len__(self) -> int: ...


class InMemoryRateLimitStore:
    """Process-local store.

    Note: this is per-instance. Behind a load balancer each instance enforces
    its own window, so the effective limit is multiplied by the instance count.
    """

    def __init__(self) -> None:
        self._records: dict[str, RateLimitRecord] = {}

    def get(self, key: str) -> RateLimitRecord | None:
        return self._records.get(key)

    def set(self, record: RateLimitRecord) -> None:
        self._records[record.key] = record

    def delete(self, key: str) -> None:
        self._records.pop(key, None)

    def items(self) -> Iterator[tuple[str, RateLimitRecord]]:
        # Snapshot so callers may delete while iterating.
        return iter(list(self._records.items()))

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, key: object) -> bool:
        return key in self._records


def rate_limit_key(client_id: str, group: str) -> str:
    return f"{client_id or 'unknown'}:{group}"


class FixedWindowRateLimiter:
    """Fixed-window counter keyed by client + path group."""

    def __init__(self, store: RateLimitStore, clock: Clock = now_ms) -> None:
        self.store = store
        self.clock = clock

    def hit(self, key: str, policy: RateLimitPolicy) -> RateLimitStatus:
        """Consume one unit of budget for `key` or raise RateLimitExceeded."""
        now = self.clock()
        record = self.store.get(key)

        if record is None or now > record.reset_time_ms:
            record = RateLimitRecord(key=key, count=1, reset_time_ms=now + policy.window_ms)
            self.store.set(record)
            return RateLimitStatus(
                limit=policy.requests,
                remaining=max(policy.requests - 1, 0),
                reset_time_ms=record.reset_time_ms,
            )

        record.count += 1
        if record.count > policy.requests:
            raise RateLimitExceeded(
                limit=policy.requests,
                reset_time_ms=record.reset_time_ms,
                retry_after_s=max(math.ceil((record.reset_time_ms - now) / 1000), 0),
            )

        return RateLimitStatus(
            limit=policy.requests,
            remaining=policy.requests - record.count,
            reset_time_ms=record.reset_time_ms,
        )


def sweep_expired(store: RateLimitStore, now: int) -> int:
    """Delete records whose window has already ended. Returns the number removed."""
    removed = 0
    for key, record in store.items():
        if now > record.reset_time_ms:
            store.delete(key)
            removed += 1
    return removed


class RateLimitSweeper:
    """Periodic background cleanup of abandoned rate-limit records."""

    def __init__(self, store: RateLimitStore, *, interval_s: float = 60.0, clock: Clock = now_ms) -> None:
        self.store = store
        self.interval_s = float(interval_s)
        self.clock = clock
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def run_once(self) -> int:
        removed = sweep_expired(self.store, self.clock())
        if removed:
            log_event("ratelimit.sweep", severity="DEBUG", removed=removed, remaining=len(self.store))
        return removed

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval_s)
            self.run_once()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._loop(), name="ratelimit-sweeper")

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
