"""
In-process TTL cache for authorization decisions.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from shared.logging import get_logger
from .base import DecisionCache, DEFAULT_TTL_SECONDS, DEFAULT_SWEEP_INTERVAL_SECONDS
from ..policy.models import CheckResult


@dataclass(frozen=True)
class CacheEntry:
    """A memoized result and the monotonic time it stops being valid."""
    key: str
    value: CheckResult
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class MemoryDecisionCache(DecisionCache):
    """Dictionary-backed decision cache with per-entry expiry.

    Expiry is checked on every read, so an entry past its deadline is never
    returned even if the periodic sweep has not removed it yet. The sweep
    only bounds memory for keys that are never read again. Writes also sweep
    once an interval has passed, so a cache whose background task was never
    started still stays bounded.
    """

    def __init__(
        self,
        default_ttl: int = DEFAULT_TTL_SECONDS,
        sweep_interval: float = DEFAULT_SWEEP_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.default_ttl = default_ttl
        self.sweep_interval = sweep_interval
        self.logger = get_logger("rebac.cache.memory")
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._next_sweep_at = clock() + sweep_interval
        self._sweep_task: Optional[asyncio.Task] = None

    def __len__(self) -> int:
        return len(self._entries)

    async def get(self, key: str) -> Optional[CheckResult]:
        entry = self._entries.get(key)
        if entry is None:
            return None

        if entry.is_expired(self._clock()):
            self._entries.pop(key, None)
            return None

        return entry.value

    async def set(self, key: str, value: CheckResult, ttl: Optional[int] = None) -> None:
        ttl_seconds = self.default_ttl if ttl is None else ttl
        now = self._clock()
        if now >= self._next_sweep_at:
            self.sweep()
        self._entries[key] = CacheEntry(key=key, value=value, expires_at=now + ttl_seconds)

    async def clear(self) -> None:
        self._entries.clear()

    def sweep(self) -> int:
        """Remove expired entries; returns how many were dropped."""
        now = self._clock()
        self._next_sweep_at = now + self.sweep_interval
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired:
            del self._entries[key]

        if expired:
            self.logger.debug("Swept expired decisions", count=len(expired), remaining=len(self._entries))
        return len(expired)

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            self.sweep()

    async def start(self) -> None:
        """Start the background sweep task."""
        if self._sweep_task is None or self._sweep_task.done():
            self._sweep_task = asyncio.create_task(self._sweep_loop())
            self.logger.info("Memory decision cache started", ttl=self.default_ttl, sweep_interval=self.sweep_interval)

    async def stop(self) -> None:
        """Cancel the background sweep task."""
        if self._sweep_task is None:
            return

        self._sweep_task.cancel()
        try:
            await self._sweep_task
        except asyncio.CancelledError:
            pass
        self._sweep_task = None
        self.logger.info("Memory decision cache stopped")
