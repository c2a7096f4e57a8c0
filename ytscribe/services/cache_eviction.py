"""
Background enforcement of the transcript cache budget.

Policies:
- LRU: keep the cache within the entry-count and size budgets, dropping the
  least recently accessed entries first.
- TTL: first drop entries not accessed for `ttl_days`, then apply the same
  budgets as LRU.
- NONE: never evict.

A budget of 0 means "not configured".
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import asdict, dataclass
from datetime import datetime, timezone

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from ytscribe.core.config import EVICTION_POLICIES, Settings
from ytscribe.core.errors import CacheEvictionError
from ytscribe.services.transcript_cache import TranscriptCacheRepository

logger = logging.getLogger(__name__)

_JOB_ID = "cache-eviction"


@dataclass(frozen=True)
class EvictionConfig:
    policy: str = "LRU"
    max_entries: int = 10000
    max_size_mb: float = 500
    ttl_days: float = 30
    interval_hours: float = 6
    batch_size: int = 100

    def __post_init__(self):
        if self.policy not in EVICTION_POLICIES:
            raise ValueError(f"Unknown eviction policy: {self.policy!r}")
        if self.batch_size < 1:
            raise ValueError("batch_size must be >= 1")

    @classmethod
    def from_settings(cls, settings: Settings) -> "EvictionConfig":
        return cls(
            policy=settings.cache_eviction_policy,
            max_entries=settings.cache_max_entries,
            max_size_mb=settings.cache_max_size_mb,
            ttl_days=settings.cache_ttl_days,
            interval_hours=settings.cache_eviction_interval_hours,
            batch_size=settings.cache_eviction_batch_size,
        )

    @property
    def max_size_bytes(self) -> int:
        return int(self.max_size_mb * 1024 * 1024)


@dataclass
class EvictionResult:
    evicted_by_lru: int = 0
    evicted_by_size: int = 0
    evicted_by_ttl: int = 0
    entries_before: int = 0
    entries_after: int = 0
    size_bytes_before: int = 0
    size_bytes_after: int = 0
    duration_ms: int = 0
    skipped: bool = False

    @property
    def evicted_count(self) -> int:
        return self.evicted_by_lru + self.evicted_by_size + self.evicted_by_ttl

    def to_dict(self) -> dict:
        out = asdict(self)
        out["evicted_count"] = self.evicted_count
        return out


class CacheEvictionService:
    def __init__(self, cache: TranscriptCacheRepository, config: EvictionConfig | None = None):
        self.cache = cache
        self.config = config or EvictionConfig()
        self._running = False
        self._scheduler: AsyncIOScheduler | None = None

    # -----------------------------
    # One pass
    # -----------------------------
    async def run_once(self) -> EvictionResult:
        """
        Apply the configured policy once.

        Returns `skipped=True` if another pass is still in flight.
        Store failures raise CacheEvictionError.
        """
        if self._running:
            logger.info("Cache eviction already in progress; skipping this run")
            return EvictionResult(skipped=True)
        if self.config.policy == "NONE":
            return EvictionResult()

        self._running = True
        started = time.monotonic()
        try:
            before = self.cache.stats()
            result = EvictionResult(entries_before=before.total_entries, size_bytes_before=before.total_size_bytes)

            if self.config.policy == "TTL" and self.config.ttl_days > 0:
                result.evicted_by_ttl = self.cache.evict_older_than(self.config.ttl_days)
                if result.evicted_by_ttl:
                    logger.info("Evicted %s transcript(s) older than %s days", result.evicted_by_ttl, self.config.ttl_days)

            if self.config.max_entries > 0:
                result.evicted_by_lru = await self._evict_entries_over_budget()

            if self.config.max_size_bytes > 0:
                result.evicted_by_size = await self._evict_size_over_budget()

            after = self.cache.stats()
            result.entries_after = after.total_entries
            result.size_bytes_after = after.total_size_bytes
        except Exception as e:
            raise CacheEvictionError(f"Cache eviction failed: {e}") from e
        finally:
            self._running = False

        result.duration_ms = int((time.monotonic() - started) * 1000)
        if result.evicted_count:
            logger.info(
                "Cache eviction removed %s entries (lru=%s size=%s ttl=%s) in %sms",
                result.evicted_count,
                result.evicted_by_lru,
                result.evicted_by_size,
                result.evicted_by_ttl,
                result.duration_ms,
            )
        else:
            logger.debug("Cache eviction finished with nothing to evict")
        return result

    async def _evict_entries_over_budget(self) -> int:
        evicted = 0
        while True:
            excess = self.cache.count() - self.config.max_entries
            if excess <= 0:
                break
            n = self.cache.evict_oldest(min(excess, self.config.batch_size))
            if n == 0:
                break
            evicted += n
            await asyncio.sleep(0)
        if evicted:
            logger.info("Evicted %s transcript(s) over the %s-entry limit", evicted, self.config.max_entries)
        return evicted

    async def _evict_size_over_budget(self) -> int:
        evicted = 0
        limit = self.config.max_size_bytes
        while self.cache.stats().total_size_bytes > limit:
            n = self.cache.evict_oldest(self.config.batch_size)
            if n == 0:
                break
            evicted += n
            await asyncio.sleep(0)
        if evicted:
            logger.info("Evicted %s transcript(s) over the %s MB size limit", evicted, self.config.max_size_mb)
        return evicted

    # -----------------------------
    # Schedule
    # -----------------------------
    async def _tick(self) -> None:
        try:
            await self.run_once()
        except CacheEvictionError:
            logger.exception("Scheduled cache eviction failed")

    def start(self, interval_hours: float | None = None) -> None:
        """Run a pass now, then every `interval_hours`. Needs a running event loop."""
        if self._scheduler is not None:
            logger.warning("Cache eviction schedule already running")
            return
        if self.config.policy == "NONE":
            logger.info("Cache eviction disabled (policy: NONE)")
            return

        hours = interval_hours or self.config.interval_hours
        scheduler = AsyncIOScheduler(timezone=timezone.utc)
        scheduler.add_job(
            self._tick,
            IntervalTrigger(hours=hours, timezone=timezone.utc),
            id=_JOB_ID,
            max_instances=1,
            coalesce=True,
            next_run_time=datetime.now(timezone.utc),
        )
        scheduler.start()
        self._scheduler = scheduler
        logger.info("Cache eviction scheduled (policy=%s every %sh)", self.config.policy, hours)

    def stop(self) -> None:
        if self._scheduler is None:
            return
        self._scheduler.shutdown(wait=False)
        self._scheduler = None
        logger.info("Cache eviction schedule stopped")

    def is_active(self) -> bool:
        return self._scheduler is not None
