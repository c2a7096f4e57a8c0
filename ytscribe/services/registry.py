from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import Engine, text
from sqlalchemy.orm import Session, sessionmaker

from ytscribe.core.config import Settings
from ytscribe.core.errors import JobNotFoundError
from ytscribe.db.session import create_db_engine, init_db, make_session_factory
from ytscribe.services.cache_eviction import CacheEvictionService, EvictionConfig, EvictionResult
from ytscribe.services.extractors import Extractor, build_extractor
from ytscribe.services.jobs import Job, JobRepository, JobResult, JobSummary
from ytscribe.services.orchestrator import ExtractionOrchestrator
from ytscribe.services.request_queue import RequestQueue
from ytscribe.services.transcript_cache import CacheStats, TranscriptCacheRepository

logger = logging.getLogger(__name__)


@dataclass
class ServiceRegistry:
    """Process-wide wiring of the stores, queue, eviction service and orchestrator."""

    settings: Settings
    engine: Engine
    session_factory: sessionmaker[Session]
    cache: TranscriptCacheRepository
    jobs: JobRepository
    queue: RequestQueue
    eviction: CacheEvictionService
    orchestrator: ExtractionOrchestrator

    @classmethod
    def build(cls, settings: Settings, extractor: Extractor | None = None) -> "ServiceRegistry":
        settings.validate()

        engine = create_db_engine(settings.database_url)
        session_factory = make_session_factory(engine)
        cache = TranscriptCacheRepository(session_factory)
        jobs = JobRepository(session_factory)
        queue = RequestQueue(
            max_concurrency=settings.queue_max_concurrent,
            max_queue_size=settings.queue_max_size,
            queue_timeout=settings.queue_timeout_sec,
        )
        eviction = CacheEvictionService(cache, EvictionConfig.from_settings(settings))
        orchestrator = ExtractionOrchestrator(
            cache,
            jobs,
            queue,
            extractor or build_extractor(settings),
            retry_failed=settings.cache_retry_failed,
        )
        return cls(
            settings=settings,
            engine=engine,
            session_factory=session_factory,
            cache=cache,
            jobs=jobs,
            queue=queue,
            eviction=eviction,
            orchestrator=orchestrator,
        )

    def init_db(self) -> None:
        init_db(self.engine)

    def db_ok(self) -> bool:
        try:
            with self.session_factory() as db:
                db.execute(text("SELECT 1"))
            return True
        except Exception as e:
            logger.warning("DB health check failed: %s", e)
            return False

    def close(self) -> None:
        self.eviction.stop()
        self.queue.clear()
        self.engine.dispose()

    # -----------------------------
    # Cache management
    # -----------------------------
    def get_cache_stats(self) -> CacheStats:
        return self.cache.stats()

    def evict_cache(self, count: int) -> int:
        evicted = self.cache.evict_oldest(count)
        logger.info("Manual LRU eviction removed %s of %s requested", evicted, count)
        return evicted

    async def run_auto_eviction(self) -> EvictionResult:
        return await self.eviction.run_once()

    def clear_cache(self) -> int:
        deleted = self.cache.clear()
        logger.warning("Transcript cache cleared (%s entries)", deleted)
        return deleted

    # -----------------------------
    # Job management
    # -----------------------------
    def get_job(self, job_id: str) -> Job:
        job = self.jobs.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    def get_job_results(self, job_id: str) -> list[JobResult]:
        self.get_job(job_id)
        return self.jobs.get_results(job_id)

    def get_job_summary(self) -> JobSummary:
        return self.jobs.summary()

    def delete_job(self, job_id: str) -> None:
        if not self.jobs.delete(job_id):
            raise JobNotFoundError(job_id)

    def delete_old_jobs(self, days: float) -> int:
        deleted = self.jobs.delete_older_than(days)
        logger.info("Deleted %s job(s) completed more than %s days ago", deleted, days)
        return deleted
