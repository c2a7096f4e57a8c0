"""
Cache-first extraction pipeline for multi-video jobs.

For one job:
1. look every requested id up in the transcript cache in one call;
2. extract each distinct miss once, through the admission queue;
3. cache fresh outcomes (best-effort) and push progress after every settlement;
4. persist one result row per requested position, in request order, and
   move the job to its terminal status.
"""
from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass, field, replace
from typing import Any, Iterable

from ytscribe.core.errors import (
    AppError,
    ExtractionFailedError,
    JobNotFoundError,
    JobStateError,
    QueueCancelledError,
    QueueFullError,
    QueueTimeoutError,
    TranscriptNotFoundError,
)
from ytscribe.db.session import utcnow
from ytscribe.services.extractors import ExtractedTranscript, Extractor
from ytscribe.services.formatting import format_srt, format_text
from ytscribe.services.jobs import ABORTED, COMPLETED, PENDING, PROCESSING, Job, JobRepository, JobResult, new_job_id
from ytscribe.services.request_queue import RequestQueue
from ytscribe.services.transcript_cache import CachedTranscript, TranscriptCacheRepository, TranscriptSegment

logger = logging.getLogger(__name__)

ABORTED_CODE = "ABORTED"
GENERIC_ERROR_CODE = "EXTRACTION_ERROR"
NO_TRANSCRIPT_CODE = "NO_TRANSCRIPT"

_QUEUE_ERRORS = (QueueFullError, QueueTimeoutError, QueueCancelledError)


@dataclass(frozen=True)
class VideoRef:
    video_id: str
    video_url: str


@dataclass
class ItemResult:
    video_id: str
    video_url: str
    success: bool
    from_cache: bool = False
    video_title: str | None = None
    transcript: list[TranscriptSegment] = field(default_factory=list)
    srt: str | None = None
    text: str | None = None
    error_code: str | None = None
    error_message: str | None = None
    processing_time_ms: int | None = None

    @classmethod
    def from_cache(cls, ref: VideoRef, hit: CachedTranscript) -> "ItemResult":
        return cls(
            video_id=ref.video_id,
            video_url=ref.video_url,
            success=not hit.is_failure,
            from_cache=True,
            video_title=hit.video_title,
            transcript=list(hit.transcript),
            srt=hit.srt,
            text=hit.text,
            error_code=hit.error_code,
            error_message=hit.error_message,
            processing_time_ms=0,
        )

    @classmethod
    def failure(cls, ref: VideoRef, code: str, message: str, elapsed_ms: int | None = None) -> "ItemResult":
        return cls(
            video_id=ref.video_id,
            video_url=ref.video_url,
            success=False,
            error_code=code,
            error_message=message,
            processing_time_ms=elapsed_ms,
        )

    def to_job_result(self, job_id: str, created_at) -> JobResult:
        return JobResult(
            job_id=job_id,
            video_id=self.video_id,
            video_url=self.video_url,
            success=self.success,
            error_code=self.error_code,
            error_message=self.error_message,
            processing_time_ms=self.processing_time_ms,
            created_at=created_at,
        )


@dataclass
class BatchOutcome:
    job_id: str
    status: str
    results: list[ItemResult]
    cache_hits: int = 0
    urls_to_extract: int = 0
    successful: int = 0
    failed: int = 0
    duration_ms: int = 0


@dataclass
class _Progress:
    total: int
    successful: int = 0
    failed: int = 0

    @property
    def processed(self) -> int:
        return self.successful + self.failed

    def record(self, success: bool) -> None:
        if success:
            self.successful += 1
        else:
            self.failed += 1


def _elapsed_ms(t0: float) -> int:
    return int((time.monotonic() - t0) * 1000)


def _cached_failure_error(ref: VideoRef, hit: CachedTranscript) -> ExtractionFailedError:
    if hit.error_code == NO_TRANSCRIPT_CODE:
        return TranscriptNotFoundError(ref.video_url, reason=hit.error_message)
    return ExtractionFailedError(
        hit.error_message or "Extraction failed",
        ref.video_url,
        code=hit.error_code or GENERIC_ERROR_CODE,
    )


class ExtractionOrchestrator:
    def __init__(
        self,
        cache: TranscriptCacheRepository,
        jobs: JobRepository,
        queue: RequestQueue,
        extractor: Extractor,
        *,
        retry_failed: bool = True,
        concurrency: int | None = None,
    ):
        self.cache = cache
        self.jobs = jobs
        self.queue = queue
        self.extractor = extractor
        self.retry_failed = retry_failed
        self.concurrency = max(1, concurrency or queue.max_concurrency)

        self._running: dict[str, asyncio.Task] = {}
        self._abort_requested: set[str] = set()

    # -----------------------------
    # Job entry points
    # -----------------------------
    def create_job(self, job_type: str, total_items: int, metadata: dict[str, Any] | None = None) -> Job:
        job = Job(id=new_job_id(), type=job_type, total_items=total_items, metadata=metadata)
        created = self.jobs.create(job)
        logger.info("Created %s job %s with %s item(s)", job_type, created.id, total_items)
        return created

    async def run(
        self,
        job_type: str,
        items: Iterable[VideoRef],
        metadata: dict[str, Any] | None = None,
        extractor: Extractor | None = None,
    ) -> BatchOutcome:
        items = list(items)
        job = self.create_job(job_type, len(items), metadata)
        return await self.process(job.id, items, extractor)

    async def process(self, job_id: str, items: Iterable[VideoRef], extractor: Extractor | None = None) -> BatchOutcome:
        """
        Drive one PENDING job to a terminal status. Progress is visible through the job store meanwhile.

        Nothing is written for a job that is unknown (JobNotFoundError), already
        running or no longer pending (JobStateError), or whose item count differs
        from its `total_items` (ValueError).
        """
        items = list(items)
        self._check_runnable(job_id, len(items))
        inner = asyncio.ensure_future(self._process(job_id, items, extractor or self.extractor))
        self._running[job_id] = inner

        def _forget(_t: asyncio.Task) -> None:
            self._running.pop(job_id, None)
            self._abort_requested.discard(job_id)

        inner.add_done_callback(_forget)
        return await inner

    def abort(self, job_id: str) -> bool:
        task = self._running.get(job_id)
        if task is None or task.done():
            return False
        self._abort_requested.add(job_id)
        task.cancel()
        logger.info("Abort requested for job %s", job_id)
        return True

    def running_jobs(self) -> list[str]:
        return [jid for jid, t in self._running.items() if not t.done()]

    def _check_runnable(self, job_id: str, item_count: int) -> None:
        job = self.jobs.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        running = self._running.get(job_id)
        if running is not None and not running.done():
            raise JobStateError(job_id, job.status, reason=f"Job {job_id} is already being processed")
        if job.status != PENDING:
            raise JobStateError(job_id, job.status)
        if item_count != job.total_items:
            raise ValueError(f"Job {job_id} expects {job.total_items} item(s), got {item_count}")

    # -----------------------------
    # Single video
    # -----------------------------
    async def transcribe(self, ref: VideoRef, extractor: Extractor | None = None) -> ItemResult:
        """
        Transcribe one video outside any job: cache first, then one queued extraction.

        Queue rejections (QueueFullError / QueueTimeoutError) and extraction
        failures propagate to the caller; fresh outcomes are cached best-effort.
        """
        hit = self._lookup([ref.video_id]).get(ref.video_id)
        if hit is not None and not (hit.is_failure and self.retry_failed):
            if hit.is_failure:
                raise _cached_failure_error(ref, hit)
            logger.info("Cache hit for %s", ref.video_id)
            return ItemResult.from_cache(ref, hit)

        extractor = extractor or self.extractor
        t0 = time.monotonic()
        try:
            extracted = await self.queue.submit(lambda: extractor.extract(ref.video_id, ref.video_url))
        except _QUEUE_ERRORS:
            raise
        except AppError as e:
            self._store(ItemResult.failure(ref, e.code, e.message, _elapsed_ms(t0)))
            raise
        except Exception as e:
            logger.warning("Extraction failed for %s: %s", ref.video_id, e)
            message = str(e) or type(e).__name__
            self._store(ItemResult.failure(ref, GENERIC_ERROR_CODE, message, _elapsed_ms(t0)))
            raise ExtractionFailedError(message, ref.video_url, code=GENERIC_ERROR_CODE) from e

        item = self._from_extraction(ref, extracted, t0)
        self._store(item)
        if not item.success:
            raise TranscriptNotFoundError(ref.video_url)
        return item

    # -----------------------------
    # Pipeline
    # -----------------------------
    async def _process(self, job_id: str, items: list[VideoRef], extractor: Extractor) -> BatchOutcome:
        t0 = time.monotonic()
        results: list[ItemResult | None] = [None] * len(items)
        progress = _Progress(total=len(items))
        outcome = BatchOutcome(job_id=job_id, status=PROCESSING, results=[])

        try:
            self.jobs.update_status(job_id, PROCESSING)

            # one lookup per distinct id; positions keep request order
            positions: dict[str, list[int]] = {}
            for i, ref in enumerate(items):
                positions.setdefault(ref.video_id, []).append(i)

            cached = self._lookup(list(positions))
            misses: list[str] = []
            for video_id, idxs in positions.items():
                hit = cached.get(video_id)
                if hit is None or (hit.is_failure and self.retry_failed):
                    misses.append(video_id)
                    continue
                for i in idxs:
                    results[i] = ItemResult.from_cache(items[i], hit)
                    progress.record(results[i].success)
                    outcome.cache_hits += 1

            outcome.urls_to_extract = len(misses)
            if outcome.cache_hits:
                self._push_progress(job_id, progress)
            logger.info(
                "Job %s: %s cache hit(s), %s video(s) to extract",
                job_id,
                outcome.cache_hits,
                outcome.urls_to_extract,
            )

            if misses:
                await self._extract_misses(job_id, items, positions, misses, results, progress, extractor)

            self._persist_results(job_id, results)
            self.jobs.complete(job_id)
            outcome.status = COMPLETED

        except asyncio.CancelledError:
            self._finish_aborted(job_id, items, results, progress)
            outcome.status = ABORTED
            if job_id not in self._abort_requested:
                raise

        except Exception as e:
            logger.error("Job %s failed: %s", job_id, e, exc_info=True)
            try:
                self.jobs.fail(job_id, str(e) or type(e).__name__)
            except Exception as store_err:
                logger.warning("Could not mark job %s as failed: %s", job_id, store_err)
            raise

        outcome.results = [r for r in results if r is not None]
        outcome.successful = progress.successful
        outcome.failed = progress.failed
        outcome.duration_ms = _elapsed_ms(t0)
        logger.info(
            "Job %s %s: %s ok, %s failed in %sms",
            job_id,
            outcome.status,
            outcome.successful,
            outcome.failed,
            outcome.duration_ms,
        )
        return outcome

    def _lookup(self, video_ids: list[str]) -> dict[str, CachedTranscript]:
        if not video_ids:
            return {}
        try:
            return self.cache.get_batch(video_ids)
        except Exception as e:
            logger.warning("Cache lookup failed; extracting every item: %s", e)
            return {}

    async def _extract_misses(
        self,
        job_id: str,
        items: list[VideoRef],
        positions: dict[str, list[int]],
        misses: list[str],
        results: list[ItemResult | None],
        progress: _Progress,
        extractor: Extractor,
    ) -> None:
        todo = deque(misses)

        async def worker() -> None:
            while todo:
                video_id = todo.popleft()
                idxs = positions[video_id]
                item = await self._extract_one(items[idxs[0]], extractor)
                # settle every position that asked for this id in one step
                for i in idxs:
                    results[i] = replace(item, video_url=items[i].video_url)
                    progress.record(item.success)
                self._push_progress(job_id, progress)

        workers = [asyncio.ensure_future(worker()) for _ in range(min(self.concurrency, len(misses)))]
        try:
            await asyncio.gather(*workers)
        except BaseException:
            for w in workers:
                w.cancel()
            await asyncio.gather(*workers, return_exceptions=True)
            raise

    async def _extract_one(self, ref: VideoRef, extractor: Extractor) -> ItemResult:
        t0 = time.monotonic()
        try:
            extracted = await self.queue.submit(lambda: extractor.extract(ref.video_id, ref.video_url))
        except _QUEUE_ERRORS as e:
            # admission problems say nothing about the video; never cached
            logger.warning("Queue rejected %s: %s", ref.video_id, e.message)
            return ItemResult.failure(ref, e.code, e.message, _elapsed_ms(t0))
        except AppError as e:
            item = ItemResult.failure(ref, e.code, e.message, _elapsed_ms(t0))
            self._store(item)
            return item
        except Exception as e:
            logger.warning("Extraction failed for %s: %s", ref.video_id, e)
            item = ItemResult.failure(ref, GENERIC_ERROR_CODE, str(e) or type(e).__name__, _elapsed_ms(t0))
            self._store(item)
            return item

        item = self._from_extraction(ref, extracted, t0)
        self._store(item)
        return item

    def _from_extraction(self, ref: VideoRef, extracted: ExtractedTranscript, t0: float) -> ItemResult:
        segments = list(extracted.segments or [])
        if not segments:
            return ItemResult.failure(ref, NO_TRANSCRIPT_CODE, "No transcript available for this video", _elapsed_ms(t0))
        return ItemResult(
            video_id=ref.video_id,
            video_url=ref.video_url,
            success=True,
            video_title=extracted.video_title,
            transcript=segments,
            srt=format_srt(segments),
            text=format_text(segments),
            processing_time_ms=_elapsed_ms(t0),
        )

    def _store(self, item: ItemResult) -> None:
        now = utcnow()
        entry = CachedTranscript(
            video_id=item.video_id,
            video_url=item.video_url,
            video_title=item.video_title,
            transcript=list(item.transcript),
            srt=item.srt,
            text=item.text,
            extracted_at=now,
            last_accessed_at=now,
            access_count=1,
            extraction_time_ms=item.processing_time_ms,
            error_code=item.error_code,
            error_message=item.error_message,
        )
        try:
            self.cache.put(entry)
        except Exception as e:
            logger.warning("Failed to cache transcript for %s: %s", item.video_id, e)

    def _push_progress(self, job_id: str, progress: _Progress) -> None:
        self.jobs.update_progress(job_id, progress.processed, progress.successful, progress.failed)

    def _persist_results(self, job_id: str, results: list[ItemResult | None]) -> None:
        created_at = utcnow()
        self.jobs.add_results(r.to_job_result(job_id, created_at) for r in results if r is not None)

    def _finish_aborted(
        self,
        job_id: str,
        items: list[VideoRef],
        results: list[ItemResult | None],
        progress: _Progress,
    ) -> None:
        settled = progress.processed
        for i, ref in enumerate(items):
            if results[i] is None:
                results[i] = ItemResult.failure(ref, ABORTED_CODE, "Extraction aborted")
                progress.record(False)
        try:
            self._push_progress(job_id, progress)
            self._persist_results(job_id, results)
            self.jobs.abort(job_id)
        except Exception as e:
            logger.error("Could not record abort of job %s: %s", job_id, e, exc_info=True)
        logger.warning("Job %s aborted after %s/%s item(s)", job_id, settled, progress.total)
