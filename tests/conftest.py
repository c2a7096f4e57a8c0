import asyncio
from datetime import timedelta

import pytest

from ytscribe.core.config import Settings
from ytscribe.db.session import create_db_engine, init_db, make_session_factory, utcnow
from ytscribe.services.extractors import ExtractedTranscript
from ytscribe.services.jobs import JobRepository
from ytscribe.services.orchestrator import ExtractionOrchestrator
from ytscribe.services.request_queue import RequestQueue
from ytscribe.services.transcript_cache import CachedTranscript, TranscriptCacheRepository, TranscriptSegment


class FakeExtractor:
    """In-memory extractor: `failures` maps video id -> exception to raise."""

    def __init__(self, failures=None, delay: float = 0.0, gate: asyncio.Event | None = None):
        self.failures = dict(failures or {})
        self.delay = delay
        self.gate = gate
        self.calls: list[str] = []

    async def extract(self, video_id: str, video_url: str) -> ExtractedTranscript:
        self.calls.append(video_id)
        if self.gate is not None:
            await self.gate.wait()
        if self.delay:
            await asyncio.sleep(self.delay)
        if video_id in self.failures:
            raise self.failures[video_id]
        return ExtractedTranscript(
            segments=[
                TranscriptSegment(time="0:00", text=f"hello from {video_id}"),
                TranscriptSegment(time="0:05", text="second line"),
            ],
            video_title=f"Video {video_id}",
        )


def _make_cached(video_id: str, *, age: timedelta = timedelta(0), error_code: str | None = None, text: str = "cached line"):
    ts = utcnow() - age
    return CachedTranscript(
        video_id=video_id,
        video_url=f"https://www.youtube.com/watch?v={video_id}",
        video_title=f"Cached {video_id}",
        transcript=[] if error_code else [TranscriptSegment(time="0:00", text=text)],
        srt=None if error_code else f"1\n00:00:00,000 --> 00:00:03,000\n{text}\n",
        text=None if error_code else f"0:00 {text}",
        extracted_at=ts,
        last_accessed_at=ts,
        access_count=1,
        extraction_time_ms=None if error_code else 120,
        error_code=error_code,
        error_message="cached failure" if error_code else None,
    )


@pytest.fixture
def engine():
    eng = create_db_engine("sqlite://")
    init_db(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def cache(session_factory):
    return TranscriptCacheRepository(session_factory)


@pytest.fixture
def jobs(session_factory):
    return JobRepository(session_factory)


@pytest.fixture
def extractor():
    return FakeExtractor()


@pytest.fixture
def fake_extractor():
    return FakeExtractor


@pytest.fixture
def make_cached():
    return _make_cached


@pytest.fixture
def make_orchestrator(cache, jobs):
    def _make(extractor, *, max_concurrency=3, max_queue_size=100, queue_timeout=5.0, **kwargs):
        queue = RequestQueue(max_concurrency=max_concurrency, max_queue_size=max_queue_size, queue_timeout=queue_timeout)
        return ExtractionOrchestrator(cache, jobs, queue, extractor, **kwargs)

    return _make


@pytest.fixture
def test_settings():
    return Settings(
        database_url="sqlite://",
        env="test",
        log_level="INFO",
        cache_eviction_policy="NONE",
        queue_max_concurrent=2,
        queue_max_size=10,
        queue_timeout_ms=5000,
        playlist_max_videos=5,
    )
