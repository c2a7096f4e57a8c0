from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Iterable

from sqlalchemy import delete, func, select, update
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from ytscribe.db.session import utcnow
from ytscribe.models.transcript import TranscriptRow

logger = logging.getLogger(__name__)

# SQLite caps bound parameters per statement
_IN_CHUNK = 500
_UPSERT_CHUNK = 50


@dataclass(frozen=True)
class TranscriptSegment:
    time: str
    text: str


@dataclass
class CachedTranscript:
    video_id: str
    video_url: str
    transcript: list[TranscriptSegment] = field(default_factory=list)
    video_title: str | None = None
    srt: str | None = None
    text: str | None = None
    extracted_at: datetime = field(default_factory=utcnow)
    last_accessed_at: datetime = field(default_factory=utcnow)
    access_count: int = 1
    extraction_time_ms: int | None = None
    error_code: str | None = None
    error_message: str | None = None

    @property
    def is_failure(self) -> bool:
        return self.error_code is not None


@dataclass
class CacheStats:
    total_entries: int
    total_size_bytes: int
    oldest_entry: datetime | None = None
    newest_entry: datetime | None = None
    most_accessed: tuple[str, int] | None = None  # (video_id, access_count)
    hit_rate: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_entries": self.total_entries,
            "total_size_bytes": self.total_size_bytes,
            "total_size_mb": round(self.total_size_bytes / (1024 * 1024), 2),
            "oldest_entry": self.oldest_entry.isoformat() if self.oldest_entry else None,
            "newest_entry": self.newest_entry.isoformat() if self.newest_entry else None,
            "most_accessed": (
                {"video_id": self.most_accessed[0], "access_count": self.most_accessed[1]}
                if self.most_accessed
                else None
            ),
            "hit_rate": self.hit_rate,
        }


def _segments_to_json(segments: Iterable[TranscriptSegment]) -> str:
    return json.dumps([{"time": s.time, "text": s.text} for s in segments], ensure_ascii=False)


def _segments_from_json(raw: str | None) -> list[TranscriptSegment]:
    try:
        items = json.loads(raw or "[]")
    except ValueError:
        logger.warning("Unreadable transcript_json in cache row; treating as empty")
        return []
    return [TranscriptSegment(time=str(i.get("time", "")), text=str(i.get("text", ""))) for i in items if isinstance(i, dict)]


def _to_domain(row: TranscriptRow) -> CachedTranscript:
    return CachedTranscript(
        video_id=row.video_id,
        video_url=row.video_url,
        video_title=row.video_title,
        transcript=_segments_from_json(row.transcript_json),
        srt=row.srt_text,
        text=row.plain_text,
        extracted_at=row.extracted_at,
        last_accessed_at=row.last_accessed_at,
        access_count=row.access_count,
        extraction_time_ms=row.extraction_time_ms,
        error_code=row.error_code,
        error_message=row.error_message,
    )


def _to_values(t: CachedTranscript) -> dict[str, Any]:
    return {
        "video_id": t.video_id,
        "video_url": t.video_url,
        "video_title": t.video_title,
        "transcript_json": _segments_to_json(t.transcript),
        "srt_text": t.srt,
        "plain_text": t.text,
        "extracted_at": t.extracted_at,
        "last_accessed_at": t.last_accessed_at,
        "access_count": max(1, int(t.access_count or 1)),
        "extraction_time_ms": t.extraction_time_ms,
        "error_code": t.error_code,
        "error_message": t.error_message,
    }


def _upsert_stmt(values: list[dict[str, Any]]):
    stmt = sqlite_insert(TranscriptRow.__table__).values(values)
    replace = {c: getattr(stmt.excluded, c) for c in values[0] if c != "video_id"}
    return stmt.on_conflict_do_update(index_elements=["video_id"], set_=replace)


def _chunks(seq: list[str], size: int = _IN_CHUNK):
    for i in range(0, len(seq), size):
        yield seq[i : i + size]


class TranscriptCacheRepository:
    """Durable transcript cache keyed by video id.

    Reads (`get`, `get_batch`) advance access metadata; `exists` does not.
    """

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory
        self._hits = 0
        self._misses = 0

    # -----------------------------
    # Reads
    # -----------------------------
    def get(self, video_id: str) -> CachedTranscript | None:
        with self._session_factory() as db:
            row = db.get(TranscriptRow, video_id)
            if row is None:
                self._misses += 1
                return None
            row.access_count = row.access_count + 1
            row.last_accessed_at = utcnow()
            db.commit()
            self._hits += 1
            return _to_domain(row)

    def exists(self, video_id: str) -> bool:
        with self._session_factory() as db:
            found = db.scalar(select(TranscriptRow.video_id).where(TranscriptRow.video_id == video_id))
            return found is not None

    def get_batch(self, video_ids: Iterable[str]) -> dict[str, CachedTranscript]:
        """Look up many ids at once; every hit has its access metadata advanced in the same transaction."""
        ids = list(dict.fromkeys(video_ids))
        if not ids:
            return {}

        now = utcnow()
        found: dict[str, CachedTranscript] = {}
        with self._session_factory() as db:
            for chunk in _chunks(ids):
                rows = db.scalars(select(TranscriptRow).where(TranscriptRow.video_id.in_(chunk))).all()
                for row in rows:
                    row.access_count = row.access_count + 1
                    row.last_accessed_at = now
                    found[row.video_id] = _to_domain(row)
            db.commit()

        self._hits += len(found)
        self._misses += len(ids) - len(found)
        return found

    # -----------------------------
    # Writes
    # -----------------------------
    def put(self, transcript: CachedTranscript) -> None:
        with self._session_factory() as db:
            db.execute(_upsert_stmt([_to_values(transcript)]))
            db.commit()

    def put_batch(self, transcripts: Iterable[CachedTranscript]) -> None:
        values = [_to_values(t) for t in transcripts]
        if not values:
            return
        with self._session_factory() as db:
            try:
                for i in range(0, len(values), _UPSERT_CHUNK):
                    db.execute(_upsert_stmt(values[i : i + _UPSERT_CHUNK]))
                db.commit()
            except Exception:
                db.rollback()
                raise

    def touch(self, video_id: str) -> None:
        """Advance access metadata without loading the row. Store errors are logged, not raised."""
        try:
            with self._session_factory() as db:
                db.execute(
                    update(TranscriptRow)
                    .where(TranscriptRow.video_id == video_id)
                    .values(access_count=TranscriptRow.access_count + 1, last_accessed_at=utcnow())
                )
                db.commit()
        except Exception as e:
            logger.warning("Failed to update access time for %s: %s", video_id, e)

    def delete(self, video_id: str) -> bool:
        with self._session_factory() as db:
            res = db.execute(delete(TranscriptRow).where(TranscriptRow.video_id == video_id))
            db.commit()
            return (res.rowcount or 0) > 0

    def clear(self) -> int:
        with self._session_factory() as db:
            res = db.execute(delete(TranscriptRow))
            db.commit()
        self._hits = 0
        self._misses = 0
        return res.rowcount or 0

    # -----------------------------
    # Eviction
    # -----------------------------
    def evict_oldest(self, count: int) -> int:
        """Delete the `count` least recently accessed entries; returns how many were removed."""
        if count <= 0:
            return 0
        with self._session_factory() as db:
            victims = (
                select(TranscriptRow.video_id)
                .order_by(TranscriptRow.last_accessed_at.asc(), TranscriptRow.video_id.asc())
                .limit(count)
                .scalar_subquery()
            )
            res = db.execute(
                delete(TranscriptRow)
                .where(TranscriptRow.video_id.in_(victims))
                .execution_options(synchronize_session=False)
            )
            db.commit()
            return res.rowcount or 0

    def evict_older_than(self, days: float) -> int:
        threshold = utcnow() - timedelta(days=days)
        with self._session_factory() as db:
            res = db.execute(delete(TranscriptRow).where(TranscriptRow.last_accessed_at < threshold))
            db.commit()
            return res.rowcount or 0

    # -----------------------------
    # Stats
    # -----------------------------
    def count(self) -> int:
        with self._session_factory() as db:
            return db.scalar(select(func.count()).select_from(TranscriptRow)) or 0

    def stats(self) -> CacheStats:
        size_expr = func.coalesce(
            func.sum(
                func.length(TranscriptRow.transcript_json)
                + func.coalesce(func.length(TranscriptRow.srt_text), 0)
                + func.coalesce(func.length(TranscriptRow.plain_text), 0)
            ),
            0,
        )
        with self._session_factory() as db:
            total, size, oldest, newest = db.execute(
                select(
                    func.count(TranscriptRow.video_id),
                    size_expr,
                    func.min(TranscriptRow.extracted_at),
                    func.max(TranscriptRow.extracted_at),
                )
            ).one()
            top = db.execute(
                select(TranscriptRow.video_id, TranscriptRow.access_count)
                .order_by(TranscriptRow.access_count.desc(), TranscriptRow.video_id.asc())
                .limit(1)
            ).first()

        lookups = self._hits + self._misses
        return CacheStats(
            total_entries=int(total or 0),
            total_size_bytes=int(size or 0),
            oldest_entry=oldest,
            newest_entry=newest,
            most_accessed=(top[0], int(top[1])) if top else None,
            hit_rate=round(self._hits / lookups, 4) if lookups else None,
        )
