from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Iterable

from sqlalchemy import case, delete, func, select
from sqlalchemy.orm import Session

from ytscribe.db.session import utcnow
from ytscribe.models.job import JobResultRow, JobRow

logger = logging.getLogger(__name__)

JOB_TYPES = ("batch", "playlist")

PENDING = "pending"
PROCESSING = "processing"
COMPLETED = "completed"
FAILED = "failed"
ABORTED = "aborted"

JOB_STATUSES = (PENDING, PROCESSING, COMPLETED, FAILED, ABORTED)
TERMINAL_STATUSES = (COMPLETED, FAILED, ABORTED)


def new_job_id() -> str:
    return str(uuid.uuid4())


@dataclass
class Job:
    id: str
    type: str
    total_items: int
    status: str = PENDING
    processed_items: int = 0
    successful_items: int = 0
    failed_items: int = 0
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    completed_at: datetime | None = None
    error_message: str | None = None
    metadata: dict[str, Any] | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "status": self.status,
            "total_items": self.total_items,
            "processed_items": self.processed_items,
            "successful_items": self.successful_items,
            "failed_items": self.failed_items,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "error_message": self.error_message,
            "metadata": self.metadata,
        }


@dataclass
class JobResult:
    job_id: str
    video_id: str
    video_url: str
    success: bool
    error_code: str | None = None
    error_message: str | None = None
    processing_time_ms: int | None = None
    created_at: datetime = field(default_factory=utcnow)
    id: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "job_id": self.job_id,
            "video_id": self.video_id,
            "video_url": self.video_url,
            "success": self.success,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "processing_time_ms": self.processing_time_ms,
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class JobSummary:
    total: int = 0
    pending: int = 0
    processing: int = 0
    completed: int = 0
    failed: int = 0
    aborted: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "total": self.total,
            "pending": self.pending,
            "processing": self.processing,
            "completed": self.completed,
            "failed": self.failed,
            "aborted": self.aborted,
        }


def _load_metadata(raw: str | None) -> dict[str, Any] | None:
    if not raw:
        return None
    try:
        data = json.loads(raw)
    except ValueError:
        logger.warning("Unreadable job metadata; ignoring")
        return None
    return data if isinstance(data, dict) else None


def _job_to_domain(row: JobRow) -> Job:
    return Job(
        id=row.id,
        type=row.type,
        status=row.status,
        total_items=row.total_items,
        processed_items=row.processed_items,
        successful_items=row.successful_items,
        failed_items=row.failed_items,
        created_at=row.created_at,
        updated_at=row.updated_at,
        completed_at=row.completed_at,
        error_message=row.error_message,
        metadata=_load_metadata(row.metadata_json),
    )


def _result_to_domain(row: JobResultRow) -> JobResult:
    return JobResult(
        id=row.id,
        job_id=row.job_id,
        video_id=row.video_id,
        video_url=row.video_url,
        success=bool(row.success),
        error_code=row.error_code,
        error_message=row.error_message,
        processing_time_ms=row.processing_time_ms,
        created_at=row.created_at,
    )


def _result_row(r: JobResult) -> JobResultRow:
    return JobResultRow(
        job_id=r.job_id,
        video_id=r.video_id,
        video_url=r.video_url,
        success=bool(r.success),
        error_code=r.error_code,
        error_message=r.error_message,
        processing_time_ms=r.processing_time_ms,
        created_at=r.created_at,
    )


class JobRepository:
    """Persistence for jobs and their per-item results.

    Writes are unconditional: keeping terminal jobs immutable is the caller's job.
    """

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def create(self, job: Job) -> Job:
        if job.type not in JOB_TYPES:
            raise ValueError(f"Unknown job type: {job.type!r}")
        with self._session_factory() as db:
            row = JobRow(
                id=job.id,
                type=job.type,
                status=job.status,
                total_items=job.total_items,
                processed_items=job.processed_items,
                successful_items=job.successful_items,
                failed_items=job.failed_items,
                created_at=job.created_at,
                updated_at=job.updated_at,
                completed_at=job.completed_at,
                error_message=job.error_message,
                metadata_json=json.dumps(job.metadata, ensure_ascii=False) if job.metadata is not None else None,
            )
            db.add(row)
            db.commit()
            db.refresh(row)
            return _job_to_domain(row)

    def get(self, job_id: str) -> Job | None:
        with self._session_factory() as db:
            row = db.get(JobRow, job_id)
            return _job_to_domain(row) if row else None

    def _mutate(self, job_id: str, **values: Any) -> None:
        with self._session_factory() as db:
            row = db.get(JobRow, job_id)
            if row is None:
                logger.debug("Ignoring update for unknown job %s", job_id)
                return
            for k, v in values.items():
                setattr(row, k, v)
            row.updated_at = utcnow()
            db.commit()

    def update_status(self, job_id: str, status: str, error_message: str | None = None) -> None:
        if status not in JOB_STATUSES:
            raise ValueError(f"Unknown job status: {status!r}")
        values: dict[str, Any] = {"status": status}
        if error_message is not None:
            values["error_message"] = error_message
        self._mutate(job_id, **values)

    def update_progress(self, job_id: str, processed: int, successful: int, failed: int) -> None:
        self._mutate(job_id, processed_items=processed, successful_items=successful, failed_items=failed)

    def complete(self, job_id: str) -> None:
        self._mutate(job_id, status=COMPLETED, completed_at=utcnow())

    def fail(self, job_id: str, error_message: str) -> None:
        self._mutate(job_id, status=FAILED, completed_at=utcnow(), error_message=error_message)

    def abort(self, job_id: str) -> None:
        self._mutate(job_id, status=ABORTED, completed_at=utcnow())

    # -----------------------------
    # Results
    # -----------------------------
    def add_result(self, result: JobResult) -> JobResult:
        with self._session_factory() as db:
            row = _result_row(result)
            db.add(row)
            db.commit()
            db.refresh(row)
            return _result_to_domain(row)

    def add_results(self, results: Iterable[JobResult]) -> int:
        """Insert all results in one transaction, preserving the given order."""
        rows = [_result_row(r) for r in results]
        if not rows:
            return 0
        with self._session_factory() as db:
            try:
                db.add_all(rows)
                db.commit()
            except Exception:
                db.rollback()
                raise
        return len(rows)

    def get_results(self, job_id: str) -> list[JobResult]:
        with self._session_factory() as db:
            rows = db.scalars(
                select(JobResultRow)
                .where(JobResultRow.job_id == job_id)
                .order_by(JobResultRow.created_at.asc(), JobResultRow.id.asc())
            ).all()
            return [_result_to_domain(r) for r in rows]

    # -----------------------------
    # Listing
    # -----------------------------
    def list_recent(self, limit: int = 50) -> list[Job]:
        with self._session_factory() as db:
            rows = db.scalars(select(JobRow).order_by(JobRow.created_at.desc()).limit(limit)).all()
            return [_job_to_domain(r) for r in rows]

    def list_by_status(self, status: str) -> list[Job]:
        with self._session_factory() as db:
            rows = db.scalars(
                select(JobRow).where(JobRow.status == status).order_by(JobRow.created_at.desc())
            ).all()
            return [_job_to_domain(r) for r in rows]

    def list_by_type(self, job_type: str, limit: int = 50) -> list[Job]:
        with self._session_factory() as db:
            rows = db.scalars(
                select(JobRow).where(JobRow.type == job_type).order_by(JobRow.created_at.desc()).limit(limit)
            ).all()
            return [_job_to_domain(r) for r in rows]

    def list_by_type_and_status(self, job_type: str, status: str) -> list[Job]:
        with self._session_factory() as db:
            rows = db.scalars(
                select(JobRow)
                .where(JobRow.type == job_type, JobRow.status == status)
                .order_by(JobRow.created_at.desc())
            ).all()
            return [_job_to_domain(r) for r in rows]

    def summary(self) -> JobSummary:
        def _count(status: str):
            return func.coalesce(func.sum(case((JobRow.status == status, 1), else_=0)), 0)

        with self._session_factory() as db:
            row = db.execute(
                select(
                    func.count(JobRow.id),
                    _count(PENDING),
                    _count(PROCESSING),
                    _count(COMPLETED),
                    _count(FAILED),
                    _count(ABORTED),
                )
            ).one()
        return JobSummary(*(int(v or 0) for v in row))

    # -----------------------------
    # Deletion
    # -----------------------------
    def delete(self, job_id: str) -> bool:
        with self._session_factory() as db:
            res = db.execute(
                delete(JobRow).where(JobRow.id == job_id).execution_options(synchronize_session=False)
            )
            db.commit()
            return (res.rowcount or 0) > 0

    def delete_older_than(self, days: float) -> int:
        """Delete finished jobs whose completion is older than `days`; results go with them."""
        threshold = utcnow() - timedelta(days=days)
        with self._session_factory() as db:
            res = db.execute(
                delete(JobRow)
                .where(JobRow.completed_at.is_not(None), JobRow.completed_at < threshold)
                .execution_options(synchronize_session=False)
            )
            db.commit()
            return res.rowcount or 0
