from datetime import datetime

from sqlalchemy import DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from ytscribe.db.base import Base


class TranscriptRow(Base):
    """One cached transcript per video id (upserted on re-extraction)."""

    __tablename__ = "transcripts"

    video_id: Mapped[str] = mapped_column(String(32), primary_key=True)
    video_url: Mapped[str] = mapped_column(Text, nullable=False)
    video_title: Mapped[str | None] = mapped_column(Text, nullable=True)

    transcript_json: Mapped[str] = mapped_column(Text, nullable=False)  # JSON string: [{time,text}]
    srt_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    plain_text: Mapped[str | None] = mapped_column(Text, nullable=True)

    extracted_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    last_accessed_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    access_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    extraction_time_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # set when the extraction failed and the failure itself was cached
    error_code: Mapped[str | None] = mapped_column(String(64), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index("idx_transcripts_last_accessed", "last_accessed_at"),
        Index("idx_transcripts_extracted_at", "extracted_at"),
        Index("idx_transcripts_access_count", "access_count"),
    )
