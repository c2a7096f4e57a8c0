"""initial schema: jobs, job_results, transcripts, migrations ledger

Revision ID: 0001
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""
from datetime import datetime, timezone
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "jobs",
        sa.Column("id", sa.String(length=64), primary_key=True, nullable=False),
        sa.Column("type", sa.String(length=16), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("total_items", sa.Integer(), nullable=False),
        sa.Column("processed_items", sa.Integer(), nullable=False),
        sa.Column("successful_items", sa.Integer(), nullable=False),
        sa.Column("failed_items", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("metadata", sa.Text(), nullable=True),
        sa.CheckConstraint("type IN ('batch', 'playlist')", name="ck_jobs_type"),
        sa.CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed', 'aborted')",
            name="ck_jobs_status",
        ),
    )
    op.create_index("idx_jobs_status", "jobs", ["status"])
    op.create_index("idx_jobs_type", "jobs", ["type"])
    op.create_index("idx_jobs_created_at", "jobs", ["created_at"])
    op.create_index("idx_jobs_status_type", "jobs", ["status", "type"])

    op.create_table(
        "job_results",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True, nullable=False),
        sa.Column(
            "job_id",
            sa.String(length=64),
            sa.ForeignKey("jobs.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("video_id", sa.String(length=32), nullable=False),
        sa.Column("video_url", sa.Text(), nullable=False),
        sa.Column("success", sa.Boolean(), nullable=False),
        sa.Column("error_code", sa.String(length=64), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("processing_time_ms", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("idx_job_results_job_id", "job_results", ["job_id"])
    op.create_index("idx_job_results_video_id", "job_results", ["video_id"])
    op.create_index("idx_job_results_success", "job_results", ["success"])
    op.create_index("idx_job_results_created_at", "job_results", ["created_at"])

    op.create_table(
        "transcripts",
        sa.Column("video_id", sa.String(length=32), primary_key=True, nullable=False),
        sa.Column("video_url", sa.Text(), nullable=False),
        sa.Column("video_title", sa.Text(), nullable=True),
        sa.Column("transcript_json", sa.Text(), nullable=False),
        sa.Column("srt_text", sa.Text(), nullable=True),
        sa.Column("plain_text", sa.Text(), nullable=True),
        sa.Column("extracted_at", sa.DateTime(), nullable=False),
        sa.Column("last_accessed_at", sa.DateTime(), nullable=False),
        sa.Column("access_count", sa.Integer(), nullable=False),
        sa.Column("extraction_time_ms", sa.Integer(), nullable=True),
        sa.Column("error_code", sa.String(length=64), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
    )
    op.create_index("idx_transcripts_last_accessed", "transcripts", ["last_accessed_at"])
    op.create_index("idx_transcripts_extracted_at", "transcripts", ["extracted_at"])
    op.create_index("idx_transcripts_access_count", "transcripts", ["access_count"])

    migrations = op.create_table(
        "migrations",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True, nullable=False),
        sa.Column("version", sa.String(length=32), nullable=False, unique=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("applied_at", sa.DateTime(), nullable=False),
    )
    op.bulk_insert(
        migrations,
        [
            {
                "version": "001",
                "name": "initial_schema",
                "applied_at": datetime.now(timezone.utc).replace(tzinfo=None),
            }
        ],
    )


def downgrade() -> None:
    op.drop_table("migrations")

    op.drop_index("idx_transcripts_access_count", table_name="transcripts")
    op.drop_index("idx_transcripts_extracted_at", table_name="transcripts")
    op.drop_index("idx_transcripts_last_accessed", table_name="transcripts")
    op.drop_table("transcripts")

    op.drop_index("idx_job_results_created_at", table_name="job_results")
    op.drop_index("idx_job_results_success", table_name="job_results")
    op.drop_index("idx_job_results_video_id", table_name="job_results")
    op.drop_index("idx_job_results_job_id", table_name="job_results")
    op.drop_table("job_results")

    op.drop_index("idx_jobs_status_type", table_name="jobs")
    op.drop_index("idx_jobs_created_at", table_name="jobs")
    op.drop_index("idx_jobs_type", table_name="jobs")
    op.drop_index("idx_jobs_status", table_name="jobs")
    op.drop_table("jobs")
