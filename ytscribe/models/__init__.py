from ytscribe.models.job import JobResultRow, JobRow
from ytscribe.models.migration import SchemaMigration
from ytscribe.models.transcript import TranscriptRow

__all__ = ["JobRow", "JobResultRow", "SchemaMigration", "TranscriptRow"]
