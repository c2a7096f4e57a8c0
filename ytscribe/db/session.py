import logging
from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import Engine, create_engine, event, select
from sqlalchemy.engine import make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ytscribe.db.base import Base

logger = logging.getLogger(__name__)

SCHEMA_VERSION = "001"
SCHEMA_NAME = "initial_schema"


def utcnow() -> datetime:
    """Naive UTC timestamp; SQLite stores datetimes without a zone."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _set_sqlite_pragmas(dbapi_conn, _record) -> None:
    cur = dbapi_conn.cursor()
    try:
        cur.execute("PRAGMA foreign_keys=ON")
        cur.execute("PRAGMA journal_mode=WAL")
    finally:
        cur.close()


def create_db_engine(database_url: str) -> Engine:
    url = make_url(database_url)
    if not url.drivername.startswith("sqlite"):
        return create_engine(database_url, pool_pre_ping=True)

    # file-backed db: make sure its directory exists
    if url.database and url.database != ":memory:":
        Path(url.database).expanduser().resolve().parent.mkdir(parents=True, exist_ok=True)

    # one shared connection for the whole process
    engine = create_engine(
        database_url,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    event.listen(engine, "connect", _set_sqlite_pragmas)
    return engine


def make_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def init_db(bind: Engine) -> None:
    """Create the schema from the ORM metadata and record it in the migrations ledger."""
    from ytscribe.models import SchemaMigration  # registers every model on Base

    Base.metadata.create_all(bind)

    with Session(bind) as db:
        applied = db.scalar(select(SchemaMigration).where(SchemaMigration.version == SCHEMA_VERSION))
        if applied is None:
            db.add(SchemaMigration(version=SCHEMA_VERSION, name=SCHEMA_NAME, applied_at=utcnow()))
            db.commit()
            logger.info("Applied schema %s_%s", SCHEMA_VERSION, SCHEMA_NAME)
