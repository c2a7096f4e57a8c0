from pathlib import Path

from alembic import command
from alembic.config import Config
from sqlalchemy import inspect, select

from ytscribe.db.session import create_db_engine, init_db, make_session_factory
from ytscribe.models import SchemaMigration

ROOT = Path(__file__).resolve().parents[1]


def _alembic_config(url: str) -> Config:
    cfg = Config()
    cfg.set_main_option("script_location", str(ROOT / "alembic"))
    cfg.set_main_option("sqlalchemy.url", url)
    return cfg


def _ledger(engine):
    with make_session_factory(engine)() as db:
        return [(m.version, m.name) for m in db.scalars(select(SchemaMigration))]


def test_upgrade_creates_schema_and_ledger(tmp_path):
    url = f"sqlite:///{tmp_path / 'transcripts.db'}"
    command.upgrade(_alembic_config(url), "head")

    engine = create_db_engine(url)
    try:
        tables = set(inspect(engine).get_table_names())
        assert {"transcripts", "jobs", "job_results", "migrations"} <= tables
        assert _ledger(engine) == [("001", "initial_schema")]

        # the startup path sees the schema as applied
        init_db(engine)
        assert _ledger(engine) == [("001", "initial_schema")]
    finally:
        engine.dispose()


def test_downgrade_drops_schema(tmp_path):
    url = f"sqlite:///{tmp_path / 'transcripts.db'}"
    cfg = _alembic_config(url)
    command.upgrade(cfg, "head")
    command.downgrade(cfg, "base")

    engine = create_db_engine(url)
    try:
        tables = set(inspect(engine).get_table_names())
        assert not tables & {"transcripts", "jobs", "job_results", "migrations"}
    finally:
        engine.dispose()


def test_init_db_is_idempotent(engine):
    init_db(engine)
    init_db(engine)
    assert _ledger(engine) == [("001", "initial_schema")]
