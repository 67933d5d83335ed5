"""Alembic revisions build the same schema the ORM models declare."""

from __future__ import annotations

from pathlib import Path

import pytest
from alembic import command
from alembic.config import Config
from alembic.script import ScriptDirectory
from sqlalchemy import create_engine, inspect

from job_coordinator.models import Base

PROJECT_ROOT = Path(__file__).resolve().parents[1]
RUN_TABLES = {"job_runs", "job_logs"}
WORKER_TABLES = {"worker_instances", "worker_leases"}


@pytest.fixture
def migration_db(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    database_file = tmp_path / "migrations.sqlite"
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{database_file}")
    return database_file


def _config() -> Config:
    config = Config(str(PROJECT_ROOT / "alembic.ini"))
    config.set_main_option("script_location", str(PROJECT_ROOT / "migrations"))
    return config


def _schema(database_file: Path) -> tuple[set[str], str | None]:
    engine = create_engine(f"sqlite:///{database_file}")
    try:
        with engine.connect() as connection:
            tables = set(inspect(connection).get_table_names())
            revision = None
            if "alembic_version" in tables:
                revision = connection.exec_driver_sql(
                    "SELECT version_num FROM alembic_version"
                ).scalar()
    finally:
        engine.dispose()
    return tables - {"alembic_version"}, revision


def test_revision_chain_is_linear() -> None:
    script = ScriptDirectory.from_config(_config())

    revisions = [rev.revision for rev in script.walk_revisions("base", "heads")]

    assert list(reversed(revisions)) == [
        "0001_job_runs_and_logs",
        "0002_worker_instances_and_leases",
    ]


def test_upgrade_matches_models_and_steps_back_one_revision(
    migration_db: Path,
) -> None:
    config = _config()

    command.upgrade(config, "head")
    tables, revision = _schema(migration_db)
    assert tables == set(Base.metadata.tables)
    assert tables == RUN_TABLES | WORKER_TABLES
    assert revision == "0002_worker_instances_and_leases"

    command.downgrade(config, "-1")
    tables, revision = _schema(migration_db)
    assert tables == RUN_TABLES
    assert revision == "0001_job_runs_and_logs"

    command.upgrade(config, "head")
    tables, revision = _schema(migration_db)
    assert tables == RUN_TABLES | WORKER_TABLES
    assert revision == "0002_worker_instances_and_leases"


def test_upgraded_indexes_match_models(migration_db: Path) -> None:
    command.upgrade(_config(), "head")

    engine = create_engine(f"sqlite:///{migration_db}")
    try:
        with engine.connect() as connection:
            inspector = inspect(connection)
            for table_name, table in Base.metadata.tables.items():
                indexes = inspector.get_indexes(table_name)
                migrated = {index["name"] for index in indexes}
                assert migrated == {index.name for index in table.indexes}, table_name
    finally:
        engine.dispose()
