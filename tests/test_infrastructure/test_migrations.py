"""Tests for the Alembic migration environment against a scratch SQLite file."""

from __future__ import annotations

from pathlib import Path

import pytest
from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine, inspect

from trade_settlement.config import get_settings
from trade_settlement.infrastructure.database.orm_models import Base

ROOT = Path(__file__).resolve().parents[2]


@pytest.fixture
def migrated_db(tmp_path, monkeypatch):  # noqa: ANN001, ANN201
    """Upgrade an empty database to head; yields a sync engine and the alembic config."""
    db_path = tmp_path / "migrated.db"
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{db_path}")
    get_settings.cache_clear()

    config = Config(str(ROOT / "alembic.ini"))
    config.attributes["configure_logger"] = False
    command.upgrade(config, "head")

    engine = create_engine(f"sqlite:///{db_path}")
    yield engine, config
    engine.dispose()
    get_settings.cache_clear()


class TestMigrations:
    def test_head_builds_every_model_table(self, migrated_db) -> None:
        engine, _ = migrated_db
        inspector = inspect(engine)

        assert "alembic_version" in inspector.get_table_names()
        for table in Base.metadata.sorted_tables:
            columns = {c["name"] for c in inspector.get_columns(table.name)}
            assert columns == {c.name for c in table.columns}, table.name
            indexes = {i["name"] for i in inspector.get_indexes(table.name)}
            assert {i.name for i in table.indexes} <= indexes, table.name

    def test_downgrade_to_base_drops_everything(self, migrated_db) -> None:
        engine, config = migrated_db

        command.downgrade(config, "base")

        assert inspect(engine).get_table_names() == ["alembic_version"]
