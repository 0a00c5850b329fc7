"""Shared fixtures providing a SQLite-backed storage table."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
from sqlalchemy import MetaData, create_engine

from relatable_storage import Database, RelaTableStorage, define_table

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path

    from sqlalchemy.engine import Engine

TABLE_NAME = "stored_files"


@pytest.fixture
def engine(tmp_path: Path) -> Iterator[Engine]:
    """Provide an engine on a fresh SQLite database with the storage table."""
    engine = create_engine(f"sqlite:///{tmp_path / 'storage.db'}")
    metadata = MetaData()
    define_table(metadata, TABLE_NAME)
    metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def database(engine: Engine) -> Database:
    """Provide the database collaborator over the test engine."""
    return Database(engine)


@pytest.fixture
def storage(database: Database) -> RelaTableStorage:
    """Provide a storage with default strategies and no compression."""
    return RelaTableStorage(database, TABLE_NAME)
