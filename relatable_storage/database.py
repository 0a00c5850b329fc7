"""Thin SQLAlchemy layer used by the storage engine.

The storage engine speaks plain SQL with named parameters. This module runs
that SQL against an :class:`~sqlalchemy.engine.Engine`, binds timestamps,
booleans and BLOBs with the right column types, and keeps track of the
transaction the current thread is running in.

Outside :meth:`Database.transaction` every statement runs in its own
short transaction, which behaves like auto-commit. Inside it, all statements
issued by the same thread share one connection and are committed or rolled
back together; nested calls join the outer transaction.

Example:

    >>> from sqlalchemy import MetaData, create_engine
    >>> engine = create_engine("sqlite://")
    >>> metadata = MetaData()
    >>> table = define_table(metadata, "blobs")
    >>> metadata.create_all(engine)
    >>> database = Database(engine)
    >>> with database.transaction():
    ...     database.in_transaction()
    True

"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, BinaryIO

from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    DateTime,
    LargeBinary,
    String,
    Table,
    bindparam,
    create_engine,
    text,
)

from .uuid_utils import BASE64URL_LENGTH

if TYPE_CHECKING:
    from collections.abc import Iterator, Mapping

    from sqlalchemy import MetaData
    from sqlalchemy.engine import URL, Connection, Engine, Row
    from sqlalchemy.types import TypeEngine

logger = logging.getLogger(__name__)

FILENAME_LENGTH = 1024


def define_table(
    metadata: MetaData,
    name: str,
    schema: str | None = None,
) -> Table:
    """Describe the table layout expected by the storage engine."""
    return Table(
        name,
        metadata,
        Column("uuid", String(BASE64URL_LENGTH), primary_key=True),
        Column("filename", String(FILENAME_LENGTH), nullable=False, unique=True),
        Column("content_length", BigInteger, nullable=False),
        Column("last_modified", DateTime(timezone=True), nullable=False),
        Column("compressed", Boolean, nullable=False),
        Column("encrypted", Boolean, nullable=False),
        Column("contents", LargeBinary, nullable=False),
        schema=schema,
    )


def as_utc(value: datetime | None) -> datetime | None:
    """Return ``value`` in UTC, reading naive values as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _bind_type(value: Any) -> TypeEngine | None:
    if isinstance(value, bool):
        return Boolean()
    if isinstance(value, datetime):
        return DateTime(timezone=True)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return LargeBinary()
    return None


def _bind_value(value: Any) -> Any:
    if isinstance(value, datetime):
        return as_utc(value)
    if isinstance(value, (bytearray, memoryview)):
        return bytes(value)
    return value


class Database:
    """SQL execution and transaction scope over a SQLAlchemy engine."""

    def __init__(self, engine: Engine) -> None:
        """Wrap an existing engine."""
        self._engine = engine
        self._local = threading.local()

    @classmethod
    def from_url(cls, url: str | URL, **engine_kwargs: Any) -> Database:
        """Create an engine for ``url`` and wrap it."""
        return cls(create_engine(url, **engine_kwargs))

    @property
    def engine(self) -> Engine:
        """Underlying SQLAlchemy engine."""
        return self._engine

    def dispose(self) -> None:
        """Release pooled connections."""
        self._engine.dispose()

    def quote_identifier(self, name: str, *, always: bool = False) -> str:
        """Quote a schema, table or column name for the engine's dialect.

        Args:
            name: Identifier to quote.
            always: Quote even when the dialect would accept it bare.

        """
        preparer = self._engine.dialect.identifier_preparer
        if always:
            return preparer.quote_identifier(name)
        return preparer.quote(name)

    def in_transaction(self) -> bool:
        """Return whether the current thread is inside :meth:`transaction`."""
        return getattr(self._local, "connection", None) is not None

    @contextmanager
    def transaction(self) -> Iterator[Connection]:
        """Run the enclosed statements in one transaction.

        Commits when the block exits normally and rolls back when it raises.
        A nested call joins the transaction already open on this thread.
        """
        current = getattr(self._local, "connection", None)
        if current is not None:
            yield current
            return
        with self._engine.begin() as connection:
            self._local.connection = connection
            try:
                yield connection
            finally:
                self._local.connection = None

    @contextmanager
    def _connection(self) -> Iterator[Connection]:
        current = getattr(self._local, "connection", None)
        if current is not None:
            yield current
            return
        with self._engine.begin() as connection:
            yield connection

    def update(
        self,
        sql: str,
        params: Mapping[str, Any] | None = None,
        blobs: Mapping[str, BinaryIO] | None = None,
    ) -> int:
        """Execute a data-modifying statement and return the affected row count.

        Streams given in ``blobs`` are read to the end and bound as binary
        parameters under their key. They are not closed.
        """
        values = {key: _bind_value(value) for key, value in (params or {}).items()}
        for key, stream in (blobs or {}).items():
            values[key] = stream.read()
        statement = self._statement(sql, values)
        logger.debug("Executing update: %s", sql)
        with self._connection() as connection:
            return connection.execute(statement, values).rowcount

    def query(
        self,
        sql: str,
        params: Mapping[str, Any] | None = None,
        columns: Mapping[str, TypeEngine] | None = None,
    ) -> list[Row]:
        """Execute a query and return all rows.

        Args:
            sql: SELECT statement with named parameters.
            params: Parameter values.
            columns: Result types by column name, for values the driver
                does not convert on its own (timestamps on SQLite, for example).

        """
        values = {key: _bind_value(value) for key, value in (params or {}).items()}
        statement = self._statement(sql, values)
        if columns:
            statement = statement.columns(**columns)
        logger.debug("Executing query: %s", sql)
        with self._connection() as connection:
            return list(connection.execute(statement, values))

    @staticmethod
    def _statement(sql: str, values: Mapping[str, Any]):
        statement = text(sql)
        typed = []
        for key, value in values.items():
            bind_type = _bind_type(value)
            if bind_type is not None:
                typed.append(bindparam(key, type_=bind_type))
        return statement.bindparams(*typed) if typed else statement
