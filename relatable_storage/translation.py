"""Translation of database and I/O failures into storage errors.

Maps:
- unique-key violation → AlreadyExistsError
- any other SQLAlchemyError → StorageIOError
- OSError → StorageIOError
- StorageError → unchanged

Unique violations are recognised from the driver's error code where the
driver exposes one and from the message text otherwise, since SQLAlchemy
reports every constraint failure as the same ``IntegrityError``.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import TYPE_CHECKING

from sqlalchemy.exc import DBAPIError, IntegrityError, SQLAlchemyError

from .interfaces import AlreadyExistsError, StorageError, StorageIOError

if TYPE_CHECKING:
    from collections.abc import Iterator

# SQLSTATE for PostgreSQL and others, numeric codes for MySQL and SQL Server.
_UNIQUE_CODES = frozenset({"23505", "1062", "2601", "2627"})
_UNIQUE_MARKERS = ("unique", "duplicate", "ora-00001")


def _driver_codes(exc: DBAPIError) -> set[str]:
    orig = exc.orig
    codes = set()
    for attribute in ("pgcode", "sqlstate", "sqlite_errorname"):
        value = getattr(orig, attribute, None)
        if value:
            codes.add(str(value))
    args = getattr(orig, "args", ())
    if args and isinstance(args[0], int):
        codes.add(str(args[0]))
    return codes


def is_unique_violation(exc: BaseException) -> bool:
    """Return whether ``exc`` reports a duplicate key."""
    if not isinstance(exc, IntegrityError):
        return False
    codes = _driver_codes(exc)
    if codes & _UNIQUE_CODES or "SQLITE_CONSTRAINT_UNIQUE" in codes:
        return True
    text = str(exc.orig).lower()
    return any(marker in text for marker in _UNIQUE_MARKERS)


def translate_exception(
    exc: BaseException,
    *,
    filename: str | None = None,
) -> StorageError:
    """Convert a database or I/O failure into a :class:`StorageError`."""
    if isinstance(exc, StorageError):
        return exc
    if is_unique_violation(exc):
        return AlreadyExistsError(filename or "")
    if isinstance(exc, SQLAlchemyError):
        return StorageIOError(f"Database operation failed: {exc}", filename=filename)
    return StorageIOError(f"I/O operation failed: {exc}", filename=filename)


@contextmanager
def translate_errors(*, filename: str | None = None) -> Iterator[None]:
    """Context manager translating database and I/O failures.

    Example:
        ```python
        with translate_errors(filename="a.txt"):
            database.update(sql, params)  # IntegrityError -> AlreadyExistsError
        ```

    Raises:
        StorageError: Translated failure, chained to the original.

    """
    try:
        yield
    except StorageError:
        raise
    except (SQLAlchemyError, OSError) as exc:
        raise translate_exception(exc, filename=filename) from exc
