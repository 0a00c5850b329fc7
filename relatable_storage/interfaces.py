"""Core interfaces, options and errors shared by the storage implementation."""

from __future__ import annotations

import zlib
from abc import ABC, abstractmethod
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .resources import ResourceLike
    from .storage import DatabaseResource

DEFAULT_CHUNK_SIZE = 8192


class StorageError(RuntimeError):
    """Base exception for storage operations."""

    def __init__(
        self,
        message: str,
        *,
        filename: str | None = None,
    ) -> None:
        """Initialise the base error with an optional file name context."""
        detail = message if filename is None else ": ".join((message, filename))
        super().__init__(detail)
        self.message = message
        self.filename = filename


class NotFoundError(StorageError):
    """Raised when the requested file name does not exist."""

    def __init__(self, filename: str) -> None:
        """Create a not-found error for the provided file name."""
        super().__init__("File not found", filename=filename)


class AlreadyExistsError(StorageError):
    """Raised when a file name is already taken and replacing was not requested."""

    def __init__(self, filename: str, *, reason: str | None = None) -> None:
        """Create an already-exists error with an optional reason."""
        super().__init__(reason or "File already exists", filename=filename)


class CorruptionError(StorageError):
    """Raised when stored or streamed data fails an integrity check."""

    @classmethod
    def inconsistent_length(
        cls,
        filename: str,
        *,
        expected: int,
        actual: int,
    ) -> CorruptionError:
        """Return an error describing a declared/actual length mismatch."""
        return cls(
            f"Inconsistent content length (expected: {expected}, actual: {actual})",
            filename=filename,
        )


class InvalidOperationError(StorageError):
    """Raised when an operation is not allowed with the given arguments."""

    @classmethod
    def read_option_not_allowed(cls) -> InvalidOperationError:
        """Return an error for a READ option passed to a write call."""
        return cls("READ is not a valid option for writing")

    @classmethod
    def password_required(cls, filename: str | None = None) -> InvalidOperationError:
        """Return an error for encrypted content read without a password."""
        return cls("Content is encrypted but no password was configured", filename=filename)


class UnsupportedOptionError(StorageError):
    """Raised when an option is recognised but not supported."""

    def __init__(self, option: object) -> None:
        """Create an error naming the unsupported option."""
        super().__init__(f"Unsupported option: {option}")
        self.option = option


class PreconditionFailedError(StorageError):
    """Raised when an operation requires state that is not present."""

    @classmethod
    def transaction_required(cls) -> PreconditionFailedError:
        """Return an error for an atomic move outside a transaction."""
        return cls("Atomic move requires an active transaction")


class InconsistentUpdateError(StorageError):
    """Raised when a statement affected an unexpected number of rows."""

    def __init__(self, filename: str, *, expected: int, actual: int) -> None:
        """Create an error describing the row-count mismatch."""
        super().__init__(
            f"Unexpected number of rows affected (expected: {expected}, actual: {actual})",
            filename=filename,
        )
        self.expected = expected
        self.actual = actual


class StorageIOError(StorageError):
    """Raised when an underlying database or I/O operation fails."""


class Compression(Enum):
    """Compression level applied to stored content."""

    NONE = 0
    LOW = 1
    MEDIUM = zlib.Z_DEFAULT_COMPRESSION
    HIGH = 9

    @property
    def deflater_level(self) -> int:
        """Level understood by :mod:`zlib`."""
        return self.value


class OpenOption(Enum):
    """Options that determine how a ``put`` writes a file."""

    READ = "read"
    WRITE = "write"
    APPEND = "append"
    TRUNCATE_EXISTING = "truncate_existing"
    CREATE = "create"
    CREATE_NEW = "create_new"
    DELETE_ON_CLOSE = "delete_on_close"


class CopyOption(Enum):
    """Options that determine how a ``move`` or ``copy`` behaves."""

    REPLACE_EXISTING = "replace_existing"
    ATOMIC_MOVE = "atomic_move"


class StorageOperations(ABC):
    """Standardised interface for filesystem-like storage providers."""

    @abstractmethod
    def list(self, *patterns: str) -> list[DatabaseResource]:
        """Return the stored files matching any of the patterns.

        Args:
            patterns: Optional filters which may include ``*`` and ``?``
                wildcards. All files are returned when no pattern is given.

        """

    @abstractmethod
    def get(self, filename: str) -> DatabaseResource:
        """Return a reference to the specified file.

        Raises:
            NotFoundError: If ``filename`` does not exist.

        """

    @abstractmethod
    def put(
        self,
        resource: ResourceLike,
        filename: str,
        *options: OpenOption,
    ) -> DatabaseResource:
        """Store a new file, or replace one with ``TRUNCATE_EXISTING``.

        Raises:
            AlreadyExistsError: If ``filename`` exists and replacing was not
                requested.

        """

    @abstractmethod
    def move(
        self,
        old_filename: str,
        new_filename: str,
        *options: CopyOption,
    ) -> DatabaseResource:
        """Rename a file.

        Raises:
            NotFoundError: If ``old_filename`` does not exist.
            AlreadyExistsError: If ``new_filename`` exists and replacing was
                not requested.
            PreconditionFailedError: If ``ATOMIC_MOVE`` is requested outside a
                transaction.

        """

    @abstractmethod
    def copy(
        self,
        source_filename: str,
        dest_filename: str,
        *options: CopyOption,
    ) -> DatabaseResource:
        """Copy a file into a new object with its own identity.

        Raises:
            NotFoundError: If ``source_filename`` does not exist.
            AlreadyExistsError: If ``dest_filename`` exists and replacing was
                not requested.

        """

    @abstractmethod
    def delete(self, filename: str) -> None:
        """Delete a file.

        Raises:
            NotFoundError: If ``filename`` does not exist.

        """
