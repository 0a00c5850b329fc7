"""Resources that can be stored with :meth:`RelaTableStorage.put`.

A resource knows how to open its content and may report its length, its
modification time and a file name. ``put`` uses the declared length to check
that the whole content was received, and the modification time as the stored
``last_modified`` value.
"""

from __future__ import annotations

import io
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import BinaryIO, Protocol, Union, runtime_checkable

from .interfaces import InvalidOperationError


@runtime_checkable
class Resource(Protocol):
    """Content source accepted by ``put``."""

    @property
    def filename(self) -> str | None:
        """Name of the source, if any."""
        ...

    @property
    def content_length(self) -> int | None:
        """Declared content length, or ``None`` when unknown."""
        ...

    @property
    def last_modified(self) -> datetime | None:
        """Modification time of the source, or ``None`` when unknown."""
        ...

    def open(self) -> BinaryIO:
        """Return a new stream over the content, owned by the caller."""
        ...


@dataclass(frozen=True)
class BytesResource:
    """In-memory content."""

    data: bytes = field(repr=False)
    filename: str | None = None
    last_modified: datetime | None = None

    @property
    def content_length(self) -> int:
        return len(self.data)

    def open(self) -> BinaryIO:
        return io.BytesIO(self.data)


@dataclass(frozen=True)
class FileResource:
    """Content of a local file; length and modification time come from ``stat``."""

    path: Path

    def __post_init__(self) -> None:
        object.__setattr__(self, "path", Path(self.path))

    @property
    def filename(self) -> str:
        return self.path.name

    @property
    def content_length(self) -> int:
        return self.path.stat().st_size

    @property
    def last_modified(self) -> datetime:
        return datetime.fromtimestamp(self.path.stat().st_mtime, tz=timezone.utc)

    def open(self) -> BinaryIO:
        return self.path.open("rb")


class StreamResource:
    """Content of an already-open stream.

    The stream can only be consumed once; opening the resource a second time
    raises :class:`InvalidOperationError`. Its length is unknown unless given.
    """

    def __init__(
        self,
        stream: BinaryIO,
        *,
        filename: str | None = None,
        content_length: int | None = None,
        last_modified: datetime | None = None,
    ) -> None:
        self._stream = stream
        self._opened = False
        self.filename = filename
        self.content_length = content_length
        self.last_modified = last_modified

    def open(self) -> BinaryIO:
        if self._opened:
            message = "Stream resource has already been consumed"
            raise InvalidOperationError(message, filename=self.filename)
        self._opened = True
        return self._stream

    def __repr__(self) -> str:
        return f"StreamResource(filename={self.filename!r}, content_length={self.content_length!r})"


ResourceLike = Union[Resource, bytes, bytearray, memoryview, str, Path, BinaryIO]


def as_resource(value: ResourceLike) -> Resource:
    """Adapt a supported value to a :class:`Resource`.

    Strings are stored as their UTF-8 encoding; use a :class:`~pathlib.Path`
    to store a local file.

    Raises:
        TypeError: If the value type is not supported.

    """
    if isinstance(value, (bytes, bytearray, memoryview)):
        return BytesResource(bytes(value))
    if isinstance(value, str):
        return BytesResource(value.encode("utf-8"))
    if isinstance(value, Path):
        return FileResource(value)
    if isinstance(value, Resource):
        return value
    if hasattr(value, "read"):
        return StreamResource(value, filename=_stream_name(value))
    message = f"Unsupported resource type: {type(value).__name__}"
    raise TypeError(message)


def _stream_name(stream: BinaryIO) -> str | None:
    name = getattr(stream, "name", None)
    return Path(name).name if isinstance(name, str) else None
