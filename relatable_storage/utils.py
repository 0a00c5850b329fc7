"""Shared stream and temporary-file helpers.

This module provides the small I/O building blocks used by the write-side
providers, the read-side extractors and the storage engine.

Key utilities:
- Byte counting around a source stream
- Readable streams over chunk iterators
- Chunked copy and raw deflate/inflate of chunk streams
- Owner-only temporary files that delete themselves on close

Example usage:
    >>> import io
    >>> reader = CountingReader(io.BytesIO(b"hello"))
    >>> reader.read()
    b'hello'
    >>> reader.count
    5
"""

from __future__ import annotations

import atexit
import io
import logging
import os
import tempfile
import zlib
from pathlib import Path
from typing import TYPE_CHECKING, BinaryIO

from .interfaces import DEFAULT_CHUNK_SIZE, CorruptionError

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator

logger = logging.getLogger(__name__)

OWNER_ONLY = 0o600


class CountingReader(io.RawIOBase):
    """Readable stream that counts the bytes read from a wrapped source."""

    def __init__(self, source: BinaryIO) -> None:
        """Wrap ``source``; closing this reader does not close it."""
        self._source = source
        self.count = 0

    def readable(self) -> bool:
        return True

    def readinto(self, buffer) -> int:
        data = self._source.read(len(buffer))
        if not data:
            return 0
        size = len(data)
        buffer[:size] = data
        self.count += size
        return size


class IteratorStream(io.RawIOBase):
    """Readable stream over an iterator of byte chunks.

    Closing the stream closes the iterator (when it is a generator) and any
    ``owned`` resources, in order.
    """

    def __init__(
        self,
        chunks: Iterable[bytes],
        *,
        owned: Iterable[BinaryIO] = (),
    ) -> None:
        """Create a stream yielding the concatenation of ``chunks``."""
        self._chunks = iter(chunks)
        self._owned = list(owned)
        self._pending = b""

    def readable(self) -> bool:
        return True

    def readinto(self, buffer) -> int:
        while not self._pending:
            chunk = next(self._chunks, None)
            if chunk is None:
                return 0
            self._pending = bytes(chunk)
        size = min(len(buffer), len(self._pending))
        buffer[:size] = self._pending[:size]
        self._pending = self._pending[size:]
        return size

    def close(self) -> None:
        if self.closed:
            return
        try:
            close_chunks = getattr(self._chunks, "close", None)
            if close_chunks is not None:
                close_chunks()
        finally:
            try:
                for resource in self._owned:
                    resource.close()
            finally:
                super().close()


def open_chunks(
    chunks: Iterable[bytes],
    *,
    owned: Iterable[BinaryIO] = (),
) -> BinaryIO:
    """Return a buffered readable stream over ``chunks``."""
    return io.BufferedReader(IteratorStream(chunks, owned=owned), DEFAULT_CHUNK_SIZE)


def iter_chunks(
    source: BinaryIO,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> Iterator[bytes]:
    """Yield successive non-empty chunks read from ``source``."""
    while True:
        chunk = source.read(chunk_size)
        if not chunk:
            return
        yield chunk


def copy_stream(
    source: BinaryIO,
    target: BinaryIO,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> int:
    """Copy ``source`` into ``target`` in chunks and return the byte count."""
    total = 0
    for chunk in iter_chunks(source, chunk_size):
        target.write(chunk)
        total += len(chunk)
    return total


def deflate_chunks(chunks: Iterable[bytes], level: int) -> Iterator[bytes]:
    """Raw-deflate a chunk stream at the given :mod:`zlib` level."""
    compressor = zlib.compressobj(level, zlib.DEFLATED, -zlib.MAX_WBITS)
    for chunk in chunks:
        data = compressor.compress(chunk)
        if data:
            yield data
    yield compressor.flush()


def inflate_chunks(chunks: Iterable[bytes]) -> Iterator[bytes]:
    """Inflate a raw-deflate chunk stream.

    Raises:
        CorruptionError: If the stream is malformed or truncated.

    """
    decompressor = zlib.decompressobj(-zlib.MAX_WBITS)
    try:
        for chunk in chunks:
            data = decompressor.decompress(chunk)
            if data:
                yield data
            if decompressor.eof:
                break
        tail = decompressor.flush()
    except zlib.error as exc:
        message = f"Invalid deflate stream: {exc}"
        raise CorruptionError(message) from exc
    if not decompressor.eof:
        message = "Deflate stream is truncated"
        raise CorruptionError(message)
    if tail:
        yield tail


def create_temp_file(directory: Path | None = None) -> Path:
    """Create an empty temporary file readable and writable by the owner only.

    The directory is created if needed. Failing to restrict permissions is
    logged, not raised.
    """
    if directory is not None:
        Path(directory).mkdir(parents=True, exist_ok=True)
    fd, name = tempfile.mkstemp(dir=directory)
    os.close(fd)
    path = Path(name)
    try:
        path.chmod(OWNER_ONLY)
    except (OSError, NotImplementedError):
        logger.debug("Cannot set owner-only permissions on %s", path, exc_info=True)
    return path


def delete_quietly(path: Path | None) -> None:
    """Delete ``path`` if it exists, never raising.

    When deletion fails the failure is logged and deletion is retried at
    interpreter exit.
    """
    if path is None:
        return
    try:
        path.unlink(missing_ok=True)
    except OSError:
        logger.debug("Cannot delete temporary file %s", path, exc_info=True)
        atexit.register(_delete_at_exit, path)


def _delete_at_exit(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError:
        logger.debug("Cannot delete temporary file %s at exit", path, exc_info=True)


class DeleteOnCloseFile(io.BufferedReader):
    """Buffered reader over a file that is deleted when the reader is closed."""

    def __init__(self, path: Path, buffer_size: int = DEFAULT_CHUNK_SIZE) -> None:
        """Open ``path`` for reading."""
        super().__init__(io.FileIO(path, "rb"), buffer_size)
        self.path = Path(path)

    def close(self) -> None:
        if self.closed:
            return
        try:
            super().close()
        finally:
            delete_quietly(self.path)
