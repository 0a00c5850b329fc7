"""Write-side strategies that turn plaintext into an encoded BLOB stream.

The storage engine binds the returned stream as the ``contents`` parameter
of its INSERT or UPDATE. Each strategy trades memory for disk or threads:

- ``PIPE`` encodes on a daemon thread into a bounded in-memory pipe of
  ``pipe_size`` bytes. The pipe never holds more than that, but
  :meth:`Database.update` reads the whole encoded BLOB into memory before
  executing, as it does for every strategy.
- ``MEMORY`` encodes everything into a byte buffer first.
- ``FILE`` encodes into an owner-only temporary file that is deleted when the
  returned stream is closed.

All strategies produce identical bytes for unencrypted content.

Example:

    >>> provider = BinaryStreamProvider.memory()
    >>> stream = provider.content_stream(io.BytesIO(b"data"), BlobStoreParameters())
    >>> stream.read(2)
    b'PK'

"""

from __future__ import annotations

import io
import logging
import threading
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, BinaryIO

from .codec import BlobStoreParameters, encode_stream
from .pipe import DEFAULT_PIPE_SIZE, Pipe
from .utils import DeleteOnCloseFile, create_temp_file, delete_quietly

if TYPE_CHECKING:
    from collections.abc import Callable

    from .pipe import _PipeWriter

logger = logging.getLogger(__name__)


class ProviderKind(Enum):
    """Where encoded content is staged before it reaches the database."""

    PIPE = "pipe"
    MEMORY = "memory"
    FILE = "file"


@dataclass(frozen=True)
class BinaryStreamProvider:
    """Strategy producing the encoded stream for a ``put``."""

    kind: ProviderKind = ProviderKind.PIPE
    pipe_size: int = DEFAULT_PIPE_SIZE
    directory: Path | None = None

    def __post_init__(self) -> None:
        if self.pipe_size <= 0:
            message = f"Pipe size must be positive: {self.pipe_size}"
            raise ValueError(message)
        if self.directory is not None:
            object.__setattr__(self, "directory", Path(self.directory))

    @classmethod
    def pipe(cls, pipe_size: int = DEFAULT_PIPE_SIZE) -> BinaryStreamProvider:
        """Encode on a background thread through a bounded pipe."""
        return cls(ProviderKind.PIPE, pipe_size=pipe_size)

    @classmethod
    def memory(cls) -> BinaryStreamProvider:
        """Encode fully into memory."""
        return cls(ProviderKind.MEMORY)

    @classmethod
    def file(cls, directory: Path | str | None = None) -> BinaryStreamProvider:
        """Encode into a temporary file in ``directory``."""
        return cls(ProviderKind.FILE, directory=directory)

    def content_stream(
        self,
        source: BinaryIO,
        parameters: BlobStoreParameters,
    ) -> BinaryIO:
        """Return a readable stream of the encoded form of ``source``.

        The caller owns both ``source`` and the returned stream and must close
        them. With ``PIPE``, ``source`` is read on another thread until the
        returned stream reaches end-of-file or is closed.

        Raises:
            OSError: If staging fails (``MEMORY`` and ``FILE``); ``PIPE``
                failures surface from reading the returned stream as
                :class:`~relatable_storage.pipe.PipeWriterError`.

        """
        return _HANDLERS[self.kind](self, source, parameters)


def _encode_into_pipe(
    source: BinaryIO,
    writer: _PipeWriter,
    parameters: BlobStoreParameters,
) -> None:
    try:
        encode_stream(source, writer, parameters)
    except Exception as exc:
        logger.debug("Encoding into pipe failed", exc_info=True)
        writer.fail(exc)
    else:
        writer.close()


def _pipe_stream(
    provider: BinaryStreamProvider,
    source: BinaryIO,
    parameters: BlobStoreParameters,
) -> BinaryIO:
    pipe = Pipe(provider.pipe_size)
    reader = pipe.reader()
    worker = threading.Thread(
        target=_encode_into_pipe,
        args=(source, pipe.writer(), parameters),
        name="relatable-storage-encoder",
        daemon=True,
    )
    worker.start()
    return reader


def _memory_stream(
    provider: BinaryStreamProvider,
    source: BinaryIO,
    parameters: BlobStoreParameters,
) -> BinaryIO:
    buffer = io.BytesIO()
    encode_stream(source, buffer, parameters)
    buffer.seek(0)
    return buffer


def _file_stream(
    provider: BinaryStreamProvider,
    source: BinaryIO,
    parameters: BlobStoreParameters,
) -> BinaryIO:
    path = create_temp_file(provider.directory)
    try:
        with path.open("wb") as out:
            encode_stream(source, out, parameters)
        return DeleteOnCloseFile(path)
    except BaseException:
        delete_quietly(path)
        raise


_HANDLERS: dict[
    ProviderKind,
    Callable[[BinaryStreamProvider, BinaryIO, BlobStoreParameters], BinaryIO],
] = {
    ProviderKind.PIPE: _pipe_stream,
    ProviderKind.MEMORY: _memory_stream,
    ProviderKind.FILE: _file_stream,
}
