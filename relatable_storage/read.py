"""Read-side strategies that turn a stored BLOB into plaintext.

``DIRECT`` decodes straight from the value handed back by the driver.
``MEMORY`` and ``FILE`` first copy the BLOB into a private buffer so the
database cursor can be released before the caller consumes the plaintext.
When the stored BLOB is uncompressed, the buffered copy can be deflated at
``compression`` to reduce its footprint; it is inflated again on replay.
"""

from __future__ import annotations

import io
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, BinaryIO, Protocol

from .codec import decode_stream
from .interfaces import Compression
from .utils import (
    DeleteOnCloseFile,
    create_temp_file,
    deflate_chunks,
    delete_quietly,
    inflate_chunks,
    iter_chunks,
    open_chunks,
)

if TYPE_CHECKING:
    from collections.abc import Callable


class BlobAccessor(Protocol):
    """Access to one stored BLOB and the flags describing its encoding."""

    compressed: bool
    encrypted: bool
    password: str | bytes | None

    def binary_stream(self) -> BinaryIO:
        """Return the raw container bytes as a stream owned by the caller."""
        ...

    def read_bytes(self) -> bytes:
        """Return the raw container bytes."""
        ...


class ExtractorKind(Enum):
    """Where the BLOB is staged before decoding."""

    DIRECT = "direct"
    MEMORY = "memory"
    FILE = "file"


@dataclass(frozen=True)
class BlobExtractor:
    """Strategy producing the plaintext stream for a stored BLOB."""

    kind: ExtractorKind = ExtractorKind.DIRECT
    compression: Compression = Compression.NONE
    directory: Path | None = None

    def __post_init__(self) -> None:
        if self.directory is not None:
            object.__setattr__(self, "directory", Path(self.directory))

    @classmethod
    def direct(cls) -> BlobExtractor:
        """Decode straight from the driver's value."""
        return cls(ExtractorKind.DIRECT)

    @classmethod
    def memory(cls, compression: Compression = Compression.NONE) -> BlobExtractor:
        """Buffer the BLOB in memory before decoding."""
        return cls(ExtractorKind.MEMORY, compression=compression)

    @classmethod
    def file(
        cls,
        directory: Path | str | None = None,
        compression: Compression = Compression.NONE,
    ) -> BlobExtractor:
        """Buffer the BLOB in a temporary file before decoding."""
        return cls(ExtractorKind.FILE, compression=compression, directory=directory)

    def input_stream(self, accessor: BlobAccessor) -> BinaryIO:
        """Return the decoded plaintext of the accessor's BLOB.

        Raises:
            CorruptionError: If the container header is invalid.
            InvalidOperationError: If the BLOB is encrypted and the accessor
                carries no password.

        """
        return _HANDLERS[self.kind](self, accessor)

    def _deflates_buffer(self, accessor: BlobAccessor) -> bool:
        return not accessor.compressed and self.compression is not Compression.NONE


def _decode(raw: BinaryIO, accessor: BlobAccessor) -> BinaryIO:
    return decode_stream(
        raw,
        compressed=accessor.compressed,
        encrypted=accessor.encrypted,
        password=accessor.password,
    )


def _direct_stream(extractor: BlobExtractor, accessor: BlobAccessor) -> BinaryIO:
    return _decode(accessor.binary_stream(), accessor)


def _memory_stream(extractor: BlobExtractor, accessor: BlobAccessor) -> BinaryIO:
    data = accessor.read_bytes()
    if not extractor._deflates_buffer(accessor):
        return _decode(io.BytesIO(data), accessor)

    level = extractor.compression.deflater_level
    staged = b"".join(deflate_chunks([data], level))
    return _decode(open_chunks(inflate_chunks([staged])), accessor)


def _file_stream(extractor: BlobExtractor, accessor: BlobAccessor) -> BinaryIO:
    deflate = extractor._deflates_buffer(accessor)
    path = create_temp_file(extractor.directory)
    try:
        with path.open("wb") as out, accessor.binary_stream() as blob:
            chunks = iter_chunks(blob)
            if deflate:
                chunks = deflate_chunks(chunks, extractor.compression.deflater_level)
            for chunk in chunks:
                out.write(chunk)
        staged: BinaryIO = DeleteOnCloseFile(path)
    except BaseException:
        delete_quietly(path)
        raise

    if deflate:
        staged = open_chunks(inflate_chunks(iter_chunks(staged)), owned=(staged,))
    return _decode(staged, accessor)


_HANDLERS: dict[ExtractorKind, Callable[[BlobExtractor, BlobAccessor], BinaryIO]] = {
    ExtractorKind.DIRECT: _direct_stream,
    ExtractorKind.MEMORY: _memory_stream,
    ExtractorKind.FILE: _file_stream,
}
