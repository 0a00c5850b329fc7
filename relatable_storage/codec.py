"""Container codec for BLOB contents.

Content is stored as a ZIP archive holding exactly one entry. The archive is
always written in streaming form (sizes and CRC in a trailing data
descriptor) and every header field that would normally vary is pinned: the
entry name, its timestamp, the creator system and the file attributes.
Encoding the same plaintext at the same compression level therefore yields
the same bytes every time, which lets the database deduplicate identical
contents.

Encryption, when a password is supplied, happens inside the entry: the
plaintext is raw-deflated at the requested level, encrypted by
:mod:`relatable_storage.crypto`, and the result is stored in an entry that
uses deflate level 0 as framing only. Salt and nonce are random per write, so
encrypted containers are never reproducible.

Decoding reads the archive front to back and never seeks, so it can run
directly on a driver's BLOB stream.

Example:

    >>> params = BlobStoreParameters(Compression.MEDIUM)
    >>> blob = encode_bytes(b"qwertyuiop", params)
    >>> blob[:2]
    b'PK'
    >>> decode_bytes(blob, compressed=True, encrypted=False)
    b'qwertyuiop'

"""

from __future__ import annotations

import io
import struct
import zipfile
import zlib
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, BinaryIO

from .crypto import EncryptingWriter, decrypt_chunks
from .interfaces import (
    DEFAULT_CHUNK_SIZE,
    Compression,
    CorruptionError,
    InvalidOperationError,
)
from .utils import copy_stream, deflate_chunks, inflate_chunks, iter_chunks, open_chunks

if TYPE_CHECKING:
    from collections.abc import Iterator

ENTRY_NAME = "content.dat"
ENTRY_DATE_TIME = (1980, 1, 1, 0, 0, 0)
ENTRY_CREATE_SYSTEM = 3
ENTRY_EXTERNAL_ATTR = 0o600 << 16

LOCAL_HEADER_SIGNATURE = b"PK\x03\x04"
DATA_DESCRIPTOR_SIGNATURE = b"PK\x07\x08"

_LOCAL_HEADER = struct.Struct("<4s5H3L2H")
_FLAG_ENCRYPTED = 0x01
_FLAG_DATA_DESCRIPTOR = 0x08


@dataclass(frozen=True)
class BlobStoreParameters:
    """Parameters that determine how content is encoded into the BLOB."""

    compression: Compression = Compression.NONE
    password: str | bytes | None = field(default=None, repr=False)

    @property
    def compressed(self) -> bool:
        """Whether the stored content is deflated."""
        return self.compression is not Compression.NONE

    @property
    def encryption_required(self) -> bool:
        """Whether the stored content is encrypted."""
        return self.password is not None


class _StreamingWriter:
    """Write-only view of a stream, hiding ``seek``/``tell`` from zipfile."""

    def __init__(self, out: BinaryIO) -> None:
        self._out = out

    def write(self, data: bytes) -> int:
        return self._out.write(data)

    def flush(self) -> None:
        flush = getattr(self._out, "flush", None)
        if flush is not None:
            flush()


def _entry_info(parameters: BlobStoreParameters) -> zipfile.ZipInfo:
    if parameters.encryption_required:
        level = Compression.NONE.deflater_level
    else:
        level = parameters.compression.deflater_level

    info = zipfile.ZipInfo(ENTRY_NAME, date_time=ENTRY_DATE_TIME)
    info.compress_type = zipfile.ZIP_DEFLATED
    # ZipInfo.compress_level is public from Python 3.13; older releases use _compresslevel
    if hasattr(info, "compress_level"):
        info.compress_level = level
    else:
        info._compresslevel = level
    info.create_system = ENTRY_CREATE_SYSTEM
    info.external_attr = ENTRY_EXTERNAL_ATTR
    return info


def encode_stream(
    source: BinaryIO,
    out: BinaryIO,
    parameters: BlobStoreParameters,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> None:
    """Encode the whole of ``source`` into a container written to ``out``.

    Neither stream is closed.
    """
    info = _entry_info(parameters)
    with zipfile.ZipFile(_StreamingWriter(out), mode="w") as archive:
        with archive.open(info, mode="w", force_zip64=True) as entry:
            if not parameters.encryption_required:
                copy_stream(source, entry, chunk_size)
                return
            with EncryptingWriter(entry, parameters.password) as sink:
                chunks = iter_chunks(source, chunk_size)
                if parameters.compressed:
                    chunks = deflate_chunks(chunks, parameters.compression.deflater_level)
                for chunk in chunks:
                    sink.write(chunk)


def encode_bytes(data: bytes, parameters: BlobStoreParameters) -> bytes:
    """Encode an in-memory payload."""
    out = io.BytesIO()
    encode_stream(io.BytesIO(data), out, parameters)
    return out.getvalue()


def _read_exactly(raw: BinaryIO, size: int) -> bytes:
    data = bytearray()
    while len(data) < size:
        chunk = raw.read(size - len(data))
        if not chunk:
            message = "Container is truncated"
            raise CorruptionError(message)
        data += chunk
    return bytes(data)


def _open_entry(raw: BinaryIO, chunk_size: int) -> Iterator[bytes]:
    header = raw.read(_LOCAL_HEADER.size)
    if len(header) < _LOCAL_HEADER.size or not header.startswith(LOCAL_HEADER_SIGNATURE):
        message = "Not a valid container (bad signature)"
        raise CorruptionError(message)
    (
        _signature,
        _version,
        flags,
        method,
        _time,
        _date,
        crc,
        _compressed_size,
        _size,
        name_length,
        extra_length,
    ) = _LOCAL_HEADER.unpack(header)
    if method != zipfile.ZIP_DEFLATED:
        message = f"Unsupported container compression method: {method}"
        raise CorruptionError(message)
    if flags & _FLAG_ENCRYPTED:
        message = "Unsupported container encryption"
        raise CorruptionError(message)
    _read_exactly(raw, name_length + extra_length)
    return _inflate_entry(raw, flags, crc, chunk_size)


def _inflate_entry(
    raw: BinaryIO,
    flags: int,
    expected_crc: int,
    chunk_size: int,
) -> Iterator[bytes]:
    decompressor = zlib.decompressobj(-zlib.MAX_WBITS)
    crc = 0
    while not decompressor.eof:
        chunk = raw.read(chunk_size)
        if not chunk:
            message = "Container is truncated"
            raise CorruptionError(message)
        try:
            data = decompressor.decompress(chunk)
        except zlib.error as exc:
            message = f"Invalid container entry data: {exc}"
            raise CorruptionError(message) from exc
        if data:
            crc = zlib.crc32(data, crc)
            yield data

    if flags & _FLAG_DATA_DESCRIPTOR:
        trailer = decompressor.unused_data
        if len(trailer) < 8:
            trailer += _read_exactly(raw, 8 - len(trailer))
        # The descriptor signature is optional in the ZIP format.
        offset = 4 if trailer.startswith(DATA_DESCRIPTOR_SIGNATURE) else 0
        (expected_crc,) = struct.unpack_from("<L", trailer, offset)

    if crc != expected_crc:
        message = f"Container checksum mismatch (expected: {expected_crc:#010x}, actual: {crc:#010x})"
        raise CorruptionError(message)


def decode_stream(
    raw: BinaryIO,
    *,
    compressed: bool,
    encrypted: bool,
    password: str | bytes | None = None,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> BinaryIO:
    """Return a stream of the plaintext held in a container.

    The container header is validated before returning; the rest is decoded
    lazily as the stream is read. The returned stream owns ``raw`` and closes
    it on close; ``raw`` is also closed if validation fails.

    Args:
        raw: Container bytes, readable front to back.
        compressed: Whether the content was stored compressed.
        encrypted: Whether the content was stored encrypted.
        password: Decryption password, required when ``encrypted``.
        chunk_size: Read size used on ``raw``.

    Raises:
        CorruptionError: If the container header is invalid. Later
            corruption surfaces from ``read``.
        InvalidOperationError: If the content is encrypted and no password
            was given.

    """
    try:
        if encrypted and password is None:
            raise InvalidOperationError.password_required()
        chunks = _open_entry(raw, chunk_size)
    except BaseException:
        raw.close()
        raise

    if encrypted:
        chunks = decrypt_chunks(chunks, password)
        if compressed:
            chunks = inflate_chunks(chunks)
    return open_chunks(chunks, owned=(raw,))


def decode_bytes(
    blob: bytes,
    *,
    compressed: bool,
    encrypted: bool,
    password: str | bytes | None = None,
) -> bytes:
    """Decode an in-memory container."""
    with decode_stream(
        io.BytesIO(blob),
        compressed=compressed,
        encrypted=encrypted,
        password=password,
    ) as stream:
        return stream.read()
