"""Tests for the BLOB container codec."""

from __future__ import annotations

import io
import os
import struct
import zipfile

import pytest

from relatable_storage import (
    BlobStoreParameters,
    Compression,
    CorruptionError,
    InvalidOperationError,
)
from relatable_storage.codec import (
    ENTRY_NAME,
    LOCAL_HEADER_SIGNATURE,
    decode_bytes,
    decode_stream,
    encode_bytes,
)

PAYLOADS = [
    b"",
    b"qwertyuiop",
    bytes(range(256)) * 300,
]


def _parameters(compression: Compression, password: str | None) -> BlobStoreParameters:
    return BlobStoreParameters(compression=compression, password=password)


class TestRoundTrip:
    """Decoding restores the encoded plaintext."""

    @pytest.mark.parametrize("payload", PAYLOADS, ids=["empty", "short", "long"])
    @pytest.mark.parametrize("password", [None, "secret"])
    @pytest.mark.parametrize("compression", list(Compression))
    def test_round_trip(
        self,
        compression: Compression,
        password: str | None,
        payload: bytes,
    ) -> None:
        """Every compression level round-trips, with and without encryption."""
        parameters = _parameters(compression, password)
        blob = encode_bytes(payload, parameters)
        decoded = decode_bytes(
            blob,
            compressed=parameters.compressed,
            encrypted=parameters.encryption_required,
            password=password,
        )
        assert decoded == payload

    def test_stream_is_read_incrementally(self) -> None:
        """The decoded stream can be consumed in small reads."""
        payload = bytes(range(256)) * 64
        blob = encode_bytes(payload, _parameters(Compression.HIGH, None))
        with decode_stream(io.BytesIO(blob), compressed=True, encrypted=False) as stream:
            parts = []
            while True:
                chunk = stream.read(100)
                if not chunk:
                    break
                parts.append(chunk)
        assert b"".join(parts) == payload


class TestContainerFormat:
    """The container is a standard single-entry ZIP archive."""

    @pytest.mark.parametrize("compression", list(Compression))
    def test_readable_by_zipfile(self, compression: Compression) -> None:
        """Unencrypted containers open with the standard library."""
        blob = encode_bytes(b"qwertyuiop", _parameters(compression, None))
        assert blob.startswith(LOCAL_HEADER_SIGNATURE)
        with zipfile.ZipFile(io.BytesIO(blob)) as archive:
            assert archive.namelist() == [ENTRY_NAME]
            assert archive.read(ENTRY_NAME) == b"qwertyuiop"
            assert archive.getinfo(ENTRY_NAME).date_time == (1980, 1, 1, 0, 0, 0)

    def test_encrypted_container_has_single_entry(self) -> None:
        """Encrypted containers keep the same archive layout."""
        blob = encode_bytes(b"qwertyuiop", _parameters(Compression.MEDIUM, "secret"))
        with zipfile.ZipFile(io.BytesIO(blob)) as archive:
            assert archive.namelist() == [ENTRY_NAME]
            assert b"qwertyuiop" not in archive.read(ENTRY_NAME)

    def test_compression_reduces_size(self) -> None:
        """Compressible content shrinks at higher levels."""
        payload = b"a" * 10000
        stored = encode_bytes(payload, _parameters(Compression.NONE, None))
        deflated = encode_bytes(payload, _parameters(Compression.HIGH, None))
        assert len(deflated) < len(stored)


class TestReproducibility:
    """Identical inputs give identical containers unless encrypted."""

    @pytest.mark.parametrize("compression", list(Compression))
    def test_unencrypted_is_reproducible(self, compression: Compression) -> None:
        """Repeated encodes are byte-identical."""
        parameters = _parameters(compression, None)
        assert encode_bytes(b"qwertyuiop", parameters) == encode_bytes(b"qwertyuiop", parameters)

    @pytest.mark.parametrize("compression", list(Compression))
    def test_encrypted_differs(self, compression: Compression) -> None:
        """Fresh salt and nonce make every encrypted encode unique."""
        parameters = _parameters(compression, "secret")
        assert encode_bytes(b"qwertyuiop", parameters) != encode_bytes(b"qwertyuiop", parameters)


class TestCorruption:
    """Damaged containers are reported as corruption."""

    def test_bad_signature(self) -> None:
        """Data that is not a container fails before decoding starts."""
        raw = io.BytesIO(b"definitely not a zip archive")
        with pytest.raises(CorruptionError):
            decode_stream(raw, compressed=False, encrypted=False)
        assert raw.closed

    def test_empty_blob(self) -> None:
        """An empty BLOB is not a container."""
        with pytest.raises(CorruptionError):
            decode_bytes(b"", compressed=False, encrypted=False)

    def test_flipped_byte(self) -> None:
        """A damaged payload fails the checksum."""
        blob = bytearray(encode_bytes(b"a" * 1000, _parameters(Compression.NONE, None)))
        blob[100] ^= 0xFF
        with pytest.raises(CorruptionError):
            decode_bytes(bytes(blob), compressed=False, encrypted=False)

    def test_truncated(self) -> None:
        """A truncated container is reported."""
        blob = encode_bytes(os.urandom(4000), _parameters(Compression.MEDIUM, None))
        with pytest.raises(CorruptionError):
            decode_bytes(blob[: len(blob) // 2], compressed=True, encrypted=False)

    def test_tampered_ciphertext(self) -> None:
        """Modified ciphertext fails authentication or the checksum."""
        blob = bytearray(encode_bytes(b"a" * 1000, _parameters(Compression.NONE, "secret")))
        blob[200] ^= 0x01
        with pytest.raises(CorruptionError):
            decode_bytes(bytes(blob), compressed=False, encrypted=True, password="secret")

    @pytest.mark.parametrize("value", [b"\x00\x00\x00\x00", b"\xff\x00\x00\x00", b"\x02\xfa\xf0\x80"])
    def test_tampered_iteration_count(self, value: bytes) -> None:
        """A damaged key derivation header is reported as corruption."""
        blob = bytearray(encode_bytes(b"qwertyuiop", _parameters(Compression.NONE, "secret")))
        name_length, extra_length = struct.unpack_from("<2H", blob, 26)
        # local header, stored deflate block header, format version
        offset = 30 + name_length + extra_length + 5 + 1
        blob[offset : offset + 4] = value
        with pytest.raises(CorruptionError):
            decode_bytes(bytes(blob), compressed=False, encrypted=True, password="secret")

    def test_wrong_password(self) -> None:
        """A wrong password fails authentication."""
        blob = encode_bytes(b"qwertyuiop", _parameters(Compression.NONE, "secret"))
        with pytest.raises(CorruptionError):
            decode_bytes(blob, compressed=False, encrypted=True, password="guess")

    def test_missing_password(self) -> None:
        """Encrypted content needs a password."""
        blob = encode_bytes(b"qwertyuiop", _parameters(Compression.NONE, "secret"))
        raw = io.BytesIO(blob)
        with pytest.raises(InvalidOperationError):
            decode_stream(raw, compressed=False, encrypted=True)
        assert raw.closed


class TestParameters:
    """Derived flags of the encoding parameters."""

    def test_defaults(self) -> None:
        """By default content is neither compressed nor encrypted."""
        parameters = BlobStoreParameters()
        assert not parameters.compressed
        assert not parameters.encryption_required

    def test_password_not_in_repr(self) -> None:
        """The password is kept out of the representation."""
        assert "secret" not in repr(BlobStoreParameters(password="secret"))
