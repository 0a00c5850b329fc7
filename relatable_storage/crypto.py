"""Password-based encryption of container payloads.

Keys are derived from the password with PBKDF2-HMAC-SHA256 and a random
per-write salt; content is encrypted with AES-256-GCM using a random per-write
nonce. Salt, nonce and iteration count are written in a small header ahead of
the ciphertext and the 16-byte authentication tag follows it, so decryption
needs nothing but the password. Headers claiming more than ``ITERATIONS``
rounds are rejected as corrupt.

Layout::

    version (1) | iterations (4, big-endian) | salt (32) | nonce (12) | ciphertext | tag (16)

"""

from __future__ import annotations

import os
import struct
from typing import TYPE_CHECKING, BinaryIO

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .interfaces import CorruptionError

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator

FORMAT_VERSION = 1
KEY_LENGTH = 32
SALT_LENGTH = 32
NONCE_LENGTH = 12
TAG_LENGTH = 16
ITERATIONS = 65536

_HEADER = struct.Struct(f">BI{SALT_LENGTH}s{NONCE_LENGTH}s")
HEADER_LENGTH = _HEADER.size


def _password_bytes(password: str | bytes) -> bytes:
    return password.encode("utf-8") if isinstance(password, str) else bytes(password)


def derive_key(
    password: str | bytes,
    salt: bytes,
    *,
    iterations: int = ITERATIONS,
) -> bytes:
    """Derive an AES-256 key from a password."""
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=salt,
        iterations=iterations,
    )
    return kdf.derive(_password_bytes(password))


class EncryptingWriter:
    """Write-only stream that encrypts everything written through it.

    The header is emitted on construction and the authentication tag on
    :meth:`close`. The wrapped stream is not closed.
    """

    def __init__(
        self,
        out: BinaryIO,
        password: str | bytes,
        *,
        iterations: int = ITERATIONS,
    ) -> None:
        """Derive a fresh key and write the header to ``out``."""
        if not 1 <= iterations <= ITERATIONS:
            message = f"iterations must be between 1 and {ITERATIONS}"
            raise ValueError(message)
        salt = os.urandom(SALT_LENGTH)
        nonce = os.urandom(NONCE_LENGTH)
        key = derive_key(password, salt, iterations=iterations)
        self._encryptor = Cipher(algorithms.AES(key), modes.GCM(nonce)).encryptor()
        self._out = out
        self._closed = False
        out.write(_HEADER.pack(FORMAT_VERSION, iterations, salt, nonce))

    def write(self, data: bytes) -> int:
        """Encrypt ``data`` and forward it."""
        self._out.write(self._encryptor.update(data))
        return len(data)

    def close(self) -> None:
        """Finalise the cipher and append the authentication tag."""
        if self._closed:
            return
        self._closed = True
        self._out.write(self._encryptor.finalize())
        self._out.write(self._encryptor.tag)

    def __enter__(self) -> EncryptingWriter:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is None:
            self.close()


def decrypt_chunks(
    chunks: Iterable[bytes],
    password: str | bytes,
) -> Iterator[bytes]:
    """Decrypt a stream of chunks produced by :class:`EncryptingWriter`.

    Plaintext is yielded as it is decrypted; the authentication tag is only
    verified once the input is exhausted.

    Raises:
        CorruptionError: If the header is malformed, the input is truncated
            or authentication fails (wrong password or tampered data).

    """
    pending = bytearray()
    source = iter(chunks)

    for chunk in source:
        pending += chunk
        if len(pending) >= HEADER_LENGTH:
            break
    if len(pending) < HEADER_LENGTH:
        message = "Encrypted payload is truncated"
        raise CorruptionError(message)

    version, iterations, salt, nonce = _HEADER.unpack_from(pending)
    if version != FORMAT_VERSION:
        message = f"Unsupported encryption format version: {version}"
        raise CorruptionError(message)
    if not 1 <= iterations <= ITERATIONS:
        message = f"Invalid key derivation iteration count: {iterations}"
        raise CorruptionError(message)
    del pending[:HEADER_LENGTH]

    key = derive_key(password, salt, iterations=iterations)
    decryptor = Cipher(algorithms.AES(key), modes.GCM(nonce)).decryptor()

    while True:
        # The last TAG_LENGTH bytes seen so far may turn out to be the tag.
        if len(pending) > TAG_LENGTH:
            ready = len(pending) - TAG_LENGTH
            plaintext = decryptor.update(bytes(pending[:ready]))
            del pending[:ready]
            if plaintext:
                yield plaintext
        chunk = next(source, None)
        if chunk is None:
            break
        pending += chunk

    if len(pending) < TAG_LENGTH:
        message = "Encrypted payload is truncated"
        raise CorruptionError(message)
    try:
        tail = decryptor.finalize_with_tag(bytes(pending))
    except InvalidTag as exc:
        message = "Authentication failed (wrong password or corrupted data)"
        raise CorruptionError(message) from exc
    if tail:
        yield tail

