"""Conversions between UUIDs and their compact textual forms.

Object identities are stored as 22-character base64url tokens: the 16 bytes
of the UUID (most significant half first) encoded with the URL-safe alphabet
and no padding.

Example:

    >>> from uuid import UUID
    >>> token = to_base64url(UUID("4b62f367-c7f9-4bfe-9ee5-f4ffa793741f"))
    >>> token
    'S2LzZ8f5S_6e5fT_p5N0Hw'
    >>> from_base64url(token)
    UUID('4b62f367-c7f9-4bfe-9ee5-f4ffa793741f')

"""

from __future__ import annotations

import base64
import binascii
import re
from uuid import UUID

BASE64URL_LENGTH = 22
URN_PREFIX = "urn:uuid:"

_MAX_VALUE = (1 << 128) - 1
_BASE64URL_PATTERN = re.compile(r"^[A-Za-z0-9_-]{22}$")


def to_base64url(uuid: UUID) -> str:
    """Encode a UUID as an unpadded base64url string."""
    return base64.urlsafe_b64encode(uuid.bytes).rstrip(b"=").decode("ascii")


def from_base64url(encoded: str) -> UUID:
    """Decode an unpadded base64url string into a UUID.

    Raises:
        ValueError: If ``encoded`` is not a 22-character base64url token.

    """
    if not isinstance(encoded, str) or not _BASE64URL_PATTERN.match(encoded):
        message = f"Invalid base64url UUID: {encoded!r}"
        raise ValueError(message)
    try:
        raw = base64.urlsafe_b64decode(encoded + "==")
    except binascii.Error as exc:
        message = f"Invalid base64url UUID: {encoded!r}"
        raise ValueError(message) from exc
    return UUID(bytes=raw)


def to_urn(uuid: UUID) -> str:
    """Return the ``urn:uuid:`` form of a UUID."""
    return uuid.urn


def from_urn(urn: str) -> UUID:
    """Parse a ``urn:uuid:`` string.

    Raises:
        ValueError: If the prefix is missing or the UUID text is malformed.

    """
    if not urn.lower().startswith(URN_PREFIX):
        message = f"Not a UUID URN: {urn!r}"
        raise ValueError(message)
    return UUID(urn[len(URN_PREFIX):])


def to_int(uuid: UUID) -> int:
    """Return the unsigned 128-bit integer form of a UUID."""
    return uuid.int


def from_int(value: int) -> UUID:
    """Build a UUID from its unsigned 128-bit integer form.

    Raises:
        ValueError: If ``value`` does not fit in 128 unsigned bits.

    """
    if value < 0 or value > _MAX_VALUE:
        message = f"Value out of range for a UUID: {value:#x}"
        raise ValueError(message)
    return UUID(int=value)
