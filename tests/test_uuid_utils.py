"""Tests for UUID text conversions."""

from __future__ import annotations

from uuid import UUID, uuid4

import pytest

from relatable_storage.uuid_utils import (
    BASE64URL_LENGTH,
    from_base64url,
    from_int,
    from_urn,
    to_base64url,
    to_int,
    to_urn,
)

SAMPLE = UUID("4b62f367-c7f9-4bfe-9ee5-f4ffa793741f")


class TestBase64Url:
    """Compact identifier form."""

    def test_known_value(self) -> None:
        """A known UUID encodes to its expected token."""
        assert to_base64url(SAMPLE) == "S2LzZ8f5S_6e5fT_p5N0Hw"
        assert from_base64url("S2LzZ8f5S_6e5fT_p5N0Hw") == SAMPLE

    def test_round_trip(self) -> None:
        """Random UUIDs survive encoding."""
        for _ in range(100):
            value = uuid4()
            token = to_base64url(value)
            assert len(token) == BASE64URL_LENGTH
            assert "=" not in token
            assert from_base64url(token) == value

    def test_extremes(self) -> None:
        """The all-zero and all-one UUIDs encode."""
        assert to_base64url(UUID(int=0)) == "A" * 22
        assert from_base64url("_" * 21 + "w") == UUID(int=(1 << 128) - 1)

    @pytest.mark.parametrize(
        "token",
        ["", "short", "S2LzZ8f5S_6e5fT_p5N0Hw==", "S2LzZ8f5S+6e5fT/p5N0Hw", "S2LzZ8f5S_6e5fT_p5N0H!"],
    )
    def test_malformed(self, token: str) -> None:
        """Tokens of the wrong length or alphabet are rejected."""
        with pytest.raises(ValueError):
            from_base64url(token)


class TestOtherForms:
    """URN and integer forms."""

    def test_urn(self) -> None:
        """The URN form wraps the canonical text."""
        assert to_urn(SAMPLE) == "urn:uuid:4b62f367-c7f9-4bfe-9ee5-f4ffa793741f"
        assert from_urn(to_urn(SAMPLE)) == SAMPLE

    def test_urn_requires_prefix(self) -> None:
        """Plain UUID text is not a URN."""
        with pytest.raises(ValueError):
            from_urn(str(SAMPLE))

    def test_int(self) -> None:
        """The integer form round-trips."""
        assert from_int(to_int(SAMPLE)) == SAMPLE

    @pytest.mark.parametrize("value", [-1, 1 << 128])
    def test_int_out_of_range(self, value: int) -> None:
        """Integers outside 128 unsigned bits are rejected."""
        with pytest.raises(ValueError):
            from_int(value)
