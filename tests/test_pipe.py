"""Tests for the bounded in-memory pipe."""

from __future__ import annotations

import threading

import pytest

from relatable_storage.pipe import DEFAULT_PIPE_SIZE, Pipe, PipeWriterError


def _produce(writer, payload: bytes, chunk_size: int = 1000) -> None:
    with writer:
        for offset in range(0, len(payload), chunk_size):
            writer.write(payload[offset : offset + chunk_size])


class TestPipe:
    """Data flow between the two ends."""

    def test_default_capacity(self) -> None:
        """The default capacity is sixteen kibibytes."""
        assert Pipe().capacity == DEFAULT_PIPE_SIZE == 16384

    @pytest.mark.parametrize("capacity", [0, -1])
    def test_capacity_must_be_positive(self, capacity: int) -> None:
        """Non-positive capacities are rejected."""
        with pytest.raises(ValueError):
            Pipe(capacity)

    def test_transfer_larger_than_capacity(self) -> None:
        """A producer thread can push more data than the pipe holds."""
        payload = bytes(range(256)) * 400
        pipe = Pipe(capacity=10)
        reader = pipe.reader()
        producer = threading.Thread(target=_produce, args=(pipe.writer(), payload))
        producer.start()
        with reader:
            assert reader.read() == payload
        producer.join(timeout=5)
        assert not producer.is_alive()

    def test_end_of_stream_after_writer_close(self) -> None:
        """Closing the write end signals end-of-stream after buffered data."""
        pipe = Pipe()
        writer = pipe.writer()
        writer.write(b"abc")
        writer.close()
        reader = pipe.reader()
        assert reader.read() == b"abc"
        assert reader.read() == b""


class TestPipeErrors:
    """Abnormal termination of either end."""

    def test_writer_failure_reaches_reader(self) -> None:
        """A failed producer is reported once buffered data is drained."""
        pipe = Pipe()
        writer = pipe.writer()
        writer.write(b"abc")
        cause = RuntimeError("boom")
        writer.fail(cause)

        reader = pipe.reader()
        assert reader.read(3) == b"abc"
        with pytest.raises(PipeWriterError) as excinfo:
            reader.read()
        assert excinfo.value.__cause__ is cause
        assert isinstance(excinfo.value, OSError)

    def test_write_after_reader_close_raises(self) -> None:
        """Writes fail once nobody is reading."""
        pipe = Pipe()
        writer = pipe.writer()
        pipe.reader().close()
        with pytest.raises(BrokenPipeError):
            writer.write(b"data")

    def test_blocked_writer_released_by_reader_close(self) -> None:
        """Closing the reader unblocks a producer waiting for space."""
        pipe = Pipe(capacity=4)
        reader = pipe.reader()
        errors: list[BaseException] = []

        def produce() -> None:
            try:
                pipe.writer().write(b"x" * 100)
            except BrokenPipeError as exc:
                errors.append(exc)

        producer = threading.Thread(target=produce)
        producer.start()
        reader.close()
        producer.join(timeout=5)
        assert not producer.is_alive()
        assert len(errors) == 1

    def test_write_after_writer_close_raises(self) -> None:
        """A closed write end rejects further data."""
        writer = Pipe().writer()
        writer.close()
        with pytest.raises(ValueError):
            writer.write(b"data")
