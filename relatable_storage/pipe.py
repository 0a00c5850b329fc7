"""Bounded in-memory pipe connecting a producer thread to a consumer.

The pipe holds at most ``capacity`` bytes. Writers block while it is full and
readers block while it is empty. Either end can be closed independently:

- closing the write end normally signals end-of-stream to the reader;
- closing the write end with an exception makes the reader raise
  :class:`PipeWriterError` once buffered data is drained;
- closing the read end makes pending and later writes raise
  :class:`BrokenPipeError`, so a producer stops promptly.

Example:

    >>> pipe = Pipe(capacity=4)
    >>> reader, writer = pipe.reader(), pipe.writer()

"""

from __future__ import annotations

import io
import threading

DEFAULT_PIPE_SIZE = 16384


class PipeWriterError(OSError):
    """Raised by the read end when the producer failed."""


class Pipe:
    """Fixed-capacity byte buffer shared by one reader and one writer."""

    def __init__(self, capacity: int = DEFAULT_PIPE_SIZE) -> None:
        """Create an empty pipe.

        Raises:
            ValueError: If ``capacity`` is not positive.

        """
        if capacity <= 0:
            message = f"Pipe capacity must be positive: {capacity}"
            raise ValueError(message)
        self.capacity = capacity
        self._buffer = bytearray()
        self._condition = threading.Condition()
        self._writer_closed = False
        self._reader_closed = False
        self._error: BaseException | None = None

    def reader(self) -> io.BufferedReader:
        """Return the read end as a buffered binary stream."""
        return io.BufferedReader(_PipeReader(self), min(self.capacity, io.DEFAULT_BUFFER_SIZE))

    def writer(self) -> _PipeWriter:
        """Return the write end."""
        return _PipeWriter(self)

    def _write(self, data: bytes) -> int:
        view = memoryview(data)
        written = 0
        with self._condition:
            while written < len(view):
                if self._reader_closed:
                    message = "Pipe closed by reader"
                    raise BrokenPipeError(message)
                if self._writer_closed:
                    message = "Write end is closed"
                    raise ValueError(message)
                space = self.capacity - len(self._buffer)
                if space == 0:
                    self._condition.wait()
                    continue
                chunk = view[written : written + space]
                self._buffer += chunk
                written += len(chunk)
                self._condition.notify_all()
        return written

    def _readinto(self, target) -> int:
        with self._condition:
            while not self._buffer:
                if self._error is not None:
                    message = "Pipe writer failed"
                    raise PipeWriterError(message) from self._error
                if self._writer_closed:
                    return 0
                self._condition.wait()
            size = min(len(target), len(self._buffer))
            target[:size] = self._buffer[:size]
            del self._buffer[:size]
            self._condition.notify_all()
            return size

    def close_writer(self, error: BaseException | None = None) -> None:
        """Close the write end, optionally recording the producer's failure."""
        with self._condition:
            if self._writer_closed:
                return
            self._writer_closed = True
            self._error = error
            self._condition.notify_all()

    def close_reader(self) -> None:
        """Close the read end and discard buffered data."""
        with self._condition:
            self._reader_closed = True
            self._buffer.clear()
            self._condition.notify_all()


class _PipeReader(io.RawIOBase):
    def __init__(self, pipe: Pipe) -> None:
        self._pipe = pipe

    def readable(self) -> bool:
        return True

    def readinto(self, buffer) -> int:
        return self._pipe._readinto(buffer)

    def close(self) -> None:
        if not self.closed:
            self._pipe.close_reader()
        super().close()


class _PipeWriter(io.RawIOBase):
    def __init__(self, pipe: Pipe) -> None:
        self._pipe = pipe

    def writable(self) -> bool:
        return True

    def write(self, data) -> int:
        return self._pipe._write(data)

    def fail(self, error: BaseException) -> None:
        """Close the write end abnormally."""
        self._pipe.close_writer(error)
        super().close()

    def close(self) -> None:
        if not self.closed:
            self._pipe.close_writer()
        super().close()
