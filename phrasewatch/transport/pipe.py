"""Thread-safe in-memory pipe connecting a producer thread to a response body."""

import threading
from collections.abc import Iterator

import httpx

DEFAULT_BUFFER_LIMIT = 1024 * 1024


class _PipeState:
    def __init__(self, limit: int):
        self.limit = limit
        self.buffer = bytearray()
        self.cond = threading.Condition()
        self.write_closed = False
        self.read_closed = False
        self.error: BaseException | None = None


class PipeReader:
    """Read end. Returns buffered data, then EOF or the writer's error."""

    def __init__(self, state: _PipeState):
        self._state = state

    def read(self, size: int = -1) -> bytes:
        state = self._state
        with state.cond:
            while not state.buffer and not state.write_closed and not state.read_closed:
                state.cond.wait()
            if state.read_closed:
                raise ValueError("read from closed pipe")
            if state.buffer:
                n = len(state.buffer) if size < 0 else min(size, len(state.buffer))
                data = bytes(state.buffer[:n])
                del state.buffer[:n]
                state.cond.notify_all()
                return data
            if state.error is not None:
                raise state.error
            return b""

    def close(self) -> None:
        state = self._state
        with state.cond:
            state.read_closed = True
            state.buffer.clear()
            state.cond.notify_all()


class PipeWriter:
    """Write end. Blocks while the buffer is full; closing is idempotent."""

    def __init__(self, state: _PipeState):
        self._state = state

    def write(self, data: bytes) -> int:
        state = self._state
        view = memoryview(data)
        written = 0
        with state.cond:
            while written < len(view):
                while (
                    len(state.buffer) >= state.limit
                    and not state.read_closed
                    and not state.write_closed
                ):
                    state.cond.wait()
                if state.read_closed:
                    raise BrokenPipeError("read end of pipe closed")
                if state.write_closed:
                    raise ValueError("write to closed pipe")
                n = min(len(view) - written, state.limit - len(state.buffer))
                state.buffer.extend(view[written : written + n])
                written += n
                state.cond.notify_all()
        return written

    def close(self, error: BaseException | None = None) -> bool:
        """
        Close the write end, optionally with an error readers will see.

        Returns False if the writer was already closed.
        """
        state = self._state
        with state.cond:
            if state.write_closed:
                return False
            state.write_closed = True
            state.error = error
            state.cond.notify_all()
            return True

    @property
    def closed(self) -> bool:
        return self._state.write_closed


def pipe(limit: int = DEFAULT_BUFFER_LIMIT) -> tuple[PipeReader, PipeWriter]:
    state = _PipeState(limit)
    return PipeReader(state), PipeWriter(state)


class PipeBodyStream(httpx.SyncByteStream):
    """Response body backed by the read end of a pipe."""

    def __init__(self, reader: PipeReader, chunk_size: int = 64 * 1024):
        self._reader = reader
        self._chunk_size = chunk_size

    def __iter__(self) -> Iterator[bytes]:
        while True:
            chunk = self._reader.read(self._chunk_size)
            if not chunk:
                return
            yield chunk

    def close(self) -> None:
        self._reader.close()
