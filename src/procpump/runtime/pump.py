"""Output sinks and stream pumps.

A pump copies one of the child's output pipes into a sink until
end-of-stream. One pump runs per output stream, and a pump runs even when
the caller did not ask for the output (into a NullSink) so the child can
never stall on a full pipe buffer.
"""

from __future__ import annotations

import asyncio
import codecs
import logging
import threading
from typing import Any, Callable, Protocol

__all__ = [
    "OutputSink",
    "NullSink",
    "BufferSink",
    "CallbackSink",
    "TeeSink",
    "SynchronizedSink",
    "synchronized",
    "pump_stream",
    "DEFAULT_CHUNK_SIZE",
]

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 4096


class OutputSink(Protocol):
    """Anything with a text write() method (io.StringIO, sys.stdout, ...)."""

    def write(self, text: str) -> Any: ...


class NullSink:
    """Discards everything written to it."""

    def write(self, text: str) -> None:
        pass


class BufferSink:
    """Append-only in-memory text buffer."""

    def __init__(self) -> None:
        self._chunks: list[str] = []

    def write(self, text: str) -> None:
        self._chunks.append(text)

    def getvalue(self) -> str:
        return "".join(self._chunks)

    def __str__(self) -> str:
        return self.getvalue()


class CallbackSink:
    """Forwards each decoded chunk to a callable, for live streaming."""

    def __init__(self, callback: Callable[[str], None]) -> None:
        self._callback = callback

    def write(self, text: str) -> None:
        self._callback(text)


class TeeSink:
    """Writes each chunk to several sinks in order."""

    def __init__(self, *sinks: OutputSink) -> None:
        self.sinks = sinks

    def write(self, text: str) -> None:
        for sink in self.sinks:
            sink.write(text)


class SynchronizedSink:
    """Serializes writes to a sink shared with other writers.

    The wrapped sink's getvalue() is exposed under the same lock when it
    has one, so a caller can inspect it while pumps are still running.
    """

    def __init__(self, inner: OutputSink) -> None:
        self.inner = inner
        self._lock = threading.Lock()

    def write(self, text: str) -> Any:
        with self._lock:
            return self.inner.write(text)

    def getvalue(self) -> str:
        with self._lock:
            return self.inner.getvalue()  # type: ignore[attr-defined]


def synchronized(sink: OutputSink | None) -> OutputSink:
    """Wrap a caller sink for concurrent use; None becomes a NullSink."""
    if sink is None:
        return NullSink()
    if isinstance(sink, (NullSink, SynchronizedSink)):
        return sink
    return SynchronizedSink(sink)


async def pump_stream(
    stream: asyncio.StreamReader | None,
    sink: OutputSink,
    *,
    name: str = "stream",
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    encoding: str = "utf-8",
    log: logging.Logger | logging.LoggerAdapter | None = None,
) -> int:
    """Drain a stream into a sink until end-of-stream.

    Reads in bounded chunks and loops until a zero-length read. Bytes are
    decoded incrementally so a multi-byte character split across two reads
    is delivered intact.

    A read error ends the drain and is treated as end-of-stream. If the
    sink itself raises, the pump keeps draining into nothing and re-raises
    the sink's error once the stream is exhausted.

    Args:
        stream: The pipe to drain (None = nothing to do)
        sink: Destination for decoded text
        name: Stream label for logging
        chunk_size: Read buffer size in bytes
        encoding: Text encoding of the stream
        log: Logger (defaults to this module's logger)

    Returns:
        Number of bytes read
    """
    log = log or logger
    if stream is None:
        return 0

    decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
    total = 0
    sink_error: Exception | None = None

    def deliver(text: str) -> None:
        nonlocal sink_error
        if not text or sink_error is not None:
            return
        try:
            sink.write(text)
        except Exception as e:
            sink_error = e
            log.warning(f"{name} sink raised, discarding the rest of the stream: {e}")

    while True:
        try:
            chunk = await stream.read(chunk_size)
        except (OSError, ValueError) as e:
            log.warning(f"Error reading {name}, treating as end-of-stream: {e}")
            break
        if not chunk:
            break
        total += len(chunk)
        deliver(decoder.decode(chunk))

    deliver(decoder.decode(b"", final=True))
    log.debug(f"{name} reached end-of-stream after {total} bytes")

    if sink_error is not None:
        raise sink_error
    return total
