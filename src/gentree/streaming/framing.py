"""Line framing for provider chunk streams.

Transports deliver arbitrary byte slices: a record may be split across
reads, several records may share one read, and a multi-byte UTF-8
character may straddle a boundary. SSELineDecoder buffers bytes and only
decodes whole lines, so none of those splits change the decoded text.

Line format:
    data: <json>\\n        (\\r\\n also accepted)

Lines without the ``data:`` prefix carry no record and are skipped.
"""

from __future__ import annotations

from collections.abc import AsyncIterable, AsyncIterator

from gentree.errors import StreamDecodeError
from gentree.logging import TRACE, get_logger
from gentree.streaming.chunks import StreamChunk, parse_record

log = get_logger("stream")

DEFAULT_MAX_LINE_BYTES = 1024 * 1024
LF = b"\n"
CR = b"\r"


class SSELineDecoder:
    """Incremental byte -> line decoder.

    Args:
        max_line_bytes: Longest partial line kept in the buffer. A longer
            line is discarded through its terminating newline.

    Example:
        >>> decoder = SSELineDecoder()
        >>> decoder.feed(b'data: {"a"')
        []
        >>> decoder.feed(b': 1}\\ndata: ')
        ['data: {"a": 1}']
        >>> decoder.flush()
        'data: '
    """

    def __init__(self, max_line_bytes: int = DEFAULT_MAX_LINE_BYTES) -> None:
        self.max_line_bytes = max_line_bytes
        self._buffer = bytearray()
        self._discarding = False

    def feed(self, data: bytes) -> list[str]:
        """Add bytes and return every line they complete."""
        if self._discarding:
            newline = data.find(LF)
            if newline < 0:
                return []
            data = data[newline + 1 :]
            self._discarding = False

        self._buffer.extend(data)
        *complete, rest = self._buffer.split(LF)
        self._buffer = bytearray(rest)

        if len(self._buffer) > self.max_line_bytes:
            log.warning(
                "Discarding stream line longer than %d bytes", self.max_line_bytes
            )
            self._buffer.clear()
            self._discarding = True

        return [_decode_line(raw) for raw in complete]

    def flush(self) -> str | None:
        """Return the trailing unterminated line at end of stream, if any."""
        if self._discarding:
            self._discarding = False
            return None
        if not self._buffer:
            return None
        line = _decode_line(self._buffer)
        self._buffer.clear()
        return line

    @property
    def pending(self) -> int:
        """Bytes buffered for an incomplete line."""
        return len(self._buffer)


def _decode_line(raw: bytes | bytearray) -> str:
    if raw.endswith(CR):
        raw = raw[:-1]
    return bytes(raw).decode("utf-8", errors="replace")


def _parse_line(line: str) -> StreamChunk | None:
    log.log(TRACE, "Stream line: %r", line[:200])
    try:
        return parse_record(line)
    except StreamDecodeError as e:
        log.warning("Dropping malformed stream record: %s", e)
        return None


async def iter_chunks(
    source: AsyncIterable[bytes | str],
    decoder: SSELineDecoder | None = None,
) -> AsyncIterator[StreamChunk]:
    """Decode chunks lazily from a byte stream.

    Malformed records are logged and skipped. Iteration stops after the
    first ``complete`` or ``error`` chunk; anything after it is never read.

    Args:
        source: Async iterable of raw reads from the transport.
        decoder: Line decoder to use (a fresh one by default).

    Yields:
        StreamChunk objects in arrival order.
    """
    decoder = decoder or SSELineDecoder()

    async for data in source:
        if isinstance(data, str):
            data = data.encode("utf-8")
        for line in decoder.feed(data):
            chunk = _parse_line(line)
            if chunk is None:
                continue
            yield chunk
            if chunk.is_terminal:
                return

    tail = decoder.flush()
    if tail is not None:
        chunk = _parse_line(tail)
        if chunk is not None:
            yield chunk
