"""Shared test utilities for gentree tests."""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator, Mapping
from typing import Any

from gentree.errors import CancellationError, TransportError
from gentree.generation.transport import ProviderCall
from gentree.streaming.chunks import ProviderResponse
from gentree.tree import GenerationMode, GenerationNode, NodeType


def make_node(
    node_type: NodeType = NodeType.IDEA,
    mode: GenerationMode = GenerationMode.DIRECT,
    parent_id: str | None = None,
    **kwargs: Any,
) -> GenerationNode:
    """Create a pending node for insertion.

    Args:
        node_type: Kind of artifact
        mode: Generation mode
        parent_id: Optional parent node id
        **kwargs: Extra GenerationNode fields

    Returns:
        GenerationNode with a fresh id
    """
    kwargs.setdefault("provider", "openai")
    kwargs.setdefault("model", "gpt-4o")
    return GenerationNode.create(node_type, mode, parent_id=parent_id, **kwargs)


def sse(**payload: Any) -> bytes:
    """Encode one ``data:`` record with its newline."""
    return f"data: {json.dumps(payload)}\n".encode()


def sse_stream(*records: Mapping[str, Any]) -> bytes:
    """Encode several records back to back."""
    return b"".join(sse(**record) for record in records)


def split_every(data: bytes, size: int) -> list[bytes]:
    """Cut ``data`` into reads of ``size`` bytes."""
    return [data[i : i + size] for i in range(0, len(data), size)]


class ByteChunkSource:
    """In-memory chunk source with synchronous close().

    Reads are delivered one per iteration. With ``hold_open`` the source
    blocks after its scripted reads until close() is called, like a live
    HTTP stream waiting on the provider.

    Args:
        reads: Byte strings returned in order
        hold_open: Block after the last read instead of ending
        raise_on_close: Raise CancellationError from the blocked read on close
        error: Exception raised after the scripted reads
    """

    def __init__(
        self,
        reads: list[bytes],
        *,
        hold_open: bool = False,
        raise_on_close: bool = False,
        error: Exception | None = None,
    ) -> None:
        self.reads = list(reads)
        self.hold_open = hold_open
        self.raise_on_close = raise_on_close
        self.error = error
        self.closed = False
        self.close_calls = 0
        self.delivered = 0
        self._closed_event = asyncio.Event()

    def close(self) -> None:
        self.closed = True
        self.close_calls += 1
        self._closed_event.set()

    def __aiter__(self) -> AsyncIterator[bytes]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[bytes]:
        for data in self.reads:
            if self.closed:
                return
            self.delivered += 1
            yield data
            await asyncio.sleep(0)
        if self.error is not None:
            raise self.error
        if self.hold_open:
            await self._closed_event.wait()
            if self.raise_on_close:
                raise CancellationError("stream closed")


class FakeTransport:
    """Scripted ProviderTransport.

    Args:
        response: Returned by complete() (or raised if an exception)
        source: Returned by open_stream() (or raised if an exception)
    """

    def __init__(
        self,
        response: ProviderResponse | Mapping[str, Any] | Exception | None = None,
        source: ByteChunkSource | Exception | None = None,
    ) -> None:
        self.response = response
        self.source = source
        self.calls: list[ProviderCall] = []

    async def complete(self, call: ProviderCall) -> ProviderResponse | Mapping[str, Any]:
        self.calls.append(call)
        await asyncio.sleep(0)
        if isinstance(self.response, Exception):
            raise self.response
        if self.response is None:
            raise TransportError("no response scripted")
        return self.response

    async def open_stream(self, call: ProviderCall) -> ByteChunkSource:
        self.calls.append(call)
        await asyncio.sleep(0)
        if isinstance(self.source, Exception):
            raise self.source
        if self.source is None:
            raise TransportError("no stream scripted")
        return self.source


async def wait_until(predicate, timeout: float = 1.0) -> None:
    """Spin the event loop until ``predicate()`` is true.

    Raises:
        asyncio.TimeoutError: If it never becomes true
    """

    async def _spin() -> None:
        while not predicate():
            await asyncio.sleep(0)

    await asyncio.wait_for(_spin(), timeout)
