"""Streaming ingestion: apply decoded chunks to one node in the store.

A StreamIngestor binds one chunk stream to one node. Per chunk:

- content: append the delta and republish the partial content
- metadata: merge into structured_content.metadata
- complete: seal the node as completed with tokens_output and cost
- error: seal the node as failed, keeping partial content

Once the node is terminal every further chunk is ignored, so a late
chunk can never resurrect a completed, failed or cancelled node.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterable
from contextlib import aclosing
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from gentree.errors import CancellationError, NotFoundError, StoreError
from gentree.logging import TRACE, get_logger
from gentree.streaming.chunks import ChunkType, StreamChunk
from gentree.streaming.framing import DEFAULT_MAX_LINE_BYTES, SSELineDecoder, iter_chunks
from gentree.tree.nodes import GenerationNode, StructuredContent
from gentree.tree.state import NodeStatus

if TYPE_CHECKING:
    from gentree.tree.store import NodeStore

log = get_logger("stream")

EOF_MESSAGE = "stream ended before completion"
DEFAULT_ERROR_MESSAGE = "provider reported an error"


@runtime_checkable
class ChunkSource(Protocol):
    """A transport byte stream with synchronous close.

    close() must make a pending read finish promptly, either by ending
    iteration or by raising CancellationError.
    """

    def __aiter__(self) -> Any: ...

    def close(self) -> None: ...


@dataclass(frozen=True, slots=True)
class StreamOutcome:
    """Final state of an ingested stream."""

    node_id: str
    status: NodeStatus
    content: str | None
    tokens_output: int
    cost: float
    error_message: str | None = None

    @classmethod
    def from_node(cls, node: GenerationNode) -> StreamOutcome:
        return cls(
            node_id=node.node_id,
            status=node.status,
            content=node.content,
            tokens_output=node.tokens_output,
            cost=node.cost,
            error_message=node.error_message,
        )


class StreamIngestor:
    """Ingest one provider stream into one node.

    Args:
        store: Node store holding the target node
        node_id: Node the stream writes into
        yield_between_chunks: Give the event loop a turn after each chunk
        max_line_bytes: Line buffer bound for the decoder

    Usage:
        ingestor = StreamIngestor(store, node.node_id)
        outcome = await ingestor.run(source)
    """

    def __init__(
        self,
        store: NodeStore,
        node_id: str,
        *,
        yield_between_chunks: bool = True,
        max_line_bytes: int = DEFAULT_MAX_LINE_BYTES,
    ) -> None:
        self.store = store
        self.node_id = node_id
        self.yield_between_chunks = yield_between_chunks
        self._decoder = SSELineDecoder(max_line_bytes)
        self._source: AsyncIterable[bytes] | None = None
        self._source_closed = False
        self._task: asyncio.Task[None] | None = None
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def _node(self) -> GenerationNode:
        node = self.store.get(self.node_id, include_deleted=True)
        if node is None:
            raise NotFoundError(self.node_id)
        return node

    def _ensure_processing(self, node: GenerationNode) -> GenerationNode:
        if node.status is NodeStatus.PENDING:
            return self.store.update(self.node_id, status=NodeStatus.PROCESSING)
        return node

    # -------------------------------------------------------------------------
    # Per-chunk semantics
    # -------------------------------------------------------------------------

    def apply(self, chunk: StreamChunk) -> bool:
        """Apply one chunk to the node.

        Returns:
            False if the node was already terminal and the chunk was ignored.
        """
        node = self._node()
        if node.is_terminal:
            log.log(TRACE, "Ignoring %s chunk for sealed node %s", chunk.type, self.node_id)
            return False

        if chunk.type is ChunkType.CONTENT:
            changes: dict[str, Any] = {"content": (node.content or "") + chunk.delta}
            if node.status is NodeStatus.PENDING:
                changes["status"] = NodeStatus.PROCESSING
            self.store.update(self.node_id, **changes)

        elif chunk.type is ChunkType.METADATA:
            structured = node.structured_content or StructuredContent()
            changes = {"structured_content": structured.with_metadata(chunk.metadata)}
            if node.status is NodeStatus.PENDING:
                changes["status"] = NodeStatus.PROCESSING
            self.store.update(self.node_id, **changes)

        elif chunk.type is ChunkType.COMPLETE:
            self._ensure_processing(node)
            self.store.update(
                self.node_id,
                status=NodeStatus.COMPLETED,
                tokens_output=chunk.tokens_used or 0,
                cost=chunk.cost or 0.0,
            )
            log.debug(
                "Stream for %s completed (%s tokens, cost %s)",
                self.node_id, chunk.tokens_used or 0, chunk.cost or 0.0,
            )

        elif chunk.type is ChunkType.ERROR:
            self._fail(chunk.error or DEFAULT_ERROR_MESSAGE)

        return True

    def _fail(self, message: str) -> None:
        node = self._ensure_processing(self._node())
        if node.is_terminal:
            return
        self.store.update(self.node_id, status=NodeStatus.FAILED, error_message=message)
        log.warning("Stream for %s failed: %s", self.node_id, message)

    # -------------------------------------------------------------------------
    # Stream lifecycle
    # -------------------------------------------------------------------------

    async def run(self, source: AsyncIterable[bytes]) -> StreamOutcome:
        """Drive ``source`` to a terminal node state.

        The source is always closed on exit. Cancelling the calling task
        cancels the stream and re-raises asyncio.CancelledError.
        """
        self._source = source
        if self._cancelled:
            self._close_source()
            return self.outcome()

        self._task = asyncio.ensure_future(self._pump(source))
        try:
            await self._task
        except asyncio.CancelledError:
            if not self._cancelled:
                self.cancel()
                raise
        finally:
            self._close_source()

        return self.outcome()

    async def _pump(self, source: AsyncIterable[bytes]) -> None:
        try:
            async with aclosing(iter_chunks(source, self._decoder)) as chunks:
                async for chunk in chunks:
                    self.apply(chunk)
                    if chunk.is_terminal:
                        break
                    if self.yield_between_chunks:
                        await asyncio.sleep(0)
        except CancellationError:
            self.cancel()
            return
        except StoreError:
            raise
        except Exception as e:
            self._fail(f"{type(e).__name__}: {e}")
            return

        if self._cancelled:
            return
        if not self._node().is_terminal:
            self._fail(EOF_MESSAGE)

    def cancel(self) -> bool:
        """Cancel the stream, keeping partial content.

        Idempotent, and a no-op once the node is terminal.

        Returns:
            True if this call cancelled the node.
        """
        if self._cancelled:
            return False
        node = self._node()
        if node.is_terminal:
            return False

        self._cancelled = True
        self._ensure_processing(node)
        self.store.update(self.node_id, status=NodeStatus.CANCELLED)
        log.debug("Stream for %s cancelled", self.node_id)

        self._close_source()
        task = self._task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
        return True

    def _close_source(self) -> None:
        if self._source is None or self._source_closed:
            return
        self._source_closed = True
        close = getattr(self._source, "close", None)
        if callable(close):
            try:
                close()
            except Exception:
                log.warning("Error closing stream source for %s", self.node_id, exc_info=True)

    def outcome(self) -> StreamOutcome:
        return StreamOutcome.from_node(self._node())
