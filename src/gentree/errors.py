"""Error taxonomy for the generation tree.

Store errors are programming errors and propagate to the caller.
Transport and decode errors are recovered into terminal node states by
the ingestion layer and the orchestrator.
"""

from __future__ import annotations


class GenTreeError(Exception):
    """Base class for all gentree errors."""


class StoreError(GenTreeError):
    """A Node Store invariant was violated by the caller."""


class NotFoundError(StoreError):
    """The referenced node id is not in the store."""

    def __init__(self, node_id: str) -> None:
        super().__init__(f"Node not found: {node_id}")
        self.node_id = node_id


class DanglingParentError(StoreError):
    """Insert or branch referenced a missing or deleted parent."""

    def __init__(self, parent_id: str, reason: str = "missing") -> None:
        super().__init__(f"Parent {parent_id} is {reason}")
        self.parent_id = parent_id
        self.reason = reason


class DuplicateNodeError(StoreError):
    """A node with the same id is already stored."""

    def __init__(self, node_id: str) -> None:
        super().__init__(f"Node already exists: {node_id}")
        self.node_id = node_id


class InvalidTransitionError(StoreError):
    """A status update violates the node state machine."""

    def __init__(self, node_id: str, message: str) -> None:
        super().__init__(f"{node_id}: {message}")
        self.node_id = node_id


class SealedNodeError(InvalidTransitionError):
    """A field other than visible/selected/structured_content was changed
    on a node that already reached a terminal status."""


class TransportError(GenTreeError):
    """The provider call failed (network, HTTP, or provider-side error).

    Attributes:
        status_code: HTTP status when the transport knows it.
    """

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class StreamDecodeError(GenTreeError):
    """A single stream record could not be decoded.

    Raised per line; the stream reader logs it and moves on.
    """

    def __init__(self, message: str, *, line: str | None = None) -> None:
        super().__init__(message)
        self.line = line


class CancellationError(GenTreeError):
    """A generation was cancelled by its consumer.

    Not a failure: the node ends as ``cancelled``.
    """
