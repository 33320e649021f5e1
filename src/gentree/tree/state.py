"""Tagged variants for generation nodes.

This module defines:
- NodeType: what kind of artifact a node holds
- GenerationMode: how the artifact was produced
- NodeStatus: the per-generation state machine
- ChangeKind: store mutation kinds delivered to subscribers
"""

from __future__ import annotations

from enum import Enum


class NodeType(Enum):
    """Kind of generated artifact."""

    IDEA = "idea"
    TITLE = "title"
    SYNOPSIS = "synopsis"
    OUTLINE = "outline"
    FULL_CONTENT = "fullContent"
    SOCIAL_POST = "socialPost"
    IMAGE_PROMPT = "imagePrompt"
    ANALYSIS = "analysis"

    def __str__(self) -> str:
        return self.value


class GenerationMode(Enum):
    """How a node was produced."""

    STRUCTURED = "structured"
    DIRECT = "direct"
    BATCH = "batch"
    MULTI_VERTICAL = "multiVertical"
    EDIT_EXISTING = "editExisting"

    def __str__(self) -> str:
        return self.value


class NodeStatus(Enum):
    """Generation state machine.

    PENDING -> PROCESSING -> {COMPLETED | FAILED | CANCELLED}

    Terminal states are final. A non-terminal state may be set again
    (e.g. a content update that repeats PROCESSING), which is a no-op.
    """

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL

    def can_transition_to(self, target: NodeStatus) -> bool:
        if target is self:
            return not self.is_terminal
        return target in _TRANSITIONS[self]

    def __str__(self) -> str:
        return self.value


_TERMINAL = frozenset({NodeStatus.COMPLETED, NodeStatus.FAILED, NodeStatus.CANCELLED})

_TRANSITIONS: dict[NodeStatus, frozenset[NodeStatus]] = {
    NodeStatus.PENDING: frozenset({NodeStatus.PROCESSING}),
    NodeStatus.PROCESSING: _TERMINAL,
    NodeStatus.COMPLETED: frozenset(),
    NodeStatus.FAILED: frozenset(),
    NodeStatus.CANCELLED: frozenset(),
}


class ChangeKind(Enum):
    """Kind of committed store mutation."""

    INSERTED = "inserted"
    UPDATED = "updated"
    DELETED = "deleted"

    def __str__(self) -> str:
        return self.value
