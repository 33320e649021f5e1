"""Generation node records.

A GenerationNode is one versioned artifact in the generation tree. Nodes
are frozen: the NodeStore replaces the stored instance on every mutation,
so a reader holding a node always sees a consistent snapshot.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any

from gentree.tree.state import GenerationMode, NodeStatus, NodeType

if TYPE_CHECKING:
    from gentree.context.selection import ContextSelection


def new_node_id() -> str:
    """Generate an opaque node identifier."""
    return f"node_{uuid.uuid4().hex[:12]}"


IMAGE_PROMPT_KINDS = ("hero", "section", "footer", "illustration", "infographic")


@dataclass(frozen=True, slots=True)
class ImagePrompt:
    """An image prompt extracted from or attached to a node.

    Attributes:
        prompt_id: Stable identifier within the node
        original_text: Prompt text as generated
        edited_text: User edit, if any
        position: Placement order within the content
        kind: One of IMAGE_PROMPT_KINDS
    """

    prompt_id: str
    original_text: str
    edited_text: str | None = None
    position: int = 0
    kind: str = "section"

    def __post_init__(self) -> None:
        if self.kind not in IMAGE_PROMPT_KINDS:
            raise ValueError(f"Unknown image prompt kind: {self.kind}")

    @property
    def final_text(self) -> str:
        return self.edited_text or self.original_text

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.prompt_id,
            "originalText": self.original_text,
            "editedText": self.edited_text,
            "position": self.position,
            "type": self.kind,
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> ImagePrompt:
        return ImagePrompt(
            prompt_id=data["id"],
            original_text=data.get("originalText", ""),
            edited_text=data.get("editedText"),
            position=data.get("position", 0),
            kind=data.get("type", "section"),
        )


@dataclass(frozen=True, slots=True)
class StructuredContent:
    """Payload for nodes whose content is not flat text."""

    title: str | None = None
    synopsis: str | None = None
    outline: tuple[str, ...] = ()
    tags: tuple[str, ...] = ()
    metadata: dict[str, Any] = field(default_factory=dict)
    image_prompts: tuple[ImagePrompt, ...] = ()

    def with_metadata(self, extra: dict[str, Any]) -> StructuredContent:
        """Return a copy with ``extra`` merged into metadata."""
        return replace(self, metadata={**self.metadata, **extra})

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "synopsis": self.synopsis,
            "outline": list(self.outline),
            "tags": list(self.tags),
            "metadata": dict(self.metadata),
            "imagePrompts": [p.to_dict() for p in self.image_prompts],
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> StructuredContent:
        return StructuredContent(
            title=data.get("title"),
            synopsis=data.get("synopsis"),
            outline=tuple(data.get("outline") or ()),
            tags=tuple(data.get("tags") or ()),
            metadata=dict(data.get("metadata") or {}),
            image_prompts=tuple(
                ImagePrompt.from_dict(p) for p in data.get("imagePrompts") or ()
            ),
        )


@dataclass(frozen=True, slots=True)
class GenerationNode:
    """One generated artifact and its lineage.

    Attributes:
        node_id: Opaque unique identifier, immutable
        node_type: Kind of artifact
        mode: How it was produced
        content: Text payload; None until data arrives
        structured_content: Nested payload for non-flat artifacts
        parent_id: Node this was branched or derived from (None for roots)
        root_id: Top-most ancestor; equals node_id for roots
        children: Child ids in display order (creation order by default)
        visible, selected, deleted: Independent flags; deleted is a tombstone
        provider, model: Backend that produced the content
        tokens_input, tokens_output, cost: Usage counters, fixed once terminal
        status: Generation state machine
        error_message: Set only when status is FAILED
        created_at, completed_at: Epoch seconds; completed_at set when terminal
        prompt: The user prompt that produced the node
        vertical: Industry vertical the content targets
        context_data: Context selection used for the request
        duration_ms: Provider-reported generation time
    """

    node_id: str
    node_type: NodeType
    mode: GenerationMode
    content: str | None = None
    structured_content: StructuredContent | None = None
    parent_id: str | None = None
    root_id: str | None = None
    children: tuple[str, ...] = ()
    visible: bool = True
    selected: bool = False
    deleted: bool = False
    provider: str = ""
    model: str = ""
    tokens_input: int = 0
    tokens_output: int = 0
    cost: float = 0.0
    status: NodeStatus = NodeStatus.PENDING
    error_message: str | None = None
    created_at: float = field(default_factory=time.time)
    completed_at: float | None = None
    prompt: str | None = None
    vertical: str | None = None
    context_data: ContextSelection | None = None
    duration_ms: int | None = None

    @staticmethod
    def create(
        node_type: NodeType,
        mode: GenerationMode,
        *,
        provider: str = "",
        model: str = "",
        parent_id: str | None = None,
        **kwargs: Any,
    ) -> GenerationNode:
        """Create a pending node with a fresh id.

        ``root_id`` is resolved by the store on insert.
        """
        return GenerationNode(
            node_id=new_node_id(),
            node_type=node_type,
            mode=mode,
            provider=provider,
            model=model,
            parent_id=parent_id,
            **kwargs,
        )

    @property
    def is_root(self) -> bool:
        return self.parent_id is None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def to_dict(self) -> dict[str, Any]:
        """Serialize using the camelCase keys of the wire format."""
        return {
            "id": self.node_id,
            "type": self.node_type.value,
            "mode": self.mode.value,
            "content": self.content,
            "structuredContent": (
                self.structured_content.to_dict() if self.structured_content else None
            ),
            "parentId": self.parent_id,
            "rootId": self.root_id,
            "children": list(self.children),
            "visible": self.visible,
            "selected": self.selected,
            "deleted": self.deleted,
            "provider": self.provider,
            "model": self.model,
            "tokensInput": self.tokens_input,
            "tokensOutput": self.tokens_output,
            "cost": self.cost,
            "status": self.status.value,
            "errorMessage": self.error_message,
            "createdAt": self.created_at,
            "completedAt": self.completed_at,
            "prompt": self.prompt,
            "vertical": self.vertical,
            "contextData": self.context_data.to_dict() if self.context_data else None,
            "durationMs": self.duration_ms,
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> GenerationNode:
        from gentree.context.selection import ContextSelection

        structured = data.get("structuredContent")
        context = data.get("contextData")
        return GenerationNode(
            node_id=data["id"],
            node_type=NodeType(data["type"]),
            mode=GenerationMode(data["mode"]),
            content=data.get("content"),
            structured_content=StructuredContent.from_dict(structured) if structured else None,
            parent_id=data.get("parentId"),
            root_id=data.get("rootId"),
            children=tuple(data.get("children") or ()),
            visible=data.get("visible", True),
            selected=data.get("selected", False),
            deleted=data.get("deleted", False),
            provider=data.get("provider", ""),
            model=data.get("model", ""),
            tokens_input=data.get("tokensInput", 0),
            tokens_output=data.get("tokensOutput", 0),
            cost=data.get("cost", 0.0),
            status=NodeStatus(data.get("status", "pending")),
            error_message=data.get("errorMessage"),
            created_at=data.get("createdAt", 0.0),
            completed_at=data.get("completedAt"),
            prompt=data.get("prompt"),
            vertical=data.get("vertical"),
            context_data=ContextSelection.from_dict(context) if context else None,
            duration_ms=data.get("durationMs"),
        )
