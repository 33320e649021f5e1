"""Stream chunk wire model.

Provider streams are newline-delimited ``data: <json>`` records. Each
record decodes to a StreamChunk:

    data: {"type": "content", "content": "Hello"}
    data: {"type": "metadata", "metadata": {"title": "Draft"}}
    data: {"type": "complete", "tokensUsed": 42, "cost": 0.001}
    data: {"type": "error", "error": "rate limited"}

Single-shot calls return a ProviderResponse instead.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from gentree.errors import StreamDecodeError

DATA_PREFIX = "data:"


class ChunkType(Enum):
    CONTENT = "content"
    METADATA = "metadata"
    COMPLETE = "complete"
    ERROR = "error"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True, slots=True)
class StreamChunk:
    """One decoded stream record.

    Attributes:
        type: Record kind
        delta: Text to append (content records)
        tokens_used: Output tokens reported by the provider
        cost: Cost reported by the provider
        metadata: Structured fields to merge (metadata records)
        error: Failure description (error records)
    """

    type: ChunkType
    delta: str = ""
    tokens_used: int | None = None
    cost: float | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    error: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.type in (ChunkType.COMPLETE, ChunkType.ERROR)


class WireModel(BaseModel):
    """Base model for wire payloads with populate_by_name enabled."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class ChunkPayload(WireModel):
    """JSON body of a ``data:`` record."""

    type: ChunkType = ChunkType.CONTENT
    delta: str | None = None
    content: str | None = None  # Alternate name for delta
    tokens_used: int | None = Field(default=None, alias="tokensUsed", ge=0)
    cost: float | None = Field(default=None, ge=0)
    metadata: dict[str, Any] = Field(default_factory=dict)
    error: str | None = None
    message: str | None = None  # Alternate name for error

    def to_chunk(self) -> StreamChunk:
        return StreamChunk(
            type=self.type,
            delta=self.delta if self.delta is not None else (self.content or ""),
            tokens_used=self.tokens_used,
            cost=self.cost,
            metadata=dict(self.metadata),
            error=self.error if self.error is not None else self.message,
        )


class ProviderResponse(WireModel):
    """Single-shot provider result."""

    success: bool
    content: str | None = None
    tokens_used: int = Field(default=0, alias="tokensUsed", ge=0)
    cost: float = Field(default=0.0, ge=0)
    duration_ms: int | None = Field(default=None, alias="durationMs")
    error: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


def parse_record(line: str) -> StreamChunk | None:
    """Decode one stream line.

    Args:
        line: A complete line without its terminator.

    Returns:
        The decoded chunk, or None for lines that carry no record
        (blank lines, SSE comments, ``event:``/``id:`` fields, empty data).

    Raises:
        StreamDecodeError: The data payload is not valid JSON or not a
            valid chunk.
    """
    if not line.startswith(DATA_PREFIX):
        return None

    body = line[len(DATA_PREFIX):]
    if body.startswith(" "):
        body = body[1:]
    if not body.strip():
        return None

    try:
        data = json.loads(body)
    except json.JSONDecodeError as e:
        raise StreamDecodeError(f"Invalid JSON in stream record: {e}", line=line) from e

    if not isinstance(data, dict):
        raise StreamDecodeError(
            f"Stream record must be an object, got {type(data).__name__}", line=line
        )

    try:
        return ChunkPayload.model_validate(data).to_chunk()
    except ValidationError as e:
        raise StreamDecodeError(f"Invalid stream record: {e}", line=line) from e
