"""Provider transport contract.

The orchestrator talks to providers only through ProviderTransport.
Concrete adapters (HTTP clients for each LLM vendor) live outside this
package; they either return a single-shot ProviderResponse or open a
byte stream of ``data: <json>`` records.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from pydantic import ValidationError

from gentree.errors import TransportError
from gentree.streaming.chunks import ProviderResponse
from gentree.streaming.ingest import ChunkSource
from gentree.tree.state import GenerationMode, NodeType


@dataclass(frozen=True, slots=True)
class ProviderCall:
    """Everything a transport needs for one provider request.

    Attributes:
        node_id: Node the result is written into
        prompt: User prompt (or regeneration instructions)
        context: Serialized context block, possibly empty
        provider: Provider name
        model: Model identifier
        node_type: Kind of artifact requested
        mode: Generation mode
        vertical: Industry vertical, if any
        max_tokens: Output token cap
        seed_content: Edited text a regeneration starts from
    """

    node_id: str
    prompt: str
    context: str
    provider: str
    model: str
    node_type: NodeType
    mode: GenerationMode
    vertical: str | None = None
    max_tokens: int = 4096
    seed_content: str | None = None


@runtime_checkable
class ProviderTransport(Protocol):
    """Protocol for provider transports.

    Implementations raise TransportError for network or HTTP failures.
    """

    async def complete(self, call: ProviderCall) -> ProviderResponse | Mapping[str, Any]:
        """Run a single-shot generation.

        Returns:
            A ProviderResponse, or its camelCase JSON mapping
        """
        ...

    async def open_stream(self, call: ProviderCall) -> ChunkSource:
        """Open a chunk stream.

        Returns:
            Async iterable of raw bytes with a synchronous close()
        """
        ...


def coerce_response(result: ProviderResponse | Mapping[str, Any]) -> ProviderResponse:
    """Validate a transport result into a ProviderResponse.

    Raises:
        TransportError: The mapping is not a valid response payload.
    """
    if isinstance(result, ProviderResponse):
        return result
    try:
        return ProviderResponse.model_validate(result)
    except ValidationError as e:
        raise TransportError(f"Invalid provider response: {e}") from e
