"""Generation lifecycle: provider transport contract and orchestrator."""

from gentree.generation.orchestrator import GenerationOrchestrator, GenerationRequest
from gentree.generation.transport import ProviderCall, ProviderTransport, coerce_response

__all__ = [
    "GenerationOrchestrator",
    "GenerationRequest",
    "ProviderCall",
    "ProviderTransport",
    "coerce_response",
]
