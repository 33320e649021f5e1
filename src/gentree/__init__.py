"""gentree: branchable generation tree with streaming ingestion and usage accounting."""

__version__ = "0.1.0"

# Public API
from gentree.config import Config, get_config, load_config
from gentree.context import ContextBuilder, ContextLibrary, ContextSelection
from gentree.errors import (
    CancellationError,
    DanglingParentError,
    DuplicateNodeError,
    GenTreeError,
    InvalidTransitionError,
    NotFoundError,
    SealedNodeError,
    StoreError,
    StreamDecodeError,
    TransportError,
)
from gentree.generation import (
    GenerationOrchestrator,
    GenerationRequest,
    ProviderCall,
    ProviderTransport,
)
from gentree.streaming import StreamChunk, StreamIngestor, StreamOutcome
from gentree.tree import (
    ChangeKind,
    GenerationMode,
    GenerationNode,
    NodeStatus,
    NodeStore,
    NodeType,
    StoreEvent,
)
from gentree.usage import UsageLedger, UsageLevel, classify_usage

__all__ = [
    # Main entry points
    "GenerationOrchestrator",
    "GenerationRequest",
    "NodeStore",
    "UsageLedger",
    # Tree
    "ChangeKind",
    "GenerationMode",
    "GenerationNode",
    "NodeStatus",
    "NodeType",
    "StoreEvent",
    # Streaming
    "StreamChunk",
    "StreamIngestor",
    "StreamOutcome",
    # Transport
    "ProviderCall",
    "ProviderTransport",
    # Context
    "ContextBuilder",
    "ContextLibrary",
    "ContextSelection",
    # Usage
    "UsageLevel",
    "classify_usage",
    # Config
    "Config",
    "load_config",
    "get_config",
    # Errors
    "CancellationError",
    "DanglingParentError",
    "DuplicateNodeError",
    "GenTreeError",
    "InvalidTransitionError",
    "NotFoundError",
    "SealedNodeError",
    "StoreError",
    "StreamDecodeError",
    "TransportError",
]
