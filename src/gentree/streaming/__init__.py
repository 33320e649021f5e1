"""Provider stream decoding and ingestion."""

from gentree.streaming.chunks import (
    ChunkPayload,
    ChunkType,
    ProviderResponse,
    StreamChunk,
    parse_record,
)
from gentree.streaming.framing import SSELineDecoder, iter_chunks
from gentree.streaming.ingest import ChunkSource, StreamIngestor, StreamOutcome

__all__ = [
    "ChunkPayload",
    "ChunkSource",
    "ChunkType",
    "ProviderResponse",
    "SSELineDecoder",
    "StreamChunk",
    "StreamIngestor",
    "StreamOutcome",
    "iter_chunks",
    "parse_record",
]
