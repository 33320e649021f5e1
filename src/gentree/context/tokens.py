"""Token estimation for context blocks and prompts, using tiktoken."""

from __future__ import annotations

import tiktoken

from gentree.logging import get_logger

log = get_logger("tokens")

DEFAULT_ENCODING = "o200k_base"

# Chars per token for budget -> char conversion without encoding
CHARS_PER_TOKEN = 4.0

# Encoding name -> encoder (loaded once on first use)
_encoders: dict[str, tiktoken.Encoding] = {}

# Model name -> encoding name
_model_encodings: dict[str, str] = {}

# (hash, encoding) -> token count
_token_cache: dict[tuple[int, str], int] = {}


def encoding_name_for(model: str | None) -> str:
    """Resolve the tiktoken encoding for a model, defaulting to o200k_base.

    Non-OpenAI models have no registered encoding; their counts are
    estimates on the default encoding.
    """
    if not model:
        return DEFAULT_ENCODING
    if model not in _model_encodings:
        try:
            _model_encodings[model] = tiktoken.encoding_for_model(model).name
        except KeyError:
            log.debug("No tiktoken encoding for %s, using %s", model, DEFAULT_ENCODING)
            _model_encodings[model] = DEFAULT_ENCODING
    return _model_encodings[model]


def _get_encoder(name: str) -> tiktoken.Encoding:
    """Get cached tiktoken encoder."""
    if name not in _encoders:
        _encoders[name] = tiktoken.get_encoding(name)
    return _encoders[name]


def count_tokens(text: str | None, model: str | None = None) -> int:
    """Count tokens with caching.

    Args:
        text: Text to count; None or empty counts as zero
        model: Model whose encoding to use

    Returns:
        Number of tokens in the text
    """
    if not text:
        return 0
    name = encoding_name_for(model)
    key = (hash(text), name)
    if key not in _token_cache:
        _token_cache[key] = len(_get_encoder(name).encode(text))
    return _token_cache[key]


def invalidate_cache() -> None:
    """Clear the token count cache."""
    _token_cache.clear()


def tokens_to_chars(tokens: int) -> int:
    """Convert a token budget to an approximate character budget."""
    return int(tokens * CHARS_PER_TOKEN)
