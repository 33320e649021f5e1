"""Configuration schema dataclasses for gentree.

Defines the structure of configuration at all levels (system, user, project).
All fields have defaults so partial configs merge together cleanly.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str | None = None  # TRACE, DEBUG, VERBOSE, INFO, WARNING, ERROR
    verbose: int | None = None  # 0-4, overrides level
    file: str | None = None  # Log file path


@dataclass
class LedgerConfig:
    """Usage ledger configuration.

    Example config.yaml:
        ledger:
          warning_ratio: 0.75
          critical_ratio: 0.9
          usage_limits:
            openai: 50.0
            anthropic: 25.0
    """

    warning_ratio: float = 0.75  # Display threshold, not enforced
    critical_ratio: float = 0.90
    usage_limits: dict[str, float] = field(default_factory=dict)  # provider -> limit


@dataclass
class StreamingConfig:
    """Stream ingestion configuration."""

    max_line_bytes: int = 1024 * 1024  # Longer partial lines are discarded
    yield_between_chunks: bool = True  # Give the event loop a turn per chunk


@dataclass
class GenerationDefaults:
    """Defaults applied to generation requests that leave them unset."""

    provider: str = "openai"
    model: str = "gpt-4o"
    max_tokens: int = 4096
    context_max_tokens: int | None = None  # Budget for the context block


@dataclass
class Config:
    """Root configuration object."""

    logging: LoggingConfig = field(default_factory=LoggingConfig)
    ledger: LedgerConfig = field(default_factory=LedgerConfig)
    streaming: StreamingConfig = field(default_factory=StreamingConfig)
    generation: GenerationDefaults = field(default_factory=GenerationDefaults)

    # Unknown top-level sections are kept here
    extra: dict[str, Any] = field(default_factory=dict)
