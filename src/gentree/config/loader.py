"""Configuration file loading and caching.

Handles:
- YAML file parsing
- Environment variable overrides
- Config caching with reload support
- Conversion from dict to typed Config dataclass
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable
from pathlib import Path
from typing import Any

import yaml

from gentree.config.merge import merge_configs
from gentree.config.paths import get_config_paths
from gentree.config.schema import (
    Config,
    GenerationDefaults,
    LedgerConfig,
    LoggingConfig,
    StreamingConfig,
)

# Module logger (may not be configured yet at import time)
_log = logging.getLogger("gentree.config")

_cached_config: Config | None = None

_reload_callbacks: list[Callable[[Config], None]] = []

_KNOWN_SECTIONS = {"logging", "ledger", "streaming", "generation"}


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a YAML file, returning an empty dict if missing or invalid."""
    if not path.exists():
        return {}

    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        _log.warning("Invalid YAML in %s: %s", path, e)
        return {}
    except PermissionError:
        _log.debug("Permission denied reading %s", path)
        return {}
    except OSError as e:
        _log.warning("Error reading %s: %s", path, e)
        return {}

    return data if isinstance(data, dict) else {}


def env_overrides() -> dict[str, Any]:
    """Build a config dict from GT_* environment variables."""
    logging_section: dict[str, Any] = {}

    log_path = os.environ.get("GT_LOG")
    if log_path:
        logging_section["file"] = log_path

    log_level = os.environ.get("GT_LOG_LEVEL")
    if log_level:
        logging_section["level"] = log_level

    return {"logging": logging_section} if logging_section else {}


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    value = data.get(name)
    return value if isinstance(value, dict) else {}


def dict_to_config(data: dict[str, Any]) -> Config:
    """Convert a merged dict to the typed Config dataclass."""
    log_data = _section(data, "logging")
    verbose = log_data.get("verbose")
    logging_config = LoggingConfig(
        level=log_data.get("level"),
        verbose=int(verbose) if verbose is not None else None,
        file=log_data.get("file"),
    )

    ledger_data = _section(data, "ledger")
    limits_data = ledger_data.get("usage_limits") or {}
    usage_limits = {
        str(provider): float(limit)
        for provider, limit in limits_data.items()
        if isinstance(limit, (int, float))
    }
    ledger = LedgerConfig(
        warning_ratio=float(ledger_data.get("warning_ratio", 0.75)),
        critical_ratio=float(ledger_data.get("critical_ratio", 0.90)),
        usage_limits=usage_limits,
    )

    stream_data = _section(data, "streaming")
    streaming = StreamingConfig(
        max_line_bytes=int(stream_data.get("max_line_bytes", 1024 * 1024)),
        yield_between_chunks=bool(stream_data.get("yield_between_chunks", True)),
    )

    gen_data = _section(data, "generation")
    defaults = GenerationDefaults()
    context_budget = gen_data.get("context_max_tokens")
    generation = GenerationDefaults(
        provider=gen_data.get("provider", defaults.provider),
        model=gen_data.get("model", defaults.model),
        max_tokens=int(gen_data.get("max_tokens", defaults.max_tokens)),
        context_max_tokens=int(context_budget) if context_budget is not None else None,
    )

    extra = {k: v for k, v in data.items() if k not in _KNOWN_SECTIONS}

    return Config(
        logging=logging_config,
        ledger=ledger,
        streaming=streaming,
        generation=generation,
        extra=extra,
    )


def load_config(project_root: str | None = None, reload: bool = False) -> Config:
    """Load and merge config from all sources.

    Priority order (highest to lowest):
    1. Environment variables (GT_LOG, GT_LOG_LEVEL)
    2. Project config ($project_root/.gentree/config.yaml)
    3. User config
    4. System config

    Args:
        project_root: Project directory for project-level config.
        reload: Force reload even if cached.
    """
    global _cached_config

    if _cached_config is not None and not reload and project_root is None:
        return _cached_config

    layers: list[dict[str, Any]] = []
    for path in get_config_paths(project_root):
        data = load_yaml_file(path)
        if data:
            _log.debug("Loaded config from %s", path)
            layers.append(data)

    layers.append(env_overrides())

    config = dict_to_config(merge_configs(*layers))

    # Only the global (project-less) config is cached
    if project_root is None:
        _cached_config = config

    return config


def get_config() -> Config:
    """Get the cached global config, loading it on first use."""
    if _cached_config is None:
        return load_config()
    return _cached_config


def reset_config() -> None:
    """Drop the cached config."""
    global _cached_config
    _cached_config = None


def reload_config(project_root: str | None = None) -> Config:
    """Reload config from files and notify registered callbacks."""
    config = load_config(project_root=project_root, reload=True)

    for callback in list(_reload_callbacks):
        try:
            callback(config)
        except Exception as e:
            _log.warning("Config reload callback error: %s", e)

    return config


def on_config_reload(callback: Callable[[Config], None]) -> Callable[[], None]:
    """Register a reload callback; returns a function that unregisters it."""
    _reload_callbacks.append(callback)

    def unregister() -> None:
        if callback in _reload_callbacks:
            _reload_callbacks.remove(callback)

    return unregister
