"""Configuration management for gentree.

Hierarchical YAML configuration merged from:
- System-level config (/etc/gentree/ or %PROGRAMDATA%)
- User-level config (~/.config/gentree/, ~/.gentree/ or %APPDATA%)
- Project-level config ($project_root/.gentree/)
- Environment variable overrides (highest priority)

Example usage:
    from gentree.config import load_config

    config = load_config(project_root="/path/to/project")
    print(config.ledger.usage_limits)
"""

from gentree.config.loader import (
    get_config,
    load_config,
    on_config_reload,
    reload_config,
    reset_config,
)
from gentree.config.paths import (
    get_config_paths,
    get_project_config_path,
    get_system_config_path,
    get_user_config_path,
)
from gentree.config.schema import (
    Config,
    GenerationDefaults,
    LedgerConfig,
    LoggingConfig,
    StreamingConfig,
)

__all__ = [
    "Config",
    "load_config",
    "get_config",
    "reload_config",
    "reset_config",
    "on_config_reload",
    "GenerationDefaults",
    "LedgerConfig",
    "LoggingConfig",
    "StreamingConfig",
    "get_config_paths",
    "get_system_config_path",
    "get_user_config_path",
    "get_project_config_path",
]
