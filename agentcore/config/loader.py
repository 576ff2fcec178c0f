"""Configuration loading with fail-fast behavior.

Sources, later overriding earlier:
1. Pydantic defaults
2. ~/.agentcore/config.json (if present)
3. An explicit path passed by the caller (replaces the home config)
"""

import logging
from pathlib import Path
from typing import Any

from agentcore.config.load_utils import load_json_file, load_json_file_optional
from agentcore.config.schema import Config, validate_config
from agentcore.core.utils import deep_merge

logger = logging.getLogger(__name__)


def get_config_dir() -> Path:
    """Return the per-user config directory (~/.agentcore)."""
    return Path.home() / ".agentcore"


def load_config(
    path: Path | None = None,
    overrides: dict[str, Any] | None = None,
) -> Config:
    """Load and validate configuration.

    Args:
        path: Explicit config file. Must exist when given.
        overrides: Values deep-merged over the file contents (e.g. CLI flags).

    Returns:
        Validated Config object.

    Raises:
        ConfigError: If the file is missing (explicit path), unreadable or not JSON.
        ValidationError: If the merged values fail schema validation.
    """
    if path is not None:
        data: dict[str, Any] = load_json_file(path, error_context="config")
        logger.info("Config loaded from: %s", path)
    else:
        home_config = get_config_dir() / "config.json"
        data = load_json_file_optional(home_config, error_context="config") or {}
        if data:
            logger.info("Config loaded from: %s", home_config)
        else:
            logger.debug("No config file found, using defaults")

    if overrides:
        data = deep_merge(data, overrides)

    return validate_config(Config, data)
