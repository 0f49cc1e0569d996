"""Configuration loading and validation.

String values in the YAML file may reference the environment with
``${VAR}`` or ``${VAR:-default}``; references are resolved before
validation, so secrets and per-host settings need not be written to disk.
"""

import logging
import os
import re
from pathlib import Path
from typing import Any, Optional, Union

import yaml
from pydantic import ValidationError

from chatgate.config.schema import ChatGateConfig

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path.home() / ".chatgate" / "chatgate.yaml"

CONFIG_ENV_VAR = "CHATGATE_CONFIG"

_ENV_REF = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)(?::-([^}]*))?\}")


class ConfigError(Exception):
    """Configuration loading or validation error."""


def default_config_path() -> Path:
    """Config path from ``CHATGATE_CONFIG`` or the per-user default."""
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        return Path(env_path).expanduser()
    return DEFAULT_CONFIG_PATH


def resolve_env_refs(value: Any) -> Any:
    """Substitute ``${VAR}`` / ``${VAR:-default}`` in every string of a YAML tree.

    Unset variables without a default resolve to an empty string.
    """
    if isinstance(value, str):
        return _ENV_REF.sub(lambda m: os.environ.get(m.group(1), m.group(2) or ""), value)
    if isinstance(value, dict):
        return {k: resolve_env_refs(v) for k, v in value.items()}
    if isinstance(value, list):
        return [resolve_env_refs(v) for v in value]
    return value


def _format_validation_error(error: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in error.errors()
    )


def load_config(path: Optional[Path] = None) -> ChatGateConfig:
    """Load and validate chatgate configuration from YAML file.

    Args:
        path: Path to config file. If None, uses ``CHATGATE_CONFIG`` or the
              default location. If the file doesn't exist, returns defaults.

    Returns:
        Validated configuration object

    Raises:
        ConfigError: If config file exists but is invalid
    """
    path = (path or default_config_path()).expanduser()

    if not path.exists():
        logger.debug(f"No config file at {path}, using defaults")
        return ChatGateConfig()

    try:
        data = yaml.safe_load(path.read_text())
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    except OSError as e:
        raise ConfigError(f"Failed to read config from {path}: {e}") from e

    if data is None:
        return ChatGateConfig()
    if not isinstance(data, dict):
        raise ConfigError(f"Invalid config in {path}: top level must be a mapping")

    try:
        config = ChatGateConfig.model_validate(resolve_env_refs(data))
    except ValidationError as e:
        raise ConfigError(f"Configuration validation failed ({path}): {_format_validation_error(e)}") from e

    logger.debug(f"Loaded config from {path}")
    return config


def save_config(config: ChatGateConfig, path: Optional[Union[str, Path]] = None) -> Path:
    """Write configuration as YAML, creating parent directories.

    Args:
        config: Configuration object to save
        path: Destination path. If None, uses ``CHATGATE_CONFIG`` or the default location.

    Returns:
        The path written
    """
    path = Path(path).expanduser() if path is not None else default_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.safe_dump(config.model_dump(), default_flow_style=False, sort_keys=False))
    return path
