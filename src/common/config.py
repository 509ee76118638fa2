"""Configuration management for the addon repository mirror.

Handles loading and validation of YAML configuration files into an
immutable ``RegistryConfig`` value that is handed to the repository
registry at construction time.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Union

import yaml


DEFAULT_ROOT_PATH = "/data"
DEFAULT_HOST_NAME = ""
DEFAULT_TIMEOUT = 15.0
DEFAULT_DIR_MODE = 0o777
DEFAULT_CONFIG_PATH = "/etc/addon-mirror/config.yaml"


@dataclass(frozen=True)
class RegistryConfig:
    """Registry-wide defaults captured by each repo when it is created."""

    root_path: str = DEFAULT_ROOT_PATH
    host_name: str = DEFAULT_HOST_NAME  # empty means fetch from the artifact URL
    timeout: float = DEFAULT_TIMEOUT  # seconds allowed for one fetch
    dir_mode: int = DEFAULT_DIR_MODE
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if not self.root_path:
            raise ValueError("root_path must not be empty")
        if self.timeout <= 0:
            raise ValueError(f"timeout must be positive, got {self.timeout}")
        if not 0 <= self.dir_mode <= 0o7777:
            raise ValueError(f"dir_mode out of range: {oct(self.dir_mode)}")


def _parse_dir_mode(value: Union[int, str]) -> int:
    """Accept either an int or an octal string such as ``"0755"``."""
    if isinstance(value, bool):
        raise TypeError("dir_mode must be an int or octal string")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value, 8)
        except ValueError as e:
            raise ValueError(f"dir_mode is not an octal string: {value!r}") from e
    raise TypeError(f"dir_mode must be an int or octal string, got {type(value).__name__}")


def parse_registry_config(config_dict: Dict[str, Any]) -> RegistryConfig:
    """Parse a registry configuration dictionary.

    Args:
        config_dict: Registry configuration dictionary

    Returns:
        RegistryConfig instance

    Raises:
        ValueError: If a value is out of range
        TypeError: If a value has the wrong type
    """
    timeout = config_dict.get("timeout", DEFAULT_TIMEOUT)
    if isinstance(timeout, str):
        # Values substituted from environment variables arrive as strings
        try:
            timeout = float(timeout)
        except ValueError as e:
            raise ValueError(f"timeout is not a number: {timeout!r}") from e
    if isinstance(timeout, bool) or not isinstance(timeout, (int, float)):
        raise TypeError(f"timeout must be a number, got {type(timeout).__name__}")

    return RegistryConfig(
        root_path=str(config_dict.get("root_path", DEFAULT_ROOT_PATH)),
        host_name=str(config_dict.get("host_name") or DEFAULT_HOST_NAME),
        timeout=float(timeout),
        dir_mode=_parse_dir_mode(config_dict.get("dir_mode", DEFAULT_DIR_MODE)),
        log_level=str(config_dict.get("log_level", "INFO")),
    )


def load_config(config_path: str = DEFAULT_CONFIG_PATH) -> Dict[str, Any]:
    """Load configuration from YAML file.

    Args:
        config_path: Path to configuration file

    Returns:
        Configuration dictionary

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If config file is invalid YAML
        TypeError: If the document root is not a mapping
    """
    config_file = Path(config_path)

    if not config_file.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with config_file.open("r") as f:
        config = yaml.safe_load(f)

    if config is None:
        config = {}

    if not isinstance(config, dict):
        raise TypeError(
            f"Configuration root must be a mapping, got {type(config).__name__}"
        )

    return _expand_env_vars(config)


def _expand_env_vars(obj: Any) -> Any:
    """Recursively expand environment variables in configuration."""
    if isinstance(obj, dict):
        return {key: _expand_env_vars(value) for key, value in obj.items()}
    elif isinstance(obj, list):
        return [_expand_env_vars(item) for item in obj]
    elif isinstance(obj, str):
        return os.path.expandvars(obj)
    else:
        return obj


def load_typed_config(config_path: str = DEFAULT_CONFIG_PATH) -> RegistryConfig:
    """Load and parse configuration into a ``RegistryConfig``.

    Settings are read from the ``repos`` section when present, otherwise
    from the document root.

    Args:
        config_path: Path to configuration file

    Returns:
        RegistryConfig instance
    """
    config_dict = load_config(config_path)
    section = config_dict.get("repos", config_dict)
    if not isinstance(section, dict):
        raise TypeError(f"'repos' section must be a mapping, got {type(section).__name__}")
    return parse_registry_config(section)
