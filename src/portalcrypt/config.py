"""
portalcrypt - Configuration Management

This module handles loading, merging, and managing configuration from
TOML files and environment variables. Covers the key derivation
parameters, the message type policy table and logging.

Version: 1.0.0
"""

import copy
import os
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

# Python 3.11+ has tomllib built-in, older versions need tomli
if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

from .constants import (
    ARGON2_MEMORY_COST,
    ARGON2_PARALLELISM,
    ARGON2_TIME_COST,
    CONFIG_FILENAME,
    DEFAULT_DATA_DIR,
    ENV_PREFIX,
    KDF_PBKDF2,
    PBKDF2_ITERATIONS,
    POLICY_VERSION,
    SALT_NAMESPACE,
)
from .errors import ConfigurationError, ErrorCode

# Default configuration dictionary
DEFAULT_CONFIG: Dict[str, Any] = {
    "kdf": {
        "algorithm": KDF_PBKDF2,
        "iterations": PBKDF2_ITERATIONS,
        "namespace": SALT_NAMESPACE,
        "argon2_time_cost": ARGON2_TIME_COST,
        "argon2_memory_cost": ARGON2_MEMORY_COST,
        "argon2_parallelism": ARGON2_PARALLELISM,
    },
    "policy": {
        # Empty lists mean "use the built-in table"
        "version": POLICY_VERSION,
        "cleartext_types": [],
        "encrypted_types": [],
    },
    "logging": {
        "level": "INFO",
    },
}


class Config:
    """Configuration manager for portalcrypt.

    Loads configuration from TOML files, merges with defaults,
    and applies environment variable overrides.

    Attributes:
        config_path: Path to the configuration file
        data: Configuration dictionary
    """

    def __init__(self, config_path: Optional[Path] = None):
        """Initialize configuration manager.

        Args:
            config_path: Path to configuration file (optional)
                If not provided, uses default location
        """
        if config_path is None:
            data_dir = Path(DEFAULT_DATA_DIR).expanduser()
            config_path = data_dir / CONFIG_FILENAME

        self.config_path = Path(config_path)
        self.data = self._load_config()

    def _load_config(self) -> Dict[str, Any]:
        """Load configuration from file and merge with defaults.

        Returns:
            Merged configuration dictionary

        Raises:
            ConfigurationError: If configuration loading or parsing fails
        """
        config = copy.deepcopy(DEFAULT_CONFIG)

        if self.config_path.exists():
            try:
                with open(self.config_path, "rb") as f:
                    file_config = tomllib.load(f)
            except (OSError, tomllib.TOMLDecodeError) as e:
                raise ConfigurationError(
                    ErrorCode.E704_CONFIG_PARSE_ERROR,
                    f"Failed to parse configuration file: {e}",
                    {"path": str(self.config_path), "error": str(e)},
                ) from e

            config = self._merge_config(config, file_config)

        return self._apply_env_overrides(config)

    def _merge_config(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """Recursively merge override config into base config.

        Args:
            base: Base configuration dictionary
            override: Override configuration dictionary

        Returns:
            Merged configuration dictionary
        """
        result = base.copy()

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge_config(result[key], value)
            else:
                result[key] = value

        return result

    def _apply_env_overrides(self, config: Dict[str, Any]) -> Dict[str, Any]:
        """Apply environment variable overrides to configuration.

        Environment variables follow the pattern: PORTALCRYPT_SECTION_KEY
        For example: PORTALCRYPT_KDF_ITERATIONS=100000
        List values are given comma separated.

        Args:
            config: Base configuration dictionary

        Returns:
            Configuration with environment overrides applied

        Raises:
            ConfigurationError: If an override cannot be converted
        """
        result = copy.deepcopy(config)

        for section, settings in config.items():
            if not isinstance(settings, dict):
                continue

            for key, current in settings.items():
                env_var = f"{ENV_PREFIX}_{section.upper()}_{key.upper()}"
                env_value = os.environ.get(env_var)

                if env_value is None:
                    continue

                try:
                    result[section][key] = _convert_env_value(current, env_value)
                except ValueError as e:
                    raise ConfigurationError(
                        ErrorCode.E703_INVALID_CONFIG,
                        f"Invalid value for {env_var}: {env_value!r}",
                        {"variable": env_var},
                    ) from e

        return result

    def get(self, section: str, key: str, default: Any = None) -> Any:
        """Get a configuration value.

        Args:
            section: Configuration section name
            key: Configuration key name
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        return self.data.get(section, {}).get(key, default)

    def set(self, section: str, key: str, value: Any) -> None:
        """Set a configuration value.

        Args:
            section: Configuration section name
            key: Configuration key name
            value: Value to set
        """
        if section not in self.data:
            self.data[section] = {}

        self.data[section][key] = value

    def save(self) -> None:
        """Save current configuration to file.

        Raises:
            ConfigurationError: If saving fails
        """
        try:
            self.config_path.parent.mkdir(parents=True, exist_ok=True)

            with open(self.config_path, "w", encoding="utf-8") as f:
                _write_toml(f, self.data)

        except OSError as e:
            raise ConfigurationError(
                ErrorCode.E702_CONFIG_SAVE_FAILED,
                f"Failed to save configuration: {e}",
                {"path": str(self.config_path), "error": str(e)},
            ) from e

    def to_dict(self) -> Dict[str, Any]:
        """Get configuration as dictionary.

        Returns:
            Configuration dictionary
        """
        return copy.deepcopy(self.data)

    @classmethod
    def create_example(cls, path: Path) -> None:
        """Create an example configuration file.

        Args:
            path: Path where to create the example config

        Raises:
            ConfigurationError: If file creation fails
        """
        try:
            path.parent.mkdir(parents=True, exist_ok=True)

            with open(path, "w", encoding="utf-8") as f:
                f.write("# portalcrypt configuration file\n")
                f.write("# Generated example configuration\n\n")
                _write_toml(f, DEFAULT_CONFIG)

        except OSError as e:
            raise ConfigurationError(
                ErrorCode.E702_CONFIG_SAVE_FAILED,
                f"Failed to create example configuration: {e}",
                {"path": str(path), "error": str(e)},
            ) from e


def _convert_env_value(current: Any, raw: str) -> Any:
    """Convert an environment string to the type of the current value."""
    # bool is checked before int since bool subclasses int
    if isinstance(current, bool):
        return raw.lower() in ("true", "1", "yes")
    if isinstance(current, int):
        return int(raw)
    if isinstance(current, float):
        return float(raw)
    if isinstance(current, list):
        return [item.strip() for item in raw.split(",") if item.strip()]
    return raw


def _format_toml_value(value: Any) -> str:
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, list):
        return "[" + ", ".join(_format_toml_value(item) for item in value) + "]"
    escaped = str(value).replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def _write_toml(file, data: Dict[str, Any]) -> None:
    """Write configuration data as TOML format.

    Args:
        file: File object to write to
        data: Configuration data to write
    """
    for section, settings in data.items():
        if not isinstance(settings, dict):
            continue
        file.write(f"[{section}]\n")
        for key, value in settings.items():
            file.write(f"{key} = {_format_toml_value(value)}\n")
        file.write("\n")


def list_setting(config: Optional[Config], section: str, key: str) -> List[str]:
    """Read a list-of-strings setting, tolerating a missing config."""
    if config is None:
        return []
    value = config.get(section, key, [])
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise ConfigurationError(
            ErrorCode.E703_INVALID_CONFIG,
            f"[{section}] {key} must be a list of strings",
            {"section": section, "key": key},
        )
    return list(value)
