"""
Configuration settings for sqlfacade.

Settings are read from a YAML file (``config.yaml`` next to this module,
or the file named by the ``SQLFACADE_CONFIG`` environment variable).
String values of the form ``${ENV_VAR}`` or ``${ENV_VAR:-default}`` are
replaced with the environment variable, which may come from a ``.env``
file.
"""

import logging
import os
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv

# Load environment variables from .env file if it exists
load_dotenv()

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = os.path.join(os.path.dirname(__file__), "config.yaml")


def _coerce(value: str) -> Any:
    """Convert an environment string to bool, int or float where it looks like one."""
    if value.lower() in ("true", "false"):
        return value.lower() == "true"
    if value.isdigit():
        return int(value)
    if value.replace(".", "", 1).isdigit() and value.count(".") == 1:
        return float(value)
    return value


def resolve_env_value(value: str) -> Any:
    """
    Resolve a ``${ENV_VAR}`` / ``${ENV_VAR:-default}`` placeholder.

    Strings that are not placeholders are returned unchanged. A placeholder
    whose variable is unset and has no default resolves to None.
    """
    if not (value.startswith("${") and value.endswith("}")):
        return value
    env_var = value[2:-1]
    default_value = None
    if ":-" in env_var:
        env_var, default_value = env_var.split(":-", 1)
    env_value = os.getenv(env_var)
    if env_value is None:
        if default_value is None:
            logger.warning(f"Environment variable {env_var} not found")
            return None
        env_value = default_value
    return _coerce(env_value)


class Config:
    """Configuration class for sqlfacade."""

    _instance = None
    _config_data = None

    def __new__(cls):
        """Singleton pattern to ensure only one instance exists."""
        if cls._instance is None:
            cls._instance = super(Config, cls).__new__(cls)
            cls._instance._load_config(os.getenv("SQLFACADE_CONFIG", DEFAULT_CONFIG_PATH))
        return cls._instance

    @classmethod
    def from_file(cls, config_path: str) -> "Config":
        """Load a standalone configuration from a YAML file."""
        instance = super(Config, cls).__new__(cls)
        instance._load_config(config_path)
        return instance

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Config":
        """Build a standalone configuration from a dictionary."""
        instance = super(Config, cls).__new__(cls)
        instance._config_data = data
        instance._process_env_vars(instance._config_data)
        return instance

    def _load_config(self, config_path: str) -> None:
        """Load configuration from YAML file."""
        try:
            with open(config_path, "r") as f:
                self._config_data = yaml.safe_load(f) or {}

            # Replace environment variable placeholders
            self._process_env_vars(self._config_data)

        except (OSError, yaml.YAMLError) as e:
            logger.warning(f"Error loading configuration from {config_path}: {e}")
            # Fallback to empty config
            self._config_data = {}

    def _process_env_vars(self, config_dict):
        """
        Recursively process configuration dictionary and replace ${ENV_VAR} with
        the corresponding environment variable value.
        """
        if not isinstance(config_dict, dict):
            return

        for key, value in config_dict.items():
            if isinstance(value, dict):
                self._process_env_vars(value)
            elif isinstance(value, str):
                config_dict[key] = resolve_env_value(value)

    def get(self, key_path: str, default: Any = None) -> Any:
        """
        Get a configuration value by dot-separated path.

        Args:
            key_path: Dot-separated path to the configuration value (e.g., "database.pool_size")
            default: Default value to return if the key is not found

        Returns:
            The configuration value or the default value if not found
        """
        if not self._config_data:
            return default

        current = self._config_data
        for key in key_path.split("."):
            if isinstance(current, dict) and key in current:
                current = current[key]
            else:
                return default

        return current

    def get_all(self) -> Dict:
        """
        Get the entire configuration dictionary.

        Returns:
            Dict: The configuration dictionary
        """
        return self._config_data or {}

    @classmethod
    def reset(cls) -> None:
        """Drop the process-wide instance so the next Config() reloads."""
        cls._instance = None


def get_config(config_path: Optional[str] = None) -> Config:
    return Config.from_file(config_path) if config_path else Config()


__all__ = ["Config", "get_config", "resolve_env_value"]
