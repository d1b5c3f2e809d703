"""
Devify Dynamic Configuration System

Loads configuration from YAML files with support for:
- Default configs in devify/config/*.yaml
- Project-level overrides in .devify/config.yaml
- Environment variable overrides
"""

import os
from pathlib import Path
from typing import Dict, Any, Optional

import yaml
from loguru import logger


# Config directory (where default configs live)
CONFIG_DIR = Path(__file__).parent

# Project config locations (checked in order)
PROJECT_CONFIG_PATHS = [
    ".devify/config.yaml",
    ".devify/config.yml",
    ".devify.yaml",
    ".devify.yml",
]


def _load_yaml_file(path: Path) -> Dict[str, Any]:
    """Load a YAML file, returning empty dict if not found or invalid."""
    if not path.exists():
        return {}

    try:
        with open(path, 'r', encoding='utf-8') as f:
            return yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.warning(f"Failed to load config from {path}: {e}")
        return {}


def _deep_merge(base: Dict, override: Dict) -> Dict:
    """Deep merge two dictionaries, with override taking precedence."""
    result = base.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value

    return result


def _parse_env_value(value: str) -> Any:
    if value.lower() == 'true':
        return True
    if value.lower() == 'false':
        return False
    if value.isdigit():
        return int(value)
    return value


class ConfigLoader:
    """
    Loads and merges configuration from multiple sources.

    Priority (highest to lowest):
    1. Environment variables (DEVIFY_*)
    2. Project-level config (.devify/config.yaml)
    3. Default config (devify/config/*.yaml)
    """

    _cache: Dict[str, Dict[str, Any]] = {}
    _project_root: Optional[Path] = None

    @classmethod
    def set_project_root(cls, path: Optional[Path]):
        """Set the project root for loading project-level configs."""
        cls._project_root = Path(path) if path else None
        cls._cache.clear()  # Clear cache when project changes

    @classmethod
    def load(cls, config_name: str) -> Dict[str, Any]:
        """
        Load a configuration by name.

        Args:
            config_name: Name of config file (without .yaml extension)
                        e.g., "rate_limits"

        Returns:
            Merged configuration dictionary
        """
        if config_name in cls._cache:
            return cls._cache[config_name]

        config = _load_yaml_file(CONFIG_DIR / f"{config_name}.yaml")

        if cls._project_root:
            for rel_path in PROJECT_CONFIG_PATHS:
                project_config_path = cls._project_root / rel_path
                if project_config_path.exists():
                    project_config = _load_yaml_file(project_config_path)
                    if isinstance(project_config.get(config_name), dict):
                        config = _deep_merge(config, project_config[config_name])
                    break

        config = cls._apply_env_overrides(config_name, config)

        cls._cache[config_name] = config
        return config

    @classmethod
    def _apply_env_overrides(cls, config_name: str, config: Dict) -> Dict:
        """
        Apply environment variable overrides.

        DEVIFY_RATE_LIMITS_WRITE_FILE__MAX=5 -> config["write_file"]["max"] = 5
        """
        prefix = f"DEVIFY_{config_name.upper()}_"

        for key, value in os.environ.items():
            if not key.startswith(prefix):
                continue
            path = key[len(prefix):].lower().split("__")
            target = config
            for part in path[:-1]:
                if not isinstance(target.get(part), dict):
                    target[part] = {}
                target = target[part]
            target[path[-1]] = _parse_env_value(value)

        return config

    @classmethod
    def reload(cls, config_name: Optional[str] = None):
        """Reload configuration(s) from disk."""
        if config_name:
            cls._cache.pop(config_name, None)
        else:
            cls._cache.clear()


# Convenience functions
def load_config(name: str) -> Dict[str, Any]:
    """Load a configuration by name."""
    return ConfigLoader.load(name)


def set_project_root(path: Optional[Path]):
    """Set the project root for config loading."""
    ConfigLoader.set_project_root(path)

