"""
Configuration Loader - Load YAML configuration files
"""

from pathlib import Path
from typing import Any, Dict, Optional

import structlog
import yaml

from src.config.settings import AnonymizerSettings

logger = structlog.get_logger(__name__)


def load_yaml_config(file_path: str) -> Dict[str, Any]:
    """
    Load YAML configuration file

    Args:
        file_path: Path to YAML file

    Returns:
        Dictionary containing configuration

    Raises:
        FileNotFoundError: If configuration file doesn't exist
        yaml.YAMLError: If YAML parsing fails
    """
    path = Path(file_path)

    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {file_path}")

    try:
        with open(path, "r", encoding="utf-8") as f:
            config = yaml.safe_load(f)

        if config is None:
            logger.warning("Empty configuration file", path=file_path)
            return {}

        return config

    except yaml.YAMLError as e:
        logger.error("Failed to parse YAML file", path=file_path, error=str(e))
        raise


def merge_configs(*configs: Dict[str, Any]) -> Dict[str, Any]:
    """
    Merge multiple configuration dictionaries (later configs override earlier ones)

    Args:
        *configs: Variable number of configuration dictionaries

    Returns:
        Merged configuration dictionary
    """
    merged: Dict[str, Any] = {}

    for config in configs:
        if not config:
            continue
        _deep_merge(merged, config)

    return merged


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> None:
    for key, value in override.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value


def load_config(
    config_path: Optional[str] = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> AnonymizerSettings:
    """
    Load service configuration from a YAML file or environment variables

    Args:
        config_path: Optional path to YAML config file. If None, uses environment variables.
        overrides: Values applied on top of the YAML file

    Returns:
        AnonymizerSettings: Validated configuration object

    Raises:
        FileNotFoundError: If config file specified but not found
        yaml.YAMLError: If YAML parsing fails
        ValidationError: If configuration validation fails

    Examples:
        >>> config = load_config()
        >>> config = load_config("config/pipeline.yaml")
    """
    if config_path:
        yaml_config = merge_configs(load_yaml_config(config_path), overrides or {})
        config = AnonymizerSettings(**{**yaml_config, "config_file": config_path})
        logger.info("Loaded configuration from file", path=config_path)
    else:
        config = AnonymizerSettings(**(overrides or {}))
        logger.info("Loaded configuration from environment variables")

    return config
