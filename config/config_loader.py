"""
config_loader.py
-----------------
Singleton config loader. Reads config.yaml once and caches it.
The trend analyzer and the categorizer read every threshold through the
accessors below, never hardcoded values.
"""

import os
import yaml
from typing import Any, Dict


_CONFIG_CACHE: Dict[str, Any] = {}


def load_config(config_path: str | None = None) -> Dict[str, Any]:
    """
    Load and cache the YAML configuration file.

    Args:
        config_path: Path to config.yaml. Defaults to config/ relative to this file.

    Returns:
        Full config dictionary.

    Raises:
        FileNotFoundError: If the file does not exist.
    """
    global _CONFIG_CACHE

    if _CONFIG_CACHE:
        return _CONFIG_CACHE

    if config_path is None:
        config_path = os.path.join(os.path.dirname(__file__), "config.yaml")

    if not os.path.exists(config_path):
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, "r", encoding="utf-8") as f:
        _CONFIG_CACHE = yaml.safe_load(f) or {}

    return _CONFIG_CACHE


def _section(name: str) -> Any:
    """
    Raises:
        KeyError: If the section is not in the config.
    """
    config = load_config()
    if name not in config:
        raise KeyError(f"No '{name}' section in config. Available: {list(config.keys())}")
    return config[name]


def get_trend_analysis_config() -> Dict[str, Any]:
    """Returns the trend_analysis block."""
    return _section("trend_analysis")


def get_categorizer_config() -> Dict[str, Any]:
    """Returns the categorizer block."""
    return _section("categorizer")


def get_deductibility_rules() -> list[Dict[str, Any]]:
    """Returns the category deductibility rule list."""
    return _section("deductibility_rules")


def reset_config() -> None:
    """Clears cached config. Useful for testing."""
    global _CONFIG_CACHE
    _CONFIG_CACHE = {}
