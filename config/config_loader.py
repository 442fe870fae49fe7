"""
config_loader.py
-----------------
Singleton config loader. Reads config.yaml once and caches it.
All modules access configuration through this; nothing is hardcoded.
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
            Ignored once a config has been cached; call reset_config() first
            to switch files.

    Returns:
        Full config dictionary.
    """
    global _CONFIG_CACHE

    if _CONFIG_CACHE:
        return _CONFIG_CACHE

    if config_path is None:
        config_path = os.path.join(os.path.dirname(__file__), "config.yaml")

    if not os.path.exists(config_path):
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, "r") as f:
        _CONFIG_CACHE = yaml.safe_load(f) or {}

    return _CONFIG_CACHE


def get_policy_config() -> Dict[str, Any]:
    """Returns the policy block (thresholds, windows, bonuses)."""
    return load_config()["policy"]


def get_registry_config() -> Dict[str, Any]:
    """Returns the merchant registry block."""
    return load_config()["registry"]


def get_classifier_config() -> Dict[str, Any]:
    """Returns the transaction classifier block."""
    return load_config()["classifier"]


def get_baseline_config() -> Dict[str, Any]:
    """Returns the baseline aggregation block."""
    return load_config()["baseline"]


def get_whitelist_suggestion_config() -> Dict[str, Any]:
    """Returns the whitelist suggestion block."""
    return load_config()["whitelist_suggestions"]


def get_registry_version() -> str:
    """Returns the version string of the merchant registry tables."""
    return str(get_registry_config().get("version", "unversioned"))


def reset_config() -> None:
    """Clears cached config. Useful for testing."""
    global _CONFIG_CACHE
    _CONFIG_CACHE = {}
