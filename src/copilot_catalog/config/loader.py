"""
Configuration loader with deep merge.

Precedence order (lowest to highest):
1. Defaults (defined in the Pydantic schemas)
2. YAML file
3. Environment variables
4. CLI arguments

The merge is recursive so every key survives at every level.
"""

import os
from pathlib import Path
from typing import Any

import yaml

from .schema import AppConfig

DEFAULT_CONFIG_FILES = (
    Path("copilot-catalog.yaml"),
    Path("~/.copilot-catalog/config.yaml"),
)


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursive dictionary merge.

    Args:
        base: Base dictionary
        override: Dictionary whose values override the base

    Returns:
        New merged dictionary. Override wins on leaf conflicts.

    Example:
        >>> base = {"a": {"b": 1, "c": 2}, "d": 3}
        >>> override = {"a": {"b": 99}, "e": 4}
        >>> deep_merge(base, override)
        {"a": {"b": 99, "c": 2}, "d": 3, "e": 4}
    """
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def find_config_file() -> Path | None:
    """Return the first default config file that exists, if any."""
    for candidate in DEFAULT_CONFIG_FILES:
        path = candidate.expanduser()
        if path.is_file():
            return path
    return None


def load_yaml_config(config_path: Path | None) -> dict[str, Any]:
    """Load configuration from a YAML file.

    Args:
        config_path: Path to the YAML file, or None to skip

    Returns:
        Dictionary with the configuration, or an empty dict if there is no file
    """
    if not config_path:
        return {}

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f)
        return data if data else {}


def load_env_overrides() -> dict[str, Any]:
    """Load overrides from environment variables.

    Supported variables:
        COPILOT_CATALOG_REPO: overrides catalog.repo
        COPILOT_CATALOG_BRANCH: overrides catalog.branch
        COPILOT_CATALOG_TTL_HOURS: overrides catalog.ttl_hours
        COPILOT_CATALOG_MAX_ITEMS: overrides catalog.max_items
        COPILOT_CATALOG_CACHE_DIR: overrides catalog.cache_dir
        COPILOT_CATALOG_LOG_LEVEL: overrides logging.level

    Returns:
        Dictionary with overrides from env vars
    """
    overrides: dict[str, Any] = {}

    if repo := os.environ.get("COPILOT_CATALOG_REPO"):
        overrides.setdefault("catalog", {})["repo"] = repo

    if branch := os.environ.get("COPILOT_CATALOG_BRANCH"):
        overrides.setdefault("catalog", {})["branch"] = branch

    # Pydantic coerces the numeric strings during validation
    if ttl := os.environ.get("COPILOT_CATALOG_TTL_HOURS"):
        overrides.setdefault("catalog", {})["ttl_hours"] = ttl

    if max_items := os.environ.get("COPILOT_CATALOG_MAX_ITEMS"):
        overrides.setdefault("catalog", {})["max_items"] = max_items

    if cache_dir := os.environ.get("COPILOT_CATALOG_CACHE_DIR"):
        overrides.setdefault("catalog", {})["cache_dir"] = cache_dir

    if log_level := os.environ.get("COPILOT_CATALOG_LOG_LEVEL"):
        overrides.setdefault("logging", {})["level"] = log_level.lower()

    return overrides


def apply_cli_overrides(config_dict: dict[str, Any], cli_args: dict[str, Any]) -> dict[str, Any]:
    """Apply overrides from CLI arguments.

    Args:
        config_dict: Base configuration (already merged with YAML and env)
        cli_args: Dictionary with CLI arguments

    Returns:
        Configuration with CLI overrides applied
    """
    overrides: dict[str, Any] = {}

    if cli_args.get("repo"):
        overrides.setdefault("catalog", {})["repo"] = cli_args["repo"]

    if cli_args.get("branch"):
        overrides.setdefault("catalog", {})["branch"] = cli_args["branch"]

    if cli_args.get("cache_dir"):
        overrides.setdefault("catalog", {})["cache_dir"] = cli_args["cache_dir"]

    if cli_args.get("max_items") is not None:
        overrides.setdefault("catalog", {})["max_items"] = cli_args["max_items"]

    if cli_args.get("log_level"):
        overrides.setdefault("logging", {})["level"] = cli_args["log_level"]

    if cli_args.get("log_file"):
        overrides.setdefault("logging", {})["file"] = cli_args["log_file"]

    if cli_args.get("verbose") is not None:
        overrides.setdefault("logging", {})["verbose"] = cli_args["verbose"]

    return deep_merge(config_dict, overrides)


def load_config(
    config_path: Path | None = None,
    cli_args: dict[str, Any] | None = None,
) -> AppConfig:
    """Load and validate the complete application configuration.

    Loading process:
    1. Pydantic defaults
    2. Merge with YAML (explicit path, or the first default file found)
    3. Merge with env vars
    4. Merge with CLI args
    5. Validate with Pydantic

    Args:
        config_path: Path to the YAML configuration file
        cli_args: Dictionary with CLI arguments

    Returns:
        Validated, complete AppConfig

    Raises:
        FileNotFoundError: If config_path does not exist
        ValidationError: If the final configuration is not valid
    """
    cli_args = cli_args or {}

    yaml_config = load_yaml_config(config_path or find_config_file())

    env_overrides = load_env_overrides()
    merged = deep_merge(yaml_config, env_overrides)

    merged = apply_cli_overrides(merged, cli_args)

    return AppConfig(**merged)
