"""Base configuration class for scalezero components.

Provides type-safe environment variable loading shared by the orchestrator
settings and the peer health monitor settings, plus an optional YAML overlay
file for deployments that prefer a config file to a long environment.

Usage:
    from scalezero.config.base_config import BaseSettings

    @dataclass
    class MySettings(BaseSettings):
        _env_prefix: ClassVar[str] = "SCALEZERO_MY"

        timeout_seconds: float = 30.0

        @classmethod
        def from_env(cls) -> "MySettings":
            return cls(timeout_seconds=cls._get_env_float("TIMEOUT", 30.0))
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, ClassVar

import yaml

from scalezero.utils.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass
class BaseSettings:
    """Base for env-driven settings dataclasses.

    Subclasses should:
    1. Override `_env_prefix` for their environment namespace ("" = no prefix)
    2. Add their fields as dataclass fields with defaults
    3. Implement `from_env()` using the helper methods
    """

    _env_prefix: ClassVar[str] = "SCALEZERO"

    # -------------------------------------------------------------------------
    # Environment Variable Helpers
    # -------------------------------------------------------------------------

    @classmethod
    def _make_env_key(cls, suffix: str) -> str:
        """Create full environment variable name from suffix.

        Args:
            suffix: The variable suffix (e.g., "LEASE_TABLE")

        Returns:
            Full env var name (e.g., "SCALEZERO_LEASE_TABLE")
        """
        if not cls._env_prefix:
            return suffix
        return f"{cls._env_prefix}_{suffix}"

    @classmethod
    def _get_env_bool(cls, suffix: str, default: bool) -> bool:
        """Get boolean from environment variable.

        Recognizes: "true", "1", "yes", "on" as True (case-insensitive)
        All other values (including "false", "0", "no", "off") → False
        """
        value = os.environ.get(cls._make_env_key(suffix))
        if value is None:
            return default
        return value.lower() in ("true", "1", "yes", "on")

    @classmethod
    def _get_env_int(cls, suffix: str, default: int) -> int:
        """Get integer from environment variable (default if unset or invalid)."""
        value = os.environ.get(cls._make_env_key(suffix))
        if value is None:
            return default
        try:
            return int(value)
        except (ValueError, TypeError):
            logger.warning(f"Ignoring invalid integer {cls._make_env_key(suffix)}={value!r}")
            return default

    @classmethod
    def _get_env_float(cls, suffix: str, default: float) -> float:
        """Get float from environment variable (default if unset or invalid)."""
        value = os.environ.get(cls._make_env_key(suffix))
        if value is None:
            return default
        try:
            return float(value)
        except (ValueError, TypeError):
            logger.warning(f"Ignoring invalid number {cls._make_env_key(suffix)}={value!r}")
            return default

    @classmethod
    def _get_env_str(cls, suffix: str, default: str) -> str:
        """Get string from environment variable (stripped of whitespace)."""
        value = os.environ.get(cls._make_env_key(suffix))
        if value is None:
            return default
        return value.strip()

    @classmethod
    def _get_env_list(
        cls,
        suffix: str,
        default: list[str] | None = None,
        separator: str = ",",
    ) -> list[str]:
        """Get list of strings from environment variable.

        Returns:
            List of strings (each item stripped, empty items dropped)
        """
        value = os.environ.get(cls._make_env_key(suffix))
        if value is None:
            return list(default) if default is not None else []
        return [item.strip() for item in value.split(separator) if item.strip()]


def load_yaml_overlay(path: str | Path | None) -> dict[str, Any]:
    """Load a flat YAML mapping of setting overrides.

    Args:
        path: File to load. None or "" means no overlay.

    Returns:
        Mapping of field name -> value (empty if no path given)

    Raises:
        ConfigurationError: If the file is missing, unreadable or not a mapping
    """
    if not path:
        return {}

    config_path = Path(path)
    try:
        with config_path.open(encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Cannot load config file {config_path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {config_path} must contain a mapping")

    logger.info(f"Loaded {len(data)} setting(s) from {config_path}")
    return data
