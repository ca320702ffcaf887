"""
Lending Pool Platform Configuration
===================================

Centralized configuration management using environment variables with
sensible defaults.

This module provides a cached ``Settings`` instance that loads configuration
from environment variables prefixed with ``LENDPOOL_``. All settings have
defaults suitable for local development and tests.

Environment Variables
---------------------
LENDPOOL_LOG_LEVEL : str
    Logging level (DEBUG, INFO, WARNING, ERROR).
LENDPOOL_DEFAULT_EPOCH_PERIOD_SECONDS : int
    Epoch length for pool definitions that do not set one.
LENDPOOL_AUDIT_ENABLED : bool
    Whether :meth:`Settings.make_audit_trail` captures traces.
LENDPOOL_SIMULATION_SEED : int
    Seed used by the simulator when none is given.

Example
-------
Using environment variables::

    export LENDPOOL_LOG_LEVEL=DEBUG
    export LENDPOOL_SIMULATION_SEED=7

Accessing settings in code::

    from lendpool_platform.config import settings
    settings.configure_logging()
    trail = settings.make_audit_trail()
"""

from __future__ import annotations

import json
import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Any

# Determine the package root directory
_PACKAGE_ROOT = Path(__file__).resolve().parent


def _get_env(key: str, default: Any, value_type: type = str) -> Any:
    """
    Get an environment variable with type conversion.

    Parameters
    ----------
    key : str
        Environment variable name (will be prefixed with LENDPOOL_).
    default : Any
        Default value if not set.
    value_type : type
        Type to convert to (str, int, float, bool, list).

    Returns
    -------
    Any
        The environment variable value converted to the specified type, or
        ``default`` if it is unset or cannot be converted.
    """
    env_name = f"LENDPOOL_{key.upper()}"
    env_value = os.environ.get(env_name)

    if env_value is None:
        return default

    try:
        if value_type == bool:
            return env_value.lower() in ("true", "1", "yes", "on")
        elif value_type == int:
            return int(env_value)
        elif value_type == float:
            return float(env_value)
        elif value_type == list:
            try:
                return json.loads(env_value)
            except json.JSONDecodeError:
                return env_value.split(",")
        else:
            return env_value
    except (ValueError, TypeError):
        return default


class Settings:
    """
    Application configuration loaded from environment variables.

    Example
    -------
    >>> from lendpool_platform.config import settings
    >>> settings.default_epoch_period_seconds
    2592000
    """

    def __init__(self) -> None:
        """Initialize settings from environment variables."""
        # =====================================================================
        # Logging Configuration
        # =====================================================================
        self.log_level: str = _get_env("LOG_LEVEL", "INFO", str)
        self.log_format: str = _get_env("LOG_FORMAT", "%(asctime)s - %(name)s - %(levelname)s - %(message)s", str)

        # =====================================================================
        # Pool Defaults
        # =====================================================================
        self.default_epoch_period_seconds: int = _get_env("DEFAULT_EPOCH_PERIOD_SECONDS", 30 * 24 * 60 * 60, int)
        self.default_max_senior_junior_ratio: int = _get_env("DEFAULT_MAX_SENIOR_JUNIOR_RATIO", 4, int)
        self.default_flex_call_window_epochs: int = _get_env("DEFAULT_FLEX_CALL_WINDOW_EPOCHS", 0, int)

        # =====================================================================
        # Audit & Results
        # =====================================================================
        self.audit_enabled: bool = _get_env("AUDIT_ENABLED", True, bool)
        self.audit_level: str = _get_env("AUDIT_LEVEL", "detailed", str)
        self.results_dir: str = _get_env("RESULTS_DIR", str(_PACKAGE_ROOT / "results"), str)

        # =====================================================================
        # Simulation
        # =====================================================================
        self.simulation_seed: int = _get_env("SIMULATION_SEED", 42, int)

    @property
    def package_root(self) -> Path:
        """Return the package root directory."""
        return _PACKAGE_ROOT

    @property
    def log_level_int(self) -> int:
        """Return the log level as an integer constant."""
        return getattr(logging, self.log_level.upper(), logging.INFO)

    def get_results_dir(self) -> Path:
        """Return the results directory, creating it if necessary."""
        path = Path(self.results_dir)
        if not path.is_absolute():
            path = _PACKAGE_ROOT / path
        path.mkdir(parents=True, exist_ok=True)
        return path.resolve()

    def make_audit_trail(self):
        """Build an :class:`AuditTrail` honouring the audit settings."""
        from .engine.audit_trail import AuditTrail

        return AuditTrail(enabled=self.audit_enabled, level=self.audit_level)

    def configure_logging(self) -> None:
        """
        Configure application logging based on settings.

        Sets up the root logger with the configured level and format.
        """
        logging.basicConfig(
            level=self.log_level_int,
            format=self.log_format,
        )


@lru_cache()
def get_settings() -> Settings:
    """
    Return the cached application settings instance.

    Returns
    -------
    Settings
        Application settings instance.
    """
    return Settings()


# Module-level singleton for convenience
settings = get_settings()
