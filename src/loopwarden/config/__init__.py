"""
loopwarden config package public API.

File: src/loopwarden/config/__init__.py

Purpose
- Export config loading entrypoints, typed settings and error types.

Functional requirements
- Support loading from ``loopwarden.toml`` + ``LOOPWARDEN_`` env overrides.
- Fail fast with clear load/validation errors.
"""

from loopwarden.config.loader import (
    DEFAULT_CONFIG_FILE,
    ENV_PREFIX,
    ConfigLoadError,
    env_name_for_path,
    load_config,
)
from loopwarden.config.schema import (
    DEFAULT_CONFIG,
    ConfigValidationError,
    ConfigValidationIssue,
    default_config,
    merge_config,
    validate_config,
)
from loopwarden.config.settings import (
    LoggingSettings,
    PathSettings,
    RunSettings,
    Settings,
    SpindleSettings,
    WaveSettings,
    load_settings,
)

__all__ = [
    "DEFAULT_CONFIG",
    "DEFAULT_CONFIG_FILE",
    "ENV_PREFIX",
    "ConfigLoadError",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "LoggingSettings",
    "PathSettings",
    "RunSettings",
    "Settings",
    "SpindleSettings",
    "WaveSettings",
    "default_config",
    "env_name_for_path",
    "load_config",
    "load_settings",
    "merge_config",
    "validate_config",
]
