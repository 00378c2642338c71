"""
loopwarden — runtime config loader.

File: src/loopwarden/config/loader.py

Purpose
- Load the effective configuration from defaults, ``loopwarden.toml``,
  ``LOOPWARDEN_`` environment variables and explicit overrides.

Functional requirements
- Precedence: overrides > env > file > defaults.
- Environment names join the upper-cased key path with ``__``
  (``LOOPWARDEN_RUN__STEP_BUDGET``); values are coerced to the type of the
  default they replace. Lists take comma-separated values.
- Path fields are resolved relative to the config file's directory.
- Every failure raises ``ConfigLoadError`` naming the key path and source.
"""

from __future__ import annotations

import os
import tomllib
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Final, Literal

from loopwarden.config.schema import (
    PATH_FIELDS,
    ConfigValidationError,
    assert_valid_config,
    default_config,
    merge_config,
)

DEFAULT_CONFIG_FILE: Final[str] = "loopwarden.toml"
ENV_PREFIX: Final[str] = "LOOPWARDEN_"
ENV_SEPARATOR: Final[str] = "__"

_BOOLEANS: Final[dict[str, bool]] = {
    **dict.fromkeys(("1", "true", "yes", "on"), True),
    **dict.fromkeys(("0", "false", "no", "off"), False),
}
_KIND_NOUN: Final[dict[str, str]] = {"int": "an integer", "float": "a number"}

ValueKind = Literal["str", "int", "float", "bool", "list"]


@dataclass(frozen=True, slots=True)
class _Binding:
    path: tuple[str, ...]
    value_type: ValueKind


class ConfigLoadError(ValueError):
    """Raised when config cannot be loaded or a value cannot be coerced."""


def load_config(
    config_path: str | Path | None = None,
    *,
    environ: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
) -> dict[str, Any]:
    """Load effective config with deterministic precedence: overrides > env > file > defaults."""

    resolved_path = _resolve_config_path(config_path)
    env_map = dict(os.environ if environ is None else environ)

    file_payload = _load_toml_file(resolved_path, required=config_path is not None)
    merged = merge_config(default_config(), file_payload)
    _validated(merged, f"config file {resolved_path}")

    merged = merge_config(merged, _collect_env_overrides(env_map))
    _validated(merged, "environment")

    merged = merge_config(merged, _materialize_overrides(overrides or {}))
    merged = _validated(merged, "overrides")

    return normalize_paths(merged, base_dir=resolved_path.parent)


def normalize_paths(config: Mapping[str, Any], *, base_dir: Path) -> dict[str, Any]:
    materialized = merge_config({}, config)
    for section, key in PATH_FIELDS:
        raw = materialized.get(section, {}).get(key)
        if isinstance(raw, str):
            materialized[section][key] = _normalize_one_path(raw, base_dir)
    return materialized


def env_name_for_path(path: tuple[str, ...]) -> str:
    return ENV_PREFIX + ENV_SEPARATOR.join(part.upper() for part in path)


def _validated(config: dict[str, Any], source: str) -> dict[str, Any]:
    try:
        return assert_valid_config(config)
    except ConfigValidationError as exc:
        raise ConfigLoadError(f"{exc} (from {source})") from exc


def _resolve_config_path(config_path: str | Path | None) -> Path:
    if config_path is None:
        return (Path.cwd() / DEFAULT_CONFIG_FILE).resolve()
    return Path(config_path).expanduser().resolve()


def _load_toml_file(path: Path, *, required: bool) -> dict[str, Any]:
    if not path.exists():
        if required:
            raise ConfigLoadError(f"config file not found: {path}")
        return {}

    try:
        with path.open("rb") as handle:
            return tomllib.load(handle)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigLoadError(f"invalid TOML in {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigLoadError(f"unable to read config file {path}: {exc}") from exc


def _collect_env_overrides(environ: Mapping[str, str]) -> dict[str, Any]:
    bindings = _build_bindings()
    overrides: dict[str, Any] = {}
    for env_name in sorted(environ):
        if not env_name.startswith(ENV_PREFIX):
            continue
        binding = bindings.get(env_name)
        if binding is None:
            raise ConfigLoadError(f"{env_name} does not name a known config key")
        value = _coerce_env(environ[env_name], binding, env_name)
        _set_nested(overrides, binding.path, value)
    return overrides


def _build_bindings() -> dict[str, _Binding]:
    bindings: dict[str, _Binding] = {}
    for section, values in default_config().items():
        for key, value in values.items():
            path = (section, key)
            bindings[env_name_for_path(path)] = _Binding(
                path=path, value_type=_kind_for_value(value)
            )
    return bindings


def _kind_for_value(value: object) -> ValueKind:
    if isinstance(value, bool):
        return "bool"
    if isinstance(value, int):
        return "int"
    if isinstance(value, float):
        return "float"
    if isinstance(value, list):
        return "list"
    return "str"


def _coerce_env(raw: str, binding: _Binding, env_name: str) -> object:
    value = raw.strip()
    kind = binding.value_type
    target = f"{env_name} -> {'.'.join(binding.path)}"
    if kind == "str":
        return value
    if kind == "list":
        return [part.strip() for part in value.split(",") if part.strip()]
    if kind == "bool":
        flag = _BOOLEANS.get(value.lower())
        if flag is None:
            raise ConfigLoadError(f"{target} must be a boolean, got {raw!r}")
        return flag
    number = int if kind == "int" else float
    try:
        return number(value)
    except ValueError:
        raise ConfigLoadError(f"{target} must be {_KIND_NOUN[kind]}, got {raw!r}") from None


def _materialize_overrides(overrides: Mapping[str, object]) -> dict[str, Any]:
    payload: dict[str, Any] = {}
    for key in sorted(overrides):
        value = overrides[key]
        path = tuple(filter(None, key.split(".")))
        if not path:
            raise ConfigLoadError(f"invalid override key {key!r}")
        if len(path) == 1 and isinstance(value, Mapping):
            payload = merge_config(payload, {key: dict(value)})
        else:
            _set_nested(payload, path, value)
    return payload


def _set_nested(target: dict[str, Any], path: tuple[str, ...], value: object) -> None:
    *parents, leaf = path
    for part in parents:
        child = target.setdefault(part, {})
        if not isinstance(child, dict):
            child = target[part] = {}
        target = child
    target[leaf] = value


def _normalize_one_path(raw: str, base_dir: Path) -> str:
    candidate = Path(os.path.expandvars(raw)).expanduser()
    if not candidate.is_absolute():
        candidate = base_dir / candidate
    return Path(os.path.normpath(str(candidate))).as_posix()


__all__ = [
    "DEFAULT_CONFIG_FILE",
    "ENV_PREFIX",
    "ENV_SEPARATOR",
    "ConfigLoadError",
    "env_name_for_path",
    "load_config",
    "normalize_paths",
]
