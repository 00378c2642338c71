"""Structured logging setup: structlog over stdlib logging, one JSON object per line."""

from __future__ import annotations

import logging
import re
import sys
from collections.abc import MutableMapping
from pathlib import Path
from typing import IO, Any, Final

import structlog

from loopwarden.config.settings import LoggingSettings

REDACTED_VALUE: Final[str] = "***REDACTED***"
ROOT_LOGGER_NAME: Final[str] = "loopwarden"

_SENSITIVE_KEY_TERMS: Final[tuple[str, ...]] = (
    "secret",
    "token",
    "password",
    "passphrase",
    "api_key",
    "apikey",
    "authorization",
    "credential",
    "private_key",
)

_SENSITIVE_ASSIGNMENT_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"(?i)\b(api[_-]?key|token|password|secret|authorization)\b\s*([:=])\s*([^\s,;]+)"
)
_BEARER_TOKEN_PATTERN: Final[re.Pattern[str]] = re.compile(r"(?i)\bbearer\s+[A-Za-z0-9._~+/-]+=*")


def is_sensitive_key(key: str) -> bool:
    lowered = key.lower().replace("-", "_")
    return any(term in lowered for term in _SENSITIVE_KEY_TERMS)


def redact_text(text: str) -> str:
    text = _BEARER_TOKEN_PATTERN.sub(f"Bearer {REDACTED_VALUE}", text)
    return _SENSITIVE_ASSIGNMENT_PATTERN.sub(
        lambda match: f"{match.group(1)}{match.group(2)}{REDACTED_VALUE}", text
    )


def redact_value(value: Any, key: str | None = None) -> Any:
    if key is not None and is_sensitive_key(key):
        return REDACTED_VALUE
    if isinstance(value, str):
        return redact_text(value)
    if isinstance(value, dict):
        return {item_key: redact_value(item, str(item_key)) for item_key, item in value.items()}
    if isinstance(value, list | tuple):
        return [redact_value(item) for item in value]
    return value


def redact_processor(
    _logger: Any, _method: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """structlog processor that masks secret-looking keys and inline credentials."""
    for key in list(event_dict):
        if key == "event":
            event_dict[key] = redact_value(event_dict[key])
            continue
        event_dict[key] = redact_value(event_dict[key], key)
    return event_dict


def configure_logging(
    settings: LoggingSettings | None = None,
    *,
    state_root: Path | None = None,
    stream: IO[str] | None = None,
) -> logging.Logger:
    """Route structlog through the ``loopwarden`` stdlib logger.

    Output goes to ``stream`` (stderr by default) and, when ``log_file`` is
    set, to that file; a relative ``log_file`` is placed under ``state_root``.
    Calling again replaces the handlers installed by the previous call.
    """
    settings = settings if settings is not None else LoggingSettings()
    level = logging.getLevelName(settings.level.upper())
    if not isinstance(level, int):
        raise ValueError(f"unknown log level: {settings.level}")

    shared: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]
    if settings.redact_secrets:
        shared.append(redact_processor)

    renderer: Any = (
        structlog.processors.JSONRenderer(sort_keys=True)
        if settings.json
        else structlog.dev.ConsoleRenderer(colors=False)
    )
    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared,
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
    )

    handlers: list[logging.Handler] = [logging.StreamHandler(stream or sys.stderr)]
    if settings.log_file:
        path = Path(settings.log_file)
        if not path.is_absolute() and state_root is not None:
            path = state_root / path
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(path, encoding="utf-8"))

    root = logging.getLogger(ROOT_LOGGER_NAME)
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    for handler in handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)
    root.setLevel(level)
    root.propagate = False

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *shared,
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )
    return root


__all__ = [
    "REDACTED_VALUE",
    "ROOT_LOGGER_NAME",
    "configure_logging",
    "is_sensitive_key",
    "redact_processor",
    "redact_text",
    "redact_value",
]
