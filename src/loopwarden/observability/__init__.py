"""Observability: structlog configuration and redaction."""

from loopwarden.observability.logging import (
    REDACTED_VALUE,
    configure_logging,
    redact_processor,
    redact_value,
)

__all__ = ["REDACTED_VALUE", "configure_logging", "redact_processor", "redact_value"]
