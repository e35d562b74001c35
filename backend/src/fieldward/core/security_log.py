"""Logging setup and security event reporting."""

import logging
from typing import Any

SECURITY_LOGGER_NAME = "fieldward.security"

_SEVERITY_LEVELS = {
    "LOW": logging.INFO,
    "MEDIUM": logging.WARNING,
    "HIGH": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

security_logger = logging.getLogger(SECURITY_LOGGER_NAME)


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging for CLI and service entry points."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def log_security_event(event: str, severity: str = "MEDIUM", **details: Any) -> None:
    """Emit a structured security event.

    Args:
        event: Short event name, e.g. "RLS_VALIDATION_FAILED"
        severity: LOW, MEDIUM, HIGH or CRITICAL
        **details: Context attached to the log record under ``security``
    """
    level = _SEVERITY_LEVELS.get(severity.upper(), logging.WARNING)
    detail_text = " ".join(f"{key}={value!r}" for key, value in sorted(details.items()))
    security_logger.log(
        level,
        "security event %s %s",
        event,
        detail_text,
        extra={"security": {"event": event, "severity": severity.upper(), **details}},
    )
