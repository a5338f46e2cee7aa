"""
Logging utilities for the Weatherify API.

Provides a consistent logging format and a helper for masking secrets
(authorization codes, tokens) before they reach log output.
"""

import logging
import sys

_NOISY_LOGGERS = ("httpx", "httpcore")


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging with a sensible default format."""
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        stream=sys.stdout,
    )
    # httpx logs full request URLs at INFO, which would include auth codes.
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def mask_secret(value: str | None, visible: int = 6) -> str:
    """Return a truncated representation of ``value`` that is safe to log."""
    if not value:
        return "<none>"
    return f"{value[:visible]}..."


__all__ = ["configure_logging", "mask_secret"]
