"""Logging helper that standardises Lambda logger configuration."""

from __future__ import annotations

import logging
import os


def _resolve_level(level: int | str | None) -> int:
    if level is None:
        level = os.getenv("LOG_LEVEL", "INFO")
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.strip().upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def get_logger(name: str, level: int | str | None = None, *, extra_handlers: list[logging.Handler] | None = None) -> logging.Logger:
    logger = logging.getLogger(name)
    logger.setLevel(_resolve_level(level))

    if not logger.handlers:
        handler = logging.StreamHandler()
        formatter = logging.Formatter(
            fmt="%(asctime)s %(levelname)s %(name)s - %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%SZ",
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    if extra_handlers:
        for handler in extra_handlers:
            logger.addHandler(handler)

    # Avoid propagating to root to prevent duplicate logs in Lambda
    logger.propagate = False
    return logger


def mask_secret(value: str | None, visible: int = 4) -> str:
    """Return a log-safe representation of a credential."""
    if not value:
        return "<unset>"
    if len(value) <= visible:
        return "*" * len(value)
    return f"******{value[-visible:]}"
