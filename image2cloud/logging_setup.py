"""Logging configuration helpers."""

from __future__ import annotations

import logging

_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def _resolve_level(level_name: str) -> int:
    return getattr(logging, level_name.upper(), logging.INFO)


def configure_logging(level_name: str = "INFO") -> None:
    """Configure root logging with a concise format.

    Safe to call more than once; existing handlers are re-levelled and
    re-formatted instead of duplicated.
    """
    level = _resolve_level(level_name)
    formatter = logging.Formatter(_FORMAT)
    root_logger = logging.getLogger()

    if root_logger.handlers:
        root_logger.setLevel(level)
        for handler in root_logger.handlers:
            handler.setLevel(level)
            handler.setFormatter(formatter)
        return

    logging.basicConfig(level=level)
    for handler in logging.getLogger().handlers:
        handler.setFormatter(formatter)
