from __future__ import annotations

import logging
import os

_DEBUG_VALUES = {"1", "true", "yes"}


def _default_level() -> str:
    if os.getenv("DEBUG", "").strip().lower() in _DEBUG_VALUES:
        return "DEBUG"
    return os.getenv("LLMGREP_LOG_LEVEL", "INFO").upper()


def get_logger(name: str) -> logging.Logger:
    logger = logging.getLogger(name)
    if not logging.getLogger().handlers:
        level = _default_level()
        logging.basicConfig(level=getattr(logging, level, logging.INFO), format="%(levelname)s | %(message)s")
    return logger


def set_debug(enabled: bool) -> None:
    """Switch the root logger between DEBUG and the configured level (--debug)."""
    root = logging.getLogger()
    if not root.handlers:
        get_logger("llmgrep")
    root.setLevel(logging.DEBUG if enabled else getattr(logging, _default_level(), logging.INFO))
