from __future__ import annotations

import logging
import os
import sys
import traceback
from collections.abc import Mapping
from datetime import datetime
from pathlib import Path

_LOGGER = logging.getLogger("tonalpull.logging")
_ROOT_LOGGER = "tonalpull"
_LOG_DIR_ENV = "TONALPULL_LOG_DIR"
_DEBUG_ENV = "TONALPULL_DEBUG"
_LOG_FILE = "tonalpull.log"
_CONSOLE_FORMAT = "%(level_prefix)s %(name)s: %(message)s"
_FILE_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
_FILE_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
_configured = False


class _LevelPrefixFormatter(logging.Formatter):
    """Console formatter that leads each line with a level glyph."""

    prefixes: Mapping[int, str] = {
        logging.DEBUG: "🐛",
        logging.INFO: "ℹ️",
        logging.WARNING: "⚠️",
        logging.ERROR: "❌",
        logging.CRITICAL: "💥",
    }

    def format(self, record: logging.LogRecord) -> str:
        record.level_prefix = self.prefixes.get(record.levelno, "")
        return super().format(record)


def get_log_dir() -> Path:
    configured = os.environ.get(_LOG_DIR_ENV)
    if configured:
        return Path(configured).expanduser()
    return Path.home() / ".cache" / "tonalpull" / "logs"


def get_log_path() -> Path:
    return get_log_dir() / _LOG_FILE


def _console_handler() -> logging.Handler:
    handler = logging.StreamHandler(stream=sys.__stderr__)
    handler.setLevel(logging.DEBUG if os.environ.get(_DEBUG_ENV) else logging.INFO)
    handler.setFormatter(_LevelPrefixFormatter(_CONSOLE_FORMAT))
    return handler


def _file_handler() -> logging.Handler | None:
    try:
        get_log_dir().mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(get_log_path(), encoding="utf-8")
    except OSError as exc:
        _LOGGER.warning("File logging disabled: %s", exc)
        return None
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(logging.Formatter(_FILE_FORMAT, datefmt=_FILE_DATE_FORMAT))
    return handler


def configure_logging(*, force: bool = False) -> None:
    """Attach console and file handlers to the ``tonalpull`` logger once.

    A console handler is only added when the host application has not set up
    root logging itself, or when ``force`` is given.
    """
    global _configured
    if _configured and not force:
        return

    logger = logging.getLogger(_ROOT_LOGGER)
    logger.setLevel(logging.DEBUG)
    if force:
        for handler in list(logger.handlers):
            logger.removeHandler(handler)
            handler.close()

    if force or not logging.getLogger().handlers:
        logger.addHandler(_console_handler())
    file_handler = _file_handler()
    if file_handler is not None:
        logger.addHandler(file_handler)

    logger.propagate = True
    _configured = True


def log_exception(
    context: str,
    exc: BaseException,
    *,
    details: Mapping[str, object] | None = None,
) -> Path | None:
    """Append ``exc`` and its traceback to the log file; returns the file path."""
    path = get_log_path()
    lines = [f"[{datetime.now().isoformat()}] {context} failed: {type(exc).__name__}: {exc}"]
    for name, value in (details or {}).items():
        lines.append(f"  {name}: {value}")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("a", encoding="utf-8") as handle:
            handle.write("\n".join(lines) + "\n")
            traceback.print_exception(type(exc), exc, exc.__traceback__, file=handle)
            handle.write("\n")
    except OSError as log_exc:
        _LOGGER.warning("Failed to write log file: %s", log_exc)
        return None
    return path
