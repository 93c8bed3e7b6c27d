from __future__ import annotations

import logging
import os
import sys
import traceback
from collections.abc import Mapping, MutableMapping
from datetime import datetime
from pathlib import Path
from typing import Any

_LOGGER = logging.getLogger("gapsong.logging")
_LOG_DIR_ENV = "GAPSONG_LOG_DIR"
_DEBUG_ENV = "GAPSONG_DEBUG"
_LOG_FILE = "gapsong.log"
_logging_configured = False
_CONSOLE_FORMAT = "%(level_prefix)s %(name)s: %(gap_tag)s%(message)s"
_FILE_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(gap_tag)s%(message)s"
_FILE_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
_LEVEL_PREFIXES = {
    logging.DEBUG: "🐛",
    logging.INFO: "ℹ️",
    logging.WARNING: "⚠️",
    logging.ERROR: "❌",
    logging.CRITICAL: "💥",
}


class _GapFormatter(logging.Formatter):
    """Adds ``level_prefix`` and a ``[gap-id] `` tag for records that carry one."""

    def format(self, record: logging.LogRecord) -> str:
        record.level_prefix = _LEVEL_PREFIXES.get(record.levelno, "")
        gap_id = getattr(record, "gap_id", None)
        record.gap_tag = f"[{gap_id}] " if gap_id else ""
        return super().format(record)


class GapLogAdapter(logging.LoggerAdapter):  # type: ignore[type-arg]
    """Logger bound to one gap; every record gets its ``gap_id``."""

    def process(
        self, msg: object, kwargs: MutableMapping[str, Any]
    ) -> tuple[object, MutableMapping[str, Any]]:
        extra = dict(kwargs.get("extra") or {})
        extra.setdefault("gap_id", (self.extra or {}).get("gap_id"))
        kwargs["extra"] = extra
        return msg, kwargs


def gap_logger(name: str, gap_id: str) -> GapLogAdapter:
    return GapLogAdapter(logging.getLogger(name), {"gap_id": gap_id})


def get_log_dir() -> Path:
    configured = os.environ.get(_LOG_DIR_ENV)
    if configured:
        return Path(configured).expanduser()
    return Path.home() / ".cache" / "gapsong" / "logs"


def get_log_path() -> Path:
    return get_log_dir() / _LOG_FILE


def debug_enabled() -> bool:
    return bool(os.environ.get(_DEBUG_ENV))


def _console_handler() -> logging.Handler:
    handler = logging.StreamHandler(stream=sys.__stderr__)
    handler.setLevel(logging.DEBUG if debug_enabled() else logging.INFO)
    handler.setFormatter(_GapFormatter(_CONSOLE_FORMAT))
    return handler


def _file_handler() -> logging.Handler:
    get_log_dir().mkdir(parents=True, exist_ok=True)
    # delay: nothing is created until the first record is written
    handler = logging.FileHandler(get_log_path(), encoding="utf-8", delay=True)
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(_GapFormatter(_FILE_FORMAT, datefmt=_FILE_DATE_FORMAT))
    return handler


def configure_logging(*, force: bool = False) -> None:
    """Attach console and file handlers to the ``gapsong`` logger once.

    The console handler is skipped when the host already configured root
    logging, unless ``force`` rebuilds everything.
    """
    global _logging_configured
    if _logging_configured and not force:
        return

    logger = logging.getLogger("gapsong")
    logger.setLevel(logging.DEBUG)

    if force:
        for handler in list(logger.handlers):
            logger.removeHandler(handler)
            handler.close()

    if force or not logging.getLogger().handlers:
        logger.addHandler(_console_handler())

    try:
        logger.addHandler(_file_handler())
    except OSError as exc:
        _LOGGER.warning("Failed to configure file logging: %s", exc, exc_info=True)

    logger.propagate = True
    _logging_configured = True


def log_exception(
    context: str,
    exc: BaseException,
    *,
    gap_id: str | None = None,
    details: Mapping[str, object] | None = None,
) -> Path | None:
    """Append ``exc`` with its traceback to the log file.

    ``gap_id`` and ``details`` (plan values, target paths) are written above
    the traceback so a failed export or playback can be replayed.
    """
    try:
        path = get_log_path()
        path.parent.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now().isoformat()
        scope = f" (gap {gap_id})" if gap_id else ""
        with path.open("a", encoding="utf-8") as handle:
            handle.write(f"[{timestamp}] {context}{scope} failed: {type(exc).__name__}: {exc}\n")
            for key, value in sorted((details or {}).items()):
                handle.write(f"    {key}={value!r}\n")
            traceback.print_exception(type(exc), exc, exc.__traceback__, file=handle)
            handle.write("\n")
        return path
    except OSError as log_exc:
        _LOGGER.warning("Failed to write log file: %s", log_exc, exc_info=True)
        return None
