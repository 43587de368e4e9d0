"""Application logging helpers."""

from __future__ import annotations

import logging as py_logging
import sys
from collections.abc import MutableMapping
from pathlib import Path
from typing import Any, TextIO

LOG_LEVELS = {
    "DEBUG": py_logging.DEBUG,
    "INFO": py_logging.INFO,
    "WARN": py_logging.WARNING,
    "WARNING": py_logging.WARNING,
    "ERROR": py_logging.ERROR,
}
DEFAULT_LOG_PATH = Path("~/.config/consolesupervisor/logs/consolesupervisor.log")
_FALLBACK_LOG_PATH = Path(".consolesupervisor/logs/consolesupervisor.log")
_FORMAT = "%(asctime)s %(levelname)s %(threadName)s %(name)s:%(lineno)d [%(handle)s] %(message)s"
NO_HANDLE = "-"


def default_log_path() -> Path:
    try:
        resolved = DEFAULT_LOG_PATH.expanduser()
    except RuntimeError:
        resolved = (Path.cwd() / _FALLBACK_LOG_PATH).resolve()
    else:
        if not resolved.is_absolute():
            resolved = resolved.resolve()
    return resolved


class HandleFilter(py_logging.Filter):
    """Gives every record a ``handle`` attribute so the format can show it."""

    def filter(self, record: py_logging.LogRecord) -> bool:
        if not getattr(record, "handle", None):
            record.handle = NO_HANDLE
        return True


class ConsoleEventAdapter(py_logging.LoggerAdapter):
    """Writes ``console-event handle=... step=... message=...`` lines for one process."""

    def __init__(self, logger: py_logging.Logger, handle: str) -> None:
        super().__init__(logger, {"handle": handle})
        self.handle = handle

    def process(self, msg: object, kwargs: MutableMapping[str, Any]) -> tuple[object, MutableMapping[str, Any]]:
        kwargs["extra"] = {**kwargs.get("extra", {}), "handle": self.handle}
        return msg, kwargs

    def event(self, step: str, message: str, *, level: int = py_logging.INFO) -> None:
        self.log(level, "console-event handle=%s step=%s message=%s", self.handle, step, message, stacklevel=2)


def normalize_level(level: str) -> str:
    normalized = level.strip().upper()
    if normalized == "WARNING":
        return "WARN"
    return normalized


def configure_logging(
    level: str = "INFO",
    stream: TextIO | None = None,
    *,
    log_file: str | Path | None = None,
) -> py_logging.Logger:
    resolved = LOG_LEVELS.get(normalize_level(level), py_logging.INFO)

    logger = py_logging.getLogger("consolesupervisor")
    logger.setLevel(resolved)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    formatter = py_logging.Formatter(_FORMAT)

    handler = py_logging.StreamHandler(stream or sys.stderr)
    handler.setLevel(resolved)
    handler.addFilter(HandleFilter())
    handler.setFormatter(formatter)
    logger.addHandler(handler)

    if log_file:
        try:
            log_path = Path(log_file).expanduser()
        except RuntimeError:
            log_path = Path(log_file)
        if not log_path.is_absolute():
            log_path = log_path.resolve()
        try:
            log_path.parent.mkdir(parents=True, exist_ok=True)
            file_handler = py_logging.FileHandler(log_path, encoding="utf-8")
        except OSError:
            pass
        else:
            file_handler.setLevel(py_logging.DEBUG)
            file_handler.addFilter(HandleFilter())
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)
            # File handler records DEBUG even when the console is quieter.
            logger.setLevel(py_logging.DEBUG)

    logger.propagate = False
    return logger
