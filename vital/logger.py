"""
Structured JSON Logging Module.

Every component logs through a child of the ``vital`` logger.  Handlers are
attached once, to that parent, so services created per view or per test
share one JSON stream instead of stacking handlers on each name.

Reconciliation and the gates run work on background threads, so each line
also records the thread that produced it.
"""

import json
import logging
import sys
import threading
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Optional, TextIO

ROOT_LOGGER_NAME = "vital"

_RESERVED: frozenset[str] = frozenset(
    vars(logging.makeLogRecord({})).keys()
) | {"message", "asctime", "taskName"}

_setup_lock = threading.Lock()


class JSONFormatter(logging.Formatter):
    """One JSON object per record.

    Keys: ``timestamp`` (UTC, ISO-8601), ``level``, ``logger_name``,
    ``thread``, ``message``, then ``extra`` and ``exception`` when the
    record carries them.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger_name": record.name,
            "thread": record.threadName,
            "message": record.getMessage(),
        }

        extra = {k: v for k, v in vars(record).items() if k not in _RESERVED}
        if extra:
            payload["extra"] = extra

        if record.exc_info and not record.exc_text:
            record.exc_text = self.formatException(record.exc_info)
        if record.exc_text:
            payload["exception"] = record.exc_text

        # default=str keeps ids, enums and datetimes readable without
        # failing the whole line on one odd value.
        return json.dumps(payload, ensure_ascii=False, default=str)


def qualified_name(name: str) -> str:
    """Place *name* under the ``vital`` hierarchy unless it already is."""
    if name == ROOT_LOGGER_NAME or name.startswith(ROOT_LOGGER_NAME + "."):
        return name
    return f"{ROOT_LOGGER_NAME}.{name}"


def configure_logging(
    level: int = logging.INFO,
    stream: Optional[TextIO] = None,
    log_file: Optional[str] = None,
    max_bytes: Optional[int] = None,
    backup_count: Optional[int] = None,
) -> logging.Logger:
    """Attach the console (and optional rotating file) handler to ``vital``.

    Safe to call repeatedly; only the first call installs handlers.
    Unset file options fall back to ``LOG_FILE`` / ``LOG_MAX_BYTES`` /
    ``LOG_BACKUP_COUNT`` from the app config.
    """
    root = logging.getLogger(ROOT_LOGGER_NAME)
    with _setup_lock:
        if root.handlers:
            return root

        from vital.config import get_config
        cfg = get_config()

        root.setLevel(level)
        formatter = JSONFormatter()

        console = logging.StreamHandler(stream or sys.stdout)
        console.setFormatter(formatter)
        root.addHandler(console)

        target = log_file or cfg.LOG_FILE
        if target:
            _add_file_handler(
                root,
                formatter,
                Path(target),
                cfg.LOG_MAX_BYTES if max_bytes is None else max_bytes,
                cfg.LOG_BACKUP_COUNT if backup_count is None else backup_count,
            )
    return root


def _add_file_handler(
    root: logging.Logger,
    formatter: logging.Formatter,
    path: Path,
    max_bytes: int,
    backup_count: int,
) -> None:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(
            path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
        )
    except OSError as exc:
        root.warning("Log file %s unavailable (%s); console only.", path, exc)
        return
    handler.setFormatter(formatter)
    root.addHandler(handler)


class StructuredLogger:
    """Injectable logger handed to every service.

    ``StructuredLogger("reconciler")`` logs as ``vital.reconciler``.  Use
    ``extra=`` for structured fields::

        log.info("Profile created", extra={"user_id": user_id})

    ``bind()`` returns a logger that adds fixed fields to every line.
    """

    def __init__(
        self,
        name: str = ROOT_LOGGER_NAME,
        level: Optional[int] = None,
        stream: Optional[TextIO] = None,
        log_file: Optional[str] = None,
        max_bytes: Optional[int] = None,
        backup_count: Optional[int] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        configure_logging(
            level=logging.INFO if level is None else level,
            stream=stream,
            log_file=log_file,
            max_bytes=max_bytes,
            backup_count=backup_count,
        )
        self._logger = logging.getLogger(qualified_name(name))
        if level is not None:
            self._logger.setLevel(level)
        self._context: dict[str, Any] = dict(context or {})

    @property
    def logger(self) -> logging.Logger:
        return self._logger

    @property
    def context(self) -> dict[str, Any]:
        return dict(self._context)

    def bind(self, **fields: Any) -> "StructuredLogger":
        """Child sharing this logger's name, with *fields* on every line."""
        child = StructuredLogger.__new__(StructuredLogger)
        child._logger = self._logger
        child._context = {**self._context, **fields}
        return child

    def _log(self, level: int, msg: str, args: tuple[object, ...], kwargs: dict[str, Any]) -> None:
        if self._context:
            kwargs["extra"] = {**self._context, **(kwargs.get("extra") or {})}
        self._logger.log(level, msg, *args, **kwargs)

    def debug(self, msg: str, *args: object, **kwargs: Any) -> None:
        self._log(logging.DEBUG, msg, args, kwargs)

    def info(self, msg: str, *args: object, **kwargs: Any) -> None:
        self._log(logging.INFO, msg, args, kwargs)

    def warning(self, msg: str, *args: object, **kwargs: Any) -> None:
        self._log(logging.WARNING, msg, args, kwargs)

    def error(self, msg: str, *args: object, **kwargs: Any) -> None:
        self._log(logging.ERROR, msg, args, kwargs)

    def critical(self, msg: str, *args: object, **kwargs: Any) -> None:
        self._log(logging.CRITICAL, msg, args, kwargs)

    def exception(self, msg: str, *args: object, **kwargs: Any) -> None:
        kwargs.setdefault("exc_info", True)
        self._log(logging.ERROR, msg, args, kwargs)


def get_logger(name: str = ROOT_LOGGER_NAME) -> StructuredLogger:
    return StructuredLogger(name=name)
