"""
Quarry Structured Logger
=========================

Provides :class:`QuarryLogger`, a small facade over :mod:`logging` that
writes Rich-formatted records to stderr and, optionally, plain or
JSON-lines records to a rotating file.

Every record carries the ``tool_name`` the logger is bound to and the
current ``operation`` (see :meth:`QuarryLogger.operation`).  Extra keyword
arguments passed to a log call are collected into a ``context`` mapping
that the JSON formatter emits verbatim.

References:
    - Python logging HOWTO. https://docs.python.org/3/howto/logging.html
    - Rich logging handler. https://rich.readthedocs.io/en/stable/logging.html
"""

from __future__ import annotations

import json
import logging
import time
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

from rich.console import Console
from rich.logging import RichHandler
from rich.theme import Theme

_LOG_THEME = Theme(
    {
        "log.level.debug": "dim cyan",
        "log.level.info": "bold bright_blue",
        "log.level.warning": "bold yellow",
        "log.level.error": "bold red",
        "log.level.critical": "bold white on red",
    }
)

_PLAIN_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"

# Keyword arguments that logging.Logger itself understands
_LOGGING_KWARGS = frozenset({"exc_info", "stack_info", "stacklevel"})


def _level(name: str) -> int:
    return getattr(logging, name.upper(), logging.INFO)


# ========================== Formatters =====================================


class _JSONLinesFormatter(logging.Formatter):
    """One JSON object per record.

    Example line::

        {"timestamp": "2024-05-01T10:00:00+00:00", "level": "WARNING",
         "logger": "quarry.apiscan", "message": "...",
         "tool_name": "apiscan", "operation": "synchronize",
         "context": {"header": "Injection", "name": "VirtualAllocEx"}}
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(
                record.created, tz=timezone.utc
            ).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for attr in ("tool_name", "operation"):
            value = getattr(record, attr, None)
            if value is not None:
                entry[attr] = value

        context = getattr(record, "quarry_context", None)
        if context:
            entry["context"] = context

        if record.exc_info and record.exc_info[1] is not None:
            entry["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(entry, ensure_ascii=False, default=str)


def _stderr_handler(level: int) -> RichHandler:
    return RichHandler(
        level=level,
        console=Console(theme=_LOG_THEME, stderr=True),
        show_path=False,
        show_time=True,
        rich_tracebacks=True,
        markup=False,
    )


# ========================== QuarryLogger ===================================


class QuarryLogger:
    """Context-aware logger bound to one tool.

    Usage::

        log = QuarryLogger("apiscan", log_file="apiscan.log", json_logs=True)
        with log.operation("synchronize"):
            log.warning("detail fetch failed", name="VirtualAllocEx")
        with log.timed("import matching"):
            ...

    Args:
        tool_name:      Name bound into every record.
        log_level:      Minimum severity name.
        log_file:       Rotating log file; ``None`` disables file logging.
        json_logs:      Write JSON lines instead of plain text to the file.
        max_bytes:      Rotation threshold for the log file.
        backup_count:   Rotated files to keep.
        console_output: Attach the Rich stderr handler.
    """

    def __init__(
        self,
        tool_name: str,
        *,
        log_level: str = "INFO",
        log_file: str | Path | None = None,
        json_logs: bool = False,
        max_bytes: int = 10_485_760,
        backup_count: int = 3,
        console_output: bool = True,
    ) -> None:
        self._tool_name = tool_name
        self._operation: str | None = None

        level = _level(log_level)
        self._logger = logging.getLogger(f"quarry.{tool_name}")
        self._logger.setLevel(level)
        self._logger.propagate = False
        # Re-instantiation replaces, never stacks, handlers
        self._logger.handlers.clear()

        if console_output:
            self._logger.addHandler(_stderr_handler(level))

        if log_file is not None:
            path = Path(log_file)
            path.parent.mkdir(parents=True, exist_ok=True)
            handler = RotatingFileHandler(
                filename=str(path),
                maxBytes=max_bytes,
                backupCount=backup_count,
                encoding="utf-8",
            )
            handler.setLevel(level)
            handler.setFormatter(
                _JSONLinesFormatter()
                if json_logs
                else logging.Formatter(_PLAIN_FORMAT, datefmt="%Y-%m-%dT%H:%M:%S%z")
            )
            self._logger.addHandler(handler)

    # ------------------------------------------------------------------ #
    #  Operation scope
    # ------------------------------------------------------------------ #

    class _OperationScope:
        def __init__(self, owner: QuarryLogger, name: str) -> None:
            self._owner = owner
            self._name = name
            self._previous: str | None = None

        def __enter__(self) -> QuarryLogger:
            self._previous = self._owner._operation
            self._owner._operation = self._name
            return self._owner

        def __exit__(self, *exc: Any) -> None:
            self._owner._operation = self._previous

    def operation(self, name: str) -> _OperationScope:
        """Bind *name* as the ``operation`` field until the block exits."""
        return self._OperationScope(self, name)

    # ------------------------------------------------------------------ #
    #  Log methods
    # ------------------------------------------------------------------ #

    def _log(self, level: int, msg: str, args: tuple[Any, ...], kwargs: dict[str, Any]) -> None:
        passthrough = {k: kwargs.pop(k) for k in list(kwargs) if k in _LOGGING_KWARGS}
        passthrough.setdefault("stacklevel", 3)
        extra = {
            "tool_name": self._tool_name,
            "operation": self._operation,
            "quarry_context": kwargs,
        }
        self._logger.log(level, msg, *args, extra=extra, **passthrough)

    def debug(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log(logging.DEBUG, msg, args, kwargs)

    def info(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log(logging.INFO, msg, args, kwargs)

    def warning(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log(logging.WARNING, msg, args, kwargs)

    def error(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log(logging.ERROR, msg, args, kwargs)

    def exception(self, msg: str, *args: Any, **kwargs: Any) -> None:
        """Log at ERROR with the active exception's traceback."""
        kwargs.setdefault("exc_info", True)
        self._log(logging.ERROR, msg, args, kwargs)

    # ------------------------------------------------------------------ #
    #  Timing
    # ------------------------------------------------------------------ #

    class _Timer:
        def __init__(self, owner: QuarryLogger, label: str) -> None:
            self._owner = owner
            self._label = label
            self._start = 0.0
            self.elapsed = 0.0

        def __enter__(self) -> QuarryLogger._Timer:
            self._start = time.perf_counter()
            self._owner.debug("Started: %s", self._label)
            return self

        def __exit__(self, *exc: Any) -> None:
            self.elapsed = time.perf_counter() - self._start
            self._owner.info("Completed: %s (%.3f sec)", self._label, self.elapsed)

    def timed(self, label: str) -> _Timer:
        """Log start and finish of a block; ``elapsed`` is set on exit."""
        return self._Timer(self, label)

    # ------------------------------------------------------------------ #
    #  Properties
    # ------------------------------------------------------------------ #

    @property
    def tool_name(self) -> str:
        return self._tool_name

    @property
    def underlying(self) -> logging.Logger:
        """The wrapped stdlib :class:`logging.Logger`."""
        return self._logger
