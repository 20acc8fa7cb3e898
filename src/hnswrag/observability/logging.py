"""
Structured single-line logging with per-command operation ids.
"""

import logging
import sys
import uuid
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import TextIO

# Operation id shared by every log line emitted for one shell command
op_id_ctx: ContextVar[str | None] = ContextVar("op_id", default=None)

_loggers: dict[str, "StructuredLogger"] = {}

# LogRecord attributes that are never rendered as extra fields
_RESERVED_ATTRS = frozenset(
    {
        "name",
        "msg",
        "args",
        "levelname",
        "levelno",
        "pathname",
        "filename",
        "module",
        "lineno",
        "funcName",
        "created",
        "msecs",
        "relativeCreated",
        "thread",
        "threadName",
        "processName",
        "process",
        "taskName",
        "getMessage",
        "exc_info",
        "exc_text",
        "stack_info",
        "message",
        "op_id",
        "ms",
    }
)


class StructuredFormatter(logging.Formatter):
    """Render records as ``t=... level=... op=... mod=... msg="..." k=v``."""

    def format(self, record: logging.LogRecord) -> str:
        op_id = op_id_ctx.get() or getattr(record, "op_id", None) or "-"
        mod = record.name.rsplit(".", 1)[-1]
        duration = getattr(record, "ms", None)
        ms_part = f" ms={duration:.1f}" if duration is not None else ""

        timestamp = datetime.fromtimestamp(record.created, UTC).isoformat()
        line = (
            f"t={timestamp} level={record.levelname} op={op_id} mod={mod} "
            f'fn={record.funcName}{ms_part} msg="{record.getMessage()}"'
        )

        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS:
                line += f" {key}={value}"

        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


class StructuredLogger:
    """Thin wrapper over :class:`logging.Logger` taking keyword fields."""

    def __init__(self, name: str):
        self.name = name
        self.logger = logging.getLogger(name)

    def _log(self, level: int, msg: str, exc_info: bool = False, **fields):
        extra = {k: v for k, v in fields.items() if k not in _RESERVED_ATTRS}
        if "ms" in fields:
            extra["ms"] = fields["ms"]
        extra["op_id"] = op_id_ctx.get()
        # stacklevel=3 reports the caller of debug()/info()/... as funcName
        self.logger.log(level, msg, extra=extra, exc_info=exc_info, stacklevel=3)

    def debug(self, msg: str, **fields):
        self._log(logging.DEBUG, msg, **fields)

    def info(self, msg: str, **fields):
        self._log(logging.INFO, msg, **fields)

    def warning(self, msg: str, **fields):
        self._log(logging.WARNING, msg, **fields)

    def error(self, msg: str, **fields):
        self._log(logging.ERROR, msg, **fields)

    def exception(self, msg: str, **fields):
        self._log(logging.ERROR, msg, exc_info=True, **fields)

    def timed(self, msg: str, duration_ms: float, **fields):
        """Log at INFO with a duration in milliseconds."""
        self._log(logging.INFO, msg, ms=duration_ms, **fields)


def get_logger(name: str) -> StructuredLogger:
    """Get (and cache) a structured logger for ``name``."""
    if name not in _loggers:
        _loggers[name] = StructuredLogger(name)
    return _loggers[name]


def setup_logging(level: str = "INFO", stream: TextIO | None = None) -> None:
    """Install the structured formatter on the root logger."""
    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(StructuredFormatter())

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def new_op_id() -> str:
    """Start a new operation and return its id."""
    op_id = uuid.uuid4().hex[:12]
    op_id_ctx.set(op_id)
    return op_id


def get_op_id() -> str | None:
    return op_id_ctx.get()


def clear_op_id() -> None:
    op_id_ctx.set(None)
