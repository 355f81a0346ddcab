"""
Structured JSON logging for the fund management kernel.

Every kernel logger lives under ``fms_kernel``.  Each record is one JSON
line: the event name (``stage_approved``, ``budget_exceeded``,
``approve_stage_rejected``...) as ``message``, the ``extra`` fields the
service passed, and the DV and actor the current operation is acting on.

Services bind the DV around an operation; ``BaseService._run`` binds the
actor:

    with LogContext.bind(dv_id=str(dv_id)):
        return self._run("approve_stage", actor, work, dv_id=dv_id)

Amounts are written with ``str(Decimal)`` so ``"15000.00"`` never turns
into a float.
"""

__all__ = [
    "StructuredFormatter",
    "LogContext",
    "get_logger",
    "configure_logging",
    "reset_logging",
]

import json
import logging
import sys
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, date, datetime
from typing import Any

from fms_kernel.exceptions import FmsKernelError

ROOT_LOGGER = "fms_kernel"


class LogContext:
    """DV and actor ids attached to every record logged inside an operation."""

    _fields: dict[str, ContextVar[str | None]] = {
        "dv_id": ContextVar("fms_log_dv_id", default=None),
        "actor_id": ContextVar("fms_log_actor_id", default=None),
    }

    @classmethod
    def get_all(cls) -> dict[str, str]:
        bound: dict[str, str] = {}
        for name, var in cls._fields.items():
            value = var.get()
            if value is not None:
                bound[name] = value
        return bound

    @classmethod
    def clear(cls) -> None:
        for var in cls._fields.values():
            var.set(None)

    @classmethod
    @contextmanager
    def bind(cls, **fields: Any) -> Iterator[None]:
        """
        Bind ``fields`` for the duration of the block, restoring the outer
        values on exit.  ``None`` leaves a field as it was.

        Raises:
            ValueError: a field other than ``dv_id`` or ``actor_id``.
        """
        unknown = set(fields) - set(cls._fields)
        if unknown:
            raise ValueError(f"Unknown log context fields: {sorted(unknown)}")
        tokens = [
            (cls._fields[name], cls._fields[name].set(str(value)))
            for name, value in fields.items()
            if value is not None
        ]
        try:
            yield
        finally:
            for var, token in reversed(tokens):
                var.reset(token)


_RECORD_ATTRS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "taskName"}


def _json_default(value: Any) -> str:
    # UUID ids and Decimal amounts; anything else falls back to str() too
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


class StructuredFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(LogContext.get_all())
        for key, value in vars(record).items():
            if key not in _RECORD_ATTRS and key not in payload:
                payload[key] = value

        if record.exc_info and record.exc_info[1] is not None:
            exc = record.exc_info[1]
            payload["exc_type"] = type(exc).__name__
            payload["exc_message"] = str(exc)
            if isinstance(exc, FmsKernelError):
                payload["exc_code"] = exc.code
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=_json_default)


def get_logger(name: str) -> logging.Logger:
    """``get_logger("services.payment")`` -> ``fms_kernel.services.payment``."""
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")


_configured = False
_configure_lock = threading.Lock()


def configure_logging(
    *,
    level: int = logging.INFO,
    handler: logging.Handler | None = None,
) -> None:
    """
    Attach one JSON handler (stderr unless ``handler`` is given) to the
    ``fms_kernel`` logger.  Later calls are no-ops until ``reset_logging``.
    """
    global _configured
    with _configure_lock:
        if _configured:
            return
        _configured = True

    root = logging.getLogger(ROOT_LOGGER)
    root.setLevel(level)
    root.propagate = False
    target = handler if handler is not None else logging.StreamHandler(sys.stderr)
    target.setFormatter(StructuredFormatter())
    root.addHandler(target)


def reset_logging() -> None:
    """Drop the kernel handlers so the next ``configure_logging`` applies.  Tests only."""
    global _configured
    with _configure_lock:
        _configured = False
    root = logging.getLogger(ROOT_LOGGER)
    root.handlers.clear()
    root.setLevel(logging.WARNING)
