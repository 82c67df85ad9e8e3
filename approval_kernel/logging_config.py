"""
approval_kernel.logging_config -- JSON-lines logging for approval routing.

Every record is one JSON object.  Fields bound through ``LogContext``
(the request being routed, the acting user, the document) are merged
into each record emitted inside the binding, so a single request's
history can be reassembled from the log stream with a filter on
``request_id``.

Kernel exceptions attached with ``exc_info`` contribute their ``code``
and public attributes as ``exc_*`` fields.
"""

__all__ = [
    "CONTEXT_FIELDS",
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
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, date, datetime
from decimal import Decimal
from enum import Enum
from types import MappingProxyType
from typing import Any
from uuid import UUID

ROOT_LOGGER = "approval_kernel"

CONTEXT_FIELDS: tuple[str, ...] = (
    "correlation_id",
    "request_id",
    "workflow_id",
    "step_id",
    "actor_id",
    "entity_type",
    "entity_id",
)

_EMPTY: Mapping[str, str] = MappingProxyType({})
_bound: ContextVar[Mapping[str, str]] = ContextVar("approval_log_context", default=_EMPTY)


class LogContext:
    """Request-scoped fields carried by every record (contextvar backed)."""

    @staticmethod
    def _merged(fields: Mapping[str, Any]) -> Mapping[str, str]:
        current = dict(_bound.get())
        for key, value in fields.items():
            if key in CONTEXT_FIELDS and value is not None:
                current[key] = str(value)
        return MappingProxyType(current)

    @classmethod
    def set(cls, **fields: Any) -> None:
        """Overlay ``fields`` on the current context.  None values are ignored."""
        _bound.set(cls._merged(fields))

    @classmethod
    def get_all(cls) -> dict[str, str]:
        return dict(_bound.get())

    @classmethod
    def clear(cls) -> None:
        _bound.set(_EMPTY)

    @classmethod
    @contextmanager
    def bind(cls, **fields: Any) -> Iterator[type["LogContext"]]:
        """Bind ``fields`` for the duration of the block, then restore."""
        token = _bound.set(cls._merged(fields))
        try:
            yield cls
        finally:
            _bound.reset(token)


# Attributes every LogRecord has; anything else came in through ``extra``.
_RECORD_ATTRS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "taskName"}


def _jsonable(value: Any) -> Any:
    if isinstance(value, (UUID, Decimal)):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (set, frozenset)):
        return sorted(str(v) for v in value)
    return str(value)


class StructuredFormatter(logging.Formatter):
    """One JSON object per record: ts, level, logger, message, context, extras."""

    def format(self, record: logging.LogRecord) -> str:
        out: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        out.update(_bound.get())
        out.update(
            (key, value)
            for key, value in vars(record).items()
            if key not in _RECORD_ATTRS and key not in out
        )

        if record.exc_info and record.exc_info[1] is not None:
            out.update(self._exception_fields(record.exc_info[1]))
            out["traceback"] = self.formatException(record.exc_info)

        return json.dumps(out, default=_jsonable)

    @staticmethod
    def _exception_fields(exc: BaseException) -> dict[str, Any]:
        fields: dict[str, Any] = {
            "exc_type": type(exc).__name__,
            "exc_message": str(exc),
        }
        code = getattr(exc, "code", None)
        if code is not None:
            fields["exc_code"] = code
        fields.update(
            (f"exc_{name}", value)
            for name, value in vars(exc).items()
            if not name.startswith("_")
        )
        return fields


def get_logger(name: str) -> logging.Logger:
    """Logger named ``approval_kernel.<name>``."""
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")


_state_lock = threading.Lock()
_installed_handler: logging.Handler | None = None


def configure_logging(
    *,
    level: int = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """Attach a JSON handler to the ``approval_kernel`` logger.

    Only the first call has an effect until ``reset_logging()``.
    """
    global _installed_handler
    with _state_lock:
        if _installed_handler is not None:
            return
        _installed_handler = handler or logging.StreamHandler(stream or sys.stderr)

    _installed_handler.setFormatter(StructuredFormatter())
    root = logging.getLogger(ROOT_LOGGER)
    root.setLevel(level)
    root.propagate = False
    root.addHandler(_installed_handler)


def reset_logging() -> None:
    """Detach every handler from the ``approval_kernel`` logger (test support)."""
    global _installed_handler
    with _state_lock:
        _installed_handler = None
    root = logging.getLogger(ROOT_LOGGER)
    root.handlers.clear()
    root.setLevel(logging.WARNING)
