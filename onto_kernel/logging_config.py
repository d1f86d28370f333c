"""
Structured JSON logging for the ontology FSM kernel.

Every record is one JSON line: a fixed envelope (``ts``, ``level``,
``logger``, ``message``), the transition fields bound in ``LogContext``,
then the record's ``extra=`` fields.  Kernel values (``ActionRecord``,
``GuardFailure``, frozen props, ``ActionStatus``) are serialised through
their ``to_dict()`` or plain-container form, and anything else falls back
to ``str()`` so a log call never raises.
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
from collections.abc import Mapping
from contextvars import ContextVar, Token
from datetime import UTC, date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

# ---------------------------------------------------------------------------
# Transition context
# ---------------------------------------------------------------------------

# Order is the order the fields appear in each JSON line.
CONTEXT_FIELDS: tuple[str, ...] = (
    "correlation_id",
    "actor_id",
    "entity_type",
    "entity_id",
    "transition_id",
    "idempotency_key",
)

_CONTEXT_VARS: dict[str, ContextVar[str | None]] = {
    name: ContextVar(f"onto_log_{name}", default=None) for name in CONTEXT_FIELDS
}


class LogContext:
    """Per-request transition fields, carried on contextvars.

    The engine binds ``correlation_id`` and ``actor_id`` for the whole call,
    then the entity and transition ids as soon as it knows them, so every
    line logged underneath (resolver, committer, action handlers) can be
    joined back to the one ``fsm_transition`` trace.
    """

    @classmethod
    def set(cls, **fields: str | None) -> None:
        """Set context fields; None values are skipped."""
        unknown = set(fields) - set(CONTEXT_FIELDS)
        if unknown:
            raise TypeError(f"unknown log context field(s): {', '.join(sorted(unknown))}")
        for name, value in fields.items():
            if value is not None:
                _CONTEXT_VARS[name].set(value)

    @classmethod
    def get_all(cls) -> dict[str, str]:
        """Bound fields only, in ``CONTEXT_FIELDS`` order."""
        return {
            name: value
            for name in CONTEXT_FIELDS
            if (value := _CONTEXT_VARS[name].get()) is not None
        }

    @classmethod
    def clear(cls) -> None:
        for var in _CONTEXT_VARS.values():
            var.set(None)

    @classmethod
    def bind(cls, **fields: str | None) -> "_BoundContext":
        """Set fields for the duration of a ``with`` block.

        Unknown names and None values are ignored, so callers can pass
        optional request fields straight through.
        """
        return _BoundContext(fields)


class _BoundContext:

    def __init__(self, fields: Mapping[str, str | None]):
        self._fields = {
            name: value for name, value in fields.items()
            if value is not None and name in _CONTEXT_VARS
        }
        self._tokens: list[tuple[str, Token[str | None]]] = []

    def __enter__(self) -> type[LogContext]:
        for name, value in self._fields.items():
            self._tokens.append((name, _CONTEXT_VARS[name].set(value)))
        return LogContext

    def __exit__(self, *exc: Any) -> None:
        while self._tokens:
            name, token = self._tokens.pop()
            _CONTEXT_VARS[name].reset(token)


# ---------------------------------------------------------------------------
# JSON Formatter
# ---------------------------------------------------------------------------

_STDLIB_KEYS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None)).keys()
) | {"message", "taskName"}


def _json_default(obj: Any) -> Any:
    """Fallback for values ``json`` cannot encode on its own."""
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, Mapping):
        # MappingProxyType from frozen snapshots and contexts
        return dict(obj)
    if isinstance(obj, (set, frozenset)):
        return sorted(obj, key=str)
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, (UUID, Decimal)):
        return str(obj)
    return str(obj)


def _exception_fields(exc: BaseException) -> dict[str, Any]:
    fields: dict[str, Any] = {
        "exc_type": type(exc).__name__,
        "exc_message": str(exc),
    }
    code = getattr(exc, "code", None)
    if code is not None:
        fields["exc_code"] = code
    # Structured attributes of kernel errors (entity_id, expected_state, failures, ...)
    for name, value in vars(exc).items():
        if not name.startswith("_") and name not in ("args", "code"):
            fields[f"exc_{name}"] = value
    return fields


class StructuredFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(LogContext.get_all())

        for key, value in vars(record).items():
            if key not in _STDLIB_KEYS and key not in payload:
                payload[key] = value

        if record.exc_info and record.exc_info[1] is not None:
            payload.update(_exception_fields(record.exc_info[1]))
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=_json_default)


# ---------------------------------------------------------------------------
# Logger factory
# ---------------------------------------------------------------------------

_LOGGER_PREFIX = "onto_kernel"


def get_logger(name: str) -> logging.Logger:
    """Get a logger under the onto_kernel namespace."""
    return logging.getLogger(f"{_LOGGER_PREFIX}.{name}")


# ---------------------------------------------------------------------------
# Initialization
# ---------------------------------------------------------------------------

_configured = False
_lock = threading.Lock()


def configure_logging(
    *,
    level: int | str = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """Attach one JSON handler to the ``onto_kernel`` logger.

    Only the first call has an effect; ``init_engine_from_url`` calls this
    with the defaults, so an embedding application that wants a different
    level or handler must configure first.
    """
    global _configured
    with _lock:
        if _configured:
            return
        _configured = True

    kernel_logger = logging.getLogger(_LOGGER_PREFIX)
    kernel_logger.setLevel(level)
    kernel_logger.propagate = False

    target = handler if handler is not None else logging.StreamHandler(stream or sys.stderr)
    target.setFormatter(StructuredFormatter())
    kernel_logger.addHandler(target)


def reset_logging() -> None:
    """Undo ``configure_logging``.  Tests only."""
    global _configured
    with _lock:
        _configured = False
    kernel_logger = logging.getLogger(_LOGGER_PREFIX)
    kernel_logger.handlers.clear()
    kernel_logger.setLevel(logging.WARNING)
