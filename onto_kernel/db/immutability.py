"""
ORM-level append-only enforcement for the transition log.

SQLAlchemy fires ``before_update`` / ``before_delete`` before the SQL is
sent; the listeners here raise ImmutabilityViolationError so the flush is
aborted and the database is never modified.

    session.flush()
         |
         v
    [before_update] --> _check_transition_log_update() --> ImmutabilityViolationError
    [before_delete] --> _check_transition_log_delete() --> ImmutabilityViolationError

Bulk ``update()``/``delete()`` statements bypass mapper events; nothing in
the kernel issues them against the log.

Usage:
    from onto_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # once at startup (idempotent)
"""

from sqlalchemy import event

from onto_kernel.exceptions import ImmutabilityViolationError
from onto_kernel.logging_config import get_logger

logger = get_logger("db.immutability")


def _check_transition_log_update(mapper, connection, target):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": "TransitionLogEntry",
            "entity_id": str(target.id),
            "operation": "UPDATE",
        },
    )
    raise ImmutabilityViolationError(
        entity_type="TransitionLogEntry",
        entity_id=str(target.id),
        reason="Transition log entries are append-only and cannot be modified",
    )


def _check_transition_log_delete(mapper, connection, target):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": "TransitionLogEntry",
            "entity_id": str(target.id),
            "operation": "DELETE",
        },
    )
    raise ImmutabilityViolationError(
        entity_type="TransitionLogEntry",
        entity_id=str(target.id),
        reason="Transition log entries cannot be deleted",
    )


_LISTENERS = (
    ("before_update", _check_transition_log_update),
    ("before_delete", _check_transition_log_delete),
)


def register_immutability_listeners() -> None:
    """Register the append-only listeners.  Safe to call more than once."""
    from onto_kernel.models.transition_log import TransitionLogEntry

    for event_name, listener_fn in _LISTENERS:
        if not event.contains(TransitionLogEntry, event_name, listener_fn):
            event.listen(TransitionLogEntry, event_name, listener_fn)


def unregister_immutability_listeners() -> None:
    """
    Remove the listeners.

    WARNING: Only use this in tests that intentionally violate the rule.
    """
    from onto_kernel.models.transition_log import TransitionLogEntry

    for event_name, listener_fn in _LISTENERS:
        if event.contains(TransitionLogEntry, event_name, listener_fn):
            event.remove(TransitionLogEntry, event_name, listener_fn)
