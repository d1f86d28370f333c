"""
Transition request validation (``onto_kernel.domain.request_validation``).

Boundary check for inbound transition payloads.  Collects every problem
before raising so the caller sees all field errors at once, the way the
config validator reports all violations rather than the first.

Pure: no I/O.
"""

from __future__ import annotations

from collections.abc import Collection, Mapping
from typing import Any

from onto_kernel.domain.transition import TransitionRequest
from onto_kernel.exceptions import TransitionValidationError

REQUIRED_STRING_FIELDS: tuple[str, ...] = ("entity_type", "entity_id", "on")
OPTIONAL_FIELDS: frozenset[str] = frozenset({"dry_run", "idempotency_key"})
ALLOWED_FIELDS: frozenset[str] = frozenset(REQUIRED_STRING_FIELDS) | OPTIONAL_FIELDS

MAX_IDEMPOTENCY_KEY_LENGTH = 255

# Per-action keys are "<request key>:<transition id>:<index>:<action>" and
# transition ids may contain ":", so the request key must not.
IDEMPOTENCY_KEY_SEPARATOR = ":"


def _error(field_name: str, message: str) -> dict[str, str]:
    return {"field": field_name, "message": message}


def validate_transition_request(
    payload: Mapping[str, Any],
    allowed_entity_types: Collection[str] | None = None,
) -> TransitionRequest:
    """Validate a raw payload and build a ``TransitionRequest``.

    Args:
        payload: Decoded request body.
        allowed_entity_types: If given, ``entity_type`` must be one of these.

    Raises:
        TransitionValidationError: with one entry per problem found.
    """
    if not isinstance(payload, Mapping):
        raise TransitionValidationError(
            [_error("payload", f"expected an object, got {type(payload).__name__}")]
        )

    errors: list[dict[str, str]] = []

    for name in sorted(set(payload) - ALLOWED_FIELDS, key=str):
        errors.append(_error(str(name), "unrecognized field"))

    for name in REQUIRED_STRING_FIELDS:
        if name not in payload or payload[name] is None:
            errors.append(_error(name, "is required"))
            continue
        value = payload[name]
        if not isinstance(value, str):
            errors.append(_error(name, f"must be a string, got {type(value).__name__}"))
        elif not value.strip():
            errors.append(_error(name, "must not be blank"))

    entity_type = payload.get("entity_type")
    if (
        allowed_entity_types is not None
        and isinstance(entity_type, str)
        and entity_type.strip()
        and entity_type not in allowed_entity_types
    ):
        errors.append(_error(
            "entity_type",
            f"'{entity_type}' is not one of {sorted(allowed_entity_types)}",
        ))

    dry_run = payload.get("dry_run", False)
    if not isinstance(dry_run, bool):
        errors.append(_error("dry_run", f"must be a boolean, got {type(dry_run).__name__}"))

    idempotency_key = payload.get("idempotency_key")
    if idempotency_key is not None:
        if not isinstance(idempotency_key, str):
            errors.append(_error(
                "idempotency_key",
                f"must be a string, got {type(idempotency_key).__name__}",
            ))
        elif not idempotency_key.strip():
            errors.append(_error("idempotency_key", "must not be blank"))
        elif len(idempotency_key) > MAX_IDEMPOTENCY_KEY_LENGTH:
            errors.append(_error(
                "idempotency_key",
                f"must be at most {MAX_IDEMPOTENCY_KEY_LENGTH} characters",
            ))
        elif IDEMPOTENCY_KEY_SEPARATOR in idempotency_key:
            errors.append(_error(
                "idempotency_key", f"must not contain '{IDEMPOTENCY_KEY_SEPARATOR}'",
            ))

    if errors:
        raise TransitionValidationError(errors)

    return TransitionRequest(
        entity_type=payload["entity_type"],
        entity_id=payload["entity_id"],
        on=payload["on"],
        dry_run=dry_run,
        idempotency_key=idempotency_key,
    )
