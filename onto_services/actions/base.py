"""
Common shape of the standard action handlers.

Every handler validates its params first (so a misconfigured template shows
up as a failed action even in a dry run), then either describes the planned
effect (dry run) or performs it through its collaborator.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from onto_kernel.domain.transition import ActionContext, ActionRecord, EntitySnapshot
from onto_kernel.exceptions import ActionFailure
from onto_kernel.services.action_executor import DETAIL_DRY_RUN, DETAIL_DUPLICATE_SUPPRESSED


class StandardActionHandler:
    """Base for handlers registered by ``register_standard_actions``.

    Contract:
        Subclasses set ``name`` and implement ``describe`` and ``execute``.
        ``check_params`` raises ``ActionFailure`` on bad params; the executor
        records it as a failed action.

    Guarantees:
        A dry run never reaches ``execute``.
    """

    name: str = ""

    def invoke(
        self,
        snapshot: EntitySnapshot,
        context: ActionContext,
        *,
        dry_run: bool,
        idempotency_key: str | None,
    ) -> ActionRecord:
        self.check_params(snapshot, context)
        if dry_run:
            return ActionRecord.skipped(
                self.name,
                DETAIL_DRY_RUN,
                output={"planned": self.describe(snapshot, context)},
            )
        return self.execute(snapshot, context, idempotency_key)

    def check_params(self, snapshot: EntitySnapshot, context: ActionContext) -> None:
        return None

    def describe(self, snapshot: EntitySnapshot, context: ActionContext) -> str:
        raise NotImplementedError

    def execute(
        self,
        snapshot: EntitySnapshot,
        context: ActionContext,
        idempotency_key: str | None,
    ) -> ActionRecord:
        raise NotImplementedError

    def duplicate(self, output: Mapping[str, Any] | None = None) -> ActionRecord:
        return ActionRecord.success(self.name, DETAIL_DUPLICATE_SUPPRESSED, output=output)


def entity_payload(snapshot: EntitySnapshot, context: ActionContext) -> dict[str, Any]:
    """Fields every queued job and created document carries about its source."""
    return {
        "entity_type": snapshot.entity_type,
        "entity_id": snapshot.id,
        "type_key": snapshot.type_key,
        "project_id": snapshot.project_id,
        "from_state": context.from_state,
        "to_state": context.to_state,
        "transition_id": context.transition_id,
        "actor_id": context.actor_id,
        "user_id": context.user_id,
    }


def require_str_param(context: ActionContext, action_name: str, key: str) -> str:
    value = context.params.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ActionFailure(action_name, f"requires a '{key}' string param")
    return value
