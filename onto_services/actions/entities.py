"""
Actions that mutate entities through the ``EntityStore``.

``update_facets`` merges string facets into ``props.facets``; it is
naturally idempotent.  ``spawn_tasks`` creates ``todo`` tasks; with an
idempotency key the task ids are derived from it, so a replay finds the
tasks already present and creates nothing.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any
from uuid import NAMESPACE_URL, uuid5

from onto_kernel.domain.transition import ActionContext, ActionRecord, EntitySnapshot
from onto_kernel.exceptions import ActionFailure
from onto_kernel.services.entity_store import EntityStore
from onto_kernel.utils.freezing import thaw
from onto_services.actions.base import StandardActionHandler

TASK_ENTITY_TYPE = "task"
DEFAULT_TASK_TYPE_KEY = "task.default"
SPAWNED_TASK_STATE = "todo"


def sanitize_facets(raw: Any) -> dict[str, str]:
    """Keep only string-valued facets."""
    if not isinstance(raw, Mapping):
        return {}
    return {str(k): v for k, v in raw.items() if isinstance(v, str)}


class UpdateFacetsAction(StandardActionHandler):
    name = "update_facets"

    def __init__(self, entity_store: EntityStore) -> None:
        self._entity_store = entity_store

    def check_params(self, snapshot: EntitySnapshot, context: ActionContext) -> None:
        if not sanitize_facets(context.params.get("facets")):
            raise ActionFailure(self.name, "requires a 'facets' mapping of strings")

    def describe(self, snapshot: EntitySnapshot, context: ActionContext) -> str:
        facets = sanitize_facets(context.params.get("facets"))
        return f"set facets {sorted(facets.items())} on {snapshot.entity_type} {snapshot.id}"

    def execute(
        self,
        snapshot: EntitySnapshot,
        context: ActionContext,
        idempotency_key: str | None,
    ) -> ActionRecord:
        # Merged against the stored facets in one write, not the request-time snapshot.
        facets = self._entity_store.merge_facets(
            snapshot.entity_type, snapshot.id, sanitize_facets(context.params.get("facets")),
        )
        return ActionRecord.success(self.name, output={"facets": facets})


class SpawnTasksAction(StandardActionHandler):
    name = "spawn_tasks"

    def __init__(self, entity_store: EntityStore) -> None:
        self._entity_store = entity_store

    def check_params(self, snapshot: EntitySnapshot, context: ActionContext) -> None:
        titles = context.params.get("titles")
        if (
            not isinstance(titles, (list, tuple))
            or not titles
            or not all(isinstance(t, str) and t.strip() for t in titles)
        ):
            raise ActionFailure(self.name, "requires a non-empty 'titles' list of strings")
        template = context.params.get("props_template")
        if template is not None and not isinstance(template, Mapping):
            raise ActionFailure(self.name, "'props_template' must be a mapping")

    def describe(self, snapshot: EntitySnapshot, context: ActionContext) -> str:
        return f"create {len(context.params['titles'])} tasks from {snapshot.entity_type} {snapshot.id}"

    def build_rows(
        self,
        snapshot: EntitySnapshot,
        context: ActionContext,
        idempotency_key: str | None,
    ) -> list[dict[str, Any]]:
        props: dict[str, Any] = thaw(context.params.get("props_template") or {})
        props["spawned_from"] = {"entity_type": snapshot.entity_type, "entity_id": snapshot.id}
        if context.params.get("plan_id"):
            props["plan_id"] = context.params["plan_id"]
        rows = []
        for index, title in enumerate(context.params["titles"]):
            row: dict[str, Any] = {
                "type_key": context.params.get("type_key") or DEFAULT_TASK_TYPE_KEY,
                "state_key": SPAWNED_TASK_STATE,
                "project_id": snapshot.project_id,
                "name": title,
                "props": props,
            }
            if idempotency_key:
                row["id"] = str(uuid5(NAMESPACE_URL, f"{idempotency_key}:{index}"))
            rows.append(row)
        return rows

    def execute(
        self,
        snapshot: EntitySnapshot,
        context: ActionContext,
        idempotency_key: str | None,
    ) -> ActionRecord:
        rows = self.build_rows(snapshot, context, idempotency_key)
        created = self._entity_store.create_entities(TASK_ENTITY_TYPE, rows)
        output = {"task_ids": created}
        if idempotency_key and not created:
            return self.duplicate({"task_ids": [row["id"] for row in rows]})
        return ActionRecord.success(self.name, detail=f"{len(created)} tasks", output=output)


def entity_actions(entity_store: EntityStore) -> list[StandardActionHandler]:
    return [UpdateFacetsAction(entity_store), SpawnTasksAction(entity_store)]
