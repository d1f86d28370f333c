"""
Actions that create documents for the transitioning entity.

``create_doc_from_template`` renders a markdown body for ``template_key``,
``create_research_doc`` a research-notes body, and ``create_output`` an
output document named by its params.  The derived idempotency key is the
document's dedup key.
"""

from __future__ import annotations

from typing import Any

from onto_kernel.domain.clock import Clock, SystemClock
from onto_kernel.domain.transition import ActionContext, ActionRecord, EntitySnapshot
from onto_kernel.exceptions import ActionFailure
from onto_kernel.utils.freezing import thaw
from onto_services.actions.base import StandardActionHandler, entity_payload, require_str_param
from onto_services.actions.renderers import (
    RESEARCH_NOTES,
    build_render_context,
    render_document,
    render_text,
)
from onto_services.document_store import DocumentStore

DEFAULT_OUTPUT_TYPE_KEY = "output.default"


class DocumentAction(StandardActionHandler):
    """Render one document and hand it to the document store."""

    def __init__(self, document_store: DocumentStore, clock: Clock | None = None) -> None:
        self._document_store = document_store
        self._clock = clock or SystemClock()

    def template_key(self, context: ActionContext) -> str:
        raise NotImplementedError

    def title(self, snapshot: EntitySnapshot, context: ActionContext, render_context: dict) -> str:
        title_template = context.params.get("title")
        if isinstance(title_template, str) and title_template:
            return render_text(title_template, render_context)
        return render_context["entity_name"]

    def describe(self, snapshot: EntitySnapshot, context: ActionContext) -> str:
        return (
            f"create {self.template_key(context)} document for "
            f"{snapshot.entity_type} {snapshot.id}"
        )

    def execute(
        self,
        snapshot: EntitySnapshot,
        context: ActionContext,
        idempotency_key: str | None,
    ) -> ActionRecord:
        template_key = self.template_key(context)
        variables = context.params.get("variables") or {}
        render_context = build_render_context(snapshot, variables)
        title = self.title(snapshot, context, render_context)
        body = render_document(template_key, snapshot, render_context, self._clock.now())

        props: dict[str, Any] = {
            "variables": thaw(variables),
            "generated_by_fsm": True,
            "source_entity": {
                "id": snapshot.id,
                "type_key": snapshot.type_key,
                "state_key": snapshot.state_key,
            },
            "origin": entity_payload(snapshot, context),
        }
        document_id, created = self._document_store.create_document(
            type_key=template_key,
            title=title,
            body_markdown=body,
            source_entity_type=snapshot.entity_type,
            source_entity_id=snapshot.id,
            created_by=context.actor_id,
            project_id=snapshot.project_id,
            props=props,
            dedup_key=idempotency_key,
        )
        output = {"document_id": document_id, "title": title, "template_key": template_key}
        if not created:
            return self.duplicate(output)
        return ActionRecord.success(self.name, detail=f"created '{title}'", output=output)


class CreateDocFromTemplateAction(DocumentAction):
    name = "create_doc_from_template"

    def check_params(self, snapshot: EntitySnapshot, context: ActionContext) -> None:
        require_str_param(context, self.name, "template_key")

    def template_key(self, context: ActionContext) -> str:
        return context.params["template_key"]


class CreateResearchDocAction(DocumentAction):
    name = "create_research_doc"

    def template_key(self, context: ActionContext) -> str:
        return RESEARCH_NOTES

    def title(self, snapshot: EntitySnapshot, context: ActionContext, render_context: dict) -> str:
        if context.params.get("title"):
            return super().title(snapshot, context, render_context)
        topic = (context.params.get("variables") or {}).get("topic")
        return f"Research Notes: {topic or render_context['entity_name']}"


class CreateOutputAction(DocumentAction):
    name = "create_output"

    def check_params(self, snapshot: EntitySnapshot, context: ActionContext) -> None:
        for key in ("type_key", "name"):
            value = context.params.get(key)
            if value is not None and not isinstance(value, str):
                raise ActionFailure(self.name, f"'{key}' must be a string")

    def template_key(self, context: ActionContext) -> str:
        return context.params.get("type_key") or DEFAULT_OUTPUT_TYPE_KEY

    def title(self, snapshot: EntitySnapshot, context: ActionContext, render_context: dict) -> str:
        name = context.params.get("name")
        if name:
            return render_text(name, render_context)
        return super().title(snapshot, context, render_context)


def document_actions(document_store: DocumentStore, clock: Clock | None = None) -> list[DocumentAction]:
    return [
        CreateDocFromTemplateAction(document_store, clock),
        CreateResearchDocAction(document_store, clock),
        CreateOutputAction(document_store, clock),
    ]
