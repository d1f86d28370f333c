"""
onto_services.actions -- Standard action handler registrations.

Responsibility:
    Builds the handlers behind the ten standard action names and registers
    them with an ``ActionRegistry``.  Each handler bridges the executor's
    ``invoke(snapshot, context, *, dry_run, idempotency_key)`` contract to
    one collaborator (job queue, document store, entity store).

Architecture position:
    Services -- the single location that couples the action executor to
    concrete side effects.  Adding an action means one handler class and
    one ``registry.register()`` call here.

Usage:
    from onto_services.actions import register_standard_actions
    register_standard_actions(registry, job_queue, document_store, entity_store)
"""

from __future__ import annotations

from onto_kernel.domain.clock import Clock
from onto_kernel.services.action_executor import ActionRegistry
from onto_kernel.services.entity_store import EntityStore
from onto_services.actions.base import StandardActionHandler
from onto_services.actions.documents import document_actions
from onto_services.actions.entities import entity_actions
from onto_services.actions.queued import queued_actions
from onto_services.document_store import DocumentStore
from onto_services.job_queue import JobQueue

__all__ = ["StandardActionHandler", "register_standard_actions", "standard_actions"]


def standard_actions(
    job_queue: JobQueue,
    document_store: DocumentStore,
    entity_store: EntityStore,
    clock: Clock | None = None,
) -> list[StandardActionHandler]:
    return [
        *queued_actions(job_queue),
        *document_actions(document_store, clock),
        *entity_actions(entity_store),
    ]


def register_standard_actions(
    registry: ActionRegistry,
    job_queue: JobQueue,
    document_store: DocumentStore,
    entity_store: EntityStore,
    clock: Clock | None = None,
) -> None:
    """Register every standard handler under its own name.

    Postconditions:
        ``registry`` holds notify, email_user, email_admin,
        run_llm_critique, schedule_rrule, create_doc_from_template,
        create_research_doc, create_output, update_facets and spawn_tasks.
    """
    for handler in standard_actions(job_queue, document_store, entity_store, clock):
        registry.register(handler.name, handler)
