"""
onto_services.wiring -- assembles a ``TransitionEngine`` from a template pack.

Responsibility:
    The one place that turns configuration (``TemplatePack``) into live
    kernel components: template store and resolver, action registry with
    the standard handlers, executor, committer and engine.  With a session
    factory the SQL-backed stores are used and the pack's templates are
    seeded into ``onto_templates``; without one everything is in memory.

Architecture position:
    Services -- composition root.  Imports onto_config (the pack) and
    onto_kernel; nothing in the kernel imports this module.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

from sqlalchemy.orm import Session, sessionmaker

from onto_config.bridges import build_template_store, seed_sql_templates
from onto_config.schema import TemplatePack
from onto_kernel.db.engine import session_scope
from onto_kernel.db.immutability import register_immutability_listeners
from onto_kernel.domain.clock import Clock, SystemClock
from onto_kernel.domain.guards import GuardEvaluator
from onto_kernel.services.action_executor import ActionExecutor, ActionRegistry
from onto_kernel.services.entity_store import EntityStore, InMemoryEntityStore, SqlEntityStore
from onto_kernel.services.state_committer import StateCommitter
from onto_kernel.services.template_resolver import TemplateResolver
from onto_kernel.services.template_store import SqlTemplateStore, TemplateStore
from onto_services.actions import register_standard_actions
from onto_services.document_store import (
    DocumentStore,
    InMemoryDocumentStore,
    SqlDocumentStore,
)
from onto_services.job_queue import InMemoryJobQueue, JobQueue, SqlJobQueue
from onto_services.transition_engine import TransitionEngine


@dataclass(frozen=True)
class EngineComponents:
    """The engine plus the collaborators it was wired with."""

    engine: TransitionEngine
    template_store: TemplateStore
    entity_store: EntityStore
    job_queue: JobQueue
    document_store: DocumentStore
    registry: ActionRegistry


def build_engine(
    pack: TemplatePack,
    session_factory: sessionmaker[Session] | None = None,
    *,
    entity_store: EntityStore | None = None,
    job_queue: JobQueue | None = None,
    document_store: DocumentStore | None = None,
    clock: Clock | None = None,
    outcome_sink: Callable[[dict], None] | None = None,
) -> EngineComponents:
    """Wire a ``TransitionEngine`` for ``pack``.

    Postconditions:
        - Every standard action is registered.
        - With ``session_factory``: the pack's templates are upserted into
          ``onto_templates`` (the tables must exist) and the transition log
          immutability listeners are registered.

    Explicitly passed collaborators win over the defaults.
    """
    clock = clock or SystemClock()
    settings = pack.settings

    if session_factory is not None:
        register_immutability_listeners()
        with session_scope(session_factory) as session:
            seed_sql_templates(session, pack)
        template_store: TemplateStore = SqlTemplateStore(session_factory)
        entity_store = entity_store or SqlEntityStore(session_factory)
        job_queue = job_queue or SqlJobQueue(session_factory)
        document_store = document_store or SqlDocumentStore(session_factory)
    else:
        template_store = build_template_store(pack)
        entity_store = entity_store or InMemoryEntityStore()
        job_queue = job_queue or InMemoryJobQueue()
        document_store = document_store or InMemoryDocumentStore()

    registry = ActionRegistry()
    register_standard_actions(registry, job_queue, document_store, entity_store, clock)

    engine = TransitionEngine(
        resolver=TemplateResolver(template_store, max_depth=settings.max_inheritance_depth),
        entity_store=entity_store,
        executor=ActionExecutor(registry, budget_seconds=settings.action_budget_seconds),
        committer=StateCommitter(entity_store, clock),
        evaluator=GuardEvaluator(),
        allowed_entity_types=settings.allowed_entity_types,
        outcome_sink=outcome_sink,
    )
    return EngineComponents(
        engine=engine,
        template_store=template_store,
        entity_store=entity_store,
        job_queue=job_queue,
        document_store=document_store,
        registry=registry,
    )
