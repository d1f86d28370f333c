"""
onto_services -- transition orchestration and side-effect collaborators.

Entry points:
    TransitionEngine.run_transition  -- one transition, end to end
    build_engine                     -- wire an engine from a TemplatePack
    register_standard_actions        -- the ten standard action handlers
"""

from onto_services.actions import register_standard_actions
from onto_services.document_store import (
    DocumentStore,
    InMemoryDocumentStore,
    SqlDocumentStore,
)
from onto_services.job_queue import InMemoryJobQueue, JobQueue, SqlJobQueue
from onto_services.transition_engine import TransitionEngine
from onto_services.wiring import EngineComponents, build_engine

__all__ = [
    "DocumentStore",
    "EngineComponents",
    "InMemoryDocumentStore",
    "InMemoryJobQueue",
    "JobQueue",
    "SqlDocumentStore",
    "SqlJobQueue",
    "TransitionEngine",
    "build_engine",
    "register_standard_actions",
]
