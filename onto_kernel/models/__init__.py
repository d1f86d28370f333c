"""ORM models for the ontology FSM kernel."""

from onto_kernel.models.document import OntoDocument
from onto_kernel.models.entity import OntoEntity
from onto_kernel.models.job import QueuedJob
from onto_kernel.models.template import OntoTemplate
from onto_kernel.models.transition_log import TransitionLogEntry

__all__ = [
    "OntoDocument",
    "OntoEntity",
    "OntoTemplate",
    "QueuedJob",
    "TransitionLogEntry",
]
