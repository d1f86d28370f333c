"""Kernel services: stores, resolver, committer, action pipeline."""

from onto_kernel.services.action_executor import (
    ActionExecutor,
    ActionHandler,
    ActionRegistry,
)
from onto_kernel.services.entity_store import (
    EntityStore,
    InMemoryEntityStore,
    SqlEntityStore,
)
from onto_kernel.services.result_aggregator import (
    aggregate_failure,
    aggregate_success,
    error_code_for,
)
from onto_kernel.services.state_committer import CommitOutcome, StateCommitter
from onto_kernel.services.template_resolver import TemplateCache, TemplateResolver
from onto_kernel.services.template_store import (
    InMemoryTemplateStore,
    SqlTemplateStore,
    TemplateStore,
)

__all__ = [
    "ActionExecutor",
    "ActionHandler",
    "ActionRegistry",
    "CommitOutcome",
    "EntityStore",
    "InMemoryEntityStore",
    "InMemoryTemplateStore",
    "SqlEntityStore",
    "SqlTemplateStore",
    "StateCommitter",
    "TemplateCache",
    "TemplateResolver",
    "TemplateStore",
    "aggregate_failure",
    "aggregate_success",
    "error_code_for",
]
