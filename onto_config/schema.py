"""
Template configuration schema.

Defines the human-authored, reviewable source artifact for FSM templates
and engine settings.  YAML fragments are parsed into these types by the
loader and composed by the assembler; bridges turn them into kernel
template records.

Key distinction:
  TemplatePack   = source artifact (human-authored, versioned, checksummed)
  TemplateRecord = kernel runtime node (parsed FsmDefinition, see bridges)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class EngineSettings:
    """Engine-wide knobs from ``engine.yaml``.

    Attributes:
        action_budget_seconds: Wall-clock budget for one action pipeline.
        max_inheritance_depth: Most templates one inheritance chain may hold.
        allowed_entity_types: If set, transition requests for other entity
            types are rejected with VALIDATION_ERROR.
        database_url: SQLAlchemy URL for the SQL stores (None = in-memory).
            ``ONTO_FSM_DATABASE_URL`` overrides it.
    """

    action_budget_seconds: float = 30.0
    max_inheritance_depth: int = 10
    allowed_entity_types: tuple[str, ...] | None = None
    database_url: str | None = None


@dataclass(frozen=True)
class TemplateDef:
    """One authored template.

    ``fsm`` is the FSM fragment in plain-data form with legacy structured
    guards already compiled to expressions; it may reference states only an
    ancestor declares.
    """

    id: str
    type_key: str
    scope: str
    parent_id: str | None = None
    name: str = ""
    is_abstract: bool = False
    status: str = "active"
    fsm: dict[str, Any] | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    source_file: str = ""


@dataclass(frozen=True)
class TemplatePack:
    """An assembled configuration set.

    Attributes:
        config_id: Identifier of the set (e.g., "default").
        version: Configuration version number.
        checksum: SHA-256 of the canonical serialization of settings and
            templates.
        settings: Engine settings.
        templates: All templates, in file then declaration order.
    """

    config_id: str
    version: int
    checksum: str
    settings: EngineSettings
    templates: tuple[TemplateDef, ...]
    description: str = ""

    def template_by_id(self, template_id: str) -> TemplateDef | None:
        for template in self.templates:
            if template.id == template_id:
                return template
        return None

    def find(self, type_key: str, scope: str) -> TemplateDef | None:
        for template in self.templates:
            if template.type_key == type_key and template.scope == scope:
                return template
        return None


# Action names the standard handler set registers (onto_services.actions).
# Templates may use others, but the validator warns about them.
STANDARD_ACTION_NAMES: frozenset[str] = frozenset({
    "notify",
    "email_user",
    "email_admin",
    "run_llm_critique",
    "schedule_rrule",
    "create_doc_from_template",
    "create_research_doc",
    "create_output",
    "update_facets",
    "spawn_tasks",
})
