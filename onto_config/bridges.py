"""
Config -> Kernel Bridges.

Functions that convert ``TemplatePack`` artifacts into kernel inputs.  They
live in onto_config (the producer) because the kernel must NEVER import
onto_config.

Usage:
    from onto_config.bridges import build_template_store

    pack = get_active_config()
    store = build_template_store(pack)
    resolver = TemplateResolver(store, max_depth=pack.settings.max_inheritance_depth)
"""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from onto_config.schema import TemplateDef, TemplatePack
from onto_kernel.domain.fsm import definition_from_dict
from onto_kernel.domain.template import TemplateRecord
from onto_kernel.logging_config import get_logger
from onto_kernel.models.template import OntoTemplate
from onto_kernel.services.template_store import InMemoryTemplateStore

logger = get_logger("config.bridges")


def template_record_from_def(template: TemplateDef) -> TemplateRecord:
    """Parse one authored template into a kernel ``TemplateRecord``.

    Raises:
        ValueError: if the FSM fragment is structurally malformed.
    """
    return TemplateRecord(
        id=template.id,
        type_key=template.type_key,
        scope=template.scope,
        parent_id=template.parent_id,
        fsm=definition_from_dict(template.fsm) if template.fsm is not None else None,
        name=template.name,
        is_abstract=template.is_abstract,
        status=template.status,
        metadata=template.metadata,
    )


def build_template_store(pack: TemplatePack) -> InMemoryTemplateStore:
    """Arena store holding every template of the pack."""
    return InMemoryTemplateStore(template_record_from_def(t) for t in pack.templates)


def seed_sql_templates(session: Session, pack: TemplatePack) -> int:
    """Upsert the pack's templates into ``onto_templates``.

    FSM fragments are stored in their normalized plain-data form.  The
    caller owns the transaction (use ``session_scope``).

    Returns the number of rows written.
    """
    existing = {
        row.id: row
        for row in session.scalars(
            select(OntoTemplate).where(OntoTemplate.id.in_([t.id for t in pack.templates]))
        )
    }
    for template in pack.templates:
        fsm = (
            definition_from_dict(template.fsm).to_dict()
            if template.fsm is not None else None
        )
        row = existing.get(template.id)
        if row is None:
            row = OntoTemplate(id=template.id)
            session.add(row)
        row.type_key = template.type_key
        row.scope = template.scope
        row.parent_id = template.parent_id
        row.name = template.name
        row.is_abstract = template.is_abstract
        row.status = template.status
        row.fsm = fsm
        row.template_metadata = dict(template.metadata)

    logger.info(
        "templates_seeded",
        extra={"config_id": pack.config_id, "template_count": len(pack.templates)},
    )
    return len(pack.templates)
