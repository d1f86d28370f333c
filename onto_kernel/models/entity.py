"""
Module: onto_kernel.models.entity
Responsibility: ORM persistence for FSM-governed ontology entities (tasks,
    documents, outputs, goals, plans, milestones, risks, projects).
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - ``state_key`` only changes through the conditional UPDATE in
      ``SqlEntityStore.compare_and_swap_state``; every successful swap bumps
      ``version``.
    - ``(entity_type, id)`` identifies an entity; ids are assigned by the
      caller (strings, not generated UUIDs).
"""

from typing import Any

from sqlalchemy import JSON, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from onto_kernel.db.base import TrackedBase


class OntoEntity(TrackedBase):
    """
    One lifecycle-governed entity row.

    Contract:
        ``props`` is a free-form JSON object; ``props["facets"]`` holds the
        string-valued facets guards and ``update_facets`` work on.
    """

    __tablename__ = "onto_entities"

    __table_args__ = (
        Index("idx_onto_entity_type", "entity_type", "id"),
        Index("idx_onto_entity_project", "project_id"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)

    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)

    type_key: Mapped[str] = mapped_column(String(200), nullable=False)

    state_key: Mapped[str] = mapped_column(String(100), nullable=False)

    project_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    name: Mapped[str | None] = mapped_column(String(500), nullable=True)

    props: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    def __repr__(self) -> str:
        return f"<OntoEntity {self.entity_type}:{self.id} [{self.state_key}]>"
