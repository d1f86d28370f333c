"""
Module: onto_kernel.models.document
Responsibility: ORM persistence for documents created by transition actions
    (template-rendered docs, research notes, outputs).
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - ``dedup_key`` is unique when present: replaying an action with the same
      derived idempotency key never creates a second document.
"""

from typing import Any

from sqlalchemy import JSON, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from onto_kernel.db.base import TrackedBase


class OntoDocument(TrackedBase):
    """A markdown document attached to an entity."""

    __tablename__ = "onto_documents"

    __table_args__ = (
        Index("idx_onto_document_source", "source_entity_type", "source_entity_id"),
    )

    type_key: Mapped[str] = mapped_column(String(200), nullable=False)

    title: Mapped[str] = mapped_column(String(500), nullable=False)

    body_markdown: Mapped[str] = mapped_column(Text, nullable=False, default="")

    project_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    source_entity_type: Mapped[str] = mapped_column(String(50), nullable=False)

    source_entity_id: Mapped[str] = mapped_column(String(64), nullable=False)

    created_by: Mapped[str] = mapped_column(String(64), nullable=False)

    dedup_key: Mapped[str | None] = mapped_column(String(600), nullable=True, unique=True)

    props: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    def __repr__(self) -> str:
        return f"<OntoDocument {self.type_key} {self.title!r}>"
