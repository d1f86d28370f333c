"""
Module: onto_kernel.models.template
Responsibility: ORM persistence for FSM templates.  Rows form a parent-pointer
    tree through ``parent_id``; the resolver walks it iteratively.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - ``(type_key, scope)`` is unique.
    - ``parent_id`` is deliberately not a foreign key: dangling parents are
      reported by the resolver as TEMPLATE_NOT_FOUND instead of blocking
      template seeding order.
"""

from typing import Any

from sqlalchemy import JSON, Boolean, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from onto_kernel.db.base import TrackedBase


class OntoTemplate(TrackedBase):
    """
    One template node.

    ``fsm`` holds the raw FSM fragment as authored
    (``{"states": [...], "transitions": [...]}``); it is parsed into domain
    types when read.
    """

    __tablename__ = "onto_templates"

    __table_args__ = (
        UniqueConstraint("type_key", "scope", name="uq_onto_template_type_scope"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)

    type_key: Mapped[str] = mapped_column(String(200), nullable=False)

    scope: Mapped[str] = mapped_column(String(50), nullable=False)

    parent_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    name: Mapped[str] = mapped_column(String(200), nullable=False, default="")

    is_abstract: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")

    fsm: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    # "metadata" is reserved on declarative classes
    template_metadata: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSON, nullable=False, default=dict,
    )

    def __repr__(self) -> str:
        return f"<OntoTemplate {self.type_key} ({self.scope})>"
