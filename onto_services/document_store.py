"""
Document store collaborator for document-producing actions.

Responsibility:
    Persists markdown documents created by ``create_doc_from_template``,
    ``create_research_doc`` and ``create_output``.

Architecture position:
    Services -- collaborator behind the ``DocumentStore`` port.

Invariants enforced:
    - A ``dedup_key`` produces at most one document.  Replaying the same
      key returns the existing document id with ``created=False``.
"""

from __future__ import annotations

import threading
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from onto_kernel.db.engine import session_scope
from onto_kernel.models.document import OntoDocument
from onto_kernel.utils.freezing import freeze_mapping, thaw


@runtime_checkable
class DocumentStore(Protocol):
    """Port for document creation."""

    def create_document(
        self,
        *,
        type_key: str,
        title: str,
        body_markdown: str,
        source_entity_type: str,
        source_entity_id: str,
        created_by: str,
        project_id: str | None = None,
        props: Mapping[str, Any] | None = None,
        dedup_key: str | None = None,
    ) -> tuple[str, bool]:
        """Store a document; returns ``(document_id, created)``."""
        ...


@dataclass(frozen=True)
class StoredDocument:
    id: str
    type_key: str
    title: str
    body_markdown: str
    source_entity_type: str
    source_entity_id: str
    created_by: str
    project_id: str | None = None
    props: Mapping[str, Any] = field(default_factory=dict)
    dedup_key: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "props", freeze_mapping(self.props))


class InMemoryDocumentStore:
    """Dict-backed store for tests, the CLI simulator and embedding."""

    def __init__(self) -> None:
        self._documents: dict[str, StoredDocument] = {}
        self._by_dedup_key: dict[str, str] = {}
        self._lock = threading.Lock()

    def create_document(
        self,
        *,
        type_key: str,
        title: str,
        body_markdown: str,
        source_entity_type: str,
        source_entity_id: str,
        created_by: str,
        project_id: str | None = None,
        props: Mapping[str, Any] | None = None,
        dedup_key: str | None = None,
    ) -> tuple[str, bool]:
        with self._lock:
            if dedup_key is not None and dedup_key in self._by_dedup_key:
                return self._by_dedup_key[dedup_key], False
            document = StoredDocument(
                id=str(uuid4()),
                type_key=type_key,
                title=title,
                body_markdown=body_markdown,
                source_entity_type=source_entity_type,
                source_entity_id=source_entity_id,
                created_by=created_by,
                project_id=project_id,
                props=props or {},
                dedup_key=dedup_key,
            )
            self._documents[document.id] = document
            if dedup_key is not None:
                self._by_dedup_key[dedup_key] = document.id
        return document.id, True

    def get(self, document_id: str) -> StoredDocument | None:
        with self._lock:
            return self._documents.get(document_id)

    @property
    def documents(self) -> tuple[StoredDocument, ...]:
        with self._lock:
            return tuple(self._documents.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._documents)


class SqlDocumentStore:
    """``onto_documents``-backed store."""

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    def _find_by_dedup_key(self, dedup_key: str) -> str | None:
        with self._session_factory() as session:
            found = session.scalars(
                select(OntoDocument.id).where(OntoDocument.dedup_key == dedup_key)
            ).first()
        return str(found) if found is not None else None

    def create_document(
        self,
        *,
        type_key: str,
        title: str,
        body_markdown: str,
        source_entity_type: str,
        source_entity_id: str,
        created_by: str,
        project_id: str | None = None,
        props: Mapping[str, Any] | None = None,
        dedup_key: str | None = None,
    ) -> tuple[str, bool]:
        if dedup_key is not None:
            existing = self._find_by_dedup_key(dedup_key)
            if existing is not None:
                return existing, False

        try:
            with session_scope(self._session_factory) as session:
                row = OntoDocument(
                    type_key=type_key,
                    title=title,
                    body_markdown=body_markdown,
                    source_entity_type=source_entity_type,
                    source_entity_id=source_entity_id,
                    created_by=created_by,
                    project_id=project_id,
                    props=thaw(props or {}),
                    dedup_key=dedup_key,
                )
                session.add(row)
                session.flush()
                document_id = str(row.id)
        except IntegrityError:
            if dedup_key is None:
                raise
            existing = self._find_by_dedup_key(dedup_key)
            if existing is None:
                raise
            return existing, False
        return document_id, True

    def get(self, document_id: str) -> OntoDocument | None:
        with self._session_factory() as session:
            return session.scalars(
                select(OntoDocument).where(OntoDocument.id == document_id)
            ).first()
