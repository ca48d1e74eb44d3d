"""
Module: bizflow_kernel.models.workflow
Responsibility: ORM persistence for workflow history and published workflow
    definitions.

Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ only.

Invariants enforced:
    - Workflow log rows are append-only: ORM listeners reject UPDATE and
      DELETE with ImmutabilityViolationError.
    - One row per (workflow_key, version); at most one published version
      per document type is selected by the registry (highest version wins).

Failure modes:
    - ImmutabilityViolationError on log UPDATE/DELETE.
    - IntegrityError on a duplicate (workflow_key, version).
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, Index, String, Text, UniqueConstraint, event, func
from sqlalchemy.orm import Mapped, mapped_column

from bizflow_kernel.db.base import Base, TrackedBase
from bizflow_kernel.domain.documents import DocumentType, WorkflowLogEntry
from bizflow_kernel.domain.workflow import PublishedWorkflow, parse_workflow_definition
from bizflow_kernel.exceptions import ImmutabilityViolationError


class WorkflowLogModel(Base):
    """One action in a document's history. Append-only."""

    __tablename__ = "workflow_logs"

    __table_args__ = (
        Index("idx_workflow_logs_document", "document_type", "document_id", "created_at"),
    )

    document_type: Mapped[str] = mapped_column(String(32), nullable=False)
    document_id: Mapped[str] = mapped_column(String(36), nullable=False)
    action: Mapped[str] = mapped_column(String(32), nullable=False)
    from_status: Mapped[str] = mapped_column(String(32), nullable=False)
    to_status: Mapped[str] = mapped_column(String(32), nullable=False)
    operator_id: Mapped[str] = mapped_column(String(64), nullable=False)
    comment: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return (
            f"<WorkflowLogModel {self.document_type}:{self.document_id} "
            f"{self.action} {self.from_status}->{self.to_status}>"
        )

    def to_dto(self) -> WorkflowLogEntry:
        return WorkflowLogEntry(
            id=self.id,
            document_type=DocumentType(self.document_type),
            document_id=self.document_id,
            action=self.action,
            from_status=self.from_status,
            to_status=self.to_status,
            operator_id=self.operator_id,
            comment=self.comment,
            created_at=self.created_at,
        )

    @classmethod
    def from_dto(cls, dto: WorkflowLogEntry) -> WorkflowLogModel:
        kwargs: dict[str, Any] = {
            "document_type": dto.document_type.value,
            "document_id": dto.document_id,
            "action": dto.action,
            "from_status": dto.from_status,
            "to_status": dto.to_status,
            "operator_id": dto.operator_id,
            "comment": dto.comment,
        }
        if dto.id is not None:
            kwargs["id"] = dto.id
        if dto.created_at is not None:
            kwargs["created_at"] = dto.created_at
        return cls(**kwargs)


@event.listens_for(WorkflowLogModel, "before_update")
def prevent_log_update(mapper, connection, target):
    """Prevent updates to workflow log rows."""
    raise ImmutabilityViolationError(
        entity_type="WorkflowLog",
        entity_id=str(target.id),
        reason="Workflow history is append-only -- cannot modify",
    )


@event.listens_for(WorkflowLogModel, "before_delete")
def prevent_log_delete(mapper, connection, target):
    """Prevent deletion of workflow log rows."""
    raise ImmutabilityViolationError(
        entity_type="WorkflowLog",
        entity_id=str(target.id),
        reason="Workflow history is append-only -- cannot delete",
    )


class WorkflowDefinitionModel(TrackedBase):
    """A versioned workflow graph owned by one document type."""

    __tablename__ = "workflow_definitions"

    __table_args__ = (
        UniqueConstraint("workflow_key", "version", name="uq_workflow_definitions_key_version"),
        Index("idx_workflow_definitions_type_published", "document_type", "published"),
    )

    workflow_key: Mapped[str] = mapped_column(String(100), nullable=False)
    document_type: Mapped[str] = mapped_column(String(32), nullable=False)
    version: Mapped[int] = mapped_column(default=1, nullable=False)
    published: Mapped[bool] = mapped_column(default=False, nullable=False)
    definition: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    updated_by: Mapped[str | None] = mapped_column(String(64))

    def to_dto(self) -> PublishedWorkflow:
        return PublishedWorkflow(
            workflow_key=self.workflow_key,
            document_type=self.document_type,
            definition=parse_workflow_definition(self.definition),
            version=self.version,
            published=self.published,
            updated_by=self.updated_by,
        )

    @classmethod
    def from_dto(cls, dto: PublishedWorkflow) -> WorkflowDefinitionModel:
        return cls(
            workflow_key=dto.workflow_key,
            document_type=dto.document_type,
            definition=dto.definition.to_dict(),
            version=dto.version,
            published=dto.published,
            updated_by=dto.updated_by,
        )
