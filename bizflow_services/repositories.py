"""
bizflow_services.repositories -- SQLAlchemy-backed document storage.

Responsibility:
    Implement the DocumentRepository port for purchases and reimbursements,
    and store versioned workflow definitions.

Architecture position:
    Services -- the only layer holding a Session.  Repositories flush but
    never commit; the caller's ``session_scope()`` owns the commit.

Invariants enforced:
    - ``update_status`` is a single conditional UPDATE on (id, status,
      version) that also increments version.  Zero matched rows means
      another writer got there first and None is returned.
    - ``transaction()`` opens a SAVEPOINT so a failed action leaves neither
      the status change nor its log row behind.
    - Publishing a workflow version unpublishes all older versions of the
      same document type.
"""

from __future__ import annotations

from collections.abc import Mapping
from enum import Enum
from typing import Any, ClassVar

from sqlalchemy import select, update
from sqlalchemy.orm import Session, SessionTransaction

from bizflow_kernel.domain.documents import (
    Document,
    DocumentType,
    Purchase,
    Reimbursement,
    WorkflowLogEntry,
)
from bizflow_kernel.domain.workflow import PublishedWorkflow
from bizflow_kernel.logging_config import get_logger
from bizflow_kernel.models.documents import PurchaseModel, ReimbursementModel
from bizflow_kernel.models.workflow import WorkflowDefinitionModel, WorkflowLogModel

logger = get_logger("services.repositories")


def _column_value(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, tuple):
        return list(value)
    return value


class SqlDocumentRepository:
    """Shared implementation; subclasses bind the ORM model."""

    model: ClassVar[type[PurchaseModel] | type[ReimbursementModel]]
    document_type: ClassVar[DocumentType]

    def __init__(self, session: Session) -> None:
        self._session = session

    @property
    def session(self) -> Session:
        return self._session

    def find_by_id(self, document_id: str) -> Document | None:
        row = self._session.get(self.model, document_id, populate_existing=True)
        return row.to_dto() if row is not None else None

    def add(self, document: Document) -> Document:
        row = self.model.from_dto(document)
        self._session.add(row)
        self._session.flush()
        return row.to_dto()

    def update_status(
        self,
        document_id: str,
        patch: Mapping[str, Any],
        expected_status: str,
        expected_version: int,
    ) -> Document | None:
        values = {key: _column_value(val) for key, val in patch.items()}
        values["version"] = expected_version + 1
        stmt = (
            update(self.model)
            .where(
                self.model.id == document_id,
                self.model.status == expected_status,
                self.model.version == expected_version,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = self._session.execute(stmt)
        if result.rowcount != 1:
            logger.info(
                "document_write_conflict",
                extra={
                    "document_id": document_id,
                    "expected_status": expected_status,
                    "expected_version": expected_version,
                },
            )
            return None
        return self.find_by_id(document_id)

    def append_log(self, entry: WorkflowLogEntry) -> WorkflowLogEntry:
        row = WorkflowLogModel.from_dto(entry)
        self._session.add(row)
        self._session.flush()
        return row.to_dto()

    def list_logs(self, document_id: str) -> list[WorkflowLogEntry]:
        stmt = (
            select(WorkflowLogModel)
            .where(
                WorkflowLogModel.document_type == self.document_type.value,
                WorkflowLogModel.document_id == document_id,
            )
            .order_by(WorkflowLogModel.created_at)
        )
        return [row.to_dto() for row in self._session.scalars(stmt)]

    def transaction(self) -> SessionTransaction:
        return self._session.begin_nested()


class SqlPurchaseRepository(SqlDocumentRepository):
    model = PurchaseModel
    document_type = DocumentType.PURCHASE

    def find_by_id(self, document_id: str) -> Purchase | None:
        return super().find_by_id(document_id)  # type: ignore[return-value]


class SqlReimbursementRepository(SqlDocumentRepository):
    model = ReimbursementModel
    document_type = DocumentType.REIMBURSEMENT

    def find_by_id(self, document_id: str) -> Reimbursement | None:
        return super().find_by_id(document_id)  # type: ignore[return-value]


class SqlWorkflowDefinitionStore:
    """Versioned workflow definitions in ``workflow_definitions``."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def next_version(self, workflow_key: str) -> int:
        stmt = select(WorkflowDefinitionModel.version).where(
            WorkflowDefinitionModel.workflow_key == workflow_key
        )
        versions = list(self._session.scalars(stmt))
        return max(versions, default=0) + 1

    def save(self, workflow: PublishedWorkflow) -> PublishedWorkflow:
        """Store ``workflow``; when published, older versions are unpublished."""
        if workflow.published:
            self._session.execute(
                update(WorkflowDefinitionModel)
                .where(
                    WorkflowDefinitionModel.document_type == workflow.document_type,
                    WorkflowDefinitionModel.published.is_(True),
                )
                .values(published=False)
                .execution_options(synchronize_session=False)
            )
        row = WorkflowDefinitionModel.from_dto(workflow)
        self._session.add(row)
        self._session.flush()
        logger.info(
            "workflow_definition_saved",
            extra={
                "workflow_key": workflow.workflow_key,
                "document_type": workflow.document_type,
                "version": workflow.version,
                "published": workflow.published,
            },
        )
        return row.to_dto()

    def latest_published(self, document_type: str) -> PublishedWorkflow | None:
        stmt = (
            select(WorkflowDefinitionModel)
            .where(
                WorkflowDefinitionModel.document_type == document_type,
                WorkflowDefinitionModel.published.is_(True),
            )
            .order_by(WorkflowDefinitionModel.version.desc())
            .limit(1)
        )
        row = self._session.scalars(stmt).first()
        return row.to_dto() if row is not None else None
