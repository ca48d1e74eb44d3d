"""
bizflow_services.finance_records -- Expense records linked to paid documents.

Responsibility:
    SQLAlchemy implementation of the FinanceRecordWriter port.  A paid
    reimbursement, or a purchase reaching ``paid``, leaves exactly one
    expense row in ``finance_records`` pointing back at its source.

Architecture position:
    Services.  Called inside the action handler's transaction; flushes only,
    so a failure (or a later rollback) removes the row together with the
    status change.

Invariants enforced:
    - One record per (source_type, source_id); a repeated call returns the
      existing record id.
"""

from __future__ import annotations

from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from bizflow_kernel.domain.clock import Clock, SystemClock
from bizflow_kernel.domain.documents import Document, DocumentType
from bizflow_kernel.logging_config import get_logger
from bizflow_kernel.models.ledger import FinanceRecordModel

logger = get_logger("services.finance_records")


class SqlFinanceRecordWriter:
    def __init__(self, session: Session, clock: Clock | None = None) -> None:
        self._session = session
        self._clock = clock or SystemClock()

    def find_for_source(self, source_type: str, source_id: str) -> FinanceRecordModel | None:
        stmt = select(FinanceRecordModel).where(
            FinanceRecordModel.source_type == source_type,
            FinanceRecordModel.source_id == source_id,
        )
        return self._session.scalars(stmt).first()

    def create_expense_record(
        self, document: Document, amount: Decimal, operator_id: str
    ) -> str:
        source_type = document.document_type.value
        existing = self.find_for_source(source_type, document.id)
        if existing is not None:
            return existing.id

        if document.document_type is DocumentType.PURCHASE:
            name = document.item_name or f"purchase {document.id}"
            category = "purchase"
            purchase_id, reimbursement_id = document.id, None
        else:
            name = document.title or f"reimbursement {document.id}"
            category = document.category
            purchase_id, reimbursement_id = document.source_purchase_id, document.id

        row = FinanceRecordModel(
            name=name,
            record_type="expense",
            category=category,
            amount=amount,
            record_date=self._clock.now().date(),
            source_type=source_type,
            source_id=document.id,
            purchase_id=purchase_id,
            reimbursement_id=reimbursement_id,
            created_by=operator_id,
            status="cleared",
            details={"organization_type": document.organization_type},
        )
        self._session.add(row)
        self._session.flush()
        logger.info(
            "finance_record_created",
            extra={
                "finance_record_id": row.id,
                "source_type": source_type,
                "source_id": document.id,
                "amount": amount,
            },
        )
        return row.id
