"""
Module: bizflow_kernel.models.documents
Responsibility: ORM persistence for purchases and reimbursements.

Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ only.

Invariants enforced:
    - Status columns are limited to the lifecycle values by CHECK
      constraints; transition legality is the guard engine's job.
    - ``version`` is the compare-and-set token.  Repositories increment it
      in the same UPDATE that changes the status.

Failure modes:
    - IntegrityError on an out-of-range status value.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import JSON, CheckConstraint, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from bizflow_kernel.db.base import TrackedBase
from bizflow_kernel.domain.documents import (
    InvoiceStatus,
    InvoiceType,
    Purchase,
    PurchaseStatus,
    Reimbursement,
    ReimbursementProgress,
    ReimbursementSourceType,
    ReimbursementStatus,
)


def _in_clause(enum_cls: type) -> str:
    return ", ".join(f"'{member.value}'" for member in enum_cls)


class PurchaseModel(TrackedBase):
    """Persistent purchase order."""

    __tablename__ = "purchases"

    __table_args__ = (
        CheckConstraint(
            f"status IN ({_in_clause(PurchaseStatus)})",
            name="ck_purchases_valid_status",
        ),
        CheckConstraint(
            f"reimbursement_status IN ({_in_clause(ReimbursementProgress)})",
            name="ck_purchases_valid_reimbursement_status",
        ),
        Index("idx_purchases_pending_approver", "pending_approver_id", "status"),
        Index("idx_purchases_purchaser_date", "purchaser_id", "purchase_date"),
    )

    status: Mapped[str] = mapped_column(String(32), default=PurchaseStatus.DRAFT.value)
    item_name: Mapped[str] = mapped_column(String(200), default="")
    specification: Mapped[str] = mapped_column(Text, default="")
    purpose: Mapped[str] = mapped_column(Text, default="")
    quantity: Mapped[Decimal] = mapped_column(default=Decimal("1"))
    unit_price: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    total_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    fee_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    paid_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    purchase_date: Mapped[date | None]
    organization_type: Mapped[str] = mapped_column(String(32), default="company")
    purchase_channel: Mapped[str] = mapped_column(String(32), default="offline")
    payment_type: Mapped[str] = mapped_column(String(32), default="full_payment")
    purchaser_id: Mapped[str | None] = mapped_column(String(64))
    created_by: Mapped[str | None] = mapped_column(String(64))
    department_id: Mapped[str | None] = mapped_column(String(64))
    pending_approver_id: Mapped[str | None] = mapped_column(String(64))
    current_node_id: Mapped[str | None] = mapped_column(String(64))
    invoice_type: Mapped[str] = mapped_column(String(32), default=InvoiceType.GENERAL.value)
    invoice_status: Mapped[str] = mapped_column(String(32), default=InvoiceStatus.PENDING.value)
    invoice_images: Mapped[list[str]] = mapped_column(JSON, default=list)
    receipt_images: Mapped[list[str]] = mapped_column(JSON, default=list)
    reimbursement_status: Mapped[str] = mapped_column(
        String(32), default=ReimbursementProgress.NONE.value
    )
    payment_issue_open: Mapped[bool] = mapped_column(default=False)
    payment_issue_reason: Mapped[str | None] = mapped_column(Text)
    submitted_at: Mapped[datetime | None]
    approved_at: Mapped[datetime | None]
    approved_by: Mapped[str | None] = mapped_column(String(64))
    rejected_at: Mapped[datetime | None]
    rejected_by: Mapped[str | None] = mapped_column(String(64))
    rejection_reason: Mapped[str | None] = mapped_column(Text)
    paid_at: Mapped[datetime | None]
    paid_by: Mapped[str | None] = mapped_column(String(64))
    version: Mapped[int] = mapped_column(default=0, nullable=False)

    def __repr__(self) -> str:
        return f"<PurchaseModel {self.id} {self.status} v{self.version}>"

    def to_dto(self) -> Purchase:
        """Convert ORM model to frozen domain snapshot."""
        return Purchase(
            id=self.id,
            status=PurchaseStatus(self.status),
            item_name=self.item_name or "",
            specification=self.specification or "",
            purpose=self.purpose or "",
            quantity=self.quantity,
            unit_price=self.unit_price,
            total_amount=self.total_amount,
            fee_amount=self.fee_amount,
            paid_amount=self.paid_amount,
            purchase_date=self.purchase_date,
            organization_type=self.organization_type,
            purchase_channel=self.purchase_channel,
            payment_type=self.payment_type,
            purchaser_id=self.purchaser_id,
            created_by=self.created_by,
            department_id=self.department_id,
            pending_approver_id=self.pending_approver_id,
            current_node_id=self.current_node_id,
            invoice_type=InvoiceType(self.invoice_type),
            invoice_status=InvoiceStatus(self.invoice_status),
            invoice_images=tuple(self.invoice_images or ()),
            receipt_images=tuple(self.receipt_images or ()),
            reimbursement_status=ReimbursementProgress(self.reimbursement_status),
            payment_issue_open=bool(self.payment_issue_open),
            payment_issue_reason=self.payment_issue_reason,
            submitted_at=self.submitted_at,
            approved_at=self.approved_at,
            approved_by=self.approved_by,
            rejected_at=self.rejected_at,
            rejected_by=self.rejected_by,
            rejection_reason=self.rejection_reason,
            paid_at=self.paid_at,
            paid_by=self.paid_by,
            version=self.version,
        )

    @classmethod
    def from_dto(cls, dto: Purchase) -> PurchaseModel:
        """Create ORM model from domain snapshot."""
        return cls(
            id=dto.id,
            status=dto.status.value,
            item_name=dto.item_name,
            specification=dto.specification,
            purpose=dto.purpose,
            quantity=dto.quantity,
            unit_price=dto.unit_price,
            total_amount=dto.total_amount,
            fee_amount=dto.fee_amount,
            paid_amount=dto.paid_amount,
            purchase_date=dto.purchase_date,
            organization_type=dto.organization_type,
            purchase_channel=dto.purchase_channel,
            payment_type=dto.payment_type,
            purchaser_id=dto.purchaser_id,
            created_by=dto.created_by,
            department_id=dto.department_id,
            pending_approver_id=dto.pending_approver_id,
            current_node_id=dto.current_node_id,
            invoice_type=dto.invoice_type.value,
            invoice_status=dto.invoice_status.value,
            invoice_images=list(dto.invoice_images),
            receipt_images=list(dto.receipt_images),
            reimbursement_status=dto.reimbursement_status.value,
            payment_issue_open=dto.payment_issue_open,
            payment_issue_reason=dto.payment_issue_reason,
            submitted_at=dto.submitted_at,
            approved_at=dto.approved_at,
            approved_by=dto.approved_by,
            rejected_at=dto.rejected_at,
            rejected_by=dto.rejected_by,
            rejection_reason=dto.rejection_reason,
            paid_at=dto.paid_at,
            paid_by=dto.paid_by,
            version=dto.version,
        )


class ReimbursementModel(TrackedBase):
    """Persistent reimbursement claim."""

    __tablename__ = "reimbursements"

    __table_args__ = (
        CheckConstraint(
            f"status IN ({_in_clause(ReimbursementStatus)})",
            name="ck_reimbursements_valid_status",
        ),
        CheckConstraint(
            f"source_type IN ({_in_clause(ReimbursementSourceType)})",
            name="ck_reimbursements_valid_source_type",
        ),
        Index("idx_reimbursements_pending_approver", "pending_approver_id", "status"),
        Index("idx_reimbursements_source_purchase", "source_purchase_id"),
    )

    status: Mapped[str] = mapped_column(String(32), default=ReimbursementStatus.DRAFT.value)
    title: Mapped[str] = mapped_column(String(200), default="")
    category: Mapped[str] = mapped_column(String(64), default="other")
    amount: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    occurred_at: Mapped[date | None]
    source_type: Mapped[str] = mapped_column(
        String(16), default=ReimbursementSourceType.DIRECT.value
    )
    source_purchase_id: Mapped[str | None] = mapped_column(String(36))
    organization_type: Mapped[str] = mapped_column(String(32), default="company")
    applicant_id: Mapped[str | None] = mapped_column(String(64))
    created_by: Mapped[str | None] = mapped_column(String(64))
    pending_approver_id: Mapped[str | None] = mapped_column(String(64))
    current_node_id: Mapped[str | None] = mapped_column(String(64))
    invoice_images: Mapped[list[str]] = mapped_column(JSON, default=list)
    receipt_images: Mapped[list[str]] = mapped_column(JSON, default=list)
    submitted_at: Mapped[datetime | None]
    approved_at: Mapped[datetime | None]
    approved_by: Mapped[str | None] = mapped_column(String(64))
    rejected_at: Mapped[datetime | None]
    rejected_by: Mapped[str | None] = mapped_column(String(64))
    rejection_reason: Mapped[str | None] = mapped_column(Text)
    paid_at: Mapped[datetime | None]
    paid_by: Mapped[str | None] = mapped_column(String(64))
    payment_note: Mapped[str | None] = mapped_column(Text)
    version: Mapped[int] = mapped_column(default=0, nullable=False)

    def __repr__(self) -> str:
        return f"<ReimbursementModel {self.id} {self.status} v{self.version}>"

    def to_dto(self) -> Reimbursement:
        return Reimbursement(
            id=self.id,
            status=ReimbursementStatus(self.status),
            title=self.title or "",
            category=self.category,
            amount=self.amount,
            occurred_at=self.occurred_at,
            source_type=ReimbursementSourceType(self.source_type),
            source_purchase_id=self.source_purchase_id,
            organization_type=self.organization_type,
            applicant_id=self.applicant_id,
            created_by=self.created_by,
            pending_approver_id=self.pending_approver_id,
            current_node_id=self.current_node_id,
            invoice_images=tuple(self.invoice_images or ()),
            receipt_images=tuple(self.receipt_images or ()),
            submitted_at=self.submitted_at,
            approved_at=self.approved_at,
            approved_by=self.approved_by,
            rejected_at=self.rejected_at,
            rejected_by=self.rejected_by,
            rejection_reason=self.rejection_reason,
            paid_at=self.paid_at,
            paid_by=self.paid_by,
            payment_note=self.payment_note,
            version=self.version,
        )

    @classmethod
    def from_dto(cls, dto: Reimbursement) -> ReimbursementModel:
        return cls(
            id=dto.id,
            status=dto.status.value,
            title=dto.title,
            category=dto.category,
            amount=dto.amount,
            occurred_at=dto.occurred_at,
            source_type=dto.source_type.value,
            source_purchase_id=dto.source_purchase_id,
            organization_type=dto.organization_type,
            applicant_id=dto.applicant_id,
            created_by=dto.created_by,
            pending_approver_id=dto.pending_approver_id,
            current_node_id=dto.current_node_id,
            invoice_images=list(dto.invoice_images),
            receipt_images=list(dto.receipt_images),
            submitted_at=dto.submitted_at,
            approved_at=dto.approved_at,
            approved_by=dto.approved_by,
            rejected_at=dto.rejected_at,
            rejected_by=dto.rejected_by,
            rejection_reason=dto.rejection_reason,
            paid_at=dto.paid_at,
            paid_by=dto.paid_by,
            payment_note=dto.payment_note,
            version=dto.version,
        )
