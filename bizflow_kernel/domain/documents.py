"""
Business documents driven by approval workflows.

Responsibility
--------------
Frozen snapshots of purchase orders and reimbursements, their status
enums, the workflow log row, and the action request/result value objects
exchanged with the action handler.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  Repositories in
``bizflow_services`` map ORM rows to these snapshots; engines read them;
nothing mutates them (``dataclasses.replace`` produces the next state).

Invariants enforced
-------------------
* Money is ``Decimal``; ``remaining_amount`` is never negative.
* ``version`` increments on every persisted status write and is the
  compare-and-set token for concurrent actions.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any

ZERO = Decimal("0")


class DocumentType(str, Enum):
    PURCHASE = "purchase"
    REIMBURSEMENT = "reimbursement"


class WorkflowAction(str, Enum):
    SUBMIT = "submit"
    APPROVE = "approve"
    REJECT = "reject"
    TRANSFER = "transfer"
    WITHDRAW = "withdraw"
    SUBMIT_REIMBURSEMENT = "submit_reimbursement"
    PAY = "pay"
    ISSUE = "issue"
    RESOLVE_ISSUE = "resolve_issue"


class PurchaseStatus(str, Enum):
    DRAFT = "draft"
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    REJECTED = "rejected"
    PAID = "paid"
    CANCELLED = "cancelled"


class ReimbursementProgress(str, Enum):
    """Reimbursement progress of an approved purchase."""

    NONE = "none"
    INVOICE_PENDING = "invoice_pending"
    REIMBURSEMENT_PENDING = "reimbursement_pending"
    REIMBURSEMENT_REJECTED = "reimbursement_rejected"
    REIMBURSED = "reimbursed"


class ReimbursementStatus(str, Enum):
    DRAFT = "draft"
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    REJECTED = "rejected"
    PAID = "paid"


class ReimbursementSourceType(str, Enum):
    PURCHASE = "purchase"
    DIRECT = "direct"


class InvoiceType(str, Enum):
    SPECIAL = "special"
    GENERAL = "general"
    NONE = "none"


class InvoiceStatus(str, Enum):
    PENDING = "pending"
    ISSUED = "issued"
    NOT_REQUIRED = "not_required"


def to_decimal(value: Any) -> Decimal:
    """Coerce a stored/wire amount to Decimal; unusable values become 0."""
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return ZERO


def _non_empty(images: tuple[str, ...]) -> bool:
    return any(str(img).strip() for img in images)


@dataclass(frozen=True)
class Purchase:
    """Snapshot of a purchase order."""

    id: str
    status: PurchaseStatus = PurchaseStatus.DRAFT
    item_name: str = ""
    specification: str = ""
    purpose: str = ""
    quantity: Decimal = Decimal("1")
    unit_price: Decimal = ZERO
    total_amount: Decimal = ZERO
    fee_amount: Decimal = ZERO
    paid_amount: Decimal = ZERO
    purchase_date: date | None = None
    organization_type: str = "company"
    purchase_channel: str = "offline"
    payment_type: str = "full_payment"
    purchaser_id: str | None = None
    created_by: str | None = None
    department_id: str | None = None
    pending_approver_id: str | None = None
    current_node_id: str | None = None
    invoice_type: InvoiceType = InvoiceType.GENERAL
    invoice_status: InvoiceStatus = InvoiceStatus.PENDING
    invoice_images: tuple[str, ...] = ()
    receipt_images: tuple[str, ...] = ()
    reimbursement_status: ReimbursementProgress = ReimbursementProgress.NONE
    payment_issue_open: bool = False
    payment_issue_reason: str | None = None
    submitted_at: datetime | None = None
    approved_at: datetime | None = None
    approved_by: str | None = None
    rejected_at: datetime | None = None
    rejected_by: str | None = None
    rejection_reason: str | None = None
    paid_at: datetime | None = None
    paid_by: str | None = None
    version: int = 0

    document_type = DocumentType.PURCHASE

    @property
    def originator_id(self) -> str | None:
        return self.created_by or self.purchaser_id

    @property
    def due_amount(self) -> Decimal:
        return self.total_amount + self.fee_amount

    @property
    def remaining_amount(self) -> Decimal:
        return max(ZERO, self.due_amount - self.paid_amount)

    @property
    def requires_invoice(self) -> bool:
        return (
            self.invoice_type is not InvoiceType.NONE
            and self.invoice_status is not InvoiceStatus.NOT_REQUIRED
        )

    def condition_context(self) -> dict[str, Any]:
        """Field snapshot keyed by condition-field name."""
        return {
            "totalAmount": self.total_amount,
            "quantity": self.quantity,
            "unitPrice": self.unit_price,
            "feeAmount": self.fee_amount,
            "purchaseDate": self.purchase_date.isoformat() if self.purchase_date else None,
            "itemName": self.item_name,
            "specification": self.specification,
            "purpose": self.purpose,
            "organizationType": self.organization_type,
            "purchaseChannel": self.purchase_channel,
            "paymentType": self.payment_type,
        }


def has_invoice_evidence(purchase: Purchase) -> bool:
    """True when no invoice is owed or at least one invoice image is attached."""
    if not purchase.requires_invoice:
        return True
    return _non_empty(purchase.invoice_images)


@dataclass(frozen=True)
class Reimbursement:
    """Snapshot of a reimbursement claim."""

    id: str
    status: ReimbursementStatus = ReimbursementStatus.DRAFT
    title: str = ""
    category: str = "other"
    amount: Decimal = ZERO
    occurred_at: date | None = None
    source_type: ReimbursementSourceType = ReimbursementSourceType.DIRECT
    source_purchase_id: str | None = None
    organization_type: str = "company"
    applicant_id: str | None = None
    created_by: str | None = None
    pending_approver_id: str | None = None
    current_node_id: str | None = None
    invoice_images: tuple[str, ...] = ()
    receipt_images: tuple[str, ...] = ()
    submitted_at: datetime | None = None
    approved_at: datetime | None = None
    approved_by: str | None = None
    rejected_at: datetime | None = None
    rejected_by: str | None = None
    rejection_reason: str | None = None
    paid_at: datetime | None = None
    paid_by: str | None = None
    payment_note: str | None = None
    version: int = 0

    document_type = DocumentType.REIMBURSEMENT

    @property
    def originator_id(self) -> str | None:
        return self.created_by or self.applicant_id

    def condition_context(self) -> dict[str, Any]:
        return {
            "amount": self.amount,
            "occurredAt": self.occurred_at.isoformat() if self.occurred_at else None,
            "title": self.title,
            "category": self.category,
            "organizationType": self.organization_type,
            "sourceType": self.source_type.value,
        }


def reimbursement_has_evidence(
    reimbursement: Reimbursement,
    source_purchase: Purchase | None = None,
) -> bool:
    """Evidence rule for submitting a reimbursement.

    Purchase-sourced claims need invoice images only when the source
    purchase owes an invoice.  Direct claims accept invoices or receipts.
    """
    if reimbursement.source_type is ReimbursementSourceType.PURCHASE:
        if source_purchase is not None and not source_purchase.requires_invoice:
            return True
        return _non_empty(reimbursement.invoice_images)
    return _non_empty(reimbursement.invoice_images) or _non_empty(
        reimbursement.receipt_images
    )


Document = Purchase | Reimbursement


@dataclass(frozen=True)
class WorkflowLogEntry:
    """One append-only row of a document's action history."""

    document_type: DocumentType
    document_id: str
    action: str
    from_status: str
    to_status: str
    operator_id: str
    comment: str | None = None
    created_at: datetime | None = None
    id: str | None = None


@dataclass(frozen=True)
class Actor:
    """The user performing an action."""

    user_id: str
    roles: tuple[str, ...] = ()


@dataclass(frozen=True)
class ActionRequest:
    """An action requested against a document.

    ``amount`` is only read by ``pay``; ``to_approver_id`` only by
    ``transfer``.
    """

    action: str
    reason: str | None = None
    comment: str | None = None
    note: str | None = None
    amount: Decimal | None = None
    to_approver_id: str | None = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> ActionRequest:
        """Build from the camelCase wire shape."""
        amount = payload.get("amount")

        def _text(key: str, *aliases: str) -> str | None:
            for k in (key, *aliases):
                value = payload.get(k)
                if value is not None:
                    return str(value)
            return None

        return cls(
            action=str(payload.get("action", "")),
            reason=_text("reason"),
            comment=_text("comment"),
            note=_text("note"),
            amount=to_decimal(amount) if amount not in (None, "") else None,
            to_approver_id=_text("toApproverId", "to_approver_id"),
        )

    @property
    def remark(self) -> str | None:
        """First non-blank of reason, comment, note."""
        for text in (self.reason, self.comment, self.note):
            if text and text.strip():
                return text.strip()
        return None


@dataclass(frozen=True)
class ActionResult:
    """Outcome of an accepted action."""

    document: Document
    action: str
    from_status: str
    to_status: str
    log_entries: tuple[WorkflowLogEntry, ...] = ()
    side_channel_node_ids: tuple[str, ...] = ()
    notified_events: tuple[str, ...] = field(default=())
