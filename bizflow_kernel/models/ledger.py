"""
Module: bizflow_kernel.models.ledger
Responsibility: ORM persistence for the records that paid documents and
    notifications leave behind: linked finance expense records and in-app
    notifications.

Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - At most one finance record per reimbursement and per paid purchase
      payment (unique source reference).
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import JSON, DateTime, Index, String, Text, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from bizflow_kernel.db.base import Base, TrackedBase


class FinanceRecordModel(TrackedBase):
    """Expense record derived from a paid purchase or reimbursement."""

    __tablename__ = "finance_records"

    __table_args__ = (
        UniqueConstraint("source_type", "source_id", name="uq_finance_records_source"),
    )

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    record_type: Mapped[str] = mapped_column(String(16), default="expense")
    category: Mapped[str] = mapped_column(String(64), default="other")
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    record_date: Mapped[date | None]
    source_type: Mapped[str] = mapped_column(String(32), nullable=False)
    source_id: Mapped[str] = mapped_column(String(36), nullable=False)
    purchase_id: Mapped[str | None] = mapped_column(String(36))
    reimbursement_id: Mapped[str | None] = mapped_column(String(36))
    created_by: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[str] = mapped_column(String(16), default="cleared")
    details: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)


class InAppNotificationModel(Base):
    """A notification shown in a user's inbox."""

    __tablename__ = "in_app_notifications"

    __table_args__ = (
        Index("idx_in_app_notifications_recipient", "recipient_id", "is_read"),
    )

    recipient_id: Mapped[str] = mapped_column(String(64), nullable=False)
    event_type: Mapped[str] = mapped_column(String(64), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    content: Mapped[str] = mapped_column(Text, default="")
    document_type: Mapped[str] = mapped_column(String(32), nullable=False)
    document_id: Mapped[str] = mapped_column(String(36), nullable=False)
    link_url: Mapped[str | None] = mapped_column(String(500))
    is_read: Mapped[bool] = mapped_column(default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
