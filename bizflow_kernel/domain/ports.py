"""
Ports -- the narrow interfaces the action handler depends on.

Responsibility
--------------
Structural ``Protocol`` types for every external collaborator: document
storage, permission checks, user directory, budget figures, notification
delivery and the linked finance ledger.  Services accept these types;
concrete SQLAlchemy and in-memory implementations live in
``bizflow_services``.

Architecture position
---------------------
**Kernel domain layer** -- declarations only.  ZERO I/O.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping, Sequence
from contextlib import AbstractContextManager
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Protocol, runtime_checkable

from bizflow_kernel.domain.documents import Actor, Document, WorkflowLogEntry


@dataclass(frozen=True)
class PermissionResult:
    allowed: bool
    reason: str | None = None


@dataclass(frozen=True)
class BudgetSummary:
    """Department budget figures for one fiscal year.

    ``remaining_amount`` is None when the department has no ceiling.
    """

    budget_amount: Decimal | None
    used_amount: Decimal
    remaining_amount: Decimal | None


@dataclass(frozen=True)
class NotificationEvent:
    """A notification about one document, addressed by event type."""

    event_type: str
    title: str
    content: str
    document_type: str
    document_id: str
    link_url: str | None = None
    metadata: Mapping[str, Any] | None = None


@runtime_checkable
class PermissionChecker(Protocol):
    def check_permission(self, actor: Actor, permission_key: str) -> PermissionResult:
        ...


@runtime_checkable
class UserDirectory(Protocol):
    def list_user_ids_by_role(self, role: str) -> Sequence[str]:
        ...

    def roles_for(self, user_id: str) -> tuple[str, ...]:
        ...

    def emails_for(self, user_ids: Sequence[str]) -> list[str]:
        ...

    def phones_for(self, user_ids: Sequence[str]) -> list[str]:
        ...


@runtime_checkable
class DocumentRepository(Protocol):
    """Storage for one document type.

    ``update_status`` is a compare-and-set: it returns the updated snapshot,
    or None when the stored (status, version) no longer match.
    """

    def find_by_id(self, document_id: str) -> Document | None:
        ...

    def update_status(
        self,
        document_id: str,
        patch: Mapping[str, Any],
        expected_status: str,
        expected_version: int,
    ) -> Document | None:
        ...

    def append_log(self, entry: WorkflowLogEntry) -> WorkflowLogEntry:
        ...

    def list_logs(self, document_id: str) -> list[WorkflowLogEntry]:
        ...

    def transaction(self) -> AbstractContextManager[Any]:
        ...


@runtime_checkable
class BudgetProvider(Protocol):
    def get_department_budget_summary(
        self, purchaser_id: str, year: int
    ) -> BudgetSummary | None:
        ...


@runtime_checkable
class NotificationGateway(Protocol):
    def create_in_app_notifications(
        self, recipient_ids: Sequence[str], event: NotificationEvent
    ) -> int:
        ...

    def send_email_messages(self, to: Sequence[str], subject: str, text: str) -> bool:
        ...

    def send_sms_text_message(
        self, content: str, channel: str, phones: Sequence[str]
    ) -> bool:
        ...


@runtime_checkable
class FinanceRecordWriter(Protocol):
    """Writes the derived expense record linked to a paid document."""

    def create_expense_record(
        self, document: Document, amount: Decimal, operator_id: str
    ) -> str:
        ...


def iter_nonblank(values: Sequence[str] | None) -> Iterator[str]:
    """Yield stripped, non-blank values, first occurrence only."""
    seen: set[str] = set()
    for v in values or ():
        s = str(v).strip()
        if s and s not in seen:
            seen.add(s)
            yield s
