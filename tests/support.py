"""
Shared test collaborators and document builders.

Imported by conftest.py and by tests that build documents or inspect
recorded notifications directly.
"""

from concurrent.futures import Executor, Future
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any
from uuid import uuid4

from bizflow_kernel.domain.documents import (
    ActionRequest,
    ActionResult,
    Actor,
    InvoiceType,
    Purchase,
    PurchaseStatus,
    Reimbursement,
    ReimbursementSourceType,
    ReimbursementStatus,
)
from bizflow_kernel.domain.ports import BudgetSummary, NotificationEvent
from bizflow_services import (
    DocumentActionHandler,
    InMemoryDocumentRepository,
    StaticUserDirectory,
)


# Users known to the test directory.
ALICE = "u-alice"
BOB = "u-bob"
MANAGER = "u-manager"
FINANCE = "u-finance"
FINANCE_2 = "u-finance2"
ADMIN = "u-admin"

TEST_ROLE_MEMBERS = {
    "admin": (ADMIN,),
    "finance": (FINANCE, FINANCE_2),
    "dept_manager": (MANAGER,),
    "employee": (ALICE, BOB),
}

TEST_EMAILS = {
    ALICE: "alice@example.com",
    BOB: "bob@example.com",
    MANAGER: "manager@example.com",
    FINANCE: "finance@example.com",
}

TEST_PHONES = {MANAGER: "+10000000001", FINANCE: "+10000000002"}


class RecordingGateway:
    """NotificationGateway that keeps everything it is asked to deliver."""

    def __init__(self, fail_in_app: bool = False, email_result: bool = True) -> None:
        self.fail_in_app = fail_in_app
        self.email_result = email_result
        self.in_app: list[tuple[tuple[str, ...], NotificationEvent]] = []
        self.emails: list[tuple[tuple[str, ...], str, str]] = []
        self.sms: list[tuple[str, str, tuple[str, ...]]] = []

    def create_in_app_notifications(self, recipient_ids, event) -> int:
        if self.fail_in_app:
            raise ConnectionError("notification store unavailable")
        self.in_app.append((tuple(recipient_ids), event))
        return len(recipient_ids)

    def send_email_messages(self, to, subject, text) -> bool:
        self.emails.append((tuple(to), subject, text))
        return self.email_result

    def send_sms_text_message(self, content, channel, phones) -> bool:
        self.sms.append((content, channel, tuple(phones)))
        return True

    def events_for(self, user_id: str) -> list[str]:
        return [event.event_type for users, event in self.in_app if user_id in users]


class DeferredExecutor(Executor):
    """Queues submitted work until ``run_pending`` is called."""

    def __init__(self) -> None:
        self.pending: list[tuple[Future, Any, tuple, dict]] = []

    def submit(self, fn, /, *args, **kwargs) -> Future:
        future: Future = Future()
        self.pending.append((future, fn, args, kwargs))
        return future

    def run_pending(self) -> None:
        while self.pending:
            future, fn, args, kwargs = self.pending.pop(0)
            try:
                future.set_result(fn(*args, **kwargs))
            except Exception as exc:
                future.set_exception(exc)


class StaticBudgetProvider:
    """BudgetProvider answering from a purchaser -> BudgetSummary map."""

    def __init__(self, summaries: dict[str, BudgetSummary]) -> None:
        self.summaries = summaries
        self.calls: list[tuple[str, int]] = []

    def get_department_budget_summary(self, purchaser_id, year):
        self.calls.append((purchaser_id, year))
        return self.summaries.get(purchaser_id)


class FailingFinanceWriter:
    def create_expense_record(self, document, amount, operator_id) -> str:
        raise RuntimeError("ledger offline")


def make_purchase(**overrides: Any) -> Purchase:
    values: dict[str, Any] = {
        "id": str(uuid4()),
        "status": PurchaseStatus.DRAFT,
        "item_name": "Laptop",
        "purpose": "Developer workstation",
        "quantity": Decimal("1"),
        "unit_price": Decimal("1200.00"),
        "total_amount": Decimal("1200.00"),
        "fee_amount": Decimal("0"),
        "purchase_date": date(2024, 1, 10),
        "purchaser_id": ALICE,
        "created_by": ALICE,
        "department_id": "dept-eng",
        "invoice_type": InvoiceType.GENERAL,
    }
    values.update(overrides)
    return Purchase(**values)


def make_reimbursement(**overrides: Any) -> Reimbursement:
    values: dict[str, Any] = {
        "id": str(uuid4()),
        "status": ReimbursementStatus.DRAFT,
        "title": "Client dinner",
        "category": "meals",
        "amount": Decimal("320.50"),
        "occurred_at": date(2024, 1, 5),
        "source_type": ReimbursementSourceType.DIRECT,
        "applicant_id": ALICE,
        "created_by": ALICE,
        "receipt_images": ("receipt.jpg",),
    }
    values.update(overrides)
    return Reimbursement(**values)


@dataclass
class WorkflowHarness:
    handler: DocumentActionHandler
    purchases: InMemoryDocumentRepository
    reimbursements: InMemoryDocumentRepository
    gateway: RecordingGateway
    finance: Any
    directory: StaticUserDirectory
    traces: list[dict] = field(default_factory=list)

    def actor(self, user_id: str) -> Actor:
        return self.directory.actor(user_id)

    def add_purchase(self, **overrides: Any) -> Purchase:
        return self.purchases.add(make_purchase(**overrides))

    def add_reimbursement(self, **overrides: Any) -> Reimbursement:
        return self.reimbursements.add(make_reimbursement(**overrides))

    def act(self, document_type: str, document_id: str, user_id: str, action: str, **kwargs: Any) -> ActionResult:
        return self.handler.handle(
            document_type, document_id, self.actor(user_id), ActionRequest(action, **kwargs)
        )

    def purchase(self, document_id: str) -> Purchase:
        return self.purchases.find_by_id(document_id)

    def reimbursement(self, document_id: str) -> Reimbursement:
        return self.reimbursements.find_by_id(document_id)

