"""
Reimbursement lifecycle through DocumentActionHandler.

Covers evidence rules on submit, the finance review, payment with its
linked finance record, and rollback when that record cannot be written.
"""

from decimal import Decimal

import pytest

from bizflow_kernel.domain.documents import (
    InvoiceType,
    PurchaseStatus,
    ReimbursementSourceType,
    ReimbursementStatus,
)
from bizflow_kernel.exceptions import (
    AlreadyPaidError,
    InvalidTransferTargetError,
    InvoiceFilesRequiredError,
    LinkedRecordError,
    NotPayableError,
    NotRejectableError,
)
from tests.support import ALICE, FINANCE, FINANCE_2, MANAGER, FailingFinanceWriter

R = "reimbursement"


def approved_claim(harness, **overrides):
    return harness.add_reimbursement(status=ReimbursementStatus.APPROVED, **overrides)


class TestSubmit:

    def test_without_evidence(self, harness):
        claim = harness.add_reimbursement(receipt_images=())

        with pytest.raises(InvoiceFilesRequiredError) as exc_info:
            harness.act(R, claim.id, ALICE, "submit")

        assert exc_info.value.code == "INVOICE_FILES_REQUIRED"
        assert harness.reimbursement(claim.id).status is ReimbursementStatus.DRAFT
        assert harness.reimbursements.list_logs(claim.id) == []

    def test_with_one_receipt(self, harness):
        claim = harness.add_reimbursement()

        result = harness.act(R, claim.id, ALICE, "submit")

        stored = harness.reimbursement(claim.id)
        assert result.to_status == "pending_approval"
        assert stored.pending_approver_id == FINANCE
        assert stored.current_node_id == "finance_approval"
        assert harness.gateway.events_for(FINANCE) == ["reimbursement_submitted"]

    def test_purchase_sourced_claim_uses_source_invoice_rule(self, harness):
        source = harness.add_purchase(
            status=PurchaseStatus.APPROVED, invoice_type=InvoiceType.NONE
        )
        claim = harness.add_reimbursement(
            source_type=ReimbursementSourceType.PURCHASE,
            source_purchase_id=source.id,
            receipt_images=(),
        )

        harness.act(R, claim.id, ALICE, "submit")

        assert harness.reimbursement(claim.id).status is ReimbursementStatus.PENDING_APPROVAL

    def test_purchase_sourced_claim_needs_invoice(self, harness):
        source = harness.add_purchase(status=PurchaseStatus.APPROVED)
        claim = harness.add_reimbursement(
            source_type=ReimbursementSourceType.PURCHASE,
            source_purchase_id=source.id,
        )

        with pytest.raises(InvoiceFilesRequiredError):
            harness.act(R, claim.id, ALICE, "submit")

    def test_no_configured_workflow_uses_builtin(self, make_harness):
        harness = make_harness(use_config_workflows=False)
        claim = harness.add_reimbursement()

        harness.act(R, claim.id, ALICE, "submit")

        assert harness.reimbursement(claim.id).pending_approver_id == FINANCE


class TestReview:

    def test_approve_notifies_applicant_and_finance(self, harness):
        claim = harness.add_reimbursement()
        harness.act(R, claim.id, ALICE, "submit")

        result = harness.act(R, claim.id, FINANCE, "approve")

        assert result.to_status == "approved"
        assert result.side_channel_node_ids == ("notify_applicant",)
        assert harness.gateway.events_for(ALICE) == ["workflow_cc", "reimbursement_approved"]
        assert "reimbursement_approved" in harness.gateway.events_for(FINANCE_2)

    def test_reject(self, harness):
        claim = harness.add_reimbursement()
        harness.act(R, claim.id, ALICE, "submit")

        harness.act(R, claim.id, FINANCE, "reject", reason="no itemised receipt")

        stored = harness.reimbursement(claim.id)
        assert stored.status is ReimbursementStatus.REJECTED
        assert stored.rejection_reason == "no itemised receipt"

    def test_reject_only_while_pending(self, harness):
        claim = approved_claim(harness)

        with pytest.raises(NotRejectableError):
            harness.act(R, claim.id, FINANCE, "reject", reason="late")

    def test_manager_is_not_a_reimbursement_approver(self, harness):
        claim = harness.add_reimbursement()
        harness.act(R, claim.id, ALICE, "submit")

        with pytest.raises(InvalidTransferTargetError):
            harness.act(R, claim.id, FINANCE, "transfer", to_approver_id=MANAGER, comment="handing over")

    def test_transfer_notification_is_in_app_only(self, harness):
        claim = harness.add_reimbursement()
        harness.act(R, claim.id, ALICE, "submit")
        emails_before = len(harness.gateway.emails)

        harness.act(R, claim.id, FINANCE, "transfer", to_approver_id=FINANCE_2, comment="handing over")

        assert harness.gateway.events_for(FINANCE_2) == ["reimbursement_transferred"]
        assert len(harness.gateway.emails) == emails_before


class TestPayment:

    def test_pay_creates_finance_record(self, harness):
        claim = approved_claim(harness)

        result = harness.act(R, claim.id, FINANCE, "pay", note="wired 2024-01-12")

        stored = harness.reimbursement(claim.id)
        assert result.to_status == "paid"
        assert stored.paid_by == FINANCE
        assert stored.payment_note == "wired 2024-01-12"
        record = harness.finance.records[("reimbursement", claim.id)]
        assert record["amount"] == Decimal("320.50")
        assert record["created_by"] == FINANCE
        assert harness.gateway.events_for(ALICE) == ["reimbursement_paid"]

    def test_pay_twice(self, harness):
        claim = approved_claim(harness)
        harness.act(R, claim.id, FINANCE, "pay")

        with pytest.raises(AlreadyPaidError):
            harness.act(R, claim.id, FINANCE, "pay")

        assert len(harness.finance.records) == 1

    def test_pay_requires_approval(self, harness):
        claim = harness.add_reimbursement()

        with pytest.raises(NotPayableError):
            harness.act(R, claim.id, FINANCE, "pay")

    def test_failed_finance_record_rolls_back(self, make_harness, captured_logs):
        harness = make_harness(finance_writer=FailingFinanceWriter())
        claim = approved_claim(harness)

        with pytest.raises(LinkedRecordError) as exc_info:
            harness.act(R, claim.id, FINANCE, "pay")

        assert exc_info.value.code == "FAILED_TO_CREATE_FINANCE_RECORD"
        assert "ledger offline" in str(exc_info.value)
        stored = harness.reimbursement(claim.id)
        assert stored.status is ReimbursementStatus.APPROVED
        assert stored.version == claim.version
        assert harness.reimbursements.list_logs(claim.id) == []
        assert harness.gateway.in_app == []
        assert harness.traces[-1]["outcome"] == "rolled_back"
        messages = [r["message"] for r in captured_logs()]
        assert "finance_record_failed" in messages
