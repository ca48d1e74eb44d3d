"""
Module: bizflow_engines.guard_rules
Responsibility:
    Decide, per document type and current status, which actions are legal
    and which business invariants must hold before a transition commits.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  The action handler calls
    ``check_action`` before it touches storage and again implicitly through
    the compare-and-set write.

Invariants enforced:
    - An action is accepted only from the statuses listed in its rule.
    - Named guards run in declared order; the first failure raises.
    - A guard that cannot be evaluated (missing evaluator or evaluator
      error) counts as failed.

Failure modes:
    - UnknownActionError for actions absent from the table.
    - The rule's GuardViolationError subclass, or the guard's own error
      (e.g. InvoiceFilesRequiredError, AlreadyPaidError).
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from bizflow_kernel.domain.documents import (
    Document,
    DocumentType,
    Purchase,
    PurchaseStatus,
    ReimbursementProgress,
    ReimbursementStatus,
    WorkflowAction,
    has_invoice_evidence,
    reimbursement_has_evidence,
)
from bizflow_kernel.exceptions import (
    AlreadyPaidError,
    GuardViolationError,
    InvoiceFilesRequiredError,
    NotApprovableError,
    NotIssuableError,
    NotPayableError,
    NotReimbursementSubmittableError,
    NotRejectableError,
    NotResolvableError,
    NotSubmittableError,
    NotTransferableError,
    NotWithdrawableError,
    UnknownActionError,
)
from bizflow_kernel.logging_config import get_logger

logger = get_logger("engines.guard_rules")


@dataclass(frozen=True)
class GuardContext:
    """What a guard may look at besides the document itself."""

    document: Document
    source_purchase: Purchase | None = None


@dataclass(frozen=True)
class ActionRule:
    """Static precondition for one action on one document type.

    ``status_errors`` overrides ``error`` for specific current statuses,
    e.g. paying an already paid document reports ALREADY_PAID.
    """

    action: str
    from_statuses: frozenset[str]
    error: type[GuardViolationError]
    guards: tuple[str, ...] = ()
    status_errors: Mapping[str, type[GuardViolationError]] = field(default_factory=dict)


class GuardExecutor:
    """Evaluates named guards against a GuardContext.

    Each guard may declare its own error; otherwise the rule's error is
    raised when it fails.
    """

    def __init__(self) -> None:
        self._evaluators: dict[str, Callable[[GuardContext], bool]] = {}
        self._errors: dict[str, type[GuardViolationError]] = {}

    def register(
        self,
        guard_name: str,
        evaluator: Callable[[GuardContext], bool],
        error: type[GuardViolationError] | None = None,
    ) -> None:
        self._evaluators[guard_name] = evaluator
        if error is not None:
            self._errors[guard_name] = error

    def error_for(self, guard_name: str) -> type[GuardViolationError] | None:
        return self._errors.get(guard_name)

    def evaluate(self, guard_name: str, context: GuardContext) -> bool:
        """Returns True if the guard passes."""
        fn = self._evaluators.get(guard_name)
        if fn is None:
            logger.warning("guard_no_evaluator", extra={"guard_name": guard_name})
            return False
        try:
            return bool(fn(context))
        except Exception as e:  # noqa: BLE001
            logger.warning(
                "guard_evaluation_error",
                extra={"guard_name": guard_name, "error": str(e)},
            )
            return False


# ---------------------------------------------------------------------------
# Guard evaluators
# ---------------------------------------------------------------------------


def _reimbursement_open(ctx: GuardContext) -> bool:
    return ctx.document.reimbursement_status in (
        ReimbursementProgress.INVOICE_PENDING,
        ReimbursementProgress.REIMBURSEMENT_REJECTED,
    )


def _reimbursement_submitted(ctx: GuardContext) -> bool:
    return ctx.document.reimbursement_status is ReimbursementProgress.REIMBURSEMENT_PENDING


def _no_open_payment_issue(ctx: GuardContext) -> bool:
    return not ctx.document.payment_issue_open


def _payment_issue_open(ctx: GuardContext) -> bool:
    return bool(ctx.document.payment_issue_open)


def _amount_remaining(ctx: GuardContext) -> bool:
    return ctx.document.remaining_amount > 0


def default_guard_executor() -> GuardExecutor:
    """Return a GuardExecutor with the built-in evaluators registered."""
    ex = GuardExecutor()
    ex.register("reimbursement_open", _reimbursement_open)
    ex.register(
        "invoice_evidence",
        lambda ctx: has_invoice_evidence(ctx.document),
        InvoiceFilesRequiredError,
    )
    ex.register("reimbursement_submitted", _reimbursement_submitted)
    ex.register("no_open_payment_issue", _no_open_payment_issue)
    ex.register("payment_issue_open", _payment_issue_open)
    ex.register("amount_remaining", _amount_remaining, AlreadyPaidError)
    ex.register(
        "reimbursement_evidence",
        lambda ctx: reimbursement_has_evidence(ctx.document, ctx.source_purchase),
        InvoiceFilesRequiredError,
    )
    return ex


# ---------------------------------------------------------------------------
# Rule tables
# ---------------------------------------------------------------------------

_P = PurchaseStatus
_R = ReimbursementStatus
_A = WorkflowAction


def _rule(
    action: WorkflowAction,
    statuses: tuple[Any, ...],
    error: type[GuardViolationError],
    guards: tuple[str, ...] = (),
    status_errors: Mapping[Any, type[GuardViolationError]] | None = None,
) -> tuple[str, ActionRule]:
    return action.value, ActionRule(
        action=action.value,
        from_statuses=frozenset(s.value for s in statuses),
        error=error,
        guards=guards,
        status_errors={s.value: e for s, e in (status_errors or {}).items()},
    )


PURCHASE_RULES: dict[str, ActionRule] = dict([
    _rule(_A.SUBMIT, (_P.DRAFT, _P.REJECTED), NotSubmittableError),
    _rule(_A.APPROVE, (_P.PENDING_APPROVAL,), NotApprovableError),
    _rule(_A.REJECT, (_P.PENDING_APPROVAL,), NotRejectableError),
    _rule(_A.TRANSFER, (_P.PENDING_APPROVAL,), NotTransferableError),
    _rule(_A.WITHDRAW, (_P.PENDING_APPROVAL,), NotWithdrawableError),
    _rule(
        _A.SUBMIT_REIMBURSEMENT,
        (_P.APPROVED,),
        NotReimbursementSubmittableError,
        ("reimbursement_open", "invoice_evidence"),
    ),
    _rule(
        _A.PAY,
        (_P.APPROVED,),
        NotPayableError,
        ("reimbursement_submitted", "no_open_payment_issue", "amount_remaining"),
        {_P.PAID: AlreadyPaidError},
    ),
    _rule(_A.ISSUE, (_P.APPROVED,), NotIssuableError, ("no_open_payment_issue",)),
    _rule(_A.RESOLVE_ISSUE, (_P.APPROVED,), NotResolvableError, ("payment_issue_open",)),
])

REIMBURSEMENT_RULES: dict[str, ActionRule] = dict([
    _rule(
        _A.SUBMIT,
        (_R.DRAFT, _R.REJECTED),
        NotSubmittableError,
        ("reimbursement_evidence",),
    ),
    _rule(_A.APPROVE, (_R.PENDING_APPROVAL,), NotApprovableError),
    _rule(_A.REJECT, (_R.PENDING_APPROVAL,), NotRejectableError),
    _rule(_A.TRANSFER, (_R.PENDING_APPROVAL,), NotTransferableError),
    _rule(_A.WITHDRAW, (_R.PENDING_APPROVAL,), NotWithdrawableError),
    _rule(_A.PAY, (_R.APPROVED,), NotPayableError, (), {_R.PAID: AlreadyPaidError}),
])


class DocumentGuardRules:
    """
    Guard table for one document type.

    Contract:
        ``check_action`` raises on the first violated precondition;
        ``is_action_allowed`` answers the same question without raising.

    Guarantees:
        - Never mutates the document.
        - Status is checked before any named guard.
    """

    def __init__(
        self,
        document_type: DocumentType,
        rules: Mapping[str, ActionRule],
        executor: GuardExecutor | None = None,
    ) -> None:
        self.document_type = document_type
        self._rules = dict(rules)
        self._executor = executor or default_guard_executor()

    @property
    def actions(self) -> tuple[str, ...]:
        return tuple(self._rules)

    def rule_for(self, action: str, document_id: str = "") -> ActionRule:
        rule = self._rules.get(str(action))
        if rule is None:
            raise UnknownActionError(str(action), document_id, None, self.document_type.value)
        return rule

    def check_action(
        self,
        action: str,
        document: Document,
        *,
        source_purchase: Purchase | None = None,
    ) -> ActionRule:
        """Raise unless ``action`` is legal for ``document`` right now.

        Returns the matched rule.
        """
        rule = self.rule_for(action, document.id)
        status = document.status.value

        if status not in rule.from_statuses:
            error = rule.status_errors.get(status, rule.error)
            raise error(rule.action, document.id, status)

        ctx = GuardContext(document, source_purchase)
        for guard_name in rule.guards:
            if not self._executor.evaluate(guard_name, ctx):
                error = self._executor.error_for(guard_name) or rule.error
                raise error(rule.action, document.id, status, guard_name)
        return rule

    def is_action_allowed(
        self,
        action: str,
        document: Document,
        *,
        source_purchase: Purchase | None = None,
    ) -> bool:
        try:
            self.check_action(action, document, source_purchase=source_purchase)
        except GuardViolationError:
            return False
        return True

    def allowed_actions(
        self, document: Document, *, source_purchase: Purchase | None = None
    ) -> list[str]:
        return [
            a for a in self._rules
            if self.is_action_allowed(a, document, source_purchase=source_purchase)
        ]

    def error_for(self, action: str) -> type[GuardViolationError]:
        """Error raised when ``action`` loses a concurrent write."""
        return self.rule_for(action).error


def purchase_guard_rules(executor: GuardExecutor | None = None) -> DocumentGuardRules:
    return DocumentGuardRules(DocumentType.PURCHASE, PURCHASE_RULES, executor)


def reimbursement_guard_rules(executor: GuardExecutor | None = None) -> DocumentGuardRules:
    return DocumentGuardRules(DocumentType.REIMBURSEMENT, REIMBURSEMENT_RULES, executor)


def guard_rules_for(document_type: DocumentType | str) -> DocumentGuardRules:
    if DocumentType(document_type) is DocumentType.PURCHASE:
        return purchase_guard_rules()
    return reimbursement_guard_rules()
