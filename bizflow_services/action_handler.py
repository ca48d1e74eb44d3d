"""
bizflow_services.action_handler -- Document lifecycle actions.

Responsibility:
    Accept an action request against a purchase or reimbursement, decide
    whether it is legal, work out the next state with the workflow engine,
    persist it atomically and notify the people involved.  Thin
    coordinator: guard evaluation belongs to DocumentGuardRules, graph
    traversal to WorkflowEngine, payment arithmetic to apply_payment,
    approver lookup to ApproverResolver.

Architecture position:
    Services layer.  May import from bizflow_engines/, bizflow_kernel/ and
    bizflow_config/.  Storage, permissions, budget figures, notification
    delivery and the finance ledger are reached through injected ports.

Invariants enforced:
    - Pipeline order: find -> guards -> request validation -> permission
      -> budget -> engine -> persist -> notify.  Nothing is written before
      every check passed.
    - The status write is a compare-and-set on (status, version) inside
      ``repository.transaction()``, together with exactly one log row and,
      for payments, the linked finance record.  A lost race raises the
      action's guard error and leaves no log row.
    - Notifications run after the transaction and never fail the action.
    - Every call emits one ``document_action`` trace record carrying an
      outcome code and its duration.

Failure modes:
    - DocumentNotFoundError, GuardViolationError (and subclasses),
      RequestValidationError (and subclasses), PermissionDeniedError,
      ApproverNotFoundError, NodeNotFoundError, LinkedRecordError.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any
from uuid import uuid4

from bizflow_engines.guard_rules import DocumentGuardRules, guard_rules_for
from bizflow_engines.payment import apply_payment
from bizflow_engines.traversal import StepResult, WorkflowEngine
from bizflow_kernel.domain.clock import Clock, SystemClock
from bizflow_kernel.domain.documents import (
    ActionRequest,
    ActionResult,
    Actor,
    Document,
    DocumentType,
    Purchase,
    PurchaseStatus,
    Reimbursement,
    ReimbursementProgress,
    ReimbursementSourceType,
    ReimbursementStatus,
    WorkflowAction,
    WorkflowLogEntry,
)
from bizflow_kernel.domain.ports import DocumentRepository, FinanceRecordWriter, PermissionChecker
from bizflow_kernel.domain.workflow import EdgeCondition, WorkflowNode
from bizflow_kernel.exceptions import (
    ApproverRequiredError,
    BizflowError,
    DocumentNotFoundError,
    GuardViolationError,
    InvalidTransferTargetError,
    LinkedRecordError,
    PermissionDeniedError,
    ReasonRequiredError,
    RequestValidationError,
    UnknownDocumentTypeError,
    WorkflowError,
)
from bizflow_kernel.logging_config import LogContext, get_logger
from bizflow_services.approver_resolution import ApproverResolver
from bizflow_services.budget_guard import BudgetGuard
from bizflow_services.directory import PermissionKeys
from bizflow_services.notification_dispatcher import NotificationDispatcher, PendingNotification
from bizflow_services.workflow_registry import DEFAULT_APPROVER_ROLE, WorkflowRegistry

logger = get_logger("services.action_handler")

TRACE_TYPE_DOCUMENT_ACTION = "DOCUMENT_ACTION"
OUTCOME_SUCCESS = "success"
OUTCOME_GUARD_FAILED = "guard_failed"
OUTCOME_FORBIDDEN = "forbidden"
OUTCOME_NOT_FOUND = "not_found"
OUTCOME_INVALID_REQUEST = "invalid_request"
OUTCOME_CONFLICT = "conflict"
OUTCOME_ROLLED_BACK = "rolled_back"
OUTCOME_WORKFLOW_ERROR = "workflow_error"

CONCURRENT_UPDATE = "concurrent update"

_A = WorkflowAction

_ORIGINATOR_ACTIONS = frozenset({_A.SUBMIT.value, _A.WITHDRAW.value, _A.SUBMIT_REIMBURSEMENT.value})
_APPROVER_ACTIONS = frozenset({_A.APPROVE.value, _A.REJECT.value, _A.TRANSFER.value})
_REASON_REQUIRED = frozenset({_A.REJECT.value, _A.ISSUE.value, _A.WITHDRAW.value})

# Payment-issue handling is a finance duty and shares the pay permission.
_PERMISSION_VERB = {
    _A.ISSUE.value: _A.PAY.value,
    _A.RESOLVE_ISSUE.value: _A.PAY.value,
}


def _outcome_for(exc: BizflowError) -> str:
    if isinstance(exc, DocumentNotFoundError):
        return OUTCOME_NOT_FOUND
    if isinstance(exc, PermissionDeniedError):
        return OUTCOME_FORBIDDEN
    if isinstance(exc, RequestValidationError):
        return OUTCOME_INVALID_REQUEST
    if isinstance(exc, LinkedRecordError):
        return OUTCOME_ROLLED_BACK
    if isinstance(exc, GuardViolationError):
        return OUTCOME_CONFLICT if exc.detail == CONCURRENT_UPDATE else OUTCOME_GUARD_FAILED
    if isinstance(exc, WorkflowError):
        return OUTCOME_WORKFLOW_ERROR
    return OUTCOME_GUARD_FAILED


def _status(document: Document, value: str) -> PurchaseStatus | ReimbursementStatus:
    """The document's own status enum member for ``value``."""
    return type(document.status)(value)


@dataclass
class _Plan:
    """Everything one accepted action will write and announce."""

    to_status: str
    patch: dict[str, Any]
    comment: str | None = None
    side_channel: tuple[WorkflowNode, ...] = ()
    events: list[PendingNotification] = field(default_factory=list)
    finance_amount: Decimal | None = None


class DocumentActionHandler:
    """
    Executes workflow actions on purchases and reimbursements.

    Contract:
        ``handle`` either returns an ActionResult describing the committed
        transition or raises a BizflowError subclass having written nothing.

    Guarantees:
        - Thread-safe as long as the injected repositories are; the handler
          keeps no per-call state.
        - Stale reads are caught at write time by the compare-and-set.

    Non-goals:
        - Creating or editing document content (drafts are written by the
          caller through its repository).
        - Retrying lost races.
    """

    def __init__(
        self,
        repositories: Mapping[DocumentType | str, DocumentRepository],
        permission_checker: PermissionChecker,
        workflow_registry: WorkflowRegistry,
        approver_resolver: ApproverResolver,
        notifier: NotificationDispatcher | None = None,
        budget_guard: BudgetGuard | None = None,
        finance_writer: FinanceRecordWriter | None = None,
        clock: Clock | None = None,
        guard_rules: Mapping[DocumentType, DocumentGuardRules] | None = None,
        outcome_sink: Callable[[dict], None] | None = None,
    ) -> None:
        self._repositories = {DocumentType(k): v for k, v in repositories.items()}
        self._permissions = permission_checker
        self._registry = workflow_registry
        self._resolver = approver_resolver
        self._notifier = notifier
        self._budget_guard = budget_guard
        self._finance_writer = finance_writer
        self._clock = clock or SystemClock()
        self._guard_rules = dict(guard_rules or {})
        for doc_type in DocumentType:
            self._guard_rules.setdefault(doc_type, guard_rules_for(doc_type))
        self._outcome_sink = outcome_sink

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def _repository(self, document_type: DocumentType) -> DocumentRepository:
        repo = self._repositories.get(document_type)
        if repo is None:
            raise UnknownDocumentTypeError(document_type.value)
        return repo

    def _rules(self, document_type: DocumentType) -> DocumentGuardRules:
        return self._guard_rules[document_type]

    def _source_purchase(self, document: Document) -> Purchase | None:
        if not isinstance(document, Reimbursement):
            return None
        if document.source_type is not ReimbursementSourceType.PURCHASE:
            return None
        if not document.source_purchase_id:
            return None
        repo = self._repositories.get(DocumentType.PURCHASE)
        if repo is None:
            return None
        found = repo.find_by_id(document.source_purchase_id)
        return found if isinstance(found, Purchase) else None

    def allowed_actions(self, document_type: DocumentType | str, document: Document) -> list[str]:
        """Actions the guard table accepts for ``document`` right now."""
        doc_type = DocumentType(document_type)
        return self._rules(doc_type).allowed_actions(
            document, source_purchase=self._source_purchase(document)
        )

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def handle(
        self,
        document_type: DocumentType | str,
        document_id: str,
        actor: Actor,
        request: ActionRequest,
        correlation_id: str | None = None,
    ) -> ActionResult:
        """Run ``request`` against one document and return the committed result."""
        try:
            doc_type = DocumentType(document_type)
        except ValueError:
            raise UnknownDocumentTypeError(str(document_type)) from None

        action = str(request.action)
        t0 = time.monotonic()
        with LogContext.bind(
            correlation_id=correlation_id or str(uuid4()),
            actor_id=actor.user_id,
            document_type=doc_type.value,
            document_id=document_id,
            action=action,
        ):
            observed: dict[str, str | None] = {"from_status": None}
            try:
                result = self._execute(doc_type, document_id, actor, request, observed)
            except BizflowError as exc:
                self._emit_trace(
                    doc_type,
                    document_id,
                    action,
                    from_status=observed["from_status"],
                    to_status=None,
                    outcome=_outcome_for(exc),
                    reason=str(exc),
                    error_code=exc.code,
                    duration_ms=(time.monotonic() - t0) * 1000,
                )
                raise
            self._emit_trace(
                doc_type,
                document_id,
                action,
                from_status=result.from_status,
                to_status=result.to_status,
                outcome=OUTCOME_SUCCESS,
                reason="",
                duration_ms=(time.monotonic() - t0) * 1000,
            )
            return result

    def _emit_trace(
        self,
        document_type: DocumentType,
        document_id: str,
        action: str,
        *,
        from_status: str | None,
        to_status: str | None,
        outcome: str,
        reason: str,
        duration_ms: float,
        error_code: str | None = None,
    ) -> None:
        record: dict[str, Any] = {
            "trace_type": TRACE_TYPE_DOCUMENT_ACTION,
            "ts": self._clock.now().isoformat(),
            "document_type": document_type.value,
            "document_id": document_id,
            "action": action,
            "from_status": from_status,
            "outcome": outcome,
            "reason": reason,
            "duration_ms": round(duration_ms, 3),
        }
        if to_status is not None:
            record["to_status"] = to_status
        if error_code is not None:
            record["error_code"] = error_code
        record.update(LogContext.get_all())
        if outcome == OUTCOME_SUCCESS:
            logger.info("document_action", extra=record)
        else:
            logger.warning("document_action", extra=record)
        record["message"] = "document_action"
        if self._outcome_sink is not None:
            self._outcome_sink(record)

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    def _execute(
        self,
        doc_type: DocumentType,
        document_id: str,
        actor: Actor,
        request: ActionRequest,
        observed: dict[str, str | None],
    ) -> ActionResult:
        repo = self._repository(doc_type)
        document = repo.find_by_id(document_id)
        if document is None:
            raise DocumentNotFoundError(doc_type.value, document_id)
        from_status = document.status.value
        observed["from_status"] = from_status

        rules = self._rules(doc_type)
        action = str(request.action)
        rules.check_action(
            action,
            document,
            source_purchase=self._source_purchase(document),
        )
        self._validate_request(doc_type, document, actor, request)
        self._check_permission(doc_type, document, actor, action)

        if (
            action == _A.SUBMIT.value
            and isinstance(document, Purchase)
            and self._budget_guard is not None
        ):
            self._budget_guard.check(document, actor)

        plan = self._plan(doc_type, document, actor, request)

        with repo.transaction():
            updated = repo.update_status(
                document.id, plan.patch, from_status, document.version
            )
            if updated is None:
                raise rules.error_for(action)(action, document.id, from_status, CONCURRENT_UPDATE)
            log_entry = repo.append_log(
                WorkflowLogEntry(
                    document_type=doc_type,
                    document_id=document.id,
                    action=action,
                    from_status=from_status,
                    to_status=plan.to_status,
                    operator_id=actor.user_id,
                    comment=plan.comment,
                    created_at=self._clock.now(),
                )
            )
            if plan.finance_amount is not None and self._finance_writer is not None:
                try:
                    self._finance_writer.create_expense_record(
                        updated, plan.finance_amount, actor.user_id
                    )
                except Exception as exc:
                    logger.error(
                        "finance_record_failed",
                        extra={"document_id": document.id, "error": str(exc)},
                    )
                    raise LinkedRecordError(doc_type.value, document.id, str(exc)) from exc

        notified: tuple[str, ...] = ()
        if self._notifier is not None:
            notified = self._notifier.dispatch(updated, plan.side_channel, plan.events)

        return ActionResult(
            document=updated,
            action=action,
            from_status=from_status,
            to_status=plan.to_status,
            log_entries=(log_entry,),
            side_channel_node_ids=tuple(n.id for n in plan.side_channel),
            notified_events=notified,
        )

    # ------------------------------------------------------------------
    # Checks
    # ------------------------------------------------------------------

    def _validate_request(
        self,
        doc_type: DocumentType,
        document: Document,
        actor: Actor,
        request: ActionRequest,
    ) -> None:
        action = str(request.action)
        if action in _REASON_REQUIRED and request.remark is None:
            raise ReasonRequiredError(action)

        if action != _A.TRANSFER.value:
            return
        target = (request.to_approver_id or "").strip()
        if not target:
            raise ApproverRequiredError(action)
        if target == actor.user_id:
            raise InvalidTransferTargetError(action, target, "cannot transfer to yourself")
        if request.remark is None:
            raise ReasonRequiredError(action)
        if target == document.pending_approver_id:
            raise InvalidTransferTargetError(action, target, "already the pending approver")
        target_actor = Actor(target, tuple(self._resolver.directory.roles_for(target)))
        approve_key = PermissionKeys.for_action(doc_type.value, _A.APPROVE.value)
        if not self._permissions.check_permission(target_actor, approve_key).allowed:
            raise InvalidTransferTargetError(action, target, f"target lacks {approve_key}")

    def _is_admin(self, actor: Actor) -> bool:
        return self._permissions.check_permission(actor, PermissionKeys.WORKFLOW_ADMIN).allowed

    def _check_permission(
        self,
        doc_type: DocumentType,
        document: Document,
        actor: Actor,
        action: str,
    ) -> None:
        key = PermissionKeys.for_action(doc_type.value, _PERMISSION_VERB.get(action, action))

        if action in _ORIGINATOR_ACTIONS:
            if document.originator_id == actor.user_id or self._is_admin(actor):
                return
            raise PermissionDeniedError(actor.user_id, key, "only the originator may do this")

        result = self._permissions.check_permission(actor, key)
        if not result.allowed:
            raise PermissionDeniedError(actor.user_id, key, result.reason)

        if (
            action in _APPROVER_ACTIONS
            and document.pending_approver_id
            and document.pending_approver_id != actor.user_id
            and not self._is_admin(actor)
        ):
            raise PermissionDeniedError(actor.user_id, key, "not the pending approver")

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------

    def _plan(
        self,
        doc_type: DocumentType,
        document: Document,
        actor: Actor,
        request: ActionRequest,
    ) -> _Plan:
        planners = {
            _A.SUBMIT.value: self._plan_submit,
            _A.APPROVE.value: self._plan_approve,
            _A.REJECT.value: self._plan_reject,
            _A.TRANSFER.value: self._plan_transfer,
            _A.WITHDRAW.value: self._plan_withdraw,
            _A.SUBMIT_REIMBURSEMENT.value: self._plan_submit_reimbursement,
            _A.PAY.value: self._plan_pay,
            _A.ISSUE.value: self._plan_issue,
            _A.RESOLVE_ISSUE.value: self._plan_resolve_issue,
        }
        return planners[str(request.action)](
            self._registry.engine_for(doc_type), document, actor, request
        )

    def _approved_patch(self, document: Document, actor: Actor) -> dict[str, Any]:
        patch: dict[str, Any] = {
            "status": _status(document, "approved"),
            "approved_at": self._clock.now(),
            "approved_by": actor.user_id,
            "pending_approver_id": None,
            "current_node_id": None,
        }
        if isinstance(document, Purchase):
            patch["reimbursement_status"] = ReimbursementProgress.INVOICE_PENDING
        return patch

    def _approved_events(self, document: Document) -> list[PendingNotification]:
        event = f"{document.document_type.value}_approved"
        originator = (document.originator_id,) if document.originator_id else ()
        if isinstance(document, Reimbursement):
            return [PendingNotification(event, originator, (DEFAULT_APPROVER_ROLE,))]
        return [PendingNotification(event, originator)]

    def _pause_at(
        self, step: StepResult, document: Document
    ) -> tuple[str, str] | None:
        """(node id, approver) when traversal paused on an approval node."""
        node = step.next_approval
        if node is None:
            return None
        return node.id, self._resolver.resolve_approver(node, document)

    def _plan_submit(
        self, engine: WorkflowEngine, document: Document, actor: Actor, request: ActionRequest
    ) -> _Plan:
        step = engine.resolve_initial_step(document.condition_context())
        now = self._clock.now()
        reset = {
            "submitted_at": now,
            "approved_at": None,
            "approved_by": None,
            "rejected_at": None,
            "rejected_by": None,
            "rejection_reason": None,
        }
        paused = self._pause_at(step, document)
        if paused is None:
            patch = {**reset, **self._approved_patch(document, actor)}
            return _Plan(
                to_status=patch["status"].value,
                patch=patch,
                comment=request.remark or "submitted; no approval step required",
                side_channel=step.passed_side_channel_nodes,
                events=self._approved_events(document),
            )

        node_id, approver = paused
        status = _status(document, "pending_approval")
        return _Plan(
            to_status=status.value,
            patch={
                **reset,
                "status": status,
                "pending_approver_id": approver,
                "current_node_id": node_id,
            },
            comment=request.remark or "submitted for approval",
            side_channel=step.passed_side_channel_nodes,
            events=[PendingNotification(f"{document.document_type.value}_submitted", (approver,))],
        )

    def _plan_approve(
        self, engine: WorkflowEngine, document: Document, actor: Actor, request: ActionRequest
    ) -> _Plan:
        if document.current_node_id:
            step = engine.calculate_next_step(
                document.current_node_id,
                EdgeCondition.APPROVED.value,
                document.condition_context(),
            )
        else:
            step = StepResult(None)

        paused = self._pause_at(step, document)
        if paused is None:
            patch = self._approved_patch(document, actor)
            return _Plan(
                to_status=patch["status"].value,
                patch=patch,
                comment=request.remark,
                side_channel=step.passed_side_channel_nodes,
                events=self._approved_events(document),
            )

        node_id, approver = paused
        return _Plan(
            to_status=document.status.value,
            patch={"pending_approver_id": approver, "current_node_id": node_id},
            comment=request.remark,
            side_channel=step.passed_side_channel_nodes,
            events=[PendingNotification(f"{document.document_type.value}_submitted", (approver,))],
        )

    def _plan_reject(
        self, engine: WorkflowEngine, document: Document, actor: Actor, request: ActionRequest
    ) -> _Plan:
        reason = request.remark
        if document.current_node_id:
            step = engine.calculate_next_step(
                document.current_node_id,
                EdgeCondition.REJECTED.value,
                document.condition_context(),
            )
        else:
            step = StepResult(None)

        paused = self._pause_at(step, document)
        if paused is not None:
            node_id, approver = paused
            return _Plan(
                to_status=document.status.value,
                patch={"pending_approver_id": approver, "current_node_id": node_id},
                comment=reason,
                side_channel=step.passed_side_channel_nodes,
                events=[
                    PendingNotification(
                        f"{document.document_type.value}_submitted",
                        (approver,),
                        detail=f"Sent back: {reason}",
                    )
                ],
            )

        status = _status(document, "rejected")
        originator = (document.originator_id,) if document.originator_id else ()
        return _Plan(
            to_status=status.value,
            patch={
                "status": status,
                "rejected_at": self._clock.now(),
                "rejected_by": actor.user_id,
                "rejection_reason": reason,
                "pending_approver_id": None,
                "current_node_id": None,
            },
            comment=reason,
            side_channel=step.passed_side_channel_nodes,
            events=[
                PendingNotification(
                    f"{document.document_type.value}_rejected",
                    originator,
                    detail=f"Reason: {reason}",
                )
            ],
        )

    def _plan_transfer(
        self, engine: WorkflowEngine, document: Document, actor: Actor, request: ActionRequest
    ) -> _Plan:
        target = (request.to_approver_id or "").strip()
        return _Plan(
            to_status=document.status.value,
            patch={"pending_approver_id": target},
            comment=request.remark or f"transferred to {target}",
            events=[PendingNotification(f"{document.document_type.value}_transferred", (target,))],
        )

    def _plan_withdraw(
        self, engine: WorkflowEngine, document: Document, actor: Actor, request: ActionRequest
    ) -> _Plan:
        status = _status(document, "draft")
        return _Plan(
            to_status=status.value,
            patch={"status": status, "pending_approver_id": None, "current_node_id": None},
            comment=request.remark,
        )

    def _plan_submit_reimbursement(
        self, engine: WorkflowEngine, document: Document, actor: Actor, request: ActionRequest
    ) -> _Plan:
        return _Plan(
            to_status=document.status.value,
            patch={"reimbursement_status": ReimbursementProgress.REIMBURSEMENT_PENDING},
            comment=request.remark or "reimbursement submitted for finance review",
            events=[
                PendingNotification("reimbursement_submitted", recipient_roles=(DEFAULT_APPROVER_ROLE,))
            ],
        )

    def _plan_pay(
        self, engine: WorkflowEngine, document: Document, actor: Actor, request: ActionRequest
    ) -> _Plan:
        now = self._clock.now()
        originator = (document.originator_id,) if document.originator_id else ()

        if isinstance(document, Reimbursement):
            return _Plan(
                to_status=ReimbursementStatus.PAID.value,
                patch={
                    "status": ReimbursementStatus.PAID,
                    "paid_at": now,
                    "paid_by": actor.user_id,
                    "payment_note": request.remark,
                },
                comment=request.remark or f"paid {document.amount}",
                events=[PendingNotification("reimbursement_paid", originator)],
                finance_amount=document.amount,
            )

        outcome = apply_payment(document, request.amount)
        patch: dict[str, Any] = {"paid_amount": outcome.paid_amount}
        comment = f"paid {outcome.payment_amount}, remaining {outcome.remaining_amount}"
        if not outcome.fully_paid:
            return _Plan(
                to_status=document.status.value,
                patch=patch,
                comment=request.remark or comment,
            )

        patch.update(
            status=PurchaseStatus.PAID,
            paid_at=now,
            paid_by=actor.user_id,
            reimbursement_status=ReimbursementProgress.REIMBURSED,
        )
        return _Plan(
            to_status=PurchaseStatus.PAID.value,
            patch=patch,
            comment=request.remark or comment,
            events=[PendingNotification("purchase_paid", originator)],
            finance_amount=document.due_amount,
        )

    def _plan_issue(
        self, engine: WorkflowEngine, document: Document, actor: Actor, request: ActionRequest
    ) -> _Plan:
        reason = request.remark
        originator = (document.originator_id,) if document.originator_id else ()
        return _Plan(
            to_status=document.status.value,
            patch={"payment_issue_open": True, "payment_issue_reason": reason},
            comment=reason,
            events=[PendingNotification("payment_issue_marked", originator, detail=f"Reason: {reason}")],
        )

    def _plan_resolve_issue(
        self, engine: WorkflowEngine, document: Document, actor: Actor, request: ActionRequest
    ) -> _Plan:
        return _Plan(
            to_status=document.status.value,
            patch={"payment_issue_open": False, "payment_issue_reason": None},
            comment=request.remark or "payment issue resolved",
            events=[
                PendingNotification("payment_issue_resolved", recipient_roles=(DEFAULT_APPROVER_ROLE,))
            ],
        )
