"""
Typed Exception Hierarchy for the Workflow Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers (HTTP adapters, batch jobs, tests) must react to a refused action
without parsing message text.  Every error therefore has:
  1. A TYPED exception class (catch by type, not message)
  2. A CODE class attribute (machine-readable, API-safe)
  3. Structured DATA attributes (document id, status, amounts)

The kernel never formats user-facing text; adapters map ``code`` to
whatever language the UI speaks.

    try:
        handler.handle("purchase", purchase_id, actor, request)
    except GuardViolationError as e:
        api_response(409, code=e.code, status=e.current_status)
    except PermissionDeniedError as e:
        api_response(403, code=e.code, permission=e.permission)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    BizflowError (base)
    |
    +-- WorkflowError
    |   +-- NodeNotFoundError
    |   +-- ApproverNotFoundError
    |
    +-- DocumentError
    |   +-- DocumentNotFoundError
    |   +-- UnknownDocumentTypeError
    |
    +-- GuardViolationError
    |   +-- NotSubmittableError
    |   +-- NotApprovableError
    |   +-- NotRejectableError
    |   +-- NotTransferableError
    |   +-- NotWithdrawableError
    |   +-- NotReimbursementSubmittableError
    |   +-- NotPayableError
    |   |   +-- AlreadyPaidError
    |   +-- NotIssuableError
    |   +-- NotResolvableError
    |   +-- InvoiceFilesRequiredError
    |   +-- BudgetExceededError
    |   +-- PaymentExceedsRemainingError
    |   +-- InvalidPaymentAmountError
    |   +-- UnknownActionError
    |
    +-- RequestValidationError
    |   +-- ReasonRequiredError
    |   +-- ApproverRequiredError
    |   +-- InvalidTransferTargetError
    |
    +-- PermissionDeniedError
    |
    +-- CompensationError
    |   +-- LinkedRecordError
    |
    +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                          | When Raised
----------------|-------------------------------|-------------------------------------
Workflow        | NODE_NOT_FOUND                | Traversal started from unknown node
                | APPROVER_NOT_FOUND            | APPROVAL node resolves to nobody
----------------|-------------------------------|-------------------------------------
Document        | DOCUMENT_NOT_FOUND            | Lookup by id returned nothing
                | UNKNOWN_DOCUMENT_TYPE         | No handler registered for the type
----------------|-------------------------------|-------------------------------------
Guard           | NOT_SUBMITTABLE ...           | Action not legal from current status
                | ALREADY_PAID                  | Pay with nothing remaining
                | INVOICE_FILES_REQUIRED        | Evidence missing
                | BUDGET_EXCEEDED               | Department/year ceiling exceeded
                | PAYMENT_EXCEEDS_REMAINING     | Payment larger than the remainder
                | INVALID_PAYMENT_AMOUNT        | Payment amount <= 0
----------------|-------------------------------|-------------------------------------
Request         | REASON_REQUIRED               | Reject/withdraw without a reason
                | APPROVER_REQUIRED             | Transfer without a target
                | INVALID_TRANSFER_TARGET       | Transfer to self / non-approver
----------------|-------------------------------|-------------------------------------
Permission      | FORBIDDEN                     | Actor lacks permission / not pending
----------------|-------------------------------|-------------------------------------
Compensation    | FAILED_TO_CREATE_FINANCE_RECORD | Linked write failed, primary reverted
----------------|-------------------------------|-------------------------------------
Immutability    | IMMUTABILITY_VIOLATION        | UPDATE/DELETE on a workflow log row

===============================================================================
DESIGN DECISIONS
===============================================================================

1. A stale compare-and-set write raises the SAME guard error as a failed
   precondition.  The loser of a race sees exactly what it would have seen
   had it arrived second.

2. Corrupted graphs (dangling edges, no matching edge, loop ceiling) are
   NOT exceptions.  Traversal stops and returns what it has.

3. Notification failures are never raised; they are logged.
===============================================================================
"""

from decimal import Decimal


class BizflowError(Exception):
    """
    Base exception for all workflow kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "BIZFLOW_ERROR"


# Workflow graph exceptions


class WorkflowError(BizflowError):
    """Base exception for workflow graph errors."""

    code: str = "WORKFLOW_ERROR"


class NodeNotFoundError(WorkflowError):
    """Traversal was asked to start from a node id absent from the graph."""

    code: str = "NODE_NOT_FOUND"

    def __init__(self, node_id: str):
        self.node_id = node_id
        super().__init__(f"Workflow node not found: {node_id}")


class ApproverNotFoundError(WorkflowError):
    """An APPROVAL node resolved to no concrete user."""

    code: str = "APPROVER_NOT_FOUND"

    def __init__(self, node_id: str, roles: tuple[str, ...] = ()):
        self.node_id = node_id
        self.roles = roles
        super().__init__(
            f"No approver resolved for node {node_id} (roles={list(roles)})"
        )


# Document exceptions


class DocumentError(BizflowError):
    """Base exception for document lookup errors."""

    code: str = "DOCUMENT_ERROR"


class DocumentNotFoundError(DocumentError):
    """Document with the given id does not exist."""

    code: str = "DOCUMENT_NOT_FOUND"

    def __init__(self, document_type: str, document_id: str):
        self.document_type = document_type
        self.document_id = document_id
        super().__init__(f"{document_type} not found: {document_id}")


class UnknownDocumentTypeError(DocumentError):
    code: str = "UNKNOWN_DOCUMENT_TYPE"

    def __init__(self, document_type: str):
        self.document_type = document_type
        super().__init__(f"Unknown document type: {document_type}")


# Guard violations


class GuardViolationError(BizflowError):
    """
    An action is not legal for the document in its current state.

    Subclasses only differ by ``code``; they all carry the action, the
    document id and the status observed when the guard ran.
    """

    code: str = "ACTION_NOT_ALLOWED"

    def __init__(
        self,
        action: str,
        document_id: str,
        current_status: str | None = None,
        detail: str | None = None,
    ):
        self.action = action
        self.document_id = document_id
        self.current_status = current_status
        self.detail = detail
        msg = f"Action '{action}' not allowed on {document_id} (status={current_status})"
        if detail:
            msg = f"{msg}: {detail}"
        super().__init__(msg)


class NotSubmittableError(GuardViolationError):
    code: str = "NOT_SUBMITTABLE"


class NotApprovableError(GuardViolationError):
    code: str = "NOT_APPROVABLE"


class NotRejectableError(GuardViolationError):
    code: str = "NOT_REJECTABLE"


class NotTransferableError(GuardViolationError):
    code: str = "NOT_TRANSFERABLE"


class NotWithdrawableError(GuardViolationError):
    code: str = "NOT_WITHDRAWABLE"


class NotReimbursementSubmittableError(GuardViolationError):
    code: str = "NOT_REIMBURSEMENT_SUBMITTABLE"


class NotPayableError(GuardViolationError):
    code: str = "NOT_PAYABLE"


class AlreadyPaidError(NotPayableError):
    """Nothing remains to be paid."""

    code: str = "ALREADY_PAID"


class NotIssuableError(GuardViolationError):
    code: str = "NOT_ISSUABLE"


class NotResolvableError(GuardViolationError):
    code: str = "NOT_RESOLVABLE"


class InvoiceFilesRequiredError(GuardViolationError):
    """Invoice or receipt evidence is required but none is attached."""

    code: str = "INVOICE_FILES_REQUIRED"


class BudgetExceededError(GuardViolationError):
    """Submission would exceed the purchaser's remaining department budget."""

    code: str = "BUDGET_EXCEEDED"

    def __init__(
        self,
        action: str,
        document_id: str,
        requested: Decimal,
        remaining: Decimal,
        current_status: str | None = None,
    ):
        self.requested = requested
        self.remaining = remaining
        super().__init__(
            action,
            document_id,
            current_status,
            f"requested {requested} exceeds remaining budget {remaining}",
        )


class PaymentExceedsRemainingError(GuardViolationError):
    code: str = "PAYMENT_EXCEEDS_REMAINING"

    def __init__(
        self,
        action: str,
        document_id: str,
        amount: Decimal,
        remaining: Decimal,
        current_status: str | None = None,
    ):
        self.amount = amount
        self.remaining = remaining
        super().__init__(
            action,
            document_id,
            current_status,
            f"payment {amount} exceeds remaining {remaining}",
        )


class InvalidPaymentAmountError(GuardViolationError):
    code: str = "INVALID_PAYMENT_AMOUNT"


class UnknownActionError(GuardViolationError):
    """The action name is not defined for the document type."""

    code: str = "UNKNOWN_ACTION"


# Request validation


class RequestValidationError(BizflowError):
    """The action request itself is incomplete or contradictory."""

    code: str = "INVALID_REQUEST"

    def __init__(self, action: str, field: str, detail: str | None = None):
        self.action = action
        self.field = field
        super().__init__(detail or f"'{field}' is required for action '{action}'")


class ReasonRequiredError(RequestValidationError):
    code: str = "REASON_REQUIRED"

    def __init__(self, action: str):
        super().__init__(action, "reason")


class ApproverRequiredError(RequestValidationError):
    code: str = "APPROVER_REQUIRED"

    def __init__(self, action: str):
        super().__init__(action, "to_approver_id")


class InvalidTransferTargetError(RequestValidationError):
    code: str = "INVALID_TRANSFER_TARGET"

    def __init__(self, action: str, target_id: str, detail: str):
        self.target_id = target_id
        super().__init__(action, "to_approver_id", detail)


# Permissions


class PermissionDeniedError(BizflowError):
    """The actor may not perform the action on this document."""

    code: str = "FORBIDDEN"

    def __init__(self, actor_id: str, permission: str, reason: str | None = None):
        self.actor_id = actor_id
        self.permission = permission
        self.reason = reason
        msg = f"Actor {actor_id} lacks permission {permission}"
        if reason:
            msg = f"{msg}: {reason}"
        super().__init__(msg)


# Compensation


class CompensationError(BizflowError):
    code: str = "COMPENSATION_ERROR"


class LinkedRecordError(CompensationError):
    """
    The derived financial record could not be written.

    The primary status mutation has been reverted before this is raised.
    """

    code: str = "FAILED_TO_CREATE_FINANCE_RECORD"

    def __init__(self, document_type: str, document_id: str, cause: str):
        self.document_type = document_type
        self.document_id = document_id
        self.cause = cause
        super().__init__(
            f"Failed to create finance record for {document_type} {document_id}: {cause}"
        )


# Immutability


class ImmutabilityViolationError(BizflowError):
    """Attempted to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(f"Cannot modify {entity_type} {entity_id}: {reason}")
