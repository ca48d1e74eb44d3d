"""
Pure domain layer.

Data objects and rules with NO dependencies on:
- ORM (SQLAlchemy)
- Database
- Time/clock (except the injectable Clock)
- I/O

All domain objects are immutable and deterministic.
"""

from bizflow_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from bizflow_kernel.domain.documents import (
    ActionRequest,
    ActionResult,
    Actor,
    Document,
    DocumentType,
    InvoiceStatus,
    InvoiceType,
    Purchase,
    PurchaseStatus,
    Reimbursement,
    ReimbursementProgress,
    ReimbursementSourceType,
    ReimbursementStatus,
    WorkflowAction,
    WorkflowLogEntry,
    has_invoice_evidence,
    reimbursement_has_evidence,
)
from bizflow_kernel.domain.workflow import (
    ApprovalNode,
    ApproverType,
    CcNode,
    ConditionFieldType,
    ConditionNode,
    ConditionOperator,
    EdgeCondition,
    EndNode,
    NodeType,
    NotifyNode,
    PassThroughNode,
    PublishedWorkflow,
    StartNode,
    WorkflowDefinition,
    WorkflowEdge,
    WorkflowNode,
    operators_for_field_type,
    parse_workflow_definition,
)

__all__ = [
    "Clock",
    "DeterministicClock",
    "SystemClock",
    "ActionRequest",
    "ActionResult",
    "Actor",
    "Document",
    "DocumentType",
    "InvoiceStatus",
    "InvoiceType",
    "Purchase",
    "PurchaseStatus",
    "Reimbursement",
    "ReimbursementProgress",
    "ReimbursementSourceType",
    "ReimbursementStatus",
    "WorkflowAction",
    "WorkflowLogEntry",
    "has_invoice_evidence",
    "reimbursement_has_evidence",
    "ApprovalNode",
    "ApproverType",
    "CcNode",
    "ConditionFieldType",
    "ConditionNode",
    "ConditionOperator",
    "EdgeCondition",
    "EndNode",
    "NodeType",
    "NotifyNode",
    "PassThroughNode",
    "PublishedWorkflow",
    "StartNode",
    "WorkflowDefinition",
    "WorkflowEdge",
    "WorkflowNode",
    "operators_for_field_type",
    "parse_workflow_definition",
]
