"""ORM models for the workflow kernel."""

from bizflow_kernel.models.documents import PurchaseModel, ReimbursementModel
from bizflow_kernel.models.ledger import FinanceRecordModel, InAppNotificationModel
from bizflow_kernel.models.workflow import WorkflowDefinitionModel, WorkflowLogModel

__all__ = [
    "PurchaseModel",
    "ReimbursementModel",
    "FinanceRecordModel",
    "InAppNotificationModel",
    "WorkflowDefinitionModel",
    "WorkflowLogModel",
]
