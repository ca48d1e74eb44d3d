"""
bizflow_services -- Package init and public API.

Responsibility:
    Stateful orchestration over the pure engines: the document action
    handler, repositories, approver resolution, budget guard, notification
    dispatch and the linked finance ledger.  This is the **only** layer that
    may hold database sessions or read the wall clock.

Architecture position:
    Services -- orchestration over engines + kernel + config.

    Dependency direction (enforced by tests/architecture/test_layer_boundaries.py):
        bizflow_services/ -> bizflow_engines/  (allowed)
        bizflow_services/ -> bizflow_kernel/   (allowed)
        bizflow_engines/  -> bizflow_services/ (FORBIDDEN)
        bizflow_kernel/   -> bizflow_services/ (FORBIDDEN)

Invariants enforced:
    - DI transparency: SQL wiring is centralised in build_sql_action_handler;
      no service self-constructs its ports.
"""

from bizflow_kernel.logging_config import get_logger

logger = get_logger("services")

from bizflow_services.action_handler import DocumentActionHandler
from bizflow_services.approver_resolution import APPLICANT_ROLE, ApproverResolver
from bizflow_services.budget_guard import BudgetGuard, SqlBudgetProvider
from bizflow_services.directory import (
    PermissionKeys,
    StaticPermissionChecker,
    StaticUserDirectory,
)
from bizflow_services.finance_records import SqlFinanceRecordWriter
from bizflow_services.memory import InMemoryDocumentRepository, InMemoryFinanceRecordWriter
from bizflow_services.notification_dispatcher import (
    NotificationDispatcher,
    PendingNotification,
    SqlInAppNotificationStore,
)
from bizflow_services.repositories import (
    SqlPurchaseRepository,
    SqlReimbursementRepository,
    SqlWorkflowDefinitionStore,
)
from bizflow_services.wiring import build_sql_action_handler
from bizflow_services.workflow_registry import WorkflowRegistry, default_workflow

__all__ = [
    "APPLICANT_ROLE",
    "ApproverResolver",
    "BudgetGuard",
    "DocumentActionHandler",
    "InMemoryDocumentRepository",
    "InMemoryFinanceRecordWriter",
    "NotificationDispatcher",
    "PendingNotification",
    "PermissionKeys",
    "SqlBudgetProvider",
    "SqlFinanceRecordWriter",
    "SqlInAppNotificationStore",
    "SqlPurchaseRepository",
    "SqlReimbursementRepository",
    "SqlWorkflowDefinitionStore",
    "StaticPermissionChecker",
    "StaticUserDirectory",
    "WorkflowRegistry",
    "build_sql_action_handler",
    "default_workflow",
]
