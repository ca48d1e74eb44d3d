"""
bizflow_services.wiring -- Compose the action handler over one Session.

Responsibility:
    Single place where the SQLAlchemy adapters, the configuration-backed
    directory and permission checker, and the workflow registry are wired
    into a DocumentActionHandler.  No service constructs its own
    collaborators.

Architecture position:
    Services -- composition root for SQL-backed deployments.  Embedders
    with their own ports construct DocumentActionHandler directly.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from concurrent.futures import Executor
from decimal import Decimal

from sqlalchemy.orm import Session

from bizflow_config import get_active_config
from bizflow_config.schema import BizflowConfig
from bizflow_kernel.db.engine import get_session_factory
from bizflow_kernel.domain.clock import Clock, SystemClock
from bizflow_kernel.domain.documents import DocumentType
from bizflow_services.action_handler import DocumentActionHandler
from bizflow_services.approver_resolution import ApproverResolver
from bizflow_services.budget_guard import BudgetGuard, SqlBudgetProvider
from bizflow_services.directory import StaticPermissionChecker, StaticUserDirectory
from bizflow_services.finance_records import SqlFinanceRecordWriter
from bizflow_services.notification_dispatcher import (
    NotificationDispatcher,
    SqlInAppNotificationStore,
)
from bizflow_services.repositories import (
    SqlPurchaseRepository,
    SqlReimbursementRepository,
    SqlWorkflowDefinitionStore,
)
from bizflow_services.workflow_registry import WorkflowRegistry


def build_sql_action_handler(
    session: Session,
    config: BizflowConfig | None = None,
    *,
    clock: Clock | None = None,
    budgets: Mapping[tuple[str, int], Decimal] | None = None,
    departments: Mapping[str, str] | None = None,
    emails: Mapping[str, str] | None = None,
    phones: Mapping[str, str] | None = None,
    email_sender: Callable[..., bool] | None = None,
    executor: Executor | None = None,
    session_factory: Callable[[], Session] | None = None,
    load_stored_workflows: bool = True,
    outcome_sink: Callable[[dict], None] | None = None,
) -> DocumentActionHandler:
    """Build a handler whose every port is backed by ``session``.

    Workflows published in ``workflow_definitions`` override the ones from
    the configuration when ``load_stored_workflows`` is set.

    With an ``executor`` the in-app notification rows are written from the
    worker thread through their own sessions, taken from ``session_factory``
    or the engine-wide factory; ``session`` itself never crosses threads.
    """
    config = config or get_active_config()
    clock = clock or SystemClock()

    permissions = StaticPermissionChecker.from_config(config)
    directory = StaticUserDirectory.from_config(config, emails, phones)
    resolver = ApproverResolver(directory)

    registry = WorkflowRegistry.from_config(config)
    if load_stored_workflows:
        registry.load_from_store(SqlWorkflowDefinitionStore(session))

    if executor is not None:
        notification_store = SqlInAppNotificationStore(
            email_sender=email_sender,
            session_factory=session_factory or get_session_factory(),
        )
    else:
        notification_store = SqlInAppNotificationStore(session, email_sender=email_sender)
    notifier = NotificationDispatcher(
        notification_store,
        resolver,
        policy=config.notify_policy,
        app_base_url=config.app_base_url,
        executor=executor,
    )
    budget_guard = BudgetGuard(
        SqlBudgetProvider(session, budgets or {}, departments or {}),
        permissions,
        clock,
    )

    return DocumentActionHandler(
        repositories={
            DocumentType.PURCHASE: SqlPurchaseRepository(session),
            DocumentType.REIMBURSEMENT: SqlReimbursementRepository(session),
        },
        permission_checker=permissions,
        workflow_registry=registry,
        approver_resolver=resolver,
        notifier=notifier,
        budget_guard=budget_guard,
        finance_writer=SqlFinanceRecordWriter(session, clock),
        clock=clock,
        outcome_sink=outcome_sink,
    )
