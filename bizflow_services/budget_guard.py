"""
bizflow_services.budget_guard -- Department budget ceiling on purchase submit.

Responsibility:
    Before a purchase enters approval, check that its due amount
    (total + fee) fits in the purchaser's remaining department budget for
    the fiscal year of the purchase date.

Architecture position:
    Services -- reads the BudgetProvider and PermissionChecker ports and
    the injected Clock.

Invariants enforced:
    - No ceiling (provider returns None, or remaining is None) => pass.
    - Actors holding ``purchase.budget_override`` or ``finance.manage``
      bypass the ceiling; the bypass is logged.
    - Fiscal year falls back to the clock's current year when the
      purchase has no date.

Failure modes:
    - BudgetExceededError when the due amount exceeds the remainder.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import date
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from bizflow_kernel.domain.clock import Clock, SystemClock
from bizflow_kernel.domain.documents import ZERO, Actor, Purchase, PurchaseStatus, WorkflowAction
from bizflow_kernel.domain.ports import BudgetProvider, BudgetSummary, PermissionChecker
from bizflow_kernel.exceptions import BudgetExceededError
from bizflow_kernel.logging_config import get_logger
from bizflow_kernel.models.documents import PurchaseModel
from bizflow_services.directory import PermissionKeys

logger = get_logger("services.budget_guard")

BUDGET_CONSUMING_STATUSES = (
    PurchaseStatus.PENDING_APPROVAL.value,
    PurchaseStatus.APPROVED.value,
    PurchaseStatus.PAID.value,
)

_OVERRIDE_PERMISSIONS = (PermissionKeys.BUDGET_OVERRIDE, PermissionKeys.FINANCE_MANAGE)


class BudgetGuard:
    """Raises BudgetExceededError unless the purchase fits the budget."""

    def __init__(
        self,
        provider: BudgetProvider,
        permission_checker: PermissionChecker,
        clock: Clock | None = None,
    ) -> None:
        self._provider = provider
        self._permissions = permission_checker
        self._clock = clock or SystemClock()

    def _can_override(self, actor: Actor) -> bool:
        return any(
            self._permissions.check_permission(actor, key).allowed
            for key in _OVERRIDE_PERMISSIONS
        )

    def check(self, purchase: Purchase, actor: Actor) -> None:
        purchaser = purchase.purchaser_id or purchase.created_by
        if not purchaser:
            return
        year = (purchase.purchase_date or self._clock.now().date()).year
        summary = self._provider.get_department_budget_summary(purchaser, year)
        if summary is None or summary.remaining_amount is None:
            return

        requested = purchase.due_amount
        if requested <= summary.remaining_amount:
            return

        if self._can_override(actor):
            logger.info(
                "budget_override_applied",
                extra={
                    "purchase_id": purchase.id,
                    "requested": requested,
                    "remaining": summary.remaining_amount,
                },
            )
            return

        raise BudgetExceededError(
            WorkflowAction.SUBMIT.value,
            purchase.id,
            requested,
            summary.remaining_amount,
            purchase.status.value,
        )


class SqlBudgetProvider:
    """
    Budget figures from configured ceilings and stored purchases.

    Contract:
        ``budgets`` maps (department_id, year) to the ceiling;
        ``departments`` maps a purchaser id to its department.  Usage is
        the sum of total + fee over the department's purchases of that
        year in pending_approval, approved or paid status.
    """

    def __init__(
        self,
        session: Session,
        budgets: Mapping[tuple[str, int], Decimal],
        departments: Mapping[str, str],
    ) -> None:
        self._session = session
        self._budgets = dict(budgets)
        self._departments = dict(departments)

    def used_amount(self, department_id: str, year: int) -> Decimal:
        stmt = select(
            func.coalesce(func.sum(PurchaseModel.total_amount + PurchaseModel.fee_amount), 0)
        ).where(
            PurchaseModel.department_id == department_id,
            PurchaseModel.status.in_(BUDGET_CONSUMING_STATUSES),
            PurchaseModel.purchase_date >= date(year, 1, 1),
            PurchaseModel.purchase_date <= date(year, 12, 31),
        )
        return Decimal(str(self._session.execute(stmt).scalar_one()))

    def get_department_budget_summary(
        self, purchaser_id: str, year: int
    ) -> BudgetSummary | None:
        department_id = self._departments.get(purchaser_id)
        if department_id is None:
            return None
        used = self.used_amount(department_id, year)
        budget = self._budgets.get((department_id, year))
        if budget is None:
            return BudgetSummary(None, used, None)
        return BudgetSummary(budget, used, max(ZERO, budget - used))
