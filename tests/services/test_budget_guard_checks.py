"""
BudgetGuard decisions in isolation.

Handler-level budget behaviour lives in test_purchase_actions.py; the SQL
usage query is covered in test_sql_repositories.py.
"""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from bizflow_kernel.domain.clock import DeterministicClock
from bizflow_kernel.domain.documents import Actor
from bizflow_kernel.domain.ports import BudgetSummary
from bizflow_kernel.exceptions import BudgetExceededError
from bizflow_services import BudgetGuard
from tests.support import ADMIN, ALICE, FINANCE, StaticBudgetProvider, make_purchase


def summary(remaining, budget=Decimal("5000.00")):
    used = budget - remaining if remaining is not None else Decimal("0")
    return BudgetSummary(budget, used, remaining)


@pytest.fixture
def guard_for(permission_checker, deterministic_clock):
    def _make(summaries):
        provider = StaticBudgetProvider(summaries)
        return BudgetGuard(provider, permission_checker, deterministic_clock), provider

    return _make


class TestCeiling:

    def test_fits(self, guard_for):
        guard, _ = guard_for({ALICE: summary(Decimal("1200.00"))})

        guard.check(make_purchase(), Actor(ALICE))

    def test_fee_counts_toward_due_amount(self, guard_for):
        guard, _ = guard_for({ALICE: summary(Decimal("1200.00"))})

        with pytest.raises(BudgetExceededError) as exc_info:
            guard.check(make_purchase(fee_amount=Decimal("0.01")), Actor(ALICE))

        assert exc_info.value.requested == Decimal("1200.01")
        assert exc_info.value.remaining == Decimal("1200.00")
        assert exc_info.value.code == "BUDGET_EXCEEDED"

    def test_no_summary_passes(self, guard_for):
        guard, _ = guard_for({})

        guard.check(make_purchase(total_amount=Decimal("1000000")), Actor(ALICE))

    def test_no_ceiling_passes(self, guard_for):
        guard, _ = guard_for({ALICE: BudgetSummary(None, Decimal("900"), None)})

        guard.check(make_purchase(total_amount=Decimal("1000000")), Actor(ALICE))

    def test_missing_purchaser_skips_lookup(self, guard_for):
        guard, provider = guard_for({})

        guard.check(make_purchase(purchaser_id=None, created_by=""), Actor(ALICE))

        assert provider.calls == []


class TestOverride:

    @pytest.mark.parametrize("user_id, roles", [(ADMIN, ("admin",)), (FINANCE, ("finance",))])
    def test_privileged_actor_bypasses(self, guard_for, captured_logs, user_id, roles):
        guard, _ = guard_for({ALICE: summary(Decimal("10.00"))})
        purchase = make_purchase()

        guard.check(purchase, Actor(user_id, roles))

        overrides = [r for r in captured_logs() if r["message"] == "budget_override_applied"]
        assert len(overrides) == 1
        assert overrides[0]["purchase_id"] == purchase.id

    def test_manager_cannot_bypass(self, guard_for):
        guard, _ = guard_for({ALICE: summary(Decimal("10.00"))})

        with pytest.raises(BudgetExceededError):
            guard.check(make_purchase(), Actor("u-manager", ("dept_manager",)))


class TestFiscalYear:

    def test_year_from_purchase_date(self, guard_for):
        guard, provider = guard_for({})

        guard.check(make_purchase(), Actor(ALICE))

        assert provider.calls == [(ALICE, 2024)]

    def test_year_from_clock_without_date(self, permission_checker):
        provider = StaticBudgetProvider({})
        clock = DeterministicClock(datetime(2025, 3, 1, tzinfo=timezone.utc))
        guard = BudgetGuard(provider, permission_checker, clock)

        guard.check(make_purchase(purchase_date=None), Actor(ALICE))

        assert provider.calls == [(ALICE, 2025)]
