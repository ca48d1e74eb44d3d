"""
Concurrent actions on one document.

Two approvers who both read the same pending snapshot must not both
succeed: the compare-and-set on (status, version) lets exactly one write
through and the loser sees a guard error with detail "concurrent update".
The in-memory repository is raced with real threads; the SQL repository
is raced with two sessions on a file-backed database.
"""

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from bizflow_kernel.domain.documents import ActionRequest, PurchaseStatus
from bizflow_kernel.exceptions import NotApprovableError, NotSubmittableError
from bizflow_services import SqlPurchaseRepository, StaticUserDirectory, build_sql_action_handler
from tests.support import ADMIN, ALICE, FINANCE, make_purchase

pytestmark = pytest.mark.slow_locks


def hold_first_read(monkeypatch, repo, parties):
    """Make the first find_by_id of each thread wait until ``parties`` threads have read."""
    barrier = threading.Barrier(parties, timeout=10)
    seen = threading.local()
    original = repo.find_by_id

    def find_by_id(document_id):
        document = original(document_id)
        if not getattr(seen, "done", False):
            seen.done = True
            barrier.wait()
        return document

    monkeypatch.setattr(repo, "find_by_id", find_by_id)


def handler_actor(config, user_id):
    return StaticUserDirectory.from_config(config).actor(user_id)


def run_concurrently(calls):
    def attempt(call):
        try:
            return call(), None
        except Exception as exc:
            return None, exc

    with ThreadPoolExecutor(max_workers=len(calls)) as pool:
        return list(pool.map(attempt, calls))


class TestApproveRace:

    def test_stale_snapshot_loses(self, harness, monkeypatch):
        purchase = harness.add_purchase()
        harness.act("purchase", purchase.id, ALICE, "submit")
        hold_first_read(monkeypatch, harness.purchases, 2)

        outcomes = run_concurrently([
            lambda: harness.act("purchase", purchase.id, FINANCE, "approve"),
            lambda: harness.act("purchase", purchase.id, ADMIN, "approve"),
        ])
        monkeypatch.undo()

        results = [r for r, _ in outcomes if r is not None]
        errors = [e for _, e in outcomes if e is not None]
        assert len(results) == 1
        assert len(errors) == 1
        assert isinstance(errors[0], NotApprovableError)
        assert errors[0].detail == "concurrent update"

        stored = harness.purchase(purchase.id)
        assert stored.status is PurchaseStatus.APPROVED
        assert stored.version == 2
        actions = [e.action for e in harness.purchases.list_logs(purchase.id)]
        assert actions == ["submit", "approve"]
        outcomes_traced = sorted(t["outcome"] for t in harness.traces[1:])
        assert outcomes_traced == ["conflict", "success"]

    def test_loser_sends_no_notifications(self, harness, monkeypatch):
        purchase = harness.add_purchase()
        harness.act("purchase", purchase.id, ALICE, "submit")
        sent_before = len(harness.gateway.in_app)
        hold_first_read(monkeypatch, harness.purchases, 2)

        run_concurrently([
            lambda: harness.act("purchase", purchase.id, FINANCE, "approve"),
            lambda: harness.act("purchase", purchase.id, ADMIN, "approve"),
        ])

        approved = [
            event for _, event in harness.gateway.in_app[sent_before:]
            if event.event_type == "purchase_approved"
        ]
        assert len(approved) == 1


class TestSubmitStorm:

    def test_one_submission_wins(self, harness):
        purchase = harness.add_purchase()
        actor = harness.actor(ALICE)

        outcomes = run_concurrently([
            lambda: harness.handler.handle("purchase", purchase.id, actor, ActionRequest("submit"))
            for _ in range(8)
        ])

        results = [r for r, _ in outcomes if r is not None]
        errors = [e for _, e in outcomes if e is not None]
        assert len(results) == 1
        assert len(errors) == 7
        assert all(isinstance(e, NotSubmittableError) for e in errors)
        assert len(harness.purchases.list_logs(purchase.id)) == 1
        assert harness.purchase(purchase.id).version == 1


class TestSqlCompareAndSet:
    """Two database sessions racing on one stored purchase."""

    @pytest.fixture
    def submitted_id(self, file_sessions, bizflow_config, deterministic_clock):
        with file_sessions() as seed:
            handler = build_sql_action_handler(seed, bizflow_config, clock=deterministic_clock)
            purchase = SqlPurchaseRepository(seed).add(make_purchase())
            handler.handle(
                "purchase", purchase.id, handler_actor(bizflow_config, ALICE), ActionRequest("submit")
            )
            seed.commit()
        deterministic_clock.advance(60)
        return purchase.id

    def test_stale_version_matches_no_row(self, file_sessions, submitted_id):
        first, second = file_sessions(), file_sessions()
        snapshot = SqlPurchaseRepository(second).find_by_id(submitted_id)
        second.rollback()

        won = SqlPurchaseRepository(first).update_status(
            submitted_id, {"status": PurchaseStatus.APPROVED}, "pending_approval", snapshot.version
        )
        first.commit()
        lost = SqlPurchaseRepository(second).update_status(
            submitted_id, {"status": PurchaseStatus.APPROVED}, "pending_approval", snapshot.version
        )
        second.rollback()

        assert won.version == snapshot.version + 1
        assert lost is None
        first.close()
        second.close()

    def test_stale_approval_is_a_concurrent_update(
        self, file_sessions, submitted_id, bizflow_config, deterministic_clock, monkeypatch
    ):
        first, second = file_sessions(), file_sessions()
        first_handler = build_sql_action_handler(first, bizflow_config, clock=deterministic_clock)
        second_handler = build_sql_action_handler(second, bizflow_config, clock=deterministic_clock)
        snapshot = SqlPurchaseRepository(second).find_by_id(submitted_id)
        second.rollback()

        first_handler.handle(
            "purchase", submitted_id, handler_actor(bizflow_config, FINANCE), ActionRequest("approve")
        )
        first.commit()
        monkeypatch.setattr(SqlPurchaseRepository, "find_by_id", lambda self, document_id: snapshot)

        with pytest.raises(NotApprovableError) as exc_info:
            second_handler.handle(
                "purchase", submitted_id, handler_actor(bizflow_config, ADMIN), ActionRequest("approve")
            )
        second.rollback()
        monkeypatch.undo()

        assert exc_info.value.detail == "concurrent update"
        with file_sessions() as reader:
            repo = SqlPurchaseRepository(reader)
            stored = repo.find_by_id(submitted_id)
            assert stored.status is PurchaseStatus.APPROVED
            assert stored.version == 2
            assert [e.action for e in repo.list_logs(submitted_id)] == ["submit", "approve"]
        first.close()
        second.close()
