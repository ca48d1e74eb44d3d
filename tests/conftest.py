"""
Pytest fixtures for the bizflow test suite.

Provides:
- Structured logging configured once per session, plus ``captured_logs``
- SQLite (or DATABASE_URL) sessions with per-test rollback
- A file-backed SQLite session factory for tests needing independent sessions
- A deterministic clock
- In-memory collaborators and a ready-wired action handler harness
- Document builders and recording collaborators live in tests/support.py

Environment Variables:
- DATABASE_URL: SQLAlchemy URL for the SQL-backed tests.  Defaults to an
  in-memory SQLite database.
"""

import json
import logging
import os
from io import StringIO
from typing import Any, Generator

import pytest
from sqlalchemy.orm import Session, sessionmaker

from bizflow_config import get_active_config
import bizflow_kernel.models  # noqa: F401
from bizflow_kernel.db.base import Base
from bizflow_kernel.db.engine import (
    build_engine,
    create_tables,
    drop_tables,
    init_engine_from_url,
    reset_engine,
)
from bizflow_kernel.domain.clock import DeterministicClock
from bizflow_kernel.domain.ports import BudgetSummary
from bizflow_kernel.domain.workflow import PublishedWorkflow, parse_workflow_definition
from bizflow_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from bizflow_services import (
    ApproverResolver,
    BudgetGuard,
    DocumentActionHandler,
    InMemoryDocumentRepository,
    InMemoryFinanceRecordWriter,
    NotificationDispatcher,
    StaticPermissionChecker,
    StaticUserDirectory,
    WorkflowRegistry,
)
from tests.support import (
    TEST_EMAILS,
    TEST_PHONES,
    TEST_ROLE_MEMBERS,
    RecordingGateway,
    StaticBudgetProvider,
    WorkflowHarness,
)

DEFAULT_SQL_URL = "sqlite://"


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow_locks: mark test as running real threads against shared state"
    )

# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture bizflow logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, harness):
            harness.act(...)
            logs = captured_logs()
            assert any(r["message"] == "document_action" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("bizflow")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Database fixtures
# =============================================================================


def get_database_url() -> str:
    return os.environ.get("DATABASE_URL", DEFAULT_SQL_URL)


@pytest.fixture(scope="session")
def db_engine():
    """Single engine for the entire test session."""
    eng = init_engine_from_url(get_database_url(), echo=False)
    yield eng
    reset_engine()


@pytest.fixture(scope="session")
def db_tables(db_engine):
    """Create all tables once per session, drop once at end."""
    drop_tables()
    create_tables()
    yield
    drop_tables()


@pytest.fixture(scope="function")
def session(db_tables, db_engine) -> Generator[Session, None, None]:
    """Provide a database session for testing.

    The session joins an outer transaction on a dedicated connection; any
    ``session.commit()`` inside the test only releases a savepoint, and the
    outer transaction is rolled back at teardown.
    """
    conn = db_engine.connect()
    trans = conn.begin()
    sess = Session(bind=conn, join_transaction_mode="create_savepoint", expire_on_commit=False)
    yield sess
    try:
        sess.close()
    finally:
        try:
            trans.rollback()
        finally:
            conn.close()


@pytest.fixture
def file_sessions(tmp_path) -> Generator[sessionmaker[Session], None, None]:
    """Session factory over a fresh file-backed SQLite database.

    Sessions from it are independent connections that really commit, so
    tests can interleave them or hand one to another thread.
    """
    eng = build_engine(f"sqlite:///{tmp_path / 'bizflow.db'}")
    Base.metadata.create_all(eng)
    yield sessionmaker(bind=eng, expire_on_commit=False)
    eng.dispose()


# =============================================================================
# Clock and configuration
# =============================================================================


@pytest.fixture
def deterministic_clock():
    """Provide a deterministic clock for testing."""
    return DeterministicClock()


@pytest.fixture(scope="session")
def bizflow_config():
    """The bundled configuration set."""
    return get_active_config()


@pytest.fixture
def directory():
    return StaticUserDirectory(TEST_ROLE_MEMBERS, TEST_EMAILS, TEST_PHONES)


@pytest.fixture
def permission_checker(bizflow_config):
    return StaticPermissionChecker.from_config(bizflow_config)


@pytest.fixture
def make_harness(bizflow_config, directory, permission_checker, deterministic_clock):
    """
    Factory for a fully wired in-memory action handler.

    ``workflows`` maps a document type to a raw definition that replaces
    the configured one.
    """

    def _make(
        workflows: dict[str, Any] | None = None,
        budgets: dict[str, BudgetSummary] | None = None,
        finance_writer: Any = None,
        gateway: RecordingGateway | None = None,
        executor: Any = None,
        use_config_workflows: bool = True,
    ) -> WorkflowHarness:
        registry = (
            WorkflowRegistry.from_config(bizflow_config)
            if use_config_workflows
            else WorkflowRegistry()
        )
        for doc_type, raw in (workflows or {}).items():
            registry.register(
                PublishedWorkflow(
                    workflow_key=f"{doc_type}_test",
                    document_type=doc_type,
                    definition=parse_workflow_definition(raw),
                    version=99,
                )
            )

        gateway = gateway or RecordingGateway()
        finance = finance_writer or InMemoryFinanceRecordWriter()
        resolver = ApproverResolver(directory)
        purchases = InMemoryDocumentRepository()
        reimbursements = InMemoryDocumentRepository()
        traces: list[dict] = []
        budget_guard = None
        if budgets is not None:
            budget_guard = BudgetGuard(
                StaticBudgetProvider(budgets), permission_checker, deterministic_clock
            )

        handler = DocumentActionHandler(
            repositories={"purchase": purchases, "reimbursement": reimbursements},
            permission_checker=permission_checker,
            workflow_registry=registry,
            approver_resolver=resolver,
            notifier=NotificationDispatcher(
                gateway,
                resolver,
                policy=bizflow_config.notify_policy,
                app_base_url=bizflow_config.app_base_url,
                executor=executor,
            ),
            budget_guard=budget_guard,
            finance_writer=finance,
            clock=deterministic_clock,
            outcome_sink=traces.append,
        )
        return WorkflowHarness(
            handler=handler,
            purchases=purchases,
            reimbursements=reimbursements,
            gateway=gateway,
            finance=finance,
            directory=directory,
            traces=traces,
        )

    return _make


@pytest.fixture
def harness(make_harness) -> WorkflowHarness:
    """Handler wired with the bundled workflows."""
    return make_harness()
