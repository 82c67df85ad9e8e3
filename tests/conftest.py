"""
Pytest fixtures for the approval kernel test suite.

Provides:
- Database sessions with per-test rollback
- A deterministic clock and in-memory collaborators
- A fully wired ApprovalOrchestrator plus workflow / user factories

Environment Variables:
- DATABASE_URL: SQLAlchemy URL of the test database.  Defaults to an
  in-memory SQLite database; point it at PostgreSQL to run the suite
  against the production dialect.
"""

import json
import logging
import os
from dataclasses import dataclass
from io import StringIO
from typing import Generator
from uuid import UUID, uuid4

import pytest
from sqlalchemy.orm import Session

from approval_config.settings import EngineSettings
from approval_kernel.db.engine import (
    create_tables,
    drop_tables,
    init_engine_from_url,
    reset_engine,
)
from approval_kernel.domain.approval import StatusSyncCommand
from approval_kernel.domain.clock import DeterministicClock
from approval_kernel.exceptions import StatusSyncError
from approval_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from approval_kernel.services.auditor_service import AuditorService
from approval_services.notifications import NotificationOutbox
from approval_services.orchestrator import ApprovalOrchestrator

DEFAULT_DATABASE_URL = "sqlite:///:memory:"


def get_database_url() -> str:
    """Get database URL from environment, or use in-memory SQLite."""
    return os.environ.get("DATABASE_URL", DEFAULT_DATABASE_URL)


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
    Capture approval_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, engine):
            engine.submit(...)
            logs = captured_logs()
            assert any(r["message"] == "approval_submitted" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("approval_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Session-scoped DB infrastructure (create engine + tables ONCE per suite)
# =============================================================================


@pytest.fixture(scope="session")
def db_engine():
    eng = init_engine_from_url(get_database_url(), echo=False)
    yield eng
    reset_engine()


@pytest.fixture(scope="session")
def db_tables(db_engine):
    drop_tables(db_engine)
    create_tables(db_engine)
    yield
    drop_tables(db_engine)


@pytest.fixture(scope="function")
def session(db_tables, db_engine) -> Generator[Session, None, None]:
    """Provide a database session for testing.

    The session joins an outer transaction on a dedicated connection; any
    ``session.commit()`` inside the test only releases a savepoint.  The
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


# =============================================================================
# Clock and collaborators
# =============================================================================


@pytest.fixture
def deterministic_clock() -> DeterministicClock:
    return DeterministicClock()


class FakeStatusSync:
    """Document Status Sync double.  Records commands; can be told to fail."""

    def __init__(self) -> None:
        self.commands: list[StatusSyncCommand] = []
        self.calls = 0
        self.fail_times = 0
        self.always_fail = False

    def sync(self, command: StatusSyncCommand) -> None:
        self.calls += 1
        if self.always_fail or self.fail_times > 0:
            if self.fail_times > 0:
                self.fail_times -= 1
            raise StatusSyncError(command.entity_type, str(command.entity_id), "document locked")
        self.commands.append(command)


@pytest.fixture
def status_sync() -> FakeStatusSync:
    return FakeStatusSync()


@pytest.fixture
def outbox() -> NotificationOutbox:
    return NotificationOutbox()


@pytest.fixture
def auditor_service(session, deterministic_clock) -> AuditorService:
    return AuditorService(session, deterministic_clock)


@pytest.fixture
def test_actor_id() -> UUID:
    return uuid4()


# =============================================================================
# Orchestrator and factories
# =============================================================================


@pytest.fixture
def settings() -> EngineSettings:
    return EngineSettings(retry_backoff_seconds=0.0)


@pytest.fixture
def orchestrator(session, settings, deterministic_clock, status_sync, outbox):
    """Fully wired services over the test session (SQL role store)."""
    return ApprovalOrchestrator(
        session,
        settings,
        clock=deterministic_clock,
        status_sync=status_sync,
        notifier=outbox,
    )


@pytest.fixture
def engine(orchestrator):
    return orchestrator.engine


@pytest.fixture
def registry(orchestrator):
    return orchestrator.registry


@dataclass(frozen=True)
class Users:
    admin: UUID
    submitter: UUID
    alice: UUID
    bob: UUID
    carol: UUID
    dave: UUID
    outsider: UUID


@pytest.fixture
def users(orchestrator) -> Users:
    """Identities with roles: admin; alice/bob/carol in procurement; dave in finance."""
    u = Users(
        admin=uuid4(),
        submitter=uuid4(),
        alice=uuid4(),
        bob=uuid4(),
        carol=uuid4(),
        dave=uuid4(),
        outsider=uuid4(),
    )
    grants = orchestrator.role_assignments
    grants.assign(u.admin, "admin", u.admin)
    for member in (u.alice, u.bob, u.carol):
        grants.assign(member, "procurement", u.admin)
    grants.assign(u.dave, "finance", u.admin)
    return u


@pytest.fixture
def make_workflow(registry, users):
    """
    Factory: create (and by default activate) a workflow from step dicts.

    ``step_order`` and ``step_name`` default to the list position.
    """

    def _make(steps, *, entity_type="purchase_order", name="Test Workflow", activate=True):
        workflow = registry.create_workflow(entity_type, name, users.admin)
        for position, spec in enumerate(steps, 1):
            spec = dict(spec)
            spec.setdefault("step_order", position)
            spec.setdefault("step_name", f"Step {position}")
            registry.add_step(workflow.workflow_id, users.admin, **spec)
        if activate:
            registry.activate(workflow.workflow_id, users.admin)
        return registry.get_workflow(workflow.workflow_id)

    return _make


@pytest.fixture
def submit(engine, users):
    """Factory: submit a fresh purchase order (or other type) for approval."""

    def _submit(payload=None, *, entity_type="purchase_order", entity_id=None, submitted_by=None):
        return engine.submit(
            entity_type,
            entity_id or uuid4(),
            submitted_by or users.submitter,
            payload or {},
            entity_number="PO-0001",
        )

    return _submit
