"""
approval_services.orchestrator -- Central DI container for approval services.

Responsibility:
    Creates every kernel service exactly once and wires them together with
    the collaborator adapters.  No service creates other services
    internally; the orchestrator is the single point of dependency
    injection for the approval engine.

Architecture position:
    Services -- top of the service layer.  The only place where kernel
    services are constructed and composed.

Invariants enforced:
    - Single-instance lifecycle: one AuditorService, one ApprovalService,
      one SideEffectService per orchestrator, all sharing the same Session
      and Clock.
    - DI transparency: all service wiring is visible in ``__init__``.

Usage:
    from approval_services.orchestrator import ApprovalOrchestrator

    orchestrator = ApprovalOrchestrator(session, settings=load_settings())

    orchestrator.engine.submit("purchase_order", po_id, user_id, payload)
    orchestrator.scheduler.sweep()
    orchestrator.role_grants.grant_role(user_id, "finance", admin_id)
"""

from __future__ import annotations

from sqlalchemy.orm import Session

from approval_config.settings import EngineSettings
from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.domain.ports import DocumentStatusSync, NotificationDispatcher, RoleStore
from approval_kernel.selectors.approval_selector import ApprovalSelector
from approval_kernel.services.approval_service import ApprovalService
from approval_kernel.services.approver_resolution import ApproverResolver
from approval_kernel.services.auditor_service import AuditorService
from approval_kernel.services.role_store import RoleAssignmentService, SqlRoleStore
from approval_kernel.services.side_effect_service import SideEffectService
from approval_kernel.services.sod_checker import SoDChecker
from approval_kernel.services.workflow_registry import WorkflowRegistry
from approval_services.approval_engine import ApprovalEngine
from approval_services.document_status import DocumentStatusRouter
from approval_services.escalation_scheduler import EscalationScheduler
from approval_services.notifications import LoggingNotificationDispatcher
from approval_services.sod_authority import RoleGrantService


class ApprovalOrchestrator:
    """Central factory for approval services.

    Contract:
        Receives a SQLAlchemy Session and optional settings, clock and
        collaborator adapters.  Constructs every service exactly once, in
        dependency order, and exposes them as public attributes.

    Non-goals:
        - Does NOT manage transaction boundaries (caller's responsibility).
        - Does NOT own the Session lifecycle (no commit/rollback).
    """

    def __init__(
        self,
        session: Session,
        settings: EngineSettings | None = None,
        *,
        clock: Clock | None = None,
        role_store: RoleStore | None = None,
        status_sync: DocumentStatusSync | None = None,
        notifier: NotificationDispatcher | None = None,
    ) -> None:
        self._session = session
        self._clock = clock or SystemClock()
        self.settings = settings or EngineSettings()

        # Collaborators: SQL-backed role store unless one is injected.
        self.role_store: RoleStore = role_store or SqlRoleStore(session)
        self.status_sync: DocumentStatusSync = status_sync or DocumentStatusRouter()
        self.notifier: NotificationDispatcher = notifier or LoggingNotificationDispatcher()

        # Foundational services
        self.auditor = AuditorService(session, self._clock)
        self.registry = WorkflowRegistry(session, self.auditor, self._clock)
        self.requests = ApprovalService(session, self.auditor, self._clock)
        self.resolver = ApproverResolver(self.role_store)
        self.selector = ApprovalSelector(session)

        self.side_effects = SideEffectService(
            session,
            self.auditor,
            self._clock,
            status_sync=self.status_sync,
            notifier=self.notifier,
            status_sync_max_attempts=self.settings.status_sync_max_attempts,
            notification_max_attempts=self.settings.notification_max_attempts,
            retry_backoff_seconds=self.settings.retry_backoff_seconds,
            system_actor_id=self.settings.system_actor_id,
        )

        # Request engine (depends on everything above)
        self.engine = ApprovalEngine(
            requests=self.requests,
            registry=self.registry,
            resolver=self.resolver,
            role_store=self.role_store,
            side_effects=self.side_effects,
            auditor=self.auditor,
            clock=self._clock,
            admin_role=self.settings.admin_role,
            system_actor_id=self.settings.system_actor_id,
        )
        self.scheduler = EscalationScheduler(
            session,
            self.engine,
            self.requests,
            self._clock,
            batch_size=self.settings.escalation_batch_size,
        )

        # Segregation of duties
        self.sod_checker = SoDChecker(session, self.role_store, self.auditor, self._clock)
        self.role_assignments = RoleAssignmentService(session, self.auditor, self._clock)
        self.role_grants = RoleGrantService(
            self.sod_checker, self.role_assignments, self.auditor,
        )
