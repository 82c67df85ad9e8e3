"""
Tests for EscalationScheduler and ApprovalEngine.fire_escalation.

Covers:
- Nothing fires before the deadline
- auto_reject / auto_approve on timeout, with Document Status Sync
- notify_only re-arms the deadline
- escalate_to_role re-routes once, then behaves as notify_only
- Stale items are discarded when a human action moved the request first
"""

from datetime import timedelta

import pytest

from approval_engines.escalation import EscalationOutcome
from approval_kernel.domain.approval import ActionType, ApprovalStatus, NotificationEvent
from approval_kernel.domain.workflow import EscalationAction
from approval_kernel.exceptions import StaleStepTokenError
from approval_kernel.models.audit_event import AuditAction
from tests.factories import role


def timed_step(action, **extra):
    return {
        "approvers": [role("procurement")],
        "timeout_hours": 24,
        "escalation_action": action,
        **extra,
    }


class TestDeadlines:

    def test_nothing_due_before_deadline(self, orchestrator, make_workflow, submit, deterministic_clock):
        make_workflow([timed_step(EscalationAction.AUTO_REJECT)])
        request = submit()

        deterministic_clock.advance(hours=23)
        result = orchestrator.scheduler.sweep()

        assert result.examined == 0
        assert orchestrator.engine.get_request(request.request_id).status == ApprovalStatus.PENDING

    def test_fire_escalation_returns_none_when_not_due(self, engine, make_workflow, submit):
        make_workflow([timed_step(EscalationAction.AUTO_REJECT)])
        request = submit()

        assert engine.fire_escalation(request.request_id) is None

    def test_untimed_step_never_due(self, orchestrator, make_workflow, submit, deterministic_clock):
        make_workflow([{"approvers": [role("procurement")]}])
        submit()

        deterministic_clock.advance(hours=24 * 365)

        assert orchestrator.scheduler.sweep().examined == 0


class TestEscalationActions:

    def test_auto_reject_after_24_hours(self, orchestrator, make_workflow, submit, deterministic_clock, status_sync):
        make_workflow([timed_step(EscalationAction.AUTO_REJECT)])
        request = submit()

        deterministic_clock.advance(hours=24)
        result = orchestrator.scheduler.sweep()

        assert result.fired == {request.request_id: EscalationOutcome.AUTO_REJECT}
        stored = orchestrator.engine.get_request(request.request_id)
        assert stored.status == ApprovalStatus.REJECTED
        assert len(status_sync.commands) == 1
        assert status_sync.commands[0].status == ApprovalStatus.REJECTED
        assert status_sync.commands[0].actor_id == orchestrator.settings.system_actor_id

    def test_auto_approve_advances(self, orchestrator, make_workflow, submit, deterministic_clock):
        wf = make_workflow([
            timed_step(EscalationAction.AUTO_APPROVE),
            {"approvers": [role("finance")]},
        ])
        request = submit()

        deterministic_clock.advance(hours=25)
        orchestrator.scheduler.sweep()

        stored = orchestrator.engine.get_request(request.request_id)
        assert stored.current_step_id == wf.steps[1].step_id
        system = orchestrator.requests.get_actions(request.request_id, wf.steps[0].step_id)
        assert [(a.action, a.is_system) for a in system] == [(ActionType.APPROVE, True)]
        trace = orchestrator.auditor.get_trace("ApprovalRequest", request.request_id).actions
        assert AuditAction.STEP_AUTO_SATISFIED in trace

    def test_notify_only_rearms_deadline(self, orchestrator, make_workflow, submit, deterministic_clock, outbox):
        make_workflow([timed_step(EscalationAction.NOTIFY_ONLY)])
        request = submit()

        fired_at = deterministic_clock.advance(hours=24)
        result = orchestrator.scheduler.sweep()

        assert result.fired[request.request_id] == EscalationOutcome.NOTIFY
        stored = orchestrator.engine.get_request(request.request_id)
        assert stored.status == ApprovalStatus.PENDING
        assert stored.escalation_count == 1
        assert stored.escalated_at == fired_at
        assert stored.step_deadline_at == fired_at + timedelta(hours=24)
        escalated = outbox.pending(NotificationEvent.ESCALATED)
        assert len(escalated) == 1
        assert request.submitted_by in escalated[0].recipients

    def test_escalate_to_role_reroutes_once(self, orchestrator, make_workflow, submit, deterministic_clock, users):
        make_workflow([timed_step(EscalationAction.ESCALATE_TO_ROLE, escalation_role="finance")])
        request = submit()

        deterministic_clock.advance(hours=24)
        first = orchestrator.scheduler.sweep()
        rerouted = orchestrator.engine.get_request(request.request_id)

        assert first.fired[request.request_id] == EscalationOutcome.REROUTE
        assert rerouted.current_approvers == (users.dave,)
        assert rerouted.step_rerouted is True

        deterministic_clock.advance(hours=24)
        second = orchestrator.scheduler.sweep()
        after = orchestrator.engine.get_request(request.request_id)

        assert second.fired[request.request_id] == EscalationOutcome.NOTIFY
        assert after.current_approvers == (users.dave,)
        assert after.escalation_count == 2

    def test_rerouted_approver_can_decide(self, orchestrator, make_workflow, submit, deterministic_clock, users):
        make_workflow([timed_step(EscalationAction.ESCALATE_TO_ROLE, escalation_role="finance")])
        request = submit()
        deterministic_clock.advance(hours=24)
        orchestrator.scheduler.sweep()

        result = orchestrator.engine.act(
            request.request_id, users.dave, ActionType.APPROVE, step_id=request.current_step_id,
        )

        assert result.status == ApprovalStatus.APPROVED

    def test_escalate_to_empty_role_notifies(self, orchestrator, make_workflow, submit, deterministic_clock, users):
        make_workflow([timed_step(EscalationAction.ESCALATE_TO_ROLE, escalation_role="controller")])
        request = submit()

        deterministic_clock.advance(hours=24)
        orchestrator.scheduler.sweep()

        stored = orchestrator.engine.get_request(request.request_id)
        assert set(stored.current_approvers) == {users.alice, users.bob, users.carol}
        assert stored.step_rerouted is True
        assert stored.escalation_count == 1


class TestStaleEscalations:

    def test_fire_with_stale_version(self, engine, make_workflow, submit, deterministic_clock, users):
        make_workflow([timed_step(EscalationAction.AUTO_REJECT)])
        request = submit()
        engine.act(request.request_id, users.submitter, ActionType.COMMENT, step_id=request.current_step_id)

        deterministic_clock.advance(hours=24)
        with pytest.raises(StaleStepTokenError):
            engine.fire_escalation(request.request_id, expected_version=request.version)

    def test_fire_after_human_decision(self, engine, make_workflow, submit, deterministic_clock, users):
        make_workflow([timed_step(EscalationAction.AUTO_REJECT)])
        request = submit()
        engine.act(request.request_id, users.alice, ActionType.APPROVE, step_id=request.current_step_id)

        deterministic_clock.advance(hours=24)
        with pytest.raises(StaleStepTokenError):
            engine.fire_escalation(request.request_id, expected_version=request.version)

    def test_sweep_discards_stale_items(self, orchestrator, make_workflow, submit, deterministic_clock, users, monkeypatch, status_sync):
        make_workflow([timed_step(EscalationAction.AUTO_REJECT)])
        request = submit()
        deterministic_clock.advance(hours=24)
        due = orchestrator.requests.find_due(deterministic_clock.now())
        assert [r.request_id for r in due] == [request.request_id]

        # Human wins the race between selection and firing.
        orchestrator.engine.act(
            request.request_id, users.submitter, ActionType.COMMENT, step_id=request.current_step_id,
        )
        monkeypatch.setattr(orchestrator.requests, "find_due", lambda as_of, limit=100: due)

        result = orchestrator.scheduler.sweep()

        assert result.discarded == (request.request_id,)
        assert result.fired == {}
        assert orchestrator.engine.get_request(request.request_id).status == ApprovalStatus.PENDING
        assert status_sync.calls == 0

    def test_sweeps_every_due_request(self, orchestrator, make_workflow, submit, deterministic_clock, users):
        make_workflow([timed_step(EscalationAction.AUTO_REJECT)])
        first = submit()
        second = submit()

        deterministic_clock.advance(hours=24)
        result = orchestrator.scheduler.sweep()

        assert set(result.fired) == {first.request_id, second.request_id}
        assert result.failed == ()
