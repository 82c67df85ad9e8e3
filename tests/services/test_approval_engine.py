"""
Tests for ApprovalEngine -- request lifecycle end to end.

Covers:
- submit(): workflow pinning, first-step routing, one pending request per
  document, missing workflow
- act(): any / all / percentage consensus, reject, replay no-op, delegate,
  comment, authorization and step-context guards, optimistic tokens
- cancel() and skip_step(): administrative paths
- Conditional routing on step entry: skip, auto-approve, require,
  route_to_role, halting on an unevaluable condition
- Dynamic and unresolvable approvers
"""

from uuid import uuid4

import pytest

from approval_kernel.domain.approval import ActionType, ApprovalStatus, NotificationEvent
from approval_kernel.domain.workflow import ApprovalType, EscalationAction
from approval_kernel.exceptions import (
    ApprovalAlreadyResolvedError,
    DuplicatePendingRequestError,
    InvalidActionError,
    InvalidStepContextError,
    NoActiveWorkflowError,
    NotAnApproverError,
    StaleStepTokenError,
    StepNotSkippableError,
)
from approval_kernel.models.audit_event import AuditAction
from tests.factories import cond, dynamic, role, user


def trace_actions(orchestrator, request_id):
    return orchestrator.auditor.get_trace("ApprovalRequest", request_id).actions


# ---------------------------------------------------------------------------
# Submission
# ---------------------------------------------------------------------------


class TestSubmit:

    def test_enters_first_step_with_resolved_approvers(self, make_workflow, submit, users, outbox):
        wf = make_workflow([{"approvers": [role("procurement")]}])

        request = submit()

        assert request.status == ApprovalStatus.PENDING
        assert request.current_step_id == wf.steps[0].step_id
        assert request.current_step_order == 1
        assert set(request.current_approvers) == {users.alice, users.bob, users.carol}
        assert request.step_deadline_at is None

        entered = outbox.pending(NotificationEvent.STEP_ENTERED)
        assert len(entered) == 1
        assert entered[0].recipients == frozenset({users.alice, users.bob, users.carol})
        assert "Purchase Order PO-0001" in entered[0].message

    def test_pins_workflow_version(self, orchestrator, make_workflow, submit, registry, users):
        wf = make_workflow([{"approvers": [role("procurement")]}])
        request = submit()

        registry.update_workflow(wf.workflow_id, users.admin, name="Renamed")

        pinned = orchestrator.requests.get_pinned_workflow(request.request_id)
        assert request.workflow_version == wf.version
        assert pinned.version == wf.version
        assert pinned.name == "Test Workflow"

    def test_deadline_set_from_timeout(self, make_workflow, submit, deterministic_clock):
        make_workflow([{"approvers": [role("procurement")], "timeout_hours": 48}])

        request = submit()

        assert request.step_entered_at == deterministic_clock.now()
        assert (request.step_deadline_at - request.step_entered_at).total_seconds() == 48 * 3600

    def test_no_active_workflow(self, submit, users):
        with pytest.raises(NoActiveWorkflowError):
            submit(entity_type="goods_receipt")

    def test_one_pending_request_per_document(self, make_workflow, submit):
        make_workflow([{"approvers": [role("procurement")]}])
        entity_id = uuid4()
        submit(entity_id=entity_id)

        with pytest.raises(DuplicatePendingRequestError):
            submit(entity_id=entity_id)

    def test_resubmit_after_terminal_outcome(self, make_workflow, submit, engine, users):
        make_workflow([{"approvers": [role("procurement")]}])
        entity_id = uuid4()
        first = submit(entity_id=entity_id)
        engine.act(first.request_id, users.alice, ActionType.REJECT, step_id=first.current_step_id)

        second = submit(entity_id=entity_id)

        assert second.request_id != first.request_id
        assert second.status == ApprovalStatus.PENDING

    def test_submission_is_audited(self, orchestrator, make_workflow, submit):
        make_workflow([{"approvers": [role("procurement")]}])
        request = submit()

        actions = trace_actions(orchestrator, request.request_id)
        assert actions[0] == AuditAction.APPROVAL_REQUESTED
        assert AuditAction.STEP_ENTERED in actions


# ---------------------------------------------------------------------------
# Consensus
# ---------------------------------------------------------------------------


class TestConsensus:

    def test_any_single_approval_completes(self, make_workflow, submit, engine, users, status_sync):
        make_workflow([{"approvers": [role("procurement")]}])
        request = submit()

        result = engine.act(request.request_id, users.bob, ActionType.APPROVE, step_id=request.current_step_id)

        assert result.status == ApprovalStatus.APPROVED
        assert result.completed_at is not None
        assert result.current_approvers == ()
        assert len(status_sync.commands) == 1
        command = status_sync.commands[0]
        assert command.status == ApprovalStatus.APPROVED
        assert command.entity_id == request.entity_id
        assert command.entity_type == "purchase_order"

    def test_percentage_fifty_of_three_needs_two(self, make_workflow, submit, engine, users, status_sync):
        make_workflow([{
            "approvers": [role("procurement")],
            "approval_type": ApprovalType.PERCENTAGE,
            "required_percentage": 50,
        }])
        request = submit()
        step_id = request.current_step_id

        after_one = engine.act(request.request_id, users.alice, ActionType.APPROVE, step_id=step_id)
        assert after_one.status == ApprovalStatus.PENDING
        assert status_sync.commands == []

        after_two = engine.act(request.request_id, users.bob, ActionType.APPROVE, step_id=step_id)
        assert after_two.status == ApprovalStatus.APPROVED

    def test_all_needs_every_member(self, make_workflow, submit, engine, users):
        make_workflow([{"approvers": [role("procurement")], "approval_type": ApprovalType.ALL}])
        request = submit()
        step_id = request.current_step_id

        engine.act(request.request_id, users.alice, ActionType.APPROVE, step_id=step_id)
        after_two = engine.act(request.request_id, users.bob, ActionType.APPROVE, step_id=step_id)
        assert after_two.status == ApprovalStatus.PENDING

        after_three = engine.act(request.request_id, users.carol, ActionType.APPROVE, step_id=step_id)
        assert after_three.status == ApprovalStatus.APPROVED

    def test_admin_approval_does_not_stand_in_under_all(self, make_workflow, submit, engine, users):
        make_workflow([{"approvers": [user(users.alice), user(users.bob)], "approval_type": "all"}])
        request = submit()
        step_id = request.current_step_id

        engine.act(request.request_id, users.admin, ActionType.APPROVE, step_id=step_id)
        result = engine.act(request.request_id, users.alice, ActionType.APPROVE, step_id=step_id)

        assert result.status == ApprovalStatus.PENDING

    def test_advances_through_steps(self, make_workflow, submit, engine, users, outbox):
        wf = make_workflow([
            {"approvers": [role("procurement")]},
            {"approvers": [role("finance")]},
        ])
        request = submit()
        outbox.drain()

        moved = engine.act(request.request_id, users.alice, ActionType.APPROVE, step_id=request.current_step_id)

        assert moved.status == ApprovalStatus.PENDING
        assert moved.current_step_id == wf.steps[1].step_id
        assert moved.current_approvers == (users.dave,)
        assert outbox.pending(NotificationEvent.STEP_ENTERED)[0].recipients == frozenset({users.dave})

        done = engine.act(request.request_id, users.dave, ActionType.APPROVE, step_id=moved.current_step_id)
        assert done.status == ApprovalStatus.APPROVED

    def test_reject_is_terminal(self, make_workflow, submit, engine, users, status_sync, outbox):
        make_workflow([{"approvers": [role("procurement")], "approval_type": "all"}])
        request = submit()
        step_id = request.current_step_id

        engine.act(request.request_id, users.alice, ActionType.APPROVE, step_id=step_id)
        result = engine.act(
            request.request_id, users.bob, ActionType.REJECT, step_id=step_id, comment="over budget",
        )

        assert result.status == ApprovalStatus.REJECTED
        assert status_sync.commands[-1].status == ApprovalStatus.REJECTED
        assert status_sync.commands[-1].comment == "over budget"
        rejected = outbox.pending(NotificationEvent.REJECTED)
        assert rejected[0].recipients == frozenset({users.submitter})

        with pytest.raises(InvalidStepContextError):
            engine.act(request.request_id, users.carol, ActionType.APPROVE, step_id=step_id)


# ---------------------------------------------------------------------------
# Replay and concurrency tokens
# ---------------------------------------------------------------------------


class TestReplay:

    def test_replayed_approval_is_a_no_op(self, orchestrator, make_workflow, submit, engine, users):
        make_workflow([{"approvers": [role("procurement")], "approval_type": "all"}])
        request = submit()
        step_id = request.current_step_id

        first = engine.act(request.request_id, users.alice, ActionType.APPROVE, step_id=step_id)
        again = engine.act(request.request_id, users.alice, ActionType.APPROVE, step_id=step_id)

        assert again == first
        approvals = [
            a for a in orchestrator.requests.get_actions(request.request_id, step_id)
            if a.action == ActionType.APPROVE
        ]
        assert len(approvals) == 1

    def test_stale_token_rejected(self, make_workflow, submit, engine, users):
        make_workflow([{"approvers": [role("procurement")], "approval_type": "all"}])
        request = submit()
        step_id = request.current_step_id
        engine.act(request.request_id, users.alice, ActionType.APPROVE, step_id=step_id)

        with pytest.raises(StaleStepTokenError):
            engine.act(
                request.request_id, users.bob, ActionType.APPROVE,
                step_id=step_id, expected_version=request.version,
            )

    def test_late_approval_after_concurrent_advance(
        self, orchestrator, make_workflow, submit, engine, users, monkeypatch,
    ):
        wf = make_workflow([
            {"approvers": [role("procurement")]},
            {"approvers": [role("finance")]},
        ])
        request = submit()
        step_id = request.current_step_id
        claim = orchestrator.requests.claim
        rival_ran = []

        def alice_wins_first(request_id, expected_version=None):
            if not rival_ran:
                rival_ran.append(True)
                engine.act(request_id, users.alice, ActionType.APPROVE, step_id=step_id)
            return claim(request_id, expected_version)

        monkeypatch.setattr(orchestrator.requests, "claim", alice_wins_first)

        with pytest.raises(StaleStepTokenError):
            engine.act(request.request_id, users.bob, ActionType.APPROVE, step_id=step_id)

        current = engine.get_request(request.request_id)
        assert current.current_step_id == wf.steps[1].step_id
        assert current.current_approvers == (users.dave,)
        actions = trace_actions(orchestrator, request.request_id)
        assert actions.count(AuditAction.STEP_ENTERED) == 2
        assert actions.count(AuditAction.ACTION_RECORDED) == 1

    def test_cancel_after_concurrent_change(self, orchestrator, make_workflow, submit, engine, users, monkeypatch):
        make_workflow([{"approvers": [role("procurement")], "approval_type": "all"}])
        request = submit()
        claim = orchestrator.requests.claim
        rival_ran = []

        def alice_acts_first(request_id, expected_version=None):
            if not rival_ran:
                rival_ran.append(True)
                engine.act(request_id, users.alice, ActionType.APPROVE, step_id=request.current_step_id)
            return claim(request_id, expected_version)

        monkeypatch.setattr(orchestrator.requests, "claim", alice_acts_first)

        with pytest.raises(StaleStepTokenError):
            engine.cancel(request.request_id, users.submitter)
        assert engine.get_request(request.request_id).status == ApprovalStatus.PENDING

    def test_current_token_accepted(self, make_workflow, submit, engine, users):
        make_workflow([{"approvers": [role("procurement")]}])
        request = submit()

        result = engine.act(
            request.request_id, users.alice, ActionType.APPROVE,
            step_id=request.current_step_id, expected_version=request.version,
        )
        assert result.status == ApprovalStatus.APPROVED
        assert result.version > request.version


# ---------------------------------------------------------------------------
# Authorization and step context
# ---------------------------------------------------------------------------


class TestGuards:

    def test_outsider_cannot_approve(self, make_workflow, submit, engine, users):
        make_workflow([{"approvers": [role("procurement")]}])
        request = submit()

        with pytest.raises(NotAnApproverError):
            engine.act(request.request_id, users.outsider, ActionType.APPROVE, step_id=request.current_step_id)

    def test_admin_may_act_on_any_step(self, make_workflow, submit, engine, users):
        make_workflow([{"approvers": [role("procurement")]}])
        request = submit()

        result = engine.act(request.request_id, users.admin, ActionType.APPROVE, step_id=request.current_step_id)

        assert result.status == ApprovalStatus.APPROVED

    def test_wrong_step_rejected(self, make_workflow, submit, engine, users):
        wf = make_workflow([
            {"approvers": [role("procurement")]},
            {"approvers": [role("finance")]},
        ])
        request = submit()

        with pytest.raises(InvalidStepContextError):
            engine.act(request.request_id, users.dave, ActionType.APPROVE, step_id=wf.steps[1].step_id)

    def test_unknown_action(self, make_workflow, submit, engine, users):
        make_workflow([{"approvers": [role("procurement")]}])
        request = submit()

        with pytest.raises(InvalidActionError):
            engine.act(request.request_id, users.alice, "escalate", step_id=request.current_step_id)


# ---------------------------------------------------------------------------
# Delegate and comment
# ---------------------------------------------------------------------------


class TestDelegateAndComment:

    def test_delegation_replaces_delegator(self, make_workflow, submit, engine, users, outbox):
        make_workflow([{"approvers": [user(users.alice)]}])
        request = submit()
        step_id = request.current_step_id
        outbox.drain()

        delegated = engine.act(
            request.request_id, users.alice, ActionType.DELEGATE,
            step_id=step_id, delegated_to=users.outsider,
        )

        assert delegated.status == ApprovalStatus.PENDING
        assert delegated.current_approvers == (users.outsider,)
        assert outbox.pending(NotificationEvent.STEP_ENTERED)[0].recipients == frozenset({users.outsider})

        with pytest.raises(NotAnApproverError):
            engine.act(request.request_id, users.alice, ActionType.APPROVE, step_id=step_id)

        done = engine.act(request.request_id, users.outsider, ActionType.APPROVE, step_id=step_id)
        assert done.status == ApprovalStatus.APPROVED

    def test_delegation_needs_a_target(self, make_workflow, submit, engine, users):
        make_workflow([{"approvers": [role("procurement")]}])
        request = submit()

        with pytest.raises(InvalidActionError):
            engine.act(request.request_id, users.alice, ActionType.DELEGATE, step_id=request.current_step_id)
        with pytest.raises(InvalidActionError):
            engine.act(
                request.request_id, users.alice, ActionType.DELEGATE,
                step_id=request.current_step_id, delegated_to=users.alice,
            )

    def test_cannot_delegate_after_approving(self, make_workflow, submit, engine, users, status_sync):
        make_workflow([{
            "approvers": [user(users.alice), user(users.bob)],
            "approval_type": ApprovalType.PERCENTAGE,
            "required_percentage": 100,
        }])
        request = submit()
        step_id = request.current_step_id
        engine.act(request.request_id, users.alice, ActionType.APPROVE, step_id=step_id)

        with pytest.raises(InvalidActionError, match="already approved"):
            engine.act(
                request.request_id, users.alice, ActionType.DELEGATE,
                step_id=step_id, delegated_to=users.carol,
            )

        after_bob = engine.act(request.request_id, users.bob, ActionType.APPROVE, step_id=step_id)
        assert after_bob.status == ApprovalStatus.APPROVED
        assert len(status_sync.commands) == 1

    def test_admin_outside_approver_set_cannot_delegate(self, make_workflow, submit, engine, users):
        make_workflow([{"approvers": [user(users.alice)], "approval_type": "all"}])
        request = submit()
        step_id = request.current_step_id

        with pytest.raises(NotAnApproverError):
            engine.act(
                request.request_id, users.admin, ActionType.DELEGATE,
                step_id=step_id, delegated_to=users.dave,
            )

        assert engine.get_request(request.request_id).current_approvers == (users.alice,)
        done = engine.act(request.request_id, users.alice, ActionType.APPROVE, step_id=step_id)
        assert done.status == ApprovalStatus.APPROVED

    def test_comment_leaves_state_alone(self, orchestrator, make_workflow, submit, engine, users):
        make_workflow([{"approvers": [role("procurement")]}])
        request = submit()
        step_id = request.current_step_id

        engine.act(request.request_id, users.bob, ActionType.COMMENT, step_id=step_id, comment="need quote")
        result = engine.act(
            request.request_id, users.submitter, ActionType.COMMENT, step_id=step_id, comment="attached",
        )

        assert result.status == ApprovalStatus.PENDING
        assert result.current_step_id == step_id
        comments = [a.comment for a in orchestrator.requests.get_actions(request.request_id)]
        assert comments == ["need quote", "attached"]

    def test_outsider_cannot_comment(self, make_workflow, submit, engine, users):
        make_workflow([{"approvers": [role("procurement")]}])
        request = submit()

        with pytest.raises(NotAnApproverError):
            engine.act(request.request_id, users.outsider, ActionType.COMMENT, step_id=request.current_step_id)


# ---------------------------------------------------------------------------
# Cancel and administrative skip
# ---------------------------------------------------------------------------


class TestCancelAndSkip:

    def test_submitter_cancels_without_status_sync(self, make_workflow, submit, engine, users, status_sync, outbox):
        make_workflow([{"approvers": [role("procurement")]}])
        request = submit()

        result = engine.cancel(request.request_id, users.submitter, reason="duplicate")

        assert result.status == ApprovalStatus.CANCELLED
        assert status_sync.calls == 0
        cancelled = outbox.pending(NotificationEvent.CANCELLED)
        assert cancelled[0].recipients == frozenset({users.submitter, users.alice, users.bob, users.carol})

    def test_only_submitter_or_admin_cancels(self, make_workflow, submit, engine, users):
        make_workflow([{"approvers": [role("procurement")]}])
        request = submit()

        with pytest.raises(NotAnApproverError):
            engine.cancel(request.request_id, users.alice)

        assert engine.cancel(request.request_id, users.admin).status == ApprovalStatus.CANCELLED

    def test_cancel_twice(self, make_workflow, submit, engine, users):
        make_workflow([{"approvers": [role("procurement")]}])
        request = submit()
        engine.cancel(request.request_id, users.submitter)

        with pytest.raises(ApprovalAlreadyResolvedError):
            engine.cancel(request.request_id, users.submitter)

    def test_admin_skips_skippable_step(self, orchestrator, make_workflow, submit, engine, users):
        wf = make_workflow([
            {"approvers": [role("procurement")], "can_skip": True},
            {"approvers": [role("finance")]},
        ])
        request = submit()

        result = engine.skip_step(request.request_id, users.admin, step_id=request.current_step_id, reason="urgent")

        assert result.current_step_id == wf.steps[1].step_id
        assert AuditAction.STEP_SKIPPED in trace_actions(orchestrator, request.request_id)

    def test_skip_requires_flag_and_admin(self, make_workflow, submit, engine, users):
        make_workflow([{"approvers": [role("procurement")]}])
        request = submit()

        with pytest.raises(NotAnApproverError):
            engine.skip_step(request.request_id, users.alice, step_id=request.current_step_id)
        with pytest.raises(StepNotSkippableError):
            engine.skip_step(request.request_id, users.admin, step_id=request.current_step_id)


# ---------------------------------------------------------------------------
# Conditional routing
# ---------------------------------------------------------------------------


class TestConditionalRouting:

    def test_skip_condition_bypasses_step(self, orchestrator, make_workflow, submit, users):
        wf = make_workflow([
            {"approvers": [role("procurement")], "conditions": [cond("total_amount", "lt", 1000, "skip")]},
            {"approvers": [role("finance")]},
        ])

        request = submit({"total_amount": 500})

        assert request.current_step_id == wf.steps[1].step_id
        assert request.current_approvers == (users.dave,)
        assert orchestrator.requests.get_actions(request.request_id, wf.steps[0].step_id) == []
        assert AuditAction.STEP_SKIPPED in trace_actions(orchestrator, request.request_id)

    def test_skip_condition_not_holding(self, make_workflow, submit):
        wf = make_workflow([
            {"approvers": [role("procurement")], "conditions": [cond("total_amount", "lt", 1000, "skip")]},
            {"approvers": [role("finance")]},
        ])

        request = submit({"total_amount": 5000})

        assert request.current_step_id == wf.steps[0].step_id

    def test_approve_condition_completes_at_submission(self, orchestrator, make_workflow, submit, status_sync):
        wf = make_workflow([
            {"approvers": [role("procurement")], "conditions": [cond("total_amount", "lte", 10000, "approve")]},
        ])

        request = submit({"total_amount": "9999.99"})

        assert request.status == ApprovalStatus.APPROVED
        assert status_sync.commands[0].status == ApprovalStatus.APPROVED
        system_actions = orchestrator.requests.get_actions(request.request_id, wf.steps[0].step_id)
        assert [a.is_system for a in system_actions] == [True]
        assert AuditAction.STEP_AUTO_SATISFIED in trace_actions(orchestrator, request.request_id)

    def test_require_condition_gates_step(self, make_workflow, submit):
        wf = make_workflow([
            {"approvers": [role("procurement")]},
            {"approvers": [role("admin")], "conditions": [cond("total_amount", "gt", 10000, "require")]},
        ])
        small = submit({"total_amount": 500})
        large = submit({"total_amount": 50000})

        assert small.current_step_id == wf.steps[0].step_id
        assert large.current_step_id == wf.steps[0].step_id

    def test_require_not_holding_skips_to_completion(self, make_workflow, submit, engine, users):
        make_workflow([
            {"approvers": [role("procurement")]},
            {"approvers": [role("admin")], "conditions": [cond("total_amount", "gt", 10000, "require")]},
        ])
        small = submit({"total_amount": 500})
        large = submit({"total_amount": 50000})

        small_done = engine.act(small.request_id, users.alice, ActionType.APPROVE, step_id=small.current_step_id)
        large_moved = engine.act(large.request_id, users.alice, ActionType.APPROVE, step_id=large.current_step_id)

        assert small_done.status == ApprovalStatus.APPROVED
        assert large_moved.status == ApprovalStatus.PENDING
        assert large_moved.current_approvers == (users.admin,)

    def test_route_to_role(self, make_workflow, submit, users):
        make_workflow([{
            "approvers": [role("procurement")],
            "conditions": [cond("category", "in", ["it", "hardware"], "route_to_role", route_to_role="finance")],
        }])

        routed = submit({"category": "it"})
        normal = submit({"category": "office"})

        assert routed.current_approvers == (users.dave,)
        assert set(normal.current_approvers) == {users.alice, users.bob, users.carol}

    def test_nested_field_path(self, make_workflow, submit):
        wf = make_workflow([
            {"approvers": [role("procurement")], "conditions": [cond("supplier.tier", "eq", "gold", "skip")]},
            {"approvers": [role("finance")]},
        ])

        request = submit({"supplier": {"tier": "gold"}})

        assert request.current_step_id == wf.steps[1].step_id

    def test_unevaluable_condition_halts_routing(self, orchestrator, make_workflow, submit, engine, users, captured_logs):
        wf = make_workflow([
            {"approvers": [role("procurement")], "timeout_hours": 24},
            {"approvers": [role("finance")], "conditions": [cond("total_amount", "gt", 10000, "require")]},
        ])
        request = submit({"total_amount": "not a number"})

        halted = engine.act(request.request_id, users.alice, ActionType.APPROVE, step_id=request.current_step_id)

        assert halted.status == ApprovalStatus.PENDING
        assert halted.current_step_id == wf.steps[0].step_id
        assert halted.step_deadline_at is None
        assert AuditAction.ROUTING_HALTED in trace_actions(orchestrator, request.request_id)
        critical = [r for r in captured_logs() if r["message"] == "approval_routing_halted"]
        assert critical and critical[0]["level"] == "CRITICAL"


# ---------------------------------------------------------------------------
# Dynamic and unresolvable approvers
# ---------------------------------------------------------------------------


class TestApproverResolution:

    def test_requestor_manager(self, orchestrator, make_workflow, submit, users):
        orchestrator.role_assignments.set_profile(users.submitter, manager_id=users.carol)
        make_workflow([{"approvers": [dynamic("requestor_manager")]}])

        request = submit()

        assert request.current_approvers == (users.carol,)

    def test_cost_center_owner_from_payload(self, make_workflow, submit, users):
        make_workflow([{"approvers": [dynamic("cost_center_owner")]}])

        request = submit({"cost_center_owner_id": str(users.bob)})

        assert request.current_approvers == (users.bob,)

    def test_unresolved_escalates_immediately(self, orchestrator, make_workflow, submit, outbox):
        make_workflow([{"approvers": [dynamic("requestor_manager")]}])

        request = submit()

        assert request.status == ApprovalStatus.PENDING
        assert request.current_approvers == ()
        assert request.escalation_count == 1
        assert AuditAction.ESCALATED in trace_actions(orchestrator, request.request_id)
        assert outbox.pending(NotificationEvent.ESCALATED)

    def test_unresolved_auto_reject(self, make_workflow, submit, status_sync):
        make_workflow([{
            "approvers": [role("nobody_has_this")],
            "escalation_action": EscalationAction.AUTO_REJECT,
        }])

        request = submit()

        assert request.status == ApprovalStatus.REJECTED
        assert status_sync.commands[0].status == ApprovalStatus.REJECTED

    def test_unresolved_all_step_admin_decides(self, make_workflow, submit, engine, users):
        make_workflow([{"approvers": [role("nobody_has_this")], "approval_type": "all"}])
        request = submit()

        result = engine.act(request.request_id, users.admin, ActionType.APPROVE, step_id=request.current_step_id)

        assert result.status == ApprovalStatus.APPROVED
