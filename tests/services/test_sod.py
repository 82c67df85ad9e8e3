"""
Tests for SoDChecker and RoleGrantService -- segregation of duties.

Covers:
- Rule storage (symmetric pairs, validation, ordering)
- check(): conflicts among held roles
- would_conflict(): blocking vs advisory simulation
- grant_role(): blocking conflicts refused and audited, advisory allowed
"""

import pytest

from approval_kernel.domain.sod import RiskLevel
from approval_kernel.exceptions import BlockingSoDConflictError, InvalidWorkflowDefinitionError
from approval_kernel.models.audit_event import AuditAction


@pytest.fixture
def rules(orchestrator, users):
    checker = orchestrator.sod_checker
    checker.add_rule("procurement", "finance", "Purchase and Pay", RiskLevel.CRITICAL, users.admin)
    checker.add_rule(
        "procurement", "warehouse_manager", "Order and Receive", "medium", users.admin,
        is_blocking=False,
    )
    return checker


class TestRules:

    def test_pair_stored_once_in_either_direction(self, rules, users):
        again = rules.add_rule("finance", "procurement", "Pay and Purchase", "low", users.admin)

        assert again.conflict_name == "Purchase and Pay"
        assert len(rules.list_rules()) == 2

    def test_list_orders_by_risk(self, rules):
        assert [r.risk_level for r in rules.list_rules()] == [RiskLevel.CRITICAL, RiskLevel.MEDIUM]

    @pytest.mark.parametrize("role_a,role_b,risk", [
        ("finance", "finance", "high"),
        ("", "finance", "high"),
        ("sales", "finance", "extreme"),
    ])
    def test_invalid_rules(self, orchestrator, users, role_a, role_b, risk):
        with pytest.raises(InvalidWorkflowDefinitionError):
            orchestrator.sod_checker.add_rule(role_a, role_b, "Bad", risk, users.admin)


class TestConflictChecks:

    def test_blocking_candidate(self, rules, users):
        result = rules.would_conflict(users.alice, "finance")

        assert result.blocking is True
        assert [c.conflict_name for c in result.conflicts] == ["Purchase and Pay"]
        assert result.conflicts[0].held_role == "procurement"
        assert result.conflicts[0].conflicting_role == "finance"

    def test_advisory_candidate(self, rules, users):
        result = rules.would_conflict(users.alice, "warehouse_manager")

        assert result.blocking is False
        assert [c.conflict_name for c in result.advisory_conflicts] == ["Order and Receive"]

    def test_no_rule_no_conflict(self, rules, users):
        result = rules.would_conflict(users.dave, "sales")

        assert result.blocking is False
        assert result.conflicts == ()

    def test_rule_is_symmetric(self, rules, users):
        assert rules.would_conflict(users.dave, "procurement").blocking is True

    def test_check_reports_held_pairs(self, orchestrator, rules, users):
        # Written directly, bypassing the gate.
        orchestrator.role_assignments.assign(users.bob, "finance", users.admin)

        conflicts = rules.check(users.bob)

        assert [c.conflict_name for c in conflicts] == ["Purchase and Pay"]
        assert rules.check(users.carol) == []


class TestRoleGrants:

    def test_blocking_grant_refused(self, orchestrator, rules, users):
        with pytest.raises(BlockingSoDConflictError) as exc_info:
            orchestrator.role_grants.grant_role(users.alice, "finance", users.admin)

        assert exc_info.value.conflict_names == ("Purchase and Pay",)
        assert orchestrator.role_store.get_roles(users.alice) == frozenset({"procurement"})
        trace = orchestrator.auditor.get_trace("UserRole", users.alice).actions
        assert trace[-1] == AuditAction.SOD_CONFLICT_BLOCKED

    def test_advisory_grant_allowed(self, orchestrator, rules, users):
        result = orchestrator.role_grants.grant_role(users.alice, "warehouse_manager", users.admin)

        assert result.granted is True
        assert [c.conflict_name for c in result.advisory_conflicts] == ["Order and Receive"]
        assert "warehouse_manager" in orchestrator.role_store.get_roles(users.alice)

    def test_clean_grant(self, orchestrator, rules, users):
        result = orchestrator.role_grants.grant_role(users.outsider, "finance", users.admin)

        assert result.granted is True
        assert result.advisory_conflicts == ()

    def test_regrant_is_idempotent(self, orchestrator, rules, users):
        result = orchestrator.role_grants.grant_role(users.dave, "finance", users.admin)

        assert result.granted is False

    def test_revoke_then_grant(self, orchestrator, rules, users):
        assert orchestrator.role_grants.revoke_role(users.alice, "procurement", users.admin) is True

        result = orchestrator.role_grants.grant_role(users.alice, "finance", users.admin)

        assert result.granted is True
        assert orchestrator.role_grants.revoke_role(users.alice, "procurement", users.admin) is False
