"""
Tests for ApproverResolver against an in-memory role directory.

No database: StaticRoleStore stands in for the org directory, so these
tests pin down resolution rules alone (role, user, dynamic, routed role).
"""

from uuid import uuid4

import pytest

from approval_kernel.exceptions import UnresolvedApproverError, UnresolvedDynamicApproverError
from approval_kernel.services.approver_resolution import (
    COST_CENTER_OWNER,
    DEPARTMENT_HEAD,
    REQUESTOR_MANAGER,
    ApproverResolver,
    ResolutionContext,
)
from approval_kernel.services.role_store import StaticRoleStore
from tests.factories import dynamic, make_step, role, user

BUYER_1, BUYER_2, CONTROLLER, HEAD_OPS, HEAD_IT, SUBMITTER, MANAGER = (uuid4() for _ in range(7))


@pytest.fixture
def resolver():
    store = StaticRoleStore(
        role_map={
            BUYER_1: {"procurement"},
            BUYER_2: ("procurement", "viewer"),
            CONTROLLER: {"controller"},
            HEAD_OPS: {"department_head"},
            HEAD_IT: {"department_head"},
        },
        managers={SUBMITTER: MANAGER},
        departments={SUBMITTER: "operations", HEAD_OPS: "operations", HEAD_IT: "it"},
    )
    return ApproverResolver(store)


def context(**payload):
    return ResolutionContext(
        submitted_by=SUBMITTER,
        entity_type="purchase_order",
        entity_id=uuid4(),
        document_payload=payload,
    )


class TestStaticSpecs:

    def test_role_expands_to_every_holder(self, resolver):
        step = make_step(approvers=[role("procurement")])

        assert resolver.resolve(step, context()) == {BUYER_1, BUYER_2}

    def test_union_is_deduplicated(self, resolver):
        step = make_step(approvers=[role("procurement"), user(BUYER_1), role("controller")])

        assert resolver.resolve(step, context()) == {BUYER_1, BUYER_2, CONTROLLER}

    def test_empty_role_is_unresolved(self, resolver):
        step = make_step(approvers=[role("treasury")])

        with pytest.raises(UnresolvedApproverError) as exc_info:
            resolver.resolve(step, context())
        assert exc_info.value.step_id == str(step.step_id)

    def test_routed_role_replaces_step_approvers(self, resolver):
        step = make_step(approvers=[role("procurement")])

        assert resolver.resolve(step, context(), route_role="controller") == {CONTROLLER}

    def test_routed_role_with_no_holders(self, resolver):
        step = make_step(approvers=[role("procurement")])

        with pytest.raises(UnresolvedApproverError, match="routed role"):
            resolver.resolve(step, context(), route_role="treasury")


class TestDynamicRules:

    def test_builtin_rules_registered(self, resolver):
        assert {REQUESTOR_MANAGER, DEPARTMENT_HEAD, COST_CENTER_OWNER} <= resolver.dynamic_rule_keys

    def test_requestor_manager(self, resolver):
        step = make_step(approvers=[dynamic(REQUESTOR_MANAGER)])

        assert resolver.resolve(step, context()) == {MANAGER}

    def test_department_head_is_scoped_to_submitter_department(self, resolver):
        step = make_step(approvers=[dynamic(DEPARTMENT_HEAD)])

        assert resolver.resolve(step, context()) == {HEAD_OPS}

    def test_cost_center_owner_from_document(self, resolver):
        owner = uuid4()
        step = make_step(approvers=[dynamic(COST_CENTER_OWNER)])

        assert resolver.resolve(step, context(cost_center_owner_id=str(owner))) == {owner}

    def test_malformed_cost_center_owner(self, resolver):
        step = make_step(approvers=[dynamic(COST_CENTER_OWNER)])

        with pytest.raises(UnresolvedDynamicApproverError) as exc_info:
            resolver.resolve(step, context(cost_center_owner_id="not-a-uuid"))
        assert exc_info.value.rule_key == COST_CENTER_OWNER

    def test_unknown_rule(self, resolver):
        step = make_step(approvers=[dynamic("budget_holder")])

        with pytest.raises(UnresolvedDynamicApproverError, match="unknown dynamic rule"):
            resolver.resolve(step, context())

    def test_registered_rule(self, resolver):
        holder = uuid4()
        resolver.register_dynamic_rule("budget_holder", lambda store, ctx: frozenset({holder}))
        step = make_step(approvers=[dynamic("budget_holder"), user(CONTROLLER)])

        assert resolver.resolve(step, context()) == {holder, CONTROLLER}
