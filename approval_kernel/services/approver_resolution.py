"""
approval_kernel.services.approver_resolution -- Approver resolution.

Responsibility:
    Turns a step's approver specs into a concrete set of identities for a
    particular request.  Role specs expand to every holder of the role,
    user specs name one identity, dynamic specs run a registered rule.

Architecture position:
    Kernel > Services.  Talks to the org directory only through the
    RoleStore protocol.

Invariants enforced:
    - The resolved set is the union of every spec, de-duplicated.
    - A ``route_to_role`` condition replaces the step's own specs with the
      holders of the routed role.
    - An empty result is never returned: UnresolvedApproverError is raised
      so the engine can apply the step's escalation action.

Failure modes:
    - UnresolvedDynamicApproverError for an unknown rule key or a rule that
      yields nobody.
    - UnresolvedApproverError when the union is empty.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any
from uuid import UUID

from approval_kernel.domain.ports import RoleStore
from approval_kernel.domain.workflow import ApproverType, Step
from approval_kernel.exceptions import (
    UnresolvedApproverError,
    UnresolvedDynamicApproverError,
)
from approval_kernel.logging_config import get_logger

logger = get_logger("services.approver_resolution")

REQUESTOR_MANAGER = "requestor_manager"
DEPARTMENT_HEAD = "department_head"
COST_CENTER_OWNER = "cost_center_owner"

DEPARTMENT_HEAD_ROLE = "department_head"
COST_CENTER_OWNER_FIELD = "cost_center_owner_id"


@dataclass(frozen=True)
class ResolutionContext:
    """Request facts a dynamic rule may read."""

    submitted_by: UUID
    entity_type: str
    entity_id: UUID
    document_payload: dict[str, Any] = field(default_factory=dict)


DynamicRule = Callable[[RoleStore, ResolutionContext], frozenset[UUID]]


def _requestor_manager(store: RoleStore, ctx: ResolutionContext) -> frozenset[UUID]:
    manager = store.get_manager(ctx.submitted_by)
    return frozenset({manager}) if manager is not None else frozenset()


def _department_head(store: RoleStore, ctx: ResolutionContext) -> frozenset[UUID]:
    return store.get_users_with_role_for_user(DEPARTMENT_HEAD_ROLE, ctx.submitted_by)


def _cost_center_owner(store: RoleStore, ctx: ResolutionContext) -> frozenset[UUID]:
    owner = ctx.document_payload.get(COST_CENTER_OWNER_FIELD)
    if not owner:
        return frozenset()
    try:
        return frozenset({UUID(str(owner))})
    except ValueError:
        return frozenset()


DEFAULT_DYNAMIC_RULES: dict[str, DynamicRule] = {
    REQUESTOR_MANAGER: _requestor_manager,
    DEPARTMENT_HEAD: _department_head,
    COST_CENTER_OWNER: _cost_center_owner,
}


class ApproverResolver:
    """
    Resolves approver specs to identities.

    Contract:
        ``resolve(step, context)`` returns a non-empty frozenset of user ids
        or raises UnresolvedApproverError.

    Non-goals:
        - Does NOT decide eligibility of administrators; that is the
          engine's concern.
    """

    def __init__(
        self,
        role_store: RoleStore,
        dynamic_rules: Mapping[str, DynamicRule] | None = None,
    ) -> None:
        self._role_store = role_store
        self._rules: dict[str, DynamicRule] = dict(DEFAULT_DYNAMIC_RULES)
        if dynamic_rules:
            self._rules.update(dynamic_rules)

    def register_dynamic_rule(self, key: str, rule: DynamicRule) -> None:
        self._rules[key] = rule

    @property
    def dynamic_rule_keys(self) -> frozenset[str]:
        return frozenset(self._rules)

    def resolve_role(self, role: str) -> frozenset[UUID]:
        return self._role_store.get_users_with_role(role)

    def resolve(
        self,
        step: Step,
        context: ResolutionContext,
        route_role: str | None = None,
    ) -> frozenset[UUID]:
        """Resolve ``step``'s approvers for one request.

        Raises:
            UnresolvedDynamicApproverError: a dynamic spec names an unknown
                rule or its rule yields nobody.
            UnresolvedApproverError: the resolved set is empty.
        """
        if route_role is not None:
            resolved = self._role_store.get_users_with_role(route_role)
            if not resolved:
                raise UnresolvedApproverError(
                    str(step.step_id), f"no user holds routed role {route_role!r}",
                )
            return resolved

        resolved: set[UUID] = set()
        for spec in step.approvers:
            if spec.approver_type == ApproverType.ROLE:
                resolved |= self._role_store.get_users_with_role(spec.approver_value)
            elif spec.approver_type == ApproverType.USER:
                resolved.add(UUID(str(spec.approver_value)))
            else:
                resolved |= self._resolve_dynamic(step, spec.approver_value, context)

        if not resolved:
            raise UnresolvedApproverError(
                str(step.step_id), "approver specs resolved to nobody",
            )

        logger.debug(
            "approvers_resolved",
            extra={"step_id": str(step.step_id), "approver_count": len(resolved)},
        )
        return frozenset(resolved)

    def _resolve_dynamic(
        self,
        step: Step,
        rule_key: str,
        context: ResolutionContext,
    ) -> frozenset[UUID]:
        rule = self._rules.get(rule_key)
        if rule is None:
            raise UnresolvedDynamicApproverError(
                str(step.step_id), rule_key, "unknown dynamic rule",
            )
        result = rule(self._role_store, context)
        if not result:
            raise UnresolvedDynamicApproverError(
                str(step.step_id), rule_key, "rule resolved to nobody",
            )
        return frozenset(result)
