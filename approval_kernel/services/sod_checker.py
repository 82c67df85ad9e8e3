"""
approval_kernel.services.sod_checker -- Segregation-of-duties conflict checker.

Responsibility:
    Evaluates the stored SoD rules against a user's current roles
    (``check``) or against the roles the user would hold after one more
    grant (``would_conflict``).  Also administers the rule table.

Architecture position:
    Kernel > Services.  Independent of the approval engine; consulted by
    role mutation flows (``approval_services.sod_authority``).

Invariants enforced:
    - Rules are symmetric: holding either side and being granted the other
      triggers the rule regardless of which side was stored as ``role_a``.
    - Matching is rule-driven; no role pair is hard-coded here.
    - ``blocking`` is True iff at least one matching rule is blocking.
      Non-blocking matches are advisory and reported, never enforced.

Failure modes:
    - InvalidWorkflowDefinitionError for a malformed rule (same role on
      both sides, unknown risk level).
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.domain.ports import RoleStore
from approval_kernel.domain.sod import ConflictCheckResult, RiskLevel, SoDConflict, SoDRule
from approval_kernel.exceptions import InvalidWorkflowDefinitionError
from approval_kernel.logging_config import get_logger
from approval_kernel.models.audit_event import AuditAction
from approval_kernel.models.sod import SoDRuleModel
from approval_kernel.services.auditor_service import AuditorService

logger = get_logger("services.sod_checker")


def _sort_key(conflict: SoDConflict) -> tuple[int, str]:
    return (-conflict.risk_level.rank, conflict.conflict_name)


class SoDChecker:
    """
    Rule-driven SoD conflict detection.

    Contract:
        ``check(user_id)`` lists rules whose two roles the user already
        holds.  ``would_conflict(user_id, role)`` simulates granting
        ``role`` and lists every rule pairing it with a held role.

    Non-goals:
        - Does NOT grant or revoke roles.
        - Does NOT call ``session.commit()``.
    """

    def __init__(
        self,
        session: Session,
        role_store: RoleStore,
        auditor: AuditorService | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._session = session
        self._role_store = role_store
        self._auditor = auditor
        self._clock = clock or SystemClock()

    # =========================================================================
    # Evaluation
    # =========================================================================

    def check(self, user_id: UUID) -> list[SoDConflict]:
        """Active conflicts: both roles of a rule are currently held."""
        held = self._role_store.get_roles(user_id)
        conflicts: list[SoDConflict] = []
        for rule in self._rules_touching(held):
            if rule.role_a in held and rule.role_b in held:
                conflicts.append(_conflict(rule, held_role=rule.role_a, conflicting_role=rule.role_b))
        conflicts.sort(key=_sort_key)
        return conflicts

    def would_conflict(self, user_id: UUID, candidate_role: str) -> ConflictCheckResult:
        """Simulate granting ``candidate_role`` to ``user_id``."""
        held = self._role_store.get_roles(user_id) - {candidate_role}
        conflicts: list[SoDConflict] = []
        for rule in self._rules_touching({candidate_role}):
            other = rule.other_side(candidate_role)
            if other is not None and other in held:
                conflicts.append(_conflict(rule, held_role=other, conflicting_role=candidate_role))
        conflicts.sort(key=_sort_key)

        result = ConflictCheckResult(
            blocking=any(c.is_blocking for c in conflicts),
            conflicts=tuple(conflicts),
        )
        if conflicts:
            logger.info(
                "sod_conflicts_detected",
                extra={
                    "user_id": str(user_id),
                    "candidate_role": candidate_role,
                    "blocking": result.blocking,
                    "conflict_names": [c.conflict_name for c in conflicts],
                },
            )
        return result

    # =========================================================================
    # Rule administration
    # =========================================================================

    def add_rule(
        self,
        role_a: str,
        role_b: str,
        conflict_name: str,
        risk_level: RiskLevel | str,
        actor_id: UUID,
        is_blocking: bool = True,
        description: str | None = None,
    ) -> SoDRule:
        """Store a rule.  A pair already stored (either direction) is returned as-is."""
        if not role_a or not role_b or role_a == role_b:
            raise InvalidWorkflowDefinitionError("an SoD rule needs two distinct roles", "role_b")
        try:
            risk_level = RiskLevel(risk_level)
        except ValueError:
            raise InvalidWorkflowDefinitionError(f"unknown risk_level {risk_level!r}", "risk_level")

        existing = self._find_pair(role_a, role_b)
        if existing is not None:
            return existing.to_dto()

        now = self._clock.now()
        model = SoDRuleModel(
            role_a=role_a,
            role_b=role_b,
            conflict_name=conflict_name,
            risk_level=risk_level.value,
            is_blocking=is_blocking,
            description=description,
            created_at=now,
            updated_at=now,
            created_by_id=actor_id,
        )
        savepoint = self._session.begin_nested()
        try:
            self._session.add(model)
            self._session.flush()
            savepoint.commit()
        except IntegrityError:
            savepoint.rollback()
            existing = self._find_pair(role_a, role_b)
            if existing is None:
                raise
            return existing.to_dto()

        if self._auditor is not None:
            self._auditor.record(
                entity_type="SoDRule",
                entity_id=model.id,
                action=AuditAction.SOD_RULE_CREATED,
                actor_id=actor_id,
                payload={
                    "role_a": role_a,
                    "role_b": role_b,
                    "risk_level": risk_level.value,
                    "is_blocking": is_blocking,
                },
            )
        logger.info(
            "sod_rule_created",
            extra={"conflict_name": conflict_name, "role_a": role_a, "role_b": role_b},
        )
        return model.to_dto()

    def list_rules(self) -> list[SoDRule]:
        """All rules, critical first, then by name."""
        rules = [
            m.to_dto() for m in self._session.execute(select(SoDRuleModel)).scalars().all()
        ]
        rules.sort(key=lambda r: (-r.risk_level.rank, r.conflict_name))
        return rules

    # =========================================================================
    # Internal
    # =========================================================================

    def _rules_touching(self, roles: set[str] | frozenset[str]) -> list[SoDRule]:
        if not roles:
            return []
        models = self._session.execute(
            select(SoDRuleModel).where(
                or_(SoDRuleModel.role_a.in_(roles), SoDRuleModel.role_b.in_(roles))
            )
        ).scalars().all()
        return [m.to_dto() for m in models]

    def _find_pair(self, role_a: str, role_b: str) -> SoDRuleModel | None:
        return self._session.execute(
            select(SoDRuleModel).where(
                or_(
                    (SoDRuleModel.role_a == role_a) & (SoDRuleModel.role_b == role_b),
                    (SoDRuleModel.role_a == role_b) & (SoDRuleModel.role_b == role_a),
                )
            )
        ).scalar_one_or_none()


def _conflict(rule: SoDRule, *, held_role: str, conflicting_role: str) -> SoDConflict:
    return SoDConflict(
        conflict_name=rule.conflict_name,
        risk_level=rule.risk_level,
        is_blocking=rule.is_blocking,
        held_role=held_role,
        conflicting_role=conflicting_role,
        rule_id=rule.rule_id,
    )
