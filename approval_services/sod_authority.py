"""
approval_services.sod_authority -- SoD-gated role grants.

Responsibility:
    The calling site the SoD checker is consulted from: every role grant
    simulates the new role first and refuses it when a blocking rule
    fires.  Advisory (non-blocking) conflicts are surfaced to the caller
    and logged but do not stop the grant.

Architecture position:
    Services layer.  Composes the kernel SoDChecker with the kernel
    RoleAssignmentService.

Invariants enforced:
    - A grant that would create a blocking conflict never writes a role
      row.  The refusal is audited (SOD_CONFLICT_BLOCKED).
"""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from approval_kernel.domain.sod import SoDConflict
from approval_kernel.exceptions import BlockingSoDConflictError
from approval_kernel.logging_config import get_logger
from approval_kernel.models.audit_event import AuditAction
from approval_kernel.services.auditor_service import AuditorService
from approval_kernel.services.role_store import RoleAssignmentService
from approval_kernel.services.sod_checker import SoDChecker

logger = get_logger("services.sod_authority")


@dataclass(frozen=True)
class RoleGrantResult:
    user_id: UUID
    role: str
    granted: bool
    advisory_conflicts: tuple[SoDConflict, ...] = ()


class RoleGrantService:
    """Grants and revokes roles behind the SoD gate."""

    def __init__(
        self,
        checker: SoDChecker,
        assignments: RoleAssignmentService,
        auditor: AuditorService,
    ) -> None:
        self._checker = checker
        self._assignments = assignments
        self._auditor = auditor

    def grant_role(self, user_id: UUID, role: str, granted_by: UUID) -> RoleGrantResult:
        """Grant ``role`` unless a blocking SoD rule fires.

        Raises:
            BlockingSoDConflictError: at least one blocking rule matches.
        """
        result = self._checker.would_conflict(user_id, role)

        if result.blocking:
            names = tuple(c.conflict_name for c in result.blocking_conflicts)
            self._auditor.record(
                entity_type="UserRole",
                entity_id=user_id,
                action=AuditAction.SOD_CONFLICT_BLOCKED,
                actor_id=granted_by,
                payload={"role": role, "conflicts": list(names)},
            )
            logger.warning(
                "role_grant_blocked",
                extra={"user_id": str(user_id), "role": role, "conflict_names": list(names)},
            )
            raise BlockingSoDConflictError(str(user_id), role, names)

        if result.advisory_conflicts:
            logger.warning(
                "role_grant_advisory_conflicts",
                extra={
                    "user_id": str(user_id),
                    "role": role,
                    "conflict_names": [c.conflict_name for c in result.advisory_conflicts],
                },
            )

        granted = self._assignments.assign(user_id, role, granted_by)
        return RoleGrantResult(
            user_id=user_id,
            role=role,
            granted=granted,
            advisory_conflicts=result.advisory_conflicts,
        )

    def revoke_role(self, user_id: UUID, role: str, revoked_by: UUID) -> bool:
        return self._assignments.revoke(user_id, role, revoked_by)
