"""
approval_kernel.services.role_store -- Role assignments and org hierarchy.

Responsibility:
    ``SqlRoleStore`` answers the read-only RoleStore queries the approver
    resolver and the SoD checker need.  ``RoleAssignmentService`` writes
    role rows and user profiles.  It does NOT check segregation of duties;
    grants that must be SoD-gated go through
    ``approval_services.sod_authority.RoleGrantService``.

Architecture position:
    Kernel > Services.  May import from domain/, models/.

Invariants enforced:
    - A user holds a role at most once (UNIQUE(user_id, role)); granting a
      role already held is a no-op.
    - Department scoping: ``get_users_with_role_for_user`` only returns
      holders in the same department as the given user.

Audit relevance:
    ROLE_GRANTED / ROLE_REVOKED events record the actor and the role.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.logging_config import get_logger
from approval_kernel.models.audit_event import AuditAction
from approval_kernel.models.sod import UserProfileModel, UserRoleModel
from approval_kernel.services.auditor_service import AuditorService

logger = get_logger("services.role_store")


class SqlRoleStore:
    """RoleStore backed by the ``user_roles`` and ``user_profiles`` tables."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def get_roles(self, user_id: UUID) -> frozenset[str]:
        rows = self._session.execute(
            select(UserRoleModel.role).where(UserRoleModel.user_id == user_id)
        ).scalars().all()
        return frozenset(rows)

    def get_users_with_role(self, role: str) -> frozenset[UUID]:
        rows = self._session.execute(
            select(UserRoleModel.user_id).where(UserRoleModel.role == role)
        ).scalars().all()
        return frozenset(rows)

    def get_users_with_role_for_user(self, role: str, user_id: UUID) -> frozenset[UUID]:
        department = self._session.execute(
            select(UserProfileModel.department).where(UserProfileModel.user_id == user_id)
        ).scalar_one_or_none()
        if department is None:
            return frozenset()

        rows = self._session.execute(
            select(UserRoleModel.user_id)
            .join(UserProfileModel, UserProfileModel.user_id == UserRoleModel.user_id)
            .where(
                UserRoleModel.role == role,
                UserProfileModel.department == department,
            )
        ).scalars().all()
        return frozenset(rows)

    def get_manager(self, user_id: UUID) -> UUID | None:
        return self._session.execute(
            select(UserProfileModel.manager_id).where(UserProfileModel.user_id == user_id)
        ).scalar_one_or_none()


class StaticRoleStore:
    """RoleStore backed by plain dicts.

    For embedders that keep role assignments outside this database, and
    for routing tests that need no role rows.
    """

    def __init__(
        self,
        role_map: dict[UUID, frozenset[str] | set[str] | tuple[str, ...]] | None = None,
        managers: dict[UUID, UUID] | None = None,
        departments: dict[UUID, str] | None = None,
    ) -> None:
        self._role_map = {k: frozenset(v) for k, v in (role_map or {}).items()}
        self._managers = dict(managers or {})
        self._departments = dict(departments or {})

    def get_roles(self, user_id: UUID) -> frozenset[str]:
        return self._role_map.get(user_id, frozenset())

    def get_users_with_role(self, role: str) -> frozenset[UUID]:
        return frozenset(u for u, roles in self._role_map.items() if role in roles)

    def get_users_with_role_for_user(self, role: str, user_id: UUID) -> frozenset[UUID]:
        department = self._departments.get(user_id)
        if department is None:
            return frozenset()
        return frozenset(
            u for u in self.get_users_with_role(role)
            if self._departments.get(u) == department
        )

    def get_manager(self, user_id: UUID) -> UUID | None:
        return self._managers.get(user_id)


class RoleAssignmentService:
    """
    Writes role assignments and user profiles.

    Non-goals:
        - Does NOT call ``session.commit()``.
        - Does NOT evaluate SoD rules.
    """

    def __init__(
        self,
        session: Session,
        auditor: AuditorService,
        clock: Clock | None = None,
    ) -> None:
        self._session = session
        self._auditor = auditor
        self._clock = clock or SystemClock()

    def assign(self, user_id: UUID, role: str, granted_by: UUID) -> bool:
        """Grant ``role``.  Returns False if the user already held it."""
        existing = self._session.execute(
            select(UserRoleModel).where(
                UserRoleModel.user_id == user_id,
                UserRoleModel.role == role,
            )
        ).scalar_one_or_none()
        if existing is not None:
            return False

        self._session.add(UserRoleModel(
            user_id=user_id,
            role=role,
            granted_at=self._clock.now(),
            granted_by_id=granted_by,
        ))
        self._session.flush()
        self._auditor.record(
            entity_type="UserRole",
            entity_id=user_id,
            action=AuditAction.ROLE_GRANTED,
            actor_id=granted_by,
            payload={"role": role},
        )
        logger.info("role_granted", extra={"user_id": str(user_id), "role": role})
        return True

    def revoke(self, user_id: UUID, role: str, revoked_by: UUID) -> bool:
        """Revoke ``role``.  Returns False if the user did not hold it."""
        existing = self._session.execute(
            select(UserRoleModel).where(
                UserRoleModel.user_id == user_id,
                UserRoleModel.role == role,
            )
        ).scalar_one_or_none()
        if existing is None:
            return False

        self._session.delete(existing)
        self._session.flush()
        self._auditor.record(
            entity_type="UserRole",
            entity_id=user_id,
            action=AuditAction.ROLE_REVOKED,
            actor_id=revoked_by,
            payload={"role": role},
        )
        logger.info("role_revoked", extra={"user_id": str(user_id), "role": role})
        return True

    def set_profile(
        self,
        user_id: UUID,
        *,
        full_name: str | None = None,
        manager_id: UUID | None = None,
        department: str | None = None,
        cost_center: str | None = None,
    ) -> None:
        """Create or replace the org attributes of ``user_id``."""
        profile = self._session.execute(
            select(UserProfileModel).where(UserProfileModel.user_id == user_id)
        ).scalar_one_or_none()
        if profile is None:
            profile = UserProfileModel(user_id=user_id)
            self._session.add(profile)
        profile.full_name = full_name
        profile.manager_id = manager_id
        profile.department = department
        profile.cost_center = cost_center
        self._session.flush()
