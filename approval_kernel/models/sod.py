"""
Module: approval_kernel.models.sod
Responsibility: ORM persistence for segregation-of-duties rules, role
    assignments and the user profile fields dynamic approver rules read
    (manager, department, cost centre).
Architecture position: Kernel > Models.

Invariants enforced:
    - A rule pair is stored once: UNIQUE(role_a, role_b).  Symmetry is
      handled by the checker, not by storing both directions.
    - A role is granted to a user at most once: UNIQUE(user_id, role).
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import Boolean, CheckConstraint, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from approval_kernel.db.base import Base, TrackedBase, UUIDString
from approval_kernel.db.types import UTCDateTime
from approval_kernel.domain.sod import SoDRule


class SoDRuleModel(TrackedBase):
    """Persistent SoD conflict rule."""

    __tablename__ = "sod_conflict_rules"

    __table_args__ = (
        UniqueConstraint("role_a", "role_b", name="uq_sod_conflict_rules_pair"),
        CheckConstraint(
            "risk_level IN ('low', 'medium', 'high', 'critical')",
            name="ck_sod_conflict_rules_risk_level",
        ),
        CheckConstraint("role_a <> role_b", name="ck_sod_conflict_rules_distinct"),
    )

    role_a: Mapped[str] = mapped_column(String(100), nullable=False)
    role_b: Mapped[str] = mapped_column(String(100), nullable=False)
    conflict_name: Mapped[str] = mapped_column(String(200), nullable=False)
    risk_level: Mapped[str] = mapped_column(String(20), nullable=False)
    is_blocking: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<SoDRule {self.conflict_name}: {self.role_a} x {self.role_b}>"

    def to_dto(self) -> SoDRule:
        return SoDRule(
            rule_id=self.id,
            role_a=self.role_a,
            role_b=self.role_b,
            conflict_name=self.conflict_name,
            risk_level=self.risk_level,
            is_blocking=self.is_blocking,
            description=self.description,
        )


class UserRoleModel(Base):
    """A role held by a user."""

    __tablename__ = "user_roles"

    __table_args__ = (
        UniqueConstraint("user_id", "role", name="uq_user_roles_user_role"),
        Index("ix_user_roles_role", "role"),
    )

    user_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    role: Mapped[str] = mapped_column(String(100), nullable=False)
    granted_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    granted_by_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    def __repr__(self) -> str:
        return f"<UserRole {self.user_id} {self.role}>"


class UserProfileModel(Base):
    """Org attributes of a user, read by dynamic approver rules."""

    __tablename__ = "user_profiles"

    __table_args__ = (
        UniqueConstraint("user_id", name="uq_user_profiles_user"),
        Index("ix_user_profiles_department", "department"),
    )

    user_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    full_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    manager_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    department: Mapped[str | None] = mapped_column(String(100), nullable=True)
    cost_center: Mapped[str | None] = mapped_column(String(100), nullable=True)
