"""
Segregation-of-duties value objects.

A rule pairs two roles that one identity should not hold together.  Rules
are symmetric: holding either side and being granted the other triggers it.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from uuid import UUID


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _RISK_RANK[self]


_RISK_RANK = {
    RiskLevel.LOW: 0,
    RiskLevel.MEDIUM: 1,
    RiskLevel.HIGH: 2,
    RiskLevel.CRITICAL: 3,
}


@dataclass(frozen=True)
class SoDRule:
    rule_id: UUID
    role_a: str
    role_b: str
    conflict_name: str
    risk_level: RiskLevel
    is_blocking: bool
    description: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "risk_level", RiskLevel(self.risk_level))

    def other_side(self, role: str) -> str | None:
        """The conflicting role for ``role``, or None if it is not in this rule."""
        if role == self.role_a:
            return self.role_b
        if role == self.role_b:
            return self.role_a
        return None


@dataclass(frozen=True)
class SoDConflict:
    """A rule that fires for a user, with the pair of roles that trigger it."""

    conflict_name: str
    risk_level: RiskLevel
    is_blocking: bool
    held_role: str
    conflicting_role: str
    rule_id: UUID | None = None


@dataclass(frozen=True)
class ConflictCheckResult:
    """Outcome of simulating one role grant."""

    blocking: bool
    conflicts: tuple[SoDConflict, ...] = ()

    @property
    def blocking_conflicts(self) -> tuple[SoDConflict, ...]:
        return tuple(c for c in self.conflicts if c.is_blocking)

    @property
    def advisory_conflicts(self) -> tuple[SoDConflict, ...]:
        return tuple(c for c in self.conflicts if not c.is_blocking)
