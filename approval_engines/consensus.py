"""
approval_engines.consensus -- Pure consensus computation for approval steps.

Responsibility:
    Given a step's consensus rule, its resolved approver set and the
    identities that have approved so far, decide whether the step is
    satisfied.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Approvals are counted by distinct actor, so a replayed approval never
      counts twice.
    - ``percentage`` uses ceiling semantics: 50% of 3 approvers needs 2.
      At least one approval is always required.
    - ``all`` is satisfied only when every member of the resolved set has
      approved.  Approvals from identities outside the set (administrators)
      count toward ``any`` and ``percentage`` but never stand in for a named
      member under ``all``.
    - An ``all`` step whose resolved set is empty (approvers could not be
      resolved, administrators act instead) is satisfied by one approval.
"""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from approval_engines.tracer import traced_engine
from approval_kernel.domain.workflow import ApprovalType


@dataclass(frozen=True)
class ConsensusResult:
    satisfied: bool
    approvals: int
    required: int
    approval_type: ApprovalType

    @property
    def remaining(self) -> int:
        return max(0, self.required - self.approvals)


def required_approvals(
    approval_type: ApprovalType,
    resolved_count: int,
    required_percentage: int | None = None,
) -> int:
    """Number of distinct approvals needed to satisfy the step."""
    if approval_type == ApprovalType.ANY:
        return 1
    if approval_type == ApprovalType.ALL:
        return max(1, resolved_count)
    pct = required_percentage if required_percentage is not None else 100
    # Integer ceiling of resolved_count * pct / 100
    return max(1, -(-resolved_count * pct // 100))


@traced_engine(
    "consensus", "1.0",
    fingerprint_fields=("approval_type", "required_percentage", "resolved_approvers", "approving_actors"),
)
def evaluate_consensus(
    *,
    approval_type: ApprovalType,
    required_percentage: int | None,
    resolved_approvers: frozenset[UUID],
    approving_actors: frozenset[UUID],
) -> ConsensusResult:
    """Evaluate the step's consensus rule."""
    approval_type = ApprovalType(approval_type)
    required = required_approvals(approval_type, len(resolved_approvers), required_percentage)

    if approval_type == ApprovalType.ALL and resolved_approvers:
        counted = len(approving_actors & resolved_approvers)
        satisfied = resolved_approvers <= approving_actors
    elif approval_type == ApprovalType.ALL:
        # Nobody resolved: only administrators can act and one approval decides.
        counted = len(approving_actors)
        satisfied = counted >= 1
    else:
        counted = len(approving_actors)
        satisfied = counted >= required

    return ConsensusResult(
        satisfied=satisfied,
        approvals=counted,
        required=required,
        approval_type=approval_type,
    )
