"""
approval_engines.escalation -- Pure escalation planning.

Responsibility:
    Compute step deadlines and decide what an overdue (or unresolvable)
    step should do, based on its ``escalation_action``.

Architecture position:
    Engines -- pure calculation layer.  The current time is always passed in.

Invariants enforced:
    - ``escalate_to_role`` re-routes at most once per step; afterwards the
      step behaves as ``notify_only``.
    - ``notify_only`` re-arms the deadline for another ``timeout_hours``.
    - A step without ``timeout_hours`` never gets a deadline.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum

from approval_engines.tracer import traced_engine
from approval_kernel.domain.workflow import EscalationAction, Step


class EscalationOutcome(str, Enum):
    AUTO_APPROVE = "auto_approve"
    AUTO_REJECT = "auto_reject"
    REROUTE = "reroute"
    NOTIFY = "notify"


@dataclass(frozen=True)
class EscalationPlan:
    outcome: EscalationOutcome
    new_deadline: datetime | None = None
    escalation_role: str | None = None
    reason: str = ""


def compute_deadline(entered_at: datetime, timeout_hours: int | None) -> datetime | None:
    """Deadline for a step entered at ``entered_at``; None without a timeout."""
    if timeout_hours is None:
        return None
    return entered_at + timedelta(hours=timeout_hours)


def is_due(deadline: datetime | None, as_of: datetime) -> bool:
    return deadline is not None and deadline <= as_of


@traced_engine("escalation", "1.0", fingerprint_fields=("step", "already_rerouted", "as_of"))
def plan_escalation(
    *,
    step: Step,
    already_rerouted: bool,
    as_of: datetime,
) -> EscalationPlan:
    """Decide the escalation for ``step`` firing at ``as_of``."""
    action = step.escalation_action
    rearm = compute_deadline(as_of, step.timeout_hours)

    if action == EscalationAction.AUTO_APPROVE:
        return EscalationPlan(EscalationOutcome.AUTO_APPROVE, reason="auto_approve on timeout")
    if action == EscalationAction.AUTO_REJECT:
        return EscalationPlan(EscalationOutcome.AUTO_REJECT, reason="auto_reject on timeout")
    if action == EscalationAction.ESCALATE_TO_ROLE:
        if not already_rerouted and step.escalation_role:
            return EscalationPlan(
                EscalationOutcome.REROUTE,
                new_deadline=rearm,
                escalation_role=step.escalation_role,
                reason=f"escalated to role {step.escalation_role}",
            )
        reason = (
            "already escalated to role; notifying"
            if already_rerouted
            else "no escalation_role configured; notifying"
        )
        return EscalationPlan(EscalationOutcome.NOTIFY, new_deadline=rearm, reason=reason)
    return EscalationPlan(EscalationOutcome.NOTIFY, new_deadline=rearm, reason="notify_only")
