"""
Module: approval_engines
Responsibility:
    Pure calculation engines for approval routing: conditional step
    routing, consensus, and escalation planning.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  May import
    approval_kernel domain types, exceptions and hashing utils only.  MUST NOT
    import approval_services or approval_kernel services/models/db.

Invariants enforced:
    - Purity: engines never read the clock.  Times are passed in.
    - Determinism: identical inputs always produce identical outputs.
"""

from approval_engines.conditions import (
    MISSING,
    RoutingOutcome,
    StepRouting,
    evaluate_condition,
    resolve_field,
    route_step,
)
from approval_engines.consensus import ConsensusResult, evaluate_consensus, required_approvals
from approval_engines.escalation import (
    EscalationOutcome,
    EscalationPlan,
    compute_deadline,
    is_due,
    plan_escalation,
)

__all__ = [
    "MISSING",
    "RoutingOutcome",
    "StepRouting",
    "evaluate_condition",
    "resolve_field",
    "route_step",
    "ConsensusResult",
    "evaluate_consensus",
    "required_approvals",
    "EscalationOutcome",
    "EscalationPlan",
    "compute_deadline",
    "is_due",
    "plan_escalation",
]
