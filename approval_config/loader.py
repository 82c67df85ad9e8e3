"""
Configuration Loader (``approval_config.loader``).

Responsibility
--------------
Loads YAML workflow templates and SoD rule seeds and parses them into
typed ``approval_config.schema`` dataclass instances.

Invariants enforced
-------------------
* Parse errors raise ``ValueError`` or ``KeyError`` with descriptive
  messages; no silent defaults for required fields.
* Every parsed object is a frozen dataclass from ``schema.py``.
* ``compute_checksum`` produces a deterministic SHA-256 hash for
  template identity and change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
* Unknown enum value  -> ``ValueError``.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from approval_config.schema import (
    ApproverDef,
    ConditionDef,
    SoDRuleDef,
    StepDef,
    WorkflowTemplateDef,
)
from approval_kernel.domain.sod import RiskLevel
from approval_kernel.domain.workflow import (
    ApprovalType,
    ApproverType,
    ConditionAction,
    ConditionOperator,
    EscalationAction,
)
from approval_kernel.utils.hashing import hash_payload


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the document is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a mapping at the top level")
    return data


def parse_condition(data: dict[str, Any]) -> ConditionDef:
    action = ConditionAction(data["action"])
    route_to_role = data.get("route_to_role")
    if action == ConditionAction.ROUTE_TO_ROLE and not route_to_role:
        raise ValueError(
            f"condition on {data['field_path']!r}: route_to_role is required"
        )
    return ConditionDef(
        field_path=data["field_path"],
        operator=ConditionOperator(data["operator"]),
        value=data["value"],
        action=action,
        route_to_role=route_to_role,
    )


def parse_approver(data: dict[str, Any]) -> ApproverDef:
    return ApproverDef(
        approver_type=ApproverType(data["approver_type"]),
        approver_value=str(data["approver_value"]),
    )


def parse_step(data: dict[str, Any], position: int) -> StepDef:
    """
    Parse a ``StepDef``.  ``position`` is the 1-based list index, used as
    the step order when the YAML does not give one.
    """
    approval_type = ApprovalType(data.get("approval_type", ApprovalType.ANY.value))
    required_percentage = data.get("required_percentage")
    if approval_type == ApprovalType.PERCENTAGE and required_percentage is None:
        raise ValueError(
            f"step {data['step_name']!r}: percentage steps need required_percentage"
        )
    return StepDef(
        step_order=int(data.get("step_order", position)),
        step_name=data["step_name"],
        approval_type=approval_type,
        required_percentage=required_percentage,
        can_skip=bool(data.get("can_skip", False)),
        timeout_hours=data.get("timeout_hours"),
        escalation_action=EscalationAction(
            data.get("escalation_action", EscalationAction.NOTIFY_ONLY.value)
        ),
        escalation_role=data.get("escalation_role"),
        conditions=tuple(parse_condition(c) for c in data.get("conditions", [])),
        approvers=tuple(parse_approver(a) for a in data.get("approvers", [])),
    )


def parse_template(data: dict[str, Any]) -> WorkflowTemplateDef:
    steps = tuple(
        parse_step(s, position) for position, s in enumerate(data.get("steps", []), 1)
    )
    if not steps:
        raise ValueError(f"template {data['template_id']!r} has no steps")
    orders = [s.step_order for s in steps]
    if len(set(orders)) != len(orders):
        raise ValueError(f"template {data['template_id']!r} repeats a step_order")
    return WorkflowTemplateDef(
        template_id=data["template_id"],
        name=data["name"],
        description=data.get("description", ""),
        steps=steps,
    )


def parse_sod_rule(data: dict[str, Any]) -> SoDRuleDef:
    if data["role_a"] == data["role_b"]:
        raise ValueError(f"SoD rule {data['conflict_name']!r} pairs a role with itself")
    return SoDRuleDef(
        role_a=data["role_a"],
        role_b=data["role_b"],
        conflict_name=data["conflict_name"],
        risk_level=RiskLevel(data["risk_level"]),
        is_blocking=bool(data.get("is_blocking", True)),
        description=data.get("description"),
    )


def load_template(path: Path) -> WorkflowTemplateDef:
    return parse_template(load_yaml_file(path))


def load_sod_rules(path: Path) -> tuple[SoDRuleDef, ...]:
    data = load_yaml_file(path)
    return tuple(parse_sod_rule(r) for r in data.get("rules", []))


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 over the canonical JSON form; key order does not matter."""
    return hash_payload(data)
