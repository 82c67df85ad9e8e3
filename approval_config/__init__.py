"""
approval_config -- shipped workflow templates, SoD seeds and engine settings.

Architecture position:
    Configuration.  Sits above ``approval_kernel`` and below
    ``approval_services``.  The kernel MUST NEVER import from this package.

Usage:
    from approval_config import get_template, install_template

    template = get_template("two-level")
    workflow = install_template(registry, "two-level", "purchase_order", actor_id)
"""

from __future__ import annotations

from pathlib import Path
from uuid import UUID

from approval_config.installer import install_sod_rules, install_workflow
from approval_config.loader import compute_checksum, load_sod_rules, load_template, load_yaml_file
from approval_config.schema import SoDRuleDef, WorkflowTemplateDef
from approval_config.settings import EngineSettings, load_settings
from approval_kernel.domain.sod import SoDRule
from approval_kernel.domain.workflow import Workflow
from approval_kernel.exceptions import TemplateNotFoundError
from approval_kernel.services.sod_checker import SoDChecker
from approval_kernel.services.workflow_registry import WorkflowRegistry

TEMPLATES_DIR = Path(__file__).parent / "templates"
SOD_RULES_PATH = Path(__file__).parent / "sod_rules.yaml"


def list_templates(templates_dir: Path | None = None) -> list[str]:
    """Names of the available templates, sorted."""
    return sorted(p.stem for p in (templates_dir or TEMPLATES_DIR).glob("*.yaml"))


def get_template(name: str, templates_dir: Path | None = None) -> WorkflowTemplateDef:
    """
    Load one template by name.

    Raises:
        TemplateNotFoundError: no ``<name>.yaml`` in the templates directory.
    """
    path = (templates_dir or TEMPLATES_DIR) / f"{name}.yaml"
    if not path.is_file():
        raise TemplateNotFoundError(name)
    return load_template(path)


def template_checksum(name: str, templates_dir: Path | None = None) -> str:
    return compute_checksum(load_yaml_file((templates_dir or TEMPLATES_DIR) / f"{name}.yaml"))


def install_template(
    registry: WorkflowRegistry,
    template_name: str,
    entity_type: str,
    actor_id: UUID,
    *,
    activate: bool = False,
    templates_dir: Path | None = None,
) -> Workflow:
    """Build a workflow for ``entity_type`` from a shipped template."""
    template = get_template(template_name, templates_dir)
    return install_workflow(registry, template, entity_type, actor_id, activate=activate)


def seed_sod_rules(
    checker: SoDChecker,
    actor_id: UUID,
    path: Path | None = None,
) -> list[SoDRule]:
    """Install the shipped (or given) SoD rule seeds."""
    return install_sod_rules(checker, load_sod_rules(path or SOD_RULES_PATH), actor_id)


__all__ = [
    "EngineSettings",
    "SOD_RULES_PATH",
    "SoDRuleDef",
    "TEMPLATES_DIR",
    "WorkflowTemplateDef",
    "get_template",
    "install_template",
    "list_templates",
    "load_settings",
    "seed_sod_rules",
    "template_checksum",
]
