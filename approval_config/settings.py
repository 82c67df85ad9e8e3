"""
Engine settings (``approval_config.settings``).

Responsibility:
    Runtime knobs for the approval engine: administrator role, system actor,
    side-effect retry bounds, escalation sweep batch size, database URL.

Sources, later wins:
    1. ``EngineSettings`` defaults.
    2. An optional YAML file (keys are the field names).
    3. ``APPROVAL_<FIELD>`` environment variables, e.g.
       ``APPROVAL_ADMIN_ROLE``, ``APPROVAL_DATABASE_URL``.

Failure modes:
    - Unknown YAML key  -> ``KeyError``.
    - Unparseable value  -> ``ValueError``.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any
from uuid import UUID

from approval_config.loader import load_yaml_file
from approval_kernel.domain.approval import SYSTEM_ACTOR_ID

ENV_PREFIX = "APPROVAL_"


@dataclass(frozen=True)
class EngineSettings:
    admin_role: str = "admin"
    system_actor_id: UUID = SYSTEM_ACTOR_ID
    status_sync_max_attempts: int = 3
    notification_max_attempts: int = 2
    retry_backoff_seconds: float = 0.5
    escalation_batch_size: int = 100
    database_url: str = "sqlite:///approvals.db"

    def __post_init__(self) -> None:
        if not self.admin_role:
            raise ValueError("admin_role must not be empty")
        if self.status_sync_max_attempts < 1 or self.notification_max_attempts < 1:
            raise ValueError("side-effect attempts must be at least 1")
        if self.retry_backoff_seconds < 0:
            raise ValueError("retry_backoff_seconds must not be negative")
        if self.escalation_batch_size < 1:
            raise ValueError("escalation_batch_size must be at least 1")


_COERCE = {
    "admin_role": str,
    "system_actor_id": lambda v: v if isinstance(v, UUID) else UUID(str(v)),
    "status_sync_max_attempts": int,
    "notification_max_attempts": int,
    "retry_backoff_seconds": float,
    "escalation_batch_size": int,
    "database_url": str,
}


def _coerce(values: Mapping[str, Any]) -> dict[str, Any]:
    known = {f.name for f in fields(EngineSettings)}
    unknown = set(values) - known
    if unknown:
        raise KeyError(f"unknown setting(s): {', '.join(sorted(unknown))}")
    return {name: _COERCE[name](value) for name, value in values.items()}


def load_settings(
    path: Path | str | None = None,
    env: Mapping[str, str] = os.environ,
) -> EngineSettings:
    """Build settings from defaults, an optional YAML file and the environment."""
    settings = EngineSettings()

    if path is not None:
        settings = replace(settings, **_coerce(load_yaml_file(Path(path))))

    overrides = {
        f.name: env[ENV_PREFIX + f.name.upper()]
        for f in fields(EngineSettings)
        if ENV_PREFIX + f.name.upper() in env
    }
    if overrides:
        settings = replace(settings, **_coerce(overrides))
    return settings
