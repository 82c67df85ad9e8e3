"""
Collaborator protocols consumed by the approval engine.

The engine never owns documents, user directories or delivery channels.
It talks to them through these narrow interfaces; concrete adapters live in
``approval_kernel.services.role_store`` and ``approval_services``.
"""

from __future__ import annotations

from typing import Protocol
from uuid import UUID

from approval_kernel.domain.approval import NotifyIntent, StatusSyncCommand


class RoleStore(Protocol):
    """Read-only queries over role assignments and the org hierarchy."""

    def get_roles(self, user_id: UUID) -> frozenset[str]:
        """Roles currently held by ``user_id``."""
        ...

    def get_users_with_role(self, role: str) -> frozenset[UUID]:
        """Every identity holding ``role``."""
        ...

    def get_users_with_role_for_user(self, role: str, user_id: UUID) -> frozenset[UUID]:
        """Identities holding ``role`` within ``user_id``'s organisational unit."""
        ...

    def get_manager(self, user_id: UUID) -> UUID | None:
        """Declared manager of ``user_id``, if any."""
        ...


class DocumentStatusSync(Protocol):
    """Updates the originating document once a request resolves."""

    def sync(self, command: StatusSyncCommand) -> None:
        """Apply the outcome; raise StatusSyncError on failure."""
        ...


class NotificationDispatcher(Protocol):
    """Accepts notify intents for external delivery."""

    def dispatch(self, intent: NotifyIntent) -> None:
        ...
