"""
approval_services.document_status -- Document Status Sync routing.

Responsibility:
    Default DocumentStatusSync adapter.  Translates a terminal approval
    outcome into the owning document type's own status vocabulary and
    hands it to the updater registered for that document type.

Architecture position:
    Services layer -- collaborator adapter.  The engine only sees the
    DocumentStatusSync protocol.

Invariants enforced:
    - Only ``approved`` and ``rejected`` are ever synced; cancellation is
      not routed here.
    - Every failure surfaces as StatusSyncError so the side-effect runner
      can park and re-drive it.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from uuid import UUID

from sqlalchemy import column, table, update
from sqlalchemy.orm import Session

from approval_kernel.domain.approval import ApprovalStatus, StatusSyncCommand
from approval_kernel.db.base import UUIDString
from approval_kernel.exceptions import StatusSyncError
from approval_kernel.logging_config import get_logger

logger = get_logger("services.document_status")

DocumentUpdater = Callable[[UUID, str, StatusSyncCommand], None]

DOCUMENT_STATUS_MAP: dict[str, dict[ApprovalStatus, str]] = {
    "purchase_requisition": {
        ApprovalStatus.APPROVED: "approved",
        ApprovalStatus.REJECTED: "rejected",
    },
    "purchase_order": {
        ApprovalStatus.APPROVED: "approved",
        ApprovalStatus.REJECTED: "rejected",
    },
    "supplier_registration": {
        ApprovalStatus.APPROVED: "active",
        ApprovalStatus.REJECTED: "inactive",
    },
    "goods_receipt": {
        ApprovalStatus.APPROVED: "completed",
        ApprovalStatus.REJECTED: "cancelled",
    },
}


class DocumentStatusRouter:
    """DocumentStatusSync that dispatches by ``entity_type``."""

    def __init__(
        self,
        updaters: Mapping[str, DocumentUpdater] | None = None,
        status_map: Mapping[str, Mapping[ApprovalStatus, str]] | None = None,
    ) -> None:
        self._updaters: dict[str, DocumentUpdater] = dict(updaters or {})
        self._status_map: dict[str, dict[ApprovalStatus, str]] = {
            k: dict(v) for k, v in (status_map or DOCUMENT_STATUS_MAP).items()
        }

    def register(
        self,
        entity_type: str,
        updater: DocumentUpdater,
        statuses: Mapping[ApprovalStatus | str, str] | None = None,
    ) -> None:
        """Route ``entity_type`` to ``updater``, optionally with its own vocabulary."""
        self._updaters[entity_type] = updater
        if statuses is not None:
            self._status_map[entity_type] = {
                ApprovalStatus(k): v for k, v in statuses.items()
            }

    @property
    def entity_types(self) -> frozenset[str]:
        return frozenset(self._updaters)

    def document_status(self, entity_type: str, status: ApprovalStatus) -> str:
        """The document's status for an approval outcome."""
        if status not in (ApprovalStatus.APPROVED, ApprovalStatus.REJECTED):
            raise StatusSyncError(entity_type, "-", f"{status.value} is never synced")
        return self._status_map.get(entity_type, {}).get(status, status.value)

    def sync(self, command: StatusSyncCommand) -> None:
        updater = self._updaters.get(command.entity_type)
        if updater is None:
            raise StatusSyncError(
                command.entity_type, str(command.entity_id), "no updater registered",
            )
        doc_status = self.document_status(command.entity_type, command.status)

        try:
            updater(command.entity_id, doc_status, command)
        except StatusSyncError:
            raise
        except Exception as exc:
            raise StatusSyncError(
                command.entity_type, str(command.entity_id), f"{type(exc).__name__}: {exc}",
            ) from exc

        logger.info(
            "document_status_synced",
            extra={
                "entity_type": command.entity_type,
                "entity_id": str(command.entity_id),
                "document_status": doc_status,
            },
        )


def sql_table_updater(
    session: Session,
    table_name: str,
    *,
    id_column: str = "id",
    status_column: str = "status",
) -> DocumentUpdater:
    """Updater that writes the status column of a document table in the same database."""
    doc_table = table(
        table_name,
        column(id_column, UUIDString()),
        column(status_column),
    )

    def _update(entity_id: UUID, doc_status: str, command: StatusSyncCommand) -> None:
        result = session.execute(
            update(doc_table)
            .where(doc_table.c[id_column] == entity_id)
            .values({status_column: doc_status})
        )
        if result.rowcount == 0:
            raise StatusSyncError(command.entity_type, str(entity_id), "document not found")

    return _update
