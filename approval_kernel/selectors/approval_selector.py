"""
Module: approval_kernel.selectors.approval_selector
Responsibility: Read-only inbox and history queries over approval requests.
Architecture position: Kernel > Selectors.  Reads models/ and returns the
    frozen ApprovalRequest / ApprovalActionRecord DTOs.

Invariants enforced:
    - Read-only: no mutations performed on any queried data.
    - Action history is ordered by its per-request sequence, the order the
      actions were accepted in.

Failure modes:
    - Returns None or an empty list when nothing matches (never raises on
      absence of data).
"""

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import func, select

from approval_kernel.domain.approval import (
    ApprovalActionRecord,
    ApprovalRequest,
    ApprovalStatus,
)
from approval_kernel.models.approval import ApprovalActionModel, ApprovalRequestModel
from approval_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class RequestFilter:
    """Optional filters for ``ApprovalSelector.find``; unset fields match all."""

    status: ApprovalStatus | None = None
    entity_type: str | None = None
    submitted_by: UUID | None = None
    workflow_id: UUID | None = None


@dataclass(frozen=True)
class InboxSummary:
    """Counts for a user's approval dashboard."""

    awaiting_me: int
    submitted_pending: int
    escalated: int


class ApprovalSelector(BaseSelector[ApprovalRequestModel]):
    """Queries for approval inboxes, request lists and action history."""

    def get(self, request_id: UUID) -> ApprovalRequest | None:
        model = self.session.get(ApprovalRequestModel, request_id)
        return model.to_dto() if model is not None else None

    def awaiting_user(self, user_id: UUID) -> list[ApprovalRequest]:
        """Pending requests on which ``user_id`` is a current approver.

        Oldest submission first.
        """
        # current_approvers is a JSON list; membership is checked in Python so
        # SQLite and PostgreSQL behave alike.
        key = str(user_id)
        stmt = (
            select(ApprovalRequestModel)
            .where(ApprovalRequestModel.status == ApprovalStatus.PENDING.value)
            .order_by(ApprovalRequestModel.submitted_at, ApprovalRequestModel.id)
        )
        return [
            model.to_dto()
            for model in self.session.scalars(stmt)
            if key in (model.current_approvers or ())
        ]

    def find(
        self,
        filters: RequestFilter | None = None,
        *,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[ApprovalRequest]:
        """Requests matching ``filters``, newest submission first."""
        stmt = select(ApprovalRequestModel)
        if filters is not None:
            if filters.status is not None:
                stmt = stmt.where(ApprovalRequestModel.status == filters.status.value)
            if filters.entity_type is not None:
                stmt = stmt.where(ApprovalRequestModel.entity_type == filters.entity_type)
            if filters.submitted_by is not None:
                stmt = stmt.where(ApprovalRequestModel.submitted_by == filters.submitted_by)
            if filters.workflow_id is not None:
                stmt = stmt.where(ApprovalRequestModel.workflow_id == filters.workflow_id)
        stmt = stmt.order_by(
            ApprovalRequestModel.submitted_at.desc(), ApprovalRequestModel.id,
        ).offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)
        return [m.to_dto() for m in self.session.scalars(stmt)]

    def for_entity(self, entity_type: str, entity_id: UUID) -> ApprovalRequest | None:
        """The most recent request for a document, pending or not."""
        stmt = (
            select(ApprovalRequestModel)
            .where(
                ApprovalRequestModel.entity_type == entity_type,
                ApprovalRequestModel.entity_id == entity_id,
            )
            .order_by(ApprovalRequestModel.submitted_at.desc())
            .limit(1)
        )
        model = self.session.scalars(stmt).first()
        return model.to_dto() if model is not None else None

    def history_for_entity(self, entity_type: str, entity_id: UUID) -> list[ApprovalRequest]:
        """Every request ever raised for a document, oldest first."""
        stmt = (
            select(ApprovalRequestModel)
            .where(
                ApprovalRequestModel.entity_type == entity_type,
                ApprovalRequestModel.entity_id == entity_id,
            )
            .order_by(ApprovalRequestModel.submitted_at)
        )
        return [m.to_dto() for m in self.session.scalars(stmt)]

    def action_history(self, request_id: UUID) -> list[ApprovalActionRecord]:
        stmt = (
            select(ApprovalActionModel)
            .where(ApprovalActionModel.request_id == request_id)
            .order_by(ApprovalActionModel.sequence)
        )
        return [m.to_dto() for m in self.session.scalars(stmt)]

    def summary_for_user(self, user_id: UUID) -> InboxSummary:
        submitted_pending = self.session.scalar(
            select(func.count())
            .select_from(ApprovalRequestModel)
            .where(
                ApprovalRequestModel.submitted_by == user_id,
                ApprovalRequestModel.status == ApprovalStatus.PENDING.value,
            )
        ) or 0
        awaiting = self.awaiting_user(user_id)
        return InboxSummary(
            awaiting_me=len(awaiting),
            submitted_pending=submitted_pending,
            escalated=sum(1 for r in awaiting if r.escalation_count > 0),
        )
