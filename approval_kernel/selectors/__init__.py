"""Read-only query selectors."""

from approval_kernel.selectors.approval_selector import (
    ApprovalSelector,
    InboxSummary,
    RequestFilter,
)
from approval_kernel.selectors.base import BaseSelector

__all__ = [
    "ApprovalSelector",
    "BaseSelector",
    "InboxSummary",
    "RequestFilter",
]
