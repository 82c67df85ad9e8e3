"""Utility functions for the approval kernel."""

from approval_kernel.utils.hashing import (
    canonicalize_json,
    hash_audit_event,
    hash_payload,
    hash_request_snapshot,
    to_json_safe,
)

__all__ = [
    "canonicalize_json",
    "hash_audit_event",
    "hash_payload",
    "hash_request_snapshot",
    "to_json_safe",
]
