"""
Canonical JSON and the digests built on it.

Two things are hashed: audit events (chained through ``prev_hash``) and
the immutable part of an approval request (workflow snapshot, document
payload, submitter).  Both go through ``canonicalize_json`` so key order
and Decimal scale never change a digest.
"""

import hashlib
import json
from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID

GENESIS = "GENESIS"


def _encode(obj: Any) -> Any:
    if isinstance(obj, Decimal):
        return format(obj.normalize(), "f")
    if isinstance(obj, date):
        return obj.isoformat()
    if isinstance(obj, UUID):
        return str(obj)
    if isinstance(obj, (set, frozenset)):
        return sorted(str(v) for v in obj)
    raise TypeError(f"cannot canonicalize {type(obj).__name__}")


def canonicalize_json(data: Any) -> str:
    """Sorted keys, no whitespace, Decimal/UUID/date/set rendered as strings."""
    return json.dumps(data, sort_keys=True, separators=(",", ":"), default=_encode)


def to_json_safe(data: Any) -> Any:
    """``data`` as it will read back from a JSON column."""
    return json.loads(canonicalize_json(data))


def _sha256(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def hash_payload(payload: Any) -> str:
    return _sha256(canonicalize_json(payload))


def hash_audit_event(
    entity_type: str,
    entity_id: str,
    action: str,
    payload_hash: str,
    prev_hash: str | None,
) -> str:
    """Digest of one audit event, chained to ``prev_hash`` (GENESIS for the first)."""
    return _sha256("|".join((entity_type, str(entity_id), action, payload_hash, prev_hash or GENESIS)))


def hash_request_snapshot(
    *,
    request_id: UUID,
    workflow_id: UUID,
    workflow_version: int,
    entity_type: str,
    entity_id: UUID,
    submitted_by: UUID,
    workflow_snapshot: dict,
    document_payload: dict,
) -> str:
    """Tamper-evidence digest over the fields of a request that never change."""
    return hash_payload({
        "request_id": request_id,
        "workflow_id": workflow_id,
        "workflow_version": workflow_version,
        "entity_type": entity_type,
        "entity_id": entity_id,
        "submitted_by": submitted_by,
        "workflow_snapshot": workflow_snapshot,
        "document_payload": document_payload,
    })
