"""
SHA-256 digests over canonical JSON.

Used for the audit hash chain and for template checksums. "Canonical" means
sorted keys, no insignificant whitespace, and a fixed rendering for the
non-JSON types that appear in workflow payloads (UUIDs, timestamps, SLA
durations, enums, document-type sets).
"""

import hashlib
import json
from datetime import date, timedelta
from enum import Enum
from typing import Any
from uuid import UUID

GENESIS = "GENESIS"


def _encode(obj: Any) -> Any:
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, date):  # includes datetime
        return obj.isoformat()
    if isinstance(obj, timedelta):
        return obj.total_seconds()
    if isinstance(obj, UUID):
        return str(obj)
    if isinstance(obj, (set, frozenset)):
        return sorted(obj, key=str)
    raise TypeError(f"{type(obj).__name__} has no canonical JSON form")


def canonicalize_json(data: Any) -> str:
    return json.dumps(data, sort_keys=True, separators=(",", ":"), default=_encode)


def to_json_compatible(data: Any) -> Any:
    """Return ``data`` as it will read back from a JSON column."""
    return json.loads(canonicalize_json(data))


def sha256_hex(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def hash_payload(payload: Any) -> str:
    return sha256_hex(canonicalize_json(payload))


def hash_audit_event(
    entity_type: str,
    entity_id: str,
    action: str,
    payload_hash: str,
    prev_hash: str | None,
) -> str:
    """Link hash for one audit event.

    The first event in the chain hashes against ``GENESIS``; every later one
    against its predecessor's hash, so rewriting any event breaks all hashes
    after it.
    """
    return sha256_hex("|".join((entity_type, str(entity_id), action, payload_hash, prev_hash or GENESIS)))
