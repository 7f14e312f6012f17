"""Integrity hashing and signing for ledger entries and artifacts.

Two independent guarantees are attached to every entry:

- integrity hash: salted SHA-512 over the entry's immutable core fields;
  detects any change to those fields.
- signature: HMAC-SHA256 with the signing key over the origin fields;
  proves the entry was produced by a holder of the key.

All inputs are serialized as canonical JSON (sorted keys, no whitespace).
"""

import hashlib
import hmac
import json
from datetime import datetime
from typing import Any

_GENESIS = "GENESIS"


def canonical_json(payload: Any) -> str:
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)


def hash_fields(
    audit_id: str,
    tenant_id: str,
    timestamp: datetime,
    event_type: str,
    actor_id: str | None,
    resource_type: str,
    resource_id: str | None,
) -> dict[str, str]:
    """The exact field set covered by the integrity hash."""
    return {
        "audit_id": audit_id,
        "tenant_id": tenant_id,
        "timestamp": timestamp.isoformat(),
        "event_type": event_type,
        "actor_id": actor_id or "SYSTEM",
        "resource_type": resource_type,
        "resource_id": resource_id or "NO_RESOURCE",
    }


def compute_integrity_hash(fields: dict[str, str], salt: bytes) -> str:
    """Salted SHA-512 of the canonical core fields, hex encoded."""
    return hashlib.sha512(canonical_json(fields).encode() + salt).hexdigest()


def signature_fields(
    audit_id: str, tenant_id: str, timestamp: datetime, actor_id: str | None, action: str
) -> dict[str, str]:
    return {
        "audit_id": audit_id,
        "tenant_id": tenant_id,
        "timestamp": timestamp.isoformat(),
        "actor_id": actor_id or "SYSTEM",
        "action": action,
    }


def sign(payload: Any, key: bytes) -> str:
    """HMAC-SHA256 of the canonical payload, hex encoded."""
    return hmac.new(key, canonical_json(payload).encode(), hashlib.sha256).hexdigest()


def verify_signature(payload: Any, key: bytes, signature: str) -> bool:
    return hmac.compare_digest(sign(payload, key), signature)


def chain_hash(previous_chain_hash: str | None, integrity_hash: str, sequence: int) -> str:
    """Link an entry to its tenant predecessor."""
    data = f"{previous_chain_hash or _GENESIS}:{sequence}:{integrity_hash}"
    return hashlib.sha256(data.encode()).hexdigest()


def digest_records(records: list[dict[str, Any]]) -> str:
    """SHA-512 over an ordered record set, used for bundle integrity."""
    return hashlib.sha512(canonical_json(records).encode()).hexdigest()
