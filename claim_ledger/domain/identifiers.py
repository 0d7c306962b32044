"""Deterministic record addressing: (domain tag, owner id, child name) -> 32-byte key."""
from typing import Optional

from claim_ledger.domain.errors import ValidationError
from claim_ledger.domain.merkle import IDENTITY_WIDTH
from claim_ledger.ports.hash import IHashPort, NativeHashAdapter

EVENT_SEED = b"event"
TICKET_SEED = b"ticket"

_native_hash = NativeHashAdapter()


def require_identity(value, field: str) -> bytes:
    """Identities are opaque fixed-width byte strings."""
    if not isinstance(value, bytes) or len(value) != IDENTITY_WIDTH:
        raise ValidationError(f"{field} must be {IDENTITY_WIDTH} bytes")
    return value


def derive_key(seed: bytes, owner: bytes, name: str, hash_port: Optional[IHashPort] = None) -> bytes:
    hash_port = hash_port or _native_hash
    return hash_port.sha256(seed + owner + name.encode("utf-8"))


def derive_event_id(authority: bytes, name: str, hash_port: Optional[IHashPort] = None) -> bytes:
    return derive_key(EVENT_SEED, require_identity(authority, "authority"), name, hash_port)


def derive_ticket_id(event_id: bytes, label: str, hash_port: Optional[IHashPort] = None) -> bytes:
    return derive_key(TICKET_SEED, require_identity(event_id, "event_id"), label, hash_port)
