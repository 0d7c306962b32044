"""
Public proof verification for claim records.

Callers hand over the record itself; leaf encoding stays in merkle.py.
Every function here is pure and safe to call concurrently.

When height is omitted it is taken from the sibling path, which carries one
hash per tree level. Pass the event's height to also pin the tree shape.
"""
from typing import Optional, Sequence

from claim_ledger.domain.errors import DomainError, IntegrityError, MalformedProofError
from claim_ledger.domain.merkle import MAX_HEIGHT, hash_leaf, verify_inclusion
from claim_ledger.domain.models import ClaimRecord, InclusionProof
from claim_ledger.ports.hash import IHashPort


def verify_claim(
    record: ClaimRecord,
    index: int,
    sibling_path: Sequence[bytes],
    expected_root: bytes,
    height: Optional[int] = None,
    hash_port: Optional[IHashPort] = None,
) -> bool:
    """True iff the record's leaf at index reproduces expected_root."""
    if height is None:
        height = len(sibling_path)
    try:
        leaf = hash_leaf(record, hash_port)
    except DomainError:
        return False
    return verify_inclusion(leaf, index, sibling_path, expected_root, height, hash_port)


def verify_proof(
    record: ClaimRecord,
    proof: InclusionProof,
    height: Optional[int] = None,
    hash_port: Optional[IHashPort] = None,
) -> bool:
    return verify_claim(record, proof.index, proof.sibling_path, proof.root, height, hash_port)


def require_claim(
    record: ClaimRecord,
    index: int,
    sibling_path: Sequence[bytes],
    expected_root: bytes,
    height: Optional[int] = None,
    hash_port: Optional[IHashPort] = None,
) -> None:
    """Strict form of verify_claim for callers that want an exception."""
    expected = len(sibling_path) if height is None else height
    if not 1 <= expected <= MAX_HEIGHT or len(sibling_path) != expected:
        raise MalformedProofError(f"Sibling path has {len(sibling_path)} hashes, expected {expected}")
    if not verify_claim(record, index, sibling_path, expected_root, expected, hash_port):
        raise IntegrityError(f"Claim #{record.sequence_number} does not reproduce root {expected_root.hex()}")
