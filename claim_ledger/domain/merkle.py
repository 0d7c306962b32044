"""
Fixed-height append-only Merkle accumulator for claim records.

Hashing (SHA-256 through IHashPort):
  Leaf:  H(b"CLAIMv1" || event_id[32] || claimant[32] || seq u64 LE || claimed_at i64 LE)
  Node:  H(b"NODEv1" || left || right)
  Empty: zero[0] = 32 zero bytes, zero[k+1] = Node(zero[k], zero[k])

Leaves fill the tree left to right. Appends touch one frontier entry per level,
so both append and verification cost O(height).
"""
import hmac
import struct
from typing import List, NamedTuple, Optional, Sequence, Tuple

from claim_ledger.domain.errors import AccumulatorFullError, IntegrityError, NotFoundError, ValidationError
from claim_ledger.domain.models import AccumulatorState, ClaimRecord, InclusionProof
from claim_ledger.ports.hash import IHashPort, NativeHashAdapter

LEAF_TAG = b"CLAIMv1"
NODE_TAG = b"NODEv1"
HASH_WIDTH = 32
IDENTITY_WIDTH = 32
DEFAULT_HEIGHT = 20
MAX_HEIGHT = 32

_native_hash = NativeHashAdapter()


def _is_hash(value) -> bool:
    return isinstance(value, bytes) and len(value) == HASH_WIDTH


def encode_claim_record(record: ClaimRecord) -> bytes:
    """Serialize a claim record into the fixed 80-byte leaf body."""
    if len(record.event_id) != IDENTITY_WIDTH:
        raise ValidationError(f"event_id must be {IDENTITY_WIDTH} bytes, got {len(record.event_id)}")
    if len(record.claimant) != IDENTITY_WIDTH:
        raise ValidationError(f"claimant must be {IDENTITY_WIDTH} bytes, got {len(record.claimant)}")
    try:
        counters = struct.pack("<Qq", record.sequence_number, record.claimed_at)
    except struct.error as e:
        raise ValidationError(f"Claim record counter out of range: {e}") from e
    return record.event_id + record.claimant + counters


def hash_leaf(record: ClaimRecord, hash_port: Optional[IHashPort] = None) -> bytes:
    hash_port = hash_port or _native_hash
    return hash_port.sha256(LEAF_TAG + encode_claim_record(record))


def hash_node(left: bytes, right: bytes, hash_port: Optional[IHashPort] = None) -> bytes:
    hash_port = hash_port or _native_hash
    return hash_port.sha256(NODE_TAG + left + right)


def zero_hashes(height: int, hash_port: Optional[IHashPort] = None) -> List[bytes]:
    """Roots of empty subtrees for every level 0..height inclusive."""
    zeros = [bytes(HASH_WIDTH)]
    for _ in range(height):
        zeros.append(hash_node(zeros[-1], zeros[-1], hash_port))
    return zeros


def verify_inclusion(
    leaf: bytes,
    index: int,
    sibling_path: Sequence[bytes],
    expected_root: bytes,
    height: int = DEFAULT_HEIGHT,
    hash_port: Optional[IHashPort] = None,
) -> bool:
    """
    Recompute the root from a leaf and its sibling path.

    Bit k of index says whether the running hash is the right (1) or
    left (0) child at level k. Malformed input yields False, never raises.
    """
    if isinstance(height, bool) or not isinstance(height, int) or not 1 <= height <= MAX_HEIGHT:
        return False
    if not (_is_hash(leaf) and _is_hash(expected_root)):
        return False
    if isinstance(index, bool) or not isinstance(index, int):
        return False
    if index < 0 or index >= (1 << height):
        return False
    if len(sibling_path) != height or not all(_is_hash(s) for s in sibling_path):
        return False

    node = leaf
    for level, sibling in enumerate(sibling_path):
        if (index >> level) & 1:
            node = hash_node(sibling, node, hash_port)
        else:
            node = hash_node(node, sibling, hash_port)
    return hmac.compare_digest(node, expected_root)


class AccumulatorCheckpoint(NamedTuple):
    frontier: List[Optional[bytes]]
    leaf_count: int
    root: bytes
    level_tails: List[Tuple[int, Optional[bytes]]]


class ClaimAccumulator:
    """
    Append-only authenticated accumulator for one event.

    The frontier is the authoritative state. A per-level node cache is kept
    beside it so proofs for earlier leaves can be served against the current
    root; the cache is rebuilt from stored leaves by from_state().
    """

    def __init__(self, height: int = DEFAULT_HEIGHT, hash_port: Optional[IHashPort] = None):
        if not 1 <= height <= MAX_HEIGHT:
            raise ValidationError(f"Tree height must be between 1 and {MAX_HEIGHT}, got {height}")
        self._hash_port = hash_port or _native_hash
        self._height = height
        self._zeros = zero_hashes(height, self._hash_port)
        self._frontier: List[Optional[bytes]] = [None] * height
        self._leaf_count = 0
        self._root = self._zeros[height]
        self._levels: List[List[bytes]] = [[] for _ in range(height + 1)]

    @classmethod
    def empty_state(cls, height: int = DEFAULT_HEIGHT, hash_port: Optional[IHashPort] = None) -> AccumulatorState:
        return cls(height, hash_port).state()

    @classmethod
    def from_state(
        cls,
        state: AccumulatorState,
        leaves: Sequence[bytes],
        hash_port: Optional[IHashPort] = None,
    ) -> "ClaimAccumulator":
        """Replay stored leaves and check they reproduce the persisted state."""
        accumulator = cls(state.height, hash_port)
        for leaf in leaves:
            accumulator.append(leaf)
        if accumulator.leaf_count != state.leaf_count or accumulator.root != state.root:
            raise IntegrityError(
                f"Stored leaves ({accumulator.leaf_count}) do not reproduce root "
                f"{state.root.hex()} with {state.leaf_count} leaves"
            )
        return accumulator

    @property
    def height(self) -> int:
        return self._height

    @property
    def capacity(self) -> int:
        return 1 << self._height

    @property
    def leaf_count(self) -> int:
        return self._leaf_count

    @property
    def root(self) -> bytes:
        return self._root

    def state(self) -> AccumulatorState:
        return AccumulatorState(
            root=self._root,
            leaf_count=self._leaf_count,
            height=self._height,
            frontier=list(self._frontier),
        )

    def checkpoint(self) -> AccumulatorCheckpoint:
        """
        Capture what one append can change, in O(height).

        An append touches at most the last cached node of each level, so the
        level lengths and their last nodes are enough to undo it.
        """
        return AccumulatorCheckpoint(
            frontier=list(self._frontier),
            leaf_count=self._leaf_count,
            root=self._root,
            level_tails=[(len(nodes), nodes[-1] if nodes else None) for nodes in self._levels],
        )

    def rollback(self, checkpoint: AccumulatorCheckpoint) -> None:
        """Undo appends made since checkpoint; only the most recent append is undoable."""
        self._frontier = list(checkpoint.frontier)
        self._leaf_count = checkpoint.leaf_count
        self._root = checkpoint.root
        for nodes, (length, tail) in zip(self._levels, checkpoint.level_tails):
            del nodes[length:]
            if length:
                nodes[-1] = tail

    def append(self, leaf: bytes) -> Tuple[int, bytes]:
        """Add a leaf hash and return (index, new root)."""
        proof = self.append_with_proof(leaf)
        return proof.index, proof.root

    def append_with_proof(self, leaf: bytes) -> InclusionProof:
        """Add a leaf hash and return its inclusion proof against the new root."""
        if not _is_hash(leaf):
            raise ValidationError(f"Leaf must be a {HASH_WIDTH}-byte hash")
        if self._leaf_count >= self.capacity:
            raise AccumulatorFullError(
                f"Accumulator of height {self._height} is full ({self.capacity} leaves)"
            )

        index = self._leaf_count
        sibling_path = [
            self._frontier[level] if (index >> level) & 1 else self._zeros[level]
            for level in range(self._height)
        ]

        carry = leaf
        level = 0
        while level < self._height and (index >> level) & 1:
            carry = hash_node(self._frontier[level], carry, self._hash_port)
            self._frontier[level] = None
            level += 1
        if level < self._height:
            self._frontier[level] = carry

        self._leaf_count += 1
        # A full tree leaves nothing in the frontier; the last carry is the root.
        self._root = carry if level == self._height else self._root_from_frontier()
        self._cache_path(index, leaf)

        return InclusionProof(leaf=leaf, index=index, sibling_path=sibling_path, root=self._root)

    def _root_from_frontier(self) -> bytes:
        node = self._zeros[0]
        for level in range(self._height):
            if (self._leaf_count >> level) & 1:
                node = hash_node(self._frontier[level], node, self._hash_port)
            else:
                node = hash_node(node, self._zeros[level], self._hash_port)
        return node

    def _node_at(self, level: int, position: int) -> bytes:
        nodes = self._levels[level]
        return nodes[position] if position < len(nodes) else self._zeros[level]

    def _cache_path(self, index: int, leaf: bytes):
        self._levels[0].append(leaf)
        for level in range(1, self._height + 1):
            position = index >> level
            parent = hash_node(
                self._node_at(level - 1, 2 * position),
                self._node_at(level - 1, 2 * position + 1),
                self._hash_port,
            )
            nodes = self._levels[level]
            if position < len(nodes):
                nodes[position] = parent
            else:
                nodes.append(parent)

    def leaf_at(self, index: int) -> bytes:
        if not 0 <= index < self._leaf_count:
            raise NotFoundError(f"No leaf at index {index}")
        return self._levels[0][index]

    def get_proof(self, index: int) -> InclusionProof:
        """Sibling path for a committed leaf against the current root."""
        leaf = self.leaf_at(index)
        sibling_path = [self._node_at(level, (index >> level) ^ 1) for level in range(self._height)]
        return InclusionProof(leaf=leaf, index=index, sibling_path=sibling_path, root=self._root)

    def verify(self, leaf: bytes, index: int, sibling_path: Sequence[bytes], expected_root: bytes) -> bool:
        return verify_inclusion(leaf, index, sibling_path, expected_root, self._height, self._hash_port)
