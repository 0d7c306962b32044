from enum import Enum
from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional


class TicketState(str, Enum):
    UNCLAIMED = "UNCLAIMED"
    CLAIMED = "CLAIMED"


class AccumulatorState(BaseModel):
    """Persisted summary of one event's claim accumulator."""

    model_config = ConfigDict(frozen=True)

    root: bytes
    leaf_count: int = 0
    height: int
    # frontier[k] is the completed subtree of height k still waiting for a sibling
    frontier: List[Optional[bytes]]


class Event(BaseModel):
    model_config = ConfigDict(frozen=True)

    event_id: bytes
    authority: bytes
    name: str
    capacity: int
    issued_count: int = 0
    claimed_count: int = 0
    active: bool = True
    created_at: int = 0
    accumulator: AccumulatorState


class Ticket(BaseModel):
    model_config = ConfigDict(frozen=True)

    ticket_id: bytes
    event_id: bytes
    label: str
    secret_commitment: bytes
    expires_at: int = 0  # 0 = never
    created_at: int = 0
    state: TicketState = TicketState.UNCLAIMED
    claimant: Optional[bytes] = None
    claimed_at: Optional[int] = None
    sequence_number: Optional[int] = None


class ClaimRecord(BaseModel):
    """Leaf payload. Only its hash is ever committed."""

    model_config = ConfigDict(frozen=True)

    event_id: bytes
    claimant: bytes
    sequence_number: int
    claimed_at: int


class InclusionProof(BaseModel):
    model_config = ConfigDict(frozen=True)

    leaf: bytes
    index: int
    sibling_path: List[bytes] = Field(default_factory=list)
    root: bytes


class LeafEntry(BaseModel):
    """A committed leaf hash, keyed by its owning event and insertion index."""

    model_config = ConfigDict(frozen=True)

    event_id: bytes
    index: int
    leaf: bytes
