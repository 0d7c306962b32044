"""Wire shapes for the HTTP adapter. Every byte string travels as lowercase hex."""
from pydantic import BaseModel
from typing import List, Optional

from claim_ledger.domain.errors import ValidationError
from claim_ledger.domain.models import ClaimRecord, Event, InclusionProof, Ticket


def from_hex(value: str, field: str) -> bytes:
    try:
        return bytes.fromhex(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} is not valid hex")


def _opt_hex(value: Optional[bytes]) -> Optional[str]:
    return value.hex() if value is not None else None


class CreateEventRequest(BaseModel):
    capacity: int
    name: Optional[str] = None
    height: Optional[int] = None


class SetActiveRequest(BaseModel):
    active: bool


class IssueTicketRequest(BaseModel):
    secret_commitment: str
    expires_at: int = 0
    label: Optional[str] = None


class RedeemRequest(BaseModel):
    secret: str
    claimant: Optional[str] = None  # defaults to the invoking principal


class EventView(BaseModel):
    event_id: str
    authority: str
    name: str
    capacity: int
    issued_count: int
    claimed_count: int
    active: bool
    created_at: int
    root: str
    leaf_count: int
    height: int

    @classmethod
    def from_event(cls, event: Event) -> "EventView":
        return cls(
            event_id=event.event_id.hex(),
            authority=event.authority.hex(),
            name=event.name,
            capacity=event.capacity,
            issued_count=event.issued_count,
            claimed_count=event.claimed_count,
            active=event.active,
            created_at=event.created_at,
            root=event.accumulator.root.hex(),
            leaf_count=event.accumulator.leaf_count,
            height=event.accumulator.height,
        )


class TicketView(BaseModel):
    ticket_id: str
    event_id: str
    label: str
    secret_commitment: str
    expires_at: int
    created_at: int
    state: str
    claimant: Optional[str] = None
    claimed_at: Optional[int] = None
    sequence_number: Optional[int] = None

    @classmethod
    def from_ticket(cls, ticket: Ticket) -> "TicketView":
        return cls(
            ticket_id=ticket.ticket_id.hex(),
            event_id=ticket.event_id.hex(),
            label=ticket.label,
            secret_commitment=ticket.secret_commitment.hex(),
            expires_at=ticket.expires_at,
            created_at=ticket.created_at,
            state=ticket.state.value,
            claimant=_opt_hex(ticket.claimant),
            claimed_at=ticket.claimed_at,
            sequence_number=ticket.sequence_number,
        )


class ClaimRecordView(BaseModel):
    event_id: str
    claimant: str
    sequence_number: int
    claimed_at: int

    @classmethod
    def from_record(cls, record: ClaimRecord) -> "ClaimRecordView":
        return cls(
            event_id=record.event_id.hex(),
            claimant=record.claimant.hex(),
            sequence_number=record.sequence_number,
            claimed_at=record.claimed_at,
        )

    def to_record(self) -> ClaimRecord:
        return ClaimRecord(
            event_id=from_hex(self.event_id, "event_id"),
            claimant=from_hex(self.claimant, "claimant"),
            sequence_number=self.sequence_number,
            claimed_at=self.claimed_at,
        )


class ProofView(BaseModel):
    leaf: str
    index: int
    sibling_path: List[str]
    root: str

    @classmethod
    def from_proof(cls, proof: InclusionProof) -> "ProofView":
        return cls(
            leaf=proof.leaf.hex(),
            index=proof.index,
            sibling_path=[h.hex() for h in proof.sibling_path],
            root=proof.root.hex(),
        )


class ClaimView(BaseModel):
    ticket_id: Optional[str] = None
    record: ClaimRecordView
    proof: ProofView


class RootView(BaseModel):
    event_id: str
    root: str
    leaf_count: int
    height: int


class VerifyRequest(BaseModel):
    record: ClaimRecordView
    index: int
    sibling_path: List[str]
    expected_root: str


class VerifyView(BaseModel):
    valid: bool
