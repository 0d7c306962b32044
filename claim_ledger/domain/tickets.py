import hmac
import logging
from typing import Dict, List, Optional, Tuple, Union

from claim_ledger.domain.errors import (
    AlreadyClaimedError,
    AuthorizationError,
    CapacityReachedError,
    ConflictError,
    EventInactiveError,
    ExpiredError,
    InvalidSecretError,
    NotFoundError,
    ValidationError,
)
from claim_ledger.domain.identifiers import derive_ticket_id, require_identity
from claim_ledger.domain.merkle import HASH_WIDTH, ClaimAccumulator, hash_leaf
from claim_ledger.domain.models import ClaimRecord, Event, InclusionProof, LeafEntry, Ticket, TicketState
from claim_ledger.domain.registry import EventRegistry
from claim_ledger.ports.common import IClockPort, IIdPort
from claim_ledger.ports.hash import IHashPort, NativeHashAdapter
from claim_ledger.ports.store import ILedgerStorePort

logger = logging.getLogger(__name__)

MAX_LABEL_LENGTH = 50


def commit_secret(secret: Union[bytes, str], hash_port: Optional[IHashPort] = None) -> bytes:
    """SHA-256 commitment of a bearer secret, as stored on the ticket."""
    if isinstance(secret, str):
        secret = secret.encode("utf-8")
    return (hash_port or NativeHashAdapter()).sha256(secret)


class TicketStore:
    """
    Ticket lifecycle: UNCLAIMED -> CLAIMED, exactly once.

    Expiry is never stored; it is evaluated against the clock at redemption.
    Every operation builds replacement records first and hands them to a
    single store commit, so a failed check leaves storage untouched.
    """

    def __init__(
        self,
        store: ILedgerStorePort,
        registry: EventRegistry,
        clock: IClockPort,
        id_gen: IIdPort,
        hash_port: Optional[IHashPort] = None,
    ):
        self._store = store
        self._registry = registry
        self._clock = clock
        self._id_gen = id_gen
        self._hash_port = hash_port
        self._accumulators: Dict[bytes, ClaimAccumulator] = {}

    def accumulator_for(self, event: Event) -> ClaimAccumulator:
        """Cached accumulator for an event, rebuilt from stored leaves when stale."""
        cached = self._accumulators.get(event.event_id)
        state = event.accumulator
        if cached is not None and cached.leaf_count == state.leaf_count and cached.root == state.root:
            return cached

        leaves = self._store.list_leaves(event.event_id)
        accumulator = ClaimAccumulator.from_state(state, leaves, self._hash_port)
        self._accumulators[event.event_id] = accumulator
        return accumulator

    def get_ticket(self, ticket_id: bytes) -> Ticket:
        ticket = self._store.get_ticket(ticket_id)
        if ticket is None:
            raise NotFoundError(f"Ticket {ticket_id.hex()} not found")
        return ticket

    def list_tickets(self, event_id: bytes) -> List[Ticket]:
        self._registry.get_event(event_id)
        return self._store.list_tickets(event_id)

    def issue_ticket(
        self,
        event_id: bytes,
        secret_commitment: bytes,
        expires_at: int = 0,
        authority: Optional[bytes] = None,
        label: Optional[str] = None,
    ) -> Ticket:
        if not isinstance(secret_commitment, bytes) or len(secret_commitment) != HASH_WIDTH:
            raise ValidationError(f"secret_commitment must be a {HASH_WIDTH}-byte digest")
        if isinstance(expires_at, bool) or not isinstance(expires_at, int) or expires_at < 0:
            raise ValidationError(f"expires_at must be a non-negative integer, got {expires_at!r}")

        event = self._registry.get_event(event_id)
        if authority is not None and authority != event.authority:
            raise AuthorizationError("Only the event authority can issue tickets")
        if not event.active:
            raise EventInactiveError(f"Event {event_id.hex()} is not active")
        if event.issued_count >= event.capacity:
            raise CapacityReachedError(f"Event {event_id.hex()} has issued all {event.capacity} tickets")

        label = label if label is not None else self._id_gen.generate_id()
        if not label or len(label) > MAX_LABEL_LENGTH:
            raise ValidationError(f"Ticket label must be 1 to {MAX_LABEL_LENGTH} characters")
        ticket_id = derive_ticket_id(event_id, label, self._hash_port)
        if self._store.get_ticket(ticket_id) is not None:
            raise ConflictError(f"Ticket {label!r} already exists for this event")

        ticket = Ticket(
            ticket_id=ticket_id,
            event_id=event_id,
            label=label,
            secret_commitment=secret_commitment,
            expires_at=expires_at,
            created_at=self._clock.now(),
        )
        updated_event = event.model_copy(update={"issued_count": event.issued_count + 1})
        self._store.commit(events=[updated_event], tickets=[ticket])

        logger.info(
            f"Issued ticket {ticket_id.hex()} for event {event_id.hex()} "
            f"({updated_event.issued_count}/{event.capacity})"
        )
        return ticket

    def redeem_ticket(
        self,
        ticket_id: bytes,
        secret: Union[bytes, str],
        claimant: bytes,
        invoker: Optional[bytes] = None,
    ) -> Tuple[ClaimRecord, InclusionProof]:
        """
        Redeem a ticket and commit its claim record.

        Checks run in a fixed order so the reported error is deterministic:
        event active, ticket unclaimed, not expired, secret matches.
        Returns the claim record and its inclusion proof against the new root.
        """
        ticket = self.get_ticket(ticket_id)
        require_identity(claimant, "claimant")
        if invoker is not None and invoker != claimant:
            raise AuthorizationError("Claimant must be the invoking principal")
        event = self._registry.get_event(ticket.event_id)

        if not event.active:
            raise EventInactiveError(f"Event {event.event_id.hex()} is not active")
        if ticket.state != TicketState.UNCLAIMED:
            raise AlreadyClaimedError(f"Ticket {ticket_id.hex()} has already been claimed")
        now = self._clock.now()
        if ticket.expires_at != 0 and now > ticket.expires_at:
            raise ExpiredError(f"Ticket {ticket_id.hex()} expired at {ticket.expires_at}")
        if not hmac.compare_digest(commit_secret(secret, self._hash_port), ticket.secret_commitment):
            raise InvalidSecretError("Secret does not match the ticket commitment")

        record = ClaimRecord(
            event_id=event.event_id,
            claimant=claimant,
            sequence_number=event.claimed_count + 1,
            claimed_at=now,
        )
        leaf = hash_leaf(record, self._hash_port)

        accumulator = self.accumulator_for(event)
        checkpoint = accumulator.checkpoint()
        proof = accumulator.append_with_proof(leaf)

        claimed_ticket = ticket.model_copy(
            update={
                "state": TicketState.CLAIMED,
                "claimant": claimant,
                "claimed_at": now,
                "sequence_number": record.sequence_number,
            }
        )
        updated_event = event.model_copy(
            update={"claimed_count": record.sequence_number, "accumulator": accumulator.state()}
        )
        try:
            self._store.commit(
                events=[updated_event],
                tickets=[claimed_ticket],
                leaves=[LeafEntry(event_id=event.event_id, index=proof.index, leaf=leaf)],
            )
        except Exception:
            # The cached accumulator must keep matching what storage holds
            accumulator.rollback(checkpoint)
            raise

        logger.info(
            f"Ticket {ticket_id.hex()} claimed by {claimant.hex()} "
            f"seq={record.sequence_number} root={proof.root.hex()}"
        )
        return record, proof

    def claim_record_for(self, ticket: Ticket) -> ClaimRecord:
        if ticket.state != TicketState.CLAIMED:
            raise NotFoundError(f"Ticket {ticket.ticket_id.hex()} has not been claimed")
        return ClaimRecord(
            event_id=ticket.event_id,
            claimant=ticket.claimant,
            sequence_number=ticket.sequence_number,
            claimed_at=ticket.claimed_at,
        )

    def get_proof(self, ticket_id: bytes) -> Tuple[ClaimRecord, InclusionProof]:
        """Claim record of a claimed ticket with its proof against the current root."""
        ticket = self.get_ticket(ticket_id)
        record = self.claim_record_for(ticket)
        event = self._registry.get_event(ticket.event_id)
        proof = self.accumulator_for(event).get_proof(record.sequence_number - 1)
        return record, proof
