import asyncio
import logging
import threading
from typing import Any, List, Optional, Sequence, Tuple, Union

from claim_ledger.domain.merkle import DEFAULT_HEIGHT
from claim_ledger.domain.models import AccumulatorState, ClaimRecord, Event, InclusionProof, Ticket
from claim_ledger.domain.registry import EventRegistry
from claim_ledger.domain.tickets import TicketStore
from claim_ledger.domain import verifier
from claim_ledger.ports.common import IClockPort, IIdPort
from claim_ledger.ports.hash import IHashPort
from claim_ledger.ports.store import ILedgerStorePort

logger = logging.getLogger(__name__)


class ClaimLedgerService:
    """
    Domain Service hosting the claim ledger in one process.
    Orchestrates Ports and Domain components.

    The domain components hold no locks; this service serializes every
    mutating call so each event's records have a single writer.
    """

    def __init__(
        self,
        store: ILedgerStorePort,
        clock: IClockPort,
        id_gen: IIdPort,
        hash_port: Optional[IHashPort] = None,
        broadcaster: Any = None,
        default_height: int = DEFAULT_HEIGHT,
    ):
        self._store = store
        self._hash_port = hash_port
        self._broadcaster = broadcaster
        self._lock = threading.RLock()
        self.registry = EventRegistry(store, clock, id_gen, hash_port, default_height)
        self.tickets = TicketStore(store, self.registry, clock, id_gen, hash_port)
        self._initialize_accumulators()

    def _initialize_accumulators(self):
        """Rebuild accumulators from stored leaves on startup."""
        events = self._store.list_events()
        for event in events:
            self.tickets.accumulator_for(event)
        if events:
            logger.info(f"Restored accumulators for {len(events)} events")

    def create_event(
        self,
        authority: bytes,
        capacity: int,
        name: Optional[str] = None,
        height: Optional[int] = None,
    ) -> Event:
        with self._lock:
            return self.registry.create_event(authority, capacity, name=name, height=height)

    def get_event(self, event_id: bytes) -> Event:
        return self.registry.get_event(event_id)

    def list_events(self) -> List[Event]:
        return self.registry.list_events()

    def set_active(self, event_id: bytes, authority: bytes, value: bool) -> Event:
        with self._lock:
            return self.registry.set_active(event_id, authority, value)

    def issue_ticket(
        self,
        event_id: bytes,
        secret_commitment: bytes,
        expires_at: int = 0,
        authority: Optional[bytes] = None,
        label: Optional[str] = None,
    ) -> Ticket:
        with self._lock:
            return self.tickets.issue_ticket(
                event_id, secret_commitment, expires_at, authority=authority, label=label
            )

    def get_ticket(self, ticket_id: bytes) -> Ticket:
        return self.tickets.get_ticket(ticket_id)

    def list_tickets(self, event_id: bytes) -> List[Ticket]:
        return self.tickets.list_tickets(event_id)

    def redeem(
        self,
        ticket_id: bytes,
        secret: Union[bytes, str],
        claimant: bytes,
        invoker: Optional[bytes] = None,
    ) -> Tuple[ClaimRecord, InclusionProof]:
        with self._lock:
            return self.tickets.redeem_ticket(ticket_id, secret, claimant, invoker=invoker)

    async def redeem_ticket(
        self,
        ticket_id: bytes,
        secret: Union[bytes, str],
        claimant: bytes,
        invoker: Optional[bytes] = None,
    ) -> Tuple[ClaimRecord, InclusionProof]:
        """
        Redeem a ticket and broadcast the committed claim.
        - Runs the redemption checks and commit under the service lock, in a
          worker thread so a slow store commit does not block the event loop.
        - Publishes to SSE subscribers only after the commit succeeded.
        """
        record, proof = await asyncio.to_thread(self.redeem, ticket_id, secret, claimant, invoker=invoker)
        if self._broadcaster:
            await self._broadcaster.publish(record, proof)
        return record, proof

    def get_root(self, event_id: bytes) -> AccumulatorState:
        return self.registry.get_event(event_id).accumulator

    def get_proof(self, ticket_id: bytes) -> Tuple[ClaimRecord, InclusionProof]:
        with self._lock:
            return self.tickets.get_proof(ticket_id)

    def verify_claim(
        self,
        record: ClaimRecord,
        index: int,
        sibling_path: Sequence[bytes],
        expected_root: bytes,
        height: Optional[int] = None,
    ) -> bool:
        """Pure verification; height defaults to the event's own tree height when known."""
        if height is None:
            event = self._store.get_event(record.event_id)
            height = event.accumulator.height if event is not None else DEFAULT_HEIGHT
        return verifier.verify_claim(record, index, sibling_path, expected_root, height, self._hash_port)
