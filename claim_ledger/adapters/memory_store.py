import logging
import threading
from collections import defaultdict
from typing import Dict, Iterable, List, Optional

from claim_ledger.domain.errors import ConflictError
from claim_ledger.domain.models import Event, LeafEntry, Ticket
from claim_ledger.ports.store import ILedgerStorePort

logger = logging.getLogger(__name__)


class InMemoryLedgerStore(ILedgerStorePort):
    """Dict-backed store. Records are frozen models, so reads hand out shared instances."""

    def __init__(self):
        self._lock = threading.Lock()
        self._events: Dict[bytes, Event] = {}
        self._tickets: Dict[bytes, Ticket] = {}
        self._leaves: Dict[bytes, List[bytes]] = defaultdict(list)

    def get_event(self, event_id: bytes) -> Optional[Event]:
        with self._lock:
            return self._events.get(event_id)

    def list_events(self) -> List[Event]:
        with self._lock:
            return list(self._events.values())

    def get_ticket(self, ticket_id: bytes) -> Optional[Ticket]:
        with self._lock:
            return self._tickets.get(ticket_id)

    def list_tickets(self, event_id: bytes) -> List[Ticket]:
        with self._lock:
            return [t for t in self._tickets.values() if t.event_id == event_id]

    def list_leaves(self, event_id: bytes) -> List[bytes]:
        with self._lock:
            return list(self._leaves.get(event_id, []))

    def commit(
        self,
        events: Iterable[Event] = (),
        tickets: Iterable[Ticket] = (),
        leaves: Iterable[LeafEntry] = (),
    ) -> None:
        events = list(events)
        tickets = list(tickets)
        leaves = list(leaves)

        with self._lock:
            # Validate everything before touching any dict
            pending_counts: Dict[bytes, int] = {}
            for entry in leaves:
                expected = pending_counts.get(entry.event_id, len(self._leaves.get(entry.event_id, [])))
                if entry.index != expected:
                    raise ConflictError(
                        f"Leaf index {entry.index} for event {entry.event_id.hex()} is not next ({expected})"
                    )
                pending_counts[entry.event_id] = expected + 1

            for event in events:
                self._events[event.event_id] = event
            for ticket in tickets:
                self._tickets[ticket.ticket_id] = ticket
            for entry in leaves:
                self._leaves[entry.event_id].append(entry.leaf)

        logger.debug(f"Committed {len(events)} events, {len(tickets)} tickets, {len(leaves)} leaves")
