from abc import ABC, abstractmethod
from typing import Iterable, List, Optional

from claim_ledger.domain.models import Event, LeafEntry, Ticket


class ILedgerStorePort(ABC):
    """Durable keyed storage for events, tickets and committed leaf hashes."""

    @abstractmethod
    def get_event(self, event_id: bytes) -> Optional[Event]:
        pass

    @abstractmethod
    def list_events(self) -> List[Event]:
        pass

    @abstractmethod
    def get_ticket(self, ticket_id: bytes) -> Optional[Ticket]:
        pass

    @abstractmethod
    def list_tickets(self, event_id: bytes) -> List[Ticket]:
        pass

    @abstractmethod
    def list_leaves(self, event_id: bytes) -> List[bytes]:
        """Leaf hashes of one event in insertion order."""
        pass

    @abstractmethod
    def commit(
        self,
        events: Iterable[Event] = (),
        tickets: Iterable[Ticket] = (),
        leaves: Iterable[LeafEntry] = (),
    ) -> None:
        """
        Write all given records or none of them.

        Events and tickets are upserted by id. Leaves are append-only: each
        entry's index must equal the number of leaves already stored for its
        event, otherwise ConflictError is raised and nothing is written.
        """
        pass
