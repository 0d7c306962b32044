import logging
from typing import List, Optional

from claim_ledger.domain.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from claim_ledger.domain.identifiers import derive_event_id, require_identity
from claim_ledger.domain.merkle import DEFAULT_HEIGHT, ClaimAccumulator
from claim_ledger.domain.models import Event
from claim_ledger.ports.common import IClockPort, IIdPort
from claim_ledger.ports.hash import IHashPort
from claim_ledger.ports.store import ILedgerStorePort

logger = logging.getLogger(__name__)

MAX_EVENT_NAME_LENGTH = 50


class EventRegistry:
    """Owns event metadata, capacity and the active flag."""

    def __init__(
        self,
        store: ILedgerStorePort,
        clock: IClockPort,
        id_gen: IIdPort,
        hash_port: Optional[IHashPort] = None,
        default_height: int = DEFAULT_HEIGHT,
    ):
        self._store = store
        self._clock = clock
        self._id_gen = id_gen
        self._hash_port = hash_port
        self._default_height = default_height

    def create_event(
        self,
        authority: bytes,
        capacity: int,
        name: Optional[str] = None,
        height: Optional[int] = None,
    ) -> Event:
        require_identity(authority, "authority")
        if isinstance(capacity, bool) or not isinstance(capacity, int) or capacity <= 0:
            raise ValidationError(f"Capacity must be a positive integer, got {capacity!r}")

        name = name if name is not None else self._id_gen.generate_id()
        if not name or len(name) > MAX_EVENT_NAME_LENGTH:
            raise ValidationError(f"Event name must be 1 to {MAX_EVENT_NAME_LENGTH} characters")

        accumulator = ClaimAccumulator.empty_state(
            height if height is not None else self._default_height, self._hash_port
        )
        event_id = derive_event_id(authority, name, self._hash_port)
        if self._store.get_event(event_id) is not None:
            raise ConflictError(f"Event {name!r} already exists for this authority")

        event = Event(
            event_id=event_id,
            authority=authority,
            name=name,
            capacity=capacity,
            created_at=self._clock.now(),
            accumulator=accumulator,
        )
        self._store.commit(events=[event])
        logger.info(f"Created event {event_id.hex()} name={name!r} capacity={capacity} height={accumulator.height}")
        return event

    def get_event(self, event_id: bytes) -> Event:
        event = self._store.get_event(event_id)
        if event is None:
            raise NotFoundError(f"Event {event_id.hex()} not found")
        return event

    def list_events(self) -> List[Event]:
        return self._store.list_events()

    def set_active(self, event_id: bytes, authority: bytes, value: bool) -> Event:
        event = self.get_event(event_id)
        if authority != event.authority:
            raise AuthorizationError("Only the event authority can change its active flag")

        updated = event.model_copy(update={"active": bool(value)})
        self._store.commit(events=[updated])
        logger.info(f"Event {event_id.hex()} active={updated.active}")
        return updated

    def deactivate(self, event_id: bytes, authority: bytes) -> Event:
        return self.set_active(event_id, authority, False)

    def reactivate(self, event_id: bytes, authority: bytes) -> Event:
        return self.set_active(event_id, authority, True)
