import logging
import os
import psycopg2  # type: ignore
from psycopg2.extras import RealDictCursor, Json  # type: ignore
from typing import Iterable, List, Optional

from claim_ledger.domain.errors import ConflictError
from claim_ledger.domain.models import AccumulatorState, Event, LeafEntry, Ticket, TicketState
from claim_ledger.ports.store import ILedgerStorePort

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS ledger_events (
    event_id BYTEA PRIMARY KEY,
    authority BYTEA NOT NULL,
    name TEXT NOT NULL,
    capacity BIGINT NOT NULL,
    issued_count BIGINT NOT NULL,
    claimed_count BIGINT NOT NULL,
    active BOOLEAN NOT NULL,
    created_at BIGINT NOT NULL,
    acc_root BYTEA NOT NULL,
    acc_leaf_count BIGINT NOT NULL,
    acc_height INTEGER NOT NULL,
    acc_frontier JSONB NOT NULL
);
CREATE TABLE IF NOT EXISTS ledger_tickets (
    ticket_id BYTEA PRIMARY KEY,
    event_id BYTEA NOT NULL REFERENCES ledger_events (event_id),
    label TEXT NOT NULL,
    secret_commitment BYTEA NOT NULL,
    expires_at BIGINT NOT NULL,
    created_at BIGINT NOT NULL,
    state TEXT NOT NULL,
    claimant BYTEA,
    claimed_at BIGINT,
    sequence_number BIGINT
);
CREATE INDEX IF NOT EXISTS ledger_tickets_event_idx ON ledger_tickets (event_id);
CREATE TABLE IF NOT EXISTS ledger_leaves (
    event_id BYTEA NOT NULL REFERENCES ledger_events (event_id),
    idx BIGINT NOT NULL,
    leaf BYTEA NOT NULL,
    PRIMARY KEY (event_id, idx)
);
"""


def _opt_bytes(value) -> Optional[bytes]:
    return bytes(value) if value is not None else None


class PostgresLedgerStore(ILedgerStorePort):
    """
    PostgreSQL-backed store. Each commit() runs in a single transaction,
    which gives the multi-record atomicity the ticket state machine needs.
    """

    def __init__(self, dsn: Optional[str] = None):
        self.dsn = dsn or os.getenv("CLAIM_LEDGER_DATABASE_URL")
        if not self.dsn:
            db_user = os.getenv("DB_USER")
            db_pass = os.getenv("DB_PASSWORD")
            db_host = os.getenv("DB_HOST", "localhost")
            db_name = os.getenv("DB_NAME")
            self.dsn = f"postgresql://{db_user}:{db_pass}@{db_host}:5432/{db_name}"
        self.conn = None
        self._ensure_connection()

    def _ensure_connection(self):
        if self.conn is not None and not self.conn.closed:
            return
        try:
            self.conn = psycopg2.connect(self.dsn)
        except psycopg2.Error as e:
            logger.error(f"Failed to connect to Postgres: {e}")
            raise
        with self.conn:
            with self.conn.cursor() as cur:
                cur.execute(SCHEMA)

    def _query(self, sql: str, params=()) -> List[dict]:
        self._ensure_connection()
        with self.conn:
            with self.conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(sql, params)
                return cur.fetchall()

    def get_event(self, event_id: bytes) -> Optional[Event]:
        rows = self._query("SELECT * FROM ledger_events WHERE event_id = %s", (event_id,))
        return self._map_event(rows[0]) if rows else None

    def list_events(self) -> List[Event]:
        rows = self._query("SELECT * FROM ledger_events ORDER BY created_at ASC")
        return [self._map_event(row) for row in rows]

    def get_ticket(self, ticket_id: bytes) -> Optional[Ticket]:
        rows = self._query("SELECT * FROM ledger_tickets WHERE ticket_id = %s", (ticket_id,))
        return self._map_ticket(rows[0]) if rows else None

    def list_tickets(self, event_id: bytes) -> List[Ticket]:
        rows = self._query(
            "SELECT * FROM ledger_tickets WHERE event_id = %s ORDER BY created_at ASC", (event_id,)
        )
        return [self._map_ticket(row) for row in rows]

    def list_leaves(self, event_id: bytes) -> List[bytes]:
        rows = self._query(
            "SELECT leaf FROM ledger_leaves WHERE event_id = %s ORDER BY idx ASC", (event_id,)
        )
        return [bytes(row["leaf"]) for row in rows]

    def commit(
        self,
        events: Iterable[Event] = (),
        tickets: Iterable[Ticket] = (),
        leaves: Iterable[LeafEntry] = (),
    ) -> None:
        self._ensure_connection()
        try:
            with self.conn:
                with self.conn.cursor() as cur:
                    for event in events:
                        self._upsert_event(cur, event)
                    for ticket in tickets:
                        self._upsert_ticket(cur, ticket)
                    for entry in leaves:
                        self._append_leaf(cur, entry)
        except psycopg2.IntegrityError as e:
            logger.error(f"Commit rejected by constraint: {e}")
            raise ConflictError(str(e)) from e
        except psycopg2.Error as e:
            logger.error(f"Failed to commit ledger records: {e}")
            raise

    def _upsert_event(self, cur, event: Event):
        state = event.accumulator
        cur.execute(
            """
            INSERT INTO ledger_events (
                event_id, authority, name, capacity, issued_count, claimed_count,
                active, created_at, acc_root, acc_leaf_count, acc_height, acc_frontier
            ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (event_id) DO UPDATE SET
                issued_count = EXCLUDED.issued_count,
                claimed_count = EXCLUDED.claimed_count,
                active = EXCLUDED.active,
                acc_root = EXCLUDED.acc_root,
                acc_leaf_count = EXCLUDED.acc_leaf_count,
                acc_frontier = EXCLUDED.acc_frontier
            """,
            (
                event.event_id,
                event.authority,
                event.name,
                event.capacity,
                event.issued_count,
                event.claimed_count,
                event.active,
                event.created_at,
                state.root,
                state.leaf_count,
                state.height,
                Json([h.hex() if h is not None else None for h in state.frontier]),
            ),
        )

    def _upsert_ticket(self, cur, ticket: Ticket):
        cur.execute(
            """
            INSERT INTO ledger_tickets (
                ticket_id, event_id, label, secret_commitment, expires_at, created_at,
                state, claimant, claimed_at, sequence_number
            ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (ticket_id) DO UPDATE SET
                state = EXCLUDED.state,
                claimant = EXCLUDED.claimant,
                claimed_at = EXCLUDED.claimed_at,
                sequence_number = EXCLUDED.sequence_number
            """,
            (
                ticket.ticket_id,
                ticket.event_id,
                ticket.label,
                ticket.secret_commitment,
                ticket.expires_at,
                ticket.created_at,
                ticket.state.value,
                ticket.claimant,
                ticket.claimed_at,
                ticket.sequence_number,
            ),
        )

    def _append_leaf(self, cur, entry: LeafEntry):
        cur.execute(
            "SELECT COALESCE(MAX(idx) + 1, 0) FROM ledger_leaves WHERE event_id = %s",
            (entry.event_id,),
        )
        expected = cur.fetchone()[0]
        if entry.index != expected:
            raise ConflictError(
                f"Leaf index {entry.index} for event {entry.event_id.hex()} is not next ({expected})"
            )
        cur.execute(
            "INSERT INTO ledger_leaves (event_id, idx, leaf) VALUES (%s, %s, %s)",
            (entry.event_id, entry.index, entry.leaf),
        )

    def _map_event(self, row) -> Event:
        accumulator = AccumulatorState(
            root=bytes(row["acc_root"]),
            leaf_count=row["acc_leaf_count"],
            height=row["acc_height"],
            frontier=[bytes.fromhex(h) if h is not None else None for h in row["acc_frontier"]],
        )
        return Event(
            event_id=bytes(row["event_id"]),
            authority=bytes(row["authority"]),
            name=row["name"],
            capacity=row["capacity"],
            issued_count=row["issued_count"],
            claimed_count=row["claimed_count"],
            active=row["active"],
            created_at=row["created_at"],
            accumulator=accumulator,
        )

    def _map_ticket(self, row) -> Ticket:
        return Ticket(
            ticket_id=bytes(row["ticket_id"]),
            event_id=bytes(row["event_id"]),
            label=row["label"],
            secret_commitment=bytes(row["secret_commitment"]),
            expires_at=row["expires_at"],
            created_at=row["created_at"],
            state=TicketState(row["state"]),
            claimant=_opt_bytes(row["claimant"]),
            claimed_at=row["claimed_at"],
            sequence_number=row["sequence_number"],
        )
