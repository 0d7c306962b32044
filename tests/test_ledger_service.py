import asyncio
import threading
import unittest
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import MagicMock

from claim_ledger.adapters.memory_store import InMemoryLedgerStore
from claim_ledger.core.broadcaster import ClaimBroadcaster
from claim_ledger.domain.errors import AlreadyClaimedError, IntegrityError, InvalidSecretError
from claim_ledger.domain.models import TicketState
from claim_ledger.domain.services import ClaimLedgerService
from claim_ledger.domain.tickets import commit_secret
from claim_ledger.ports.common import IClockPort, UuidIdAdapter

AUTHORITY = b"\xaa" * 32


def build_service(store=None, broadcaster=None, height=6):
    clock = MagicMock(spec=IClockPort)
    clock.now.return_value = 1000
    return ClaimLedgerService(
        store=store or InMemoryLedgerStore(),
        clock=clock,
        id_gen=UuidIdAdapter(),
        broadcaster=broadcaster,
        default_height=height,
    )


class TestClaimLedgerService(unittest.TestCase):
    def test_concurrent_redemptions_yield_one_winner(self):
        service = build_service()
        event = service.create_event(AUTHORITY, 1, name="rush")
        ticket = service.issue_ticket(event.event_id, commit_secret("s"), 0)
        claimants = [bytes([n + 1]) * 32 for n in range(8)]

        def attempt(claimant):
            try:
                return service.redeem(ticket.ticket_id, "s", claimant)
            except AlreadyClaimedError as e:
                return e

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(attempt, claimants))

        winners = [r for r in results if not isinstance(r, AlreadyClaimedError)]
        self.assertEqual(len(winners), 1)
        self.assertEqual(len(results) - len(winners), 7)

        record, _ = winners[0]
        stored = service.get_ticket(ticket.ticket_id)
        self.assertEqual(stored.claimant, record.claimant)
        self.assertEqual(service.get_event(event.event_id).claimed_count, 1)
        self.assertEqual(service.get_root(event.event_id).leaf_count, 1)

    def test_restart_restores_accumulators_from_store(self):
        store = InMemoryLedgerStore()
        service = build_service(store)
        event = service.create_event(AUTHORITY, 4, name="persisted")
        tickets = [service.issue_ticket(event.event_id, commit_secret(f"s{n}"), 0) for n in range(3)]
        for n, ticket in enumerate(tickets[:2]):
            service.redeem(ticket.ticket_id, f"s{n}", AUTHORITY)

        restarted = build_service(store)
        record, proof = restarted.get_proof(tickets[0].ticket_id)
        self.assertEqual(proof.root, service.get_root(event.event_id).root)
        self.assertTrue(restarted.verify_claim(record, proof.index, proof.sibling_path, proof.root))

        record, proof = restarted.redeem(tickets[2].ticket_id, "s2", AUTHORITY)
        self.assertEqual(record.sequence_number, 3)
        self.assertEqual(proof.index, 2)

    def test_restart_rejects_tampered_leaves(self):
        store = InMemoryLedgerStore()
        service = build_service(store)
        event = service.create_event(AUTHORITY, 1, name="tamper")
        ticket = service.issue_ticket(event.event_id, commit_secret("s"), 0)
        service.redeem(ticket.ticket_id, "s", AUTHORITY)

        store._leaves[event.event_id][0] = b"\x00" * 32
        with self.assertRaises(IntegrityError):
            build_service(store)

    def test_verify_uses_event_height(self):
        service = build_service(height=6)
        event = service.create_event(AUTHORITY, 1, name="tall", height=9)
        ticket = service.issue_ticket(event.event_id, commit_secret("s"), 0)
        record, proof = service.redeem(ticket.ticket_id, "s", AUTHORITY)

        self.assertEqual(len(proof.sibling_path), 9)
        self.assertTrue(service.verify_claim(record, proof.index, proof.sibling_path, proof.root))
        self.assertFalse(service.verify_claim(record, proof.index, proof.sibling_path, proof.root, height=6))


class TestClaimBroadcast(unittest.IsolatedAsyncioTestCase):
    async def test_redeem_publishes_claim_to_event_subscribers(self):
        broadcaster = ClaimBroadcaster(max_queue_size=4)
        service = build_service(broadcaster=broadcaster)
        event = service.create_event(AUTHORITY, 2, name="live")
        other = service.create_event(AUTHORITY, 2, name="elsewhere")
        ticket = service.issue_ticket(event.event_id, commit_secret("s"), 0)
        other_ticket = service.issue_ticket(other.event_id, commit_secret("s"), 0)

        stream = broadcaster.subscribe(event.event_id)
        pending = asyncio.ensure_future(stream.__anext__())
        while broadcaster.subscriber_count == 0:
            await asyncio.sleep(0)

        await service.redeem_ticket(other_ticket.ticket_id, "s", AUTHORITY)
        record, proof = await service.redeem_ticket(ticket.ticket_id, "s", AUTHORITY)

        received_record, received_proof = await asyncio.wait_for(pending, timeout=1)
        self.assertEqual(received_record, record)
        self.assertEqual(received_proof, proof)

        await stream.aclose()
        self.assertEqual(broadcaster.subscriber_count, 0)

    async def test_failed_redeem_publishes_nothing(self):
        broadcaster = MagicMock(spec=ClaimBroadcaster)
        service = build_service(broadcaster=broadcaster)
        event = service.create_event(AUTHORITY, 1, name="quiet")
        ticket = service.issue_ticket(event.event_id, commit_secret("s"), 0)

        with self.assertRaises(InvalidSecretError):
            await service.redeem_ticket(ticket.ticket_id, "wrong", AUTHORITY)
        broadcaster.publish.assert_not_called()
        self.assertEqual(service.get_ticket(ticket.ticket_id).state, TicketState.UNCLAIMED)

    async def test_full_queue_drops_notice(self):
        broadcaster = ClaimBroadcaster(max_queue_size=1)
        service = build_service(broadcaster=broadcaster)
        event = service.create_event(AUTHORITY, 3, name="slow")
        tickets = [service.issue_ticket(event.event_id, commit_secret("s"), 0) for _ in range(3)]

        stream = broadcaster.subscribe()
        pending = asyncio.ensure_future(stream.__anext__())
        while broadcaster.subscriber_count == 0:
            await asyncio.sleep(0)

        first, _ = await service.redeem_ticket(tickets[0].ticket_id, "s", AUTHORITY)
        # One notice is consumed by the pending read at most; the queue holds one more
        with self.assertLogs("claim_ledger.core.broadcaster", level="WARNING"):
            await service.redeem_ticket(tickets[1].ticket_id, "s", AUTHORITY)
            await service.redeem_ticket(tickets[2].ticket_id, "s", AUTHORITY)

        received, _ = await asyncio.wait_for(pending, timeout=1)
        self.assertEqual(received, first)
        await stream.aclose()

    async def test_redeem_runs_off_the_event_loop(self):
        service = build_service()
        event = service.create_event(AUTHORITY, 1, name="threaded")
        ticket = service.issue_ticket(event.event_id, commit_secret("s"), 0)

        threads = []
        redeem = service.redeem

        def tracking_redeem(*args, **kwargs):
            threads.append(threading.get_ident())
            return redeem(*args, **kwargs)

        service.redeem = MagicMock(side_effect=tracking_redeem)
        record, _ = await service.redeem_ticket(ticket.ticket_id, "s", AUTHORITY)

        self.assertEqual(record.sequence_number, 1)
        self.assertEqual(len(threads), 1)
        self.assertNotEqual(threads[0], threading.get_ident())


if __name__ == "__main__":
    unittest.main()
