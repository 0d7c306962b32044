import hashlib
import unittest
from unittest.mock import MagicMock

from fastapi.testclient import TestClient

from claim_ledger.adapters.http.main import app
from claim_ledger.adapters.memory_store import InMemoryLedgerStore
from claim_ledger.bootstrap import get_ledger_service
from claim_ledger.domain.services import ClaimLedgerService
from claim_ledger.ports.common import IClockPort, UuidIdAdapter

AUTHORITY = "aa" * 32
GUEST = "bb" * 32


class TestValidation(unittest.TestCase):
    def setUp(self):
        self.mock_clock = MagicMock(spec=IClockPort)
        self.mock_clock.now.return_value = 1000
        service = ClaimLedgerService(
            store=InMemoryLedgerStore(), clock=self.mock_clock, id_gen=UuidIdAdapter(), default_height=4
        )
        app.dependency_overrides[get_ledger_service] = lambda: service
        self.client = TestClient(app)

    def tearDown(self):
        app.dependency_overrides.clear()

    def _event_with_ticket(self, secret="s", expires_at=0):
        resp = self.client.post("/events", json={"capacity": 2, "name": "v"}, headers={"X-Principal": AUTHORITY})
        event_id = resp.json()["event_id"]
        resp = self.client.post(
            f"/events/{event_id}/tickets",
            json={"secret_commitment": hashlib.sha256(secret.encode()).hexdigest(), "expires_at": expires_at},
            headers={"X-Principal": AUTHORITY},
        )
        return event_id, resp.json()["ticket_id"]

    def test_create_event_invalid_json(self):
        resp = self.client.post("/events", json={"name": "no-capacity"}, headers={"X-Principal": AUTHORITY})
        self.assertEqual(resp.status_code, 422)

    def test_missing_principal(self):
        resp = self.client.post("/events", json={"capacity": 1})
        self.assertEqual(resp.status_code, 422)

    def test_bad_hex_is_validation_error(self):
        resp = self.client.post("/events", json={"capacity": 1}, headers={"X-Principal": "not-hex"})
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()["detail"]["code"], "VALIDATION_FAILED")

        resp = self.client.get("/events/zz")
        self.assertEqual(resp.status_code, 400)

    def test_zero_capacity(self):
        resp = self.client.post("/events", json={"capacity": 0}, headers={"X-Principal": AUTHORITY})
        self.assertEqual(resp.status_code, 400)

    def test_zero_height(self):
        resp = self.client.post(
            "/events", json={"capacity": 1, "name": "flat", "height": 0}, headers={"X-Principal": AUTHORITY}
        )
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()["detail"]["code"], "VALIDATION_FAILED")

    def test_unknown_ids(self):
        self.assertEqual(self.client.get(f"/events/{'00' * 32}").status_code, 404)
        self.assertEqual(self.client.get(f"/tickets/{'00' * 32}").status_code, 404)
        resp = self.client.post(f"/tickets/{'00' * 32}/redeem", json={"secret": "s"}, headers={"X-Principal": GUEST})
        self.assertEqual(resp.status_code, 404)
        self.assertEqual(resp.json()["detail"]["code"], "NOT_FOUND")

    def test_conflict_error_mapping(self):
        self.client.post("/events", json={"capacity": 1, "name": "dup"}, headers={"X-Principal": AUTHORITY})
        resp = self.client.post("/events", json={"capacity": 1, "name": "dup"}, headers={"X-Principal": AUTHORITY})
        self.assertEqual(resp.status_code, 409)
        self.assertEqual(resp.json()["detail"]["code"], "CONFLICT")

    def test_wrong_secret(self):
        _, ticket_id = self._event_with_ticket("right")
        resp = self.client.post(f"/tickets/{ticket_id}/redeem", json={"secret": "wrong"}, headers={"X-Principal": GUEST})
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()["detail"]["code"], "INVALID_SECRET")

    def test_expired_ticket(self):
        _, ticket_id = self._event_with_ticket(expires_at=1000)
        self.mock_clock.now.return_value = 1001
        resp = self.client.post(f"/tickets/{ticket_id}/redeem", json={"secret": "s"}, headers={"X-Principal": GUEST})
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()["detail"]["code"], "EXPIRED")

    def test_claiming_for_someone_else(self):
        _, ticket_id = self._event_with_ticket()
        resp = self.client.post(
            f"/tickets/{ticket_id}/redeem",
            json={"secret": "s", "claimant": AUTHORITY},
            headers={"X-Principal": GUEST},
        )
        self.assertEqual(resp.status_code, 403)
        self.assertEqual(resp.json()["detail"]["code"], "UNAUTHORIZED")

    def test_proof_of_unclaimed_ticket(self):
        _, ticket_id = self._event_with_ticket()
        resp = self.client.get(f"/tickets/{ticket_id}/proof")
        self.assertEqual(resp.status_code, 404)

    def test_verify_rejects_bad_hex(self):
        resp = self.client.post(
            "/verify",
            json={
                "record": {"event_id": "00" * 32, "claimant": "00" * 32, "sequence_number": 1, "claimed_at": 0},
                "index": 0,
                "sibling_path": ["xyz"],
                "expected_root": "00" * 32,
            },
        )
        self.assertEqual(resp.status_code, 400)

    def test_verify_wrong_length_path_is_invalid(self):
        resp = self.client.post(
            "/verify",
            json={
                "record": {"event_id": "00" * 32, "claimant": "00" * 32, "sequence_number": 1, "claimed_at": 0},
                "index": 0,
                "sibling_path": ["00" * 32],
                "expected_root": "00" * 32,
            },
        )
        self.assertEqual(resp.status_code, 200)
        self.assertFalse(resp.json()["valid"])


if __name__ == "__main__":
    unittest.main()
