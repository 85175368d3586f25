import base64
import unittest

from fastapi.testclient import TestClient

from main import create_app
from raven_oracle.core.context import build_context
from raven_oracle.core.settings import Settings
from raven_oracle.services.ledger.memory_backend import MemoryLedgerBackend
from tests.fakes import FakeAccess, FakeSubmitter, addr


X = addr(0xA1)


def _settings(**overrides) -> Settings:
    s = Settings()
    s.database_url = None
    s.batch_interval_ms = 0
    s.operator_auth_enabled = False
    for k, v in overrides.items():
        setattr(s, k, v)
    return s


class ApiTestCase(unittest.TestCase):
    settings_overrides: dict = {}

    def setUp(self):
        self.ledger = MemoryLedgerBackend()
        self.access = FakeAccess()
        self.submitter = FakeSubmitter()
        self.ctx = build_context(
            _settings(**self.settings_overrides),
            ledger=self.ledger,
            access=self.access,
            submitter=self.submitter,
        )
        self.client = TestClient(create_app(self.ctx))
        self.client.__enter__()

    def tearDown(self):
        self.client.__exit__(None, None, None)


class TestLedgerEndpoints(ApiTestCase):
    def test_health_reports_backend(self):
        resp = self.client.get("/health")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json(), {"status": "ok", "ledger": "memory"})

    def test_record_engagement_normalizes_address_and_action(self):
        resp = self.client.post("/engagement", json={"address": X.lower(), "action": "LIKE", "metadata": {"post": "1"}})
        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertEqual(body["address"], X)
        self.assertEqual(body["action"], "like")
        self.assertEqual(body["credits"], 1)
        self.assertEqual(body["pending_credits"], 1)

        resp = self.client.post("/engagement", json={"address": X, "action": "repost"})
        self.assertEqual(resp.json()["pending_credits"], 4)

    def test_record_engagement_validation(self):
        resp = self.client.post("/engagement", json={"address": "0x1234", "action": "like"})
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()["detail"], "valid address required")

        resp = self.client.post("/engagement", json={"address": X, "action": ""})
        self.assertEqual(resp.status_code, 400)

        resp = self.client.post("/engagement", json={"address": X, "action": "teleport"})
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()["detail"], "unsupported action")
        self.assertEqual(self.ledger.fetch_pending_engagements(), [])

    def test_pending_reads(self):
        self.client.post("/engagement", json={"address": X, "action": "comment"})

        resp = self.client.get(f"/users/{X.lower()}/credits/pending")
        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertEqual(body["address"], X)
        self.assertEqual(body["pending_credits"], 2)
        self.assertEqual(len(body["pending_events"]), 1)

        snapshot = self.client.get("/credits/pending").json()
        self.assertEqual(snapshot["pending_credits"], [{"address": X, "credits": 2}])

    def test_unknown_address_reads_zero(self):
        other = addr(0xB2)
        self.assertEqual(self.client.get(f"/users/{other}/credits/pending").json()["pending_credits"], 0)
        self.assertEqual(self.client.get(f"/users/{other}/credits/calculated").json()["total_calculated_credits"], 0)

    def test_invalid_address_in_path(self):
        resp = self.client.get("/users/not-an-address/credits/pending")
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()["detail"], "invalid address")


class TestCreditEndpoints(ApiTestCase):
    def test_calculate(self):
        resp = self.client.post("/credits/calculate", json={"reason": "social_quest", "parameter": 3})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json(), {"credits": "7"})

    def test_calculate_rejects_bad_parameter(self):
        for parameter in (None, "3", True, -1, 1.5):
            resp = self.client.post("/credits/calculate", json={"reason": "social_quest", "parameter": parameter})
            self.assertEqual(resp.status_code, 400, parameter)
        resp = self.client.post("/credits/calculate", json={"parameter": 3})
        self.assertEqual(resp.json()["detail"], "reason required")

    def test_calculate_and_store_accumulates(self):
        for _ in range(2):
            resp = self.client.post(
                "/credits/calculate-and-store",
                json={"address": X, "reason": "prompt_streak", "parameter": 5},
            )
            self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertEqual(body["credits"], "7")
        self.assertEqual(body["total_calculated_credits"], "14")
        self.assertEqual(body["parameter"], "5")
        self.assertEqual(self.client.get(f"/users/{X}/credits/calculated").json()["total_calculated_credits"], 14)

    def test_calculate_and_store_rejects_zero_credits(self):
        self.access.estimate = 0
        resp = self.client.post(
            "/credits/calculate-and-store",
            json={"address": X, "reason": "prompt_streak", "parameter": 0},
        )
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(self.ledger.fetch_pending_credit_calculations(), [])

    def test_initial_grant(self):
        resp = self.client.post("/credits/initial-grant", json={"user": X})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["data"], f"award:{X}:50:initial_grant")

        self.access.credits = 10
        resp = self.client.post("/credits/initial-grant", json={"user": X})
        self.assertEqual(resp.status_code, 400)

    def test_initial_grant_refused_for_active_subscriber(self):
        self.access.subscription = {"plan_id": 1, "plan": {"active": True}}
        resp = self.client.post("/credits/initial-grant", json={"user": X})
        self.assertEqual(resp.status_code, 400)

    def test_onchain_reads_stringify_large_ints(self):
        self.access.credits = 2**200
        resp = self.client.get(f"/users/{X}/credits")
        self.assertEqual(resp.json()["credits"], str(2**200))

        self.access.subscription = {"plan_id": 2, "expires_at": 1700000000, "plan": {"active": True, "price_units": 129_000_000}}
        sub = self.client.get(f"/users/{X}/subscription").json()
        self.assertEqual(sub["plan"]["price_units"], "129000000")
        self.assertIs(sub["plan"]["active"], True)
        self.assertTrue(self.client.get(f"/users/{X}/has-active-subscription").json()["has_active_subscription"])

    def test_memory_update(self):
        resp = self.client.post("/memory/update", json={"user": X, "memory_hash": "bafy123"})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["data"], f"memory:{X}:bafy123")
        resp = self.client.post("/memory/update", json={"user": X})
        self.assertEqual(resp.status_code, 400)


class TestInferenceEndpoints(ApiTestCase):
    def _subscription(self, *, used=0, cap=3000, expires_at=1_800_000_000, active=True):
        return {
            "plan_id": 1,
            "expires_at": expires_at,
            "used_this_period": used,
            "plan": {"price_units": 99_000_000, "monthly_cap": cap, "active": active},
        }

    def test_estimate(self):
        resp = self.client.post("/inference/estimate", json={"mode": "full", "quantity": 3})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json(), {"mode": "full", "quantity": "3", "cost": "18"})

        resp = self.client.post("/inference/estimate", json={"mode": "Tags"})
        self.assertEqual(resp.json()["cost"], "2")

    def test_estimate_validation(self):
        self.assertEqual(self.client.post("/inference/estimate", json={}).json()["detail"], "mode required")
        resp = self.client.post("/inference/estimate", json={"mode": "psychic"})
        self.assertEqual(resp.json()["detail"], "unsupported mode")
        for quantity in (0, -1, 1.5, "2", True):
            resp = self.client.post("/inference/estimate", json={"mode": "basic", "quantity": quantity})
            self.assertEqual(resp.status_code, 400, quantity)

    def test_authorize_prefers_subscription(self):
        self.access.subscription = self._subscription(used=10)
        self.access.credits = 100
        body = self.client.post("/inference/authorize", json={"user": X, "mode": "basic"}).json()
        self.assertEqual(body["user"], X)
        self.assertTrue(body["authorized"])
        self.assertEqual(body["source"], "subscription")
        self.assertEqual(body["subscription_remaining"], "2990")

    def test_authorize_falls_back_to_credits(self):
        self.access.subscription = self._subscription(used=3000)
        self.access.credits = 12
        body = self.client.post("/inference/authorize", json={"user": X, "mode": "full", "quantity": 2}).json()
        self.assertTrue(body["authorized"])
        self.assertEqual(body["source"], "credits")
        self.assertEqual(body["cost"], "12")

    def test_authorize_denied(self):
        self.access.subscription = self._subscription(expires_at=self.access.now_s - 1)
        self.access.credits = 3
        body = self.client.post("/inference/authorize", json={"user": X, "mode": "price_accuracy"}).json()
        self.assertFalse(body["authorized"])
        self.assertIsNone(body["source"])
        self.assertIsNone(body["subscription_remaining"])

    def test_price_accuracy_cap(self):
        self.access.subscription = self._subscription(used=3000, cap=5000)
        body = self.client.post("/inference/authorize", json={"user": X, "mode": "price_accuracy"}).json()
        self.assertFalse(body["authorized"])
        body = self.client.post("/inference/authorize", json={"user": X, "mode": "basic"}).json()
        self.assertEqual(body["source"], "subscription")

    def test_authorize_validation(self):
        resp = self.client.post("/inference/authorize", json={"user": "0x12", "mode": "basic"})
        self.assertEqual(resp.json()["detail"], "valid user address required")
        resp = self.client.post("/inference/authorize", json={"user": X, "mode": "nope"})
        self.assertEqual(resp.status_code, 400)


class TestChainNotConfigured(unittest.TestCase):
    def test_chain_endpoints_answer_503(self):
        ctx = build_context(_settings(), ledger=MemoryLedgerBackend(), access=None, submitter=FakeSubmitter())
        with TestClient(create_app(ctx)) as client:
            resp = client.post("/credits/calculate", json={"reason": "x", "parameter": 1})
            self.assertEqual(resp.status_code, 503)
            self.assertEqual(client.get(f"/users/{X}/credits").status_code, 503)
            self.assertEqual(client.post("/inference/authorize", json={"user": X, "mode": "basic"}).status_code, 503)
            self.assertEqual(client.post("/inference/estimate", json={"mode": "basic"}).status_code, 200)
            # ledger routes do not need the chain
            self.assertEqual(client.post("/engagement", json={"address": X, "action": "like"}).status_code, 200)


class TestSettlementEndpoints(ApiTestCase):
    def test_manual_settle(self):
        self.client.post("/engagement", json={"address": X, "action": "like"})
        resp = self.client.post("/credits/settle")
        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertTrue(body["ok"])
        self.assertEqual(body["trigger"], "manual")
        self.assertEqual(body["tx_results"][0]["reason"], "like")
        self.assertEqual(self.client.get(f"/users/{X}/credits/pending").json()["pending_credits"], 0)

    def test_settle_with_nothing_pending(self):
        body = self.client.post("/credits/settle").json()
        self.assertEqual(body["message"], "no pending credits")
        self.assertEqual(self.submitter.calls, [])

    def test_status_and_resume(self):
        status = self.client.get("/credits/settle/status").json()
        self.assertFalse(status["running"])
        self.assertFalse(status["halted"])
        self.assertEqual(self.client.post("/credits/settle/resume").json(), {"ok": True, "previous_halt": None})


class TestOperatorAuth(ApiTestCase):
    settings_overrides = {
        "operator_auth_enabled": True,
        "operator_username": "ops",
        "operator_password": "secret",
    }

    def test_settle_requires_credentials(self):
        self.assertEqual(self.client.post("/credits/settle").status_code, 401)

        bad = base64.b64encode(b"ops:wrong").decode()
        resp = self.client.post("/credits/settle", headers={"Authorization": f"Basic {bad}"})
        self.assertEqual(resp.status_code, 401)

        good = base64.b64encode(b"ops:secret").decode()
        resp = self.client.post("/credits/settle", headers={"Authorization": f"Basic {good}"})
        self.assertEqual(resp.status_code, 200)

    def test_public_reads_stay_open(self):
        self.assertEqual(self.client.get(f"/users/{X}/credits/pending").status_code, 200)


if __name__ == "__main__":
    unittest.main()
