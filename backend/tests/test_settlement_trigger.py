import asyncio
import threading
import unittest

from raven_oracle.schemas.ledger import EngagementEvent
from raven_oracle.services.ledger.memory_backend import MemoryLedgerBackend
from raven_oracle.services.settlement import SettlementAggregator, SettlementResult
from raven_oracle.services.settlement_trigger import SettlementTrigger
from tests.fakes import FakeSubmitter, addr


X = addr(1)


class RecordingAggregator:
    def __init__(self):
        self.triggers = []

    def run(self, trigger):
        self.triggers.append(trigger)
        return SettlementResult(ok=True, trigger=trigger, message="no pending credits")


class TestSettlementTrigger(unittest.TestCase):
    def setUp(self):
        self.ledger = MemoryLedgerBackend()
        self.ledger.record_engagement(EngagementEvent(address=X, action="like", credits=1))

    def test_manual_run_returns_result(self):
        trigger = SettlementTrigger(SettlementAggregator(self.ledger, FakeSubmitter()))
        result = trigger.run("manual")
        self.assertTrue(result.ok)
        self.assertEqual(result.trigger, "manual")
        self.assertEqual(trigger.status()["last_result"]["trigger"], "manual")

    def test_concurrent_run_is_rejected(self):
        gate = threading.Event()
        submitter = FakeSubmitter(block=gate)
        trigger = SettlementTrigger(SettlementAggregator(self.ledger, submitter))
        results = {}

        worker = threading.Thread(target=lambda: results.setdefault("interval", trigger.run("interval")))
        worker.start()
        self.assertTrue(submitter.started.wait(5))

        busy = trigger.run("manual")
        self.assertFalse(busy.ok)
        self.assertEqual(busy.message, "settlement already running")
        self.assertTrue(trigger.status()["running"])

        gate.set()
        worker.join(5)
        self.assertTrue(results["interval"].ok)
        self.assertEqual(len(submitter.calls), 1)
        self.assertFalse(trigger.running)

    def test_non_retryable_failure_halts_until_resume(self):
        submitter = FakeSubmitter(timeout_reasons={"like"})
        trigger = SettlementTrigger(SettlementAggregator(self.ledger, submitter))

        first = trigger.run("interval")
        self.assertFalse(first.retryable)
        self.assertTrue(trigger.status()["halted"])

        blocked = trigger.run("manual")
        self.assertFalse(blocked.ok)
        self.assertTrue(blocked.message.startswith("settlement halted"))
        self.assertEqual(len(submitter.calls), 1)

        self.assertIsNotNone(trigger.resume())
        submitter.timeout_reasons.clear()
        self.assertTrue(trigger.run("manual").ok)
        self.assertIsNone(trigger.resume())

    def test_retryable_failure_does_not_halt(self):
        trigger = SettlementTrigger(SettlementAggregator(self.ledger, FakeSubmitter(fail_reasons={"like"})))
        self.assertFalse(trigger.run("interval").ok)
        self.assertFalse(trigger.status()["halted"])

    def test_aggregator_exception_becomes_result(self):
        class Broken:
            def run(self, trigger):
                raise RuntimeError("ledger unavailable")

        trigger = SettlementTrigger(Broken())
        result = trigger.run("interval")
        self.assertFalse(result.ok)
        self.assertEqual(result.message, "ledger unavailable")
        self.assertFalse(trigger.running)

    def test_interval_timer_runs_aggregator(self):
        aggregator = RecordingAggregator()
        trigger = SettlementTrigger(aggregator, interval_ms=10)

        async def scenario():
            trigger.start()
            self.assertTrue(trigger.status()["timer_active"])
            await asyncio.sleep(0.2)
            await trigger.stop()

        asyncio.run(scenario())
        self.assertGreaterEqual(len(aggregator.triggers), 1)
        self.assertEqual(set(aggregator.triggers), {"interval"})
        self.assertFalse(trigger.status()["timer_active"])

    def test_stop_waits_for_in_flight_run(self):
        gate = threading.Event()
        submitter = FakeSubmitter(block=gate)
        trigger = SettlementTrigger(SettlementAggregator(self.ledger, submitter))
        results = {}

        worker = threading.Thread(target=lambda: results.setdefault("manual", trigger.run("manual")))
        worker.start()
        self.assertTrue(submitter.started.wait(5))
        threading.Timer(0.1, gate.set).start()

        asyncio.run(trigger.stop(drain_timeout_s=5))

        # the run marked the ledger before stop returned
        self.assertFalse(trigger.running)
        self.assertEqual(self.ledger.get_pending_for_user(X).pending_credits, 0)
        worker.join(5)
        self.assertTrue(results["manual"].ok)
        self.assertEqual(trigger.run("manual").message, "settlement stopped")

    def test_stop_gives_up_after_drain_timeout(self):
        gate = threading.Event()
        submitter = FakeSubmitter(block=gate)
        trigger = SettlementTrigger(SettlementAggregator(self.ledger, submitter))
        worker = threading.Thread(target=trigger.run, args=("manual",))
        worker.start()
        self.assertTrue(submitter.started.wait(5))

        with self.assertLogs("raven_oracle.services.settlement_trigger", level="WARNING"):
            asyncio.run(trigger.stop(drain_timeout_s=0.05))
        self.assertTrue(trigger.running)

        gate.set()
        worker.join(5)

    def test_non_positive_interval_disables_timer(self):
        aggregator = RecordingAggregator()
        trigger = SettlementTrigger(aggregator, interval_ms=0)

        async def scenario():
            trigger.start()
            await asyncio.sleep(0.05)
            return trigger.status()["timer_active"]

        self.assertFalse(asyncio.run(scenario()))
        self.assertEqual(aggregator.triggers, [])


if __name__ == "__main__":
    unittest.main()
