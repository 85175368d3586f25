from __future__ import annotations

import asyncio
import logging
import threading
from typing import Any

from raven_oracle.services.settlement import SettlementAggregator, SettlementResult

logger = logging.getLogger(__name__)


class SettlementTrigger:
    """Runs the aggregator from the interval timer or on demand, one run at a time.

    A run that starts while another is in progress is rejected, not queued. A
    non-retryable failure halts further runs until ``resume()``.
    """

    def __init__(self, aggregator: SettlementAggregator, *, interval_ms: int = 0) -> None:
        self.aggregator = aggregator
        self.interval_ms = int(interval_ms or 0)
        self._run_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._halted_reason: str | None = None
        self._last_result: SettlementResult | None = None
        self._task: asyncio.Task | None = None
        self._stopped = False

    @property
    def running(self) -> bool:
        return self._run_lock.locked()

    @property
    def halted_reason(self) -> str | None:
        with self._state_lock:
            return self._halted_reason

    def run(self, trigger: str) -> SettlementResult:
        if self._stopped:
            return SettlementResult(ok=False, trigger=trigger, message="settlement stopped")

        halted = self.halted_reason
        if halted is not None:
            logger.warning("settlement.trigger.halted trigger=%s reason=%s", trigger, halted)
            return SettlementResult(ok=False, trigger=trigger, message=f"settlement halted: {halted}", retryable=False)

        if not self._run_lock.acquire(blocking=False):
            logger.info("settlement.trigger.busy trigger=%s", trigger)
            return SettlementResult(ok=False, trigger=trigger, message="settlement already running")

        try:
            try:
                result = self.aggregator.run(trigger)
            except Exception as exc:
                logger.exception("settlement.trigger.error trigger=%s", trigger)
                result = SettlementResult(ok=False, trigger=trigger, message=str(exc) or "settlement failed")

            with self._state_lock:
                self._last_result = result
                if not result.ok and not result.retryable:
                    detail = result.message or "unknown"
                    if result.tx_hash:
                        detail = f"{detail} (tx {result.tx_hash})"
                    self._halted_reason = detail
            return result
        finally:
            self._run_lock.release()

    def resume(self) -> str | None:
        with self._state_lock:
            previous = self._halted_reason
            self._halted_reason = None
        if previous is not None:
            logger.warning("settlement.trigger.resumed previous_halt=%s", previous)
        return previous

    def status(self) -> dict[str, Any]:
        with self._state_lock:
            last = self._last_result.to_dict() if self._last_result else None
            halted = self._halted_reason
        return {
            "running": self.running,
            "halted": halted is not None,
            "halted_reason": halted,
            "interval_ms": self.interval_ms,
            "timer_active": self._task is not None and not self._task.done(),
            "last_result": last,
        }

    async def _loop(self) -> None:
        delay = self.interval_ms / 1000.0
        while True:
            await asyncio.sleep(delay)
            try:
                await asyncio.to_thread(self.run, "interval")
            except Exception:
                logger.exception("settlement.interval.error")

    def start(self) -> None:
        self._stopped = False
        if self.interval_ms <= 0:
            logger.info("settlement.interval.disabled interval_ms=%s", self.interval_ms)
            return
        if self._task is not None and not self._task.done():
            return
        self._task = asyncio.get_running_loop().create_task(self._loop())
        logger.info("settlement.interval.started interval_ms=%s", self.interval_ms)

    async def stop(self, drain_timeout_s: float = 30.0) -> None:
        """Cancel the timer and wait for an in-flight run to finish.

        A run already handed to a worker thread cannot be cancelled, so this
        waits up to ``drain_timeout_s`` for it before the caller releases the
        ledger. Runs requested after this point are refused.
        """
        self._stopped = True
        task = self._task
        self._task = None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        acquired = await asyncio.to_thread(self._run_lock.acquire, True, drain_timeout_s)
        if acquired:
            self._run_lock.release()
        else:
            logger.warning("settlement.trigger.drain_timeout timeout_s=%s", drain_timeout_s)
