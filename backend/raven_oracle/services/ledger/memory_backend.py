from __future__ import annotations

import threading
from collections.abc import Iterable
from dataclasses import replace

from raven_oracle.core.errors import DuplicateRecord
from raven_oracle.schemas.ledger import (
    STATUS_PENDING,
    STATUS_SETTLED,
    CreditCalculationEntry,
    EngagementEvent,
    PendingRecord,
    PendingSnapshot,
    UserCalculatedCredits,
    UserPending,
    now_ms,
)
from raven_oracle.services.ledger.base import LedgerBackend


class MemoryLedgerBackend(LedgerBackend):
    """Process-local ledger. Lost on restart; one process only."""

    name = "memory"

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._engagements: dict[str, EngagementEvent] = {}
        self._calculations: dict[str, CreditCalculationEntry] = {}
        self._pending_totals: dict[str, int] = {}
        self._calculated_totals: dict[str, int] = {}

    def _recompute_pending(self, address: str) -> None:
        total = sum(
            e.credits
            for e in self._engagements.values()
            if e.address == address and e.status == STATUS_PENDING
        )
        if total > 0:
            self._pending_totals[address] = total
        else:
            self._pending_totals.pop(address, None)

    def record_engagement(self, event: EngagementEvent) -> int:
        with self._lock:
            if event.id in self._engagements:
                raise DuplicateRecord(event.id)
            self._engagements[event.id] = replace(
                event, metadata=dict(event.metadata or {}), status=STATUS_PENDING, tx_hash=None, settled_at_ms=None
            )
            total = self._pending_totals.get(event.address, 0) + event.credits
            self._pending_totals[event.address] = total
            return total

    def get_pending_for_user(self, address: str) -> UserPending:
        with self._lock:
            events = [
                e.to_dict()
                for e in self._engagements.values()
                if e.address == address and e.status == STATUS_PENDING
            ]
            return UserPending(
                address=address,
                pending_credits=self._pending_totals.get(address, 0),
                pending_events=events,
            )

    def get_all_pending(self) -> PendingSnapshot:
        with self._lock:
            totals = [
                {"address": address, "credits": credits}
                for address, credits in self._pending_totals.items()
                if credits > 0
            ]
            events = [
                {"address": e.address, **e.to_dict()}
                for e in self._engagements.values()
                if e.status == STATUS_PENDING
            ]
            return PendingSnapshot(pending_credits=totals, pending_engagements=events)

    def fetch_pending_engagements(self) -> list[PendingRecord]:
        with self._lock:
            return [
                PendingRecord(id=e.id, address=e.address, label=e.action, credits=e.credits)
                for e in sorted(self._engagements.values(), key=lambda e: e.created_at_ms)
                if e.status == STATUS_PENDING
            ]

    def mark_engagements_settled(self, ids: Iterable[str], tx_hash: str) -> None:
        id_set = set(ids)
        if not id_set:
            return
        settled_at = now_ms()
        with self._lock:
            affected: set[str] = set()
            for event_id in id_set:
                e = self._engagements.get(event_id)
                if e is None or e.status != STATUS_PENDING:
                    continue
                e.status = STATUS_SETTLED
                e.tx_hash = tx_hash
                e.settled_at_ms = settled_at
                affected.add(e.address)
            for address in affected:
                self._recompute_pending(address)

    def record_calculated_credits(self, address: str, reason: str, parameter: int, credits: int) -> int:
        entry = CreditCalculationEntry(address=address, reason=reason, parameter=parameter, credits=credits)
        with self._lock:
            self._calculations[entry.id] = entry
            total = self._calculated_totals.get(address, 0) + entry.credits
            self._calculated_totals[address] = total
            return total

    def get_calculated_credits_for_user(self, address: str) -> UserCalculatedCredits:
        with self._lock:
            return UserCalculatedCredits(
                address=address,
                total_calculated_credits=self._calculated_totals.get(address, 0),
            )

    def fetch_pending_credit_calculations(self) -> list[PendingRecord]:
        with self._lock:
            return [
                PendingRecord(id=c.id, address=c.address, label=c.reason, credits=c.credits)
                for c in sorted(self._calculations.values(), key=lambda c: c.created_at_ms)
                if c.status == STATUS_PENDING
            ]

    def mark_credit_calculations_settled(self, ids: Iterable[str], tx_hash: str) -> None:
        id_set = set(ids)
        if not id_set:
            return
        settled_at = now_ms()
        with self._lock:
            for calc_id in id_set:
                c = self._calculations.get(calc_id)
                if c is None or c.status != STATUS_PENDING:
                    continue
                c.status = STATUS_SETTLED
                c.tx_hash = tx_hash
                c.settled_at_ms = settled_at
