"""
Ledger backend contract shared by the SQL and in-memory implementations.

Every backend owns persistence and mutation of engagement events and credit
calculations. Callers pass checksummed addresses (see core.addresses); reads
for unknown users return zero-valued results.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable

from raven_oracle.schemas.ledger import (
    EngagementEvent,
    PendingRecord,
    PendingSnapshot,
    UserCalculatedCredits,
    UserPending,
)


class LedgerBackend(ABC):
    name = "abstract"

    @abstractmethod
    def record_engagement(self, event: EngagementEvent) -> int:
        """Persist a pending event and return the user's new pending_credits.

        Raises DuplicateRecord when ``event.id`` was already recorded.
        """

    @abstractmethod
    def get_pending_for_user(self, address: str) -> UserPending:
        ...

    @abstractmethod
    def get_all_pending(self) -> PendingSnapshot:
        ...

    @abstractmethod
    def fetch_pending_engagements(self) -> list[PendingRecord]:
        ...

    @abstractmethod
    def mark_engagements_settled(self, ids: Iterable[str], tx_hash: str) -> None:
        """Settle exactly ``ids`` and recompute pending_credits of the affected users
        from their remaining pending events."""

    @abstractmethod
    def record_calculated_credits(self, address: str, reason: str, parameter: int, credits: int) -> int:
        """Persist a pending calculation and return the new cumulative total."""

    @abstractmethod
    def get_calculated_credits_for_user(self, address: str) -> UserCalculatedCredits:
        ...

    @abstractmethod
    def fetch_pending_credit_calculations(self) -> list[PendingRecord]:
        ...

    @abstractmethod
    def mark_credit_calculations_settled(self, ids: Iterable[str], tx_hash: str) -> None:
        ...

    def close(self) -> None:
        return None
