from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any
from uuid import uuid4


STATUS_PENDING = "pending"
STATUS_SETTLED = "settled"


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class EngagementEvent:
    address: str
    action: str
    credits: int
    metadata: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: str(uuid4()))
    created_at_ms: int = field(default_factory=now_ms)
    status: str = STATUS_PENDING
    tx_hash: str | None = None
    settled_at_ms: int | None = None

    def __post_init__(self) -> None:
        if int(self.credits) <= 0:
            raise ValueError("credits must be greater than 0")
        self.credits = int(self.credits)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "action": self.action,
            "credits": self.credits,
            "metadata": self.metadata,
            "created_at": self.created_at_ms,
        }


@dataclass
class CreditCalculationEntry:
    address: str
    reason: str
    parameter: int
    credits: int
    id: str = field(default_factory=lambda: str(uuid4()))
    created_at_ms: int = field(default_factory=now_ms)
    status: str = STATUS_PENDING
    tx_hash: str | None = None
    settled_at_ms: int | None = None

    def __post_init__(self) -> None:
        if int(self.credits) <= 0:
            raise ValueError("credits must be greater than 0")
        self.credits = int(self.credits)
        self.parameter = int(self.parameter)

    @property
    def metadata(self) -> dict[str, Any]:
        return {"reason": self.reason, "parameter": self.parameter}


@dataclass(frozen=True)
class PendingRecord:
    """Minimal projection of a pending record, the input to settlement.

    ``label`` is the action of an engagement or the reason of a calculation.
    """

    id: str
    address: str
    label: str
    credits: int


@dataclass(frozen=True)
class UserPending:
    address: str
    pending_credits: int
    pending_events: list[dict[str, Any]]

    def to_dict(self) -> dict[str, Any]:
        return {
            "address": self.address,
            "pending_credits": self.pending_credits,
            "pending_events": self.pending_events,
        }


@dataclass(frozen=True)
class UserCalculatedCredits:
    address: str
    total_calculated_credits: int

    def to_dict(self) -> dict[str, Any]:
        return {"address": self.address, "total_calculated_credits": self.total_calculated_credits}


@dataclass(frozen=True)
class PendingSnapshot:
    pending_credits: list[dict[str, Any]]
    pending_engagements: list[dict[str, Any]]

    def to_dict(self) -> dict[str, Any]:
        return {
            "pending_credits": self.pending_credits,
            "pending_engagements": self.pending_engagements,
        }
