"""
Settlement aggregator.

Turns every pending ledger record into the fewest ``awardCreditsBatch`` calls:
one per distinct action (engagements) or reason (credit calculations), with
one summed amount per address. Groups are submitted one at a time and each is
marked settled only after its transaction confirms.

A failing group stops the run. Groups settled earlier in the run stay settled;
the failing group and everything after it stay pending for the next run.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from raven_oracle.core.errors import SettlementError
from raven_oracle.schemas.ledger import PendingRecord
from raven_oracle.services.chain import BatchSubmitter
from raven_oracle.services.ledger.base import LedgerBackend

logger = logging.getLogger(__name__)


KIND_ENGAGEMENT = "engagement"
KIND_CALCULATED = "calculated"


@dataclass
class BatchGroup:
    kind: str
    reason: str
    addresses: list[str] = field(default_factory=list)
    amounts: list[int] = field(default_factory=list)
    ids: list[str] = field(default_factory=list)

    @property
    def total_credits(self) -> int:
        return sum(self.amounts)


@dataclass(frozen=True)
class BatchResult:
    kind: str
    reason: str
    tx_hash: str
    addresses: int
    total_credits: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.kind,
            "reason": self.reason,
            "tx_hash": self.tx_hash,
            "addresses": self.addresses,
            "total_credits": self.total_credits,
        }


@dataclass
class SettlementResult:
    ok: bool
    trigger: str
    message: str | None = None
    reason: str | None = None
    tx_results: list[BatchResult] = field(default_factory=list)
    retryable: bool = True
    tx_hash: str | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "ok": self.ok,
            "trigger": self.trigger,
            "tx_results": [r.to_dict() for r in self.tx_results],
        }
        if self.message is not None:
            out["message"] = self.message
        if self.reason is not None:
            out["reason"] = self.reason
        if not self.ok:
            out["retryable"] = self.retryable
        if self.tx_hash is not None:
            out["tx_hash"] = self.tx_hash
        return out


def group_pending(records: Iterable[PendingRecord], kind: str) -> list[BatchGroup]:
    """Group records by label, then by address, summing credits per address.

    Labels and addresses keep first-seen order.
    """
    per_label: dict[str, dict[str, list[Any]]] = {}
    for rec in records:
        per_address = per_label.setdefault(rec.label, {})
        bucket = per_address.setdefault(rec.address, [0, []])
        bucket[0] += int(rec.credits)
        bucket[1].append(rec.id)

    groups: list[BatchGroup] = []
    for label, per_address in per_label.items():
        group = BatchGroup(kind=kind, reason=label)
        for address, (amount, ids) in per_address.items():
            group.addresses.append(address)
            group.amounts.append(amount)
            group.ids.extend(ids)
        groups.append(group)
    return groups


class SettlementAggregator:
    def __init__(self, ledger: LedgerBackend, submitter: BatchSubmitter | None) -> None:
        self.ledger = ledger
        self.submitter = submitter

    def _mark_settled(self, group: BatchGroup) -> Callable[[Iterable[str], str], None]:
        if group.kind == KIND_ENGAGEMENT:
            return self.ledger.mark_engagements_settled
        return self.ledger.mark_credit_calculations_settled

    def run(self, trigger: str = "interval") -> SettlementResult:
        pending_engagements = self.ledger.fetch_pending_engagements()
        pending_calculations = self.ledger.fetch_pending_credit_calculations()

        if not pending_engagements and not pending_calculations:
            return SettlementResult(ok=True, trigger=trigger, message="no pending credits")

        if self.submitter is None:
            logger.warning("settlement.skipped trigger=%s reason=signer_not_configured", trigger)
            return SettlementResult(ok=False, trigger=trigger, message="signer not configured")

        groups = group_pending(pending_engagements, KIND_ENGAGEMENT) + group_pending(
            pending_calculations, KIND_CALCULATED
        )
        logger.info(
            "settlement.run.start trigger=%s engagements=%s calculations=%s groups=%s",
            trigger,
            len(pending_engagements),
            len(pending_calculations),
            len(groups),
        )

        tx_results: list[BatchResult] = []
        for group in groups:
            try:
                sent = self.submitter.submit_batch(group.addresses, group.amounts, group.reason)
                tx_hash = self.submitter.wait_for_confirmation(sent)
            except SettlementError as exc:
                logger.error(
                    "settlement.batch.failed trigger=%s kind=%s reason=%s retryable=%s error=%s",
                    trigger,
                    group.kind,
                    group.reason,
                    exc.retryable,
                    exc,
                )
                return SettlementResult(
                    ok=False,
                    trigger=trigger,
                    reason=group.reason,
                    message=str(exc) or "tx failed",
                    tx_results=tx_results,
                    retryable=exc.retryable,
                    tx_hash=exc.tx_hash,
                )
            except Exception as exc:
                logger.exception("settlement.batch.error trigger=%s kind=%s reason=%s", trigger, group.kind, group.reason)
                return SettlementResult(
                    ok=False,
                    trigger=trigger,
                    reason=group.reason,
                    message=str(exc) or "tx failed",
                    tx_results=tx_results,
                )

            try:
                self._mark_settled(group)(group.ids, tx_hash)
            except Exception as exc:
                # Confirmed on chain but still pending off chain: a rerun would award twice.
                logger.exception(
                    "settlement.ledger.update_failed kind=%s reason=%s tx=%s ids=%s",
                    group.kind,
                    group.reason,
                    tx_hash,
                    len(group.ids),
                )
                return SettlementResult(
                    ok=False,
                    trigger=trigger,
                    reason=group.reason,
                    message=f"ledger update failed after confirmation: {exc}",
                    tx_results=tx_results,
                    retryable=False,
                    tx_hash=tx_hash,
                )

            result = BatchResult(
                kind=group.kind,
                reason=group.reason,
                tx_hash=tx_hash,
                addresses=len(group.addresses),
                total_credits=group.total_credits,
            )
            tx_results.append(result)
            logger.info(
                "settlement.batch.confirmed kind=%s reason=%s tx=%s addresses=%s credits=%s",
                group.kind,
                group.reason,
                tx_hash,
                result.addresses,
                result.total_credits,
            )

        return SettlementResult(ok=True, trigger=trigger, tx_results=tx_results)
