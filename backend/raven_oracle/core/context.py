from __future__ import annotations

from dataclasses import dataclass

from fastapi import Request

from raven_oracle.core.settings import Settings
from raven_oracle.services.chain import (
    BatchSubmitter,
    RavenAccessClient,
    build_access_client,
    build_submitter,
    get_web3,
)
from raven_oracle.services.ledger.base import LedgerBackend
from raven_oracle.services.ledger.factory import create_ledger
from raven_oracle.services.settlement import SettlementAggregator
from raven_oracle.services.settlement_trigger import SettlementTrigger


@dataclass
class AppContext:
    """Everything configured once at startup and shared by routes and settlement."""

    settings: Settings
    ledger: LedgerBackend
    access: RavenAccessClient | None
    submitter: BatchSubmitter | None
    aggregator: SettlementAggregator
    trigger: SettlementTrigger

    def close(self) -> None:
        self.ledger.close()


def build_context(
    settings: Settings,
    *,
    ledger: LedgerBackend | None = None,
    access: RavenAccessClient | None = None,
    submitter: BatchSubmitter | None = None,
) -> AppContext:
    if ledger is None:
        ledger = create_ledger(settings)
    if access is None and submitter is None:
        web3 = get_web3(settings)
        access = build_access_client(settings, web3)
        submitter = build_submitter(settings, web3, access)
    aggregator = SettlementAggregator(ledger, submitter)
    trigger = SettlementTrigger(aggregator, interval_ms=settings.batch_interval_ms)
    return AppContext(
        settings=settings,
        ledger=ledger,
        access=access,
        submitter=submitter,
        aggregator=aggregator,
        trigger=trigger,
    )


def get_context(request: Request) -> AppContext:
    return request.app.state.context
