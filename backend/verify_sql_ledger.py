from raven_oracle.core.database import make_engine
from raven_oracle.schemas.ledger import EngagementEvent
from raven_oracle.services.ledger.sql_backend import SqlLedgerBackend
from raven_oracle.services.settlement import SettlementAggregator


class _EchoSubmitter:
    def __init__(self) -> None:
        self.batches = []

    def submit_batch(self, addresses, amounts, reason):
        self.batches.append((reason, dict(zip(addresses, amounts))))
        return "0x" + f"{len(self.batches):064x}"

    def wait_for_confirmation(self, tx_hash):
        return tx_hash


def main() -> None:
    ledger = SqlLedgerBackend(make_engine("sqlite:///:memory:"), create_schema=True)
    x = "0x" + "11" * 20
    y = "0x" + "22" * 20
    try:
        ledger.record_engagement(EngagementEvent(address=x, action="like", credits=10))
        ledger.record_engagement(EngagementEvent(address=x, action="repost", credits=5))
        total = ledger.record_engagement(EngagementEvent(address=y, action="like", credits=3))
        assert total == 3, total
        assert ledger.get_pending_for_user(x).pending_credits == 15

        ledger.record_calculated_credits(x, "social_quest", 2, 20)

        submitter = _EchoSubmitter()
        result = SettlementAggregator(ledger, submitter).run("manual")
        assert result.ok, result.to_dict()
        assert len(submitter.batches) == 3, submitter.batches
        assert dict(submitter.batches)["like"] == {x: 10, y: 3}

        assert ledger.get_pending_for_user(x).pending_credits == 0
        assert ledger.fetch_pending_credit_calculations() == []
        assert ledger.get_calculated_credits_for_user(x).total_calculated_credits == 20
    finally:
        ledger.close()


if __name__ == "__main__":
    main()
    print("OK")
