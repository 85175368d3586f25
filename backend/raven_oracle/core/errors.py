from __future__ import annotations


class InvalidAddress(ValueError):
    def __init__(self, value: object) -> None:
        super().__init__(f"invalid address: {value!r}")
        self.value = value


class ChainNotConfigured(RuntimeError):
    pass


class SettlementError(RuntimeError):
    """Failure of one batch group during a settlement run.

    ``retryable`` tells the trigger whether the next run may resubmit the
    group. A transaction that was broadcast but never confirmed may still be
    mined later, so it is not retryable.
    """

    retryable = True

    def __init__(self, message: str, *, tx_hash: str | None = None) -> None:
        super().__init__(message)
        self.tx_hash = tx_hash


class SubmissionError(SettlementError):
    retryable = True


class ConfirmationTimeout(SettlementError):
    retryable = False


class DuplicateRecord(ValueError):
    def __init__(self, record_id: str) -> None:
        super().__init__(f"record already exists: {record_id}")
        self.record_id = record_id
