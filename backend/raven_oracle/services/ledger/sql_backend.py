from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from raven_oracle.core.database import Base, make_session_factory
from raven_oracle.core.errors import DuplicateRecord
from raven_oracle.models.ledger import CreditCalculation, Engagement, User
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

logger = logging.getLogger(__name__)


def _dump_metadata(metadata: dict[str, Any] | None) -> str | None:
    if not metadata:
        return None
    return json.dumps(metadata, ensure_ascii=False, sort_keys=True)


def _load_metadata(raw: str | None) -> dict[str, Any]:
    if not raw:
        return {}
    try:
        value = json.loads(raw)
    except ValueError:
        return {}
    return value if isinstance(value, dict) else {}


def _engagement_dict(row: Engagement) -> dict[str, Any]:
    return {
        "id": row.id,
        "action": row.action,
        "credits": int(row.credits or 0),
        "metadata": _load_metadata(row.metadata_json),
        "created_at": int(row.created_at_ms or 0),
    }


class SqlLedgerBackend(LedgerBackend):
    """Durable ledger on SQLAlchemy.

    Users own engagements and credit calculations through foreign keys. Running
    totals are cached on the user row and only ever changed by single UPDATE
    statements inside the transaction that writes the records, with the user
    rows locked first (sorted by address) when more than one is touched.
    """

    name = "sql"

    def __init__(self, engine: Engine, *, create_schema: bool = False) -> None:
        self.engine = engine
        self._session_factory = make_session_factory(engine)
        if create_schema:
            Base.metadata.create_all(bind=engine)

    def close(self) -> None:
        self.engine.dispose()

    # -----------------------------
    # helpers
    # -----------------------------
    def _ensure_user(self, db: Session, address: str) -> None:
        dialect = db.get_bind().dialect.name
        values = {"address": address, "pending_credits": 0, "calculated_credits": 0}
        if dialect == "postgresql":
            db.execute(pg_insert(User).values(**values).on_conflict_do_nothing(index_elements=["address"]))
        elif dialect == "sqlite":
            db.execute(sqlite_insert(User).values(**values).on_conflict_do_nothing(index_elements=["address"]))
        elif db.get(User, address) is None:
            db.add(User(**values))
            db.flush()

    def _lock_users(self, db: Session, addresses: Iterable[str]) -> None:
        ordered = sorted(set(addresses))
        if ordered:
            db.query(User).filter(User.address.in_(ordered)).order_by(User.address).with_for_update().all()

    # -----------------------------
    # engagements
    # -----------------------------
    def record_engagement(self, event: EngagementEvent) -> int:
        with self._session_factory.begin() as db:
            if db.get(Engagement, event.id) is not None:
                raise DuplicateRecord(event.id)
            self._ensure_user(db, event.address)
            self._lock_users(db, [event.address])
            db.add(
                Engagement(
                    id=event.id,
                    user_address=event.address,
                    action=event.action,
                    credits=event.credits,
                    metadata_json=_dump_metadata(event.metadata),
                    created_at_ms=event.created_at_ms,
                    status=STATUS_PENDING,
                )
            )
            db.flush()
            db.query(User).filter(User.address == event.address).update(
                {User.pending_credits: func.coalesce(User.pending_credits, 0) + event.credits},
                synchronize_session=False,
            )
            total = db.query(User.pending_credits).filter(User.address == event.address).scalar()
        return int(total or 0)

    def get_pending_for_user(self, address: str) -> UserPending:
        with self._session_factory() as db:
            user = db.get(User, address)
            if user is None:
                return UserPending(address=address, pending_credits=0, pending_events=[])
            rows = (
                db.query(Engagement)
                .filter(Engagement.user_address == address, Engagement.status == STATUS_PENDING)
                .all()
            )
            return UserPending(
                address=address,
                pending_credits=int(user.pending_credits or 0),
                pending_events=[_engagement_dict(r) for r in rows],
            )

    def get_all_pending(self) -> PendingSnapshot:
        with self._session_factory() as db:
            users = db.query(User.address, User.pending_credits).filter(User.pending_credits > 0).all()
            rows = db.query(Engagement).filter(Engagement.status == STATUS_PENDING).all()
            return PendingSnapshot(
                pending_credits=[{"address": a, "credits": int(c or 0)} for a, c in users],
                pending_engagements=[{"address": r.user_address, **_engagement_dict(r)} for r in rows],
            )

    def fetch_pending_engagements(self) -> list[PendingRecord]:
        with self._session_factory() as db:
            rows = (
                db.query(Engagement.id, Engagement.user_address, Engagement.action, Engagement.credits)
                .filter(Engagement.status == STATUS_PENDING)
                .order_by(Engagement.created_at_ms)
                .all()
            )
            return [PendingRecord(id=i, address=a, label=act, credits=int(c or 0)) for i, a, act, c in rows]

    def mark_engagements_settled(self, ids: Iterable[str], tx_hash: str) -> None:
        id_list = list(dict.fromkeys(ids))
        if not id_list:
            return
        with self._session_factory.begin() as db:
            addresses = [
                a
                for (a,) in db.query(Engagement.user_address)
                .filter(Engagement.id.in_(id_list), Engagement.status == STATUS_PENDING)
                .distinct()
                .all()
            ]
            if not addresses:
                return
            self._lock_users(db, addresses)
            db.query(Engagement).filter(
                Engagement.id.in_(id_list), Engagement.status == STATUS_PENDING
            ).update(
                {
                    Engagement.status: STATUS_SETTLED,
                    Engagement.tx_hash: tx_hash,
                    Engagement.settled_at_ms: now_ms(),
                },
                synchronize_session=False,
            )
            still_pending = (
                select(func.coalesce(func.sum(Engagement.credits), 0))
                .where(Engagement.user_address == User.address, Engagement.status == STATUS_PENDING)
                .correlate(User)
                .scalar_subquery()
            )
            db.query(User).filter(User.address.in_(addresses)).update(
                {User.pending_credits: still_pending},
                synchronize_session=False,
            )
        logger.info("ledger.engagements.settled count=%s users=%s tx=%s", len(id_list), len(addresses), tx_hash)

    # -----------------------------
    # credit calculations
    # -----------------------------
    def record_calculated_credits(self, address: str, reason: str, parameter: int, credits: int) -> int:
        entry = CreditCalculationEntry(address=address, reason=reason, parameter=parameter, credits=credits)
        with self._session_factory.begin() as db:
            self._ensure_user(db, address)
            self._lock_users(db, [address])
            db.add(
                CreditCalculation(
                    id=entry.id,
                    user_address=address,
                    reason=reason,
                    parameter=str(entry.parameter),
                    credits=entry.credits,
                    metadata_json=_dump_metadata(entry.metadata),
                    created_at_ms=entry.created_at_ms,
                    status=STATUS_PENDING,
                )
            )
            db.flush()
            db.query(User).filter(User.address == address).update(
                {User.calculated_credits: func.coalesce(User.calculated_credits, 0) + entry.credits},
                synchronize_session=False,
            )
            total = db.query(User.calculated_credits).filter(User.address == address).scalar()
        return int(total or 0)

    def get_calculated_credits_for_user(self, address: str) -> UserCalculatedCredits:
        with self._session_factory() as db:
            total = db.query(User.calculated_credits).filter(User.address == address).scalar()
            return UserCalculatedCredits(address=address, total_calculated_credits=int(total or 0))

    def fetch_pending_credit_calculations(self) -> list[PendingRecord]:
        with self._session_factory() as db:
            rows = (
                db.query(
                    CreditCalculation.id,
                    CreditCalculation.user_address,
                    CreditCalculation.reason,
                    CreditCalculation.credits,
                )
                .filter(CreditCalculation.status == STATUS_PENDING)
                .order_by(CreditCalculation.created_at_ms)
                .all()
            )
            return [PendingRecord(id=i, address=a, label=r, credits=int(c or 0)) for i, a, r, c in rows]

    def mark_credit_calculations_settled(self, ids: Iterable[str], tx_hash: str) -> None:
        id_list = list(dict.fromkeys(ids))
        if not id_list:
            return
        # The cumulative calculated_credits total is a lifetime counter and is
        # left alone here.
        with self._session_factory.begin() as db:
            updated = (
                db.query(CreditCalculation)
                .filter(CreditCalculation.id.in_(id_list), CreditCalculation.status == STATUS_PENDING)
                .update(
                    {
                        CreditCalculation.status: STATUS_SETTLED,
                        CreditCalculation.tx_hash: tx_hash,
                        CreditCalculation.settled_at_ms: now_ms(),
                    },
                    synchronize_session=False,
                )
            )
        logger.info("ledger.calculations.settled count=%s tx=%s", updated, tx_hash)
