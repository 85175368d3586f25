from __future__ import annotations

import logging

from sqlalchemy.exc import SQLAlchemyError

from raven_oracle.core.database import make_engine
from raven_oracle.core.settings import Settings
from raven_oracle.services.ledger.base import LedgerBackend
from raven_oracle.services.ledger.memory_backend import MemoryLedgerBackend
from raven_oracle.services.ledger.sql_backend import SqlLedgerBackend

logger = logging.getLogger(__name__)


def create_ledger(settings: Settings) -> LedgerBackend:
    """Pick the ledger backend once at startup.

    A missing DATABASE_URL selects the in-memory ledger. A configured database
    that cannot be reached also falls back to memory instead of refusing to
    start, so record and read endpoints stay up.
    """
    if not settings.database_url:
        logger.warning("ledger.backend.memory reason=database_not_configured persistent=false")
        return MemoryLedgerBackend()

    try:
        engine = make_engine(settings.database_url)
        backend = SqlLedgerBackend(engine, create_schema=settings.db_auto_create)
        with engine.connect():
            pass
    except (SQLAlchemyError, ImportError, ValueError):
        logger.exception(
            "ledger.backend.sql_failed falling back to in-memory ledger; pending credits will NOT survive a restart"
        )
        return MemoryLedgerBackend()

    logger.info("ledger.backend.sql dialect=%s", engine.dialect.name)
    return backend
