"""Database engine layer for the reconciliation core.

Reconciliation runs are batch processes, so all storage goes through a sync
engine (psycopg2). The engine is built lazily on first use so importing the
package never opens a connection. Session factories are configured with
autoflush=False and expire_on_commit=False for explicit transaction control.
"""

from functools import lru_cache

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker

from .config import settings


@lru_cache(maxsize=1)
def get_sync_engine() -> Engine:
    """Return the process-wide sync engine, creating it on first call."""
    return create_engine(
        settings.sync_database_url,
        pool_size=settings.db_pool_size,
        pool_pre_ping=settings.db_pool_pre_ping,
        echo=settings.debug,
    )


def make_session_factory(engine: Engine) -> sessionmaker[Session]:
    """Build a session factory bound to *engine*."""
    return sessionmaker(
        engine,
        autoflush=False,
        expire_on_commit=False,
    )


def get_sync_session() -> Session:
    """Get a sync session for scripts.

    Caller is responsible for closing the session::

        session = get_sync_session()
        try:
            ...
        finally:
            session.close()
    """
    return make_session_factory(get_sync_engine())()
