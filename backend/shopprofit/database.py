"""Database engine, session factory and FastAPI dependency.

WHAT:
    Builds the SQLAlchemy engine from DATABASE_URL and exposes `get_db()` for
    routers, `get_sync_session()` for background tasks and `init_db()`.

WHY:
    Background syncs outlive the request that triggered them, so they open
    their own session through `get_sync_session()` instead of borrowing the
    request's.

USAGE:
    from shopprofit.database import get_db, get_sync_session

    @router.get("/items")
    def get_items(db: Session = Depends(get_db)):
        ...

    with get_sync_session() as db:
        ...

REFERENCES:
    - shopprofit/routers/ (consumers of get_db)
    - shopprofit/services/sync_scheduler.py (consumer of get_sync_session)
"""

import logging
import os
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

logger = logging.getLogger(__name__)


# =============================================================================
# ENVIRONMENT CONFIGURATION
# =============================================================================

def _get_database_url() -> str:
    """Get DATABASE_URL from environment, loading .env if needed.

    Raises:
        RuntimeError: If DATABASE_URL is not configured
    """
    database_url = os.getenv("DATABASE_URL")
    if not database_url:
        # Attempt to load from local .env for developer convenience
        from shopprofit.utils.env import load_env_file
        load_env_file()
        database_url = os.getenv("DATABASE_URL")

    if not database_url:
        raise RuntimeError(
            "DATABASE_URL is not set. "
            "Ensure backend/.env is loaded or env var is exported."
        )

    # Heroku-style URLs are rejected by SQLAlchemy 1.4+
    if database_url.startswith("postgres://"):
        database_url = database_url.replace("postgres://", "postgresql://", 1)

    return database_url


DATABASE_URL = _get_database_url()


# =============================================================================
# ENGINE
# =============================================================================

# SQLite (tests/dev) does not support pool_size/max_overflow.
if DATABASE_URL.startswith("sqlite"):
    engine = create_engine(
        DATABASE_URL,
        connect_args={"check_same_thread": False},
    )
else:
    engine = create_engine(
        DATABASE_URL,
        pool_size=10,
        max_overflow=20,
        pool_recycle=3600,
        pool_pre_ping=True,
    )

SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)


# Base is defined in shopprofit.models to keep a single registry
from .models import Base  # noqa: E402


def init_db() -> None:
    """Create any missing tables."""
    Base.metadata.create_all(bind=engine)
    logger.info("[DATABASE] Tables ensured (%d)", len(Base.metadata.tables))


# =============================================================================
# FASTAPI DEPENDENCIES
# =============================================================================

def get_db() -> Generator[Session, None, None]:
    """Yield a database session for FastAPI dependency injection."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def get_sync_session() -> Generator[Session, None, None]:
    """Context manager for sessions outside FastAPI (background syncs, scripts).

    Example:
        with get_sync_session() as db:
            ledger = CostLedger(db)
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
