"""
SmartNotes Backend — Database Session Management
==================================================

What:  Async SQLAlchemy engine, session factory, and FastAPI dependency.
Why:   Centralizes all database connection logic in one place.
How:   Creates an async engine with connection pooling, provides a session
       dependency that auto-commits on success and auto-rolls-back on error.
Who:   Used by route handlers via FastAPI's dependency injection system.
When:  Engine is created at module import; sessions are created per-request.

Connection Pooling Strategy:
    pool_size=20:      Persistent connections for normal load
    max_overflow=10:   Temporary connections for traffic spikes (total max = 30)
    pool_pre_ping:     Validates connections before use
    pool_recycle=3600: Recycles connections every hour

    SQLite URLs (used by the test suite) skip the pool arguments.
"""

import logging
from datetime import datetime, timezone
from typing import Any, AsyncGenerator, Callable, Dict, List, Optional, Union

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase, Session, SessionTransaction

from smartnotes.config import settings

logger = logging.getLogger(__name__)


def _engine_options(url: str) -> Dict[str, Any]:
    options: Dict[str, Any] = {"echo": settings.log_level == "DEBUG"}
    if not url.startswith("sqlite"):
        options.update(
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_pre_ping=settings.db_pool_pre_ping,
            pool_recycle=3600,
        )
    return options


# ── Engine Configuration ──────────────────────────────────────────────────
engine = create_async_engine(settings.database_url, **_engine_options(settings.database_url))

# ── Session Factory ───────────────────────────────────────────────────────
# expire_on_commit=False: attributes stay loaded after commit, so response
# models can be built from ORM objects without another round-trip.
async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    """
    Base class for all SQLAlchemy ORM models.

    Shares a single metadata object used by Alembic and by the test suite's
    `create_all` fixture.
    """
    pass


def utcnow() -> datetime:
    """Timezone-aware current time. All timestamps are stored in UTC."""
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Normalize a datetime to aware UTC.

    SQLite hands back naive datetimes even for timezone-aware columns,
    and clients may send naive ISO strings; comparisons need both sides aware.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# ── Commit-bound Side Effects ─────────────────────────────────────────────
# Realtime notifications and file removals must not happen for work that is
# later rolled back. Services park them on the session with after_commit();
# they run when the outermost transaction commits and are dropped otherwise.
PENDING_ACTIONS_KEY = "smartnotes.after_commit"


def after_commit(db: Union[AsyncSession, Session], action: Callable[[], Any]) -> None:
    """Run `action` once the session's outermost transaction commits."""
    pending: List[Callable[[], Any]] = db.info.setdefault(PENDING_ACTIONS_KEY, [])
    pending.append(action)


@event.listens_for(Session, "after_commit")
def _run_pending_actions(session: Session) -> None:
    # Releasing a SAVEPOINT also fires after_commit; only the real commit counts
    if session.in_nested_transaction():
        return
    for action in session.info.pop(PENDING_ACTIONS_KEY, []):
        try:
            action()
        except Exception as e:
            logger.error("After-commit action failed: %s", str(e), exc_info=True)


@event.listens_for(Session, "after_transaction_end")
def _drop_pending_actions(session: Session, transaction: SessionTransaction) -> None:
    if transaction.parent is None:
        dropped = session.info.pop(PENDING_ACTIONS_KEY, [])
        if dropped:
            logger.debug("Dropped %d after-commit actions of a rolled back transaction", len(dropped))



# ── Session Dependency ────────────────────────────────────────────────────
async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency that provides a database session per request.

    How it works:
        1. Creates a new session from the factory
        2. Yields it to the route handler
        3. On success: commits the transaction
        4. On error: rolls back and re-raises for the global error handler
        5. Always: closes the session (returns connection to pool)
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


# ── Lifecycle Helpers ─────────────────────────────────────────────────────
async def dispose_engine() -> None:
    """Gracefully closes all connections in the pool during shutdown."""
    await engine.dispose()
