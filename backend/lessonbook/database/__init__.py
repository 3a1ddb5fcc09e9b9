"""
Database engine, session factory, and metadata shared across the application.
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
import logging
from typing import Any, Generator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeMeta, Session, declarative_base, sessionmaker

from lessonbook.core.config import settings

logger = logging.getLogger(__name__)

_POOL_KWARGS: dict[str, Any] = {
    "pool_size": 5,
    "max_overflow": 5,
    "pool_timeout": 5,
    "pool_recycle": 300,
    "pool_pre_ping": True,
}

_engine: Optional[Engine] = None

SessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False)

Base: DeclarativeMeta = declarative_base()


def _add_pool_events(engine: Engine) -> None:
    @event.listens_for(engine, "connect")
    def receive_connect(dbapi_connection: Any, connection_record: Any) -> None:
        connection_record.info["connect_time"] = datetime.now()
        logger.debug("Database connection established")

    @event.listens_for(engine, "checkin")
    def receive_checkin(dbapi_connection: Any, connection_record: Any) -> None:
        logger.debug("Connection returned to pool")


def get_engine() -> Engine:
    """Create the application engine on first use."""
    global _engine
    if _engine is None:
        db_url = settings.database_url
        kwargs = {} if db_url.startswith("sqlite") else dict(_POOL_KWARGS)
        _engine = create_engine(db_url, **kwargs)
        _add_pool_events(_engine)
        SessionLocal.configure(bind=_engine)
    return _engine


def init_session_factory(engine: Optional[Engine] = None) -> None:
    """Bind the session factory (idempotent). Tests pass their own engine."""
    global _engine
    if engine is not None:
        _engine = engine
        SessionLocal.configure(bind=engine)
        return
    get_engine()


def get_db() -> Generator[Session, None, None]:
    """Get database session with proper cleanup."""
    init_session_factory()
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


@contextmanager
def get_db_session() -> Generator[Session, None, None]:
    """Session scope for background jobs and scripts."""
    init_session_factory()
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


__all__ = [
    "Base",
    "SessionLocal",
    "get_db",
    "get_db_session",
    "get_engine",
    "init_session_factory",
]
