"""
Declarative base plus engine and session factories.

Engines and session factories are built explicitly by the process entry point
(``create_app`` / the Celery worker) from a ``Settings`` instance and handed to
the components that need them.
"""

from __future__ import annotations

from contextlib import contextmanager
import logging
from typing import Any, Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ..core.config import Settings

logger = logging.getLogger(__name__)

_DEFAULT_CONNECT_ARGS: dict[str, Any] = {
    "keepalives": 1,
    "keepalives_idle": 15,
    "keepalives_interval": 5,
    "keepalives_count": 3,
    # Fail fast on slow queries so the API layer recovers quickly.
    "options": "-c statement_timeout=15000",
    "connect_timeout": 5,
    "application_name": "sessionbook",
}


class Base(DeclarativeBase):
    """Declarative base shared by all models."""


def _sqlite_engine(db_url: str, echo: bool) -> Engine:
    connect_args: dict[str, Any] = {"check_same_thread": False, "timeout": 30}
    if db_url.rstrip("/").endswith(("sqlite://", ":memory:")):
        return create_engine(
            db_url,
            echo=echo,
            poolclass=StaticPool,
            connect_args=connect_args,
            future=True,
        )
    return create_engine(db_url, echo=echo, connect_args=connect_args, future=True)


def create_db_engine(settings: Settings) -> Engine:
    """Create the SQLAlchemy engine for the configured database."""
    db_url = settings.database_url
    if settings.is_sqlite:
        engine = _sqlite_engine(db_url, settings.database_echo)
    else:
        engine = create_engine(
            db_url,
            echo=settings.database_echo,
            pool_size=settings.database_pool_size,
            max_overflow=settings.database_max_overflow,
            pool_pre_ping=True,
            pool_recycle=30,
            pool_use_lifo=True,
            connect_args=dict(_DEFAULT_CONNECT_ARGS),
            future=True,
        )

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection: Any, connection_record: Any) -> None:
        logger.debug("Database connection established")

    return engine


def create_session_factory(engine: Engine) -> sessionmaker[Session]:
    """Session factory bound to ``engine``; commits never expire loaded rows."""
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


@contextmanager
def session_scope(factory: sessionmaker[Session]) -> Iterator[Session]:
    """Provide a session that is rolled back on error and always closed."""
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
