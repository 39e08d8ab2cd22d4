"""
Database connection, session management and the unit of work.

Every multi-row mutation runs inside a single ``UnitOfWork``: it commits when
the block exits cleanly and rolls back on any exception, so readers never see
partial state.
"""
import logging
from typing import Callable, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from .config import Settings
from .errors import PersistenceError
from .tables import Base

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], Session]


def build_engine(settings: Settings) -> Engine:
    """Create the engine for ``settings.DATABASE_URL``."""
    if settings.is_sqlite:
        kwargs = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in settings.DATABASE_URL or settings.DATABASE_URL == "sqlite://":
            # One shared connection, otherwise every checkout gets an empty database
            kwargs["poolclass"] = StaticPool
        return create_engine(settings.DATABASE_URL, echo=settings.DB_ECHO, **kwargs)

    return create_engine(
        settings.DATABASE_URL,
        echo=settings.DB_ECHO,
        pool_pre_ping=True,
        isolation_level="READ COMMITTED",
    )


def build_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def init_db(engine: Engine) -> None:
    """
    Create all tables if they don't exist.

    Safe to call multiple times.
    """
    Base.metadata.create_all(bind=engine)


class UnitOfWork:
    """
    Atomic, all-or-nothing group of persistence operations.

        with UnitOfWork(session_factory) as session:
            session.add(...)

    Commits on a clean exit. Any exception rolls back; SQLAlchemy errors are
    re-raised as ``PersistenceError`` and everything else propagates unchanged.
    """

    def __init__(self, session_factory: SessionFactory):
        self.session_factory = session_factory
        self.session: Optional[Session] = None

    def __enter__(self) -> Session:
        self.session = self.session_factory()
        self.session.begin()
        return self.session

    def __exit__(self, exc_type, exc, tb) -> bool:
        session = self.session
        try:
            if exc_type is None:
                try:
                    session.commit()
                except SQLAlchemyError as e:
                    session.rollback()
                    logger.error("Commit failed, unit of work rolled back: %s", e)
                    raise PersistenceError("Unit of work could not be committed", e) from e
                return False

            session.rollback()
            if isinstance(exc, SQLAlchemyError):
                logger.error("Unit of work rolled back: %s", exc)
                raise PersistenceError("Unit of work failed", exc) from exc
            return False
        finally:
            session.close()
            self.session = None
