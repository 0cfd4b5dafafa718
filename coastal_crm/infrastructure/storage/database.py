"""
Database Connection and Session Management
"""
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import NullPool, StaticPool
from contextlib import contextmanager
from typing import Iterator, Optional
import logging

from coastal_crm.core.config import get_settings
from coastal_crm.infrastructure.storage.models import Base

logger = logging.getLogger(__name__)

_engine: Optional[Engine] = None
_session_factory: Optional[sessionmaker] = None


def create_db_engine(database_url: str) -> Engine:
    """
    Create an engine for the given URL.

    SQLite gets a shared connection for in-memory databases so every session
    sees the same data; other databases skip pooling.
    """
    if database_url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in database_url or database_url in ("sqlite://", "sqlite:///"):
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, echo=False, **kwargs)

    return create_engine(
        database_url,
        poolclass=NullPool,
        echo=False,  # Set to True for debugging SQL queries
    )


def create_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def get_engine() -> Engine:
    global _engine
    if _engine is None:
        _engine = create_db_engine(get_settings().database_url)
    return _engine


def get_session_factory() -> sessionmaker:
    global _session_factory
    if _session_factory is None:
        _session_factory = create_session_factory(get_engine())
    return _session_factory


def init_db(engine: Optional[Engine] = None) -> None:
    """Create any missing tables"""
    engine = engine or get_engine()
    Base.metadata.create_all(bind=engine)
    logger.info(f"Database ready: {engine.url.render_as_string(hide_password=True)}")


@contextmanager
def session_scope(factory: sessionmaker) -> Iterator[Session]:
    """
    Transactional scope around a series of operations.

    Usage:
        with session_scope(factory) as db:
            db.add(call)
    """
    db = factory()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


@contextmanager
def get_db() -> Iterator[Session]:
    """
    Get database session with automatic cleanup

    Usage:
        with get_db() as db:
            campaigns = db.query(Campaign).all()
    """
    with session_scope(get_session_factory()) as db:
        yield db
