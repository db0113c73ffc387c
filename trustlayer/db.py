"""
Database configuration and session management
"""
import logging

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

logger = logging.getLogger("trustlayer.db")

# Create base class for models
Base = declarative_base()


def make_engine(database_url: str) -> Engine:
    connect_args = {}
    kwargs = {}
    if database_url.startswith("sqlite"):
        connect_args = {"check_same_thread": False}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            # One shared connection so every session sees the same in-memory DB
            kwargs["poolclass"] = StaticPool
    return create_engine(database_url, future=True, connect_args=connect_args, **kwargs)


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def init_db(engine: Engine) -> None:
    """Create the key and subscription tables if missing"""
    # Make sure all models are imported so Base.metadata is populated
    from . import models  # noqa: F401
    Base.metadata.create_all(bind=engine)
    logger.info("Database tables ensured", extra={"component": "db"})
