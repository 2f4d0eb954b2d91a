"""
Engine and session factory construction.

Nothing is created at import time: the application factory and the tests
build their own engine and dispose of it on teardown.
"""
from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from entitlements.core import config


def build_engine(database_url: Optional[str] = None) -> Engine:
    url = database_url or config.DATABASE_URL
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False, "timeout": 30}}
        if ":memory:" in url or url in ("sqlite://", "sqlite:///"):
            kwargs["poolclass"] = StaticPool
        return create_engine(url, **kwargs)
    return create_engine(url, pool_pre_ping=True)


def build_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(engine: Engine) -> None:
    """Create all tables registered on Base.metadata."""
    from entitlements.db.base import Base
    import entitlements.db.models  # noqa: F401

    Base.metadata.create_all(bind=engine)
