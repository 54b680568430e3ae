from __future__ import annotations

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from meraki.core.config import settings


def make_engine(db_url: str) -> Engine:
    if db_url.startswith("sqlite") and ":memory:" in db_url:
        # For in-memory SQLite (tests) we need a single shared connection across threads.
        # StaticPool makes the same connection reused for the whole process.
        return create_engine(
            db_url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
            pool_pre_ping=True,
        )
    if db_url.startswith("sqlite"):
        return create_engine(db_url, connect_args={"check_same_thread": False}, pool_pre_ping=True)
    return create_engine(db_url, pool_pre_ping=True)


def make_session_factory(bind: Engine) -> sessionmaker:
    return sessionmaker(bind=bind, autoflush=False, autocommit=False, expire_on_commit=False)


engine = make_engine(settings.DATABASE_URL)

SessionLocal = make_session_factory(engine)
