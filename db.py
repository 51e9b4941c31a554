"""
Database wiring (SQLAlchemy 2.x).

The schema is owned by the Remix/Prisma app and is normally migrated already;
`init_db()` only creates missing tables for local runs and tests.
"""
import os
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import StaticPool

import config


class Base(DeclarativeBase):
    pass


def make_engine(url: str = config.DATABASE_URL) -> Engine:
    if url.startswith("sqlite"):
        if url in ("sqlite://", "sqlite:///:memory:"):
            # one shared connection so every session sees the same in-memory db
            return create_engine(
                "sqlite://",
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        path = url.split("sqlite:///", 1)[-1]
        if path:
            os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
        return create_engine(url, connect_args={"check_same_thread": False})
    return create_engine(url, pool_pre_ping=True)


def make_session_factory(engine: Engine) -> sessionmaker:
    # rows are handed out of the session scope, keep their loaded state
    return sessionmaker(bind=engine, expire_on_commit=False)


def init_db(engine: Engine) -> None:
    # model modules register their tables on Base.metadata
    import ledger  # noqa: F401
    import shop_sessions  # noqa: F401
    Base.metadata.create_all(engine)


@contextmanager
def session_scope(factory: sessionmaker):
    """Session per unit of work: commit on success, rollback on error."""
    session: Session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
