"""
DocVault Database Session Management.

Single entry point for engine creation plus a commit/rollback context
manager. Services receive the sessionmaker; they never build engines.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Dict, Generator

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from docvault.db.base import Base


def init_db(
    db_url: str,
    create_tables: bool = True,
    pool_pre_ping: bool = True,
    pool_recycle: int = 300,
) -> sessionmaker:
    """
    Create the engine and return a sessionmaker bound to it.

    In-memory SQLite URLs get a StaticPool so every session shares the one
    connection (tests and local demos).
    """
    kwargs: Dict[str, Any] = {"pool_pre_ping": pool_pre_ping}
    if db_url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if db_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
    else:
        kwargs["pool_recycle"] = pool_recycle

    engine = create_engine(db_url, **kwargs)
    if create_tables:
        Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, expire_on_commit=False)


@contextmanager
def session_scope(factory: sessionmaker) -> Generator[Session, None, None]:
    """
    Context manager for DB sessions with auto-commit/rollback.

    Usage:
        with session_scope(factory) as session:
            user = session.query(User).filter_by(email=email).first()
    """
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
