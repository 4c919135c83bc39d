"""
Form Builder Database Session Management.

init_db() is the single entry point for building an engine and session
factory from the storage configuration; session_scope() wraps one unit of
work in commit/rollback.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Generator

from sqlalchemy.orm import Session, sessionmaker

from formbuilder.db.base import Base, build_engine
from formbuilder.engine.config import StorageConfig

logger = logging.getLogger("formbuilder.db.session")


def init_db(
    url: str,
    create_tables: bool = False,
    pool_size: int = 10,
    max_overflow: int = 20,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
    pool_pre_ping: bool = True,
) -> sessionmaker:
    """
    Build the engine and return a session factory bound to it.

    Args:
        url:           SQLAlchemy database URL.
        create_tables: When True, run Base.metadata.create_all(). Use for
                       development and tests; production schemas are
                       expected to exist already.
        pool_*:        Engine pool settings (ignored for SQLite).
    """
    engine = build_engine(
        url,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_timeout=pool_timeout,
        pool_recycle=pool_recycle,
        pool_pre_ping=pool_pre_ping,
    )
    if create_tables:
        Base.metadata.create_all(engine)
        logger.info(f"Form builder tables ensured on {engine.url.render_as_string(hide_password=True)}")

    return sessionmaker(bind=engine, expire_on_commit=False)


def init_db_from_config(storage: StorageConfig) -> sessionmaker:
    return init_db(
        storage.url,
        create_tables=storage.create_tables,
        pool_size=storage.pool_size,
        max_overflow=storage.max_overflow,
        pool_timeout=storage.pool_timeout,
        pool_recycle=storage.pool_recycle,
        pool_pre_ping=storage.pool_pre_ping,
    )


@contextmanager
def session_scope(factory: sessionmaker) -> Generator[Session, None, None]:
    """
    Context manager for one transaction with auto-commit/rollback.

    Usage:
        with session_scope(factory) as session:
            row = session.get(FormRecord, ("root", "en-US", revision_id))
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


def dispose(factory: sessionmaker) -> None:
    """Close the engine's connection pool. Used during shutdown."""
    engine = factory.kw.get("bind")
    if engine is not None:
        engine.dispose()
