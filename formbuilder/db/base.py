"""
Form Builder Database Base — SQLAlchemy declarative base, mixins, engine factory.

Provides:
- Base: declarative base for all form builder tables
- TimestampMixin: created_on / saved_on columns
- build_engine: engine factory honouring the storage pool settings
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import Column, DateTime, create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """SQLAlchemy declarative base for all form builder models."""
    pass


class TimestampMixin:
    """Adds created_on and saved_on columns. Values are always UTC."""
    created_on = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    saved_on = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True,
    )


def build_engine(
    url: str,
    pool_size: int = 10,
    max_overflow: int = 20,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
    pool_pre_ping: bool = True,
    **kwargs: Any,
) -> Engine:
    """
    Create an engine for the given URL.

    SQLite engines use SQLAlchemy's default pool for the file/memory mode,
    so the queue-pool sizing arguments are only passed to server databases.
    """
    if make_url(url).get_backend_name() == "sqlite":
        kwargs.setdefault("connect_args", {"check_same_thread": False})
        return create_engine(url, pool_pre_ping=pool_pre_ping, **kwargs)

    return create_engine(
        url,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_timeout=pool_timeout,
        pool_recycle=pool_recycle,
        pool_pre_ping=pool_pre_ping,
        **kwargs,
    )
