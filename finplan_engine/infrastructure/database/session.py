"""Database session management with connection pooling"""

from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session
from finplan_engine.config import settings


def build_engine(database_url: str) -> Engine:
    """Create an engine; pooling options apply to server databases only"""
    if database_url.startswith("sqlite"):
        return create_engine(database_url, connect_args={"check_same_thread": False})

    # Connection pool: max 20 connections, recycle after 1 hour to avoid stale connections
    return create_engine(
        database_url,
        pool_pre_ping=True,  # Verify connections before using
        pool_size=10,
        max_overflow=10,
        pool_recycle=3600,
    )


engine = build_engine(settings.database_url)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@contextmanager
def transaction(db: Session) -> Iterator[None]:
    """Commit on success; roll back and re-raise on any error"""
    try:
        yield
        db.commit()
    except Exception:
        db.rollback()
        raise
