"""
Database Session Management

Provides the SQLAlchemy engine and session factory. SQLite is the default
backend; any SQLAlchemy URL (e.g. PostgreSQL) works.
"""

from __future__ import annotations

from typing import Generator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from booklens.db.models import Base


engine: Optional[Engine] = None
SessionLocal: Optional[sessionmaker] = None


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_db_engine(database_url: str, **kwargs) -> Engine:
    """
    Create an engine, switching on foreign keys for SQLite so that
    deleting a document cascades to its chunks and summaries.
    """
    if database_url.startswith("sqlite"):
        kwargs.setdefault("connect_args", {"check_same_thread": False})
    else:
        kwargs.setdefault("pool_pre_ping", True)

    db_engine = create_engine(database_url, **kwargs)
    if db_engine.dialect.name == "sqlite":
        event.listen(db_engine, "connect", _enable_sqlite_foreign_keys)
    return db_engine


def init_db(database_url: str, **kwargs) -> Engine:
    """
    Initialize the module-level engine and session factory and create tables.
    """
    global engine, SessionLocal

    engine = create_db_engine(database_url, **kwargs)
    SessionLocal = sessionmaker(
        bind=engine,
        class_=Session,
        expire_on_commit=False,
        autoflush=False,
    )
    Base.metadata.create_all(engine)
    return engine


def dispose_db() -> None:
    """Release pooled connections."""
    if engine is not None:
        engine.dispose()


def get_session() -> Generator[Session, None, None]:
    """
    Dependency for FastAPI endpoints that need database access.

    Usage:
        @router.get("/items")
        async def get_items(session: Session = Depends(get_session)):
            ...
    """
    if SessionLocal is None:
        raise RuntimeError("Database is not initialized; call init_db() first")

    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
