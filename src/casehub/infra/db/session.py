from __future__ import annotations

from collections.abc import Callable
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from src.casehub.errors import StoreError

SessionFactory = Callable[[], Session]


def create_sqlalchemy_engine(database_url: str) -> Engine:
    return create_engine(database_url, future=True)


def create_sqlalchemy_session_factory(
    database_url: Optional[str] = None,
    *,
    engine: Optional[Engine] = None,
) -> SessionFactory:
    """Create a factory producing SQLAlchemy sessions.

    Either a database URL or an existing engine must be supplied; tests pass an
    engine bound to an in-memory SQLite database.
    """

    if engine is None:
        if not database_url:
            raise ValueError("database_url or engine is required")
        engine = create_sqlalchemy_engine(database_url)

    SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False, class_=Session)

    def _factory() -> Session:
        return SessionLocal()

    return _factory


@contextmanager
def session_scope(session_factory: SessionFactory) -> Iterator[Session]:
    """Yield a session, translating driver failures into StoreError.

    Callers commit explicitly; anything left uncommitted is rolled back when
    the session closes.
    """

    session = session_factory()
    try:
        yield session
    except SQLAlchemyError as exc:
        session.rollback()
        raise StoreError("Data store operation failed", details={"error": exc.__class__.__name__}) from exc
    finally:
        session.close()
