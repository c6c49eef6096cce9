from __future__ import annotations

from collections.abc import Generator
from contextlib import contextmanager
from typing import Any

from loguru import logger
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from config import get_settings
from cadence.core.errors import StorageError
from cadence.db.models.base import Base

_engine: Engine | None = None
_SessionLocal: sessionmaker | None = None


def _engine_kwargs(url: str, statement_timeout_ms: int, echo: bool) -> dict[str, Any]:
    """Connection options per backend. The statement timeout bounds pool queries."""
    kwargs: dict[str, Any] = {"echo": echo, "pool_pre_ping": True}
    if url.startswith("postgresql") and statement_timeout_ms > 0:
        kwargs["connect_args"] = {"options": f"-c statement_timeout={statement_timeout_ms}"}
    elif url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
    return kwargs


def build_engine(url: str | None = None) -> Engine:
    """Create an engine from settings (or an explicit URL)."""
    settings = get_settings()
    url = url or settings.database_url
    return create_engine(
        url,
        **_engine_kwargs(url, settings.db_statement_timeout_ms, settings.log_level == "DEBUG"),
    )


def get_engine() -> Engine:
    """Get or create the database engine (lazy initialization)."""
    global _engine
    if _engine is None:
        _engine = build_engine()
    return _engine


def get_session_factory() -> sessionmaker:
    """Get or create the session factory."""
    global _SessionLocal
    if _SessionLocal is None:
        _SessionLocal = sessionmaker(
            bind=get_engine(), autocommit=False, autoflush=False, expire_on_commit=False
        )
    return _SessionLocal


def init_db(engine: Engine | None = None) -> None:
    """Initialize database tables."""
    Base.metadata.create_all(bind=engine or get_engine())
    logger.info("Database tables initialized")


@contextmanager
def session_scope(factory: sessionmaker | None = None) -> Generator[Session, None, None]:
    """Provide a transactional scope around a series of operations."""
    session = (factory or get_session_factory())()
    try:
        yield session
        session.commit()
    except Exception:  # Intentionally broad - rollback on any error before re-raising
        session.rollback()
        raise
    finally:
        session.close()


def check_database_health(engine: Engine | None = None) -> tuple[str, str | None]:
    """
    Check database connectivity.

    Returns:
        Tuple of (status, error_message). Status is "ok" or "error".
    """
    try:
        with (engine or get_engine()).connect() as conn:
            conn.execute(text("SELECT 1"))
        return "ok", None
    except SQLAlchemyError as e:
        return "error", str(e)


@contextmanager
def storage_errors(operation: str) -> Generator[None, None, None]:
    """Translate SQLAlchemy failures into StorageError, keeping the cause."""
    try:
        yield
    except SQLAlchemyError as e:
        logger.error(f"Storage failure during {operation}: {e}")
        raise StorageError(f"{operation} failed: {e}") from e
