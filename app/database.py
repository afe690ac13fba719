"""Database session management and connectivity checks."""

import logging
from collections.abc import Generator

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from app.config import get_settings

logger = logging.getLogger("mindmaps")

settings = get_settings()
engine: Engine | None = (
    create_engine(
        settings.DATABASE_URL,
        echo=settings.DEBUG,
        pool_pre_ping=True,
        connect_args={"check_same_thread": False} if settings.DATABASE_URL.startswith("sqlite") else {},
    )
    if settings.DATABASE_URL
    else None
)
SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


def get_db() -> Generator[Session | None, None, None]:
    """Yield a database session, or None when no database is configured."""
    if engine is None:
        yield None
        return
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


class DatabaseConnectivity:
    """Live check deciding whether the database is the authoritative user store.

    The check runs on every call; nothing is cached between operations.
    Transitions between modes are logged so an outage is visible.
    """

    def __init__(self, db_engine: Engine | None) -> None:
        self._engine = db_engine
        self._last_available: bool | None = None

    def is_available(self) -> bool:
        available = self._ping()
        if available != self._last_available:
            if available:
                logger.info("Database reachable - using persistent user storage")
            else:
                logger.warning("Database unavailable - falling back to in-memory user storage")
            self._last_available = available
        return available

    def _ping(self) -> bool:
        if self._engine is None:
            return False
        try:
            with self._engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            logger.debug("Database ping failed: %s", e)
            return False
        return True


_connectivity = DatabaseConnectivity(engine)


def get_connectivity() -> DatabaseConnectivity:
    """Get the process-wide connectivity checker."""
    return _connectivity


def init_db() -> None:
    """Create missing tables when the database is reachable."""
    if engine is None or not _connectivity.is_available():
        return
    Base.metadata.create_all(bind=engine)
