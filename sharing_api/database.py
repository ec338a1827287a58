"""Engine, session factory and declarative base.

SQLite is the default store; set ``DATABASE_URL`` to a ``postgresql://``
URL (with the ``postgres`` extra installed) for shared deployments.
"""

import logging
import re

from sqlalchemy import create_engine, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker

from .core.config import settings

logger = logging.getLogger(__name__)

DATABASE_URL = settings.database_url


def is_postgresql() -> bool:
    return DATABASE_URL.startswith("postgresql")


def masked_url() -> str:
    """DATABASE_URL with any password replaced, safe to log."""
    return re.sub(r"://([^:/@]+):([^@]+)@", r"://\1:***@", DATABASE_URL)


if is_postgresql():
    engine = create_engine(
        DATABASE_URL,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_timeout=settings.db_pool_timeout,
        pool_recycle=settings.db_pool_recycle,
        pool_pre_ping=True,
    )
else:
    # Concurrent redemptions wait up to 30s on SQLite's write lock
    # instead of failing with "database is locked".
    engine = create_engine(
        DATABASE_URL,
        connect_args={"check_same_thread": False, "timeout": 30},
    )

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def check_connection() -> None:
    """Exit the process with a readable message if the database is unreachable."""
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        hint = (
            "check that PostgreSQL is running and the credentials in DATABASE_URL"
            if is_postgresql()
            else "check that the database directory exists and is writable"
        )
        logger.critical("Database connection failed (%s): %s; %s", masked_url(), e, hint)
        raise SystemExit(1) from e
    logger.info("Database connection verified: %s", masked_url())


def init_db() -> None:
    """Create any missing tables."""
    from . import models  # noqa: F401  (registers every model on Base.metadata)

    Base.metadata.create_all(bind=engine)


def get_db():
    """Request-scoped session; rolls back if the route raised."""
    db = SessionLocal()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
