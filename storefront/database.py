"""
Database connection and session management.
Uses SQLAlchemy for the primary catalog store.
"""

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

from storefront.config import get_settings
from storefront.logger import get_logger

logger = get_logger("database")

# Base class for all database models (must be defined before engine)
Base = declarative_base()


def make_engine(database_url: str) -> Engine:
    """Create an engine; SQLite needs cross-thread access for the threadpool."""
    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    return create_engine(database_url, pool_pre_ping=True, connect_args=connect_args)


engine = make_engine(get_settings().database_url)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db() -> None:
    """Create tables if they don't exist (use migrations in production)."""
    try:
        Base.metadata.create_all(bind=engine)
    except Exception as e:
        logger.warning("Could not run Base.metadata.create_all: %s", e)


def get_db():
    """
    Dependency function that provides a database session.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
