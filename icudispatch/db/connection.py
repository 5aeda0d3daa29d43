"""
Database connection and session management.

Uses SQLAlchemy with SQLite for development and PostgreSQL for production.
"""
import logging
from typing import Generator, Optional
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session, declarative_base
from sqlalchemy.pool import StaticPool

from icudispatch.core.config import Config

logger = logging.getLogger(__name__)

# Create declarative base for ORM models
Base = declarative_base()

# Database engine
engine: Optional[Engine] = None
SessionLocal: Optional[sessionmaker] = None


def create_db_engine(database_url: str) -> Engine:
    """Create an engine configured for the given URL."""
    if database_url.startswith("sqlite"):
        connect_args = {
            "check_same_thread": False,
            "timeout": Config.SQLITE_BUSY_TIMEOUT
        }
        if ":memory:" in database_url or database_url in ("sqlite://", "sqlite:///"):
            db_engine = create_engine(
                database_url,
                connect_args=connect_args,
                poolclass=StaticPool,
                echo=Config.DEBUG
            )
        else:
            db_engine = create_engine(
                database_url,
                connect_args=connect_args,
                echo=Config.DEBUG
            )

        # Enable foreign keys for SQLite
        @event.listens_for(db_engine, "connect")
        def set_sqlite_pragma(dbapi_conn, connection_record):
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()
    else:
        # PostgreSQL or other databases
        db_engine = create_engine(
            database_url,
            pool_pre_ping=True,
            echo=Config.DEBUG
        )
    return db_engine


def init_db(database_url: Optional[str] = None) -> sessionmaker:
    """Initialize database connection, create tables and return the session factory."""
    global engine, SessionLocal

    # Register ORM tables on Base.metadata
    from icudispatch.db import tables  # noqa: F401

    db_url = database_url or Config.DATABASE_URL
    logger.info(f"Initializing database: {db_url}")

    engine = create_db_engine(db_url)
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)

    Base.metadata.create_all(bind=engine)

    logger.info("Database initialized successfully")
    return SessionLocal


def get_db_session() -> Generator[Session, None, None]:
    """
    Get database session for dependency injection.

    Usage in FastAPI:
        @app.get("/items")
        def get_items(db: Session = Depends(get_db_session)):
            ...
    """
    if SessionLocal is None:
        init_db()

    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def get_db() -> Session:
    """Get a database session (non-generator version)."""
    if SessionLocal is None:
        init_db()
    return SessionLocal()
