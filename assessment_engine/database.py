"""
Database engine, session factory and shared query helpers
"""
import logging
import sqlite3
from contextlib import contextmanager

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker, Session

from assessment_engine.config import settings

logger = logging.getLogger(__name__)


def _engine_kwargs(url: str) -> dict:
    if url.startswith("sqlite"):
        # Sessions are handed across worker threads by the API and the tests
        return {"connect_args": {"check_same_thread": False}}
    return {"pool_pre_ping": True}


@event.listens_for(Engine, "connect")
def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    # SQLite ignores REFERENCES clauses unless asked per connection
    if isinstance(dbapi_connection, sqlite3.Connection):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


engine = create_engine(settings.DATABASE_URL, **_engine_kwargs(settings.DATABASE_URL))
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
Base = declarative_base()


def get_db():
    """FastAPI dependency yielding a session that is always closed"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def transaction(db: Session):
    """
    Commit the enclosed unit of work, or roll all of it back

    Every read-check-write sequence of the engine runs inside one of these.
    """
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise


def not_deleted(model):
    """Soft-delete predicate shared by every list/find query"""
    return model.deleted_at.is_(None)


def init_db(bind=None):
    """Create all tables"""
    # Import models so that Base.metadata sees every table
    from assessment_engine import models  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)
    logger.info("Database tables created")
