from sqlalchemy import create_engine
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import declarative_base
from sqlalchemy.orm import sessionmaker

from griva.config import get_settings

SQLALCHEMY_DATABASE_URL = get_settings().database_url

# connect_args is required for SQLite to allow multi-threaded access (FastAPI runs async)
_connect_args = {"check_same_thread": False} if SQLALCHEMY_DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(SQLALCHEMY_DATABASE_URL, connect_args=_connect_args)

# Each request gets its own DB session
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base class for all ORM models
Base = declarative_base()


def get_db():
    """FastAPI dependency that provides a DB session and ensures it's closed after use."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_session_factory():
    """FastAPI dependency for handlers that open their own sessions (the ingestion workers)."""
    return SessionLocal


def dialect_insert(session, model):
    """
    Return an INSERT construct for `model` that supports ON CONFLICT clauses
    on the dialect the session is bound to (PostgreSQL or SQLite).
    """
    if session.get_bind().dialect.name == "postgresql":
        return postgresql.insert(model)
    return sqlite.insert(model)
