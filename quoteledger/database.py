"""Database configuration and session management."""
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

from quoteledger.config import settings


def normalize_database_url(url: str) -> str:
    """Hosted Postgres hands out postgres:// URLs; SQLAlchemy only accepts postgresql://."""
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql://", 1)
    return url


def make_engine(url: str, **engine_options) -> Engine:
    """
    Engine for either backend.

    SQLite gets cross-thread access for the FastAPI worker pool and has
    foreign keys switched on to match Postgres.
    """
    url = normalize_database_url(url)
    if url.startswith("sqlite"):
        engine = create_engine(url, connect_args={"check_same_thread": False}, **engine_options)

        @event.listens_for(engine, "connect")
        def _enable_foreign_keys(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return engine

    engine_options.setdefault("pool_pre_ping", True)
    engine_options.setdefault("pool_size", settings.DB_POOL_SIZE)
    engine_options.setdefault("max_overflow", settings.DB_MAX_OVERFLOW)
    return create_engine(url, **engine_options)


SQLALCHEMY_DATABASE_URL = normalize_database_url(settings.DATABASE_URL)

engine = make_engine(SQLALCHEMY_DATABASE_URL)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """Dependency for FastAPI endpoints to get database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
