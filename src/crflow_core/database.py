"""Database connection and session management."""
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from .models import Base


def create_db_engine(database_url: str, busy_timeout: float = 30.0) -> Engine:
    """
    Create a SQLAlchemy engine for the workflow tables.

    SQLite connections start every transaction with BEGIN IMMEDIATE so that
    read-then-write units (id allocation, conditional transitions) take the
    write lock up front instead of failing on lock upgrade.

    Args:
        database_url: SQLAlchemy URL
        busy_timeout: Seconds SQLite waits for a competing writer

    Returns:
        Engine: configured engine
    """
    if not database_url.startswith("sqlite"):
        # Conservative pool settings for a shared Postgres instance
        return create_engine(
            database_url,
            pool_pre_ping=True,          # Verify connections before using
            pool_size=3,                 # Base pool of 3 connections
            max_overflow=7,              # Allow up to 10 total connections
            pool_recycle=3600,           # Recycle connections every hour
            pool_timeout=30,             # Timeout after 30 seconds
        )

    kwargs = {"connect_args": {"check_same_thread": False, "timeout": busy_timeout}}
    if database_url in ("sqlite://", "sqlite:///:memory:"):
        # In-memory databases exist per connection; share a single one
        kwargs["poolclass"] = StaticPool
    engine = create_engine(database_url, **kwargs)

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        # Let SQLAlchemy emit BEGIN itself
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


def create_session_factory(engine: Engine) -> sessionmaker:
    """Create the session factory used by the record store."""
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def init_db(engine: Engine) -> None:
    """Create all workflow tables that do not exist yet."""
    Base.metadata.create_all(bind=engine)
