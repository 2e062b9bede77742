"""
Database connection via SQLAlchemy.

PostgreSQL (psycopg3) is the system of record in production; any other
SQLAlchemy URL set through DATABASE_URL works too (tests use SQLite).
"""

from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, scoped_session, declarative_base

from carenet.config import config

# SQLAlchemy base for model declarations
Base = declarative_base()

# Engine and session factory (initialized lazily)
_engine = None
_session_factory = None


def get_engine():
    """Get or create the SQLAlchemy engine."""
    global _engine
    if _engine is None:
        db_url = config.get_database_url()
        if db_url.startswith("postgresql://"):
            # Use psycopg3 dialect
            db_url = db_url.replace("postgresql://", "postgresql+psycopg://")

        if db_url.startswith("postgresql"):
            _engine = create_engine(
                db_url,
                echo=config.SQL_ECHO,
                pool_pre_ping=True,  # Verify connections before use
                pool_recycle=300,  # Recycle connections every 5 minutes
                pool_reset_on_return="rollback",
            )

            @event.listens_for(_engine, "checkout")
            def checkout_listener(dbapi_conn, connection_record, connection_proxy):
                """Ensure connection is in clean state when checked out."""
                dbapi_conn.rollback()
        else:
            _engine = create_engine(db_url, echo=config.SQL_ECHO)

    return _engine


def get_db_session():
    """Get a scoped database session.

    Returns the thread-local session from the scoped session factory.
    Callers that own a unit of work should call close_db_session() when done.
    """
    global _session_factory
    if _session_factory is None:
        _session_factory = scoped_session(
            sessionmaker(bind=get_engine(), autocommit=False, autoflush=False)
        )

    return _session_factory()


def init_db():
    """Initialize database tables (for development/testing)."""
    # Import models so they register with Base.metadata
    from carenet import models  # noqa: F401

    Base.metadata.create_all(bind=get_engine())


def close_db_session():
    """Roll back anything left open and remove the thread-local session."""
    if _session_factory is not None:
        try:
            _session_factory.rollback()
        finally:
            _session_factory.remove()

