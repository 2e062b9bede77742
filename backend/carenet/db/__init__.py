"""
Database layer for carenet.

- PostgreSQL via SQLAlchemy (authoritative storage)
"""

from .postgres import Base, get_engine, get_db_session, init_db, close_db_session

__all__ = ["Base", "get_engine", "get_db_session", "init_db", "close_db_session"]
