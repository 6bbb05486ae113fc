"""
SQLAlchemy base configuration and session management.

Uses SQLAlchemy 2.0 style with type hints and declarative base.
Designed to be portable between SQLite (dev) and PostgreSQL (prod).
"""

from typing import Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from fleetsync.config import config


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


def make_engine(url: str, timeout_seconds: Optional[float] = None) -> Engine:
    """
    Create an engine for the given database URL.

    Every statement is bounded by timeout_seconds: SQLite waits at most
    that long on a locked database, PostgreSQL cancels statements that
    run longer.
    """
    timeout_seconds = timeout_seconds or config.database.timeout_seconds
    engine_kwargs = {
        'echo': config.debug,  # Log SQL in debug mode
    }

    is_sqlite = url.startswith('sqlite')
    if is_sqlite:
        engine_kwargs['connect_args'] = {
            'check_same_thread': False,
            'timeout': timeout_seconds,
        }
    elif url.startswith('postgresql'):
        engine_kwargs['connect_args'] = {
            'options': f'-c statement_timeout={int(timeout_seconds * 1000)}',
        }

    engine = create_engine(url, **engine_kwargs)

    if is_sqlite:
        @event.listens_for(engine, 'connect')
        def set_sqlite_pragma(dbapi_connection, connection_record):
            """
            Configure SQLite for concurrent access.

            WAL mode allows client reads while the ingestion loop writes.
            """
            cursor = dbapi_connection.cursor()
            cursor.execute('PRAGMA journal_mode=WAL')
            cursor.execute('PRAGMA synchronous=NORMAL')
            cursor.close()

    return engine


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(
        bind=engine,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,  # Returned entities stay readable after commit
    )


engine = make_engine(config.database.url)

# Session factory
SessionLocal = make_session_factory(engine)


def init_db(bind: Optional[Engine] = None) -> None:
    """
    Initialize database schema.

    Creates all tables if they don't exist.
    """
    Base.metadata.create_all(bind=bind or engine)
