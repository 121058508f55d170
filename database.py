"""
Database Configuration and Session Management
============================================

Engine, session factory and table creation for the local chain backend.
Nothing is created at import time; the engine context builds one engine
from configuration and passes the session factory down.
"""

import logging
from contextlib import contextmanager
from sqlalchemy import create_engine, inspect
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool
from models import Base

logger = logging.getLogger(__name__)


def build_engine(database_url: str, echo: bool = False) -> Engine:
    """Create an engine; sqlite URLs get thread-safe settings"""
    kwargs = {"echo": echo, "pool_pre_ping": True}
    if database_url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        # In-memory databases must share one connection or every session sees an empty db
        if ":memory:" in database_url or database_url in ("sqlite://", "sqlite:///"):
            kwargs["poolclass"] = StaticPool
    return create_engine(database_url, **kwargs)


def build_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, expire_on_commit=False)


def create_tables(engine: Engine) -> bool:
    """Create all database tables if they don't exist"""
    try:
        logger.info("🏗️ Creating local chain tables (if they don't exist)...")
        Base.metadata.create_all(bind=engine, checkfirst=True)
        existing_tables = inspect(engine).get_table_names()
        logger.info(f"✅ Database schema verified: {len(existing_tables)} tables available")
        return True
    except Exception as e:
        logger.error(f"❌ Failed to create database tables: {e}")
        raise


@contextmanager
def managed_session(session_factory: sessionmaker):
    """Sync context manager for database sessions"""
    session: Session = session_factory()
    try:
        yield session
        session.commit()
    except Exception as e:
        session.rollback()
        logger.error(f"Database session error: {e}")
        raise
    finally:
        session.close()
