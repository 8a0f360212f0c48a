"""
Database engine construction.
One pooled SQLAlchemy engine per process; each query checks a connection out
of the pool and returns it when done.
"""

import os
import logging
from typing import Any, Dict, Optional
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine

LOGGER = logging.getLogger(__name__)


def create_engine_from_url(db_url: str, pool_size: int = 5, max_overflow: int = 10) -> Engine:
    """Create SQLAlchemy engine from database URL with pooled connections."""
    connect_args: Dict[str, Any] = {}

    if db_url.startswith("postgresql"):
        connect_args["connect_timeout"] = 10
    elif db_url.startswith("sqlite"):
        # Lets tests share an in-memory engine across threads
        connect_args["check_same_thread"] = False
        return create_engine(db_url, connect_args=connect_args, echo=False)

    engine = create_engine(
        db_url,
        pool_pre_ping=True,
        pool_recycle=1800,
        pool_size=pool_size,
        max_overflow=max_overflow,
        connect_args=connect_args,
        echo=False,  # Set to True for SQL debugging
    )
    return engine


def create_engine_from_env(db_url: Optional[str] = None) -> Engine:
    """Create engine from DATABASE_URL and verify it answers a trivial query."""
    db_url = db_url or os.environ.get("DATABASE_URL")
    if not db_url:
        raise RuntimeError("DATABASE_URL environment variable is not set.")

    try:
        engine = create_engine_from_url(db_url)
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        LOGGER.info("Connected to database %s", engine.url.render_as_string(hide_password=True))
        return engine
    except Exception as e:
        if "password authentication failed" in str(e):
            raise RuntimeError(
                f"Database authentication failed. Please check your DATABASE_URL credentials: {e}"
            )
        elif "could not connect" in str(e) or "Connection refused" in str(e):
            raise RuntimeError(
                f"Cannot connect to database server. Please verify the host and port in DATABASE_URL: {e}"
            )
        elif "does not exist" in str(e):
            raise RuntimeError(
                f"Database does not exist. Please check the database name in DATABASE_URL: {e}"
            )
        else:
            raise RuntimeError(f"Database connection failed: {e}")
