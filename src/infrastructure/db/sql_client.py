"""
SQL client - SQLAlchemy engine and session factory for chat history.

Provides:
- Cached engine per database URL (SQLite by default, any SQLAlchemy URL works)
- Session factory
- SQLAlchemy table definition for ``chat_messages``
"""

from loguru import logger
from sqlalchemy import (
    create_engine,
    Column,
    Float,
    Integer,
    MetaData,
    Table,
    Text,
    text,
)
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import sessionmaker
from pathlib import Path
from typing import Dict, Optional

from infrastructure.config import CHAT_DB_URL

# Engine cache (one per URL)
_engines: Dict[str, Engine] = {}

# Metadata
metadata = MetaData()

# ============================================================================
# CHAT HISTORY TABLE
# ============================================================================

chat_messages_table = Table(
    "chat_messages",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Text, nullable=False, index=True),
    Column("session_id", Text, nullable=False, index=True),
    Column("role", Text, nullable=False),
    Column("content", Text, nullable=False),
    Column("agent_id", Text, nullable=True),
    Column("ts", Float, nullable=False),
)


def get_sql_engine(db_url: Optional[str] = None) -> Engine:
    """
    Get SQLAlchemy engine for the chat history database.

    Args:
        db_url: SQLAlchemy URL. Defaults to ``CHAT_DB_URL`` from config.

    Returns:
        SQLAlchemy engine
    """
    db_url = db_url or CHAT_DB_URL
    if not db_url:
        raise ValueError(
            "No chat history database URL configured. "
            "Set storage.db_url in config/param.yaml or CHAT_DB_URL in .env."
        )

    engine = _engines.get(db_url)
    if engine is None:
        url = make_url(db_url)
        if url.get_backend_name() == "sqlite" and url.database not in (None, "", ":memory:"):
            Path(url.database).parent.mkdir(parents=True, exist_ok=True)
        engine = create_engine(
            db_url,
            pool_pre_ping=True,
            echo=False,  # Set to True for SQL debugging
        )
        _engines[db_url] = engine
        logger.info("Chat history SQL engine created ({})", engine.url.get_backend_name())
    return engine


def get_session_factory(db_url: Optional[str] = None) -> sessionmaker:
    """Session factory bound to the chat history engine."""
    return sessionmaker(bind=get_sql_engine(db_url), autocommit=False, autoflush=False)


def create_tables(db_url: Optional[str] = None) -> None:
    """Create the chat history table if it doesn't exist."""
    engine = get_sql_engine(db_url)
    metadata.create_all(bind=engine)
    logger.info("Chat history tables created/verified")


def test_connection(db_url: Optional[str] = None) -> bool:
    """
    Test the chat history database connection.

    Returns:
        True if connection successful, False otherwise
    """
    try:
        engine = get_sql_engine(db_url)
        with engine.connect() as conn:
            result = conn.execute(text("SELECT 1"))
            assert result.scalar() == 1
        logger.info("Chat history DB connection test: SUCCESS")
        return True
    except Exception as e:
        logger.error(f"Chat history DB connection test: FAILED - {e}")
        return False
