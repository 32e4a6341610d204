"""
Database client for durable chat history (any SQLAlchemy URL, SQLite by default).
"""

from .sql_client import (
    chat_messages_table,
    create_tables,
    get_session_factory,
    get_sql_engine,
    test_connection,
)

__all__ = [
    "chat_messages_table",
    "create_tables",
    "get_session_factory",
    "get_sql_engine",
    "test_connection",
]
