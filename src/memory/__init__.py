"""
Conversation memory - message schemas and chat storage backends.

Backends:
  - In-memory: per (user_id, session_id) records behind a lock
  - SQL: SQLAlchemy-backed ``chat_messages`` table (SQLite by default)
"""

from .schemas import (
    ASSISTANT_ROLE,
    USER_ROLE,
    ChatStorage,
    ConversationMessage,
    ConversationRecord,
    format_history,
)
from .chat_store import InMemoryChatStorage
from .sql_store import SqlChatStorage

__all__ = [
    # Schemas
    "ASSISTANT_ROLE",
    "USER_ROLE",
    "ConversationMessage",
    "ConversationRecord",
    "format_history",
    # Protocols
    "ChatStorage",
    # Stores
    "InMemoryChatStorage",
    "SqlChatStorage",
]
