"""
SQL chat storage - SQLAlchemy backend.

Stores conversation messages in the ``chat_messages`` table as a ring
buffer per session. Insertion order (autoincrement id) defines message
order.
"""

from loguru import logger
from typing import Iterable, List, Optional

from sqlalchemy import bindparam, text

from memory.schemas import ConversationMessage


class SqlChatStorage:
    """
    Chat storage backed by any SQLAlchemy-supported database.

    Stores the most recent *N* messages per session, trimming older
    entries on every save when a limit is given.
    """

    def __init__(self, session_factory=None, db_url: Optional[str] = None):
        if not session_factory:
            from infrastructure.db.sql_client import create_tables, get_session_factory
            create_tables(db_url)
            session_factory = get_session_factory(db_url)
        self.session_factory = session_factory
        logger.debug("Using SQL backend for chat history")

    def save_messages(
        self,
        user_id: str,
        session_id: str,
        messages: Iterable[ConversationMessage],
        max_history_size: Optional[int] = None,
    ) -> List[ConversationMessage]:
        """Append messages to a session, then trim to ``max_history_size``."""
        session = self.session_factory()
        try:
            for message in messages:
                session.execute(
                    text("""
                        INSERT INTO chat_messages (user_id, session_id, role, content, agent_id, ts)
                        VALUES (:user_id, :session_id, :role, :content, :agent_id, :ts)
                    """),
                    {
                        "user_id": user_id,
                        "session_id": session_id,
                        "role": message.role,
                        "content": message.content,
                        "agent_id": message.agent_id,
                        "ts": message.ts,
                    }
                )
            if max_history_size is not None:
                # Trim to max_history_size (ring buffer)
                ids = session.execute(
                    text("""
                        SELECT id FROM chat_messages
                        WHERE user_id = :user_id AND session_id = :session_id
                        ORDER BY id DESC
                    """),
                    {"user_id": user_id, "session_id": session_id}
                ).scalars().all()
                stale_ids = ids[max_history_size:]
                if stale_ids:
                    session.execute(
                        text("DELETE FROM chat_messages WHERE id IN :ids").bindparams(
                            bindparam("ids", expanding=True)
                        ),
                        {"ids": stale_ids}
                    )
            session.commit()
            logger.debug("Saved messages for {}/{}", user_id, session_id)
        except Exception as e:
            session.rollback()
            logger.error("Failed to save chat messages: {}", e)
            raise
        finally:
            session.close()
        return self.fetch_chat(user_id, session_id)

    def fetch_chat(self, user_id: str, session_id: str) -> List[ConversationMessage]:
        """Retrieve the stored history for a session, oldest first."""
        session = self.session_factory()
        try:
            rows = session.execute(
                text("""
                    SELECT role, content, agent_id, ts
                    FROM chat_messages
                    WHERE user_id = :user_id AND session_id = :session_id
                    ORDER BY id ASC
                """),
                {"user_id": user_id, "session_id": session_id}
            ).fetchall()
            return [
                ConversationMessage(
                    role=row.role,
                    content=row.content,
                    agent_id=row.agent_id,
                    ts=row.ts,
                )
                for row in rows
            ]
        finally:
            session.close()

    def clear(self, user_id: str, session_id: str) -> None:
        """Clear all messages for a session."""
        session = self.session_factory()
        try:
            session.execute(
                text("""
                    DELETE FROM chat_messages
                    WHERE user_id = :user_id AND session_id = :session_id
                """),
                {"user_id": user_id, "session_id": session_id}
            )
            session.commit()
            logger.info("Cleared chat history for: {}/{}", user_id, session_id)
        except Exception as e:
            session.rollback()
            logger.error("Failed to clear chat history: {}", e)
            raise
        finally:
            session.close()
