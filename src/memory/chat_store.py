"""
In-memory chat storage.

Keeps one ``ConversationRecord`` per ``(user_id, session_id)``. History
is lost when the process exits; use ``SqlChatStorage`` for durability.
"""

import threading
from typing import Dict, Iterable, List, Optional, Tuple

from memory.schemas import ConversationMessage, ConversationRecord


class InMemoryChatStorage:
    """
    Process-local chat storage.

    The session map is guarded by a lock so concurrent sessions can be
    served from one orchestrator; each session owns its own record.
    """

    def __init__(self) -> None:
        self._records: Dict[Tuple[str, str], ConversationRecord] = {}
        self._lock = threading.Lock()

    def fetch_chat(self, user_id: str, session_id: str) -> List[ConversationMessage]:
        """Return a copy of the session history, oldest first."""
        with self._lock:
            record = self._records.get((user_id, session_id))
            return list(record.messages) if record else []

    def save_messages(
        self,
        user_id: str,
        session_id: str,
        messages: Iterable[ConversationMessage],
        max_history_size: Optional[int] = None,
    ) -> List[ConversationMessage]:
        """Append messages to the session and apply the retention limit."""
        with self._lock:
            record = self._records.setdefault((user_id, session_id), ConversationRecord())
            record.extend(messages)
            if max_history_size is not None:
                record.drop_oldest(max_history_size)
            return list(record.messages)

    def clear(self, user_id: str, session_id: str) -> None:
        with self._lock:
            self._records.pop((user_id, session_id), None)

    def record(self, user_id: str, session_id: str) -> Optional[ConversationRecord]:
        """The live record for a session, or None if nothing was saved yet."""
        with self._lock:
            return self._records.get((user_id, session_id))
