"""
Conversation schemas and storage interface.

Dataclasses for chat messages and the per-session conversation record,
plus the protocol every chat storage backend implements.
"""

import time
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Literal, Optional, Protocol, Tuple


USER_ROLE = "user"
ASSISTANT_ROLE = "assistant"


@dataclass(frozen=True)
class ConversationMessage:
    """
    A single message in a conversation (user or assistant).

    ``agent_id`` attributes an assistant message to the agent that
    produced it. User messages never carry an attribution.
    """
    role: Literal["user", "assistant"]
    content: str
    agent_id: Optional[str] = None
    ts: float = field(default_factory=time.time)  # epoch seconds

    def __post_init__(self) -> None:
        if self.role not in (USER_ROLE, ASSISTANT_ROLE):
            raise ValueError(f"Unknown message role: {self.role!r}")
        if not isinstance(self.content, str):
            raise ValueError("content must be a string")
        if self.role == USER_ROLE and self.agent_id is not None:
            raise ValueError("user messages cannot be attributed to an agent")

    @classmethod
    def user(cls, content: str) -> "ConversationMessage":
        return cls(role=USER_ROLE, content=content)

    @classmethod
    def assistant(cls, content: str, agent_id: Optional[str] = None) -> "ConversationMessage":
        return cls(role=ASSISTANT_ROLE, content=content, agent_id=agent_id)

    def to_dict(self) -> Dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "role": self.role,
            "content": self.content,
            "agent_id": self.agent_id,
            "ts": self.ts,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "ConversationMessage":
        """Create from dictionary."""
        return cls(
            role=data["role"],
            content=data["content"],
            agent_id=data.get("agent_id"),
            ts=data.get("ts", 0.0),
        )


class ConversationRecord:
    """
    Ordered message log for one ``(user_id, session_id)`` pair.

    Messages are only ever appended; the sole removal is dropping the
    oldest entries when a retention limit is applied.
    """

    def __init__(self, messages: Optional[Iterable[ConversationMessage]] = None) -> None:
        self._messages: List[ConversationMessage] = list(messages or [])

    def append(self, message: ConversationMessage) -> None:
        self._messages.append(message)

    def extend(self, messages: Iterable[ConversationMessage]) -> None:
        for message in messages:
            self.append(message)

    @property
    def messages(self) -> Tuple[ConversationMessage, ...]:
        """Immutable snapshot of the log."""
        return tuple(self._messages)

    def last_attributed_agent(self) -> Optional[str]:
        """Agent id of the most recent attributed assistant message."""
        for message in reversed(self._messages):
            if message.role == ASSISTANT_ROLE and message.agent_id:
                return message.agent_id
        return None

    def drop_oldest(self, keep: int) -> int:
        """Keep only the newest ``keep`` messages. Returns how many were dropped."""
        if keep < 0:
            raise ValueError("keep must be >= 0")
        dropped = max(0, len(self._messages) - keep)
        if dropped:
            del self._messages[:dropped]
        return dropped

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self):
        return iter(self.messages)

    def __repr__(self) -> str:
        return f"ConversationRecord(messages={len(self._messages)})"


def format_history(messages: Iterable[ConversationMessage]) -> str:
    """
    Render messages as a transcript for the classifier prompt.

    Assistant lines are prefixed with ``[agent_id]`` so the model can see
    which agent answered each turn.
    """
    lines = []
    for message in messages:
        if message.role == ASSISTANT_ROLE and message.agent_id:
            lines.append(f"{message.role}: [{message.agent_id}] {message.content}")
        else:
            lines.append(f"{message.role}: {message.content}")
    return "\n".join(lines)


# ═══════════════════════════════════════════════════════════════════════════════
# Protocol interfaces
# ═══════════════════════════════════════════════════════════════════════════════


class ChatStorage(Protocol):
    """
    Per-session conversation storage.

    Implementations must keep sessions isolated and preserve message order.
    """

    def fetch_chat(self, user_id: str, session_id: str) -> List[ConversationMessage]:
        ...

    def save_messages(
        self,
        user_id: str,
        session_id: str,
        messages: Iterable[ConversationMessage],
        max_history_size: Optional[int] = None,
    ) -> List[ConversationMessage]:
        ...

    def clear(self, user_id: str, session_id: str) -> None:
        ...
