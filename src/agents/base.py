"""
Agent contract and response envelopes.

An agent is anything that can answer a turn: it has a human name, an
identifier derived from that name, a description the classifier reads,
and ``process_request()``, which returns either one assistant message or
an iterator of text chunks. The orchestrator inspects the returned shape;
agents never have to announce whether they stream.
"""

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, Iterator, List, Mapping, Optional, Union

from infrastructure.log import NULL_LOGGER
from memory.schemas import ConversationMessage

if TYPE_CHECKING:
    from agents.accumulator import OutputAccumulator


# Values allowed in ``additional_params``: scalars or nested mappings of them.
ParamValue = Union[str, int, float, bool, Mapping[str, "ParamValue"]]
AdditionalParams = Mapping[str, ParamValue]

AgentReply = Union[ConversationMessage, Iterator[str]]

_NON_KEY_CHARS = re.compile(r"[^a-zA-Z0-9\s-]")
_WHITESPACE = re.compile(r"\s+")


def generate_key_from_name(name: str) -> str:
    """
    Derive a registry key from an agent name.

    Drops everything that is not an ASCII letter, digit, whitespace or
    hyphen, turns whitespace runs into single hyphens and lowercases.
    Applying it to its own output returns the output unchanged.

        >>> generate_key_from_name("Tech Support Agent")
        'tech-support-agent'
    """
    key = _NON_KEY_CHARS.sub("", name)
    key = _WHITESPACE.sub("-", key)
    return key.lower()


def validate_additional_params(params: Optional[Mapping[str, Any]]) -> Dict[str, ParamValue]:
    """Check ``additional_params`` against ``ParamValue`` and return a plain dict copy."""
    if params is None:
        return {}
    if not isinstance(params, Mapping):
        raise TypeError("additional_params must be a mapping")

    def _check(value: Any, path: str) -> ParamValue:
        if isinstance(value, (str, bool, int, float)):
            return value
        if isinstance(value, Mapping):
            return {str(k): _check(v, f"{path}.{k}") for k, v in value.items()}
        raise TypeError(f"additional_params[{path}] has unsupported type {type(value).__name__}")

    return {str(k): _check(v, str(k)) for k, v in params.items()}


@dataclass(frozen=True)
class AgentProcessingResult:
    """
    Metadata describing who handled a turn.

    Attributes:
        user_input: The original user text.
        agent_id: Identifier of the agent that handled the turn.
        agent_name: Human-readable agent name.
        user_id: Caller-supplied user identifier.
        session_id: Caller-supplied session identifier.
        additional_params: Caller-supplied parameters passed to the agent.
    """

    user_input: str
    agent_id: str
    agent_name: str
    user_id: str
    session_id: str
    additional_params: Dict[str, ParamValue] = field(default_factory=dict)


@dataclass
class AgentResponse:
    """
    Normalized reply for one turn.

    ``output`` is a plain string when ``streaming`` is False and an
    ``OutputAccumulator`` (iterate it to receive chunks) when True.
    ``error`` is None on success, otherwise the failure kind.
    """

    metadata: AgentProcessingResult
    output: Union[str, "OutputAccumulator"]
    streaming: bool = False
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class Agent(ABC):
    """
    Abstract base class for routable agents.

    To create a new agent:
    1. Subclass Agent
    2. Pass ``name`` and ``description`` to ``super().__init__``
       (the description is what the classifier reads when choosing)
    3. Implement ``process_request()``
    4. Register the instance with ``AgentOrchestrator.add_agent()``

    Example::

        class EchoAgent(Agent):
            def process_request(self, input_text, user_id, session_id,
                                chat_history, additional_params=None):
                return ConversationMessage.assistant(input_text)
    """

    def __init__(
        self,
        name: str,
        description: str,
        save_chat: bool = True,
        logger: Any = None,
    ) -> None:
        if not name or not generate_key_from_name(name):
            raise ValueError(f"Agent name {name!r} does not produce a usable identifier")
        self.name = name
        self.id = generate_key_from_name(name)
        self.description = description
        self.save_chat = save_chat
        self.logger = logger if logger is not None else NULL_LOGGER

    @abstractmethod
    def process_request(
        self,
        input_text: str,
        user_id: str,
        session_id: str,
        chat_history: List[ConversationMessage],
        additional_params: Optional[AdditionalParams] = None,
    ) -> AgentReply:
        """
        Answer one user turn.

        Args:
            input_text: The user's message.
            user_id: Caller-supplied user identifier.
            session_id: Caller-supplied session identifier.
            chat_history: Prior messages of the session, oldest first.
                          Read-only; the orchestrator records the turn.
            additional_params: Caller-supplied parameters.

        Returns:
            One assistant ``ConversationMessage``, or an iterator of text
            chunks for a streamed reply.
        """

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(id={self.id!r}, save_chat={self.save_chat})"
