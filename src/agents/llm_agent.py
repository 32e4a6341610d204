"""
LLM agent - a routable agent that answers with a LangChain chat model.

The agent's system prompt defines its persona; the session history and
the user turn follow it. With ``streaming=True`` the reply is returned as
a generator of text chunks from ``llm.stream()``.
"""

from typing import Any, Dict, Iterator, List, Optional

from agents.base import AdditionalParams, Agent, AgentReply
from memory.schemas import ConversationMessage


_DEFAULT_SYSTEM_PROMPT = """\
You are {name}. {description}

Communication rules:
1. Be warm, professional, and concise.
2. Stay within your area; if the user asks about something else, say so.
3. If unsure, say so rather than guessing.
"""


class LLMAgent(Agent):
    """
    Agent backed by a LangChain chat model (``ChatOpenAI`` or compatible).
    """

    def __init__(
        self,
        name: str,
        description: str,
        llm: Any,
        system_prompt: Optional[str] = None,
        streaming: bool = False,
        save_chat: bool = True,
        logger: Any = None,
    ) -> None:
        super().__init__(name, description, save_chat=save_chat, logger=logger)
        self.llm = llm
        self.streaming = streaming
        self.system_prompt = system_prompt or _DEFAULT_SYSTEM_PROMPT.format(
            name=name, description=description)

    def _build_messages(
        self,
        input_text: str,
        chat_history: List[ConversationMessage],
    ) -> List[Dict[str, str]]:
        messages = [{"role": "system", "content": self.system_prompt}]
        messages.extend(
            {"role": message.role, "content": message.content} for message in chat_history
        )
        messages.append({"role": "user", "content": input_text})
        return messages

    def process_request(
        self,
        input_text: str,
        user_id: str,
        session_id: str,
        chat_history: List[ConversationMessage],
        additional_params: Optional[AdditionalParams] = None,
    ) -> AgentReply:
        messages = self._build_messages(input_text, chat_history)
        self.logger.debug(
            "{} answering {}/{} ({} history messages, streaming={})",
            self.id, user_id, session_id, len(chat_history), self.streaming,
        )

        if self.streaming:
            return self._stream(messages)

        response = self.llm.invoke(messages)
        content = response.content if hasattr(response, "content") else str(response)
        return ConversationMessage.assistant(content.strip(), agent_id=self.id)

    def _stream(self, messages: List[Dict[str, str]]) -> Iterator[str]:
        for chunk in self.llm.stream(messages):
            text = chunk.content if hasattr(chunk, "content") else chunk
            if text:
                yield text
