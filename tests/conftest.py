"""Shared fixtures: deterministic classifiers, stub agents and a mocked chat model."""

import re
from typing import Dict, List, Optional
from unittest.mock import MagicMock

import pytest
from langchain_core.messages import AIMessage

from agents.base import Agent
from agents.classifier import Classifier, ClassifierResult
from agents.orchestrator import AgentOrchestrator, OrchestratorConfig
from memory.chat_store import InMemoryChatStorage
from memory.schemas import ConversationMessage


_LAST_AGENT = re.compile(r"^assistant: \[([^\]]+)\]", re.MULTILINE)

FOLLOW_UPS = {"yes", "yes please", "ok", "sure", "thanks", "1", "2", "3"}


class ScriptedClassifier(Classifier):
    """Returns queued results in order; records every rendered prompt."""

    def __init__(self, *results: ClassifierResult) -> None:
        super().__init__()
        self.results = list(results)
        self.prompts: List[str] = []

    def process_request(self, user_input: str, system_prompt: str) -> ClassifierResult:
        self.prompts.append(system_prompt)
        return self.results.pop(0)


class KeywordClassifier(Classifier):
    """
    Keyword routing with follow-up continuity.

    Short acknowledgements go to the agent named in the last attributed
    assistant line of the rendered history.
    """

    def __init__(self, keywords: Dict[str, str]) -> None:
        super().__init__()
        self.keywords = keywords

    def process_request(self, user_input: str, system_prompt: str) -> ClassifierResult:
        text = user_input.strip().lower()
        if text in FOLLOW_UPS:
            previous = _LAST_AGENT.findall(system_prompt)
            if previous:
                return ClassifierResult(previous[-1], 0.9, user_input)
        for word, agent_id in self.keywords.items():
            if word in text:
                return ClassifierResult(agent_id, 0.8, user_input)
        return ClassifierResult("unknown", 0.1, user_input)


class ExplodingClassifier(Classifier):
    def process_request(self, user_input: str, system_prompt: str) -> ClassifierResult:
        raise ConnectionError("model endpoint unreachable")


class StaticAgent(Agent):
    """Answers with a fixed reply and remembers what it was given."""

    def __init__(self, name: str, reply: str = "ok", description: str = "", save_chat: bool = True):
        super().__init__(name, description or f"Handles {name.lower()} questions", save_chat=save_chat)
        self.reply = reply
        self.calls: List[dict] = []

    def process_request(self, input_text, user_id, session_id, chat_history, additional_params=None):
        self.calls.append({
            "input_text": input_text,
            "history": list(chat_history),
            "additional_params": additional_params,
        })
        return ConversationMessage.assistant(self.reply, agent_id=self.id)


class StreamingAgent(Agent):
    """Streams ``chunks``; raises ``fail_with`` after them when given."""

    def __init__(self, name: str, chunks: List[str], fail_with: Optional[Exception] = None):
        super().__init__(name, f"Streams {name.lower()} answers")
        self.chunks = chunks
        self.fail_with = fail_with
        self.calls = 0

    def process_request(self, input_text, user_id, session_id, chat_history, additional_params=None):
        self.calls += 1
        return self._generate()

    def _generate(self):
        for chunk in self.chunks:
            yield chunk
        if self.fail_with is not None:
            raise self.fail_with


class RaisingAgent(Agent):
    def process_request(self, input_text, user_id, session_id, chat_history, additional_params=None):
        raise RuntimeError("downstream API returned 500")


class StringAgent(Agent):
    """Returns a bare string, which is not a valid reply shape."""

    def process_request(self, input_text, user_id, session_id, chat_history, additional_params=None):
        return "plain text"


@pytest.fixture
def storage():
    return InMemoryChatStorage()


@pytest.fixture
def billing_agent():
    return StaticAgent("Billing Agent", reply="Your last invoice was paid on the 3rd.")


@pytest.fixture
def tech_agent():
    return StaticAgent("Tech Support Agent", reply="Would you like me to walk you through a reset?")


@pytest.fixture
def keyword_classifier():
    return KeywordClassifier({
        "invoice": "billing-agent",
        "charged": "billing-agent",
        "crash": "tech-support-agent",
        "login": "tech-support-agent",
    })


@pytest.fixture
def make_orchestrator(storage):
    """Factory: ``make_orchestrator(classifier, *agents, **config_overrides)``."""

    def _make(classifier, *agents, **overrides):
        return AgentOrchestrator(
            classifier=classifier,
            storage=storage,
            config=OrchestratorConfig(**overrides),
            agents=list(agents),
        )

    return _make


def tool_call_message(args: dict, name: str = "analyze_prompt") -> AIMessage:
    return AIMessage(content="", tool_calls=[{"name": name, "args": args, "id": "call_1"}])


@pytest.fixture
def mock_llm():
    """Chat model whose forced tool call returns whatever the test sets."""
    llm = MagicMock()
    llm.model_name = "test-model"
    llm.bind_tools.return_value.invoke.return_value = tool_call_message(
        {"userinput": "hello", "selected_agent": "billing-agent", "confidence": 0.9}
    )
    return llm


@pytest.fixture
def tool_call():
    return tool_call_message
