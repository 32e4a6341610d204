"""
Agent Orchestrator - main routing loop.

Flow per turn:
  1. Load the session history from chat storage.
  2. Classify the turn (LLM → ClassifierResult).
  3. Resolve the agent, applying the fallback policy when needed.
  4. Call the agent.
  5. Normalize its reply (plain message, or stream wrapped in an
     OutputAccumulator).
  6. Record the user turn and the attributed reply in history (for
     streams, only once the stream completes).

Failures at any step degrade to an ``AgentResponse`` with ``error`` set;
only setup mistakes (``RegistryConfigurationError``) are raised.
"""

import time
from collections.abc import Iterable
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from agents.accumulator import OutputAccumulator
from agents.base import (
    AdditionalParams,
    Agent,
    AgentProcessingResult,
    AgentResponse,
    ParamValue,
    generate_key_from_name,
    validate_additional_params,
)
from agents.classifier import Classifier, ClassifierResult
from agents.errors import (
    AgentInvocationError,
    ClassificationError,
    InvalidRequestError,
    OrchestratorError,
    RegistryConfigurationError,
    UnresolvedAgentError,
)
from infrastructure.log import NULL_LOGGER
from infrastructure.observability import observe, update_current_trace
from memory.chat_store import InMemoryChatStorage
from memory.schemas import ASSISTANT_ROLE, ChatStorage, ConversationMessage


NO_AGENT_ID = "no_agent_selected"
NO_AGENT_NAME = "No Agent"


class FallbackMode(str, Enum):
    """What to do when the classifier's choice cannot be used."""

    DEFAULT_AGENT = "default_agent"  # hand the turn to the default agent
    NO_AGENT = "no_agent"            # answer with the "no agent" message
    NONE = "none"                    # report UnresolvedAgentError


class TurnState(str, Enum):
    RECEIVED = "received"
    CLASSIFIED = "classified"
    RESOLVED = "resolved"
    INVOKED = "invoked"
    NORMALIZED = "normalized"
    RECORDED = "recorded"
    FAILED = "failed"


@dataclass
class OrchestratorConfig:
    """
    Routing behaviour and user-facing messages.

    Attributes:
        fallback_mode: Policy for "unknown", unregistered or low-confidence picks.
        default_agent_id: Agent used by ``DEFAULT_AGENT`` (first registered if None).
        min_confidence: Picks below this confidence go to the fallback policy.
        max_message_pairs_per_session: History retention (None = unbounded).
    """

    fallback_mode: FallbackMode = FallbackMode.DEFAULT_AGENT
    default_agent_id: Optional[str] = None
    min_confidence: float = 0.0
    max_message_pairs_per_session: Optional[int] = None

    classification_error_message: str = (
        "I'm sorry, I couldn't work out how to handle that request. Please try rephrasing it."
    )
    no_selected_agent_message: str = (
        "I'm sorry, I couldn't find an agent able to help with that. "
        "Could you give me a bit more detail?"
    )
    general_routing_error_message: str = (
        "Something went wrong while handling your request. Please try again."
    )

    log_agent_chat: bool = False
    log_classifier_chat: bool = False
    log_classifier_output: bool = False
    log_execution_times: bool = False

    def __post_init__(self) -> None:
        self.fallback_mode = FallbackMode(self.fallback_mode)
        if not 0.0 <= float(self.min_confidence) <= 1.0:
            raise ValueError("min_confidence must be between 0 and 1")
        if self.max_message_pairs_per_session is not None and self.max_message_pairs_per_session < 1:
            raise ValueError("max_message_pairs_per_session must be >= 1")

    @property
    def max_history_size(self) -> Optional[int]:
        if self.max_message_pairs_per_session is None:
            return None
        return self.max_message_pairs_per_session * 2

    @classmethod
    def from_settings(cls) -> "OrchestratorConfig":
        """Build from config/param.yaml (see ``infrastructure.config``)."""
        from infrastructure import config

        return cls(
            fallback_mode=config.FALLBACK_MODE,
            default_agent_id=config.DEFAULT_AGENT_ID,
            min_confidence=float(config.MIN_CONFIDENCE),
            max_message_pairs_per_session=config.MAX_MESSAGE_PAIRS_PER_SESSION,
            classification_error_message=config.CLASSIFICATION_ERROR_MESSAGE,
            no_selected_agent_message=config.NO_SELECTED_AGENT_MESSAGE,
            general_routing_error_message=config.GENERAL_ROUTING_ERROR_MESSAGE,
            log_agent_chat=config.LOG_AGENT_CHAT,
            log_classifier_chat=config.LOG_CLASSIFIER_CHAT,
            log_classifier_output=config.LOG_CLASSIFIER_OUTPUT,
            log_execution_times=config.LOG_EXECUTION_TIMES,
        )


@dataclass
class _Turn:
    """Bookkeeping for one ``route_request`` call."""

    user_input: str
    user_id: str
    session_id: str
    params: Dict[str, ParamValue]
    state: TurnState = TurnState.RECEIVED
    timings: Dict[str, float] = field(default_factory=dict)


class AgentOrchestrator:
    """
    Routes each user turn to one registered agent.

    Dependencies (injected via '__init__'):
        classifier - Classifier (usually LLMClassifier)
        storage    - ChatStorage (defaults to InMemoryChatStorage)
        config     - OrchestratorConfig (defaults to OrchestratorConfig())
        logger     - loguru-compatible logger (defaults to a no-op logger)
    """

    def __init__(
        self,
        classifier: Classifier,
        storage: Optional[ChatStorage] = None,
        config: Optional[OrchestratorConfig] = None,
        agents: Optional[List[Agent]] = None,
        logger: Any = None,
    ) -> None:
        self.classifier = classifier
        self.storage = storage if storage is not None else InMemoryChatStorage()
        # Copied; set_default_agent() writes to it.
        self.config = replace(config) if config is not None else OrchestratorConfig()
        self.logger = logger if logger is not None else NULL_LOGGER
        self.agents: Dict[str, Agent] = {}
        for agent in agents or []:
            self.add_agent(agent)

    # registry

    def add_agent(self, agent: Agent) -> None:
        """Register an agent. Re-registering an id replaces the old agent."""
        if not isinstance(agent, Agent):
            raise TypeError("agent must be an Agent instance")
        if agent.id in self.agents:
            self.logger.warning("Agent '{}' re-registered; replacing previous instance", agent.id)
        self.agents[agent.id] = agent
        self.logger.info("Agent registered: {} ({})", agent.id, agent.name)

    def get_all_agents(self) -> Dict[str, Dict[str, str]]:
        return {
            agent_id: {"name": agent.name, "description": agent.description}
            for agent_id, agent in self.agents.items()
        }

    def get_default_agent(self) -> Optional[Agent]:
        """Configured default agent, else the first registered one."""
        if self.config.default_agent_id:
            return self.agents.get(self.config.default_agent_id)
        return next(iter(self.agents.values()), None)

    def set_default_agent(self, agent: Union[Agent, str]) -> None:
        """Use ``agent`` (instance or id) for the DEFAULT_AGENT fallback."""
        if isinstance(agent, Agent):
            if agent.id not in self.agents:
                self.add_agent(agent)
            agent_id = agent.id
        else:
            agent_id = generate_key_from_name(agent)
            if agent_id not in self.agents:
                raise RegistryConfigurationError(f"Default agent '{agent_id}' is not registered")
        self.config.default_agent_id = agent_id

    def set_classifier(self, classifier: Classifier) -> None:
        self.classifier = classifier

    def validate(self) -> None:
        """
        Check that the orchestrator can answer at all.

        Raises:
            RegistryConfigurationError: No agents and a fallback mode that needs
                one, or a configured default agent that is not registered.
        """
        mode = self.config.fallback_mode
        if not self.agents and mode is not FallbackMode.NO_AGENT:
            raise RegistryConfigurationError(
                f"No agents registered and fallback mode '{mode.value}' cannot answer without one")
        if mode is FallbackMode.DEFAULT_AGENT and self.config.default_agent_id \
                and self.config.default_agent_id not in self.agents:
            raise RegistryConfigurationError(
                f"Default agent '{self.config.default_agent_id}' is not registered")

    # public entry points

    def classify_request(
        self,
        user_input: str,
        user_id: str,
        session_id: str,
    ) -> ClassifierResult:
        """Run only the classification step against the session history."""
        history = self.storage.fetch_chat(user_id, session_id)
        return self.classifier.classify(user_input, history, self.agents)

    @observe(name="route_request")
    def route_request(
        self,
        user_input: str,
        user_id: str,
        session_id: str,
        additional_params: Optional[AdditionalParams] = None,
    ) -> AgentResponse:
        """
        Process a single user turn through classification and dispatch.

        This is the **top-level LangFuse trace**; classification appears
        as a nested generation.
        """
        self.validate()
        turn = _Turn(user_input=user_input, user_id=user_id, session_id=session_id, params={})
        try:
            turn.params = validate_additional_params(additional_params)
        except TypeError as exc:
            self.logger.warning("Rejected turn for {}/{}: {}", user_id, session_id, exc)
            return self._failure(
                turn, InvalidRequestError(str(exc)), self.config.general_routing_error_message)
        update_current_trace(user_id=user_id, session_id=session_id, tags=["router"])

        history = self.storage.fetch_chat(user_id, session_id)

        # Step 1: Classify
        try:
            result = self._classify(turn, history)
        except Exception as exc:
            error = exc if isinstance(exc, ClassificationError) else ClassificationError(str(exc))
            self.logger.error("Classification failed for {}/{}: {}", user_id, session_id, exc)
            return self._failure(turn, error, self.config.classification_error_message)

        # Step 2: Resolve
        agent = self._resolve_agent(result)
        if agent is None:
            return self._unresolved(turn, result)
        turn.state = TurnState.RESOLVED

        # Step 3: Invoke
        start = time.perf_counter()
        try:
            reply = agent.process_request(
                user_input, user_id, session_id, list(history), turn.params)
        except Exception as exc:
            self.logger.exception("Agent '{}' failed: {}", agent.id, exc)
            error = AgentInvocationError(
                f"Agent '{agent.id}' raised {type(exc).__name__}: {exc}")
            return self._failure(turn, error, self.config.general_routing_error_message, agent)
        finally:
            turn.timings["agent"] = time.perf_counter() - start
        turn.state = TurnState.INVOKED

        # Step 4 + 5: Normalize and record
        try:
            return self._normalize(turn, agent, reply)
        finally:
            self._log_execution_times(turn, agent)

    # internal steps

    def _classify(self, turn: _Turn, history: List[ConversationMessage]) -> ClassifierResult:
        if self.config.log_classifier_chat:
            self.logger.info(
                "Classifier input: {!r} ({} history messages)", turn.user_input, len(history))

        start = time.perf_counter()
        try:
            result = self.classifier.classify(turn.user_input, history, self.agents)
        finally:
            turn.timings["classifier"] = time.perf_counter() - start
        turn.state = TurnState.CLASSIFIED

        if self.config.log_classifier_output:
            self.logger.info(
                "Classifier output: agent={} confidence={:.2f}",
                result.selected_agent_id, result.confidence)
        return result

    def _resolve_agent(self, result: ClassifierResult) -> Optional[Agent]:
        """Registry lookup, then the fallback policy."""
        agent = None
        if not result.is_unknown:
            agent = self.agents.get(result.selected_agent_id)
            if agent is None:
                self.logger.warning(
                    "Classifier picked unregistered agent '{}'", result.selected_agent_id)
            elif result.confidence < self.config.min_confidence:
                self.logger.info(
                    "Confidence {:.2f} for '{}' below threshold {:.2f}; using fallback",
                    result.confidence, agent.id, self.config.min_confidence)
                agent = None

        if agent is None and self.config.fallback_mode is FallbackMode.DEFAULT_AGENT:
            agent = self.get_default_agent()
            if agent is not None:
                self.logger.info("Falling back to default agent '{}'", agent.id)
        return agent

    def _unresolved(self, turn: _Turn, result: ClassifierResult) -> AgentResponse:
        if self.config.fallback_mode is FallbackMode.NONE:
            error = UnresolvedAgentError(
                f"No registered agent matches '{result.selected_agent_id}' and no fallback is configured",
                details={"selected_agent": result.selected_agent_id, "confidence": result.confidence},
            )
            self.logger.warning(error.message)
            return self._failure(turn, error, self.config.no_selected_agent_message)

        turn.state = TurnState.RECORDED
        self.logger.info(
            "No agent selected for {}/{} (classifier said '{}')",
            turn.user_id, turn.session_id, result.selected_agent_id)
        return AgentResponse(
            metadata=self._metadata(turn),
            output=self.config.no_selected_agent_message,
            streaming=False,
        )

    def _normalize(self, turn: _Turn, agent: Agent, reply: Any) -> AgentResponse:
        metadata = self._metadata(turn, agent)

        if isinstance(reply, ConversationMessage):
            if reply.role != ASSISTANT_ROLE:
                return self._malformed(turn, agent, f"returned a {reply.role!r} message")
            turn.state = TurnState.NORMALIZED
            if self.config.log_agent_chat:
                self.logger.info("Agent '{}' replied: {}", agent.id, reply.content)
            if agent.save_chat:
                self._save_turn(turn, agent, reply.content)
            turn.state = TurnState.RECORDED
            return AgentResponse(metadata=metadata, output=reply.content, streaming=False)

        if isinstance(reply, Iterable) and not isinstance(reply, (str, bytes, dict)):
            accumulator = OutputAccumulator(reply, logger=self.logger)
            if self.config.log_agent_chat:
                accumulator.add_done_callback(
                    lambda text: self.logger.info("Agent '{}' streamed: {}", agent.id, text))
            if agent.save_chat:
                accumulator.add_done_callback(
                    lambda text: self._save_turn(turn, agent, text))
            turn.state = TurnState.NORMALIZED
            return AgentResponse(metadata=metadata, output=accumulator, streaming=True)

        return self._malformed(turn, agent, f"returned {type(reply).__name__}")

    def _malformed(self, turn: _Turn, agent: Agent, problem: str) -> AgentResponse:
        error = AgentInvocationError(f"Agent '{agent.id}' {problem}")
        self.logger.error(error.message)
        return self._failure(turn, error, self.config.general_routing_error_message, agent)

    def _save_turn(self, turn: _Turn, agent: Agent, text: str) -> None:
        """Store user + attributed assistant messages in chat storage."""
        try:
            self.storage.save_messages(
                turn.user_id,
                turn.session_id,
                [
                    ConversationMessage.user(turn.user_input),
                    ConversationMessage.assistant(text, agent_id=agent.id),
                ],
                max_history_size=self.config.max_history_size,
            )
            turn.state = TurnState.RECORDED
        except Exception as exc:
            self.logger.exception(
                "Failed to record turn for {}/{}: {}", turn.user_id, turn.session_id, exc)

    # helpers

    def _metadata(self, turn: _Turn, agent: Optional[Agent] = None) -> AgentProcessingResult:
        return AgentProcessingResult(
            user_input=turn.user_input,
            agent_id=agent.id if agent else NO_AGENT_ID,
            agent_name=agent.name if agent else NO_AGENT_NAME,
            user_id=turn.user_id,
            session_id=turn.session_id,
            additional_params=dict(turn.params),
        )

    def _failure(
        self,
        turn: _Turn,
        error: OrchestratorError,
        message: str,
        agent: Optional[Agent] = None,
    ) -> AgentResponse:
        turn.state = TurnState.FAILED
        return AgentResponse(
            metadata=self._metadata(turn, agent),
            output=message,
            streaming=False,
            error=error.kind,
        )

    def _log_execution_times(self, turn: _Turn, agent: Agent) -> None:
        if not self.config.log_execution_times:
            return
        self.logger.info(
            "Execution times for {}/{}: classifier={:.0f}ms agent[{}]={:.0f}ms",
            turn.user_id,
            turn.session_id,
            turn.timings.get("classifier", 0.0) * 1000,
            agent.id,
            turn.timings.get("agent", 0.0) * 1000,
        )


# Factory: build a fully-wired orchestrator from config


def build_orchestrator(
    agents: Optional[List[Agent]] = None,
    config: Optional[OrchestratorConfig] = None,
    storage: Optional[ChatStorage] = None,
    load_agents_from_config: bool = True,
) -> AgentOrchestrator:
    """
    Convenience factory that constructs and wires all components.

    Reads config / env for API keys, models and storage settings.

    Args:
        agents: Agents to register (in order) before any from agents.yaml.
        config: Orchestrator settings; defaults to config/param.yaml.
        storage: Chat storage; defaults to the configured backend.
        load_agents_from_config: Also register LLM agents from agents.yaml.

    Returns:
        A fully initialised ``AgentOrchestrator``.
    """
    from dotenv import load_dotenv

    load_dotenv()

    # Eagerly init LangFuse so child spans are captured
    from infrastructure.observability import get_langfuse

    get_langfuse()

    from agents.classifier import LLMClassifier
    from agents.llm_agent import LLMAgent
    from agents.prompts.agent_prompts import load_classifier_template
    from infrastructure import config as settings
    from infrastructure.llm import get_agent_llm, get_classifier_llm
    from infrastructure.log import get_logger

    config = config or settings.load_orchestrator_config()
    logger = get_logger("orchestrator")

    classifier_llm = get_classifier_llm()
    classifier = LLMClassifier(
        classifier_llm,
        inference_config=settings.CLASSIFIER_INFERENCE,
        log_raw_output=settings.LOG_CLASSIFIER_RAW_OUTPUT,
        logger=get_logger("classifier"),
    )
    classifier.set_system_prompt(load_classifier_template(settings.CLASSIFIER_PROMPT_NAME))
    logger.info("Classifier model: {}", getattr(
        classifier_llm, "model_name", getattr(classifier_llm, "model", "?")))

    if storage is None:
        if settings.STORAGE_BACKEND == "sql":
            from memory.sql_store import SqlChatStorage

            storage = SqlChatStorage(db_url=settings.CHAT_DB_URL)
        else:
            storage = InMemoryChatStorage()
    logger.info("Chat storage: {}", type(storage).__name__)

    orchestrator = AgentOrchestrator(
        classifier=classifier,
        storage=storage,
        config=config,
        agents=agents,
        logger=logger,
    )

    if load_agents_from_config:
        for definition in settings.get_agent_definitions():
            streaming = definition.get("streaming", settings.AGENT_STREAMING)
            orchestrator.add_agent(
                LLMAgent(
                    name=definition["name"],
                    description=definition.get("description", ""),
                    llm=get_agent_llm(streaming=streaming),
                    system_prompt=definition.get("system_prompt"),
                    streaming=streaming,
                    save_chat=definition.get("save_chat", True),
                    logger=get_logger(generate_key_from_name(definition["name"])),
                )
            )

    orchestrator.validate()
    return orchestrator
