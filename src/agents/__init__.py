"""
Agentic Routing Engine - the core agent module.

Public API:
    build_orchestrator() → AgentOrchestrator (fully wired, ready to chat)
    AgentOrchestrator    → main routing class
    OrchestratorConfig   → fallback policy, retention and messages
    Agent / LLMAgent     → agent contract and the chat-model agent
    LLMClassifier        → agent selection via a forced tool call
    AgentResponse        → response dataclass
    OutputAccumulator    → wrapper around streamed replies
"""

from .accumulator import OutputAccumulator, StreamState
from .base import (
    Agent,
    AgentProcessingResult,
    AgentResponse,
    generate_key_from_name,
)
from .classifier import Classifier, ClassifierResult, LLMClassifier
from .errors import (
    AgentInvocationError,
    ClassificationError,
    ClassificationSchemaError,
    InvalidRequestError,
    OrchestratorError,
    PromptTemplateError,
    RegistryConfigurationError,
    StreamIntegrityError,
    UnresolvedAgentError,
)
from .llm_agent import LLMAgent
from .orchestrator import (
    AgentOrchestrator,
    FallbackMode,
    OrchestratorConfig,
    build_orchestrator,
)

__all__ = [
    "Agent",
    "AgentInvocationError",
    "AgentOrchestrator",
    "AgentProcessingResult",
    "AgentResponse",
    "ClassificationError",
    "ClassificationSchemaError",
    "InvalidRequestError",
    "Classifier",
    "ClassifierResult",
    "FallbackMode",
    "LLMAgent",
    "LLMClassifier",
    "OrchestratorConfig",
    "OrchestratorError",
    "OutputAccumulator",
    "PromptTemplateError",
    "RegistryConfigurationError",
    "StreamIntegrityError",
    "StreamState",
    "UnresolvedAgentError",
    "build_orchestrator",
    "generate_key_from_name",
]
