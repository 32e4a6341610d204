"""
Infrastructure layer - pure plumbing (DB, LLM, config, logging, tracing).

No routing logic here. Just connections, clients, and configuration loading.
"""

from .llm import get_agent_llm, get_classifier_llm
from .log import NULL_LOGGER, NullLogger, get_logger, setup_logging
from .observability import observe, flush, get_langfuse

__all__ = [
    "get_agent_llm",
    "get_classifier_llm",
    "NULL_LOGGER",
    "NullLogger",
    "get_logger",
    "setup_logging",
    "observe",
    "flush",
    "get_langfuse",
]
