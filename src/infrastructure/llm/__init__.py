"""
LLM provider wrappers.

  get_classifier_llm() → agent-selection model (tool calling)
  get_agent_llm()      → user-facing reply model
"""

from .llm_provider import get_agent_llm, get_classifier_llm

__all__ = [
    "get_agent_llm",
    "get_classifier_llm",
]
