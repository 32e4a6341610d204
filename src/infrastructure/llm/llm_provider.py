"""
Chat LLM providers - classifier and agent models.

Two roles:
  - Classifier: small, fast model with reliable tool calling (gpt-4o-mini by default)
  - Agent:      user-facing model for the replies themselves
"""

from typing import Optional, Any
from langchain_openai import ChatOpenAI

from infrastructure.config import (
    CLASSIFIER_MODEL,
    CLASSIFIER_PROVIDER,
    AGENT_MODEL,
    AGENT_PROVIDER,
    AGENT_TEMPERATURE,
    AGENT_MAX_TOKENS,
    GROQ_BASE_URL,
    OPENROUTER_BASE_URL,
    get_api_key,
)


def _build_llm(
    model: str,
    provider: str,
    temperature: Optional[float] = None,
    streaming: bool = False,
    max_tokens: Optional[int] = None,
    **kwargs: Any,
) -> ChatOpenAI:
    """Internal factory - builds a ChatOpenAI for any provider."""
    llm_kwargs: dict[str, Any] = dict(
        model=model,
        streaming=streaming,
        max_tokens=max_tokens,
        **kwargs,
    )
    if temperature is not None:
        llm_kwargs["temperature"] = temperature

    if provider == "openrouter":
        llm_kwargs["openai_api_base"] = OPENROUTER_BASE_URL
        llm_kwargs["openai_api_key"] = get_api_key("openrouter")
    elif provider == "groq":
        llm_kwargs["openai_api_base"] = GROQ_BASE_URL
        llm_kwargs["openai_api_key"] = get_api_key("groq")
    elif provider == "openai":
        llm_kwargs["openai_api_key"] = get_api_key("openai")
    else:
        raise ValueError(f"Unsupported LLM provider: {provider!r}")

    return ChatOpenAI(**llm_kwargs)


def get_classifier_llm(model: Optional[str] = None, **kwargs: Any) -> ChatOpenAI:
    """LLM for agent selection.

    Inference parameters (temperature, top_p, ...) are NOT set here; the
    classifier forwards its own configured values on every call.
    """
    return _build_llm(model or CLASSIFIER_MODEL, CLASSIFIER_PROVIDER, **kwargs)


def get_agent_llm(
    model: Optional[str] = None,
    temperature: float = AGENT_TEMPERATURE,
    streaming: bool = False,
    **kwargs: Any,
) -> ChatOpenAI:
    """LLM for user-facing agent replies."""
    kwargs.setdefault("max_tokens", AGENT_MAX_TOKENS)
    return _build_llm(
        model or AGENT_MODEL,
        AGENT_PROVIDER,
        temperature=temperature,
        streaming=streaming,
        **kwargs,
    )
