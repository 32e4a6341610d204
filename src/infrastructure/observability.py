"""
LangFuse tracing for the router.

``route_request`` is the top-level trace, each classification a nested
generation. The classifier template can also be served from LangFuse
Prompt Management.

Tracing is on only when ``observability.enabled`` is true in param.yaml
AND ``LANGFUSE_SECRET_KEY`` / ``LANGFUSE_PUBLIC_KEY`` are set; otherwise
every helper here is a no-op.
"""

from loguru import logger
import os
from typing import Optional

from langfuse import get_client as _get_lf_client
from langfuse import observe as _lf_observe

_ENABLED: Optional[bool] = None
_langfuse_client = None
_initialised = False


def _is_enabled() -> bool:
    global _ENABLED
    if _ENABLED is None:
        from infrastructure.config import _get_nested, _PARAMS
        flag = _get_nested(_PARAMS, "observability", "enabled", default=False)
        has_keys = bool(os.getenv("LANGFUSE_SECRET_KEY") and os.getenv("LANGFUSE_PUBLIC_KEY"))
        _ENABLED = bool(flag) and has_keys
    return _ENABLED


def _present(**kwargs) -> dict:
    return {key: value for key, value in kwargs.items() if value is not None}


def get_langfuse():
    """Singleton Langfuse client, or None when tracing is off."""
    global _langfuse_client, _initialised
    if _initialised:
        return _langfuse_client
    _initialised = True

    if not _is_enabled():
        logger.info("Observability disabled; routing traces will not be sent")
        return None

    from langfuse import Langfuse

    host = os.getenv("LANGFUSE_BASE_URL", "https://us.cloud.langfuse.com")
    try:
        _langfuse_client = Langfuse(
            secret_key=os.getenv("LANGFUSE_SECRET_KEY"),
            public_key=os.getenv("LANGFUSE_PUBLIC_KEY"),
            host=host,
        )
        logger.info("LangFuse client initialised (host={})", host)
    except Exception as exc:
        logger.error("Failed to initialise LangFuse: {}", exc)
        _langfuse_client = None
    return _langfuse_client


def fetch_prompt_template(name: str, *, fallback: str, cache_ttl_seconds: int = 300) -> str:
    """
    Raw classifier template from LangFuse, placeholders untouched.

    ``{{AGENT_DESCRIPTIONS}}`` and ``{{HISTORY}}`` are filled per request by
    the classifier, so the prompt is never compiled here. Returns
    ``fallback`` if the prompt is missing or tracing is off.
    """
    client = get_langfuse()
    if client is None:
        return fallback
    try:
        prompt_obj = client.get_prompt(name, type="text", cache_ttl_seconds=cache_ttl_seconds)
    except Exception as exc:
        logger.debug("LangFuse prompt '{}' unavailable ({}); using local template", name, exc)
        return fallback
    logger.debug("LangFuse prompt '{}' loaded (version={})", name, getattr(prompt_obj, "version", "?"))
    return prompt_obj.prompt


def observe(*, name: Optional[str] = None, as_type: Optional[str] = None):
    """``langfuse.observe``, or a passthrough decorator when tracing is off."""
    if not _is_enabled():
        return lambda fn: fn
    return _lf_observe(**_present(name=name, as_type=as_type))


def update_current_trace(
    *,
    user_id: Optional[str] = None,
    session_id: Optional[str] = None,
    metadata: Optional[dict] = None,
    tags: Optional[list] = None,
) -> None:
    """Tag the routing trace with the user and session."""
    if not _is_enabled():
        return
    try:
        _get_lf_client().update_current_trace(
            **_present(user_id=user_id, session_id=session_id, metadata=metadata, tags=tags))
    except Exception as exc:
        logger.debug("update_current_trace failed (non-critical): {}", exc)


def update_current_observation(
    *,
    input: Optional[str] = None,
    output: Optional[str] = None,
    metadata: Optional[dict] = None,
    model: Optional[str] = None,
) -> None:
    """Attach I/O to the current span; with ``model`` it updates the generation."""
    if not _is_enabled():
        return
    kwargs = _present(input=input, output=output, metadata=metadata)
    try:
        client = _get_lf_client()
        if model is not None:
            client.update_current_generation(model=model, **kwargs)
        elif kwargs:
            client.update_current_span(**kwargs)
    except Exception as exc:
        logger.debug("update_current_observation failed (non-critical): {}", exc)


def flush() -> None:
    """Send pending traces; call before the process exits."""
    if _is_enabled():
        try:
            _get_lf_client().flush()
        except Exception as exc:
            logger.debug("LangFuse flush failed: {}", exc)
