"""
Application configuration - loads from YAML param files.

CONFIGURATION POLICY:
====================
Configuration is loaded from config/param.yaml and config/agents.yaml.
Secrets (API keys) live ONLY in .env and are loaded via os.getenv().

Supports LLM providers through OpenAI-compatible endpoints:
- OpenRouter (unified multi-provider access)
- OpenAI (direct)
- Groq (direct)
"""

from pathlib import Path
from typing import Any, Dict, List, Optional
import os
import yaml
from loguru import logger

# ========================================
# Project Paths
# ========================================

# Get project root (parent of src/infrastructure/)
_PROJECT_ROOT = Path(__file__).parent.parent.parent
_CONFIG_DIR = Path(os.getenv("ROUTER_CONFIG_DIR", _PROJECT_ROOT / "config"))

# ========================================
# YAML Config Loading
# ========================================

def _load_yaml(filename: str) -> Dict[str, Any]:
    """Load a YAML config file."""
    filepath = _CONFIG_DIR / filename
    if not filepath.exists():
        return {}
    with open(filepath, "r") as f:
        return yaml.safe_load(f) or {}


def _get_nested(d: Dict, *keys, default=None):
    """Get nested dictionary value safely."""
    for key in keys:
        if isinstance(d, dict):
            d = d.get(key, default)
        else:
            return default
    return d if d is not None else default


# Load configs
_PARAMS = _load_yaml("param.yaml")
_AGENTS = _load_yaml("agents.yaml")

# ========================================
# Provider Configuration
# ========================================

PROVIDER = _get_nested(_PARAMS, "provider", "default", default="openrouter")
OPENROUTER_BASE_URL = _get_nested(_PARAMS, "provider", "openrouter_base_url",
                                   default="https://openrouter.ai/api/v1")
GROQ_BASE_URL = _get_nested(_PARAMS, "provider", "groq_base_url",
                            default="https://api.groq.com/openai/v1")

# ========================================
# Classifier Model
# ========================================
# The classifier needs reliable tool calling; the agents need good prose.

CLASSIFIER_MODEL = _get_nested(_PARAMS, "classifier", "model", default="openai/gpt-4o-mini")
CLASSIFIER_PROVIDER = _get_nested(_PARAMS, "classifier", "provider", default=PROVIDER)

# Inference parameters are forwarded to the model client untouched.
CLASSIFIER_INFERENCE = {
    "max_tokens": _get_nested(_PARAMS, "classifier", "inference", "max_tokens", default=1000),
    "temperature": _get_nested(_PARAMS, "classifier", "inference", "temperature", default=0.0),
    "top_p": _get_nested(_PARAMS, "classifier", "inference", "top_p", default=0.9),
    "stop_sequences": _get_nested(_PARAMS, "classifier", "inference", "stop_sequences", default=None),
}

CLASSIFIER_PROMPT_NAME = _get_nested(_PARAMS, "classifier", "prompt_name",
                                     default="router-classifier-system")

# ========================================
# Agent Model
# ========================================

AGENT_MODEL = _get_nested(_PARAMS, "agent", "model", default="google/gemini-2.5-flash")
AGENT_PROVIDER = _get_nested(_PARAMS, "agent", "provider", default=PROVIDER)
AGENT_TEMPERATURE = _get_nested(_PARAMS, "agent", "temperature", default=0.3)
AGENT_MAX_TOKENS = _get_nested(_PARAMS, "agent", "max_tokens", default=2000)
AGENT_STREAMING = _get_nested(_PARAMS, "agent", "streaming", default=True)

# ========================================
# Orchestrator
# ========================================

FALLBACK_MODE = _get_nested(_PARAMS, "orchestrator", "fallback", "mode", default="default_agent")
DEFAULT_AGENT_ID = _get_nested(_PARAMS, "orchestrator", "fallback", "default_agent_id", default=None)
MIN_CONFIDENCE = _get_nested(_PARAMS, "orchestrator", "min_confidence", default=0.0)
MAX_MESSAGE_PAIRS_PER_SESSION = _get_nested(
    _PARAMS, "orchestrator", "max_message_pairs_per_session", default=50)

CLASSIFICATION_ERROR_MESSAGE = _get_nested(
    _PARAMS, "orchestrator", "messages", "classification_error",
    default="I'm sorry, I couldn't work out how to handle that request. Please try rephrasing it.")
NO_SELECTED_AGENT_MESSAGE = _get_nested(
    _PARAMS, "orchestrator", "messages", "no_selected_agent",
    default="I'm sorry, I couldn't find an agent able to help with that. Could you give me a bit more detail?")
GENERAL_ROUTING_ERROR_MESSAGE = _get_nested(
    _PARAMS, "orchestrator", "messages", "general_routing_error",
    default="Something went wrong while handling your request. Please try again.")

LOG_AGENT_CHAT = _get_nested(_PARAMS, "orchestrator", "logging", "agent_chat", default=False)
LOG_CLASSIFIER_CHAT = _get_nested(_PARAMS, "orchestrator", "logging", "classifier_chat", default=False)
LOG_CLASSIFIER_RAW_OUTPUT = _get_nested(
    _PARAMS, "orchestrator", "logging", "classifier_raw_output", default=False)
LOG_CLASSIFIER_OUTPUT = _get_nested(_PARAMS, "orchestrator", "logging", "classifier_output", default=False)
LOG_EXECUTION_TIMES = _get_nested(_PARAMS, "orchestrator", "logging", "execution_times", default=False)

# ========================================
# Chat Storage
# ========================================

STORAGE_BACKEND = _get_nested(_PARAMS, "storage", "backend", default="memory")
CHAT_DB_URL = os.getenv("CHAT_DB_URL") or _get_nested(
    _PARAMS, "storage", "db_url", default=f"sqlite:///{_PROJECT_ROOT / 'data' / 'chat_history.db'}")

# ========================================
# Logging
# ========================================

LOG_LEVEL = os.getenv("LOG_LEVEL") or _get_nested(_PARAMS, "logging", "level", default="INFO")
LOG_FILE = _get_nested(_PARAMS, "logging", "file", default=None)

# ========================================
# Helper Functions
# ========================================

def get_api_key(provider: Optional[str] = None) -> Optional[str]:
    """Get API key for the specified provider."""
    return os.getenv(get_key_name(provider or PROVIDER))


def get_agent_definitions() -> List[Dict[str, Any]]:
    """
    Agent definitions from config/agents.yaml.

    Each entry has ``name``, ``description`` and optional ``system_prompt``,
    ``save_chat`` and ``streaming`` keys.
    """
    agents = _AGENTS.get("agents", [])
    return [a for a in agents if isinstance(a, dict) and a.get("name")]


def validate() -> None:
    """
    Validate configuration.

    Raises:
        ValueError: If required secrets are missing or values are out of range
    """
    for provider in {CLASSIFIER_PROVIDER, AGENT_PROVIDER}:
        if not get_api_key(provider):
            key_name = get_key_name(provider)
            raise ValueError(
                f" Missing required secret: {key_name}\n"
                f"Please add it to your .env file."
            )

    if FALLBACK_MODE not in {"default_agent", "no_agent", "none"}:
        raise ValueError(f"Unknown orchestrator.fallback.mode: {FALLBACK_MODE!r}")

    if not 0.0 <= float(MIN_CONFIDENCE) <= 1.0:
        raise ValueError("orchestrator.min_confidence must be between 0 and 1")

    if STORAGE_BACKEND not in {"memory", "sql"}:
        raise ValueError(f"Unknown storage.backend: {STORAGE_BACKEND!r}")


def get_key_name(provider: str) -> str:
    return {
        "openrouter": "OPENROUTER_API_KEY",
        "openai": "OPENAI_API_KEY",
        "groq": "GROQ_API_KEY",
    }.get(provider, f"{provider.upper()}_API_KEY")


def dump() -> None:
    """Log all active non-secret configuration values for debugging."""
    logger.info("\n" + "=" * 60)
    logger.info("CONFIGURATION (NON-SECRETS ONLY)")
    logger.info("=" * 60)

    logger.info("\n Classifier:")
    logger.info(f"   Provider: {CLASSIFIER_PROVIDER}")
    logger.info(f"   Model: {CLASSIFIER_MODEL}")
    logger.info(f"   Inference: {CLASSIFIER_INFERENCE}")
    logger.info(f"   Prompt name: {CLASSIFIER_PROMPT_NAME}")

    logger.info("\n Agents:")
    logger.info(f"   Provider: {AGENT_PROVIDER}")
    logger.info(f"   Model: {AGENT_MODEL}")
    logger.info(f"   Streaming: {AGENT_STREAMING}")
    logger.info(f"   Defined in agents.yaml: {len(get_agent_definitions())}")

    logger.info("\n Orchestrator:")
    logger.info(f"   Fallback mode: {FALLBACK_MODE}")
    logger.info(f"   Default agent: {DEFAULT_AGENT_ID or '(first registered)'}")
    logger.info(f"   Min confidence: {MIN_CONFIDENCE}")
    logger.info(f"   Max message pairs / session: {MAX_MESSAGE_PAIRS_PER_SESSION}")

    logger.info("\n Storage:")
    logger.info(f"   Backend: {STORAGE_BACKEND}")
    if STORAGE_BACKEND == "sql":
        logger.info(f"   DB backend: {CHAT_DB_URL.split(':', 1)[0]}")

    logger.info("\n" + "=" * 60 + "\n")


def load_orchestrator_config():
    """Orchestrator settings from param.yaml as an ``OrchestratorConfig``."""
    from agents.orchestrator import OrchestratorConfig

    return OrchestratorConfig.from_settings()
