"""
Classifier prompt template and rendering helpers.

The template can be fetched from LangFuse Prompt Management at runtime.
The local default is defined in 'agent_prompts.py'.
"""

from .agent_prompts import (
    AGENT_DESCRIPTIONS_VAR,
    DEFAULT_CLASSIFIER_TEMPLATE,
    HISTORY_VAR,
    UNKNOWN_AGENT,
    check_template,
    format_agent_descriptions,
    load_classifier_template,
    render_template,
)

__all__ = [
    "AGENT_DESCRIPTIONS_VAR",
    "DEFAULT_CLASSIFIER_TEMPLATE",
    "HISTORY_VAR",
    "UNKNOWN_AGENT",
    "check_template",
    "format_agent_descriptions",
    "load_classifier_template",
    "render_template",
]
