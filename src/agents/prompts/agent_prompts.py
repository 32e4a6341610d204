"""
Prompt templates for the agent classifier.

The classifier system prompt can be managed in **LangFuse Prompt
Management** under the name configured as ``classifier.prompt_name``.
If it hasn't been created there, the local default below is used.

Templates use ``{{VARIABLE}}`` placeholders. Two are mandatory in every
template, including replacements:

  {{AGENT_DESCRIPTIONS}} - one ``agent-id:description`` line per agent
  {{HISTORY}}            - the session transcript, assistant lines
                           prefixed with ``[agent-id]``

Extra variables can be registered on the classifier and are substituted
the same way. Placeholders with no value are left untouched.
"""

import re
from typing import Iterable, Mapping, Sequence, Union

from agents.errors import PromptTemplateError
from infrastructure.observability import fetch_prompt_template


AGENT_DESCRIPTIONS_VAR = "AGENT_DESCRIPTIONS"
HISTORY_VAR = "HISTORY"
REQUIRED_VARIABLES = (AGENT_DESCRIPTIONS_VAR, HISTORY_VAR)

UNKNOWN_AGENT = "unknown"

TemplateValue = Union[str, Sequence[str]]

_PLACEHOLDER = re.compile(r"\{\{\s*([A-Za-z_][A-Za-z0-9_]*)\s*\}\}")


# Classifier system prompt (local default)


DEFAULT_CLASSIFIER_TEMPLATE = """\
You are AgentMatcher, a dispatcher that decides which specialised agent
should answer the user's next message. Use the agent descriptions and the
conversation so far to pick exactly one agent.

Available agents (identifier:description):
<agents>
{{AGENT_DESCRIPTIONS}}
</agents>

Conversation so far. Each assistant line starts with the identifier of
the agent that wrote it, in square brackets:
<history>
{{HISTORY}}
</history>

Instructions:
1. Read the user's message and decide which agent is best suited.
2. Follow-ups: if the message is short or carries little information on
   its own (an acknowledgement such as "yes", "ok", "sure", "thanks", a
   bare number such as "1" or "2", or an answer to the previous
   assistant question), select the agent that wrote the most recent
   assistant line in the history. Do not re-classify such messages from
   scratch.
3. If the user clearly changes topic, choose the agent for the new topic.
4. If no agent fits and you cannot decide with reasonable confidence,
   set selected_agent to "unknown". Never invent an identifier; only use
   identifiers from the list above or "unknown".
5. Rate your confidence between 0.0 and 1.0.

Always answer by calling the analyze_prompt tool with:
  userinput      - the user's message, verbatim
  selected_agent - the chosen agent identifier, or "unknown"
  confidence     - a number between 0.0 and 1.0

Examples:
- History empty. User: "I was charged twice this month"
  -> selected_agent: billing-agent, confidence: 0.9
- Last assistant line "[tech-support-agent] Would you like me to walk you
  through resetting it?". User: "Yes please"
  -> selected_agent: tech-support-agent, confidence: 0.85
- Last assistant line "[billing-agent] Which invoice: 1, 2 or 3?". User: "2"
  -> selected_agent: billing-agent, confidence: 0.9
- User: "What's the meaning of life?" with no suitable agent
  -> selected_agent: unknown, confidence: 0.2
"""


# Template helpers


def missing_required_variables(template: str) -> list:
    """Required placeholders that ``template`` does not contain."""
    present = set(_PLACEHOLDER.findall(template))
    return [name for name in REQUIRED_VARIABLES if name not in present]


def check_template(template: str) -> str:
    """Raise ``PromptTemplateError`` unless both mandatory slots are present."""
    if not isinstance(template, str) or not template.strip():
        raise PromptTemplateError("Classifier prompt template must be a non-empty string")
    missing = missing_required_variables(template)
    if missing:
        raise PromptTemplateError(
            f"Classifier prompt template is missing required variables: {', '.join(missing)}",
            details={"missing": missing},
        )
    return template


def _as_text(value: TemplateValue) -> str:
    if isinstance(value, str):
        return value
    return "\n".join(str(item) for item in value)


def render_template(template: str, variables: Mapping[str, TemplateValue]) -> str:
    """Substitute ``{{NAME}}`` placeholders; lists are joined with newlines."""
    def _replace(match: "re.Match") -> str:
        name = match.group(1)
        if name in variables:
            return _as_text(variables[name])
        return match.group(0)

    return _PLACEHOLDER.sub(_replace, template)


def format_agent_descriptions(agents: Iterable) -> str:
    """One ``identifier:description`` line per agent."""
    return "\n".join(f"{agent.id}:{agent.description}" for agent in agents)


def load_classifier_template(prompt_name: str) -> str:
    """Fetch the classifier template from LangFuse, falling back to the default."""
    template = fetch_prompt_template(prompt_name, fallback=DEFAULT_CLASSIFIER_TEMPLATE)
    return check_template(template)
