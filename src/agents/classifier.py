"""
Agent classifier - LLM-based agent selection.

Takes a user message + session history + the agent registry and returns a
``ClassifierResult`` telling the orchestrator which agent should answer
and how confident the model is.

The shared protocol lives in ``Classifier``: prompt rendering (agent
descriptions + attributed history), the ``analyze_prompt`` output schema
and result validation. Concrete classifiers only implement the model call.
"""

import json
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence

from agents.base import Agent, generate_key_from_name
from agents.errors import ClassificationSchemaError
from agents.prompts.agent_prompts import (
    AGENT_DESCRIPTIONS_VAR,
    DEFAULT_CLASSIFIER_TEMPLATE,
    HISTORY_VAR,
    UNKNOWN_AGENT,
    TemplateValue,
    check_template,
    format_agent_descriptions,
    render_template,
)
from infrastructure.log import NULL_LOGGER
from infrastructure.observability import observe, update_current_observation
from memory.schemas import ConversationMessage, format_history


TOOL_NAME = "analyze_prompt"

# Output schema sent to the model as a forced tool call.
ANALYZE_PROMPT_TOOL = {
    "type": "function",
    "function": {
        "name": TOOL_NAME,
        "description": "Record which agent should answer the user's message.",
        "parameters": {
            "type": "object",
            "properties": {
                "userinput": {
                    "type": "string",
                    "description": "The user's message, verbatim.",
                },
                "selected_agent": {
                    "type": "string",
                    "description": "Identifier of the chosen agent, or \"unknown\".",
                },
                "confidence": {
                    "type": "number",
                    "description": "Confidence in the selection, from 0.0 to 1.0.",
                },
            },
            "required": ["userinput", "selected_agent", "confidence"],
        },
    },
}

REQUIRED_FIELDS = ("userinput", "selected_agent", "confidence")

# Config key -> model client keyword. Values are forwarded unchanged.
_INFERENCE_KEYS = {
    "max_tokens": "max_tokens",
    "temperature": "temperature",
    "top_p": "top_p",
    "stop_sequences": "stop",
}


@dataclass(frozen=True)
class ClassifierResult:
    """
    Output of one classification.

    Attributes:
        selected_agent_id: Registry key of the chosen agent, or ``"unknown"``.
        confidence: Model's self-assessed confidence [0-1].
        user_input: The user's original message.
    """

    selected_agent_id: str
    confidence: float
    user_input: str

    @property
    def is_unknown(self) -> bool:
        return self.selected_agent_id == UNKNOWN_AGENT


def parse_classification(data: Any, user_input: str) -> ClassifierResult:
    """
    Validate tool-call arguments against the ``analyze_prompt`` schema.

    Raises:
        ClassificationSchemaError: On any missing field or wrong type.
    """
    if not isinstance(data, Mapping):
        raise ClassificationSchemaError(
            f"Classification must be an object, got {type(data).__name__}")

    missing = [name for name in REQUIRED_FIELDS if name not in data]
    if missing:
        raise ClassificationSchemaError(
            f"Classification is missing required fields: {', '.join(missing)}",
            details={"missing": missing, "received": dict(data)},
        )

    if not isinstance(data["userinput"], str):
        raise ClassificationSchemaError("userinput must be a string")

    selected = data["selected_agent"]
    if not isinstance(selected, str) or not selected.strip():
        raise ClassificationSchemaError("selected_agent must be a non-empty string")

    confidence = data["confidence"]
    if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
        raise ClassificationSchemaError("confidence must be a number")
    if math.isnan(confidence) or not 0.0 <= confidence <= 1.0:
        raise ClassificationSchemaError(
            f"confidence must be between 0 and 1, got {confidence}")

    # Models sometimes echo the display name or the bracketed history prefix.
    agent_id = generate_key_from_name(selected.strip()) or UNKNOWN_AGENT

    return ClassifierResult(
        selected_agent_id=agent_id,
        confidence=float(confidence),
        user_input=user_input,
    )


class Classifier(ABC):
    """
    Base class for agent classifiers.

    ``classify()`` renders the system prompt and delegates the model call
    to ``process_request()``. Subclasses decide which model client to use.
    """

    def __init__(self, logger: Any = None) -> None:
        self.prompt_template: str = DEFAULT_CLASSIFIER_TEMPLATE
        self.custom_variables: Dict[str, TemplateValue] = {}
        self.logger = logger if logger is not None else NULL_LOGGER

    def set_system_prompt(
        self,
        template: Optional[str] = None,
        variables: Optional[Mapping[str, TemplateValue]] = None,
    ) -> None:
        """
        Replace the prompt template and/or register extra template variables.

        Raises:
            PromptTemplateError: If the template lacks {{AGENT_DESCRIPTIONS}}
                or {{HISTORY}}.
        """
        if template is not None:
            self.prompt_template = check_template(template)
        if variables:
            reserved = {AGENT_DESCRIPTIONS_VAR, HISTORY_VAR} & set(variables)
            if reserved:
                raise ValueError(f"Variables {sorted(reserved)} are filled in per request")
            self.custom_variables.update(variables)

    def build_system_prompt(
        self,
        chat_history: Sequence[ConversationMessage],
        agents: Mapping[str, Agent],
    ) -> str:
        """Render the template for one request."""
        variables: Dict[str, TemplateValue] = dict(self.custom_variables)
        variables[AGENT_DESCRIPTIONS_VAR] = format_agent_descriptions(agents.values())
        variables[HISTORY_VAR] = format_history(chat_history)
        return render_template(self.prompt_template, variables)

    def classify(
        self,
        user_input: str,
        chat_history: Sequence[ConversationMessage],
        agents: Mapping[str, Agent],
    ) -> ClassifierResult:
        """
        Select the agent for ``user_input``.

        ``chat_history`` is only read. Returns ``"unknown"`` as the agent id
        when the model cannot decide; fallback is the orchestrator's call.
        """
        system_prompt = self.build_system_prompt(tuple(chat_history), agents)
        return self.process_request(user_input, system_prompt)

    @abstractmethod
    def process_request(self, user_input: str, system_prompt: str) -> ClassifierResult:
        """Send the rendered prompt and user turn to the model and parse the result."""


class LLMClassifier(Classifier):
    """
    Classifier backed by a LangChain chat model.

    Forces a call to the ``analyze_prompt`` tool so the answer arrives as
    structured arguments. Models that reply with plain JSON text instead
    are parsed as a fallback.
    """

    def __init__(
        self,
        llm: Any,
        inference_config: Optional[Mapping[str, Any]] = None,
        log_raw_output: bool = False,
        logger: Any = None,
    ) -> None:
        """
        Args:
            llm: A LangChain ``ChatOpenAI`` (or compatible) instance.
            inference_config: ``max_tokens``, ``temperature``, ``top_p``,
                ``stop_sequences``; forwarded to the model as-is.
            log_raw_output: Log the raw model response at INFO level.
        """
        super().__init__(logger=logger)
        self.llm = llm
        self.inference_config = dict(inference_config or {})
        self.log_raw_output = log_raw_output

    def _invoke_kwargs(self) -> Dict[str, Any]:
        kwargs = {}
        for key, value in self.inference_config.items():
            if value is None:
                continue
            kwargs[_INFERENCE_KEYS.get(key, key)] = value
        return kwargs

    @observe(name="classifier", as_type="generation")
    def process_request(self, user_input: str, system_prompt: str) -> ClassifierResult:
        """
        Call the model with the forced tool and validate its arguments.

        Traced as a LangFuse **generation** so cost/tokens are captured.
        """
        update_current_observation(
            input=user_input[:1000],
            model=self._model_name(),
        )

        bound = self.llm.bind_tools(
            [ANALYZE_PROMPT_TOOL],
            tool_choice=TOOL_NAME,
            **self._invoke_kwargs(),
        )
        response = bound.invoke(
            [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_input},
            ]
        )

        if self.log_raw_output:
            self.logger.info(
                "Classifier raw output: tool_calls={} content={!r}",
                getattr(response, "tool_calls", None),
                getattr(response, "content", response),
            )

        arguments = self._extract_arguments(response)
        result = parse_classification(arguments, user_input)
        update_current_observation(
            output=f"{result.selected_agent_id} ({result.confidence:.2f})",
        )
        return result

    def _model_name(self) -> str:
        """Extract model name from the LLM for LangFuse metadata."""
        if hasattr(self.llm, "model_name"):
            return self.llm.model_name
        if hasattr(self.llm, "model"):
            return self.llm.model
        return "unknown"

    # ── parsing ───────────────────────────────────────────────

    def _extract_arguments(self, response: Any) -> Any:
        """Pull the ``analyze_prompt`` arguments out of a model response."""
        tool_calls: List[Dict[str, Any]] = list(getattr(response, "tool_calls", None) or [])
        for call in tool_calls:
            if call.get("name") == TOOL_NAME:
                return call.get("args")
        if tool_calls:
            raise ClassificationSchemaError(
                f"Model called unexpected tool {tool_calls[0].get('name')!r}")

        invalid = getattr(response, "invalid_tool_calls", None)
        if invalid:
            raise ClassificationSchemaError(
                f"Model produced malformed tool arguments: {invalid[0].get('error')}")

        content = getattr(response, "content", response)
        if not isinstance(content, str):
            raise ClassificationSchemaError("Model response has neither a tool call nor text")
        self.logger.warning("Classifier answered without a tool call; parsing text output")
        return self._parse_text(content)

    def _parse_text(self, raw: str) -> Any:
        """
        Parse a JSON object from plain model text.

        Handles markdown fences and surrounding prose.
        """
        text = raw.strip()
        if text.startswith("```"):
            text = text.split("\n", 1)[-1]  # drop first line
        if text.endswith("```"):
            text = text.rsplit("```", 1)[0]
        text = text.strip()

        # Locate JSON object boundaries
        start = text.find("{")
        end = text.rfind("}")
        if start == -1 or end == -1:
            raise ClassificationSchemaError("Classifier output is not JSON")

        try:
            return json.loads(text[start : end + 1])
        except json.JSONDecodeError as exc:
            raise ClassificationSchemaError(f"Classifier JSON parse error: {exc}") from exc
