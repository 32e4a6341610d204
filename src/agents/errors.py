"""
Exception hierarchy for the routing engine.

Everything except ``RegistryConfigurationError`` and ``PromptTemplateError``
is recovered inside the orchestrator and surfaced as a failed
``AgentResponse``; those two are setup mistakes and reach the caller.
"""

from typing import Optional


class OrchestratorError(Exception):
    """Base class for routing engine errors."""

    def __init__(self, message: str, *, details: Optional[dict] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    @property
    def kind(self) -> str:
        """Short name used as the error indicator on failed responses."""
        return type(self).__name__


class ClassificationError(OrchestratorError):
    """The classifier could not produce a selection (model call failed)."""


class ClassificationSchemaError(ClassificationError):
    """The model's classification did not match the required schema."""


class UnresolvedAgentError(OrchestratorError):
    """No registered agent matched and no fallback is configured."""


class AgentInvocationError(OrchestratorError):
    """The selected agent raised or returned something unusable."""


class StreamIntegrityError(OrchestratorError):
    """A streamed reply ended abnormally or was read before completion."""


class PromptTemplateError(OrchestratorError, ValueError):
    """A classifier prompt template is missing a required slot."""


class RegistryConfigurationError(OrchestratorError):
    """The orchestrator cannot produce any response with its current setup."""


class InvalidRequestError(OrchestratorError):
    """The caller's turn could not be accepted (e.g. unsupported additional_params)."""
