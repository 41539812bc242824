"""
Exception hierarchy for the adaptive UI service.

Routes map ValidationError to 400 and GenerationError to 500. Soft failures
(capability fetches, tool calls, unbound components) are encoded into data
and never raised.
"""


class AdaptiveUiError(Exception):
    """Base class for all service errors."""


class ValidationError(AdaptiveUiError, ValueError):
    """A record or document is missing required fields."""


class GenerationError(AdaptiveUiError, RuntimeError):
    """A UI generation request could not be completed."""


class LlmUnavailableError(GenerationError):
    """No LLM provider is configured, or every configured provider failed."""


class KnowledgeBackendError(GenerationError):
    """The remote knowledge backend was unreachable or answered with an error."""


class DeviceSelectionError(AdaptiveUiError):
    """The device-selection response could not be used."""
