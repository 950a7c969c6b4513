"""Domain exception hierarchy for the local chat session engine."""

from __future__ import annotations


class LocalChatError(RuntimeError):
    """Base class for all domain-level chat errors."""


class InvalidConfigurationError(LocalChatError):
    """Raised when the selected model cannot be resolved to an identifier."""


class EngineInitializationError(LocalChatError):
    """Raised when the inference engine fails to load a model."""


class GenerationError(LocalChatError):
    """Raised when a streaming completion fails before or during output."""


class MalformedImportError(LocalChatError):
    """Raised when an interchange document is missing required fields."""


class PersistenceError(LocalChatError):
    """Raised by key-value stores when a read or write cannot complete."""


class SessionBusyError(LocalChatError):
    """Raised when a command is rejected because a generation is in flight."""


class InvalidTransitionError(LocalChatError):
    """Raised when the lifecycle state machine is asked for an illegal move."""


class ConfigValidationError(LocalChatError):
    """Raised when configuration cannot be validated safely."""
