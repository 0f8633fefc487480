"""Shared utilities: error taxonomy and retry policy."""

from .errors import (
    AssistantError,
    ArgumentParseError,
    ActionNotImplemented,
    ActionValidationError,
    ExternalServiceError,
    SynthesisContractError,
    PersistenceError,
    TurnFailedError,
    APOLOGY_MESSAGE,
)
from .retry import RetryPolicy, is_retryable_error

__all__ = [
    "AssistantError",
    "ArgumentParseError",
    "ActionNotImplemented",
    "ActionValidationError",
    "ExternalServiceError",
    "SynthesisContractError",
    "PersistenceError",
    "TurnFailedError",
    "APOLOGY_MESSAGE",
    "RetryPolicy",
    "is_retryable_error",
]
