"""Error taxonomy for the token chat assistant."""

from typing import Optional

APOLOGY_MESSAGE = (
    "I'm sorry, something went wrong while processing your message. "
    "Please try again in a moment."
)


class AssistantError(Exception):
    """Base class for all assistant errors."""


class ArgumentParseError(AssistantError):
    """Tool-call arguments were not a valid JSON object."""

    def __init__(self, action_name: str, raw_arguments: str, reason: str):
        self.action_name = action_name
        self.raw_arguments = raw_arguments
        self.reason = reason
        super().__init__(f"Invalid arguments for {action_name}: {reason}")


class ActionNotImplemented(AssistantError):
    """The requested action name is not in the tool registry."""

    def __init__(self, action_name: str):
        self.action_name = action_name
        super().__init__(f"Action {action_name} not implemented")


class ActionNotAvailable(ActionNotImplemented):
    """The action exists but is not offered in the current phase."""

    def __init__(self, action_name: str, phase: str):
        self.action_name = action_name
        self.phase = phase
        AssistantError.__init__(self, f"Action {action_name} not available during {phase}")


class ActionValidationError(AssistantError):
    """A handler rejected its (well-formed) arguments."""


class ExternalServiceError(AssistantError):
    """An LLM, vector store, or domain API call failed."""

    def __init__(
        self,
        service: str,
        message: str,
        retryable: bool = False,
        status_code: Optional[int] = None
    ):
        self.service = service
        self.retryable = retryable
        self.status_code = status_code
        super().__init__(f"{service}: {message}")


class SynthesisContractError(AssistantError):
    """The synthesis output was not valid JSON or lacked required keys."""

    def __init__(self, message: str, raw_output: Optional[str] = None):
        self.raw_output = raw_output
        super().__init__(message)


class PersistenceError(AssistantError):
    """A relational store operation failed."""


class TurnFailedError(AssistantError):
    """
    A turn was aborted.

    Carries the phase that failed so callers can tell a conversation
    lookup failure from a persistence failure. `user_message` is the only
    text that should ever be shown to the end user.
    """

    def __init__(self, phase: str, cause: Optional[BaseException] = None):
        self.phase = phase
        self.cause = cause
        self.user_message = APOLOGY_MESSAGE
        detail = f": {cause}" if cause else ""
        super().__init__(f"Turn failed during {phase}{detail}")
