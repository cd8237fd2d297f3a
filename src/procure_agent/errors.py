"""Error taxonomy for the turn orchestration subsystem."""

from typing import Any, Optional

UNAVAILABLE_MESSAGE = (
    "Sorry, the assistant is temporarily unavailable. Please try again in a moment."
)
PERSISTENCE_MESSAGE = (
    "Sorry, something went wrong while saving the conversation. "
    "Your last message may not have been saved."
)


class ReliabilityError(Exception):
    """Base exception raised by the reliability layer before reaching the provider."""

    def __init__(self, message: str, provider: str = ""):
        super().__init__(message)
        self.provider = provider


class RateLimited(ReliabilityError):
    """Raised when the reservoir has no slot within the queue wait ceiling,
    or when the provider itself reports a rate limit."""


class CircuitOpen(ReliabilityError):
    """Raised when the circuit breaker rejects a call without contacting the provider."""

    def __init__(self, message: str, provider: str = "", retry_after: float = 0.0):
        super().__init__(message, provider)
        self.retry_after = retry_after


class TurnFailure(Exception):
    """Base exception for failures reported to the caller of ``run_turn``.

    Attributes:
        kind: Stable error code for client-side retry logic.
        user_message: Short apologetic message suitable for the end user.
    """

    kind = "TurnFailed"
    default_user_message = "Sorry, I could not process your request."

    def __init__(
        self,
        message: str,
        user_message: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.user_message = user_message or self.default_user_message
        self.cause = cause

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "message": self.user_message, "detail": str(self)}


class ProviderUnavailable(TurnFailure):
    """Rate limited or circuit open. The conversation is untouched; retry later."""

    kind = "Unavailable"
    default_user_message = UNAVAILABLE_MESSAGE


class ProviderTransportError(TurnFailure):
    """Provider failed after retries (or with a non-retryable error)."""

    kind = "TransportError"
    default_user_message = UNAVAILABLE_MESSAGE


class PersistenceFailure(TurnFailure):
    """The reply was computed but the turn was not durably recorded."""

    kind = "PersistenceFailed"
    default_user_message = PERSISTENCE_MESSAGE


class ValidationError(TurnFailure):
    """The incoming request is invalid (empty message, foreign conversation)."""

    kind = "InvalidRequest"
    default_user_message = "Sorry, that request could not be processed."


class ConversationNotFound(ValidationError):
    """The requested conversation does not exist."""

    kind = "NotFound"
    default_user_message = "Sorry, that conversation could not be found."


class ToolValidationError(Exception):
    """Raised by domain code when arguments are semantically invalid."""


class ToolExecutionError(Exception):
    """Raised by domain operations for expected business failures."""
