"""Classified evaluation errors.

Every failure that leaves the core is an ``EvaluationError`` carrying a
``kind``, a short public message and the HTTP status the API maps it to.
The message is safe to show to users; internal detail goes to the logs.
"""

from enum import Enum

from evaluator.schemas.valuation import NavigationState


class ErrorKind(str, Enum):
    INVALID_INPUT = "InvalidInput"
    SESSION_START = "SessionStartError"
    CHALLENGE_TIMEOUT = "ChallengeTimeout"
    ELEMENT_NOT_FOUND = "ElementNotFound"
    NO_SUGGESTIONS = "NoSuggestions"
    RESULTS_NOT_RENDERED = "ResultsNotRendered"
    INSUFFICIENT_DATA = "InsufficientData"
    DEADLINE = "Deadline"
    AUTHENTICATION = "AuthenticationFailed"
    CAPACITY = "CapacityExceeded"
    UNKNOWN = "Unknown"


class EvaluationError(Exception):
    """Base class for every classified evaluation failure."""

    kind: ErrorKind = ErrorKind.UNKNOWN
    status_code: int = 500
    error: str = "Internal server error"
    public_message: str = "An unexpected error occurred during evaluation."

    def __init__(self, detail: str = "", *, status_code: int | None = None):
        self.detail = detail or self.public_message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.detail)

    def to_response(self) -> dict:
        return {"error": self.error, "message": self.public_message}


class InvalidInputError(EvaluationError):
    kind = ErrorKind.INVALID_INPUT
    status_code = 400
    error = "Invalid reference number"
    public_message = "Reference number is required and must be a non-empty string"

    def to_response(self) -> dict:
        return {"error": self.error, "message": self.detail}


class SessionStartError(EvaluationError):
    kind = ErrorKind.SESSION_START
    public_message = "The browser session could not be started."


class AuthenticationError(EvaluationError):
    kind = ErrorKind.AUTHENTICATION
    status_code = 401
    error = "Authentication failed"
    public_message = "Unable to log into the target site. Please check credentials."


class ChallengeTimeoutError(EvaluationError):
    kind = ErrorKind.CHALLENGE_TIMEOUT
    status_code = 403
    error = "Access denied"
    public_message = (
        "The request was blocked by anti-bot protection. Please try again later."
    )

    def __init__(self, detail: str = "", *, token_length: int = 0, **kwargs):
        self.token_length = token_length
        super().__init__(detail, **kwargs)


class DeadlineExceededError(EvaluationError):
    kind = ErrorKind.DEADLINE
    public_message = "The evaluation did not finish within its time budget."


class CapacityExceededError(EvaluationError):
    kind = ErrorKind.CAPACITY
    status_code = 503
    error = "Service busy"
    public_message = "Too many evaluations are running. Please try again shortly."


class NavigationError(EvaluationError):
    """A navigation step failed; ``state`` is where the flow stopped."""

    def __init__(
        self,
        detail: str = "",
        *,
        state: NavigationState | None = None,
        **kwargs,
    ):
        self.state = state
        super().__init__(detail, **kwargs)


class ElementNotFoundError(NavigationError):
    kind = ErrorKind.ELEMENT_NOT_FOUND
    public_message = "A required page element could not be found."


class NoSuggestionsError(NavigationError):
    kind = ErrorKind.NO_SUGGESTIONS
    status_code = 404
    error = "Watch not found"
    public_message = "No results found for the specified reference number."


class ResultsNotRenderedError(NavigationError):
    kind = ErrorKind.RESULTS_NOT_RENDERED
    public_message = "The valuation results did not load."

    def __init__(self, detail: str = "", *, blocked: bool = False, **kwargs):
        self.blocked = blocked
        if blocked:
            kwargs.setdefault("status_code", 403)
        super().__init__(detail, **kwargs)

    def to_response(self) -> dict:
        if self.blocked:
            return {
                "error": ChallengeTimeoutError.error,
                "message": ChallengeTimeoutError.public_message,
            }
        return super().to_response()


class ExtractionError(EvaluationError):
    kind = ErrorKind.INSUFFICIENT_DATA
    status_code = 404
    error = "Watch not found"
    public_message = "No price data found for the specified reference number."
