"""Error taxonomy for extraction providers.

Callers branch on ``ExtractionError.type`` to decide retry policy: quota and
rate-limit errors may succeed later, authentication and configuration errors
never will.
"""

from enum import Enum


class ExtractionErrorType(str, Enum):
    """Kinds of extraction failure distinguishable by callers."""

    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    NETWORK_ERROR = "NETWORK_ERROR"
    TIMEOUT = "TIMEOUT"
    AUTHENTICATION_ERROR = "AUTHENTICATION_ERROR"
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"
    FILE_TOO_LARGE = "FILE_TOO_LARGE"
    UNSUPPORTED_FORMAT = "UNSUPPORTED_FORMAT"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    INVALID_RESPONSE = "INVALID_RESPONSE"
    API_ERROR = "API_ERROR"

    @property
    def retryable(self) -> bool:
        """Whether a later attempt with the same provider could succeed."""
        return self in _RETRYABLE


_RETRYABLE = frozenset(
    {
        ExtractionErrorType.NETWORK_ERROR,
        ExtractionErrorType.TIMEOUT,
        ExtractionErrorType.QUOTA_EXCEEDED,
        ExtractionErrorType.RATE_LIMIT_EXCEEDED,
    }
)


class ExtractionError(Exception):
    """Typed failure raised by extraction providers and the router.

    Attributes:
        type: Error kind
        message: Human-readable description
        original_error: Underlying exception or response body, if any
    """

    def __init__(
        self,
        type: ExtractionErrorType,
        message: str,
        original_error: object | None = None,
    ) -> None:
        super().__init__(message)
        self.type = type
        self.message = message
        self.original_error = original_error

    @property
    def retryable(self) -> bool:
        return self.type.retryable

    def to_dict(self) -> dict[str, object]:
        """JSON-friendly view, expanding nested extraction errors."""
        original = self.original_error
        if isinstance(original, list | tuple):
            original = [e.to_dict() if isinstance(e, ExtractionError) else str(e) for e in original]
        elif isinstance(original, ExtractionError):
            original = original.to_dict()
        elif original is not None:
            original = str(original)
        return {"type": self.type.value, "message": self.message, "original_error": original}

    def __repr__(self) -> str:
        return f"ExtractionError({self.type.value}, {self.message!r})"


# Fixed HTTP status table shared by every provider
HTTP_STATUS_ERRORS: dict[int, tuple[ExtractionErrorType, str]] = {
    401: (ExtractionErrorType.AUTHENTICATION_ERROR, "Invalid API key or unauthorized access"),
    402: (ExtractionErrorType.QUOTA_EXCEEDED, "API quota exceeded"),
    413: (ExtractionErrorType.FILE_TOO_LARGE, "File too large for API"),
    415: (ExtractionErrorType.UNSUPPORTED_FORMAT, "Unsupported file format"),
    429: (ExtractionErrorType.RATE_LIMIT_EXCEEDED, "API rate limit exceeded"),
}


def error_for_status(status_code: int, reason: str = "", body: object | None = None) -> ExtractionError:
    """Build the ExtractionError for a non-success HTTP status.

    Args:
        status_code: HTTP status returned by the provider
        reason: HTTP reason phrase, used in the generic message
        body: Response body kept as the original error

    Returns:
        ExtractionError of the kind the status maps to (API_ERROR otherwise)
    """
    if status_code in HTTP_STATUS_ERRORS:
        error_type, message = HTTP_STATUS_ERRORS[status_code]
        return ExtractionError(error_type, message, body)
    return ExtractionError(
        ExtractionErrorType.API_ERROR,
        f"API error: {status_code} {reason}".rstrip(),
        body,
    )
