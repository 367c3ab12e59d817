from typing import Optional

# =============================================================================
# Error Taxonomy
# =============================================================================

# Upstream status codes that map to a distinct user-facing error kind
UPSTREAM_ERROR_TYPES = {
    401: "INVALID_API_KEY",
    402: "PAYMENT_REQUIRED",
    403: "FORBIDDEN",
    429: "RATE_LIMIT",
}


class GatewayError(Exception):
    """
    Base class for errors that terminate a request with a structured response.

    Attributes:
        message: Human readable error message returned to the caller.
        status_code: HTTP status the API layer responds with.
        error_type: Optional machine readable tag (e.g. 'RATE_LIMIT').
    """

    status_code: int = 500

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        error_type: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.error_type = error_type

    def to_dict(self) -> dict:
        body = {"error": self.message}
        if self.error_type:
            body["errorType"] = self.error_type
        return body


class BadRequestError(GatewayError):
    """The request itself is invalid (missing prompt, malformed body)."""

    status_code = 400


class ConfigurationError(GatewayError):
    """
    A credential required by the resolved provider family is absent.

    Caller-owned keys (Groq) surface as 400; operator-fallback keys as 500.
    """

    def __init__(self, message: str, *, caller_owned: bool = False):
        super().__init__(message, status_code=400 if caller_owned else 500)
        self.caller_owned = caller_owned


class UpstreamProtocolError(GatewayError):
    """
    The provider returned a non-2xx response.

    Known status codes keep their value and get an error_type tag,
    everything else is reported as a 502.
    """

    def __init__(self, message: str, upstream_status: Optional[int] = None):
        error_type = UPSTREAM_ERROR_TYPES.get(upstream_status) if upstream_status else None
        super().__init__(
            message,
            status_code=upstream_status if error_type else 502,
            error_type=error_type,
        )
        self.upstream_status = upstream_status


class MalformedUpstreamData(ValueError):
    """A single SSE line or JSON fragment could not be parsed."""


class AttachmentProcessingError(Exception):
    """A referenced file could not be fetched or encoded."""

    def __init__(self, filename: str, reason: str):
        super().__init__(f"Failed to process '{filename}': {reason}")
        self.filename = filename
        self.reason = reason


class StrategyFailure(Exception):
    """A specialized Gemini strategy (search/thinking) failed."""

    def __init__(self, strategy: str, cause: BaseException):
        super().__init__(f"Gemini {strategy} strategy failed: {cause}")
        self.strategy = strategy
        self.cause = cause
