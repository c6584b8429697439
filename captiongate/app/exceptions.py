"""Custom exceptions for the captiongate application."""

from typing import Optional


class GatewayException(Exception):
    """Base class for captiongate exceptions with HTTP status code.

    All custom exceptions should inherit from this class and define
    their specific status_code for consistent HTTP response handling.
    """
    status_code: int = 500
    error_code: str = "internal_error"

    def __init__(self, message: str = "Gateway error"):
        self.message = message
        super().__init__(message)

    def to_response(self) -> dict:
        return {"error": self.error_code, "message": self.message}


class CircuitOpenError(GatewayException):
    """Raised when a call is rejected because the circuit is open.

    The wrapped operation was never invoked. Maps to HTTP 503.
    """
    status_code = 503
    error_code = "circuit_open"

    def __init__(self, operation: str, retry_after_ms: Optional[int] = None):
        self.operation = operation
        self.retry_after_ms = retry_after_ms
        super().__init__(
            f"Circuit breaker is open for {operation}. Too many recent failures."
        )

    def to_response(self) -> dict:
        data = super().to_response()
        data["operation"] = self.operation
        if self.retry_after_ms is not None:
            data["retry_after_ms"] = self.retry_after_ms
        return data


class UpstreamTimeoutError(GatewayException):
    """Raised when the upstream call exceeds its time budget.

    Carries status 504 so it is classified like a gateway timeout.
    """
    status_code = 504
    error_code = "upstream_timeout"

    def __init__(self, operation: str, timeout: Optional[float] = None):
        self.operation = operation
        self.timeout = timeout
        if timeout is None:
            super().__init__(f"{operation} timed out")
        else:
            super().__init__(f"{operation} timed out after {timeout:.1f}s")


class InvalidUpstreamResponseError(GatewayException):
    """Raised when the provider answers with an unusable payload.

    Maps to HTTP 500. Not counted by the circuit breaker.
    """
    status_code = 500
    error_code = "invalid_upstream_response"

    def __init__(self, detail: str = "Model returned invalid format. Please try again."):
        super().__init__(detail)


class AdminAuthenticationError(GatewayException):
    """Raised when an operator endpoint is called without a valid admin token.

    Maps to HTTP 401 Unauthorized.
    """
    status_code = 401
    error_code = "authentication_failed"

    def __init__(self, detail: str = "Invalid or missing admin token"):
        super().__init__(detail)


def get_status_code(error: BaseException) -> Optional[int]:
    """Extract an HTTP-like status code from an arbitrary exception.

    Looks at ``status_code`` and ``status`` attributes, then at an attached
    ``response.status_code`` (e.g. ``httpx.HTTPStatusError``).
    """
    for attr in ("status_code", "status"):
        value = getattr(error, attr, None)
        if isinstance(value, int):
            return value
    response = getattr(error, "response", None)
    value = getattr(response, "status_code", None)
    if isinstance(value, int):
        return value
    return None
