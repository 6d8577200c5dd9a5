"""Custom exceptions for the QuickBooks MCP server.

This module defines the exception hierarchy for handling configuration,
OAuth2 and QuickBooks Online API error conditions.
"""

from typing import Any


class QuickBooksError(Exception):
    """Base exception for all QuickBooks MCP errors.

    All custom exceptions in this module inherit from this class, allowing
    for broad exception handling when needed.
    """

    def __init__(
        self,
        message: str,
        action: str | None = None,
        code: str | None = None,
    ) -> None:
        """Initialize the exception.

        Args:
            message: Human-readable error message.
            action: Optional suggested action to resolve the error.
            code: Optional machine-readable error code.
        """
        super().__init__(message)
        self.message = message
        self.action = action
        self.code = code

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for structured error responses."""
        result = {"error": self.message}
        if self.action:
            result["action"] = self.action
        if self.code:
            result["code"] = self.code
        return result


class ConfigurationError(QuickBooksError):
    """Raised at construction time when required settings are missing.

    A misconfigured server must fail to start rather than fail on first use.
    """

    def __init__(
        self,
        message: str,
        action: str = "Set QUICKBOOKS_CLIENT_ID and QUICKBOOKS_CLIENT_SECRET in .env",
    ) -> None:
        """Initialize configuration error with default action."""
        super().__init__(message, action, code="configuration_error")


class AuthorizationError(QuickBooksError):
    """Raised when the interactive OAuth2 flow fails or times out.

    This can occur when:
    - The callback listener cannot bind its port
    - The user denies consent or never completes it
    - The anti-forgery state does not match
    - The authorization code exchange is rejected
    """

    def __init__(
        self,
        message: str = "Authorization failed",
        action: str = "Run 'python -m quickbooks_mcp.auth' to authorize again",
    ) -> None:
        """Initialize authorization error with default action."""
        super().__init__(message, action, code="authorization_error")


class TokenRefreshError(QuickBooksError):
    """Raised when the refresh token cannot be exchanged for an access token.

    When ``retryable`` is False the refresh token itself was rejected and a
    new interactive authorization is required on the next call.
    """

    def __init__(
        self,
        message: str = "Failed to refresh QuickBooks token",
        retryable: bool = False,
        original_error: Exception | None = None,
    ) -> None:
        """Initialize token refresh error.

        Args:
            message: Error message.
            retryable: Whether the failure was transient.
            original_error: The underlying exception, if any.
        """
        if retryable:
            action = "Check your network connection and try again"
        else:
            action = "Authorization will be requested again on the next call"
        super().__init__(message, action, code="token_refresh_error")
        self.retryable = retryable
        self.original_error = original_error


class AuthenticationError(QuickBooksError):
    """Raised when QuickBooks rejects the bearer token on an API call."""

    def __init__(self, message: str = "Authentication rejected by QuickBooks") -> None:
        """Initialize authentication error."""
        super().__init__(message, "Re-authorize the application", code="unauthorized")


class BackendError(QuickBooksError):
    """Raised when a QuickBooks Online API call fails.

    Wraps validation errors, stale SyncTokens, and any other fault the API
    reports for a single request.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        code: str | None = None,
        detail: str | None = None,
    ) -> None:
        """Initialize backend error.

        Args:
            message: Error message reported by the API.
            status_code: HTTP status code of the failed response.
            code: QuickBooks fault code (e.g. "5010" for a stale object).
            detail: Additional detail text from the fault.
        """
        super().__init__(message, code=code)
        self.status_code = status_code
        self.detail = detail

    def __str__(self) -> str:
        if self.detail and self.detail != self.message:
            return f"{self.message}: {self.detail}"
        return self.message

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary including the HTTP status and fault detail."""
        result: dict[str, Any] = super().to_dict()
        if self.status_code:
            result["status_code"] = self.status_code
        if self.detail:
            result["detail"] = self.detail
        return result


class NotFoundError(BackendError):
    """Raised when the requested record or endpoint does not exist."""

    def __init__(self, message: str = "Object not found", code: str | None = None) -> None:
        """Initialize not found error."""
        super().__init__(message, status_code=404, code=code)


class RateLimitError(BackendError):
    """Raised when the QuickBooks API throttles the request.

    No automatic retry is attempted; the caller decides when to try again.
    """

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        retry_after: int | None = None,
    ) -> None:
        """Initialize rate limit error.

        Args:
            message: Error message.
            retry_after: Optional seconds to wait before retrying.
        """
        super().__init__(message, status_code=429, code="rate_limited")
        self.retry_after = retry_after
        self.action = "Please wait before making more requests"
        if retry_after:
            self.action = f"Please wait {retry_after} seconds before retrying"

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary including retry_after if available."""
        result = super().to_dict()
        if self.retry_after:
            result["retry_after"] = self.retry_after
        return result


class NetworkError(QuickBooksError):
    """Raised when network connectivity issues occur.

    It wraps underlying httpx transport errors.
    """

    def __init__(
        self,
        message: str = "Network error occurred",
        original_error: Exception | None = None,
    ) -> None:
        """Initialize network error.

        Args:
            message: Error message.
            original_error: The underlying exception that caused this error.
        """
        action = "Check your network connection and try again"
        super().__init__(message, action, code="network_error")
        self.original_error = original_error


class QueryCompilationError(QuickBooksError, ValueError):
    """Raised when search arguments cannot form a single valid query."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="invalid_query")


class UnknownOperationError(QuickBooksError, LookupError):
    """Raised when a tool or prompt name is not registered."""

    def __init__(self, kind: str, name: str) -> None:
        """Initialize unknown operation error.

        Args:
            kind: What was looked up ("tool" or "prompt").
            name: The name that wasn't found.
        """
        action = "Call tools/list to see available tools"
        if kind == "prompt":
            action = "Call prompts/list to see available prompts"
        super().__init__(f"Unknown {kind}: {name}", action, code="unknown_" + kind)
        self.kind = kind
        self.name = name
