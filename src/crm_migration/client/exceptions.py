"""Custom exceptions for CRM Bridge.

This module defines exception classes for the error conditions that can
occur while talking to an org, building queries, and loading templates.
"""


class CRMMigrationError(Exception):
    """Base exception for all CRM Bridge errors."""

    pass


class APIError(CRMMigrationError):
    """Base class for API-related errors."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response: dict | list | None = None,
    ):
        """Initialize API error.

        Args:
            message: Error message
            status_code: HTTP status code
            response: API response body
        """
        self.message = message
        self.status_code = status_code
        self.response = response
        super().__init__(self.format_message())

    def format_message(self) -> str:
        """Format error message with status code and response."""
        msg = self.message
        if self.status_code:
            msg = f"[{self.status_code}] {msg}"
        if self.response:
            msg = f"{msg}: {self.response}"
        return msg


class AuthenticationError(APIError):
    """Raised when the org rejects the session (401 Unauthorized)."""

    pass


class AuthorizationError(APIError):
    """Raised when the user lacks access to an object or field (403 Forbidden)."""

    pass


class NotFoundError(APIError):
    """Raised when an object or resource is not found (404 Not Found)."""

    pass


class RateLimitError(APIError):
    """Raised when the org's API request limit is exceeded."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response: dict | list | None = None,
        retry_after: int | None = None,
    ):
        """Initialize rate limit error.

        Args:
            message: Error message
            status_code: HTTP status code
            response: API response body
            retry_after: Seconds to wait before retrying
        """
        super().__init__(message, status_code, response)
        self.retry_after = retry_after


class ServerError(APIError):
    """Raised when the org returns a 5xx error."""

    pass


class NetworkError(CRMMigrationError):
    """Raised when network-related errors occur (timeouts, connection failures)."""

    pass


class QueryError(CRMMigrationError):
    """Raised when a query cannot be executed against an org.

    Attributes:
        query: Query text that failed
        error_code: API error code (e.g. MALFORMED_QUERY, INVALID_FIELD)
    """

    def __init__(self, message: str, query: str | None = None, error_code: str | None = None):
        self.query = query
        self.error_code = error_code
        super().__init__(message)


class QuerySecurityError(CRMMigrationError):
    """Raised when a query or query fragment fails sanitization."""

    pass


class InvalidIdentifierError(QuerySecurityError):
    """Raised when an object or field name is not a valid identifier."""

    pass


class OrgNotConnectedError(CRMMigrationError):
    """Raised when no client is registered for an org id."""

    pass


class ConfigurationError(CRMMigrationError):
    """Raised when configuration is invalid or missing."""

    pass


class TemplateError(CRMMigrationError):
    """Raised when a migration template is malformed or cannot be found."""

    pass
