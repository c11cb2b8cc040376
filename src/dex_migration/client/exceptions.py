"""Exception hierarchy for DEX Bridge.

Errors are grouped by how callers are expected to react to them:

- remote errors (``APIError`` subclasses, ``NetworkError``) are transient and
  retried at the request level, then surface as a failed batch;
- structural errors (``ValidationError`` subclasses, ``ConfigurationError``)
  are raised immediately and never retried;
- concurrency-guard errors (``EnrichmentInProgressError``) mean "busy", not
  "broken";
- state and lifecycle errors come from the local store.
"""


class DexMigrationError(Exception):
    """Base exception for all DEX Bridge errors."""

    pass


class APIError(DexMigrationError):
    """Base class for errors returned by the DEX API."""

    def __init__(self, message: str, status_code: int | None = None, response: dict | None = None):
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
    """Raised when authentication fails (401 Unauthorized)."""

    pass


class AuthorizationError(APIError):
    """Raised when the token lacks access to an operation (403 Forbidden)."""

    pass


class NotFoundError(APIError):
    """Raised when a record does not exist in the source (404 Not Found)."""

    pass


class RateLimitError(APIError):
    """Raised when the API rate limit is exceeded (429 Too Many Requests)."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response: dict | None = None,
        retry_after: int | None = None,
    ):
        """Initialize rate limit error.

        Args:
            message: Error message
            status_code: HTTP status code
            response: API response body
            retry_after: Seconds to wait before retrying (from Retry-After header)
        """
        super().__init__(message, status_code, response)
        self.retry_after = retry_after


class ServerError(APIError):
    """Raised when the server returns a 5xx error."""

    pass


class NetworkError(DexMigrationError):
    """Raised on transport failures and request timeouts."""

    pass


class ValidationError(DexMigrationError):
    """Raised when input or source data is structurally invalid."""

    pass


class ResourceKindError(ValidationError):
    """Raised when a resource kind name cannot be resolved."""

    pass


class MissingIdentifierError(ValidationError):
    """Raised when a source item has no usable external identifier."""

    pass


class ConfigurationError(DexMigrationError):
    """Raised when configuration is invalid or missing."""

    pass


class StateError(DexMigrationError):
    """Raised when the local state database cannot be read or written."""

    pass


class MigrationNotFoundError(StateError):
    """Raised when a migration id does not exist."""

    pass


class MigrationError(DexMigrationError):
    """Raised when a migration lifecycle operation cannot proceed."""

    pass


class MigrationConflictError(MigrationError):
    """Raised when an active migration already covers a resource kind."""

    pass


class InvalidTransitionError(MigrationError):
    """Raised when an operation is not allowed in the migration's current status."""

    pass


class EnrichmentError(DexMigrationError):
    """Raised when a single record cannot be enriched."""

    pass


class EnrichmentInProgressError(DexMigrationError):
    """Raised when another enrichment run holds the single-flight lock."""

    pass
