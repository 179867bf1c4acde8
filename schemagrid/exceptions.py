"""Base exceptions for SchemaGrid."""


class SchemaGridException(Exception):
    """Base exception for all SchemaGrid errors."""

    code = "schemagrid_error"
    retryable = False

    def __init__(self, message: str = "", code: str = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code


class ConfigurationError(SchemaGridException):
    """Raised when there's a configuration error."""
    code = "configuration_error"


class ValidationError(SchemaGridException):
    """Raised when validation fails."""
    code = "validation_error"


class SecurityError(SchemaGridException):
    """Raised when input carries entity declarations or external subsets."""
    code = "security_violation"


class FormatError(SchemaGridException):
    """Raised when source text cannot be parsed in its declared format."""
    code = "format_error"


class NotFoundError(SchemaGridException):
    """Raised when a resource is not found."""
    code = "not_found"


class GridNotFoundError(NotFoundError):
    """Raised when a grid id is unknown."""
    pass


class SessionNotFoundError(NotFoundError):
    """Raised when a collaboration session id is unknown."""
    pass


class ConflictError(SchemaGridException):
    """Raised when there's a conflict."""
    code = "conflict"


class SessionAlreadyExistsError(ConflictError):
    """Raised when creating a session whose id is already active."""
    pass


class SessionFullError(ConflictError):
    """Raised when a session has reached its participant limit."""
    code = "session_full"
    retryable = True


class ConflictResolutionError(SchemaGridException):
    """Raised when an edit conflict cannot be resolved."""
    code = "conflict_resolution_error"


class CollaborationConnectionError(SchemaGridException):
    """Raised when the collaboration client is not connected."""
    code = "connection_error"
    retryable = True


class CollaborationTimeoutError(SchemaGridException):
    """Raised when the server does not answer a client request in time."""
    code = "timeout"
    retryable = True
