"""Custom exceptions for the cluster orchestrator."""


class PgClusterError(Exception):
    """Base exception for all orchestrator errors."""

    def __init__(self, message: str, details: str = None):
        """Initialize the exception.

        Args:
            message: Main error message
            details: Additional details or suggestions
        """
        self.message = message
        self.details = details
        super().__init__(self.format_message())

    def format_message(self) -> str:
        """Format the complete error message.

        Returns:
            Formatted error message with details
        """
        if self.details:
            return f"{self.message}\n\nDetails: {self.details}"
        return self.message


class ValidationError(PgClusterError):
    """Exception raised for malformed requests, e.g. a negative node count."""

    pass


class NotFoundError(PgClusterError):
    """Exception raised when an operation targets a nonexistent instance."""

    pass


class ConflictError(PgClusterError):
    """Exception raised when an instance already exists or is still live."""

    pass


class ResourceExhaustedError(PgClusterError):
    """Exception raised when no public port is left in the routing range."""

    pass


class ConsistencyError(PgClusterError):
    """Exception raised when a node references a backend that is not configured.

    This is fatal and never retried.
    """

    pass


class PollTimeoutError(PgClusterError):
    """Exception raised when a bounded polling loop runs out of budget."""

    pass


class BackendError(PgClusterError):
    """Exception raised when a backend fails to provision or deprovision a node."""

    pass


class StoreError(PgClusterError):
    """Exception raised for key-value store failures."""

    pass


class KeyNotFoundError(StoreError):
    """Exception raised when a key or directory is absent from the store."""

    pass


class KeyExistsError(StoreError):
    """Exception raised when an atomic create finds the key already present."""

    pass


class StatusError(PgClusterError):
    """Exception raised when a published member health record is corrupt."""

    pass


class BackupError(PgClusterError):
    """Exception raised when the recreation backup cannot be written or read."""

    pass


class ConfigurationError(PgClusterError):
    """Exception raised for configuration errors."""

    pass
