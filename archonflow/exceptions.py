"""Base exceptions for ArchonFlow."""


class ArchonFlowException(Exception):
    """Base exception for all ArchonFlow errors."""
    pass


class ConfigurationError(ArchonFlowException):
    """Raised when there's a configuration error."""
    pass


class ServiceUnavailableError(ArchonFlowException):
    """Raised when a backing service is unavailable."""
    pass
