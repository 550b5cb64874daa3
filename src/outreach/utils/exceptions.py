"""
Custom exception classes for the outreach optimizer.
"""


class OutreachException(Exception):
    """Base exception for the outreach optimizer."""
    pass


class NotFoundError(OutreachException):
    """Raised when a problem or result id is unknown."""

    def __init__(self, kind: str, identifier: str):
        super().__init__(f"{kind} not found: {identifier}")
        self.kind = kind
        self.identifier = identifier


class InvalidStateError(OutreachException):
    """Raised when an operation is not allowed in the current problem status."""

    def __init__(self, message: str, status: str = None):
        super().__init__(message)
        self.status = status


class OptimizationError(OutreachException):
    """Raised when optimization fails."""
    pass


class EmptyAudienceError(OptimizationError):
    """Raised when a problem resolves to zero HCPs."""

    def __init__(self, message: str = "No HCPs to optimize"):
        super().__init__(message)


class CollaboratorError(OutreachException):
    """Raised when an external collaborator (prediction, uncertainty, ...) fails."""
    pass


class ConfigurationError(OutreachException):
    """Raised when configuration is invalid."""
    pass
