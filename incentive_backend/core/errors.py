"""Error kinds raised by the core and translated to HTTP responses by the API layer."""


class IncentiveError(Exception):
    """Base class. ``message`` is safe to show to the caller."""

    status_code = 500

    def __init__(self, message):
        super().__init__(message)
        self.message = message


class ValidationError(IncentiveError):
    """Missing or malformed required input."""

    status_code = 400


class InvalidReference(IncentiveError):
    """A referenced category or tag does not exist or belongs to someone else."""

    status_code = 400


class NotFound(IncentiveError):
    """Entity absent or not owned by the caller."""

    status_code = 404


class Conflict(IncentiveError):
    """A unique constraint would be violated."""

    status_code = 409


class AuthenticationError(IncentiveError):
    status_code = 401


class PermissionDenied(IncentiveError):
    status_code = 403


class InfrastructureError(IncentiveError):
    """The persistence layer is unreachable."""

    status_code = 503
