"""Error taxonomy for the data-access layer.

Learn: Only well-defined outcomes cross the Entity Store / Auth Gateway
boundary. Stores raise BackendError for any raw storage or network fault;
the gateway and profile service translate those into bool / empty results.
NotAuthenticatedError is raised before any I/O when there is no session.
"""


class CvBankError(Exception):
    """Base class for all cvbank errors."""


class ConfigurationError(CvBankError):
    """Required configuration is missing or invalid (startup-fatal)."""


class NotAuthenticatedError(CvBankError):
    """An operation needing a current user ran with an empty session cache."""


class PermissionDeniedError(CvBankError):
    """The cached role does not allow this operation."""


class BackendError(CvBankError):
    """A storage or network call failed. Wraps the original exception."""

    def __init__(self, message: str, cause: Exception | None = None):
        super().__init__(message)
        self.cause = cause


class AuthError(CvBankError):
    """The identity provider rejected a request."""


class InvalidCredentialsError(AuthError):
    pass


class EmailAlreadyRegisteredError(AuthError):
    pass


class SessionExpiredError(AuthError):
    """The provider session is no longer valid and could not be refreshed."""
