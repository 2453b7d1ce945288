"""
Service-level errors.

Services raise these; the app-level handler in app.py turns them into
`{"detail": message}` responses with the mapped status code.
"""


class BillingError(Exception):
    """Base class for errors a caller can act on."""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidRequestError(BillingError):
    status_code = 400


class PermissionDeniedError(BillingError):
    status_code = 403


class NotFoundError(BillingError):
    status_code = 404


class ConflictError(BillingError):
    """Duplicate link, illegal status transition or exhausted numbering."""
    status_code = 409


class CollaboratorError(BillingError):
    """An external service (SMTP, PDF, mining pool, crypto gateway) failed."""
    status_code = 502
