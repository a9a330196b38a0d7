"""
Exceptions raised by the Inventory Audit service.

Each exception carries the HTTP status the API layer answers with.
"""


class ServiceError(Exception):
    """Base class for errors that are reported back to the caller."""
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidArgument(ServiceError):
    """Bad input: blank required field, bad pagination, duplicate SKU, weak password."""
    status_code = 400


class Unauthorized(ServiceError):
    status_code = 401


class Forbidden(ServiceError):
    status_code = 403


class NotFound(ServiceError):
    """Referenced id, SKU or token does not exist."""
    status_code = 404


class StoreUnavailable(ServiceError):
    """The database or cache backend failed; the caller may retry."""
    status_code = 503
