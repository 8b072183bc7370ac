"""Domain errors raised by the ledger and its collaborators.

The API layer maps each error to an HTTP status through ``status_code``.
"""


class QuickBillError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(QuickBillError):
    """Malformed line item or missing required document fields."""

    status_code = 400

    def __init__(self, message: str, errors=None):
        super().__init__(message)
        self.errors = errors or {}


class AuthorizationError(QuickBillError):
    """The acting user does not own the referenced record."""

    status_code = 401


class NotFoundError(QuickBillError):
    status_code = 404


class TransitionError(QuickBillError):
    """Requested status change is not reachable from the current state."""

    status_code = 409


class InvoiceLockedError(TransitionError):
    """Items of a finished document can no longer be edited."""


class ConcurrencyError(QuickBillError):
    status_code = 409


class DispatchError(QuickBillError):
    """Email or PDF collaborator failed or timed out; nothing was marked sent."""

    status_code = 502
