class BankError(Exception):
    """Base class for failures surfaced to API clients."""

    status_code = 500
    code = "InternalError"


class InvalidInputError(BankError):
    """Raised when a request field is missing or malformed."""

    status_code = 400
    code = "ValidationError"


class DuplicateEmailError(BankError):
    """Raised when registering an email that already has an account."""

    status_code = 400
    code = "DuplicateEmail"


class UnauthorizedError(BankError):
    """Raised for bad credentials or a missing/invalid/expired/unknown token."""

    status_code = 401
    code = "Unauthorized"


class AccountNotFoundError(BankError):
    """Raised when an account id or email is missing from the store."""

    status_code = 404
    code = "NotFound"


class RecipientNotFoundError(AccountNotFoundError):
    code = "RecipientNotFound"


class InsufficientFundsError(BankError):
    """Raised when a debit would drop a balance below zero."""

    status_code = 400
    code = "InsufficientFunds"


class DuplicateIdempotencyKeyError(BankError):
    """Raised when the same idempotency key is reused with different input."""

    status_code = 409
    code = "DuplicateIdempotencyKey"


class UpstreamUnavailableError(BankError):
    """Raised when the completion endpoint cannot be reached or fails."""

    status_code = 500
    code = "UpstreamUnavailable"
