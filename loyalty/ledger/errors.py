class LedgerError(Exception):
    """Base class for every rule violation raised by the points ledger."""


class ValidationError(LedgerError):
    pass


class AuthorizationError(LedgerError):
    pass


class NotFoundError(LedgerError):
    pass


class ConflictError(LedgerError):
    pass


class InsufficientBalanceError(ConflictError):
    pass
