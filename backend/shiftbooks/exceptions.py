"""
LEDGER ERRORS

Every error raised by the ledger and shift services. All of them are
recoverable by the caller; none indicates process-level failure.

AlreadyPostedError and AlreadyReconciledError mean "already done": retry-safe
callers treat them as success and read the attached result.
"""


class LedgerError(Exception):
    """Base exception for all ledger and shift service failures."""


class NotFoundError(LedgerError):
    """Raised when a referenced record does not exist."""


class DuplicateCodeError(LedgerError):
    """Raised when an account code is already taken."""


class UnbalancedTransactionError(LedgerError):
    """Raised when debits and credits differ, or an entry set is malformed."""


class UnknownAccountError(LedgerError):
    """Raised when a posting references an account that does not exist."""


class RetiredAccountError(UnknownAccountError):
    """Raised when a posting references an account that has been retired."""


class CurrencyMismatchError(LedgerError):
    """Raised when one transaction mixes accounts of different currencies."""


class AlreadyPostedError(LedgerError):
    """Raised when an idempotency key (or void) has already been committed."""

    def __init__(self, message: str, transaction_id: int | None = None):
        super().__init__(message)
        self.transaction_id = transaction_id


class InvalidTransitionError(LedgerError):
    """Raised when a status change is not allowed from the current status."""


class AlreadyReconciledError(InvalidTransitionError):
    """Raised when a shift has already been reconciled. Carries the prior result."""

    def __init__(self, message: str, result=None):
        super().__init__(message)
        self.result = result


class VarianceLimitExceededError(LedgerError):
    """Raised under the BLOCK variance policy when a difference exceeds tolerance."""

    def __init__(self, message: str, differences: dict | None = None):
        super().__init__(message)
        self.differences = differences or {}


class PeriodClosedError(LedgerError):
    """Raised when posting into an accounting period that has been closed."""


class PeriodCloseError(LedgerError):
    """Raised when a period close request is invalid."""


class ImmutableRecordError(LedgerError):
    """Raised when a posted ledger record would be modified or deleted."""
