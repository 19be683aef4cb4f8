# Overview: Maps ledger and shift service errors onto JSON error responses.

from flask import jsonify

from ..exceptions import (
    AlreadyPostedError,
    AlreadyReconciledError,
    CurrencyMismatchError,
    DuplicateCodeError,
    ImmutableRecordError,
    InvalidTransitionError,
    LedgerError,
    NotFoundError,
    PeriodClosedError,
    PeriodCloseError,
    UnbalancedTransactionError,
    UnknownAccountError,
    VarianceLimitExceededError,
)
from ..validation import ValidationError

# First match wins: subclasses before their bases
_STATUS_BY_ERROR = (
    (NotFoundError, 404),
    (AlreadyReconciledError, 409),
    (AlreadyPostedError, 409),
    (DuplicateCodeError, 409),
    (InvalidTransitionError, 409),
    (ImmutableRecordError, 409),
    (PeriodClosedError, 409),
    (VarianceLimitExceededError, 422),
    (UnbalancedTransactionError, 400),
    (UnknownAccountError, 400),
    (CurrencyMismatchError, 400),
    (PeriodCloseError, 400),
    (ValidationError, 400),
    (LedgerError, 400),
)


def is_handled(exc: Exception) -> bool:
    return isinstance(exc, (LedgerError, ValueError))


def error_response(exc: Exception):
    """JSON body + status for a recoverable service error."""
    status = 400
    for error_type, code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            status = code
            break

    body = {"error": str(exc), "error_type": type(exc).__name__}
    if isinstance(exc, AlreadyPostedError):
        body["transaction_id"] = exc.transaction_id
    if isinstance(exc, AlreadyReconciledError) and exc.result is not None:
        body["result"] = exc.result.to_dict()
    if isinstance(exc, VarianceLimitExceededError):
        body["differences"] = exc.differences
    return jsonify(body), status
