from .enums import (
    AccountType,
    Direction,
    TransactionStatus,
    TransactionSource,
    ShiftStatus,
    ConfirmationStatus,
)
from .accounts import Account
from .ledger import Transaction, LedgerEntry
from .shifts import Shift, ShiftSale, ShiftPayment, CashDeposit, Reconciliation
from .periods import PeriodClose

__all__ = [
    'AccountType', 'Direction', 'TransactionStatus', 'TransactionSource',
    'ShiftStatus', 'ConfirmationStatus',
    'Account',
    'Transaction', 'LedgerEntry',
    'Shift', 'ShiftSale', 'ShiftPayment', 'CashDeposit', 'Reconciliation',
    'PeriodClose',
]
