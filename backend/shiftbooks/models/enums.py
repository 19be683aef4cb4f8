"""
Status and classification enums shared by models and services.

Values are stored as plain strings; the str mixin keeps comparisons with
column values (`account.account_type == AccountType.ASSET`) exact.
"""

from __future__ import annotations

from enum import Enum


class AccountType(str, Enum):
    ASSET = "ASSET"
    LIABILITY = "LIABILITY"
    EQUITY = "EQUITY"
    INCOME = "INCOME"
    EXPENSE = "EXPENSE"


class Direction(str, Enum):
    DEBIT = "DEBIT"
    CREDIT = "CREDIT"

    def flipped(self) -> "Direction":
        return Direction.CREDIT if self is Direction.DEBIT else Direction.DEBIT


class TransactionStatus(str, Enum):
    DRAFT = "DRAFT"
    POSTED = "POSTED"
    VOID = "VOID"


class TransactionSource(str, Enum):
    MANUAL_JOURNAL = "MANUAL_JOURNAL"
    DISBURSEMENT = "DISBURSEMENT"
    PAYROLL = "PAYROLL"
    SHIFT_RECONCILIATION = "SHIFT_RECONCILIATION"
    SHIFT_DEPOSIT = "SHIFT_DEPOSIT"
    OPENING_BALANCE = "OPENING_BALANCE"
    REVERSAL = "REVERSAL"
    PERIOD_CLOSE = "PERIOD_CLOSE"


class ShiftStatus(str, Enum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"
    RECONCILED = "RECONCILED"


class ConfirmationStatus(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"


# Side on which an account's balance grows.
NORMAL_SIDE = {
    AccountType.ASSET: Direction.DEBIT,
    AccountType.EXPENSE: Direction.DEBIT,
    AccountType.LIABILITY: Direction.CREDIT,
    AccountType.EQUITY: Direction.CREDIT,
    AccountType.INCOME: Direction.CREDIT,
}

# Transactions whose entries count toward balances. A VOID transaction keeps
# its entries; its POSTED reversal offsets them.
LEDGER_VISIBLE_STATUSES = (TransactionStatus.POSTED.value, TransactionStatus.VOID.value)

# Linear shift lifecycle: current status -> the only status it may move to.
SHIFT_TRANSITIONS = {
    ShiftStatus.OPEN: ShiftStatus.CLOSED,
    ShiftStatus.CLOSED: ShiftStatus.RECONCILED,
    ShiftStatus.RECONCILED: None,
}


def signed_delta(account_type: str, direction: str, amount_cents: int) -> int:
    """Balance change for one entry under the account type's sign convention."""
    normal = NORMAL_SIDE[AccountType(account_type)]
    return amount_cents if Direction(direction) is normal else -amount_cents
