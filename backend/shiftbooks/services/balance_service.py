"""
Balance Query Service

Point-in-time balances and period-windowed activity, read from ledger
entries of ledger-visible transactions (POSTED and VOID; a VOID transaction
is offset by its POSTED reversal, DRAFT never counts).

- Balance sheet figures are cumulative-to-date (`get_balance(..., as_of)`).
- P&L figures are windowed (`get_period_activity(..., start, end)`).

The cached `Account.balance_cents` is only the fast path for "now"; any
historical query replays entries, and the cache can always be rebuilt by a
full replay.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date as date_type, datetime
from typing import Iterable

from sqlalchemy import case, func

from ..exceptions import NotFoundError
from ..models import Account, Direction, LedgerEntry, Transaction
from ..models.enums import LEDGER_VISIBLE_STATUSES, NORMAL_SIDE, AccountType
from ..time_utils import end_of_day, start_of_day
from .concurrency import account_locks, atomic

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ActivityTotals:
    debits_cents: int = 0
    credits_cents: int = 0

    def net_for(self, account_type: str) -> int:
        """Net movement shown positive on the account type's normal side."""
        if NORMAL_SIDE[AccountType(account_type)] is Direction.DEBIT:
            return self.debits_cents - self.credits_cents
        return self.credits_cents - self.debits_cents

    def to_dict(self) -> dict:
        return {"debits_cents": self.debits_cents, "credits_cents": self.credits_cents}


@dataclass
class LedgerCheck:
    total_debits_cents: int = 0
    total_credits_cents: int = 0
    unbalanced_transaction_ids: list[int] = field(default_factory=list)
    short_transaction_ids: list[int] = field(default_factory=list)
    # account_id -> (cached, recomputed)
    cache_mismatches: dict[int, tuple[int, int]] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return (
            self.total_debits_cents == self.total_credits_cents
            and not self.unbalanced_transaction_ids
            and not self.short_transaction_ids
            and not self.cache_mismatches
        )

    def to_dict(self) -> dict:
        return {
            "ok": self.ok,
            "total_debits_cents": self.total_debits_cents,
            "total_credits_cents": self.total_credits_cents,
            "unbalanced_transaction_ids": self.unbalanced_transaction_ids,
            "short_transaction_ids": self.short_transaction_ids,
            "cache_mismatches": {
                str(k): {"cached_cents": v[0], "recomputed_cents": v[1]}
                for k, v in self.cache_mismatches.items()
            },
        }


def _as_cutoff(value, *, end: bool) -> datetime | None:
    """Dates are whole days: inclusive end-of-day / start-of-day cutoffs."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date_type):
        return end_of_day(value) if end else start_of_day(value)
    raise TypeError("cutoff must be a date or datetime")


_debit_sum = func.coalesce(
    func.sum(case((LedgerEntry.direction == Direction.DEBIT.value, LedgerEntry.amount_cents), else_=0)), 0
)
_credit_sum = func.coalesce(
    func.sum(case((LedgerEntry.direction == Direction.CREDIT.value, LedgerEntry.amount_cents), else_=0)), 0
)


def _entry_totals(session, account_ids=None, *, start=None, end=None, exclude_sources=()) -> dict[int, ActivityTotals]:
    query = (
        session.query(LedgerEntry.account_id, _debit_sum, _credit_sum)
        .join(Transaction, Transaction.id == LedgerEntry.transaction_id)
        .filter(Transaction.status.in_(LEDGER_VISIBLE_STATUSES))
    )
    if account_ids is not None:
        query = query.filter(LedgerEntry.account_id.in_(list(account_ids)))
    if start is not None:
        query = query.filter(Transaction.date >= start)
    if end is not None:
        query = query.filter(Transaction.date <= end)
    if exclude_sources:
        query = query.filter(
            Transaction.source.notin_([getattr(s, "value", s) for s in exclude_sources])
        )
    rows = query.group_by(LedgerEntry.account_id).all()
    return {
        account_id: ActivityTotals(int(debits or 0), int(credits or 0))
        for account_id, debits, credits in rows
    }


def get_balance(session, account_id: int, as_of=None) -> int:
    """
    Balance on the account's normal side.

    `as_of=None` reads the cache; any cutoff (inclusive) replays entries.
    """
    account = session.get(Account, account_id)
    if account is None:
        raise NotFoundError(f"Account {account_id} not found")
    if as_of is None:
        return int(account.balance_cents)
    totals = _entry_totals(session, [account_id], end=_as_cutoff(as_of, end=True))
    return totals.get(account_id, ActivityTotals()).net_for(account.account_type)


def get_balances(session, account_ids: Iterable[int] | None = None, as_of=None) -> dict[int, int]:
    query = session.query(Account)
    if account_ids is not None:
        account_ids = list(account_ids)
        query = query.filter(Account.id.in_(account_ids))
    accounts = query.all()
    if account_ids is not None:
        missing = set(account_ids) - {a.id for a in accounts}
        if missing:
            raise NotFoundError(f"Account(s) not found: {', '.join(str(m) for m in sorted(missing))}")

    if as_of is None:
        return {a.id: int(a.balance_cents) for a in accounts}

    totals = _entry_totals(session, [a.id for a in accounts], end=_as_cutoff(as_of, end=True))
    return {
        a.id: totals.get(a.id, ActivityTotals()).net_for(a.account_type)
        for a in accounts
    }


def get_period_activity(
    session,
    account_ids: Iterable[int] | None,
    start,
    end,
    exclude_sources: Iterable = (),
) -> dict[int, ActivityTotals]:
    """
    Debit/credit sums of entries whose transaction date falls in [start, end].

    Every requested account appears in the result, zero-filled when idle.
    `account_ids=None` means every account.
    """
    start_dt = _as_cutoff(start, end=False)
    end_dt = _as_cutoff(end, end=True)
    if start_dt is not None and end_dt is not None and start_dt > end_dt:
        raise ValueError("start must not be after end")

    if account_ids is None:
        account_ids = [account_id for (account_id,) in session.query(Account.id).all()]
    account_ids = list(account_ids)

    totals = _entry_totals(
        session,
        account_ids,
        start=start_dt,
        end=end_dt,
        exclude_sources=tuple(exclude_sources),
    )
    return {account_id: totals.get(account_id, ActivityTotals()) for account_id in account_ids}


def recompute_balance(session, account_id: int) -> int:
    """Full replay of the account's ledger entries (ignores the cache)."""
    account = session.get(Account, account_id)
    if account is None:
        raise NotFoundError(f"Account {account_id} not found")
    totals = _entry_totals(session, [account_id])
    return totals.get(account_id, ActivityTotals()).net_for(account.account_type)


def verify_ledger(session) -> LedgerCheck:
    """
    Check the accounting identity end to end.

    - sum(all debits) == sum(all credits)
    - every visible transaction balances and has >= 2 entries
    - every cached balance equals its replay
    """
    check = LedgerCheck()

    per_txn = (
        session.query(Transaction.id, _debit_sum, _credit_sum, func.count(LedgerEntry.id))
        .outerjoin(LedgerEntry, LedgerEntry.transaction_id == Transaction.id)
        .filter(Transaction.status.in_(LEDGER_VISIBLE_STATUSES))
        .group_by(Transaction.id)
        .all()
    )
    for txn_id, debits, credits, entry_count in per_txn:
        debits, credits = int(debits or 0), int(credits or 0)
        check.total_debits_cents += debits
        check.total_credits_cents += credits
        if debits != credits:
            check.unbalanced_transaction_ids.append(txn_id)
        if entry_count < 2:
            check.short_transaction_ids.append(txn_id)

    totals = _entry_totals(session)
    for account in session.query(Account).order_by(Account.id).all():
        recomputed = totals.get(account.id, ActivityTotals()).net_for(account.account_type)
        if int(account.balance_cents) != recomputed:
            check.cache_mismatches[account.id] = (int(account.balance_cents), recomputed)

    if not check.ok:
        logger.warning(
            "Ledger verification failed: %d unbalanced, %d short, %d cache mismatches",
            len(check.unbalanced_transaction_ids),
            len(check.short_transaction_ids),
            len(check.cache_mismatches),
        )
    return check


def rebuild_balance_cache(session) -> list[int]:
    """
    Rewrite every drifted cached balance from a full replay.

    Runs under the account locks so no posting moves a balance mid-rebuild.
    Returns the ids of the accounts that were corrected.
    """
    account_ids = [account_id for (account_id,) in session.query(Account.id).all()]
    corrected = []
    with account_locks(account_ids):
        with atomic(session):
            totals = _entry_totals(session)
            for account in session.query(Account).order_by(Account.id).all():
                recomputed = totals.get(account.id, ActivityTotals()).net_for(account.account_type)
                if int(account.balance_cents) != recomputed:
                    logger.warning(
                        "Rebuilding cached balance for %s: %d -> %d",
                        account.code, account.balance_cents, recomputed,
                    )
                    account.balance_cents = recomputed
                    corrected.append(account.id)
    return corrected
