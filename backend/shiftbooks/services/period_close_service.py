"""
PERIOD CLOSE SERVICE

Closes an accounting period by moving every INCOME/EXPENSE balance accumulated
through end_date into retained earnings, with ONE ledger transaction.

Guarantees:
- Atomic: closing transaction + PeriodClose record commit together
- Idempotent: idempotency key "period-close:<start>:<end>"
- No overlapping or future closes
- Posted at end-of-day for end_date; afterwards nothing may post on or before it
"""

from __future__ import annotations

import logging
from datetime import date as date_type

from ..exceptions import AlreadyPostedError, PeriodCloseError
from ..models import Account, AccountType, Direction, PeriodClose, TransactionSource
from ..time_utils import end_of_day, utcnow
from .balance_service import get_balances
from .chart_service import get_account_by_code
from .concurrency import account_locks, atomic
from .posting_service import EntryLine, TransactionDraft, latest_closed_date, stage_transaction

logger = logging.getLogger(__name__)


def _validate_period_dates(start: date_type, end: date_type) -> None:
    if not start or not end:
        raise PeriodCloseError("start and end are required")
    if start > end:
        raise PeriodCloseError("start cannot be after end")
    today = utcnow().date()
    if end > today:
        raise PeriodCloseError(f"Cannot close a future period. end={end} today={today}")


def _ensure_no_overlap(session, start: date_type, end: date_type) -> None:
    exact = session.query(PeriodClose).filter_by(start_date=start, end_date=end).first()
    if exact is not None:
        raise AlreadyPostedError(
            f"Period {start} to {end} is already closed",
            transaction_id=exact.transaction_id,
        )
    overlap = (
        session.query(PeriodClose)
        .filter(PeriodClose.start_date <= end, PeriodClose.end_date >= start)
        .first()
    )
    if overlap is not None:
        raise PeriodCloseError(
            f"Period overlaps closed period {overlap.start_date} to {overlap.end_date}"
        )
    latest = latest_closed_date(session)
    if latest is not None and end <= latest:
        raise PeriodCloseError(f"Books are already closed through {latest}")


def close_period(
    session,
    start: date_type,
    end: date_type,
    retained_earnings_code: str = "3100",
    *,
    closed_by: str | None = None,
) -> PeriodClose:
    """
    Close [start, end] into retained earnings.

    Every INCOME/EXPENSE account with a non-zero balance through `end` gets
    one entry bringing it to zero; retained earnings takes the net (credit on
    profit, debit on loss). A period with nothing to close still records the
    PeriodClose row (with no transaction) so the books lock.

    Raises:
        PeriodCloseError: bad range, future end, overlap with a closed period
        AlreadyPostedError: this exact period is already closed
        NotFoundError: retained earnings account missing
    """
    _validate_period_dates(start, end)
    _ensure_no_overlap(session, start, end)

    retained = get_account_by_code(session, retained_earnings_code)
    if retained.account_type != AccountType.EQUITY.value:
        raise PeriodCloseError(f"Account {retained.code} is not an EQUITY account")

    pnl_accounts = (
        session.query(Account)
        .filter(Account.account_type.in_([AccountType.INCOME.value, AccountType.EXPENSE.value]))
        .order_by(Account.id)
        .all()
    )
    account_ids = [a.id for a in pnl_accounts] + [retained.id]

    with account_locks(account_ids):
        with atomic(session):
            # Re-check under the locks
            _ensure_no_overlap(session, start, end)

            balances = get_balances(session, [a.id for a in pnl_accounts], as_of=end)
            entries = []
            net_profit = 0
            for account in pnl_accounts:
                balance = balances.get(account.id, 0)
                if balance == 0:
                    continue
                # Zero the account: take it back off its normal side
                normal = Direction(account.normal_side)
                direction = normal.flipped() if balance > 0 else normal
                entries.append(EntryLine(account.id, direction, abs(balance), "Period close"))
                net_profit += balance if account.account_type == AccountType.INCOME.value else -balance

            txn = None
            if net_profit != 0:
                direction = Direction.CREDIT if net_profit > 0 else Direction.DEBIT
                entries.append(EntryLine(retained.id, direction, abs(net_profit), "Net result to retained earnings"))

            if len(entries) >= 2:
                txn = stage_transaction(
                    session,
                    TransactionDraft(
                        description=f"Period close {start.isoformat()} to {end.isoformat()}",
                        entries=entries,
                        reference=f"CLOSE-{end.isoformat()}",
                        idempotency_key=f"period-close:{start.isoformat()}:{end.isoformat()}",
                        date=end_of_day(end),
                        source=TransactionSource.PERIOD_CLOSE,
                        created_by=closed_by,
                    ),
                    allow_retired=True,
                )
                session.flush()

            record = PeriodClose(
                start_date=start,
                end_date=end,
                transaction_id=txn.id if txn is not None else None,
                retained_earnings_account_id=retained.id,
                net_profit_cents=net_profit,
                closed_by=closed_by,
            )
            session.add(record)

    logger.info(
        "Closed period %s to %s: net %d cents to %s (transaction %s)",
        start, end, net_profit, retained.code, record.transaction_id,
    )
    return record


def list_period_closes(session) -> list[PeriodClose]:
    return session.query(PeriodClose).order_by(PeriodClose.end_date.desc()).all()

