"""
Ledger Posting Engine

WHY: The only writer of ledger state. Every producer (disbursement, payroll,
manual journals, shift reconciliation, period close) hands over a balanced
entry set; the engine validates it, persists the transaction with its
entries, and moves cached balances in one atomic unit.

INVARIANTS:
- A posted transaction has >= 2 entries and sum(debits) == sum(credits)
- Amounts are positive integer minor units; floats never enter the ledger
- Entries are never updated or deleted; corrections are reversals
- An idempotency key commits at most once

CONCURRENCY:
- In-process per-account locks (sorted by id) held until commit
- Account rows selected FOR UPDATE in id order
- Cached balances move by SQL-side increments (no read-modify-write)
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date as date_type, datetime, timezone
from typing import Sequence

from flask import current_app, has_app_context
from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError

from ..exceptions import (
    AlreadyPostedError,
    CurrencyMismatchError,
    InvalidTransitionError,
    NotFoundError,
    PeriodClosedError,
    RetiredAccountError,
    UnbalancedTransactionError,
    UnknownAccountError,
)
from ..models import (
    Account,
    Direction,
    LedgerEntry,
    PeriodClose,
    Transaction,
    TransactionSource,
    TransactionStatus,
)
from ..models.enums import signed_delta
from ..time_utils import start_of_day, utcnow
from ..validation import MAX_AMOUNT_CENTS, ValidationError
from .concurrency import account_locks, atomic, lock_for_update, run_with_retry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EntryLine:
    """One (account, direction, amount) leg of a transaction."""
    account_id: int
    direction: Direction | str
    amount_cents: int
    memo: str | None = None


@dataclass
class TransactionDraft:
    description: str
    entries: Sequence[EntryLine] = field(default_factory=list)
    reference: str | None = None
    idempotency_key: str | None = None
    date: datetime | date_type | None = None
    source: TransactionSource | str = TransactionSource.MANUAL_JOURNAL
    created_by: str | None = None
    reverses_transaction_id: int | None = None


# =============================================================================
# VALIDATION (pure, before any database work)
# =============================================================================

def _normalize_lines(draft: TransactionDraft) -> list[EntryLine]:
    """
    Check the shape of an entry set and return it with enum directions.

    Raises:
        ValidationError: non-integer amount, unknown direction, blank description
        UnbalancedTransactionError: < 2 entries, amount <= 0, debits != credits
    """
    if not (draft.description or "").strip():
        raise ValidationError("description is required")

    entries = list(draft.entries or [])
    if len(entries) < 2:
        raise UnbalancedTransactionError("A transaction needs at least two entries")

    lines = []
    debits = credits = 0
    for index, entry in enumerate(entries):
        amount = entry.amount_cents
        # bool is an int subclass; floats never reach the ledger
        if isinstance(amount, bool) or not isinstance(amount, int):
            raise ValidationError(f"entries[{index}].amount_cents must be an integer number of minor units")
        if amount <= 0:
            raise UnbalancedTransactionError(f"entries[{index}].amount_cents must be greater than zero")
        if amount > MAX_AMOUNT_CENTS:
            raise ValidationError(f"entries[{index}].amount_cents exceeds maximum allowed amount")
        try:
            direction = Direction(str(getattr(entry.direction, "value", entry.direction)).upper())
        except ValueError:
            raise ValidationError(f"entries[{index}].direction must be DEBIT or CREDIT")
        if isinstance(entry.account_id, bool) or not isinstance(entry.account_id, int):
            raise ValidationError(f"entries[{index}].account_id must be an integer")

        if direction is Direction.DEBIT:
            debits += amount
        else:
            credits += amount
        lines.append(EntryLine(entry.account_id, direction, amount, entry.memo))

    if debits != credits:
        raise UnbalancedTransactionError(
            f"Debits ({debits}) do not equal credits ({credits})"
        )
    return lines


def _normalize_date(value) -> datetime:
    if value is None:
        return utcnow()
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value
    if isinstance(value, date_type):
        return start_of_day(value)
    raise ValidationError("date must be a date or datetime")


def _source_value(source) -> str:
    try:
        return TransactionSource(getattr(source, "value", source)).value
    except ValueError:
        raise ValidationError(f"Unknown transaction source: {source}")


def _retry_attempts() -> int:
    if has_app_context():
        return int(current_app.config.get("POSTING_RETRY_ATTEMPTS", 3))
    return 3


# =============================================================================
# LOOKUPS
# =============================================================================

def find_by_idempotency_key(session, key: str) -> Transaction | None:
    if not key:
        return None
    return session.query(Transaction).filter_by(idempotency_key=key).first()


def latest_closed_date(session) -> date_type | None:
    return session.query(func.max(PeriodClose.end_date)).scalar()


def _load_accounts(session, account_ids) -> dict[int, Account]:
    """Select every referenced account FOR UPDATE, in id order."""
    ordered = sorted(set(account_ids))
    query = session.query(Account).filter(Account.id.in_(ordered)).order_by(Account.id.asc())
    return {account.id: account for account in lock_for_update(query).all()}


def _check_accounts(lines: list[EntryLine], accounts: dict[int, Account], *, allow_retired: bool) -> None:
    missing = sorted({line.account_id for line in lines if line.account_id not in accounts})
    if missing:
        raise UnknownAccountError(f"Unknown account id(s): {', '.join(str(m) for m in missing)}")

    if not allow_retired:
        retired = sorted(a.code for a in accounts.values() if not a.is_active)
        if retired:
            raise RetiredAccountError(f"Account(s) retired: {', '.join(retired)}")

    currencies = {a.currency for a in accounts.values()}
    if len(currencies) > 1:
        raise CurrencyMismatchError(
            f"Transaction mixes currencies: {', '.join(sorted(currencies))}"
        )


# =============================================================================
# POSTING
# =============================================================================

def stage_transaction(session, draft: TransactionDraft, *, allow_retired: bool = False) -> Transaction:
    """
    Validate a draft and write it into the current unit of work.

    Does NOT commit. Callers wrap one or more stage calls in `atomic()` while
    holding `account_locks()` for every account involved; post_transaction
    is the single-posting form of that pattern.
    """
    lines = _normalize_lines(draft)
    txn_date = _normalize_date(draft.date)
    source = _source_value(draft.source)

    key = (draft.idempotency_key or "").strip() or None
    if key:
        existing = find_by_idempotency_key(session, key)
        if existing is not None:
            raise AlreadyPostedError(
                f"Idempotency key '{key}' already posted as transaction {existing.id}",
                transaction_id=existing.id,
            )

    accounts = _load_accounts(session, [line.account_id for line in lines])
    _check_accounts(lines, accounts, allow_retired=allow_retired)

    closed_through = latest_closed_date(session)
    if closed_through is not None and txn_date.date() <= closed_through:
        raise PeriodClosedError(
            f"Cannot post on {txn_date.date().isoformat()}: books are closed through {closed_through.isoformat()}"
        )

    txn = Transaction(
        date=txn_date,
        description=draft.description.strip(),
        reference=draft.reference,
        idempotency_key=key,
        status=TransactionStatus.POSTED.value,
        source=source,
        reverses_transaction_id=draft.reverses_transaction_id,
        created_by=draft.created_by,
    )
    session.add(txn)

    deltas: dict[int, int] = defaultdict(int)
    for line in lines:
        session.add(LedgerEntry(
            transaction=txn,
            account_id=line.account_id,
            direction=line.direction.value,
            amount_cents=line.amount_cents,
            memo=line.memo,
        ))
        account = accounts[line.account_id]
        deltas[account.id] += signed_delta(account.account_type, line.direction, line.amount_cents)

    session.flush()

    for account_id in sorted(deltas):
        delta = deltas[account_id]
        if delta == 0:
            continue
        session.execute(
            update(Account)
            .where(Account.id == account_id)
            .values(balance_cents=Account.balance_cents + delta)
            .execution_options(synchronize_session=False)
        )
        session.expire(accounts[account_id], ["balance_cents"])

    return txn


def post_transaction(session, draft: TransactionDraft) -> Transaction:
    """
    Validate and atomically commit one balanced transaction.

    Raises:
        ValidationError / UnbalancedTransactionError: malformed entry set
        UnknownAccountError (RetiredAccountError): bad account reference
        CurrencyMismatchError: accounts in more than one currency
        PeriodClosedError: date inside a closed period
        AlreadyPostedError: idempotency key already committed (carries transaction_id)

    Nothing is written when any of these is raised.
    """
    lines = _normalize_lines(draft)
    account_ids = [line.account_id for line in lines]

    def _op():
        with account_locks(account_ids):
            with atomic(session):
                return stage_transaction(session, draft)

    try:
        txn = run_with_retry(_op, session, attempts=_retry_attempts())
    except IntegrityError:
        # Lost the race on a unique idempotency key
        existing = find_by_idempotency_key(session, (draft.idempotency_key or "").strip())
        if existing is None:
            raise
        raise AlreadyPostedError(
            f"Idempotency key '{draft.idempotency_key}' already posted as transaction {existing.id}",
            transaction_id=existing.id,
        )

    logger.info(
        "Posted transaction %s (%s) %s: %d entries, %d cents",
        txn.id, txn.source, txn.reference or "-", len(lines), txn.total_debits_cents,
    )
    return txn


def void_transaction(session, transaction_id: int, reason: str | None = None, *, created_by: str | None = None) -> Transaction:
    """
    Void a posted transaction by posting its mirror image.

    The reversal flips every entry's direction, references the original and
    is keyed `void:<id>`. The original is marked VOID and linked to the
    reversal; its entries stay untouched.

    Raises:
        NotFoundError: unknown transaction
        AlreadyPostedError: already voided (carries the reversal's id)
        InvalidTransitionError: reversals and drafts cannot be voided
    """
    original = get_transaction(session, transaction_id)
    _check_voidable(original)

    description = f"Void of transaction {original.id}: {original.description}"
    if reason:
        description = f"{description} ({reason})"
    draft = TransactionDraft(
        description=description,
        entries=[
            EntryLine(e.account_id, Direction(e.direction).flipped(), e.amount_cents, e.memo)
            for e in original.entries
        ],
        reference=original.reference,
        idempotency_key=f"void:{original.id}",
        source=TransactionSource.REVERSAL,
        created_by=created_by,
        reverses_transaction_id=original.id,
    )
    account_ids = [e.account_id for e in original.entries]

    def _op():
        with account_locks(account_ids):
            with atomic(session):
                locked = lock_for_update(
                    session.query(Transaction).filter(Transaction.id == transaction_id)
                ).one()
                _check_voidable(locked)
                reversal = stage_transaction(session, draft, allow_retired=True)
                locked.status = TransactionStatus.VOID.value
                locked.voided_by_transaction_id = reversal.id
                return reversal

    try:
        reversal = run_with_retry(_op, session, attempts=_retry_attempts())
    except IntegrityError:
        existing = find_by_idempotency_key(session, f"void:{transaction_id}")
        if existing is None:
            raise
        raise AlreadyPostedError(f"Transaction {transaction_id} is already void", transaction_id=existing.id)

    logger.info("Voided transaction %s with reversal %s", transaction_id, reversal.id)
    return reversal


def _check_voidable(txn: Transaction) -> None:
    if txn.status == TransactionStatus.VOID.value:
        raise AlreadyPostedError(
            f"Transaction {txn.id} is already void",
            transaction_id=txn.voided_by_transaction_id,
        )
    if txn.reverses_transaction_id is not None or txn.source == TransactionSource.REVERSAL.value:
        raise InvalidTransitionError(f"Transaction {txn.id} is a reversal and cannot be voided")
    if txn.status != TransactionStatus.POSTED.value:
        raise InvalidTransitionError(f"Transaction {txn.id} is {txn.status}; only POSTED transactions can be voided")


# =============================================================================
# QUERIES
# =============================================================================

def get_transaction(session, transaction_id: int) -> Transaction:
    txn = session.get(Transaction, transaction_id)
    if txn is None:
        raise NotFoundError(f"Transaction {transaction_id} not found")
    return txn


def list_transactions(
    session,
    limit: int = 50,
    offset: int = 0,
    source: str | None = None,
    account_id: int | None = None,
    status: str | None = None,
) -> list[Transaction]:
    """Newest first."""
    limit = max(1, min(int(limit), 500))
    offset = max(0, int(offset))

    query = session.query(Transaction)
    if source:
        query = query.filter(Transaction.source == _source_value(source.upper()))
    if status:
        try:
            query = query.filter(Transaction.status == TransactionStatus(status.upper()).value)
        except ValueError:
            raise ValidationError(f"Unknown status: {status}")
    if account_id is not None:
        query = query.filter(
            Transaction.id.in_(
                session.query(LedgerEntry.transaction_id).filter(LedgerEntry.account_id == account_id)
            )
        )
    return (
        query.order_by(Transaction.date.desc(), Transaction.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
