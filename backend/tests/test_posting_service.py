from datetime import date, datetime, timedelta, timezone

import pytest

from shiftbooks.exceptions import (
    AlreadyPostedError,
    CurrencyMismatchError,
    ImmutableRecordError,
    InvalidTransitionError,
    NotFoundError,
    UnbalancedTransactionError,
    UnknownAccountError,
)
from shiftbooks.models import LedgerEntry, Transaction, TransactionStatus
from shiftbooks.services import balance_service, chart_service, posting_service
from shiftbooks.services.posting_service import EntryLine, TransactionDraft, post_transaction, void_transaction
from shiftbooks.validation import ValidationError

from helpers import at, post


def _balance(session, account_id):
    return balance_service.get_balance(session, account_id)


def test_post_moves_cached_balances(db_session, chart):
    txn = post(db_session, chart["1000"], chart["4000"], 12550)

    assert txn.status == TransactionStatus.POSTED.value
    assert len(txn.entries) == 2
    assert txn.total_debits_cents == txn.total_credits_cents == 12550
    assert _balance(db_session, chart["1000"]) == 12550
    assert _balance(db_session, chart["4000"]) == 12550


def test_multi_leg_posting_nets_per_account(db_session, chart):
    txn = post_transaction(db_session, TransactionDraft(
        description="Split sale",
        entries=[
            EntryLine(chart["1000"], "DEBIT", 700),
            EntryLine(chart["1020"], "DEBIT", 300),
            EntryLine(chart["4000"], "CREDIT", 900),
            EntryLine(chart["2350"], "CREDIT", 100),
        ],
    ))

    assert len(txn.entries) == 4
    assert _balance(db_session, chart["1000"]) == 700
    assert _balance(db_session, chart["1020"]) == 300
    assert _balance(db_session, chart["4000"]) == 900
    assert _balance(db_session, chart["2350"]) == 100


def test_same_account_on_both_sides_leaves_balance(db_session, chart):
    post_transaction(db_session, TransactionDraft(
        description="Reclass",
        entries=[
            EntryLine(chart["1000"], "DEBIT", 500),
            EntryLine(chart["1000"], "CREDIT", 500),
        ],
    ))
    assert _balance(db_session, chart["1000"]) == 0


@pytest.mark.parametrize("entries", [
    [],
    [("1000", "DEBIT", 100)],
    [("1000", "DEBIT", 100), ("4000", "CREDIT", 99)],
    [("1000", "DEBIT", 0), ("4000", "CREDIT", 0)],
    [("1000", "DEBIT", -100), ("4000", "CREDIT", -100)],
])
def test_unbalanced_entry_sets_are_rejected(db_session, chart, entries):
    draft = TransactionDraft(
        description="Bad",
        entries=[EntryLine(chart[code], direction, amount) for code, direction, amount in entries],
    )
    with pytest.raises(UnbalancedTransactionError):
        post_transaction(db_session, draft)

    assert db_session.query(Transaction).count() == 0
    assert _balance(db_session, chart["1000"]) == 0


def test_float_amount_is_a_validation_error(db_session, chart):
    draft = TransactionDraft(
        description="Float",
        entries=[EntryLine(chart["1000"], "DEBIT", 10.5), EntryLine(chart["4000"], "CREDIT", 10.5)],
    )
    with pytest.raises(ValidationError):
        post_transaction(db_session, draft)


def test_blank_description_is_rejected(db_session, chart):
    with pytest.raises(ValidationError):
        post(db_session, chart["1000"], chart["4000"], 100, description="   ")


def test_bad_direction_is_rejected(db_session, chart):
    draft = TransactionDraft(
        description="Sideways",
        entries=[EntryLine(chart["1000"], "LEFT", 100), EntryLine(chart["4000"], "CREDIT", 100)],
    )
    with pytest.raises(ValidationError):
        post_transaction(db_session, draft)


def test_unknown_account_writes_nothing(db_session, chart):
    with pytest.raises(UnknownAccountError):
        post(db_session, chart["1000"], 99999, 100)

    assert db_session.query(Transaction).count() == 0
    assert db_session.query(LedgerEntry).count() == 0
    assert _balance(db_session, chart["1000"]) == 0


def test_currency_mismatch_is_rejected(db_session, chart):
    usd = chart_service.create_account(db_session, "1011", "Dollar Account", "ASSET", "USD")
    with pytest.raises(CurrencyMismatchError):
        post(db_session, usd.id, chart["4000"], 100)
    assert _balance(db_session, usd.id) == 0


def test_idempotency_key_posts_once(db_session, chart):
    first = post(db_session, chart["1000"], chart["4000"], 100, key="sale-42")

    with pytest.raises(AlreadyPostedError) as exc:
        post(db_session, chart["1000"], chart["4000"], 100, key="sale-42")

    assert exc.value.transaction_id == first.id
    assert db_session.query(Transaction).count() == 1
    assert _balance(db_session, chart["1000"]) == 100


def test_failed_posting_does_not_burn_idempotency_key(db_session, chart):
    with pytest.raises(UnknownAccountError):
        post(db_session, chart["1000"], 99999, 100, key="retry-me")

    txn = post(db_session, chart["1000"], chart["4000"], 100, key="retry-me")
    assert txn.idempotency_key == "retry-me"


def test_dates_are_normalized(db_session, chart):
    by_date = post(db_session, chart["1000"], chart["4000"], 100, on=date(2025, 3, 1))
    assert by_date.date == datetime(2025, 3, 1, 0, 0)

    aware = datetime(2025, 3, 1, 1, 30, tzinfo=timezone(timedelta(hours=1)))
    by_aware = post(db_session, chart["1000"], chart["4000"], 100, on=aware)
    assert by_aware.date == datetime(2025, 3, 1, 0, 30)


def test_void_posts_mirror_reversal(db_session, chart):
    original = post(db_session, chart["1000"], chart["4000"], 800, on=at(2025, 5, 2))

    reversal = void_transaction(db_session, original.id, "Keyed twice", created_by="auditor")

    db_session.refresh(original)
    assert original.status == TransactionStatus.VOID.value
    assert original.voided_by_transaction_id == reversal.id
    assert reversal.status == TransactionStatus.POSTED.value
    assert reversal.source == "REVERSAL"
    assert reversal.reverses_transaction_id == original.id
    assert reversal.idempotency_key == f"void:{original.id}"
    assert "Keyed twice" in reversal.description
    assert {(e.account_id, e.direction, e.amount_cents) for e in reversal.entries} == {
        (chart["1000"], "CREDIT", 800),
        (chart["4000"], "DEBIT", 800),
    }
    # Original entries stay; the reversal offsets them
    assert len(original.entries) == 2
    assert _balance(db_session, chart["1000"]) == 0
    assert _balance(db_session, chart["4000"]) == 0


def test_void_twice_reports_existing_reversal(db_session, chart):
    original = post(db_session, chart["1000"], chart["4000"], 800)
    reversal = void_transaction(db_session, original.id)

    with pytest.raises(AlreadyPostedError) as exc:
        void_transaction(db_session, original.id)
    assert exc.value.transaction_id == reversal.id
    assert _balance(db_session, chart["1000"]) == 0


def test_reversal_cannot_be_voided(db_session, chart):
    original = post(db_session, chart["1000"], chart["4000"], 800)
    reversal = void_transaction(db_session, original.id)

    with pytest.raises(InvalidTransitionError):
        void_transaction(db_session, reversal.id)


def test_void_on_retired_account_still_posts(db_session, chart):
    original = post(db_session, chart["1000"], chart["4200"], 300)
    chart_service.retire_account(db_session, chart["4200"])

    void_transaction(db_session, original.id)
    assert _balance(db_session, chart["4200"]) == 0


def test_void_unknown_transaction(db_session, chart):
    with pytest.raises(NotFoundError):
        void_transaction(db_session, 12345)


def test_posted_records_are_immutable(db_session, chart):
    txn = post(db_session, chart["1000"], chart["4000"], 100)

    txn.description = "Rewritten"
    with pytest.raises(ImmutableRecordError):
        db_session.flush()
    db_session.rollback()

    entry = db_session.query(LedgerEntry).first()
    entry.amount_cents = 1
    with pytest.raises(ImmutableRecordError):
        db_session.flush()
    db_session.rollback()

    db_session.delete(db_session.query(LedgerEntry).first())
    with pytest.raises(ImmutableRecordError):
        db_session.flush()
    db_session.rollback()

    assert _balance(db_session, chart["1000"]) == 100


def test_list_transactions_filters(db_session, chart):
    a = post(db_session, chart["1000"], chart["4000"], 100, on=at(2025, 1, 1))
    b = post(db_session, chart["1010"], chart["3000"], 200, on=at(2025, 1, 2), source="OPENING_BALANCE")
    c = post(db_session, chart["1000"], chart["4100"], 300, on=at(2025, 1, 3))

    assert [t.id for t in posting_service.list_transactions(db_session)] == [c.id, b.id, a.id]
    assert [t.id for t in posting_service.list_transactions(db_session, account_id=chart["1000"])] == [c.id, a.id]
    assert [t.id for t in posting_service.list_transactions(db_session, source="opening_balance")] == [b.id]
    assert [t.id for t in posting_service.list_transactions(db_session, limit=1, offset=1)] == [b.id]
    assert posting_service.list_transactions(db_session, status="VOID") == []

    with pytest.raises(ValidationError):
        posting_service.list_transactions(db_session, source="GIFT")
