from datetime import date, datetime, time, timedelta

import pytest

from shiftbooks.exceptions import AlreadyPostedError, NotFoundError, PeriodClosedError, PeriodCloseError
from shiftbooks.models import PeriodClose, TransactionSource
from shiftbooks.services import balance_service, posting_service
from shiftbooks.services.period_close_service import close_period, list_period_closes
from shiftbooks.time_utils import utcnow

from helpers import at, post


def _january(session, chart):
    post(session, chart["1000"], chart["4000"], 5000, on=at(2025, 1, 10))
    post(session, chart["5000"], chart["1300"], 2000, on=at(2025, 1, 15))
    post(session, chart["6020"], chart["1010"], 1000, on=at(2025, 1, 20))


def test_close_moves_profit_to_retained_earnings(db_session, chart):
    _january(db_session, chart)

    record = close_period(db_session, date(2025, 1, 1), date(2025, 1, 31), closed_by="accountant")

    assert record.net_profit_cents == 2000
    assert record.retained_earnings_account_id == chart["3100"]
    txn = posting_service.get_transaction(db_session, record.transaction_id)
    assert txn.source == TransactionSource.PERIOD_CLOSE.value
    assert txn.idempotency_key == "period-close:2025-01-01:2025-01-31"
    assert txn.date == datetime.combine(date(2025, 1, 31), time.max)
    assert txn.created_by == "accountant"

    for code in ("4000", "5000", "6020"):
        assert balance_service.get_balance(db_session, chart[code]) == 0
    assert balance_service.get_balance(db_session, chart["3100"]) == 2000
    assert balance_service.verify_ledger(db_session).ok


def test_close_with_loss_debits_retained_earnings(db_session, chart):
    post(db_session, chart["6010"], chart["1010"], 700, on=at(2025, 1, 8))

    record = close_period(db_session, date(2025, 1, 1), date(2025, 1, 31))

    assert record.net_profit_cents == -700
    assert balance_service.get_balance(db_session, chart["3100"]) == -700
    assert balance_service.get_balance(db_session, chart["6010"]) == 0


def test_closed_period_refuses_postings(db_session, chart):
    _january(db_session, chart)
    close_period(db_session, date(2025, 1, 1), date(2025, 1, 31))

    with pytest.raises(PeriodClosedError):
        post(db_session, chart["1000"], chart["4000"], 100, on=at(2025, 1, 31, 23))

    post(db_session, chart["1000"], chart["4000"], 100, on=at(2025, 2, 1, 0))
    assert posting_service.latest_closed_date(db_session) == date(2025, 1, 31)


def test_repeat_close_reports_existing_transaction(db_session, chart):
    _january(db_session, chart)
    record = close_period(db_session, date(2025, 1, 1), date(2025, 1, 31))

    with pytest.raises(AlreadyPostedError) as exc:
        close_period(db_session, date(2025, 1, 1), date(2025, 1, 31))
    assert exc.value.transaction_id == record.transaction_id
    assert db_session.query(PeriodClose).count() == 1


@pytest.mark.parametrize("start,end", [
    (date(2025, 1, 15), date(2025, 2, 15)),   # overlaps January
    (date(2024, 12, 1), date(2024, 12, 31)),  # before the latest close
])
def test_close_rejects_overlap_and_backdating(db_session, chart, start, end):
    _january(db_session, chart)
    close_period(db_session, date(2025, 1, 1), date(2025, 1, 31))

    with pytest.raises(PeriodCloseError):
        close_period(db_session, start, end)


def test_close_rejects_bad_ranges(db_session, chart):
    with pytest.raises(PeriodCloseError):
        close_period(db_session, date(2025, 2, 1), date(2025, 1, 1))

    tomorrow = utcnow().date() + timedelta(days=1)
    with pytest.raises(PeriodCloseError):
        close_period(db_session, date(2025, 1, 1), tomorrow)

    with pytest.raises(PeriodCloseError):
        close_period(db_session, date(2025, 1, 1), date(2025, 1, 31), retained_earnings_code="1000")

    with pytest.raises(NotFoundError):
        close_period(db_session, date(2025, 1, 1), date(2025, 1, 31), retained_earnings_code="3999")

    assert list_period_closes(db_session) == []


def test_idle_period_still_locks_the_books(db_session, chart):
    record = close_period(db_session, date(2025, 3, 1), date(2025, 3, 31))

    assert record.transaction_id is None
    assert record.net_profit_cents == 0
    with pytest.raises(PeriodClosedError):
        post(db_session, chart["1000"], chart["4000"], 100, on=at(2025, 3, 15))


def test_list_period_closes_newest_first(db_session, chart):
    _january(db_session, chart)
    close_period(db_session, date(2025, 1, 1), date(2025, 1, 31))
    close_period(db_session, date(2025, 2, 1), date(2025, 2, 28))

    assert [c.end_date for c in list_period_closes(db_session)] == [date(2025, 2, 28), date(2025, 1, 31)]
