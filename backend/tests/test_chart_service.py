import pytest

from shiftbooks.exceptions import AlreadyPostedError, DuplicateCodeError, NotFoundError, RetiredAccountError
from shiftbooks.models import Account, TransactionSource
from shiftbooks.services import balance_service, chart_service
from shiftbooks.services.chart_service import STANDARD_CHART, code_number
from shiftbooks.validation import ValidationError

from helpers import post


def test_code_number_reads_numeric_prefix():
    assert code_number("4000") == 4000
    assert code_number("4000-01") == 4000
    assert code_number("ABC") is None
    assert code_number("") is None


def test_create_account_defaults(db_session):
    account = chart_service.create_account(db_session, " 1050 ", " Petty Cash ", "asset")

    assert account.id is not None
    assert account.code == "1050"
    assert account.name == "Petty Cash"
    assert account.account_type == "ASSET"
    assert account.currency == "NGN"
    assert account.balance_cents == 0
    assert account.is_active is True
    assert account.normal_side == "DEBIT"


def test_create_account_rejects_duplicate_code(db_session):
    chart_service.create_account(db_session, "1050", "Petty Cash", "ASSET")
    with pytest.raises(DuplicateCodeError):
        chart_service.create_account(db_session, "1050", "Another", "ASSET")


@pytest.mark.parametrize("code,name,account_type,currency", [
    ("1050", "", "ASSET", None),
    ("PETTY", "Petty Cash", "ASSET", None),
    ("1050", "Petty Cash", "EQUITYISH", None),
    ("1050", "Petty Cash", "ASSET", "NAIRA"),
])
def test_create_account_validation(db_session, code, name, account_type, currency):
    with pytest.raises(ValidationError):
        chart_service.create_account(db_session, code, name, account_type, currency)
    assert db_session.query(Account).count() == 0


def test_seed_standard_chart_is_idempotent(db_session):
    created = chart_service.seed_standard_chart(db_session)
    assert len(created) == len(STANDARD_CHART)

    again = chart_service.seed_standard_chart(db_session)
    assert again == []
    assert db_session.query(Account).count() == len(STANDARD_CHART)

    variance = chart_service.get_account_by_code(db_session, "6100")
    assert variance.account_type == "EXPENSE"


def test_list_accounts_filters(db_session, chart):
    income = chart_service.list_accounts(db_session, "income")
    assert [a.code for a in income] == ["4000", "4100", "4200"]

    chart_service.retire_account(db_session, chart["4200"])
    assert [a.code for a in chart_service.list_accounts(db_session, "INCOME")] == ["4000", "4100"]
    assert len(chart_service.list_accounts(db_session, "INCOME", include_inactive=True)) == 3

    with pytest.raises(ValidationError):
        chart_service.list_accounts(db_session, "PROFIT")


def test_get_account_not_found(db_session):
    with pytest.raises(NotFoundError):
        chart_service.get_account(db_session, 999)
    with pytest.raises(NotFoundError):
        chart_service.get_account_by_code(db_session, "9999")


def test_retired_account_rejects_postings_but_keeps_history(db_session, chart):
    post(db_session, chart["1000"], chart["4000"], 500)
    chart_service.retire_account(db_session, chart["4000"])
    # Retiring twice is a no-op
    chart_service.retire_account(db_session, chart["4000"])

    with pytest.raises(RetiredAccountError):
        post(db_session, chart["1000"], chart["4000"], 100)

    assert balance_service.get_balance(db_session, chart["4000"]) == 500


def test_opening_balance_posts_against_equity(db_session, chart):
    txn = chart_service.post_opening_balance(db_session, chart["1010"], 250000)

    assert txn.source == TransactionSource.OPENING_BALANCE.value
    assert txn.idempotency_key == f"opening-balance:{chart['1010']}"
    assert balance_service.get_balance(db_session, chart["1010"]) == 250000
    assert balance_service.get_balance(db_session, chart["3000"]) == 250000

    with pytest.raises(AlreadyPostedError) as exc:
        chart_service.post_opening_balance(db_session, chart["1010"], 250000)
    assert exc.value.transaction_id == txn.id


def test_opening_balance_on_liability_credits_it(db_session, chart):
    chart_service.post_opening_balance(db_session, chart["2500"], 100000)

    assert balance_service.get_balance(db_session, chart["2500"]) == 100000
    # Equity takes the debit side
    assert balance_service.get_balance(db_session, chart["3000"]) == -100000


def test_opening_balance_rejects_equity_offset_to_itself(db_session, chart):
    with pytest.raises(ValidationError):
        chart_service.post_opening_balance(db_session, chart["3000"], 100)
