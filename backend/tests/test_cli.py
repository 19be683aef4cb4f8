from shiftbooks.models import Account, PeriodClose
from shiftbooks.services import shift_service
from shiftbooks.services.chart_service import STANDARD_CHART

from helpers import at, post


def test_seed_chart_command(app, db_session):
    runner = app.test_cli_runner()

    result = runner.invoke(args=["ledger", "seed-chart"])
    assert result.exit_code == 0
    assert "accounts created" in result.output
    assert db_session.query(Account).count() == len(STANDARD_CHART)

    again = runner.invoke(args=["ledger", "seed-chart"])
    assert "already present" in again.output


def test_verify_and_rebuild_commands(app, chart, db_session):
    post(db_session, chart["1000"], chart["4000"], 1000)
    runner = app.test_cli_runner()

    result = runner.invoke(args=["ledger", "verify"])
    assert result.exit_code == 0
    assert "PASS Ledger is consistent." in result.output

    result = runner.invoke(args=["ledger", "rebuild-cache"])
    assert "already match" in result.output


def test_close_period_command(app, chart, db_session):
    post(db_session, chart["1000"], chart["4000"], 1000, on=at(2025, 1, 10))
    runner = app.test_cli_runner()

    result = runner.invoke(args=["ledger", "close-period", "--start", "2025-01-01", "--end", "2025-01-31"])
    assert result.exit_code == 0
    assert "net 10.00" in result.output
    assert db_session.query(PeriodClose).count() == 1

    repeat = runner.invoke(args=["ledger", "close-period", "--start", "2025-01-01", "--end", "2025-01-31"])
    assert repeat.exit_code == 1
    assert "FAIL" in repeat.output


def test_shifts_list_command(app, chart, db_session):
    runner = app.test_cli_runner()
    assert "No shifts found." in runner.invoke(args=["shifts", "list"]).output

    shift_service.open_shift(db_session, 7, 2500)
    result = runner.invoke(args=["shifts", "list", "--status", "OPEN"])
    assert result.exit_code == 0
    assert "25.00" in result.output
