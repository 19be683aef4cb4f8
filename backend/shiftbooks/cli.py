# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/shiftbooks/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# Ledger bootstrap/maintenance:
# - python -m flask ledger seed-chart
#   Create any missing standard accounts (idempotent).
# - python -m flask ledger verify
#   Check debits == credits globally and per transaction, and cache consistency.
# - python -m flask ledger rebuild-cache
#   Replay every account's entries and rewrite drifted cached balances.
# - python -m flask ledger close-period --start 2026-01-01 --end 2026-01-31
#   Close income/expense into retained earnings (3100 unless --retained-earnings-code).
#
# Shift inspection:
# - python -m flask shifts list --status CLOSED --limit 20
#   List recent shifts with optional filters.

import click
from flask.cli import with_appcontext

from .exceptions import LedgerError
from .extensions import db
from .services import balance_service, chart_service, period_close_service, shift_service
from .time_utils import parse_iso_date
from .validation import format_cents


@click.group('ledger')
def ledger_group():
    """Chart of accounts and ledger maintenance commands."""


@ledger_group.command('seed-chart')
@click.option('--currency', default=None, help='Currency for new accounts (default: DEFAULT_CURRENCY)')
@with_appcontext
def seed_chart_cli(currency):
    """Create the standard chart of accounts."""
    created = chart_service.seed_standard_chart(db.session, currency=currency)
    if not created:
        click.echo("PASS Standard chart already present.")
        return
    for account in created:
        click.echo(f"PASS Created {account.code:<6} {account.name} ({account.account_type})")
    click.echo(f"\nDONE {len(created)} accounts created.")


@ledger_group.command('verify')
@with_appcontext
def verify_cli():
    """
    Verify the accounting identity.

    Exits non-zero when any check fails.
    """
    check = balance_service.verify_ledger(db.session)
    click.echo(f"Total debits:  {format_cents(check.total_debits_cents)}")
    click.echo(f"Total credits: {format_cents(check.total_credits_cents)}")

    for txn_id in check.unbalanced_transaction_ids:
        click.echo(f"FAIL Transaction {txn_id} does not balance")
    for txn_id in check.short_transaction_ids:
        click.echo(f"FAIL Transaction {txn_id} has fewer than two entries")
    for account_id, (cached, recomputed) in check.cache_mismatches.items():
        click.echo(f"FAIL Account {account_id}: cached {cached} != recomputed {recomputed}")

    if check.ok:
        click.echo("PASS Ledger is consistent.")
    else:
        raise SystemExit(1)


@ledger_group.command('rebuild-cache')
@with_appcontext
def rebuild_cache_cli():
    """Rewrite cached balances from a full replay of ledger entries."""
    corrected = balance_service.rebuild_balance_cache(db.session)
    if corrected:
        click.echo(f"PASS Corrected {len(corrected)} account(s): {', '.join(str(a) for a in corrected)}")
    else:
        click.echo("PASS All cached balances already match.")


@ledger_group.command('close-period')
@click.option('--start', required=True, help='First day of the period (YYYY-MM-DD)')
@click.option('--end', required=True, help='Last day of the period (YYYY-MM-DD)')
@click.option('--retained-earnings-code', default='3100', show_default=True)
@click.option('--closed-by', default=None)
@with_appcontext
def close_period_cli(start, end, retained_earnings_code, closed_by):
    """Close a period's income and expense into retained earnings."""
    try:
        record = period_close_service.close_period(
            db.session,
            parse_iso_date(start),
            parse_iso_date(end),
            retained_earnings_code=retained_earnings_code,
            closed_by=closed_by,
        )
    except (LedgerError, ValueError) as e:
        click.echo(f"FAIL {e}")
        raise SystemExit(1)
    click.echo(
        f"PASS Closed {record.start_date} to {record.end_date}: "
        f"net {format_cents(record.net_profit_cents)} (transaction {record.transaction_id})"
    )


@click.group('shifts')
def shifts_group():
    """Shift inspection commands."""


@shifts_group.command('list')
@click.option('--status', type=click.Choice(['OPEN', 'CLOSED', 'RECONCILED']), help='Filter by status')
@click.option('--cashier-id', type=int, help='Filter by cashier ID')
@click.option('--limit', type=int, default=20, help='Max shifts to show')
@with_appcontext
def list_shifts_cli(status, cashier_id, limit):
    """
    List shifts.

    Example:
        flask shifts list
        flask shifts list --status OPEN
    """
    shifts = shift_service.list_shifts(db.session, status=status, cashier_id=cashier_id, limit=limit)
    if not shifts:
        click.echo("No shifts found.")
        return

    click.echo("\n" + "="*100)
    click.echo(f"{'ID':<5} {'Cashier':<8} {'Status':<11} {'Opened':<20} {'Start':>12} {'Variance':>12}")
    click.echo("="*100)
    for shift in shifts:
        opened = shift.opened_at.strftime("%Y-%m-%d %H:%M") if shift.opened_at else "-"
        variance = format_cents(shift.variance_cents) if shift.variance_cents is not None else "-"
        click.echo(
            f"{shift.id:<5} {shift.cashier_id:<8} {shift.status:<11} {opened:<20} "
            f"{format_cents(shift.start_cash_cents):>12} {variance:>12}"
        )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(ledger_group)
    app.cli.add_command(shifts_group)
