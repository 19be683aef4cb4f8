"""
Statement Derivation Engine

Profit & Loss and Balance Sheet derived from account metadata plus Balance
Query Service output. The derive_* functions are pure: no session, no
persisted state, so they can be cross-checked from any activity/balance map.

CLASSIFICATION:
- INCOME / EXPENSE -> Profit & Loss; ASSET / LIABILITY / EQUITY -> Balance Sheet
- Numeric code picks the bucket (ranges from STATEMENT_RANGES): cost of
  sales vs operating expenses, current vs fixed assets, current vs
  long-term liabilities. Every INCOME account is revenue.
- Lines are shown positive on the type's normal side; zero lines are omitted
  from line items but still count (as zero) in totals

TOTALS (fixed order):
  gross_profit = total_revenue - total_cogs
  net_operating_income = gross_profit - total_operating_expenses
  net_profit = net_operating_income   (no non-operating layer yet)

BALANCE SHEET EQUATION:
Income/expense not yet closed into retained earnings is injected into equity
as synthetic lines: "Current Period Earnings" (the part of this period's net
profit still unclosed) and "Unclosed Prior Earnings" (everything before the
period still unclosed), so total_assets == total_liabilities + total_equity
for any period. Once a close lands inside the period, everything through it
is in retained earnings and only later activity remains unclosed.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date as date_type
from typing import Iterable, Mapping

from flask import current_app, has_app_context

from ..models import Account, AccountType, PeriodClose, TransactionSource
from ..validation import format_cents
from .balance_service import ActivityTotals, get_balances, get_period_activity
from .chart_service import code_number

PROFIT_AND_LOSS = "profit_and_loss"
BALANCE_SHEET = "balance_sheet"

CURRENT_PERIOD_EARNINGS = "Current Period Earnings"
UNCLOSED_PRIOR_EARNINGS = "Unclosed Prior Earnings"


@dataclass(frozen=True)
class StatementLayout:
    """Inclusive numeric code ranges that pick statement buckets."""
    cost_of_sales: tuple[int, int] = (5000, 5999)
    current_assets: tuple[int, int] = (1000, 1499)
    current_liabilities: tuple[int, int] = (2000, 2499)

    @classmethod
    def from_ranges(cls, ranges: Mapping[str, Iterable[int]] | None) -> "StatementLayout":
        ranges = ranges or {}
        unknown = set(ranges) - set(cls.__dataclass_fields__)
        if unknown:
            raise ValueError(f"Unknown statement range(s): {', '.join(sorted(unknown))}")
        values = {}
        for name in cls.__dataclass_fields__:
            if name in ranges:
                low, high = (int(v) for v in ranges[name])
                if low > high:
                    raise ValueError(f"Statement range {name} is inverted: {low} > {high}")
                values[name] = (low, high)
        return cls(**values)

    @classmethod
    def from_config(cls, config=None) -> "StatementLayout":
        if config is None:
            config = current_app.config if has_app_context() else {}
        return cls.from_ranges(config.get("STATEMENT_RANGES"))


def _in_range(number: int | None, bounds: tuple[int, int]) -> bool:
    return number is not None and bounds[0] <= number <= bounds[1]


def classify_account(account_type: str, code: str, layout: StatementLayout | None = None) -> tuple[str, str]:
    """Return (statement, bucket) for an account."""
    layout = layout or StatementLayout()
    account_type = AccountType(account_type)
    number = code_number(code)

    if account_type is AccountType.INCOME:
        return PROFIT_AND_LOSS, "revenue"
    if account_type is AccountType.EXPENSE:
        if _in_range(number, layout.cost_of_sales):
            return PROFIT_AND_LOSS, "cost_of_sales"
        return PROFIT_AND_LOSS, "operating_expenses"
    if account_type is AccountType.ASSET:
        if _in_range(number, layout.current_assets):
            return BALANCE_SHEET, "current_assets"
        return BALANCE_SHEET, "fixed_assets"
    if account_type is AccountType.LIABILITY:
        if _in_range(number, layout.current_liabilities):
            return BALANCE_SHEET, "current_liabilities"
        return BALANCE_SHEET, "long_term_liabilities"
    return BALANCE_SHEET, "equity"


@dataclass(frozen=True)
class StatementLine:
    account_id: int | None
    code: str | None
    name: str
    amount_cents: int

    def to_dict(self, places: int = 2) -> dict:
        return {
            "account_id": self.account_id,
            "code": self.code,
            "name": self.name,
            "amount_cents": self.amount_cents,
            "amount": format_cents(self.amount_cents, places=places),
        }


def _lines_to_dict(lines, places):
    return [line.to_dict(places) for line in lines]


@dataclass
class ProfitAndLoss:
    revenue: list[StatementLine] = field(default_factory=list)
    cost_of_sales: list[StatementLine] = field(default_factory=list)
    operating_expenses: list[StatementLine] = field(default_factory=list)
    total_revenue_cents: int = 0
    total_cogs_cents: int = 0
    gross_profit_cents: int = 0
    total_operating_expenses_cents: int = 0
    net_operating_income_cents: int = 0
    net_profit_cents: int = 0

    def to_dict(self, places: int = 2) -> dict:
        totals = {
            "total_revenue": self.total_revenue_cents,
            "total_cogs": self.total_cogs_cents,
            "gross_profit": self.gross_profit_cents,
            "total_operating_expenses": self.total_operating_expenses_cents,
            "net_operating_income": self.net_operating_income_cents,
            "net_profit": self.net_profit_cents,
        }
        return {
            "revenue": _lines_to_dict(self.revenue, places),
            "cost_of_sales": _lines_to_dict(self.cost_of_sales, places),
            "operating_expenses": _lines_to_dict(self.operating_expenses, places),
            "totals": {
                name: {"cents": cents, "display": format_cents(cents, places=places)}
                for name, cents in totals.items()
            },
        }


@dataclass
class BalanceSheet:
    current_assets: list[StatementLine] = field(default_factory=list)
    fixed_assets: list[StatementLine] = field(default_factory=list)
    current_liabilities: list[StatementLine] = field(default_factory=list)
    long_term_liabilities: list[StatementLine] = field(default_factory=list)
    equity: list[StatementLine] = field(default_factory=list)
    total_current_assets_cents: int = 0
    total_fixed_assets_cents: int = 0
    total_assets_cents: int = 0
    total_current_liabilities_cents: int = 0
    total_long_term_liabilities_cents: int = 0
    total_liabilities_cents: int = 0
    total_equity_cents: int = 0

    @property
    def is_balanced(self) -> bool:
        return self.total_assets_cents == self.total_liabilities_cents + self.total_equity_cents

    def to_dict(self, places: int = 2) -> dict:
        totals = {
            "total_current_assets": self.total_current_assets_cents,
            "total_fixed_assets": self.total_fixed_assets_cents,
            "total_assets": self.total_assets_cents,
            "total_current_liabilities": self.total_current_liabilities_cents,
            "total_long_term_liabilities": self.total_long_term_liabilities_cents,
            "total_liabilities": self.total_liabilities_cents,
            "total_equity": self.total_equity_cents,
        }
        return {
            "current_assets": _lines_to_dict(self.current_assets, places),
            "fixed_assets": _lines_to_dict(self.fixed_assets, places),
            "current_liabilities": _lines_to_dict(self.current_liabilities, places),
            "long_term_liabilities": _lines_to_dict(self.long_term_liabilities, places),
            "equity": _lines_to_dict(self.equity, places),
            "totals": {
                name: {"cents": cents, "display": format_cents(cents, places=places)}
                for name, cents in totals.items()
            },
            "is_balanced": self.is_balanced,
        }


@dataclass
class FinancialStatements:
    start: date_type
    end: date_type
    profit_and_loss: ProfitAndLoss
    balance_sheet: BalanceSheet

    def to_dict(self, places: int = 2) -> dict:
        return {
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "profit_and_loss": self.profit_and_loss.to_dict(places),
            "balance_sheet": self.balance_sheet.to_dict(places),
        }


def _sorted_accounts(accounts):
    return sorted(accounts, key=lambda a: (code_number(a.code) is None, code_number(a.code) or 0, a.code))


def derive_profit_and_loss(
    accounts: Iterable[Account],
    activity: Mapping[int, ActivityTotals],
    layout: StatementLayout | None = None,
) -> ProfitAndLoss:
    layout = layout or StatementLayout()
    pnl = ProfitAndLoss()
    totals = {"revenue": 0, "cost_of_sales": 0, "operating_expenses": 0}

    for account in _sorted_accounts(accounts):
        statement, bucket = classify_account(account.account_type, account.code, layout)
        if statement != PROFIT_AND_LOSS:
            continue
        amount = activity.get(account.id, ActivityTotals()).net_for(account.account_type)
        totals[bucket] += amount
        if amount != 0:
            getattr(pnl, bucket).append(StatementLine(account.id, account.code, account.name, amount))

    pnl.total_revenue_cents = totals["revenue"]
    pnl.total_cogs_cents = totals["cost_of_sales"]
    pnl.gross_profit_cents = pnl.total_revenue_cents - pnl.total_cogs_cents
    pnl.total_operating_expenses_cents = totals["operating_expenses"]
    pnl.net_operating_income_cents = pnl.gross_profit_cents - pnl.total_operating_expenses_cents
    pnl.net_profit_cents = pnl.net_operating_income_cents
    return pnl


def derive_balance_sheet(
    accounts: Iterable[Account],
    balances: Mapping[int, int],
    net_profit_cents: int,
    unclosed_earnings_cents: int = 0,
    layout: StatementLayout | None = None,
) -> BalanceSheet:
    """
    `balances` are normal-side cumulative balances as of the statement date.
    `net_profit_cents` is the part of the period's profit not yet closed.
    `unclosed_earnings_cents` is income/expense accumulated before the period
    and not yet closed into retained earnings.
    """
    layout = layout or StatementLayout()
    sheet = BalanceSheet()
    totals = {
        "current_assets": 0,
        "fixed_assets": 0,
        "current_liabilities": 0,
        "long_term_liabilities": 0,
        "equity": 0,
    }

    for account in _sorted_accounts(accounts):
        statement, bucket = classify_account(account.account_type, account.code, layout)
        if statement != BALANCE_SHEET:
            continue
        amount = int(balances.get(account.id, 0))
        totals[bucket] += amount
        if amount != 0:
            getattr(sheet, bucket).append(StatementLine(account.id, account.code, account.name, amount))

    for name, amount in ((UNCLOSED_PRIOR_EARNINGS, unclosed_earnings_cents), (CURRENT_PERIOD_EARNINGS, net_profit_cents)):
        totals["equity"] += amount
        if amount != 0:
            sheet.equity.append(StatementLine(None, None, name, amount))

    sheet.total_current_assets_cents = totals["current_assets"]
    sheet.total_fixed_assets_cents = totals["fixed_assets"]
    sheet.total_assets_cents = totals["current_assets"] + totals["fixed_assets"]
    sheet.total_current_liabilities_cents = totals["current_liabilities"]
    sheet.total_long_term_liabilities_cents = totals["long_term_liabilities"]
    sheet.total_liabilities_cents = totals["current_liabilities"] + totals["long_term_liabilities"]
    sheet.total_equity_cents = totals["equity"]
    return sheet


def build_financial_statements(
    session,
    start: date_type,
    end: date_type,
    layout: StatementLayout | None = None,
) -> FinancialStatements:
    """
    Both statements for [start, end] from one session.

    P&L activity excludes PERIOD_CLOSE postings (closing entries are not
    operating results); the balance sheet is cumulative through `end`.
    """
    if start > end:
        raise ValueError("start must not be after end")
    layout = layout or StatementLayout.from_config()

    accounts = session.query(Account).all()
    pnl_accounts = [a for a in accounts if classify_account(a.account_type, a.code, layout)[0] == PROFIT_AND_LOSS]

    activity = get_period_activity(
        session,
        [a.id for a in pnl_accounts],
        start,
        end,
        exclude_sources=(TransactionSource.PERIOD_CLOSE,),
    )
    pnl = derive_profit_and_loss(pnl_accounts, activity, layout)

    balances = get_balances(session, [a.id for a in accounts], as_of=end)

    # Income less expense through `end` still sitting outside equity accounts
    unclosed_total = sum(
        balances[a.id] if a.account_type == AccountType.INCOME.value else -balances[a.id]
        for a in pnl_accounts
    )
    closed_in_period = (
        session.query(PeriodClose.id)
        .filter(PeriodClose.end_date >= start, PeriodClose.end_date <= end)
        .first()
        is not None
    )
    # A close inside the period swept everything before it, so what is left is current
    current_earnings = unclosed_total if closed_in_period else pnl.net_profit_cents
    sheet = derive_balance_sheet(
        accounts,
        balances,
        current_earnings,
        unclosed_total - current_earnings,
        layout,
    )
    return FinancialStatements(start=start, end=end, profit_and_loss=pnl, balance_sheet=sheet)
