"""
Chart of Accounts Registry

WHY: Every ledger entry lands on an account, and every financial statement is
derived from account type plus numeric code. The registry owns the account
list; it never owns balances (the posting engine writes those).

DESIGN PRINCIPLES:
- Codes are unique and start with digits (statement classification key)
- Accounts are never deleted; retiring one stops new postings
- Seeding the standard chart is idempotent
"""

from __future__ import annotations

import logging
import re

from flask import current_app, has_app_context
from sqlalchemy.exc import IntegrityError

from ..exceptions import DuplicateCodeError, NotFoundError
from ..models import Account, AccountType, Direction, TransactionSource
from ..validation import ValidationError, parse_cents

logger = logging.getLogger(__name__)

_CODE_PREFIX = re.compile(r"^\d+")

# Standard business chart: code -> (name, type, description)
STANDARD_CHART = [
    ("1000", "Cash on Hand", AccountType.ASSET, "Physical cash in tills and safe"),
    ("1010", "Main Bank Account", AccountType.ASSET, "Primary operating bank account"),
    ("1020", "Card Clearing", AccountType.ASSET, "Card and POS terminal settlements awaiting payout"),
    ("1100", "Accounts Receivable", AccountType.ASSET, "Amounts owed by customers"),
    ("1200", "Staff Advances", AccountType.ASSET, "Salary advances to employees"),
    ("1300", "Inventory Asset", AccountType.ASSET, "Value of stock on hand"),
    ("1400", "VAT Input", AccountType.ASSET, "VAT paid on purchases, reclaimable"),
    ("1500", "Fixed Assets", AccountType.ASSET, "Equipment, furniture and vehicles"),
    ("2000", "Accounts Payable", AccountType.LIABILITY, "Amounts owed to vendors"),
    ("2100", "Accrued Liabilities", AccountType.LIABILITY, "Expenses incurred but not yet paid"),
    ("2300", "Customer Deposits", AccountType.LIABILITY, "Payments received for goods not yet delivered"),
    ("2350", "VAT Output", AccountType.LIABILITY, "VAT collected on sales, owed to the tax authority"),
    ("2360", "Withholding Tax Payable", AccountType.LIABILITY, "WHT deducted from vendor payments"),
    ("2400", "Payroll Payable", AccountType.LIABILITY, "Net salaries owed to staff"),
    ("2500", "Long-term Loans", AccountType.LIABILITY, "Borrowings due after twelve months"),
    ("3000", "Owner's Equity", AccountType.EQUITY, "Capital invested by owners"),
    ("3100", "Retained Earnings", AccountType.EQUITY, "Accumulated closed profits"),
    ("4000", "Sales Revenue", AccountType.INCOME, "Income from sale of goods"),
    ("4100", "Service Revenue", AccountType.INCOME, "Income from services rendered"),
    ("4200", "Other Income", AccountType.INCOME, "Interest and miscellaneous income"),
    ("5000", "Cost of Goods Sold", AccountType.EXPENSE, "Cost of inventory sold"),
    ("5100", "Logistics & Delivery", AccountType.EXPENSE, "Shipping and delivery costs"),
    ("6000", "Salaries & Wages", AccountType.EXPENSE, "Staff salaries"),
    ("6010", "Utilities", AccountType.EXPENSE, "Power, water and fuel"),
    ("6020", "Rent", AccountType.EXPENSE, "Shop and office rent"),
    ("6030", "Internet & Telecom", AccountType.EXPENSE, "Data and phone bills"),
    ("6040", "Repairs & Maintenance", AccountType.EXPENSE, "Upkeep of equipment and premises"),
    ("6050", "Marketing & Ads", AccountType.EXPENSE, "Promotional expenses"),
    ("6060", "Bank Charges", AccountType.EXPENSE, "Transaction and account fees"),
    ("6100", "Cash Variance / Loss", AccountType.EXPENSE, "Till shortages and overages"),
]


def code_number(code: str) -> int | None:
    """Numeric prefix of an account code ("4000-01" -> 4000), or None."""
    match = _CODE_PREFIX.match(code or "")
    return int(match.group(0)) if match else None


def _default_currency() -> str:
    if has_app_context():
        return current_app.config.get("DEFAULT_CURRENCY", "NGN")
    return "NGN"


# =============================================================================
# REGISTRY
# =============================================================================

def create_account(
    session,
    code: str,
    name: str,
    account_type: str,
    currency: str | None = None,
    *,
    description: str | None = None,
    provider: str | None = None,
    external_reference: str | None = None,
) -> Account:
    """
    Register a new account.

    Raises:
        ValidationError: blank name, non-numeric code, unknown type or currency
        DuplicateCodeError: code already registered
    """
    code = (code or "").strip()
    name = (name or "").strip()
    if not name:
        raise ValidationError("name is required")
    if code_number(code) is None:
        raise ValidationError("code must start with digits")
    try:
        account_type = AccountType(str(account_type).upper()).value
    except ValueError:
        raise ValidationError(f"Unknown account_type: {account_type}")

    currency = (currency or _default_currency()).strip().upper()
    if len(currency) != 3 or not currency.isalpha():
        raise ValidationError("currency must be a 3-letter code")

    if session.query(Account).filter_by(code=code).first() is not None:
        raise DuplicateCodeError(f"Account code '{code}' already exists")

    account = Account(
        code=code,
        name=name,
        account_type=account_type,
        currency=currency,
        description=description,
        provider=provider,
        external_reference=external_reference,
        balance_cents=0,
        is_active=True,
    )
    session.add(account)
    try:
        session.commit()
    except IntegrityError:
        # Concurrent create of the same code
        session.rollback()
        raise DuplicateCodeError(f"Account code '{code}' already exists")

    logger.info("Created account %s %s (%s)", account.code, account.name, account.account_type)
    return account


def get_account(session, account_id: int) -> Account:
    account = session.get(Account, account_id)
    if account is None:
        raise NotFoundError(f"Account {account_id} not found")
    return account


def get_account_by_code(session, code: str) -> Account:
    account = session.query(Account).filter_by(code=(code or "").strip()).first()
    if account is None:
        raise NotFoundError(f"Account with code '{code}' not found")
    return account


def list_accounts(session, account_type: str | None = None, include_inactive: bool = False) -> list[Account]:
    query = session.query(Account)
    if account_type:
        try:
            query = query.filter(Account.account_type == AccountType(account_type.upper()).value)
        except ValueError:
            raise ValidationError(f"Unknown account_type: {account_type}")
    if not include_inactive:
        query = query.filter(Account.is_active.is_(True))
    return query.order_by(Account.code.asc()).all()


def retire_account(session, account_id: int) -> Account:
    """
    Retire an account (soft delete).

    WHY: Accounts are never deleted (history must stay replayable).
    Retired accounts reject new postings; retiring twice is a no-op.
    """
    account = get_account(session, account_id)
    if account.is_active:
        account.is_active = False
        session.commit()
        logger.info("Retired account %s", account.code)
    return account


def seed_standard_chart(session, currency: str | None = None) -> list[Account]:
    """Create any missing standard accounts. Returns the accounts created."""
    existing = {code for (code,) in session.query(Account.code).all()}
    currency = (currency or _default_currency()).upper()
    created = []
    for code, name, account_type, description in STANDARD_CHART:
        if code in existing:
            continue
        account = Account(
            code=code,
            name=name,
            account_type=account_type.value,
            currency=currency,
            description=description,
            balance_cents=0,
            is_active=True,
        )
        session.add(account)
        created.append(account)
    session.commit()
    if created:
        logger.info("Seeded %d standard accounts", len(created))
    return created


def post_opening_balance(session, account_id: int, amount_cents, *, equity_code: str = "3000", date=None):
    """
    Post an account's opening balance against owner's equity.

    A positive amount grows the account on its normal side; the equity
    account takes the other side. Re-posting for the same account raises
    AlreadyPostedError.
    """
    from .posting_service import EntryLine, TransactionDraft, post_transaction

    amount_cents = parse_cents(amount_cents, "amount_cents")
    account = get_account(session, account_id)
    equity = get_account_by_code(session, equity_code)
    if equity.id == account.id:
        raise ValidationError("Opening balance cannot be posted against its own equity account")

    side = Direction(account.normal_side)
    draft = TransactionDraft(
        description=f"Opening balance: {account.code} {account.name}",
        entries=[
            EntryLine(account.id, side, amount_cents, "Opening balance"),
            EntryLine(equity.id, side.flipped(), amount_cents, "Opening balance offset"),
        ],
        reference=f"OB-{account.code}",
        idempotency_key=f"opening-balance:{account.id}",
        date=date,
        source=TransactionSource.OPENING_BALANCE,
    )
    return post_transaction(session, draft)
