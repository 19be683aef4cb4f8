from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z
from .enums import AccountType, NORMAL_SIDE


class Account(db.Model):
    """
    Chart of accounts entry.

    WHY: Every ledger entry lands on exactly one account. The account code is
    the classification key for financial statements (numeric ranges), so it
    is unique and must start with digits.

    CACHE: balance_cents is a cached running balance on the account's normal
    side (debit for ASSET/EXPENSE, credit for LIABILITY/EQUITY/INCOME). Only
    the posting engine writes it, and it must always equal a full replay of
    the account's ledger entries.

    LIFECYCLE: Accounts are never deleted. Retiring (is_active=False) stops
    new postings while history stays intact.
    """
    __tablename__ = "accounts"
    __table_args__ = (
        db.CheckConstraint("code <> ''", name="ck_accounts_code_not_blank"),
        db.CheckConstraint("name <> ''", name="ck_accounts_name_not_blank"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(32), nullable=False, unique=True, index=True)
    name = db.Column(db.String(150), nullable=False)
    account_type = db.Column(db.String(16), nullable=False, index=True)
    currency = db.Column(db.String(3), nullable=False)
    description = db.Column(db.String(255), nullable=True)

    # Cached balance in minor units (normal-side sign)
    balance_cents = db.Column(db.BigInteger, nullable=False, default=0)

    # Opaque metadata owned by the disbursement flow (bank/provider linkage)
    provider = db.Column(db.String(64), nullable=True)
    external_reference = db.Column(db.String(128), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    @property
    def normal_side(self) -> str:
        return NORMAL_SIDE[AccountType(self.account_type)].value

    def __repr__(self) -> str:
        return f"<Account {self.code} {self.name} ({self.account_type})>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "account_type": self.account_type,
            "normal_side": self.normal_side,
            "currency": self.currency,
            "description": self.description,
            "balance_cents": self.balance_cents,
            "provider": self.provider,
            "external_reference": self.external_reference,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
