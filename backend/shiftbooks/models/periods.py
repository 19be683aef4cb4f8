from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class PeriodClose(db.Model):
    """
    Closed accounting period.

    The closing transaction zeroes INCOME/EXPENSE balances through end_date
    into retained earnings. Once a row exists, nothing may post on or before
    its end_date. transaction_id is NULL when the period had no activity.
    """
    __tablename__ = "period_closes"
    __table_args__ = (
        db.UniqueConstraint("start_date", "end_date", name="uq_period_closes_range"),
        db.CheckConstraint("start_date <= end_date", name="ck_period_closes_range_order"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    start_date = db.Column(db.Date, nullable=False)
    end_date = db.Column(db.Date, nullable=False, index=True)
    transaction_id = db.Column(db.Integer, db.ForeignKey("ledger_transactions.id"), nullable=True)
    retained_earnings_account_id = db.Column(db.Integer, db.ForeignKey("accounts.id"), nullable=False)
    net_profit_cents = db.Column(db.BigInteger, nullable=False, default=0)
    closed_by = db.Column(db.String(64), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
            "transaction_id": self.transaction_id,
            "retained_earnings_account_id": self.retained_earnings_account_id,
            "net_profit_cents": self.net_profit_cents,
            "closed_by": self.closed_by,
            "created_at": to_utc_z(self.created_at),
        }
