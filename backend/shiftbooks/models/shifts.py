from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z
from .enums import ConfirmationStatus, ShiftStatus


class Shift(db.Model):
    """
    Cashier shift (till session).

    WHY: Cashier accountability. A shift carries its opening float, the
    sales and cash drops recorded while it is open, and the counted amounts
    entered at close.

    LIFECYCLE (linear, no way back):
    - OPEN: sales and cash deposits may be recorded
    - CLOSED: counts entered, one Reconciliation row per payment method/account
    - RECONCILED: every row and deposit confirmed and posted to the ledger

    Nothing recorded during the shift touches the ledger until its
    reconciliation rows or deposits are confirmed.
    """
    __tablename__ = "shifts"
    __table_args__ = (
        db.Index("ix_shifts_cashier_status", "cashier_id", "status"),
        # At most one OPEN shift per cashier
        db.Index(
            "uq_shifts_open_cashier",
            "cashier_id",
            unique=True,
            sqlite_where=db.text("status = 'OPEN'"),
            postgresql_where=db.text("status = 'OPEN'"),
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    cashier_id = db.Column(db.Integer, nullable=False, index=True)

    status = db.Column(db.String(16), nullable=False, default=ShiftStatus.OPEN.value, index=True)

    # Cash tracking (all amounts in cents)
    start_cash_cents = db.Column(db.BigInteger, nullable=False, default=0)
    expected_cash_cents = db.Column(db.BigInteger, nullable=True)  # set when closing
    counted_cash_cents = db.Column(db.BigInteger, nullable=True)  # set when closing
    variance_cents = db.Column(db.BigInteger, nullable=True)  # counted - expected

    opened_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    reconciled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    notes = db.Column(db.Text, nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "cashier_id": self.cashier_id,
            "status": self.status,
            "start_cash_cents": self.start_cash_cents,
            "expected_cash_cents": self.expected_cash_cents,
            "counted_cash_cents": self.counted_cash_cents,
            "variance_cents": self.variance_cents,
            "opened_at": to_utc_z(self.opened_at),
            "closed_at": to_utc_z(self.closed_at) if self.closed_at else None,
            "reconciled_at": to_utc_z(self.reconciled_at) if self.reconciled_at else None,
            "notes": self.notes,
            "version_id": self.version_id,
        }


class ShiftSale(db.Model):
    """
    Completed POS sale (or refund) recorded against an open shift.

    Immutable once recorded; a refund is a separate row with is_refund=True
    whose payments reduce the expected totals.
    """
    __tablename__ = "shift_sales"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    shift_id = db.Column(db.Integer, db.ForeignKey("shifts.id"), nullable=False, index=True)
    total_cents = db.Column(db.BigInteger, nullable=False)
    is_refund = db.Column(db.Boolean, nullable=False, default=False)
    reference = db.Column(db.String(128), nullable=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    shift = db.relationship("Shift", backref=db.backref("sales", lazy=True, order_by="ShiftSale.id"))
    payments = db.relationship("ShiftPayment", back_populates="sale", lazy="selectin", order_by="ShiftPayment.id")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "shift_id": self.shift_id,
            "total_cents": self.total_cents,
            "is_refund": self.is_refund,
            "reference": self.reference,
            "occurred_at": to_utc_z(self.occurred_at),
            "payments": [p.to_dict() for p in self.payments],
        }


class ShiftPayment(db.Model):
    __tablename__ = "shift_payments"
    __table_args__ = (
        db.CheckConstraint("amount_cents > 0", name="ck_shift_payments_amount_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("shift_sales.id"), nullable=False, index=True)
    payment_method_code = db.Column(db.String(32), nullable=False)
    amount_cents = db.Column(db.BigInteger, nullable=False)
    account_id = db.Column(db.Integer, db.ForeignKey("accounts.id"), nullable=True)

    sale = db.relationship("ShiftSale", back_populates="payments")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "payment_method_code": self.payment_method_code,
            "amount_cents": self.amount_cents,
            "account_id": self.account_id,
        }


class CashDeposit(db.Model):
    """
    Cash removed from the drawer during an open shift (cash drop).

    Counts against expected drawer cash as soon as it is logged, whatever its
    status; it reaches the ledger only when confirmed.
    """
    __tablename__ = "shift_cash_deposits"
    __table_args__ = (
        db.CheckConstraint("amount_cents > 0", name="ck_shift_cash_deposits_amount_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    shift_id = db.Column(db.Integer, db.ForeignKey("shifts.id"), nullable=False, index=True)
    amount_cents = db.Column(db.BigInteger, nullable=False)
    account_id = db.Column(db.Integer, db.ForeignKey("accounts.id"), nullable=True)
    status = db.Column(db.String(16), nullable=False, default=ConfirmationStatus.PENDING.value, index=True)
    reference = db.Column(db.String(128), nullable=True)
    notes = db.Column(db.String(255), nullable=True)
    deposited_by = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    confirmed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    transaction_id = db.Column(db.Integer, db.ForeignKey("ledger_transactions.id"), nullable=True)

    shift = db.relationship("Shift", backref=db.backref("cash_deposits", lazy=True, order_by="CashDeposit.id"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "shift_id": self.shift_id,
            "amount_cents": self.amount_cents,
            "account_id": self.account_id,
            "status": self.status,
            "reference": self.reference,
            "notes": self.notes,
            "deposited_by": self.deposited_by,
            "created_at": to_utc_z(self.created_at),
            "confirmed_at": to_utc_z(self.confirmed_at) if self.confirmed_at else None,
            "transaction_id": self.transaction_id,
        }


class Reconciliation(db.Model):
    """
    Expected vs counted amount for one payment method/account at shift close.

    Immutable apart from PENDING -> CONFIRMED. difference = actual - expected.
    """
    __tablename__ = "shift_reconciliations"
    __table_args__ = (
        db.UniqueConstraint("shift_id", "payment_method_code", "account_id", name="uq_shift_reconciliations_key"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    shift_id = db.Column(db.Integer, db.ForeignKey("shifts.id"), nullable=False, index=True)
    payment_method_code = db.Column(db.String(32), nullable=False)
    account_id = db.Column(db.Integer, db.ForeignKey("accounts.id"), nullable=True)
    expected_cents = db.Column(db.BigInteger, nullable=False)
    actual_cents = db.Column(db.BigInteger, nullable=False)
    difference_cents = db.Column(db.BigInteger, nullable=False)
    status = db.Column(db.String(16), nullable=False, default=ConfirmationStatus.PENDING.value, index=True)
    confirmed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    transaction_id = db.Column(db.Integer, db.ForeignKey("ledger_transactions.id"), nullable=True)

    shift = db.relationship("Shift", backref=db.backref("reconciliations", lazy=True, order_by="Reconciliation.id"))

    @property
    def key(self) -> str:
        if self.account_id is None:
            return self.payment_method_code
        return f"{self.payment_method_code}:{self.account_id}"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "shift_id": self.shift_id,
            "key": self.key,
            "payment_method_code": self.payment_method_code,
            "account_id": self.account_id,
            "expected_cents": self.expected_cents,
            "actual_cents": self.actual_cents,
            "difference_cents": self.difference_cents,
            "status": self.status,
            "confirmed_at": to_utc_z(self.confirmed_at) if self.confirmed_at else None,
            "transaction_id": self.transaction_id,
        }
