"""
Journal transactions and their ledger entries.

Invariants (authoritative):
- A POSTED transaction has >= 2 entries and sum(debits) == sum(credits).
- Entries are written once, inside a posting call, and never updated or deleted.
- The only permitted change to a transaction after posting is POSTED -> VOID,
  recorded together with the id of the reversing transaction.
- `date` is business time (reporting timeline); `created_at` is system time.
"""

from __future__ import annotations

from sqlalchemy import event, inspect

from ..exceptions import ImmutableRecordError
from ..extensions import db
from ..time_utils import to_utc_z, utcnow
from .enums import Direction, TransactionStatus


class Transaction(db.Model):
    __tablename__ = "ledger_transactions"
    __table_args__ = (
        db.Index("ix_ledger_transactions_status_date", "status", "date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    date = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    description = db.Column(db.Text, nullable=False)
    reference = db.Column(db.String(128), nullable=True, index=True)

    # Retry guard: a committed key can never be posted again
    idempotency_key = db.Column(db.String(160), nullable=True, unique=True)

    status = db.Column(db.String(16), nullable=False, default=TransactionStatus.POSTED.value)
    source = db.Column(db.String(32), nullable=False, index=True)

    reverses_transaction_id = db.Column(db.Integer, db.ForeignKey("ledger_transactions.id"), nullable=True)
    voided_by_transaction_id = db.Column(db.Integer, db.ForeignKey("ledger_transactions.id"), nullable=True)

    created_by = db.Column(db.String(64), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    entries = db.relationship(
        "LedgerEntry",
        back_populates="transaction",
        order_by="LedgerEntry.id",
        lazy="selectin",
    )

    @property
    def total_debits_cents(self) -> int:
        return sum(e.amount_cents for e in self.entries if e.direction == Direction.DEBIT)

    @property
    def total_credits_cents(self) -> int:
        return sum(e.amount_cents for e in self.entries if e.direction == Direction.CREDIT)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "date": to_utc_z(self.date),
            "description": self.description,
            "reference": self.reference,
            "idempotency_key": self.idempotency_key,
            "status": self.status,
            "source": self.source,
            "reverses_transaction_id": self.reverses_transaction_id,
            "voided_by_transaction_id": self.voided_by_transaction_id,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
            "total_debits_cents": self.total_debits_cents,
            "total_credits_cents": self.total_credits_cents,
            "entries": [e.to_dict() for e in self.entries],
        }


class LedgerEntry(db.Model):
    __tablename__ = "ledger_entries"
    __table_args__ = (
        db.CheckConstraint("amount_cents > 0", name="ck_ledger_entries_amount_positive"),
        db.CheckConstraint("direction IN ('DEBIT', 'CREDIT')", name="ck_ledger_entries_direction"),
        db.Index("ix_ledger_entries_account_direction", "account_id", "direction"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    transaction_id = db.Column(db.Integer, db.ForeignKey("ledger_transactions.id"), nullable=False, index=True)
    account_id = db.Column(db.Integer, db.ForeignKey("accounts.id"), nullable=False, index=True)
    direction = db.Column(db.String(6), nullable=False)
    amount_cents = db.Column(db.BigInteger, nullable=False)
    memo = db.Column(db.String(255), nullable=True)

    transaction = db.relationship("Transaction", back_populates="entries")
    account = db.relationship("Account", backref=db.backref("ledger_entries", lazy="dynamic"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transaction_id": self.transaction_id,
            "account_id": self.account_id,
            "direction": self.direction,
            "amount_cents": self.amount_cents,
            "memo": self.memo,
        }


_VOID_MUTABLE_FIELDS = {"status", "voided_by_transaction_id"}


@event.listens_for(LedgerEntry, "before_update")
def _refuse_entry_update(mapper, connection, target):
    raise ImmutableRecordError(f"Ledger entry {target.id} is immutable")


@event.listens_for(LedgerEntry, "before_delete")
def _refuse_entry_delete(mapper, connection, target):
    raise ImmutableRecordError(f"Ledger entry {target.id} cannot be deleted")


@event.listens_for(Transaction, "before_update")
def _guard_transaction_update(mapper, connection, target):
    state = inspect(target)
    changed = {
        attr.key
        for attr in state.mapper.column_attrs
        if state.attrs[attr.key].history.has_changes()
    }
    if not changed:
        return
    if changed - _VOID_MUTABLE_FIELDS:
        raise ImmutableRecordError(
            f"Transaction {target.id} is immutable (attempted change: {', '.join(sorted(changed))})"
        )
    status_history = state.attrs["status"].history
    if status_history.has_changes():
        before = status_history.deleted[0] if status_history.deleted else None
        if before not in (None, TransactionStatus.POSTED.value) or target.status != TransactionStatus.VOID.value:
            raise ImmutableRecordError(f"Transaction {target.id} may only move from POSTED to VOID")


@event.listens_for(Transaction, "before_delete")
def _refuse_transaction_delete(mapper, connection, target):
    raise ImmutableRecordError(f"Transaction {target.id} cannot be deleted")
