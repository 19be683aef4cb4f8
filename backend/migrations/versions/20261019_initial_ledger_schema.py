"""Initial ledger, chart of accounts, shift and period close schema

Revision ID: 20261019_initial_ledger
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261019_initial_ledger"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "accounts",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("code", sa.String(length=32), nullable=False),
        sa.Column("name", sa.String(length=150), nullable=False),
        sa.Column("account_type", sa.String(length=16), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("description", sa.String(length=255), nullable=True),
        sa.Column("balance_cents", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("provider", sa.String(length=64), nullable=True),
        sa.Column("external_reference", sa.String(length=128), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.CheckConstraint("code <> ''", name="ck_accounts_code_not_blank"),
        sa.CheckConstraint("name <> ''", name="ck_accounts_name_not_blank"),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_accounts_code", "accounts", ["code"], unique=True)
    op.create_index("ix_accounts_account_type", "accounts", ["account_type"], unique=False)
    op.create_index("ix_accounts_is_active", "accounts", ["is_active"], unique=False)

    op.create_table(
        "ledger_transactions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("reference", sa.String(length=128), nullable=True),
        sa.Column("idempotency_key", sa.String(length=160), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("source", sa.String(length=32), nullable=False),
        sa.Column("reverses_transaction_id", sa.Integer(), nullable=True),
        sa.Column("voided_by_transaction_id", sa.Integer(), nullable=True),
        sa.Column("created_by", sa.String(length=64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.ForeignKeyConstraint(["reverses_transaction_id"], ["ledger_transactions.id"]),
        sa.ForeignKeyConstraint(["voided_by_transaction_id"], ["ledger_transactions.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("idempotency_key"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_ledger_transactions_date", "ledger_transactions", ["date"], unique=False)
    op.create_index("ix_ledger_transactions_reference", "ledger_transactions", ["reference"], unique=False)
    op.create_index("ix_ledger_transactions_source", "ledger_transactions", ["source"], unique=False)
    op.create_index("ix_ledger_transactions_status_date", "ledger_transactions", ["status", "date"], unique=False)

    op.create_table(
        "ledger_entries",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("transaction_id", sa.Integer(), nullable=False),
        sa.Column("account_id", sa.Integer(), nullable=False),
        sa.Column("direction", sa.String(length=6), nullable=False),
        sa.Column("amount_cents", sa.BigInteger(), nullable=False),
        sa.Column("memo", sa.String(length=255), nullable=True),
        sa.CheckConstraint("amount_cents > 0", name="ck_ledger_entries_amount_positive"),
        sa.CheckConstraint("direction IN ('DEBIT', 'CREDIT')", name="ck_ledger_entries_direction"),
        sa.ForeignKeyConstraint(["transaction_id"], ["ledger_transactions.id"]),
        sa.ForeignKeyConstraint(["account_id"], ["accounts.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_ledger_entries_transaction_id", "ledger_entries", ["transaction_id"], unique=False)
    op.create_index("ix_ledger_entries_account_id", "ledger_entries", ["account_id"], unique=False)
    op.create_index("ix_ledger_entries_account_direction", "ledger_entries", ["account_id", "direction"], unique=False)

    op.create_table(
        "shifts",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("cashier_id", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("start_cash_cents", sa.BigInteger(), nullable=False),
        sa.Column("expected_cash_cents", sa.BigInteger(), nullable=True),
        sa.Column("counted_cash_cents", sa.BigInteger(), nullable=True),
        sa.Column("variance_cents", sa.BigInteger(), nullable=True),
        sa.Column("opened_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reconciled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default="1"),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_shifts_cashier_id", "shifts", ["cashier_id"], unique=False)
    op.create_index("ix_shifts_status", "shifts", ["status"], unique=False)
    op.create_index("ix_shifts_opened_at", "shifts", ["opened_at"], unique=False)
    op.create_index("ix_shifts_cashier_status", "shifts", ["cashier_id", "status"], unique=False)
    op.create_index(
        "uq_shifts_open_cashier",
        "shifts",
        ["cashier_id"],
        unique=True,
        sqlite_where=sa.text("status = 'OPEN'"),
        postgresql_where=sa.text("status = 'OPEN'"),
    )

    op.create_table(
        "shift_sales",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("shift_id", sa.Integer(), nullable=False),
        sa.Column("total_cents", sa.BigInteger(), nullable=False),
        sa.Column("is_refund", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("reference", sa.String(length=128), nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.ForeignKeyConstraint(["shift_id"], ["shifts.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_shift_sales_shift_id", "shift_sales", ["shift_id"], unique=False)

    op.create_table(
        "shift_payments",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("sale_id", sa.Integer(), nullable=False),
        sa.Column("payment_method_code", sa.String(length=32), nullable=False),
        sa.Column("amount_cents", sa.BigInteger(), nullable=False),
        sa.Column("account_id", sa.Integer(), nullable=True),
        sa.CheckConstraint("amount_cents > 0", name="ck_shift_payments_amount_positive"),
        sa.ForeignKeyConstraint(["sale_id"], ["shift_sales.id"]),
        sa.ForeignKeyConstraint(["account_id"], ["accounts.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_shift_payments_sale_id", "shift_payments", ["sale_id"], unique=False)

    op.create_table(
        "shift_cash_deposits",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("shift_id", sa.Integer(), nullable=False),
        sa.Column("amount_cents", sa.BigInteger(), nullable=False),
        sa.Column("account_id", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("reference", sa.String(length=128), nullable=True),
        sa.Column("notes", sa.String(length=255), nullable=True),
        sa.Column("deposited_by", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("transaction_id", sa.Integer(), nullable=True),
        sa.CheckConstraint("amount_cents > 0", name="ck_shift_cash_deposits_amount_positive"),
        sa.ForeignKeyConstraint(["shift_id"], ["shifts.id"]),
        sa.ForeignKeyConstraint(["account_id"], ["accounts.id"]),
        sa.ForeignKeyConstraint(["transaction_id"], ["ledger_transactions.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_shift_cash_deposits_shift_id", "shift_cash_deposits", ["shift_id"], unique=False)
    op.create_index("ix_shift_cash_deposits_status", "shift_cash_deposits", ["status"], unique=False)

    op.create_table(
        "shift_reconciliations",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("shift_id", sa.Integer(), nullable=False),
        sa.Column("payment_method_code", sa.String(length=32), nullable=False),
        sa.Column("account_id", sa.Integer(), nullable=True),
        sa.Column("expected_cents", sa.BigInteger(), nullable=False),
        sa.Column("actual_cents", sa.BigInteger(), nullable=False),
        sa.Column("difference_cents", sa.BigInteger(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("transaction_id", sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(["shift_id"], ["shifts.id"]),
        sa.ForeignKeyConstraint(["account_id"], ["accounts.id"]),
        sa.ForeignKeyConstraint(["transaction_id"], ["ledger_transactions.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("shift_id", "payment_method_code", "account_id", name="uq_shift_reconciliations_key"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_shift_reconciliations_shift_id", "shift_reconciliations", ["shift_id"], unique=False)
    op.create_index("ix_shift_reconciliations_status", "shift_reconciliations", ["status"], unique=False)

    op.create_table(
        "period_closes",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("transaction_id", sa.Integer(), nullable=True),
        sa.Column("retained_earnings_account_id", sa.Integer(), nullable=False),
        sa.Column("net_profit_cents", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("closed_by", sa.String(length=64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.CheckConstraint("start_date <= end_date", name="ck_period_closes_range_order"),
        sa.ForeignKeyConstraint(["transaction_id"], ["ledger_transactions.id"]),
        sa.ForeignKeyConstraint(["retained_earnings_account_id"], ["accounts.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("start_date", "end_date", name="uq_period_closes_range"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_period_closes_end_date", "period_closes", ["end_date"], unique=False)


def downgrade():
    op.drop_index("ix_period_closes_end_date", table_name="period_closes")
    op.drop_table("period_closes")
    op.drop_index("ix_shift_reconciliations_status", table_name="shift_reconciliations")
    op.drop_index("ix_shift_reconciliations_shift_id", table_name="shift_reconciliations")
    op.drop_table("shift_reconciliations")
    op.drop_index("ix_shift_cash_deposits_status", table_name="shift_cash_deposits")
    op.drop_index("ix_shift_cash_deposits_shift_id", table_name="shift_cash_deposits")
    op.drop_table("shift_cash_deposits")
    op.drop_index("ix_shift_payments_sale_id", table_name="shift_payments")
    op.drop_table("shift_payments")
    op.drop_index("ix_shift_sales_shift_id", table_name="shift_sales")
    op.drop_table("shift_sales")
    op.drop_index("uq_shifts_open_cashier", table_name="shifts")
    op.drop_index("ix_shifts_cashier_status", table_name="shifts")
    op.drop_index("ix_shifts_opened_at", table_name="shifts")
    op.drop_index("ix_shifts_status", table_name="shifts")
    op.drop_index("ix_shifts_cashier_id", table_name="shifts")
    op.drop_table("shifts")
    op.drop_index("ix_ledger_entries_account_direction", table_name="ledger_entries")
    op.drop_index("ix_ledger_entries_account_id", table_name="ledger_entries")
    op.drop_index("ix_ledger_entries_transaction_id", table_name="ledger_entries")
    op.drop_table("ledger_entries")
    op.drop_index("ix_ledger_transactions_status_date", table_name="ledger_transactions")
    op.drop_index("ix_ledger_transactions_source", table_name="ledger_transactions")
    op.drop_index("ix_ledger_transactions_reference", table_name="ledger_transactions")
    op.drop_index("ix_ledger_transactions_date", table_name="ledger_transactions")
    op.drop_table("ledger_transactions")
    op.drop_index("ix_accounts_is_active", table_name="accounts")
    op.drop_index("ix_accounts_account_type", table_name="accounts")
    op.drop_index("ix_accounts_code", table_name="accounts")
    op.drop_table("accounts")
