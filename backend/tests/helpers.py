# Overview: Posting shortcuts shared by the ledger tests.

from datetime import datetime

from shiftbooks.services.posting_service import EntryLine, TransactionDraft, post_transaction


def post(session, debit_id, credit_id, amount_cents, *, on=None, key=None, description="Test posting", source="MANUAL_JOURNAL"):
    """Post a two-leg transaction (debit one account, credit another)."""
    return post_transaction(session, TransactionDraft(
        description=description,
        entries=[
            EntryLine(debit_id, "DEBIT", amount_cents),
            EntryLine(credit_id, "CREDIT", amount_cents),
        ],
        idempotency_key=key,
        date=on,
        source=source,
    ))


def at(year, month, day, hour=12):
    return datetime(year, month, day, hour, 0, 0)
