# Overview: Flask API routes for ledger posting, reporting and period close; parses input and returns JSON responses.

# backend/shiftbooks/routes/ledger.py
"""
Ledger API Routes

WHY: The boundary for external producers (disbursement, payroll, manual
journals) and for the reporting layer. Every posting goes through the same
posting engine validation; there is no privileged bypass.

MONEY:
- Entry amounts are integer minor units ("amount_cents": 12550), or a
  major-unit decimal string ("amount": "125.50") with no more decimal
  places than MONEY_DECIMAL_PLACES. Floats are rejected.
- Report figures come back both as cents and as display strings.
"""

from flask import Blueprint, current_app, jsonify, request

from ..extensions import db
from ..services import balance_service, period_close_service, posting_service, statement_service
from ..services.posting_service import EntryLine, TransactionDraft
from ..time_utils import parse_iso_date, parse_iso_datetime
from ..validation import ValidationError, parse_cents, parse_int_list, parse_major_amount, require_fields
from .errors import error_response, is_handled

ledger_bp = Blueprint("ledger", __name__, url_prefix="/api/ledger")


def _places() -> int:
    return int(current_app.config.get("MONEY_DECIMAL_PLACES", 2))


def _parse_entries(raw) -> list[EntryLine]:
    if not isinstance(raw, list):
        raise ValidationError("entries must be a list")
    entries = []
    for i, item in enumerate(raw):
        if not isinstance(item, dict):
            raise ValidationError(f"entries[{i}] must be an object")
        if item.get("account_id") in (None, ""):
            raise ValidationError(f"entries[{i}].account_id is required")
        if "amount_cents" in item:
            amount = parse_cents(item["amount_cents"], f"entries[{i}].amount_cents", allow_zero=True, allow_negative=True)
        else:
            amount = parse_major_amount(item.get("amount"), f"entries[{i}].amount", places=_places())
        try:
            account_id = int(item["account_id"])
        except (TypeError, ValueError):
            raise ValidationError(f"entries[{i}].account_id must be an integer")
        entries.append(EntryLine(
            account_id=account_id,
            direction=str(item.get("direction") or "").upper(),
            amount_cents=amount,
            memo=item.get("memo"),
        ))
    return entries


def _require_range():
    start = parse_iso_date(request.args.get("start"))
    end = parse_iso_date(request.args.get("end"))
    if start is None or end is None:
        raise ValidationError("start and end (YYYY-MM-DD) are required")
    if start > end:
        raise ValidationError("start must not be after end")
    return start, end


# =============================================================================
# POSTING
# =============================================================================

@ledger_bp.post("/transactions")
def post_transaction_route():
    """
    Post a balanced transaction.

    Request body:
    {
        "description": "Office rent March",
        "reference": "RENT-03",                 (optional)
        "idempotency_key": "disb:PSK-123",      (optional, required for retrying callers)
        "date": "2026-03-01T09:00:00Z",         (optional, default now)
        "source": "MANUAL_JOURNAL",             (optional)
        "created_by": "finance@example.com",    (optional)
        "entries": [
            {"account_id": 20, "direction": "DEBIT", "amount_cents": 150000},
            {"account_id": 2, "direction": "CREDIT", "amount": "1500.00"}
        ]
    }

    409 with the original transaction_id when the idempotency key already posted.
    """
    try:
        data = require_fields(request.get_json(silent=True), "description", "entries")
        draft = TransactionDraft(
            description=data["description"],
            entries=_parse_entries(data["entries"]),
            reference=data.get("reference"),
            idempotency_key=data.get("idempotency_key"),
            date=parse_iso_datetime(data.get("date")),
            source=str(data.get("source") or "MANUAL_JOURNAL").upper(),
            created_by=data.get("created_by"),
        )
        txn = posting_service.post_transaction(db.session, draft)
        return jsonify({"transaction": txn.to_dict()}), 201
    except Exception as e:
        if is_handled(e):
            return error_response(e)
        current_app.logger.exception("Failed to post transaction")
        return jsonify({"error": "Internal server error"}), 500


@ledger_bp.post("/transactions/<int:transaction_id>/void")
def void_transaction_route(transaction_id: int):
    try:
        data = request.get_json(silent=True) or {}
        reversal = posting_service.void_transaction(
            db.session,
            transaction_id,
            reason=data.get("reason"),
            created_by=data.get("created_by"),
        )
        return jsonify({"reversal": reversal.to_dict()}), 201
    except Exception as e:
        if is_handled(e):
            return error_response(e)
        current_app.logger.exception("Failed to void transaction")
        return jsonify({"error": "Internal server error"}), 500


@ledger_bp.get("/transactions")
def list_transactions_route():
    try:
        transactions = posting_service.list_transactions(
            db.session,
            limit=request.args.get("limit", 50, type=int),
            offset=request.args.get("offset", 0, type=int),
            source=request.args.get("source"),
            account_id=request.args.get("account_id", type=int),
            status=request.args.get("status"),
        )
        return jsonify({"transactions": [t.to_dict() for t in transactions]}), 200
    except Exception as e:
        if is_handled(e):
            return error_response(e)
        current_app.logger.exception("Failed to list transactions")
        return jsonify({"error": "Internal server error"}), 500


@ledger_bp.get("/transactions/<int:transaction_id>")
def get_transaction_route(transaction_id: int):
    try:
        txn = posting_service.get_transaction(db.session, transaction_id)
        return jsonify({"transaction": txn.to_dict()}), 200
    except Exception as e:
        if is_handled(e):
            return error_response(e)
        current_app.logger.exception("Failed to load transaction")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# REPORTING
# =============================================================================

@ledger_bp.get("/activity")
def period_activity_route():
    """
    Windowed debit/credit sums.

    Query params:
        start, end: YYYY-MM-DD (inclusive)
        account_ids: comma-separated (optional, default all accounts)
    """
    try:
        start, end = _require_range()
        account_ids = parse_int_list(request.args.get("account_ids"), "account_ids") or None
        activity = balance_service.get_period_activity(db.session, account_ids, start, end)
        return jsonify({
            "start": start.isoformat(),
            "end": end.isoformat(),
            "activity": {str(k): v.to_dict() for k, v in activity.items()},
        }), 200
    except Exception as e:
        if is_handled(e):
            return error_response(e)
        current_app.logger.exception("Failed to compute period activity")
        return jsonify({"error": "Internal server error"}), 500


@ledger_bp.get("/statements")
def statements_route():
    """Profit & Loss for [start, end] and the Balance Sheet as of end."""
    try:
        start, end = _require_range()
        statements = statement_service.build_financial_statements(db.session, start, end)
        return jsonify(statements.to_dict(places=_places())), 200
    except Exception as e:
        if is_handled(e):
            return error_response(e)
        current_app.logger.exception("Failed to build financial statements")
        return jsonify({"error": "Internal server error"}), 500


@ledger_bp.get("/verify")
def verify_route():
    try:
        check = balance_service.verify_ledger(db.session)
        return jsonify(check.to_dict()), 200 if check.ok else 409
    except Exception:
        current_app.logger.exception("Ledger verification failed")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# PERIOD CLOSE
# =============================================================================

@ledger_bp.post("/period-closes")
def close_period_route():
    """
    Close an accounting period into retained earnings.

    Request body:
    {
        "start": "2026-01-01",
        "end": "2026-01-31",
        "retained_earnings_code": "3100"   (optional)
    }
    """
    try:
        data = require_fields(request.get_json(silent=True), "start", "end")
        record = period_close_service.close_period(
            db.session,
            parse_iso_date(data["start"]),
            parse_iso_date(data["end"]),
            retained_earnings_code=str(data.get("retained_earnings_code") or "3100"),
            closed_by=data.get("closed_by"),
        )
        return jsonify({"period_close": record.to_dict()}), 201
    except Exception as e:
        if is_handled(e):
            return error_response(e)
        current_app.logger.exception("Failed to close period")
        return jsonify({"error": "Internal server error"}), 500


@ledger_bp.get("/period-closes")
def list_period_closes_route():
    closes = period_close_service.list_period_closes(db.session)
    return jsonify({"period_closes": [c.to_dict() for c in closes]}), 200
