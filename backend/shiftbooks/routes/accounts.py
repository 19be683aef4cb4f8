# Overview: Flask API routes for the chart of accounts; parses input and returns JSON responses.

# backend/shiftbooks/routes/accounts.py
"""
Chart of Accounts API Routes

DESIGN:
- Accounts are created and retired, never deleted
- Balances are read-only here (the posting engine owns them)
- Opening balances go through the posting engine like any other posting
"""

from flask import Blueprint, current_app, jsonify, request

from ..extensions import db
from ..services import balance_service, chart_service
from ..time_utils import parse_iso_date
from ..validation import require_fields
from .errors import error_response, is_handled

accounts_bp = Blueprint("accounts", __name__, url_prefix="/api/accounts")


@accounts_bp.post("/")
@accounts_bp.post("")
def create_account_route():
    """
    Create an account.

    Request body:
    {
        "code": "1010",
        "name": "Main Bank Account",
        "account_type": "ASSET",
        "currency": "NGN",            (optional, defaults to DEFAULT_CURRENCY)
        "description": "...",         (optional)
        "provider": "paystack",       (optional, disbursement metadata)
        "external_reference": "..."   (optional)
    }
    """
    try:
        data = require_fields(request.get_json(silent=True), "code", "name", "account_type")
        account = chart_service.create_account(
            db.session,
            code=str(data["code"]),
            name=data["name"],
            account_type=data["account_type"],
            currency=data.get("currency"),
            description=data.get("description"),
            provider=data.get("provider"),
            external_reference=data.get("external_reference"),
        )
        return jsonify({"account": account.to_dict()}), 201
    except Exception as e:
        if is_handled(e):
            return error_response(e)
        current_app.logger.exception("Failed to create account")
        return jsonify({"error": "Internal server error"}), 500


@accounts_bp.get("/")
@accounts_bp.get("")
def list_accounts_route():
    try:
        accounts = chart_service.list_accounts(
            db.session,
            account_type=request.args.get("type"),
            include_inactive=request.args.get("include_inactive") in ("1", "true", "yes"),
        )
        return jsonify({"accounts": [a.to_dict() for a in accounts]}), 200
    except Exception as e:
        if is_handled(e):
            return error_response(e)
        current_app.logger.exception("Failed to list accounts")
        return jsonify({"error": "Internal server error"}), 500


@accounts_bp.get("/<int:account_id>")
def get_account_route(account_id: int):
    try:
        account = chart_service.get_account(db.session, account_id)
        return jsonify({"account": account.to_dict()}), 200
    except Exception as e:
        if is_handled(e):
            return error_response(e)
        current_app.logger.exception("Failed to load account")
        return jsonify({"error": "Internal server error"}), 500


@accounts_bp.get("/<int:account_id>/balance")
def get_balance_route(account_id: int):
    """
    Balance on the account's normal side.

    Query params:
        as_of: YYYY-MM-DD (inclusive). Omit for the current cached balance.
    """
    try:
        as_of = parse_iso_date(request.args.get("as_of"))
        balance = balance_service.get_balance(db.session, account_id, as_of=as_of)
        return jsonify({
            "account_id": account_id,
            "as_of": as_of.isoformat() if as_of else None,
            "balance_cents": balance,
        }), 200
    except Exception as e:
        if is_handled(e):
            return error_response(e)
        current_app.logger.exception("Failed to compute balance")
        return jsonify({"error": "Internal server error"}), 500


@accounts_bp.post("/<int:account_id>/retire")
def retire_account_route(account_id: int):
    try:
        account = chart_service.retire_account(db.session, account_id)
        return jsonify({"account": account.to_dict()}), 200
    except Exception as e:
        if is_handled(e):
            return error_response(e)
        current_app.logger.exception("Failed to retire account")
        return jsonify({"error": "Internal server error"}), 500


@accounts_bp.post("/<int:account_id>/opening-balance")
def opening_balance_route(account_id: int):
    """
    Post an opening balance against owner's equity.

    Request body:
    {
        "amount_cents": 500000,
        "equity_code": "3000"   (optional)
    }
    """
    try:
        data = require_fields(request.get_json(silent=True), "amount_cents")
        txn = chart_service.post_opening_balance(
            db.session,
            account_id,
            data["amount_cents"],
            equity_code=str(data.get("equity_code") or "3000"),
            date=parse_iso_date(data.get("date")),
        )
        return jsonify({"transaction": txn.to_dict()}), 201
    except Exception as e:
        if is_handled(e):
            return error_response(e)
        current_app.logger.exception("Failed to post opening balance")
        return jsonify({"error": "Internal server error"}), 500


@accounts_bp.post("/seed-standard")
def seed_standard_route():
    try:
        created = chart_service.seed_standard_chart(db.session)
        return jsonify({"created": [a.to_dict() for a in created]}), 201 if created else 200
    except Exception as e:
        if is_handled(e):
            return error_response(e)
        current_app.logger.exception("Failed to seed chart of accounts")
        return jsonify({"error": "Internal server error"}), 500
