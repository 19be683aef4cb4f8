# Overview: Flask API routes for cashier shifts; parses input and returns JSON responses.

# backend/shiftbooks/routes/shifts.py
"""
Shift API Routes

WHY: POS terminals drive the shift lifecycle over HTTP.

DESIGN:
- Shift lifecycle: open -> close (counts) -> reconcile (posts to the ledger)
- Sales and cash deposits only while OPEN
- Confirmations are idempotent so a terminal may safely retry
- Variances come back as warnings; under BLOCK policy confirmation fails with 422
"""

from flask import Blueprint, current_app, jsonify, request

from ..extensions import db
from ..services import shift_service
from ..validation import ValidationError, require_fields
from .errors import error_response, is_handled

shifts_bp = Blueprint("shifts", __name__, url_prefix="/api/shifts")


def _int_field(data: dict, name: str, *, required: bool = True) -> int | None:
    value = data.get(name)
    if value in (None, ""):
        if required:
            raise ValidationError(f"{name} is required")
        return None
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be an integer")


def _failure(e: Exception, message: str):
    if is_handled(e):
        return error_response(e)
    current_app.logger.exception(message)
    return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# SHIFT LIFECYCLE
# =============================================================================

@shifts_bp.post("/")
@shifts_bp.post("")
def open_shift_route():
    """
    Open a shift.

    Request body:
    {
        "cashier_id": 7,
        "start_cash_cents": 10000,
        "notes": "Morning shift"   (optional)
    }
    """
    try:
        data = require_fields(request.get_json(silent=True), "cashier_id")
        shift = shift_service.open_shift(
            db.session,
            cashier_id=_int_field(data, "cashier_id"),
            start_cash_cents=data.get("start_cash_cents", 0),
            notes=data.get("notes"),
        )
        return jsonify({"shift": shift.to_dict()}), 201
    except Exception as e:
        return _failure(e, "Failed to open shift")


@shifts_bp.get("/")
@shifts_bp.get("")
def list_shifts_route():
    try:
        shifts = shift_service.list_shifts(
            db.session,
            status=request.args.get("status"),
            cashier_id=request.args.get("cashier_id", type=int),
            limit=request.args.get("limit", 50, type=int),
        )
        return jsonify({"shifts": [s.to_dict() for s in shifts]}), 200
    except Exception as e:
        return _failure(e, "Failed to list shifts")


@shifts_bp.get("/active")
def active_shift_route():
    try:
        cashier_id = _int_field(request.args, "cashier_id")
        shift = shift_service.get_active_shift(db.session, cashier_id)
        return jsonify({"shift": shift.to_dict() if shift else None}), 200
    except Exception as e:
        return _failure(e, "Failed to load active shift")


@shifts_bp.get("/<int:shift_id>")
def get_shift_route(shift_id: int):
    try:
        shift = shift_service.get_shift(db.session, shift_id)
        return jsonify({"shift": shift.to_dict()}), 200
    except Exception as e:
        return _failure(e, "Failed to load shift")


@shifts_bp.get("/<int:shift_id>/summary")
def shift_summary_route(shift_id: int):
    """Expected amounts per reconciliation key plus Z-report totals."""
    try:
        summary = shift_service.get_shift_summary(db.session, shift_id)
        return jsonify(summary.to_dict()), 200
    except Exception as e:
        return _failure(e, "Failed to build shift summary")


@shifts_bp.post("/<int:shift_id>/sales")
def record_sale_route(shift_id: int):
    """
    Record a completed sale or refund.

    Request body:
    {
        "payments": [
            {"payment_method_code": "CASH", "amount_cents": 2000},
            {"payment_method_code": "CARD", "amount_cents": 1000, "account_id": 3}
        ],
        "total_cents": 3000,   (optional cross-check)
        "reference": "RCPT-0001",
        "is_refund": false
    }
    """
    try:
        data = require_fields(request.get_json(silent=True), "payments")
        if not isinstance(data["payments"], list):
            raise ValidationError("payments must be a list")
        sale = shift_service.record_sale(
            db.session,
            shift_id,
            data["payments"],
            reference=data.get("reference"),
            is_refund=bool(data.get("is_refund", False)),
            total_cents=data.get("total_cents"),
        )
        return jsonify({"sale": sale.to_dict()}), 201
    except Exception as e:
        return _failure(e, "Failed to record sale")


@shifts_bp.post("/<int:shift_id>/deposits")
def add_deposit_route(shift_id: int):
    """
    Log a cash deposit (drop) from the drawer.

    Request body:
    {
        "amount_cents": 2000,
        "account_id": 2,       (optional destination, default SHIFT_DEPOSIT_ACCOUNT_CODE)
        "reference": "DROP-1", (optional)
        "notes": "...",        (optional)
        "deposited_by": 7      (optional)
    }
    """
    try:
        data = require_fields(request.get_json(silent=True), "amount_cents")
        deposit = shift_service.add_cash_deposit(
            db.session,
            shift_id,
            data["amount_cents"],
            account_id=_int_field(data, "account_id", required=False),
            reference=data.get("reference"),
            notes=data.get("notes"),
            deposited_by=_int_field(data, "deposited_by", required=False),
        )
        return jsonify({"deposit": deposit.to_dict()}), 201
    except Exception as e:
        return _failure(e, "Failed to log cash deposit")


@shifts_bp.get("/<int:shift_id>/deposits")
def list_deposits_route(shift_id: int):
    try:
        deposits = shift_service.list_deposits(db.session, shift_id)
        return jsonify({"deposits": [d.to_dict() for d in deposits]}), 200
    except Exception as e:
        return _failure(e, "Failed to list cash deposits")


@shifts_bp.post("/<int:shift_id>/close")
def close_shift_route(shift_id: int):
    """
    Close a shift with counted amounts.

    Request body:
    {
        "actuals": {"CASH": 10950, "CARD": 1000, "TRANSFER:4": 500},
        "notes": "..."   (optional)
    }
    """
    try:
        data = require_fields(request.get_json(silent=True), "actuals")
        if not isinstance(data["actuals"], dict):
            raise ValidationError("actuals must be an object")
        result = shift_service.close_shift(
            db.session,
            shift_id,
            data["actuals"],
            notes=data.get("notes"),
        )
        return jsonify(result.to_dict()), 200
    except Exception as e:
        return _failure(e, "Failed to close shift")


@shifts_bp.get("/<int:shift_id>/reconciliations")
def list_reconciliations_route(shift_id: int):
    try:
        rows = shift_service.list_reconciliations(db.session, shift_id)
        return jsonify({"reconciliations": [r.to_dict() for r in rows]}), 200
    except Exception as e:
        return _failure(e, "Failed to list reconciliations")


# =============================================================================
# CONFIRMATION / RECONCILIATION
# =============================================================================

@shifts_bp.post("/reconciliations/<int:reconciliation_id>/confirm")
def confirm_reconciliation_route(reconciliation_id: int):
    try:
        rec = shift_service.confirm_reconciliation(db.session, reconciliation_id)
        return jsonify({"reconciliation": rec.to_dict()}), 200
    except Exception as e:
        return _failure(e, "Failed to confirm reconciliation")


@shifts_bp.post("/deposits/<int:deposit_id>/confirm")
def confirm_deposit_route(deposit_id: int):
    try:
        deposit = shift_service.confirm_deposit(db.session, deposit_id)
        return jsonify({"deposit": deposit.to_dict()}), 200
    except Exception as e:
        return _failure(e, "Failed to confirm cash deposit")


@shifts_bp.post("/<int:shift_id>/reconcile")
def reconcile_shift_route(shift_id: int):
    """
    CLOSED -> RECONCILED. Posts every pending row and deposit.

    A repeat call answers 409 with the prior result under "result".
    """
    try:
        result = shift_service.reconcile_shift(db.session, shift_id)
        return jsonify(result.to_dict()), 200
    except Exception as e:
        return _failure(e, "Failed to reconcile shift")
