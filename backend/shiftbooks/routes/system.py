# backend/shiftbooks/routes/system.py
"""
System health endpoint.

Checks database connectivity and reports ledger-level counts for
deployment debugging.
"""

import time

from flask import Blueprint, current_app, jsonify

from ..extensions import db
from ..models import Account, Shift, ShiftStatus, Transaction

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """
    Check database connectivity and basic operations.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        account_count = db.session.query(Account).count()
        transaction_count = db.session.query(Transaction).count()
        open_shift_count = db.session.query(Shift).filter_by(status=ShiftStatus.OPEN.value).count()

        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "accounts": account_count,
                "transactions": transaction_count,
                "open_shifts": open_shift_count,
            },
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


@system_bp.get("/api/health")
def health():
    database = check_database_health()
    status = 200 if database["status"] == "healthy" else 503
    return jsonify({"status": database["status"], "database": database}), status
