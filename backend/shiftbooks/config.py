# backend/shiftbooks/config.py
from __future__ import annotations
import os


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/shiftbooks.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",  # optional alternative location
        "sqlite:///shiftbooks.sqlite3",  # default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Browser origins allowed to call the JSON API
    CORS_ALLOWED_ORIGINS = [
        o.strip()
        for o in os.environ.get("CORS_ALLOWED_ORIGINS", "http://localhost:5173,http://127.0.0.1:5173").split(",")
        if o.strip()
    ]

    # Money: single-currency books, integer minor units everywhere
    DEFAULT_CURRENCY = os.environ.get("DEFAULT_CURRENCY", "NGN")
    MONEY_DECIMAL_PLACES = _env_int("MONEY_DECIMAL_PLACES", 2)

    # Retries for lock/deadlock failures inside post_transaction
    POSTING_RETRY_ATTEMPTS = _env_int("POSTING_RETRY_ATTEMPTS", 3)

    # Statement classification by numeric account code (inclusive ranges)
    STATEMENT_RANGES = {
        "cost_of_sales": (5000, 5999),
        "current_assets": (1000, 1499),
        "current_liabilities": (2000, 2499),
    }

    # Shift reconciliation posting targets (account codes)
    SHIFT_TILL_ACCOUNT_CODE = os.environ.get("SHIFT_TILL_ACCOUNT_CODE", "1000")
    SHIFT_REVENUE_ACCOUNT_CODE = os.environ.get("SHIFT_REVENUE_ACCOUNT_CODE", "4000")
    SHIFT_VARIANCE_ACCOUNT_CODE = os.environ.get("SHIFT_VARIANCE_ACCOUNT_CODE", "6100")
    SHIFT_METHOD_ACCOUNT_CODES = {
        "CARD": "1020",
        "TRANSFER": "1010",
    }
    # Default destination for cash deposits logged without an account
    SHIFT_DEPOSIT_ACCOUNT_CODE = os.environ.get("SHIFT_DEPOSIT_ACCOUNT_CODE", "1010")

    # WARN: variances are reported only. BLOCK: beyond tolerance stops confirmation.
    SHIFT_VARIANCE_MODE = os.environ.get("SHIFT_VARIANCE_MODE", "WARN")
    SHIFT_VARIANCE_TOLERANCE_CENTS = _env_int("SHIFT_VARIANCE_TOLERANCE_CENTS", 0)
