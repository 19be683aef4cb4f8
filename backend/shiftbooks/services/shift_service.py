"""
Shift Reconciliation State Machine

WHY: Cashier accountability. A shift tracks the drawer from opening float to
counted close, and is the only path by which POS activity reaches the ledger.

LIFECYCLE (linear, see SHIFT_TRANSITIONS):
- OPEN: sales and cash deposits (drops) are recorded
- CLOSED: counts entered; one Reconciliation row per payment method/account
- RECONCILED: every row and deposit confirmed and posted, exactly once

RECONCILIATION KEYS:
- "CASH" for the drawer (cash payments always land in the till account)
- "METHOD" or "METHOD:<account_id>" for everything else

EXPECTED DRAWER CASH:
    start cash + cash sales - cash refunds - every deposit (pending or confirmed)

POSTING (at confirmation, keyed so a retry never double-posts):
- CASH: Dr till (cash taken = actual - start + deposits), Cr revenue (expected
  sales), difference to the variance account
- Other methods: Dr the row's account (or the method's default) with actual,
  Cr revenue with expected, difference to the variance account
- Deposits: Dr destination account, Cr till
Counted amounts are what hit the asset accounts, so shortages and overages
land in the books instead of being absorbed.
"""

from __future__ import annotations

import logging
import re
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Iterable, Mapping

from flask import current_app, has_app_context
from sqlalchemy.exc import IntegrityError

from ..exceptions import (
    AlreadyPostedError,
    AlreadyReconciledError,
    InvalidTransitionError,
    NotFoundError,
    UnknownAccountError,
    VarianceLimitExceededError,
)
from ..models import (
    Account,
    CashDeposit,
    ConfirmationStatus,
    Direction,
    Reconciliation,
    Shift,
    ShiftPayment,
    ShiftSale,
    ShiftStatus,
    TransactionSource,
)
from ..models.enums import SHIFT_TRANSITIONS
from ..time_utils import to_utc_z, utcnow
from ..validation import ValidationError, parse_cents
from .concurrency import account_locks, atomic, lock_for_update
from .posting_service import EntryLine, TransactionDraft, find_by_idempotency_key, stage_transaction

logger = logging.getLogger(__name__)

CASH = "CASH"
VARIANCE_MODES = ("WARN", "BLOCK")

_KEY_PATTERN = re.compile(r"^([A-Z][A-Z0-9_]*)(?::(\d+))?$")


# =============================================================================
# POLICY / VALUE TYPES
# =============================================================================

@dataclass(frozen=True)
class ShiftPolicy:
    """Where shift postings go, and how variances are treated."""
    till_account_code: str = "1000"
    revenue_account_code: str = "4000"
    variance_account_code: str | None = "6100"
    deposit_account_code: str = "1010"
    method_account_codes: Mapping[str, str] = field(default_factory=lambda: {"CARD": "1020", "TRANSFER": "1010"})
    variance_mode: str = "WARN"
    variance_tolerance_cents: int = 0

    def __post_init__(self):
        if self.variance_mode not in VARIANCE_MODES:
            raise ValueError(f"variance_mode must be one of {', '.join(VARIANCE_MODES)}")
        if self.variance_tolerance_cents < 0:
            raise ValueError("variance_tolerance_cents cannot be negative")

    @classmethod
    def from_config(cls, config=None) -> "ShiftPolicy":
        if config is None:
            config = current_app.config if has_app_context() else {}
        defaults = cls()
        return cls(
            till_account_code=config.get("SHIFT_TILL_ACCOUNT_CODE", defaults.till_account_code),
            revenue_account_code=config.get("SHIFT_REVENUE_ACCOUNT_CODE", defaults.revenue_account_code),
            variance_account_code=config.get("SHIFT_VARIANCE_ACCOUNT_CODE", defaults.variance_account_code) or None,
            deposit_account_code=config.get("SHIFT_DEPOSIT_ACCOUNT_CODE", defaults.deposit_account_code),
            method_account_codes={
                k.upper(): v for k, v in (config.get("SHIFT_METHOD_ACCOUNT_CODES") or defaults.method_account_codes).items()
            },
            variance_mode=str(config.get("SHIFT_VARIANCE_MODE", defaults.variance_mode)).upper(),
            variance_tolerance_cents=int(config.get("SHIFT_VARIANCE_TOLERANCE_CENTS", defaults.variance_tolerance_cents)),
        )

    def exceeds_tolerance(self, difference_cents: int) -> bool:
        return abs(difference_cents) > self.variance_tolerance_cents

    def enforce(self, differences: Mapping[str, int]) -> None:
        """Under BLOCK, refuse any difference beyond tolerance."""
        if self.variance_mode != "BLOCK":
            return
        blocked = {key: diff for key, diff in differences.items() if self.exceeds_tolerance(diff)}
        if blocked:
            raise VarianceLimitExceededError(
                "Variance beyond tolerance ({} cents): {}".format(
                    self.variance_tolerance_cents,
                    ", ".join(f"{k}={v}" for k, v in sorted(blocked.items())),
                ),
                differences=blocked,
            )


@dataclass(frozen=True)
class SalePayment:
    payment_method_code: str
    amount_cents: int
    account_id: int | None = None


@dataclass
class ShiftSummary:
    shift_id: int
    status: str
    start_cash_cents: int
    expected: dict[str, int]
    gross_sales_cents: int = 0
    total_refunds_cents: int = 0
    cash_sales_cents: int = 0
    cash_refunds_cents: int = 0
    transaction_count: int = 0
    deposits_total_cents: int = 0
    pending_deposits_cents: int = 0
    confirmed_deposits_cents: int = 0

    @property
    def net_sales_cents(self) -> int:
        return self.gross_sales_cents - self.total_refunds_cents

    @property
    def expected_drawer_cents(self) -> int:
        return self.expected.get(CASH, 0)

    def to_dict(self) -> dict:
        return {
            "shift_id": self.shift_id,
            "status": self.status,
            "expected": dict(self.expected),
            "z_report": {
                "start_cash_cents": self.start_cash_cents,
                "gross_sales_cents": self.gross_sales_cents,
                "total_refunds_cents": self.total_refunds_cents,
                "net_sales_cents": self.net_sales_cents,
                "cash_sales_cents": self.cash_sales_cents,
                "cash_refunds_cents": self.cash_refunds_cents,
                "transaction_count": self.transaction_count,
                "deposits_total_cents": self.deposits_total_cents,
                "pending_deposits_cents": self.pending_deposits_cents,
                "confirmed_deposits_cents": self.confirmed_deposits_cents,
                "expected_drawer_cents": self.expected_drawer_cents,
            },
        }


@dataclass
class ShiftCloseResult:
    shift: Shift
    reconciliations: list[Reconciliation]
    warnings: list[dict]
    summary: ShiftSummary

    def to_dict(self) -> dict:
        return {
            "shift": self.shift.to_dict(),
            "reconciliations": [r.to_dict() for r in self.reconciliations],
            "warnings": self.warnings,
            "summary": self.summary.to_dict(),
        }


@dataclass
class ReconcileResult:
    shift_id: int
    status: str
    reconciled_at: object
    transaction_ids: list[int]
    reconciliation_ids: list[int]
    deposit_ids: list[int]
    warnings: list[dict]

    def to_dict(self) -> dict:
        return {
            "shift_id": self.shift_id,
            "status": self.status,
            "reconciled_at": to_utc_z(self.reconciled_at) if self.reconciled_at else None,
            "transaction_ids": self.transaction_ids,
            "reconciliation_ids": self.reconciliation_ids,
            "deposit_ids": self.deposit_ids,
            "warnings": self.warnings,
        }


# =============================================================================
# HELPERS
# =============================================================================

def reconciliation_key(method: str, account_id: int | None = None) -> str:
    method = (method or "").strip().upper()
    if method == CASH or account_id is None:
        return method
    return f"{method}:{account_id}"


def parse_reconciliation_key(key: str) -> tuple[str, int | None]:
    """"CARD:7" -> ("CARD", 7); "CASH:3" collapses to ("CASH", None)."""
    match = _KEY_PATTERN.match((key or "").strip().upper())
    if not match:
        raise ValidationError(f"Invalid reconciliation key: {key!r}")
    method, account_id = match.group(1), match.group(2)
    if method == CASH or account_id is None:
        return method, None
    return method, int(account_id)


def _transition(shift: Shift, target: ShiftStatus) -> None:
    current = ShiftStatus(shift.status)
    if SHIFT_TRANSITIONS[current] is not target:
        raise InvalidTransitionError(
            f"Shift {shift.id} cannot move from {current.value} to {target.value}"
        )
    shift.status = target.value


def _require_open(shift: Shift) -> None:
    if shift.status != ShiftStatus.OPEN.value:
        raise InvalidTransitionError(f"Shift {shift.id} is {shift.status}; it must be OPEN")


def _account_id_for_code(session, code: str, purpose: str) -> int:
    account = session.query(Account).filter_by(code=code).first()
    if account is None:
        raise UnknownAccountError(f"No account with code '{code}' for {purpose}")
    return account.id


def _ensure_account_exists(session, account_id: int | None) -> None:
    if account_id is not None and session.get(Account, account_id) is None:
        raise UnknownAccountError(f"Account {account_id} not found")


def _payment_account_id(session, method: str, account_id: int | None, policy: ShiftPolicy) -> int:
    """Ledger account that counted amounts for a payment method land in."""
    if method == CASH:
        return _account_id_for_code(session, policy.till_account_code, "till")
    if account_id is not None:
        _ensure_account_exists(session, account_id)
        return account_id
    code = policy.method_account_codes.get(method)
    if not code:
        raise UnknownAccountError(f"No account configured for payment method {method}")
    return _account_id_for_code(session, code, f"{method} payments")


def _check_posting_accounts(session, keys: Iterable[str], policy: ShiftPolicy) -> None:
    """Resolve every account a later reconciliation would post to."""
    _account_id_for_code(session, policy.revenue_account_code, "shift revenue")
    if policy.variance_account_code:
        _account_id_for_code(session, policy.variance_account_code, "cash variance")
    for key in keys:
        _payment_account_id(session, *parse_reconciliation_key(key), policy)


def _net_entries(amounts: Mapping[int, int], memo: str) -> list[EntryLine]:
    """Net signed amounts per account into entries: positive debits, negative credits."""
    entries = []
    for account_id in sorted(amounts):
        amount = amounts[account_id]
        if amount == 0:
            continue
        direction = Direction.DEBIT if amount > 0 else Direction.CREDIT
        entries.append(EntryLine(account_id, direction, abs(amount), memo))
    return entries


def _deposits_total(session, shift_id: int) -> int:
    return sum(d.amount_cents for d in session.query(CashDeposit).filter_by(shift_id=shift_id).all())


def _variance_warning(rec: Reconciliation, policy: ShiftPolicy) -> dict:
    return {
        "key": rec.key,
        "expected_cents": rec.expected_cents,
        "actual_cents": rec.actual_cents,
        "difference_cents": rec.difference_cents,
        "exceeds_tolerance": policy.exceeds_tolerance(rec.difference_cents),
    }


# =============================================================================
# SHIFT LIFECYCLE
# =============================================================================

def open_shift(session, cashier_id: int, start_cash_cents, notes: str | None = None) -> Shift:
    """
    Open a shift for a cashier with a declared opening float.

    Raises:
        InvalidTransitionError: the cashier already has an OPEN shift
    """
    start_cash_cents = parse_cents(start_cash_cents, "start_cash_cents", allow_zero=True)

    existing = get_active_shift(session, cashier_id)
    if existing is not None:
        raise InvalidTransitionError(f"Cashier {cashier_id} already has open shift {existing.id}")

    shift = Shift(
        cashier_id=cashier_id,
        status=ShiftStatus.OPEN.value,
        start_cash_cents=start_cash_cents,
        opened_at=utcnow(),
        notes=notes,
    )
    session.add(shift)
    try:
        session.commit()
    except IntegrityError:
        # Lost the race against a concurrent open for the same cashier
        session.rollback()
        raise InvalidTransitionError(f"Cashier {cashier_id} already has an open shift")

    logger.info("Opened shift %s for cashier %s with %d cents", shift.id, cashier_id, start_cash_cents)
    return shift


def get_shift(session, shift_id: int) -> Shift:
    shift = session.get(Shift, shift_id)
    if shift is None:
        raise NotFoundError(f"Shift {shift_id} not found")
    return shift


def get_active_shift(session, cashier_id: int) -> Shift | None:
    return session.query(Shift).filter_by(cashier_id=cashier_id, status=ShiftStatus.OPEN.value).first()


def list_shifts(session, status: str | None = None, cashier_id: int | None = None, limit: int = 50) -> list[Shift]:
    query = session.query(Shift)
    if status:
        try:
            query = query.filter(Shift.status == ShiftStatus(status.upper()).value)
        except ValueError:
            raise ValidationError(f"Unknown shift status: {status}")
    if cashier_id is not None:
        query = query.filter(Shift.cashier_id == cashier_id)
    return query.order_by(Shift.opened_at.desc(), Shift.id.desc()).limit(max(1, min(int(limit), 500))).all()


def _locked_shift(session, shift_id: int) -> Shift:
    shift = lock_for_update(session.query(Shift).filter_by(id=shift_id)).first()
    if shift is None:
        raise NotFoundError(f"Shift {shift_id} not found")
    return shift


def _coerce_payment(raw, index: int) -> SalePayment:
    if isinstance(raw, SalePayment):
        method, amount, account_id = raw.payment_method_code, raw.amount_cents, raw.account_id
    elif isinstance(raw, Mapping):
        method, amount, account_id = raw.get("payment_method_code"), raw.get("amount_cents"), raw.get("account_id")
    else:
        raise ValidationError(f"payments[{index}] must be an object")

    method = (method or "").strip().upper()
    if not _KEY_PATTERN.match(method) or ":" in method:
        raise ValidationError(f"payments[{index}].payment_method_code is invalid")
    amount = parse_cents(amount, f"payments[{index}].amount_cents")
    if account_id is not None:
        if isinstance(account_id, bool) or not isinstance(account_id, int):
            raise ValidationError(f"payments[{index}].account_id must be an integer")
    # Cash always lands in the till
    if method == CASH:
        account_id = None
    return SalePayment(method, amount, account_id)


def record_sale(
    session,
    shift_id: int,
    payments: Iterable,
    reference: str | None = None,
    is_refund: bool = False,
    total_cents=None,
    policy: ShiftPolicy | None = None,
) -> ShiftSale:
    """
    Record a completed sale (or refund) and its payments on an OPEN shift.

    Payment amounts are positive; `is_refund` makes them reduce the expected
    totals. When `total_cents` is given it must equal the sum of payments.

    Raises:
        UnknownAccountError: a payment's account is missing, or a non-cash
            method has no account and no configured default
    """
    policy = policy or ShiftPolicy.from_config()
    lines = [_coerce_payment(p, i) for i, p in enumerate(payments or [])]
    if not lines:
        raise ValidationError("At least one payment is required")
    paid = sum(p.amount_cents for p in lines)
    if total_cents is not None:
        total_cents = parse_cents(total_cents, "total_cents")
        if total_cents != paid:
            raise ValidationError(f"Payment mismatch: total {total_cents}, paid {paid}")

    for p in lines:
        _payment_account_id(session, p.payment_method_code, p.account_id, policy)

    with atomic(session):
        shift = _locked_shift(session, shift_id)
        _require_open(shift)
        sale = ShiftSale(
            shift_id=shift.id,
            total_cents=paid,
            is_refund=bool(is_refund),
            reference=reference,
            occurred_at=utcnow(),
        )
        session.add(sale)
        for p in lines:
            sale.payments.append(ShiftPayment(
                payment_method_code=p.payment_method_code,
                amount_cents=p.amount_cents,
                account_id=p.account_id,
            ))

    logger.info(
        "Recorded %s of %d cents on shift %s",
        "refund" if sale.is_refund else "sale", sale.total_cents, shift_id,
    )
    return sale


def add_cash_deposit(
    session,
    shift_id: int,
    amount_cents,
    account_id: int | None = None,
    *,
    reference: str | None = None,
    notes: str | None = None,
    deposited_by: int | None = None,
) -> CashDeposit:
    """
    Log cash removed from the drawer during an OPEN shift.

    The deposit lowers expected drawer cash immediately; it is posted to the
    ledger only when confirmed.
    """
    amount_cents = parse_cents(amount_cents, "amount_cents")
    _ensure_account_exists(session, account_id)

    with atomic(session):
        shift = _locked_shift(session, shift_id)
        _require_open(shift)
        deposit = CashDeposit(
            shift_id=shift.id,
            amount_cents=amount_cents,
            account_id=account_id,
            status=ConfirmationStatus.PENDING.value,
            reference=reference,
            notes=notes,
            deposited_by=deposited_by,
        )
        session.add(deposit)

    logger.info("Logged cash deposit %s of %d cents on shift %s", deposit.id, amount_cents, shift_id)
    return deposit


def get_shift_summary(session, shift_id: int) -> ShiftSummary:
    """Expected amount per reconciliation key plus Z-report totals."""
    shift = get_shift(session, shift_id)
    expected: dict[str, int] = defaultdict(int)
    summary = ShiftSummary(
        shift_id=shift.id,
        status=shift.status,
        start_cash_cents=shift.start_cash_cents,
        expected=expected,
    )

    sales = session.query(ShiftSale).filter_by(shift_id=shift.id).order_by(ShiftSale.id).all()
    for sale in sales:
        summary.transaction_count += 1
        if sale.is_refund:
            summary.total_refunds_cents += sale.total_cents
        else:
            summary.gross_sales_cents += sale.total_cents
        for p in sale.payments:
            key = reconciliation_key(p.payment_method_code, p.account_id)
            signed = -p.amount_cents if sale.is_refund else p.amount_cents
            expected[key] += signed
            if key == CASH:
                if sale.is_refund:
                    summary.cash_refunds_cents += p.amount_cents
                else:
                    summary.cash_sales_cents += p.amount_cents

    for deposit in session.query(CashDeposit).filter_by(shift_id=shift.id).all():
        summary.deposits_total_cents += deposit.amount_cents
        if deposit.status == ConfirmationStatus.CONFIRMED.value:
            summary.confirmed_deposits_cents += deposit.amount_cents
        else:
            summary.pending_deposits_cents += deposit.amount_cents

    expected[CASH] = shift.start_cash_cents + expected[CASH] - summary.deposits_total_cents
    summary.expected = dict(expected)
    return summary


def close_shift(
    session,
    shift_id: int,
    actuals: Mapping[str, object],
    notes: str | None = None,
    policy: ShiftPolicy | None = None,
) -> ShiftCloseResult:
    """
    OPEN -> CLOSED with counted amounts per reconciliation key.

    One Reconciliation row is created for every key whose expected or actual
    amount is non-zero (difference = actual - expected). Variances never block
    the close; they come back as warnings.

    Every key must resolve to a ledger account before the shift leaves OPEN,
    since closed rows cannot be changed.

    Raises:
        InvalidTransitionError: shift is not OPEN
        UnknownAccountError: a key, or the revenue/variance/till code, has no account
    """
    policy = policy or ShiftPolicy.from_config()

    counted: dict[str, int] = {}
    for raw_key, raw_amount in (actuals or {}).items():
        method, account_id = parse_reconciliation_key(raw_key)
        key = reconciliation_key(method, account_id)
        counted[key] = counted.get(key, 0) + parse_cents(raw_amount, f"actuals[{raw_key}]", allow_zero=True)
    _check_posting_accounts(session, counted, policy)

    with atomic(session):
        shift = _locked_shift(session, shift_id)
        if shift.status != ShiftStatus.OPEN.value:
            raise InvalidTransitionError(f"Shift {shift.id} is {shift.status}; only OPEN shifts can be closed")

        summary = get_shift_summary(session, shift.id)
        # Sales recorded under an older configuration must still be postable
        _check_posting_accounts(session, summary.expected, policy)
        rows = []
        for key in sorted(set(summary.expected) | set(counted)):
            expected = summary.expected.get(key, 0)
            actual = counted.get(key, 0)
            if expected == 0 and actual == 0:
                continue
            method, account_id = parse_reconciliation_key(key)
            rec = Reconciliation(
                shift_id=shift.id,
                payment_method_code=method,
                account_id=account_id,
                expected_cents=expected,
                actual_cents=actual,
                difference_cents=actual - expected,
                status=ConfirmationStatus.PENDING.value,
            )
            session.add(rec)
            rows.append(rec)

        shift.expected_cash_cents = summary.expected_drawer_cents
        shift.counted_cash_cents = counted.get(CASH, 0)
        shift.variance_cents = shift.counted_cash_cents - shift.expected_cash_cents
        shift.closed_at = utcnow()
        if notes:
            shift.notes = notes
        _transition(shift, ShiftStatus.CLOSED)
        summary.status = shift.status

    warnings = [_variance_warning(rec, policy) for rec in rows if rec.difference_cents != 0]
    for w in warnings:
        logger.warning(
            "Shift %s variance on %s: expected %d, counted %d (difference %d)",
            shift_id, w["key"], w["expected_cents"], w["actual_cents"], w["difference_cents"],
        )
    logger.info("Closed shift %s with %d reconciliation rows", shift_id, len(rows))
    return ShiftCloseResult(shift=shift, reconciliations=rows, warnings=warnings, summary=summary)


# =============================================================================
# CONFIRMATION / POSTING
# =============================================================================

def _reconciliation_key_for_ledger(rec: Reconciliation) -> str:
    return f"shift:{rec.shift_id}:reconciliation:{rec.id}"


def _deposit_key_for_ledger(deposit: CashDeposit) -> str:
    return f"shift:{deposit.shift_id}:deposit:{deposit.id}"


def _reconciliation_draft(session, rec: Reconciliation, shift: Shift, policy: ShiftPolicy) -> TransactionDraft | None:
    """Ledger draft for one reconciliation row, or None when nothing moves."""
    revenue_id = _account_id_for_code(session, policy.revenue_account_code, "shift revenue")
    variance_id = (
        _account_id_for_code(session, policy.variance_account_code, "cash variance")
        if policy.variance_account_code
        else None
    )

    amounts: dict[int, int] = defaultdict(int)
    if rec.payment_method_code == CASH:
        till_id = _account_id_for_code(session, policy.till_account_code, "till")
        deposits = _deposits_total(session, shift.id)
        taken = rec.actual_cents - shift.start_cash_cents + deposits
        expected_sales = rec.expected_cents - shift.start_cash_cents + deposits
        amounts[till_id] += taken
        target_id = till_id
    else:
        target_id = _payment_account_id(session, rec.payment_method_code, rec.account_id, policy)
        taken = rec.actual_cents
        expected_sales = rec.expected_cents
        amounts[target_id] += taken

    if variance_id is not None:
        amounts[revenue_id] -= expected_sales
        amounts[variance_id] += expected_sales - taken
    else:
        amounts[revenue_id] -= taken

    entries = _net_entries(amounts, f"Shift {shift.id} {rec.key}")
    if not entries:
        return None
    return TransactionDraft(
        description=f"Shift {shift.id} reconciliation: {rec.key}",
        entries=entries,
        reference=f"SHIFT-{shift.id}",
        idempotency_key=_reconciliation_key_for_ledger(rec),
        source=TransactionSource.SHIFT_RECONCILIATION,
    )


def _deposit_draft(session, deposit: CashDeposit, policy: ShiftPolicy) -> TransactionDraft:
    till_id = _account_id_for_code(session, policy.till_account_code, "till")
    destination_id = deposit.account_id or _account_id_for_code(session, policy.deposit_account_code, "cash deposits")
    return TransactionDraft(
        description=f"Shift {deposit.shift_id} cash deposit {deposit.id}",
        entries=[
            EntryLine(destination_id, Direction.DEBIT, deposit.amount_cents, deposit.reference),
            EntryLine(till_id, Direction.CREDIT, deposit.amount_cents, deposit.reference),
        ],
        reference=deposit.reference or f"SHIFT-{deposit.shift_id}",
        idempotency_key=_deposit_key_for_ledger(deposit),
        source=TransactionSource.SHIFT_DEPOSIT,
    )


def _draft_account_ids(drafts) -> list[int]:
    return [e.account_id for d in drafts if d is not None for e in d.entries]


def _stage_once(session, draft: TransactionDraft | None) -> int | None:
    """Stage a draft unless its key already posted; returns the transaction id."""
    if draft is None:
        return None
    existing = find_by_idempotency_key(session, draft.idempotency_key)
    if existing is not None:
        return existing.id
    try:
        return stage_transaction(session, draft).id
    except AlreadyPostedError as exc:
        return exc.transaction_id


def _mark_confirmed(row, transaction_id: int | None, now) -> None:
    row.status = ConfirmationStatus.CONFIRMED.value
    row.confirmed_at = now
    row.transaction_id = transaction_id


def confirm_reconciliation(session, reconciliation_id: int, policy: ShiftPolicy | None = None) -> Reconciliation:
    """
    Confirm one reconciliation row and post it.

    Idempotent: confirming an already CONFIRMED row returns it unchanged.

    Raises:
        VarianceLimitExceededError: BLOCK policy and difference beyond tolerance
    """
    policy = policy or ShiftPolicy.from_config()
    rec = session.get(Reconciliation, reconciliation_id)
    if rec is None:
        raise NotFoundError(f"Reconciliation {reconciliation_id} not found")
    if rec.status == ConfirmationStatus.CONFIRMED.value:
        return rec

    policy.enforce({rec.key: rec.difference_cents})
    shift = get_shift(session, rec.shift_id)
    draft = _reconciliation_draft(session, rec, shift, policy)

    with account_locks(_draft_account_ids([draft])):
        with atomic(session):
            locked = lock_for_update(session.query(Reconciliation).filter_by(id=reconciliation_id)).one()
            if locked.status == ConfirmationStatus.CONFIRMED.value:
                return locked
            _mark_confirmed(locked, _stage_once(session, draft), utcnow())

    logger.info("Confirmed reconciliation %s (%s) on shift %s", rec.id, rec.key, rec.shift_id)
    return rec


def confirm_deposit(session, deposit_id: int, policy: ShiftPolicy | None = None) -> CashDeposit:
    """
    Confirm a cash deposit and post it (Dr destination, Cr till).

    Allowed whatever the shift status; confirming twice is a no-op.
    """
    policy = policy or ShiftPolicy.from_config()
    deposit = session.get(CashDeposit, deposit_id)
    if deposit is None:
        raise NotFoundError(f"Cash deposit {deposit_id} not found")
    if deposit.status == ConfirmationStatus.CONFIRMED.value:
        return deposit

    draft = _deposit_draft(session, deposit, policy)

    with account_locks(_draft_account_ids([draft])):
        with atomic(session):
            locked = lock_for_update(session.query(CashDeposit).filter_by(id=deposit_id)).one()
            if locked.status == ConfirmationStatus.CONFIRMED.value:
                return locked
            _mark_confirmed(locked, _stage_once(session, draft), utcnow())

    logger.info("Confirmed cash deposit %s (%d cents) on shift %s", deposit.id, deposit.amount_cents, deposit.shift_id)
    return deposit


def _reconcile_result(session, shift: Shift, policy: ShiftPolicy) -> ReconcileResult:
    # Re-read rows a concurrent reconcile may have confirmed since they were loaded
    recs = session.query(Reconciliation).filter_by(shift_id=shift.id).order_by(Reconciliation.id).populate_existing().all()
    deposits = session.query(CashDeposit).filter_by(shift_id=shift.id).order_by(CashDeposit.id).populate_existing().all()
    transaction_ids = [r.transaction_id for r in recs + deposits if r.transaction_id is not None]
    return ReconcileResult(
        shift_id=shift.id,
        status=shift.status,
        reconciled_at=shift.reconciled_at,
        transaction_ids=transaction_ids,
        reconciliation_ids=[r.id for r in recs],
        deposit_ids=[d.id for d in deposits],
        warnings=[_variance_warning(r, policy) for r in recs if r.difference_cents != 0],
    )


def reconcile_shift(session, shift_id: int, policy: ShiftPolicy | None = None) -> ReconcileResult:
    """
    CLOSED -> RECONCILED, posting every still-pending row and deposit.

    All postings and the status change commit as one unit. Rows confirmed
    earlier keep their original postings.

    Raises:
        AlreadyReconciledError: shift already RECONCILED (carries the prior result)
        InvalidTransitionError: shift is still OPEN
        VarianceLimitExceededError: BLOCK policy and a pending difference beyond tolerance
    """
    policy = policy or ShiftPolicy.from_config()
    shift = get_shift(session, shift_id)
    if shift.status == ShiftStatus.RECONCILED.value:
        raise AlreadyReconciledError(
            f"Shift {shift_id} is already reconciled",
            result=_reconcile_result(session, shift, policy),
        )
    if shift.status != ShiftStatus.CLOSED.value:
        raise InvalidTransitionError(f"Shift {shift_id} is {shift.status}; only CLOSED shifts can be reconciled")

    pending_recs = (
        session.query(Reconciliation)
        .filter_by(shift_id=shift.id, status=ConfirmationStatus.PENDING.value)
        .order_by(Reconciliation.id)
        .all()
    )
    pending_deposits = (
        session.query(CashDeposit)
        .filter_by(shift_id=shift.id, status=ConfirmationStatus.PENDING.value)
        .order_by(CashDeposit.id)
        .all()
    )
    policy.enforce({rec.key: rec.difference_cents for rec in pending_recs})

    rec_drafts = [(rec, _reconciliation_draft(session, rec, shift, policy)) for rec in pending_recs]
    deposit_drafts = [(dep, _deposit_draft(session, dep, policy)) for dep in pending_deposits]
    account_ids = _draft_account_ids([d for _, d in rec_drafts + deposit_drafts])

    with account_locks(account_ids):
        with atomic(session):
            locked = _locked_shift(session, shift_id)
            if locked.status == ShiftStatus.RECONCILED.value:
                raise AlreadyReconciledError(
                    f"Shift {shift_id} is already reconciled",
                    result=_reconcile_result(session, locked, policy),
                )
            now = utcnow()
            for row, draft in rec_drafts + deposit_drafts:
                current = lock_for_update(session.query(type(row)).filter_by(id=row.id)).one()
                if current.status == ConfirmationStatus.CONFIRMED.value:
                    continue
                _mark_confirmed(current, _stage_once(session, draft), now)
            _transition(locked, ShiftStatus.RECONCILED)
            locked.reconciled_at = now

    result = _reconcile_result(session, shift, policy)
    logger.info(
        "Reconciled shift %s: %d postings (%d rows, %d deposits)",
        shift_id, len(result.transaction_ids), len(result.reconciliation_ids), len(result.deposit_ids),
    )
    for w in result.warnings:
        logger.warning("Shift %s reconciled with variance on %s: %d", shift_id, w["key"], w["difference_cents"])
    return result


def list_reconciliations(session, shift_id: int) -> list[Reconciliation]:
    get_shift(session, shift_id)
    return session.query(Reconciliation).filter_by(shift_id=shift_id).order_by(Reconciliation.id).all()


def list_deposits(session, shift_id: int) -> list[CashDeposit]:
    get_shift(session, shift_id)
    return session.query(CashDeposit).filter_by(shift_id=shift_id).order_by(CashDeposit.id).all()
