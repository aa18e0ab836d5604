# Overview: Payment reconciliation state machine for sale payment details.

"""
Payment Reconciliation

Validates a PaymentDetails value in isolation. All amounts are integer
cents; the tolerance is in cents too (1 cent by default).

RULES:
- total, paid and pending are non-negative; |total - (paid + pending)| <= tolerance
- every payment has a non-negative amount, an allowed type and an allowed method
- sum(payments) reconciles with paid within the tolerance
- completed => pending ~ 0 and paid ~ total
- pending   => paid == 0
- partial   => 0 < paid < total
- failed    => paid == 0

Each rule has its own error class so callers can point at the exact field.
The same checks run twice: in the validator before anything is written, and
again as a write-time guard right before the Sale row is inserted.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from ..errors import SaleError
from ..models import Payment, Sale
from ..time_utils import parse_iso_datetime
from ..validation import ValidationError, cents_to_str, read_amount_cents


# =============================================================================
# VOCABULARY (CONSTANTS)
# =============================================================================

PAYMENT_STATUS_PENDING = "pending"
PAYMENT_STATUS_PARTIAL = "partial"
PAYMENT_STATUS_COMPLETED = "completed"
PAYMENT_STATUS_FAILED = "failed"

VALID_PAYMENT_STATUSES = (
    PAYMENT_STATUS_PENDING,
    PAYMENT_STATUS_PARTIAL,
    PAYMENT_STATUS_COMPLETED,
    PAYMENT_STATUS_FAILED,
)

VALID_PAYMENT_TYPES = ("full", "partial", "advance")
VALID_PAYMENT_METHODS = ("cash", "card", "upi", "bank_transfer")


# =============================================================================
# ERRORS
# =============================================================================

class PaymentReconciliationError(SaleError):
    """Payment details are inconsistent. Raised before any write."""
    code = "payment_reconciliation_failed"

    def __init__(self, message: str, field: str, context: dict | None = None):
        super().__init__(message, {"field": field, "context": context or {}})
        self.field = field
        self.context = context or {}

    def to_field_error(self) -> dict:
        return {"field": self.field, "message": self.message, "context": self.context}


class MalformedPaymentDetailsError(PaymentReconciliationError):
    code = "payment_details_malformed"


class NegativeAmountError(PaymentReconciliationError):
    code = "payment_amount_negative"


class AmountMismatchError(PaymentReconciliationError):
    """total != paid + pending."""
    code = "payment_amount_mismatch"


class PaymentSumMismatchError(PaymentReconciliationError):
    """sum(payments) != paid."""
    code = "payment_sum_mismatch"


class InvalidPaymentTypeError(PaymentReconciliationError):
    code = "payment_type_invalid"


class InvalidPaymentMethodError(PaymentReconciliationError):
    code = "payment_method_invalid"


class InvalidPaymentStatusError(PaymentReconciliationError):
    code = "payment_status_invalid"


class StatusAmountMismatchError(PaymentReconciliationError):
    """Declared status disagrees with the amounts."""
    code = "payment_status_mismatch"


class SaleTotalMismatchError(PaymentReconciliationError):
    """Payment total disagrees with the total computed from the items."""
    code = "payment_total_mismatch"


# =============================================================================
# TYPES
# =============================================================================

@dataclass(frozen=True)
class PaymentEntry:
    amount_cents: int
    payment_type: str
    method: str
    paid_at: Optional[datetime] = None
    reference_number: Optional[str] = None


@dataclass(frozen=True)
class PaymentDetails:
    total_cents: int
    paid_cents: int
    pending_cents: int
    status: str
    payments: tuple[PaymentEntry, ...] = ()


# =============================================================================
# PARSING
# =============================================================================

def _read_amount(data: dict, name: str, field: str) -> int:
    try:
        return read_amount_cents(data, name, field, allow_negative=True)
    except ValidationError as exc:
        raise MalformedPaymentDetailsError(exc.message, exc.field, exc.context) from exc


def _parse_entry(raw: Any, index: int) -> PaymentEntry:
    field = f"payment_details.payments[{index}]"
    if not isinstance(raw, dict):
        raise MalformedPaymentDetailsError("Payment must be an object", field)

    paid_at = None
    raw_date = raw.get("date") or raw.get("paid_at")
    if raw_date:
        try:
            paid_at = parse_iso_datetime(str(raw_date))
        except ValueError:
            raise MalformedPaymentDetailsError(
                "Payment date must be ISO-8601", f"{field}.date", {"value": raw_date}
            )

    reference = raw.get("reference_number")
    return PaymentEntry(
        amount_cents=_read_amount(raw, "amount", f"{field}.amount"),
        payment_type=str(raw.get("type") or raw.get("payment_type") or ""),
        method=str(raw.get("method") or raw.get("payment_method") or ""),
        paid_at=paid_at,
        reference_number=str(reference) if reference is not None else None,
    )


def parse_payment_details(raw: Any) -> PaymentDetails:
    """
    Boundary parser for the ``payment_details`` object.

    Only checks shape and numeric format; the reconciliation rules run in
    reconcile_payment_details. ``payment_status`` is accepted as an alias
    for ``status``.
    """
    if not isinstance(raw, dict):
        raise MalformedPaymentDetailsError("Payment details are required", "payment_details")

    raw_payments = raw.get("payments", [])
    if raw_payments is None:
        raw_payments = []
    if not isinstance(raw_payments, list):
        raise MalformedPaymentDetailsError("payments must be a list", "payment_details.payments")

    return PaymentDetails(
        total_cents=_read_amount(raw, "total_amount", "payment_details.total_amount"),
        paid_cents=_read_amount(raw, "paid_amount", "payment_details.paid_amount"),
        pending_cents=_read_amount(raw, "pending_amount", "payment_details.pending_amount"),
        status=str(raw.get("status") or raw.get("payment_status") or ""),
        payments=tuple(_parse_entry(entry, i) for i, entry in enumerate(raw_payments)),
    )


# =============================================================================
# RECONCILIATION
# =============================================================================

def _amounts(details: PaymentDetails) -> dict:
    return {
        "total_cents": details.total_cents,
        "paid_cents": details.paid_cents,
        "pending_cents": details.pending_cents,
    }


def _status_violation(details: PaymentDetails, tolerance_cents: int) -> Optional[PaymentReconciliationError]:
    status = details.status
    paid = details.paid_cents
    total = details.total_cents
    context = dict(_amounts(details), status=status)
    field = "payment_details.status"

    if status == PAYMENT_STATUS_COMPLETED:
        if details.pending_cents > tolerance_cents or abs(total - paid) > tolerance_cents:
            return StatusAmountMismatchError(
                "Completed payments must be fully paid with nothing pending", field, context
            )
    elif status == PAYMENT_STATUS_PENDING:
        if paid != 0:
            return StatusAmountMismatchError("Pending payments must have nothing paid", field, context)
    elif status == PAYMENT_STATUS_PARTIAL:
        if not (0 < paid < total):
            return StatusAmountMismatchError(
                "Partial payments must have paid between zero and the total", field, context
            )
    elif status == PAYMENT_STATUS_FAILED:
        if paid != 0:
            return StatusAmountMismatchError("Failed payments must have nothing paid", field, context)
    return None


def payment_violations(details: PaymentDetails, *, tolerance_cents: int = 1) -> list[PaymentReconciliationError]:
    """
    Every rule violation in details, in rule order.

    Status/amount consistency is only judged once the amounts themselves
    are sound, otherwise it would just repeat the same problem.
    """
    violations: list[PaymentReconciliationError] = []

    amounts_ok = True
    for name, value in (
        ("total_amount", details.total_cents),
        ("paid_amount", details.paid_cents),
        ("pending_amount", details.pending_cents),
    ):
        if value < 0:
            amounts_ok = False
            violations.append(
                NegativeAmountError(f"{name} must be non-negative", f"payment_details.{name}", {"value_cents": value})
            )

    if amounts_ok and abs(details.total_cents - (details.paid_cents + details.pending_cents)) > tolerance_cents:
        amounts_ok = False
        violations.append(
            AmountMismatchError(
                "total_amount must equal paid_amount + pending_amount",
                "payment_details.total_amount",
                _amounts(details),
            )
        )

    entries_ok = True
    for i, entry in enumerate(details.payments):
        field = f"payment_details.payments[{i}]"
        if entry.amount_cents < 0:
            entries_ok = False
            violations.append(
                NegativeAmountError("Payment amount must be non-negative", f"{field}.amount",
                                    {"value_cents": entry.amount_cents})
            )
        if entry.payment_type not in VALID_PAYMENT_TYPES:
            violations.append(
                InvalidPaymentTypeError(
                    f"Invalid payment type: {entry.payment_type or '(missing)'}",
                    f"{field}.type",
                    {"allowed": list(VALID_PAYMENT_TYPES)},
                )
            )
        if entry.method not in VALID_PAYMENT_METHODS:
            violations.append(
                InvalidPaymentMethodError(
                    f"Invalid payment method: {entry.method or '(missing)'}",
                    f"{field}.method",
                    {"allowed": list(VALID_PAYMENT_METHODS)},
                )
            )

    if entries_ok and details.paid_cents >= 0:
        payments_sum = sum(entry.amount_cents for entry in details.payments)
        if abs(payments_sum - details.paid_cents) > tolerance_cents:
            violations.append(
                PaymentSumMismatchError(
                    "Sum of payments must equal paid_amount",
                    "payment_details.payments",
                    {"payments_sum_cents": payments_sum, "paid_cents": details.paid_cents},
                )
            )

    if details.status not in VALID_PAYMENT_STATUSES:
        violations.append(
            InvalidPaymentStatusError(
                f"Invalid payment status: {details.status or '(missing)'}",
                "payment_details.status",
                {"allowed": list(VALID_PAYMENT_STATUSES)},
            )
        )
    elif amounts_ok:
        violation = _status_violation(details, tolerance_cents)
        if violation is not None:
            violations.append(violation)

    return violations


def reconcile_payment_details(details: PaymentDetails, *, tolerance_cents: int = 1) -> PaymentDetails:
    """Raise the first violation, or return details unchanged."""
    violations = payment_violations(details, tolerance_cents=tolerance_cents)
    if violations:
        raise violations[0]
    return details


def ensure_total_matches(details: PaymentDetails, total_cents: int, *, tolerance_cents: int = 1) -> None:
    """The client-declared total must agree with the total computed from the items."""
    if abs(details.total_cents - total_cents) > tolerance_cents:
        raise SaleTotalMismatchError(
            f"total_amount {cents_to_str(details.total_cents)} does not match the sum of the items ({cents_to_str(total_cents)})",
            "payment_details.total_amount",
            {"declared_cents": details.total_cents, "computed_cents": total_cents},
        )


def build_payment_rows(sale: Sale, details: PaymentDetails) -> list[Payment]:
    rows = []
    for entry in details.payments:
        payment = Payment(
            sale=sale,
            amount_cents=entry.amount_cents,
            payment_type=entry.payment_type,
            method=entry.method,
            reference_number=entry.reference_number,
        )
        if entry.paid_at is not None:
            payment.paid_at = entry.paid_at
        rows.append(payment)
    return rows
