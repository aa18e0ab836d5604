import pytest

from wpos.services.payment_service import (
    AmountMismatchError,
    InvalidPaymentMethodError,
    InvalidPaymentStatusError,
    InvalidPaymentTypeError,
    MalformedPaymentDetailsError,
    NegativeAmountError,
    PaymentSumMismatchError,
    SaleTotalMismatchError,
    StatusAmountMismatchError,
    ensure_total_matches,
    parse_payment_details,
    payment_violations,
    reconcile_payment_details,
)

from conftest import payment_details


def _reconcile(raw):
    return reconcile_payment_details(parse_payment_details(raw), tolerance_cents=1)


def test_completed_payment_is_valid():
    details = _reconcile(payment_details(100))
    assert details.total_cents == 10000
    assert details.paid_cents == 10000
    assert details.status == "completed"
    assert len(details.payments) == 1


def test_partial_status_with_full_amounts_is_rejected():
    with pytest.raises(StatusAmountMismatchError) as exc:
        _reconcile(payment_details(100, status="partial"))
    assert exc.value.field == "payment_details.status"


def test_total_must_equal_paid_plus_pending():
    raw = payment_details(100, paid=60, pending=30, status="partial")
    with pytest.raises(AmountMismatchError):
        _reconcile(raw)


def test_one_cent_tolerance():
    raw = payment_details(100, paid=60, pending=39.99, status="partial")
    assert _reconcile(raw).pending_cents == 3999

    raw = payment_details(100, paid=60, pending=39.98, status="partial")
    with pytest.raises(AmountMismatchError):
        _reconcile(raw)


def test_negative_amounts_are_rejected():
    raw = payment_details(100, paid=110, pending=-10, status="completed")
    with pytest.raises(NegativeAmountError) as exc:
        _reconcile(raw)
    assert exc.value.field == "payment_details.pending_amount"


def test_payment_sum_must_match_paid():
    raw = payment_details(
        100,
        paid=100,
        payments=[
            {"amount": 50, "type": "partial", "method": "cash"},
            {"amount": 40, "type": "partial", "method": "upi"},
        ],
    )
    with pytest.raises(PaymentSumMismatchError):
        _reconcile(raw)


def test_split_payments_reconcile():
    raw = payment_details(
        100,
        paid=100,
        payments=[
            {"amount": "60.00", "type": "partial", "method": "card"},
            {"amount_cents": 4000, "type": "partial", "method": "bank_transfer"},
        ],
    )
    details = _reconcile(raw)
    assert [p.amount_cents for p in details.payments] == [6000, 4000]


def test_invalid_type_and_method():
    raw = payment_details(100, payments=[{"amount": 100, "type": "gift", "method": "cheque"}])
    violations = payment_violations(parse_payment_details(raw))
    assert {type(v) for v in violations} == {InvalidPaymentTypeError, InvalidPaymentMethodError}


def test_unknown_status():
    with pytest.raises(InvalidPaymentStatusError):
        _reconcile(payment_details(100, status="settled"))


def test_payment_status_alias():
    raw = payment_details(100)
    raw["payment_status"] = raw.pop("status")
    assert _reconcile(raw).status == "completed"


@pytest.mark.parametrize(
    "paid,pending,status,ok",
    [
        (0, 100, "pending", True),
        (10, 90, "pending", False),
        (40, 60, "partial", True),
        (0, 100, "partial", False),
        (0, 100, "failed", True),
        (100, 0, "failed", False),
        (60, 40, "completed", False),
    ],
)
def test_status_amount_rules(paid, pending, status, ok):
    raw = payment_details(100, paid=paid, pending=pending, status=status)
    if ok:
        _reconcile(raw)
    else:
        with pytest.raises(StatusAmountMismatchError):
            _reconcile(raw)


def test_malformed_details():
    with pytest.raises(MalformedPaymentDetailsError):
        parse_payment_details(None)
    with pytest.raises(MalformedPaymentDetailsError) as exc:
        parse_payment_details({"total_amount": "abc", "paid_amount": 0, "pending_amount": 0, "status": "pending"})
    assert exc.value.field == "payment_details.total_amount"


def test_total_must_match_items():
    details = _reconcile(payment_details(100))
    ensure_total_matches(details, 10000, tolerance_cents=1)
    with pytest.raises(SaleTotalMismatchError) as exc:
        ensure_total_matches(details, 9000, tolerance_cents=1)
    assert exc.value.context == {"declared_cents": 10000, "computed_cents": 9000}
