# Overview: Read-only pre-check of a sale request (items, stock, payment).

"""
Sale Validator

Collects every problem with a sale request in one pass instead of stopping at
the first. A malformed item is skipped and reported; the scan continues.

Stock is READ, not locked: the result can be stale by the time the sale is
written, so inventory_service re-checks atomically with a conditional update.
Nothing here writes to the database.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

from ..config import SaleEngineConfig
from ..extensions import db
from ..models import Customer, Product
from ..models.sales import SALE_TYPE_COUNTER, SALE_TYPES
from ..validation import MAX_QUANTITY, ValidationError, parse_int, read_amount_cents
from .customer_service import CounterCustomerDetails, parse_counter_customer
from .payment_service import (
    PaymentDetails,
    PaymentReconciliationError,
    ensure_total_matches,
    parse_payment_details,
    payment_violations,
)


@dataclass(frozen=True)
class SaleLineInput:
    """A parsed cart line. Prices are in cents."""
    product_id: int
    quantity: int
    unit_price_cents: int
    manufacturer: Optional[str] = None
    category: Optional[str] = None

    @property
    def line_total_cents(self) -> int:
        return self.quantity * self.unit_price_cents


@dataclass
class ValidationReport:
    errors: list[dict] = field(default_factory=list)
    items: list[SaleLineInput] = field(default_factory=list)
    payment: Optional[PaymentDetails] = None
    counter_customer: Optional[CounterCustomerDetails] = None

    @property
    def valid(self) -> bool:
        return not self.errors

    @property
    def total_amount_cents(self) -> int:
        return sum(item.line_total_cents for item in self.items)

    @property
    def total_items(self) -> int:
        return sum(item.quantity for item in self.items)

    def add_error(self, field_name: str, message: str, context: dict | None = None) -> None:
        self.errors.append({"field": field_name, "message": message, "context": context or {}})

    def to_dict(self) -> dict:
        return {
            "valid": self.valid,
            "errors": self.errors,
            "total_amount_cents": self.total_amount_cents if self.valid else None,
            "total_items": self.total_items if self.valid else None,
        }


def _optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def parse_item(raw: Any, index: int) -> SaleLineInput:
    """Shape/format check for one cart line. Raises ValidationError."""
    prefix = f"items[{index}]"
    if not isinstance(raw, dict):
        raise ValidationError(prefix, "must be an object")

    for name in ("product_id", "quantity"):
        if raw.get(name) is None:
            raise ValidationError(f"{prefix}.{name}", "is required")
    if raw.get("price") is None and raw.get("unit_price_cents") is None:
        raise ValidationError(f"{prefix}.price", "is required")

    product_id = parse_int(raw["product_id"], f"{prefix}.product_id", minimum=1)
    quantity = parse_int(raw["quantity"], f"{prefix}.quantity", minimum=1, maximum=MAX_QUANTITY)
    if raw.get("unit_price_cents") is not None:
        unit_price_cents = read_amount_cents(raw, "unit_price", f"{prefix}.unit_price")
    else:
        unit_price_cents = read_amount_cents(raw, "price", f"{prefix}.price")

    return SaleLineInput(
        product_id=product_id,
        quantity=quantity,
        unit_price_cents=unit_price_cents,
        manufacturer=_optional_str(raw.get("manufacturer")),
        category=_optional_str(raw.get("category")),
    )


def _check_items(report: ValidationReport, raw_items: Any) -> list[int]:
    """Parse lines into report.items. Returns the indexes that parsed."""
    if not isinstance(raw_items, list):
        report.add_error("items", "must be a list")
        return []
    if not raw_items:
        report.add_error("items", "At least one item is required")
        return []

    indexes = []
    for i, raw in enumerate(raw_items):
        try:
            report.items.append(parse_item(raw, i))
            indexes.append(i)
        except ValidationError as exc:
            report.add_error(exc.field, exc.message, exc.context)
    return indexes


def _check_products_and_stock(report: ValidationReport, indexes: list[int]) -> None:
    product_ids = {item.product_id for item in report.items}
    if not product_ids:
        return

    rows = (
        db.session.query(Product.id, Product.stock_level, Product.is_active)
        .filter(Product.id.in_(product_ids))
        .all()
    )
    products = {row.id: row for row in rows}

    # Same product on several lines: the stock check is against the sum.
    requested: dict[int, int] = {}
    first_index: dict[int, int] = {}
    for index, item in zip(indexes, report.items):
        row = products.get(item.product_id)
        if row is None:
            report.add_error(f"items[{index}].product_id", "Product not found", {"product_id": item.product_id})
            continue
        if not row.is_active:
            report.add_error(f"items[{index}].product_id", "Product is inactive", {"product_id": item.product_id})
            continue
        requested[item.product_id] = requested.get(item.product_id, 0) + item.quantity
        first_index.setdefault(item.product_id, index)

    for product_id, quantity in requested.items():
        available = products[product_id].stock_level
        if quantity > available:
            report.add_error(
                f"items[{first_index[product_id]}].quantity",
                "Insufficient stock",
                {"product_id": product_id, "requested": quantity, "available": available},
            )


def validate_sale(
    items: Any,
    payment_details: Any,
    *,
    config: SaleEngineConfig,
    customer_id: Any = None,
    sale_type: Optional[str] = None,
    counter_customer: Any = None,
) -> ValidationReport:
    """
    Validate a sale request without side effects.

    Order: sale type, items shape, products exist, stock suffices, customer
    exists (or counter buyer details are well formed), payment details
    reconcile, payment total matches the items. Buyer details are ignored
    when a customer_id is given.
    """
    report = ValidationReport()

    if sale_type is not None and sale_type not in SALE_TYPES:
        report.add_error("sale_type", f"Invalid sale type: {sale_type}", {"allowed": list(SALE_TYPES)})

    indexes = _check_items(report, items)
    items_well_formed = bool(indexes) and len(indexes) == len(items)
    _check_products_and_stock(report, indexes)

    if customer_id is not None:
        try:
            parsed_customer_id = parse_int(customer_id, "customer_id", minimum=1)
        except ValidationError as exc:
            report.add_error(exc.field, exc.message, exc.context)
        else:
            if db.session.get(Customer, parsed_customer_id) is None:
                report.add_error("customer_id", "Customer not found", {"customer_id": parsed_customer_id})
    elif counter_customer is not None:
        if sale_type is not None and sale_type != SALE_TYPE_COUNTER:
            report.add_error("counter_customer", "Buyer details are only accepted on counter sales")
        else:
            try:
                report.counter_customer = parse_counter_customer(counter_customer)
            except ValidationError as exc:
                report.add_error(exc.field, exc.message, exc.context)

    try:
        report.payment = parse_payment_details(payment_details)
    except PaymentReconciliationError as exc:
        report.errors.append(exc.to_field_error())
        return report

    tolerance = config.payment_tolerance_cents
    violations = payment_violations(report.payment, tolerance_cents=tolerance)
    report.errors.extend(v.to_field_error() for v in violations)

    # Only meaningful once every line parsed; otherwise the computed total is partial.
    if items_well_formed and not violations:
        try:
            ensure_total_matches(report.payment, report.total_amount_cents, tolerance_cents=tolerance)
        except PaymentReconciliationError as exc:
            report.errors.append(exc.to_field_error())

    return report
