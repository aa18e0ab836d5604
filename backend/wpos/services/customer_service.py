# Overview: Customer purchase aggregates maintained by completed sales.

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..errors import CustomerNotFoundError
from ..extensions import db
from ..models import Customer
from ..models.customers import CUSTOMER_SOURCE_COUNTER_SALE, CUSTOMER_TYPES
from ..time_utils import utcnow
from ..validation import ValidationError
from .concurrency import lock_for_update


@dataclass(frozen=True)
class CounterCustomerDetails:
    """Buyer captured at the counter when the sale has no customer_id."""
    name: str
    phone: str
    email: Optional[str] = None
    customer_type: str = "retailer"
    categories: tuple[str, ...] = ()


def _required_text(raw: dict, name: str, max_length: int) -> str:
    field_name = f"counter_customer.{name}"
    value = raw.get(name)
    if value is None or not str(value).strip():
        raise ValidationError(field_name, "is required")
    value = str(value).strip()
    if len(value) > max_length:
        raise ValidationError(field_name, f"must be at most {max_length} characters", {"length": len(value)})
    return value


def parse_counter_customer(raw: Any) -> CounterCustomerDetails:
    """Shape check for counter buyer details. Raises ValidationError."""
    if not isinstance(raw, dict):
        raise ValidationError("counter_customer", "must be an object")

    name = _required_text(raw, "name", 255)
    phone = _required_text(raw, "phone", 32)

    email = raw.get("email")
    email = str(email).strip() if email is not None else ""

    customer_type = raw.get("customer_type") or "retailer"
    if customer_type not in CUSTOMER_TYPES:
        raise ValidationError(
            "counter_customer.customer_type",
            f"Invalid customer type: {customer_type}",
            {"allowed": list(CUSTOMER_TYPES)},
        )

    categories = raw.get("categories") or []
    if not isinstance(categories, list):
        raise ValidationError("counter_customer.categories", "must be a list")
    cleaned = tuple(dict.fromkeys(str(c).strip() for c in categories if c is not None and str(c).strip()))

    return CounterCustomerDetails(
        name=name,
        phone=phone,
        email=email or None,
        customer_type=customer_type,
        categories=cleaned,
    )


def find_or_create_counter_customer(details: CounterCustomerDetails) -> tuple[int, bool]:
    """
    Resolve a counter buyer to a customer id by phone. Returns (id, created).

    An existing customer only gets a missing email filled in; purchases are
    added later by increment_purchases. A new customer starts with empty
    aggregates and source 'counter_sale'. Runs in the caller's transaction.
    """
    existing_id = db.session.query(Customer.id).filter(Customer.phone == details.phone).scalar()
    if existing_id is None:
        customer = Customer(
            name=details.name,
            phone=details.phone,
            email=details.email,
            customer_type=details.customer_type,
            source=CUSTOMER_SOURCE_COUNTER_SALE,
            manufacturer_preferences={},
            category_preferences={},
        )
        try:
            # Another sale may create the same phone first.
            with db.session.begin_nested():
                db.session.add(customer)
            return customer.id, True
        except IntegrityError:
            existing_id = db.session.query(Customer.id).filter(Customer.phone == details.phone).scalar()
            if existing_id is None:
                raise

    if details.email:
        db.session.execute(
            update(Customer)
            .where(Customer.id == existing_id, Customer.email.is_(None))
            .values(email=details.email, version_id=Customer.version_id + 1)
            .execution_options(synchronize_session=False)
        )
    return existing_id, False


def merge_weights(existing: Optional[dict], deltas: dict) -> dict:
    """Add deltas into a {name: cents} map. Returns a new dict."""
    merged = dict(existing or {})
    for key, value in deltas.items():
        merged[key] = merged.get(key, 0) + value
    return merged


def preference_deltas(items: Iterable) -> tuple[dict, dict]:
    """Spend per manufacturer and per category for a list of sale lines."""
    manufacturers: dict[str, int] = {}
    categories: dict[str, int] = {}
    for item in items:
        amount = item.quantity * item.unit_price_cents
        if item.manufacturer:
            manufacturers[item.manufacturer] = manufacturers.get(item.manufacturer, 0) + amount
        if item.category:
            categories[item.category] = categories.get(item.category, 0) + amount
    return manufacturers, categories


def increment_purchases(
    customer_id: int,
    amount_cents: int,
    *,
    items: Iterable = (),
    purchased_at: Optional[datetime] = None,
    seed_categories: Iterable[str] = (),
) -> None:
    """
    Add a completed sale to the customer's aggregates.

    Counters move with a single atomic UPDATE (total = total + :amount) so
    concurrent sales for the same customer never lose an increment. The
    preference maps are merged under a row lock in the same statement.
    seed_categories are added with zero weight when not already present.
    Runs in the caller's transaction; does not commit.
    """
    if amount_cents < 0:
        raise ValueError("amount_cents must be non-negative")

    row = (
        lock_for_update(
            db.session.query(
                Customer.id,
                Customer.manufacturer_preferences,
                Customer.category_preferences,
            ).filter(Customer.id == customer_id)
        )
        .first()
    )
    if row is None:
        raise CustomerNotFoundError(customer_id)

    manufacturer_deltas, category_deltas = preference_deltas(items)
    for category in seed_categories:
        category_deltas.setdefault(category, 0)
    purchased_at = purchased_at or utcnow()

    stmt = (
        update(Customer)
        .where(Customer.id == customer_id)
        .values(
            total_purchases_cents=Customer.total_purchases_cents + amount_cents,
            total_visits=Customer.total_visits + 1,
            last_purchase_at=purchased_at,
            manufacturer_preferences=merge_weights(row.manufacturer_preferences, manufacturer_deltas),
            category_preferences=merge_weights(row.category_preferences, category_deltas),
            version_id=Customer.version_id + 1,
        )
        .execution_options(synchronize_session=False)
    )
    db.session.execute(stmt)
