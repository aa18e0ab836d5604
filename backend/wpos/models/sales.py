from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


SALE_TYPE_COUNTER = "counter"
SALE_TYPE_VIDEO_CALL = "video_call"
SALE_TYPE_BULK = "bulk"

SALE_TYPES = (SALE_TYPE_COUNTER, SALE_TYPE_VIDEO_CALL, SALE_TYPE_BULK)

SALE_STATUS_ACCEPTED = "accepted"


class Sale(db.Model):
    """
    A completed checkout.

    Created exactly once, atomically, together with its items, payments and
    stock decrements by sales_service.complete_sale. Immutable afterwards.
    transaction_id is the caller's idempotency key; the unique constraint is
    the backstop when two submissions of the same key race.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.UniqueConstraint("sale_number", name="uq_sales_sale_number"),
        db.UniqueConstraint("transaction_id", name="uq_sales_transaction_id"),
        db.CheckConstraint("total_amount_cents >= 0", name="ck_sales_total_non_negative"),
        db.Index("ix_sales_type_created", "sale_type", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_number = db.Column(db.String(64), nullable=False)
    transaction_id = db.Column(db.String(64), nullable=False)

    # counter | video_call | bulk
    sale_type = db.Column(db.String(16), nullable=False)
    status = db.Column(db.String(16), nullable=False, default=SALE_STATUS_ACCEPTED)

    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    staff_id = db.Column(db.Integer, nullable=True)

    # All amounts in cents
    total_amount_cents = db.Column(db.Integer, nullable=False)
    total_items = db.Column(db.Integer, nullable=False)
    paid_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    pending_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    payment_status = db.Column(db.String(16), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    customer = db.relationship("Customer", backref=db.backref("sales", lazy=True))
    items = db.relationship(
        "SaleItem", backref="sale", lazy=True, order_by="SaleItem.id", cascade="all, delete-orphan"
    )
    payments = db.relationship(
        "Payment", backref="sale", lazy=True, order_by="Payment.id", cascade="all, delete-orphan"
    )

    def to_dict(self, include_lines: bool = False) -> dict:
        data = {
            "id": self.id,
            "sale_number": self.sale_number,
            "transaction_id": self.transaction_id,
            "sale_type": self.sale_type,
            "status": self.status,
            "customer_id": self.customer_id,
            "staff_id": self.staff_id,
            "total_amount_cents": self.total_amount_cents,
            "total_items": self.total_items,
            "paid_amount_cents": self.paid_amount_cents,
            "pending_amount_cents": self.pending_amount_cents,
            "payment_status": self.payment_status,
            "created_at": to_utc_z(self.created_at),
            "completed_at": to_utc_z(self.completed_at),
        }
        if include_lines:
            data["items"] = [item.to_dict() for item in self.items]
            data["payments"] = [payment.to_dict() for payment in self.payments]
        return data


class SaleItem(db.Model):
    """
    One line of a sale. line_total_cents = quantity * unit_price_cents.

    manufacturer/category are snapshotted so analytics can be rebuilt from
    sale history even if the product is later recategorised.
    """
    __tablename__ = "sale_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_sale_items_quantity_positive"),
        db.CheckConstraint("unit_price_cents >= 0", name="ck_sale_items_price_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    manufacturer = db.Column(db.String(128), nullable=True)
    category = db.Column(db.String(128), nullable=True)

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
            "manufacturer": self.manufacturer,
            "category": self.category,
        }


class Payment(db.Model):
    """A single tender recorded against a sale (split payments allowed)."""
    __tablename__ = "sale_payments"
    __table_args__ = (
        db.CheckConstraint("amount_cents >= 0", name="ck_sale_payments_amount_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)

    amount_cents = db.Column(db.Integer, nullable=False)
    payment_type = db.Column(db.String(16), nullable=False)  # full | partial | advance
    method = db.Column(db.String(16), nullable=False)  # cash | card | upi | bank_transfer
    paid_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    reference_number = db.Column(db.String(128), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "amount_cents": self.amount_cents,
            "payment_type": self.payment_type,
            "method": self.method,
            "paid_at": to_utc_z(self.paid_at),
            "reference_number": self.reference_number,
        }
