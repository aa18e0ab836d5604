from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Product(db.Model):
    """
    Product master data with its on-hand stock level.

    STOCK DISCIPLINE:
    stock_level is only ever changed through the conditional decrement in
    inventory_service ("decrement where stock_level >= qty"). Never read,
    subtract and write it back from Python. The CHECK constraint is the
    last line: a negative stock level cannot be committed.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("sku", name="uq_products_sku"),
        db.CheckConstraint("stock_level >= 0", name="ck_products_stock_non_negative"),
        db.Index("ix_products_manufacturer_category", "manufacturer", "category"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    manufacturer = db.Column(db.String(128), nullable=True)
    category = db.Column(db.String(128), nullable=True)

    # Authoritative storage in cents (frontend may only format for display)
    price_cents = db.Column(db.Integer, nullable=False, default=0)

    stock_level = db.Column(db.Integer, nullable=False, default=0)
    last_sold_at = db.Column(db.DateTime(timezone=True), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "manufacturer": self.manufacturer,
            "category": self.category,
            "price_cents": self.price_cents,
            "stock_level": self.stock_level,
            "last_sold_at": to_utc_z(self.last_sold_at),
            "is_active": self.is_active,
        }


class StockMovement(db.Model):
    """
    Append-only record of every stock change (previous, new, delta, reason).

    Written in the same transaction as the decrement it records.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_stock_movements_product_created", "product_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    previous_stock = db.Column(db.Integer, nullable=False)
    new_stock = db.Column(db.Integer, nullable=False)
    delta = db.Column(db.Integer, nullable=False)  # negative for decrements

    # sale | bulk_import | adjustment
    reason = db.Column(db.String(32), nullable=False)

    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=True, index=True)
    transaction_id = db.Column(db.String(64), nullable=True, index=True)
    staff_id = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product", backref=db.backref("stock_movements", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "previous_stock": self.previous_stock,
            "new_stock": self.new_stock,
            "delta": self.delta,
            "reason": self.reason,
            "sale_id": self.sale_id,
            "transaction_id": self.transaction_id,
            "staff_id": self.staff_id,
            "created_at": to_utc_z(self.created_at),
        }
