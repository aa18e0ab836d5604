from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


CUSTOMER_TYPES = ("retailer", "wholesaler")

# Set when the customer was created from a counter sale's buyer details
CUSTOMER_SOURCE_COUNTER_SALE = "counter_sale"


class Customer(db.Model):
    """
    Customer master data with denormalized purchase aggregates.

    total_purchases_cents is monotonic: it is only ever incremented with an
    atomic UPDATE by customer_service when a sale commits.
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.UniqueConstraint("phone", name="uq_customers_phone"),
        db.CheckConstraint("total_purchases_cents >= 0", name="ck_customers_purchases_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    phone = db.Column(db.String(32), nullable=True)
    email = db.Column(db.String(255), nullable=True)

    # retailer | wholesaler
    customer_type = db.Column(db.String(16), nullable=False, default="retailer")
    source = db.Column(db.String(32), nullable=True)

    total_purchases_cents = db.Column(db.Integer, nullable=False, default=0)
    total_visits = db.Column(db.Integer, nullable=False, default=0)
    last_purchase_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # {name: cents spent}, weighted by line totals
    manufacturer_preferences = db.Column(db.JSON, nullable=False, default=dict)
    category_preferences = db.Column(db.JSON, nullable=False, default=dict)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "phone": self.phone,
            "email": self.email,
            "customer_type": self.customer_type,
            "source": self.source,
            "total_purchases_cents": self.total_purchases_cents,
            "total_visits": self.total_visits,
            "last_purchase_at": to_utc_z(self.last_purchase_at),
            "manufacturer_preferences": self.manufacturer_preferences or {},
            "category_preferences": self.category_preferences or {},
        }
