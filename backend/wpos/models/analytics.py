from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


class DailyAnalytics(db.Model):
    """Per-day rollup. Counters are merged with atomic increments."""
    __tablename__ = "daily_analytics"
    __table_args__ = (
        db.UniqueConstraint("day", name="uq_daily_analytics_day"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    day = db.Column(db.Date, nullable=False)

    sales_count = db.Column(db.Integer, nullable=False, default=0)
    total_revenue_cents = db.Column(db.Integer, nullable=False, default=0)
    total_items = db.Column(db.Integer, nullable=False, default=0)

    # {"13": cents}
    hourly_sales = db.Column(db.JSON, nullable=False, default=dict)
    # {"cash": cents}
    payment_methods = db.Column(db.JSON, nullable=False, default=dict)
    # {"retailer": count}
    customer_types = db.Column(db.JSON, nullable=False, default=dict)
    # {category: cents}, capped to top-N
    top_categories = db.Column(db.JSON, nullable=False, default=dict)

    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    def to_dict(self) -> dict:
        return {
            "day": self.day.isoformat(),
            "sales_count": self.sales_count,
            "total_revenue_cents": self.total_revenue_cents,
            "total_items": self.total_items,
            "hourly_sales": self.hourly_sales or {},
            "payment_methods": self.payment_methods or {},
            "customer_types": self.customer_types or {},
            "top_categories": self.top_categories or {},
            "updated_at": to_utc_z(self.updated_at),
        }


class ManufacturerAnalytics(db.Model):
    __tablename__ = "manufacturer_analytics"
    __table_args__ = (
        db.UniqueConstraint("manufacturer", "month", name="uq_manufacturer_analytics_key"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    manufacturer = db.Column(db.String(128), nullable=False)
    month = db.Column(db.String(7), nullable=False)  # YYYY-MM

    sales_count = db.Column(db.Integer, nullable=False, default=0)
    total_revenue_cents = db.Column(db.Integer, nullable=False, default=0)
    total_items = db.Column(db.Integer, nullable=False, default=0)
    top_categories = db.Column(db.JSON, nullable=False, default=dict)

    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    def to_dict(self) -> dict:
        return {
            "manufacturer": self.manufacturer,
            "month": self.month,
            "sales_count": self.sales_count,
            "total_revenue_cents": self.total_revenue_cents,
            "total_items": self.total_items,
            "top_categories": self.top_categories or {},
        }


class CategoryAnalytics(db.Model):
    __tablename__ = "category_analytics"
    __table_args__ = (
        db.UniqueConstraint("category", "month", name="uq_category_analytics_key"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    category = db.Column(db.String(128), nullable=False)
    month = db.Column(db.String(7), nullable=False)  # YYYY-MM

    sales_count = db.Column(db.Integer, nullable=False, default=0)
    total_revenue_cents = db.Column(db.Integer, nullable=False, default=0)
    total_items = db.Column(db.Integer, nullable=False, default=0)
    top_manufacturers = db.Column(db.JSON, nullable=False, default=dict)

    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    def to_dict(self) -> dict:
        return {
            "category": self.category,
            "month": self.month,
            "sales_count": self.sales_count,
            "total_revenue_cents": self.total_revenue_cents,
            "total_items": self.total_items,
            "top_manufacturers": self.top_manufacturers or {},
        }


class AnalyticsProcessedSale(db.Model):
    """
    Dedup marker: a sale's contribution has been applied to every rollup.

    Inserted in the same transaction as the rollup increments, so a duplicate
    delivery either sees the marker or loses the unique-constraint race.
    """
    __tablename__ = "analytics_processed_sales"
    __table_args__ = (
        db.UniqueConstraint("sale_id", name="uq_analytics_processed_sale"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False)
    processed_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
