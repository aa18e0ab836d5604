# Overview: Analytics aggregator; idempotent daily/manufacturer/category rollups.

"""
Analytics Rollups

Derived state, maintained after a sale commits and rebuildable from sale
history at any time.

INVARIANTS:
- A sale contributes at most once: AnalyticsProcessedSale(sale_id) is
  inserted in the same transaction as the increments. A second delivery
  sees the marker (or loses the unique-constraint race) and is ignored.
- Counters merge with atomic UPDATE ... SET x = x + :delta, never an
  overwrite. A missing rollup row is created lazily; losing that insert race
  falls back to the UPDATE.
- JSON breakdowns are merged under a row lock and capped to the top N keys.
"""

from __future__ import annotations

from datetime import date
from typing import Optional

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import (
    AnalyticsProcessedSale,
    CategoryAnalytics,
    DailyAnalytics,
    ManufacturerAnalytics,
    Sale,
)
from ..models.sales import SALE_STATUS_ACCEPTED
from ..time_utils import month_key, utcnow
from .concurrency import begin_immediate, lock_for_update, run_with_retry
from .customer_service import merge_weights


UNKNOWN_KEY = "unknown"
WALK_IN = "walk_in"


def cap_top_n(weights: dict, top_n: int) -> dict:
    """Keep the top_n largest entries. Ties broken by key for stable output."""
    ranked = sorted(weights.items(), key=lambda kv: (-kv[1], kv[0]))
    return dict(ranked[:top_n])


def merge_capped(existing: Optional[dict], deltas: dict, top_n: int) -> dict:
    return cap_top_n(merge_weights(existing, deltas), top_n)


def _upsert_counters(model, key_filter: dict, counters: dict) -> None:
    """Atomic increment of counter columns for one rollup key, creating the row if needed."""
    conditions = [getattr(model, name) == value for name, value in key_filter.items()]
    values = {name: getattr(model, name) + delta for name, delta in counters.items()}
    values["updated_at"] = utcnow()
    stmt = update(model).where(*conditions).values(**values).execution_options(synchronize_session=False)

    if db.session.execute(stmt).rowcount:
        return
    try:
        with db.session.begin_nested():
            db.session.add(model(**key_filter, **counters))
    except IntegrityError:
        # Another writer created the row first.
        db.session.execute(stmt)


def _merge_json(model, key_filter: dict, column: str, deltas: dict, top_n: int) -> None:
    if not deltas:
        return
    row = lock_for_update(db.session.query(model).filter_by(**key_filter)).populate_existing().one()
    setattr(row, column, merge_capped(getattr(row, column), deltas, top_n))


def _add(bucket: dict, key: str, amount: int) -> None:
    bucket[key] = bucket.get(key, 0) + amount


def _apply_sale(sale: Sale, top_n: int) -> None:
    when = sale.completed_at or sale.created_at
    month = month_key(when)

    daily_key = {"day": when.date()}
    _upsert_counters(DailyAnalytics, daily_key, {
        "sales_count": 1,
        "total_revenue_cents": sale.total_amount_cents,
        "total_items": sale.total_items,
    })

    methods: dict[str, int] = {}
    for payment in sale.payments:
        _add(methods, payment.method, payment.amount_cents)

    customer_type = sale.customer.customer_type if sale.customer else WALK_IN

    daily_categories: dict[str, int] = {}
    by_manufacturer: dict[str, dict] = {}
    by_category: dict[str, dict] = {}
    for item in sale.items:
        manufacturer = item.manufacturer or UNKNOWN_KEY
        category = item.category or UNKNOWN_KEY
        _add(daily_categories, category, item.line_total_cents)

        m = by_manufacturer.setdefault(manufacturer, {"revenue": 0, "items": 0, "categories": {}})
        m["revenue"] += item.line_total_cents
        m["items"] += item.quantity
        _add(m["categories"], category, item.line_total_cents)

        c = by_category.setdefault(category, {"revenue": 0, "items": 0, "manufacturers": {}})
        c["revenue"] += item.line_total_cents
        c["items"] += item.quantity
        _add(c["manufacturers"], manufacturer, item.line_total_cents)

    _merge_json(DailyAnalytics, daily_key, "hourly_sales", {f"{when.hour:02d}": sale.total_amount_cents}, 24)
    _merge_json(DailyAnalytics, daily_key, "payment_methods", methods, top_n)
    _merge_json(DailyAnalytics, daily_key, "customer_types", {customer_type: 1}, top_n)
    _merge_json(DailyAnalytics, daily_key, "top_categories", daily_categories, top_n)

    for manufacturer, totals in by_manufacturer.items():
        key = {"manufacturer": manufacturer, "month": month}
        _upsert_counters(ManufacturerAnalytics, key, {
            "sales_count": 1,
            "total_revenue_cents": totals["revenue"],
            "total_items": totals["items"],
        })
        _merge_json(ManufacturerAnalytics, key, "top_categories", totals["categories"], top_n)

    for category, totals in by_category.items():
        key = {"category": category, "month": month}
        _upsert_counters(CategoryAnalytics, key, {
            "sales_count": 1,
            "total_revenue_cents": totals["revenue"],
            "total_items": totals["items"],
        })
        _merge_json(CategoryAnalytics, key, "top_manufacturers", totals["manufacturers"], top_n)


def process_sale(sale_id: int, *, top_n: int = 10) -> bool:
    """
    Apply one committed sale to every rollup and commit.

    Returns False if the sale was already applied (duplicate delivery).
    """
    def _op() -> bool:
        begin_immediate()
        if db.session.query(AnalyticsProcessedSale.id).filter_by(sale_id=sale_id).first():
            db.session.rollback()
            return False

        sale = db.session.get(Sale, sale_id)
        if sale is None:
            db.session.rollback()
            raise ValueError(f"Sale {sale_id} not found")
        if sale.status != SALE_STATUS_ACCEPTED:
            db.session.rollback()
            return False

        try:
            with db.session.begin_nested():
                db.session.add(AnalyticsProcessedSale(sale_id=sale_id))
        except IntegrityError:
            db.session.rollback()
            return False

        _apply_sale(sale, top_n)
        db.session.commit()
        return True

    return run_with_retry(_op)


def process_sale_safely(sale_id: int, *, top_n: int = 10) -> bool:
    """
    Post-commit hook. Analytics must never fail a sale that already
    committed; the sale stays unprocessed and process_pending_sales picks
    it up later.
    """
    try:
        return process_sale(sale_id, top_n=top_n)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Analytics processing failed for sale %s", sale_id)
        return False


def process_pending_sales(*, top_n: int = 10, limit: Optional[int] = None) -> int:
    """Catch up on accepted sales with no processed marker. Returns how many were applied."""
    query = (
        db.session.query(Sale.id)
        .outerjoin(AnalyticsProcessedSale, AnalyticsProcessedSale.sale_id == Sale.id)
        .filter(AnalyticsProcessedSale.id.is_(None), Sale.status == SALE_STATUS_ACCEPTED)
        .order_by(Sale.id.asc())
    )
    if limit:
        query = query.limit(limit)
    sale_ids = [row.id for row in query.all()]

    applied = 0
    for sale_id in sale_ids:
        if process_sale(sale_id, top_n=top_n):
            applied += 1
    return applied


def rebuild_analytics(*, top_n: int = 10) -> int:
    """
    Drop every rollup and recompute from sale history.

    Destructive for the derived tables only; sales are untouched.
    """
    db.session.query(AnalyticsProcessedSale).delete(synchronize_session=False)
    db.session.query(DailyAnalytics).delete(synchronize_session=False)
    db.session.query(ManufacturerAnalytics).delete(synchronize_session=False)
    db.session.query(CategoryAnalytics).delete(synchronize_session=False)
    db.session.commit()
    current_app.logger.info("Analytics tables cleared; rebuilding from sale history")
    return process_pending_sales(top_n=top_n)


def get_daily(day: date) -> Optional[DailyAnalytics]:
    return db.session.query(DailyAnalytics).filter_by(day=day).first()


def list_manufacturers(month: str) -> list[ManufacturerAnalytics]:
    return (
        db.session.query(ManufacturerAnalytics)
        .filter_by(month=month)
        .order_by(ManufacturerAnalytics.total_revenue_cents.desc(), ManufacturerAnalytics.manufacturer.asc())
        .all()
    )


def list_categories(month: str) -> list[CategoryAnalytics]:
    return (
        db.session.query(CategoryAnalytics)
        .filter_by(month=month)
        .order_by(CategoryAnalytics.total_revenue_cents.desc(), CategoryAnalytics.category.asc())
        .all()
    )
