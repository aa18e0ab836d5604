from wpos.extensions import db
from wpos.models import CategoryAnalytics, DailyAnalytics, ManufacturerAnalytics, Sale
from wpos.services import analytics_service, sales_service
from wpos.time_utils import month_key

from conftest import make_config, payment_details


CONFIG = make_config(analytics_inline=False, analytics_top_n=2)


def _sell(items, total, **kwargs):
    result = sales_service.complete_sale(
        sale_type=kwargs.pop("sale_type", "counter"),
        items=items,
        payment_details=kwargs.pop("payment", None) or payment_details(total, method=kwargs.pop("method", "cash")),
        config=CONFIG,
        **kwargs,
    )
    assert result.success, result.errors
    return result.sale_id


def _snapshot(day):
    row = db.session.query(DailyAnalytics).filter_by(day=day).one()
    return row.to_dict()


def test_duplicate_delivery_is_ignored(db_session, make_product):
    product = make_product(stock_level=10, manufacturer="Acme", category="Paint")
    sale_id = _sell([{"product_id": product.id, "quantity": 2, "price": 10}], 20)
    day = db_session.get(Sale, sale_id).completed_at.date()

    assert analytics_service.process_sale(sale_id, top_n=2) is True
    once = _snapshot(day)
    assert analytics_service.process_sale(sale_id, top_n=2) is False
    twice = _snapshot(day)

    assert once == twice
    assert once["sales_count"] == 1
    assert once["total_revenue_cents"] == 2000
    assert once["total_items"] == 2
    assert once["payment_methods"] == {"cash": 2000}
    assert once["customer_types"] == {"walk_in": 1}


def test_rollups_merge_across_sales(db_session, make_product, customer):
    paint = make_product(stock_level=50, manufacturer="Acme", category="Paint")
    brush = make_product(stock_level=50, manufacturer="Acme", category="Brushes")
    nails = make_product(stock_level=50, manufacturer="Bolt", category="Hardware")

    first = _sell([
        {"product_id": paint.id, "quantity": 1, "price": 30},
        {"product_id": nails.id, "quantity": 10, "price": 1},
    ], 40, customer_id=customer.id)
    second = _sell([{"product_id": brush.id, "quantity": 2, "price": 5}], 10, method="upi")
    for sale_id in (first, second):
        analytics_service.process_sale(sale_id, top_n=2)

    month = month_key(db_session.get(Sale, first).completed_at)
    acme = db.session.query(ManufacturerAnalytics).filter_by(manufacturer="Acme", month=month).one()
    assert (acme.sales_count, acme.total_revenue_cents, acme.total_items) == (2, 4000, 3)
    assert acme.top_categories == {"Paint": 3000, "Brushes": 1000}

    hardware = db.session.query(CategoryAnalytics).filter_by(category="Hardware", month=month).one()
    assert hardware.top_manufacturers == {"Bolt": 1000}

    daily = db.session.query(DailyAnalytics).one()
    assert daily.sales_count == 2
    assert daily.total_revenue_cents == 5000
    assert daily.payment_methods == {"cash": 4000, "upi": 1000}
    assert daily.customer_types == {"wholesaler": 1, "walk_in": 1}
    # Capped to the top two categories.
    assert daily.top_categories == {"Paint": 3000, "Brushes": 1000}


def test_catch_up_and_rebuild(db_session, make_product):
    product = make_product(stock_level=20)
    sale_ids = [_sell([{"product_id": product.id, "quantity": 1, "price": 10}], 10) for _ in range(3)]

    assert analytics_service.process_pending_sales(top_n=2) == 3
    assert analytics_service.process_pending_sales(top_n=2) == 0
    before = db.session.query(DailyAnalytics).one().to_dict()

    assert analytics_service.rebuild_analytics(top_n=2) == len(sale_ids)
    after = db.session.query(DailyAnalytics).one().to_dict()

    before.pop("updated_at")
    after.pop("updated_at")
    assert before == after


def test_cap_top_n_is_stable():
    assert analytics_service.cap_top_n({"b": 5, "a": 5, "c": 1}, 2) == {"a": 5, "b": 5}
    assert analytics_service.merge_capped({"x": 1}, {"x": 2, "y": 1}, 1) == {"x": 3}
