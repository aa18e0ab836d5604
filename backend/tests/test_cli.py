from wpos.extensions import db
from wpos.models import Product


def test_bulk_decrement_from_csv(app, make_product, tmp_path):
    a = make_product(stock_level=10)
    b = make_product(stock_level=3)
    csv_path = tmp_path / "stock.csv"
    csv_path.write_text(f"product_id,quantity\n{a.id},4\n{b.id},1\n")

    result = app.test_cli_runner().invoke(args=["stock", "bulk-decrement", str(csv_path), "--batch-size", "1"])

    assert result.exit_code == 0, result.output
    assert "PASS 2 item(s) in 2 batch(es)." in result.output
    assert "Low stock" in result.output
    assert db.session.get(Product, a.id).stock_level == 6
    assert db.session.get(Product, b.id).stock_level == 2


def test_bulk_decrement_reports_committed_items(app, make_product, tmp_path):
    a = make_product(stock_level=10)
    b = make_product(stock_level=0)
    csv_path = tmp_path / "stock.csv"
    csv_path.write_text(f"product_id,quantity\n{a.id},1\n{b.id},1\n")

    result = app.test_cli_runner().invoke(args=["stock", "bulk-decrement", str(csv_path), "--batch-size", "1"])

    assert result.exit_code == 1
    assert "1 item(s) committed" in result.output
    assert db.session.get(Product, a.id).stock_level == 9


def test_analytics_catch_up_command(app, db_session):
    result = app.test_cli_runner().invoke(args=["analytics", "catch-up"])
    assert result.exit_code == 0
    assert "Applied 0 sale(s)" in result.output
