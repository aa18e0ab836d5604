import pytest

from wpos.services.sale_validator import validate_sale
from wpos.validation import MAX_QUANTITY

from conftest import payment_details


def _fields(report):
    return [error["field"] for error in report.errors]


def test_valid_sale(db_session, engine_config, make_product, customer):
    p1 = make_product(stock_level=10)
    p2 = make_product(stock_level=3)
    items = [
        {"product_id": p1.id, "quantity": 2, "price": 10},
        {"product_id": p2.id, "quantity": 3, "price": "2.50"},
    ]

    report = validate_sale(items, payment_details(27.50), config=engine_config, customer_id=customer.id)

    assert report.valid, report.errors
    assert report.total_amount_cents == 2750
    assert report.total_items == 5
    assert report.to_dict()["valid"] is True


def test_collects_every_problem_in_one_pass(db_session, engine_config, make_product):
    product = make_product(stock_level=1)
    items = [
        {"quantity": 1, "price": 10},
        {"product_id": product.id, "quantity": "two", "price": 10},
        {"product_id": 99999, "quantity": 1, "price": 10},
        {"product_id": product.id, "quantity": 5, "price": 10},
    ]

    report = validate_sale(items, payment_details(60), config=engine_config)

    assert not report.valid
    fields = _fields(report)
    assert "items[0].product_id" in fields
    assert "items[1].quantity" in fields
    assert "items[2].product_id" in fields
    assert "items[3].quantity" in fields
    stock_error = next(e for e in report.errors if e["field"] == "items[3].quantity")
    assert stock_error["context"] == {"product_id": product.id, "requested": 5, "available": 1}


def test_empty_items(db_session, engine_config):
    report = validate_sale([], payment_details(0, status="pending"), config=engine_config)
    assert _fields(report) == ["items"]


def test_duplicate_lines_are_checked_against_combined_quantity(db_session, engine_config, make_product):
    product = make_product(stock_level=5)
    items = [
        {"product_id": product.id, "quantity": 3, "price": 1},
        {"product_id": product.id, "quantity": 3, "price": 1},
    ]

    report = validate_sale(items, payment_details(6), config=engine_config)

    assert _fields(report) == ["items[0].quantity"]
    assert report.errors[0]["context"]["requested"] == 6


def test_payment_total_must_match_items(db_session, engine_config, make_product):
    product = make_product(stock_level=5)
    items = [{"product_id": product.id, "quantity": 1, "price": 10}]

    report = validate_sale(items, payment_details(12), config=engine_config)

    assert _fields(report) == ["payment_details.total_amount"]


def test_payment_rule_violations_are_reported(db_session, engine_config, make_product):
    product = make_product(stock_level=5)
    items = [{"product_id": product.id, "quantity": 1, "price": 100}]

    report = validate_sale(items, payment_details(100, status="partial"), config=engine_config)

    assert _fields(report) == ["payment_details.status"]


def test_unknown_customer_and_sale_type(db_session, engine_config, make_product):
    product = make_product(stock_level=5)
    items = [{"product_id": product.id, "quantity": 1, "price": 10}]

    report = validate_sale(
        items, payment_details(10), config=engine_config, customer_id=424242, sale_type="layaway"
    )

    assert set(_fields(report)) == {"sale_type", "customer_id"}


def test_inactive_product(db_session, engine_config, make_product):
    product = make_product(stock_level=5, is_active=False)
    items = [{"product_id": product.id, "quantity": 1, "price": 10}]

    report = validate_sale(items, payment_details(10), config=engine_config)

    assert report.errors[0]["message"] == "Product is inactive"


def test_validator_does_not_write(db_session, engine_config, make_product):
    product = make_product(stock_level=5)
    items = [{"product_id": product.id, "quantity": 2, "price": 10}]

    validate_sale(items, payment_details(20), config=engine_config)
    db_session.rollback()

    assert db_session.get(type(product), product.id).stock_level == 5


@pytest.mark.parametrize("quantity", ["--5", "²", "5-", "+-1", "1e3"])
def test_malformed_integer_strings_are_field_errors(db_session, engine_config, make_product, quantity):
    product = make_product(stock_level=10)
    items = [
        {"product_id": product.id, "quantity": quantity, "price": 10},
        {"product_id": product.id, "quantity": 1, "price": 10},
    ]

    report = validate_sale(items, payment_details(10), config=engine_config)

    assert _fields(report) == ["items[0].quantity"]
    assert report.errors[0]["message"] == "must be an integer"
    assert len(report.items) == 1


@pytest.mark.parametrize("product_id", [10**20, 1e20, str(2**63)])
def test_out_of_range_ids_are_field_errors(db_session, engine_config, product_id):
    items = [{"product_id": product_id, "quantity": 1, "price": 10}]

    report = validate_sale(items, payment_details(10), config=engine_config)

    assert not report.valid
    assert _fields(report) == ["items[0].product_id"]


def test_quantity_has_a_ceiling(db_session, engine_config, make_product):
    product = make_product(stock_level=10)
    items = [{"product_id": product.id, "quantity": MAX_QUANTITY + 1, "price": 0}]

    report = validate_sale(items, payment_details(0, status="pending"), config=engine_config)

    assert _fields(report) == ["items[0].quantity"]


def test_counter_buyer_details_are_parsed(db_session, engine_config, make_product):
    product = make_product(stock_level=5)
    items = [{"product_id": product.id, "quantity": 1, "price": 10}]
    buyer = {"name": " Meera ", "phone": "9811111111", "categories": ["Fans", "Fans", ""]}

    report = validate_sale(
        items, payment_details(10), config=engine_config, sale_type="counter", counter_customer=buyer
    )

    assert report.valid, report.errors
    assert report.counter_customer.name == "Meera"
    assert report.counter_customer.categories == ("Fans",)
    assert report.counter_customer.customer_type == "retailer"


def test_counter_buyer_details_are_checked(db_session, engine_config, make_product):
    product = make_product(stock_level=5)
    items = [{"product_id": product.id, "quantity": 1, "price": 10}]

    missing_phone = validate_sale(
        items, payment_details(10), config=engine_config, sale_type="counter",
        counter_customer={"name": "Meera"},
    )
    wrong_sale_type = validate_sale(
        items, payment_details(10), config=engine_config, sale_type="bulk",
        counter_customer={"name": "Meera", "phone": "9811111111"},
    )

    assert _fields(missing_phone) == ["counter_customer.phone"]
    assert _fields(wrong_sale_type) == ["counter_customer"]


def test_customer_id_wins_over_buyer_details(db_session, engine_config, make_product, customer):
    product = make_product(stock_level=5)
    items = [{"product_id": product.id, "quantity": 1, "price": 10}]

    report = validate_sale(
        items, payment_details(10), config=engine_config, customer_id=customer.id,
        sale_type="counter", counter_customer={"name": "Meera"},
    )

    assert report.valid
    assert report.counter_customer is None
