import pytest
from sqlalchemy.exc import OperationalError

from wpos.errors import (
    InsufficientStockError,
    ProductNotFoundError,
    StockBatchError,
    StockUpdateFailedError,
)
from wpos.models import StockMovement, TransactionLog
from wpos.services import inventory_service
from wpos.services.concurrency import begin_immediate, compute_backoff

from conftest import make_config, stock_of


def _locked():
    return OperationalError("UPDATE products", {}, Exception("database is locked"))


def test_conditional_decrement_only_when_enough_stock(db_session, make_product):
    product = make_product(stock_level=3)

    assert inventory_service.conditional_decrement(product.id, 2) is True
    assert inventory_service.conditional_decrement(product.id, 2) is False
    db_session.commit()

    assert stock_of(product.id) == 1


def test_decrement_writes_movement_and_low_stock_event(db_session, make_product):
    product = make_product(stock_level=8)
    config = make_config(low_stock_threshold=5)

    begin_immediate()
    result = inventory_service.decrement_stock(product.id, 3, config=config, transaction_id="txn-1")
    db_session.commit()

    assert (result.previous_stock, result.new_stock, result.attempts) == (8, 5, 1)
    assert result.low_stock_event is not None
    assert result.low_stock_event.payload["stock_level"] == 5

    movement = db_session.query(StockMovement).filter_by(product_id=product.id).one()
    assert (movement.previous_stock, movement.new_stock, movement.delta) == (8, 5, -3)
    assert movement.reason == "sale"


def test_no_low_stock_event_above_threshold(db_session, make_product):
    product = make_product(stock_level=20)

    begin_immediate()
    result = inventory_service.decrement_stock(product.id, 1, config=make_config(low_stock_threshold=5))
    db_session.commit()

    assert result.low_stock_event is None


def test_insufficient_stock_reports_requested_and_available(db_session, make_product):
    product = make_product(stock_level=4)

    begin_immediate()
    with pytest.raises(InsufficientStockError) as exc:
        inventory_service.decrement_stock(product.id, 6, config=make_config())
    db_session.rollback()

    assert exc.value.details == {"product_id": product.id, "requested": 6, "available": 4}
    assert stock_of(product.id) == 4


def test_missing_product(db_session):
    begin_immediate()
    with pytest.raises(ProductNotFoundError):
        inventory_service.decrement_stock(12345, 1, config=make_config())
    db_session.rollback()


def test_transient_failure_is_retried(db_session, make_product, monkeypatch):
    product = make_product(stock_level=10)
    real = inventory_service.conditional_decrement
    calls = {"n": 0}

    def flaky(product_id, quantity):
        calls["n"] += 1
        if calls["n"] == 1:
            raise _locked()
        return real(product_id, quantity)

    monkeypatch.setattr(inventory_service, "conditional_decrement", flaky)

    begin_immediate()
    result = inventory_service.decrement_stock(product.id, 4, config=make_config(), transaction_id="txn-retry")
    db_session.commit()

    assert result.attempts == 2
    assert result.new_stock == 6
    assert stock_of(product.id) == 6
    retries = db_session.query(TransactionLog).filter_by(transaction_id="txn-retry", phase="retry").all()
    assert len(retries) == 1
    assert retries[0].context["attempt"] == 1


def test_retries_exhausted_raise_fatal_with_history(db_session, make_product, monkeypatch):
    product = make_product(stock_level=10)

    def always_locked(product_id, quantity):
        raise _locked()

    monkeypatch.setattr(inventory_service, "conditional_decrement", always_locked)

    begin_immediate()
    with pytest.raises(StockUpdateFailedError) as exc:
        inventory_service.decrement_stock(product.id, 1, config=make_config(max_retries=3))
    db_session.rollback()

    assert len(exc.value.retry_history) == 3
    assert exc.value.last_known_stock == 10
    assert stock_of(product.id) == 10


def test_backoff_is_exponential_jittered_and_capped():
    for attempt in range(4):
        delay = compute_backoff(attempt, base_delay=0.1, max_delay=10)
        assert 0.1 * 2 ** attempt * 0.9 <= delay <= 0.1 * 2 ** attempt * 1.1
    assert compute_backoff(10, base_delay=0.1, max_delay=2.0) == 2.0


def test_batch_mode_commits_per_batch(db_session, make_product):
    products = [make_product(stock_level=10) for _ in range(5)]
    items = [(p.id, 2) for p in products]

    result = inventory_service.decrement_stock_in_batches(
        items, config=make_config(), batch_size=2, transaction_id="bulk-1"
    )

    assert (result.processed_items, result.batches) == (5, 3)
    assert [stock_of(p.id) for p in products] == [8] * 5
    checkpoints = db_session.query(TransactionLog).filter_by(transaction_id="bulk-1", phase="checkpoint").count()
    assert checkpoints == 3


def test_batch_failure_keeps_earlier_batches(db_session, make_product):
    ok = [make_product(stock_level=10) for _ in range(2)]
    short = make_product(stock_level=1)
    items = [(ok[0].id, 1), (ok[1].id, 1), (short.id, 5)]

    with pytest.raises(StockBatchError) as exc:
        inventory_service.decrement_stock_in_batches(items, config=make_config(), batch_size=2)

    assert exc.value.committed_items == 2
    assert stock_of(ok[0].id) == 9
    assert stock_of(ok[1].id) == 9
    assert stock_of(short.id) == 1


def test_batch_mode_refuses_to_run_inside_a_sale(db_session, make_product):
    product = make_product(stock_level=10)
    db_session.info[inventory_service.SALE_UNIT_FLAG] = True

    with pytest.raises(StockBatchError):
        inventory_service.decrement_stock_in_batches([(product.id, 1)], config=make_config())

    assert stock_of(product.id) == 10


def test_inactive_product_is_never_decremented(db_session, make_product):
    product = make_product(stock_level=10, is_active=False)

    assert inventory_service.conditional_decrement(product.id, 1) is False
    db_session.rollback()

    begin_immediate()
    with pytest.raises(ProductNotFoundError):
        inventory_service.decrement_stock(product.id, 1, config=make_config())
    db_session.rollback()

    assert stock_of(product.id) == 10
    assert db_session.query(StockMovement).count() == 0
