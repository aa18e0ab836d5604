# Overview: Stock reconciliation engine; conditional, retry-safe stock decrements.

"""
Stock Reconciliation Engine

INVARIANT: Product.stock_level never goes below zero.

The only write path is conditional_decrement:

    UPDATE products SET stock_level = stock_level - :qty
    WHERE id = :id AND stock_level >= :qty

If no row is affected the current stock is re-read to decide between
InsufficientStockError, ProductNotFoundError and ConcurrencyError. That
re-read is the authoritative stock check; the validator's read is advisory.

Two modes, never mixed:
- decrement_stock_for_items: used by a sale. Runs inside the caller's
  transaction and never commits. Any failure aborts the whole sale.
- decrement_stock_in_batches: bulk imports. Commits after every batch and
  refuses to run while a sale unit is open on the session.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Iterable, Optional

from flask import current_app
from sqlalchemy import update

from ..config import SaleEngineConfig
from ..errors import (
    ConcurrencyError,
    InsufficientStockError,
    ProductNotFoundError,
    SaleError,
    SaleTimeoutError,
    StockBatchError,
    StockUpdateFailedError,
)
from ..extensions import db
from ..models import Product, StockMovement
from ..time_utils import utcnow
from .concurrency import begin_immediate, is_transient_error, run_with_retry
from .notification_service import NotificationEvent, low_stock_event
from .transaction_log_service import PHASE_CHECKPOINT, PHASE_RETRY, append_transaction_log


# Set on db.session.info while a sale's atomic unit is open.
SALE_UNIT_FLAG = "sale_unit_active"

REASON_SALE = "sale"
REASON_BULK_IMPORT = "bulk_import"
REASON_ADJUSTMENT = "adjustment"


@dataclass(frozen=True)
class StockDecrement:
    product_id: int
    quantity: int
    previous_stock: int
    new_stock: int
    attempts: int
    low_stock_event: Optional[NotificationEvent] = None


@dataclass
class BatchStockResult:
    processed_items: int = 0
    batches: int = 0
    decrements: list[StockDecrement] = field(default_factory=list)

    @property
    def low_stock_events(self) -> list[NotificationEvent]:
        return [d.low_stock_event for d in self.decrements if d.low_stock_event is not None]


def get_stock_level(product_id: int) -> Optional[int]:
    """Current stock straight from the table (bypasses the identity map)."""
    return (
        db.session.query(Product.stock_level)
        .filter(Product.id == product_id)
        .scalar()
    )


def conditional_decrement(product_id: int, quantity: int) -> bool:
    """
    Decrement stock only if the product is active and enough is on hand.
    Returns True if a row changed.
    Also stamps last_sold_at in the same statement.
    """
    if quantity <= 0:
        raise ValueError("quantity must be positive")
    stmt = (
        update(Product)
        .where(
            Product.id == product_id,
            Product.is_active.is_(True),
            Product.stock_level >= quantity,
        )
        .values(stock_level=Product.stock_level - quantity, last_sold_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    return result.rowcount == 1


def _decrement_once(
    product_id: int,
    quantity: int,
    *,
    reason: str,
    sale_id: Optional[int],
    transaction_id: Optional[str],
    staff_id: Optional[int],
) -> tuple[int, int, Optional[str]]:
    if not conditional_decrement(product_id, quantity):
        row = (
            db.session.query(Product.stock_level, Product.is_active)
            .filter(Product.id == product_id)
            .first()
        )
        if row is None or not row.is_active:
            raise ProductNotFoundError(product_id)
        if row.stock_level < quantity:
            raise InsufficientStockError(product_id, quantity, row.stock_level)
        # Enough stock now, but our update missed it: someone else moved it in between.
        raise ConcurrencyError(
            f"Stock for product {product_id} changed during update",
            {"product_id": product_id, "requested": quantity, "available": row.stock_level},
        )

    new_stock, sku = (
        db.session.query(Product.stock_level, Product.sku)
        .filter(Product.id == product_id)
        .one()
    )
    previous_stock = new_stock + quantity
    db.session.add(
        StockMovement(
            product_id=product_id,
            previous_stock=previous_stock,
            new_stock=new_stock,
            delta=-quantity,
            reason=reason,
            sale_id=sale_id,
            transaction_id=transaction_id,
            staff_id=staff_id,
        )
    )
    db.session.flush()
    return previous_stock, new_stock, sku


def decrement_stock(
    product_id: int,
    quantity: int,
    *,
    config: SaleEngineConfig,
    reason: str = REASON_SALE,
    sale_id: Optional[int] = None,
    transaction_id: Optional[str] = None,
    staff_id: Optional[int] = None,
    max_retries: Optional[int] = None,
    deadline: Optional[float] = None,
) -> StockDecrement:
    """
    Decrement one product inside a savepoint, retrying transient failures.

    Each attempt is its own SAVEPOINT, so a failed attempt is undone without
    touching the enclosing transaction. Business failures (insufficient
    stock, missing product, lost race) are raised immediately; only
    transient errors are retried. ``max_retries`` is the total number of
    attempts. Exhausting them raises StockUpdateFailedError with the retry
    history.
    """
    attempts = max_retries or config.max_retries
    history: list[dict] = []

    def _attempt():
        with db.session.begin_nested():
            return _decrement_once(
                product_id,
                quantity,
                reason=reason,
                sale_id=sale_id,
                transaction_id=transaction_id,
                staff_id=staff_id,
            )

    def _on_retry(attempt: int, exc: BaseException, delay: float) -> None:
        history.append({"attempt": attempt, "error": str(exc), "delay_seconds": round(delay, 4)})
        current_app.logger.warning(
            "Stock update retry %s/%s for product %s: %s", attempt, attempts, product_id, exc
        )
        if transaction_id:
            append_transaction_log(
                transaction_id=transaction_id,
                phase=PHASE_RETRY,
                sale_id=sale_id,
                context={
                    "product_id": product_id,
                    "quantity": quantity,
                    "attempt": attempt,
                    "error": str(exc),
                },
            )

    try:
        previous_stock, new_stock, sku = run_with_retry(
            _attempt,
            attempts=attempts,
            backoff_base=config.retry_base_delay,
            max_delay=config.retry_max_delay,
            deadline=deadline,
            on_retry=_on_retry,
            rollback=False,
        )
    except Exception as exc:
        if not is_transient_error(exc):
            raise
        history.append({"attempt": len(history) + 1, "error": str(exc), "delay_seconds": 0})
        try:
            last_known = get_stock_level(product_id)
        except Exception:
            current_app.logger.exception("Could not read stock for product %s", product_id)
            last_known = None
        raise StockUpdateFailedError(product_id, quantity, last_known, history) from exc

    event = None
    if new_stock <= config.low_stock_threshold:
        event = low_stock_event(
            product_id=product_id,
            sku=sku,
            stock_level=new_stock,
            threshold=config.low_stock_threshold,
        )

    return StockDecrement(
        product_id=product_id,
        quantity=quantity,
        previous_stock=previous_stock,
        new_stock=new_stock,
        attempts=len(history) + 1,
        low_stock_event=event,
    )


def _check_deadline(deadline: Optional[float], stage: str) -> None:
    if deadline is not None and time.monotonic() > deadline:
        raise SaleTimeoutError(stage)


def decrement_stock_for_items(
    items: Iterable[tuple[int, int]],
    *,
    config: SaleEngineConfig,
    reason: str = REASON_SALE,
    sale_id: Optional[int] = None,
    transaction_id: Optional[str] = None,
    staff_id: Optional[int] = None,
    max_retries: Optional[int] = None,
    deadline: Optional[float] = None,
) -> list[StockDecrement]:
    """
    Atomic path: decrement every (product_id, quantity) sequentially in the
    caller's transaction. Does not commit. The first failure propagates and
    the caller rolls back everything.
    """
    results = []
    for product_id, quantity in items:
        _check_deadline(deadline, "stock update")
        results.append(
            decrement_stock(
                product_id,
                quantity,
                config=config,
                reason=reason,
                sale_id=sale_id,
                transaction_id=transaction_id,
                staff_id=staff_id,
                max_retries=max_retries,
                deadline=deadline,
            )
        )
    return results


def chunked(items: list, size: int) -> list[list]:
    return [items[i:i + size] for i in range(0, len(items), size)]


def decrement_stock_in_batches(
    items: list[tuple[int, int]],
    *,
    config: SaleEngineConfig,
    batch_size: Optional[int] = None,
    reason: str = REASON_BULK_IMPORT,
    transaction_id: Optional[str] = None,
    staff_id: Optional[int] = None,
) -> BatchStockResult:
    """
    Bulk mode: commit after every ``batch_size`` items.

    NOT atomic across batches. If batch N fails, batches before it stay
    committed and StockBatchError reports how many items made it. Use
    decrement_stock_for_items for anything that must be all-or-nothing.
    """
    if db.session.info.get(SALE_UNIT_FLAG):
        raise StockBatchError("Batch stock updates cannot run inside an atomic sale")

    size = batch_size or config.batch_size
    if size < 1:
        raise StockBatchError("batch_size must be at least 1")

    result = BatchStockResult()
    for batch_number, batch in enumerate(chunked(list(items), size), start=1):
        try:
            begin_immediate()
            decrements = decrement_stock_for_items(
                batch,
                config=config,
                reason=reason,
                transaction_id=transaction_id,
                staff_id=staff_id,
            )
            if transaction_id:
                append_transaction_log(
                    transaction_id=transaction_id,
                    phase=PHASE_CHECKPOINT,
                    context={
                        "batch": batch_number,
                        "batch_items": len(batch),
                        "committed_items": result.processed_items + len(batch),
                    },
                )
            db.session.commit()
        except SaleError as exc:
            db.session.rollback()
            raise StockBatchError(
                f"Batch {batch_number} failed: {exc.message}",
                committed_items=result.processed_items,
                details={"batch": batch_number, "cause": exc.to_dict()},
            ) from exc
        except Exception:
            db.session.rollback()
            raise

        result.processed_items += len(batch)
        result.batches += 1
        result.decrements.extend(decrements)
        current_app.logger.info(
            "Stock batch %s committed (%s items, %s total)", batch_number, len(batch), result.processed_items
        )

    return result
