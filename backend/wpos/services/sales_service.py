# Overview: Sale transaction orchestrator; one atomic unit per completed sale.

"""
Sale Completion

complete_sale is the only way a Sale comes into existence. Phases:

1. transaction id (idempotency key) fixed up front; replay if already completed
2. ``started`` logged and committed
3. validator + payment state machine (read-only); ``validation_failed`` on error
4. atomic unit (BEGIN IMMEDIATE on SQLite):
   totals from items -> payment guard -> counter buyer lookup -> sale number ->
   Sale/SaleItem/Payment rows -> stock decrements -> customer aggregates -> ``completed`` log
5. commit
6. post-commit: low-stock notifications, analytics (best-effort)

Any failure inside the unit rolls back EVERYTHING (sale, items, payments,
stock), then writes ``rolled_back`` or ``error`` to the transaction log in a
fresh transaction. A Sale never exists without its stock decrements.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Optional

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..config import SaleEngineConfig
from ..errors import (
    ConcurrencyError,
    CustomerNotFoundError,
    FatalSaleError,
    SaleTimeoutError,
    StockError,
)
from ..extensions import db
from ..models import Product, Sale, SaleItem
from ..models.sales import SALE_STATUS_ACCEPTED, SALE_TYPE_BULK
from ..time_utils import utcnow
from ..validation import parse_int
from . import analytics_service
from .concurrency import begin_immediate, run_with_retry
from .customer_service import CounterCustomerDetails, find_or_create_counter_customer, increment_purchases
from .document_service import next_sale_number
from .inventory_service import SALE_UNIT_FLAG, chunked, decrement_stock_for_items
from .notification_service import (
    LoggingNotificationEmitter,
    NotificationEmitter,
    emit_safely,
    sale_failed_event,
)
from .payment_service import (
    PaymentReconciliationError,
    build_payment_rows,
    ensure_total_matches,
    reconcile_payment_details,
)
from .sale_validator import SaleLineInput, validate_sale
from .transaction_log_service import (
    PHASE_CHECKPOINT,
    PHASE_COMPLETED,
    PHASE_ERROR,
    PHASE_ROLLED_BACK,
    PHASE_STARTED,
    PHASE_VALIDATION_FAILED,
    append_transaction_log,
    find_completed_sale_id,
)


# Aborted the unit for a business reason; surfaced as-is.
ROLLBACK_ERRORS = (StockError, ConcurrencyError, PaymentReconciliationError, CustomerNotFoundError)


@dataclass
class SaleResult:
    success: bool
    transaction_id: str
    sale_id: Optional[int] = None
    sale_number: Optional[str] = None
    customer_id: Optional[int] = None
    total_amount_cents: Optional[int] = None
    total_items: Optional[int] = None
    replayed: bool = False
    errors: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        data = {"success": self.success, "transaction_id": self.transaction_id}
        if self.success:
            data.update({
                "sale_id": self.sale_id,
                "sale_number": self.sale_number,
                "customer_id": self.customer_id,
                "total_amount_cents": self.total_amount_cents,
                "total_items": self.total_items,
                "replayed": self.replayed,
            })
        else:
            data["errors"] = self.errors
        return data


def _result_for_sale(sale: Sale, *, replayed: bool) -> SaleResult:
    return SaleResult(
        success=True,
        transaction_id=sale.transaction_id,
        sale_id=sale.id,
        sale_number=sale.sale_number,
        customer_id=sale.customer_id,
        total_amount_cents=sale.total_amount_cents,
        total_items=sale.total_items,
        replayed=replayed,
    )


def _replay(transaction_id: str) -> Optional[SaleResult]:
    """Result of an earlier successful submission of this transaction id."""
    sale_id = find_completed_sale_id(transaction_id)
    sale = db.session.get(Sale, sale_id) if sale_id else None
    if sale is None:
        sale = db.session.query(Sale).filter_by(transaction_id=transaction_id).first()
    if sale is None:
        return None
    current_app.logger.info("Replaying completed transaction %s (sale %s)", transaction_id, sale.id)
    return _result_for_sale(sale, replayed=True)


def _check_deadline(deadline: Optional[float], stage: str, timeout: Optional[float]) -> None:
    if deadline is not None and time.monotonic() > deadline:
        raise SaleTimeoutError(stage, timeout)


def _record_failure(
    *,
    transaction_id: str,
    phase: str,
    error: dict,
    context: dict,
    notifier: NotificationEmitter,
    sale_type: Optional[str],
) -> None:
    """Write the failure log in its own transaction, after the rollback."""
    db.session.rollback()
    append_transaction_log(
        transaction_id=transaction_id,
        phase=phase,
        context=dict(context, error=error),
    )
    db.session.commit()
    emit_safely(notifier, sale_failed_event(transaction_id=transaction_id, error=error, sale_type=sale_type))


def _write_sale(
    *,
    sale_type: str,
    lines: list[SaleLineInput],
    payment,
    config: SaleEngineConfig,
    customer_id: Optional[int],
    counter_customer: Optional[CounterCustomerDetails],
    staff_id: Optional[int],
    transaction_id: str,
    batch_size: int,
    max_retries: int,
    deadline: Optional[float],
    timeout: Optional[float],
) -> tuple[Sale, list]:
    """Everything inside the atomic unit. Flushes, never commits."""
    total_cents = sum(line.line_total_cents for line in lines)
    total_items = sum(line.quantity for line in lines)

    # Payment details may have been mutated since validation.
    tolerance = config.payment_tolerance_cents
    reconcile_payment_details(payment, tolerance_cents=tolerance)
    ensure_total_matches(payment, total_cents, tolerance_cents=tolerance)

    seed_categories: tuple[str, ...] = ()
    if customer_id is None and counter_customer is not None:
        customer_id, created = find_or_create_counter_customer(counter_customer)
        seed_categories = counter_customer.categories
        current_app.logger.info(
            "Counter sale %s %s customer %s", transaction_id, "created" if created else "matched", customer_id
        )

    now = utcnow()
    sale = Sale(
        sale_number=next_sale_number(sale_type),
        transaction_id=transaction_id,
        sale_type=sale_type,
        status=SALE_STATUS_ACCEPTED,
        customer_id=customer_id,
        staff_id=staff_id,
        total_amount_cents=total_cents,
        total_items=total_items,
        paid_amount_cents=payment.paid_cents,
        pending_amount_cents=payment.pending_cents,
        payment_status=payment.status,
        created_at=now,
    )
    db.session.add(sale)
    db.session.flush()

    product_ids = {line.product_id for line in lines}
    products = {p.id: p for p in db.session.query(Product).filter(Product.id.in_(product_ids))}

    sale_items = []
    for line in lines:
        product = products.get(line.product_id)
        sale_items.append(
            SaleItem(
                sale_id=sale.id,
                product_id=line.product_id,
                quantity=line.quantity,
                unit_price_cents=line.unit_price_cents,
                line_total_cents=line.line_total_cents,
                manufacturer=line.manufacturer or (product.manufacturer if product else None),
                category=line.category or (product.category if product else None),
            )
        )
    db.session.add_all(sale_items)
    db.session.add_all(build_payment_rows(sale, payment))
    db.session.flush()
    _check_deadline(deadline, "sale insert", timeout)

    pairs = [(line.product_id, line.quantity) for line in lines]
    # Bulk sales checkpoint per batch with savepoints; still one transaction.
    batches = chunked(pairs, batch_size) if sale_type == SALE_TYPE_BULK else [pairs]
    decrements = []
    for batch_number, batch in enumerate(batches, start=1):
        with db.session.begin_nested():
            decrements.extend(
                decrement_stock_for_items(
                    batch,
                    config=config,
                    sale_id=sale.id,
                    transaction_id=transaction_id,
                    staff_id=staff_id,
                    max_retries=max_retries,
                    deadline=deadline,
                )
            )
        if len(batches) > 1:
            append_transaction_log(
                transaction_id=transaction_id,
                phase=PHASE_CHECKPOINT,
                sale_id=sale.id,
                context={"batch": batch_number, "batch_items": len(batch)},
            )
    _check_deadline(deadline, "stock update", timeout)

    if customer_id is not None:
        increment_purchases(
            customer_id, total_cents, items=sale_items, purchased_at=now, seed_categories=seed_categories
        )

    sale.completed_at = utcnow()
    db.session.flush()
    return sale, decrements


def complete_sale(
    *,
    sale_type: str,
    items: list[dict],
    payment_details: dict,
    config: SaleEngineConfig,
    customer_id: Any = None,
    counter_customer: Any = None,
    staff_id: Optional[int] = None,
    transaction_id: Optional[str] = None,
    batch_size: Optional[int] = None,
    max_retries: Optional[int] = None,
    timeout_seconds: Optional[float] = None,
    notifier: Optional[NotificationEmitter] = None,
) -> SaleResult:
    """
    Complete a sale as one all-or-nothing unit.

    Returns a SaleResult: success with the sale id, or failure with the
    validator's field errors. Business failures inside the unit
    (InsufficientStockError, ConcurrencyError, PaymentReconciliationError)
    are re-raised after rollback; anything unexpected is re-raised as
    FatalSaleError. Re-submitting a transaction id that already completed
    returns the original sale with ``replayed=True`` and changes nothing.
    """
    started_at = time.monotonic()
    transaction_id = transaction_id or str(uuid.uuid4())
    notifier = notifier or LoggingNotificationEmitter()
    max_retries = max_retries or config.max_retries
    batch_size = batch_size or config.batch_size
    timeout = timeout_seconds if timeout_seconds is not None else config.timeout_seconds
    deadline = started_at + timeout if timeout else None

    replay = _replay(transaction_id)
    if replay is not None:
        return replay

    context = {
        "sale_type": sale_type,
        "customer_id": customer_id,
        "staff_id": staff_id,
        "item_count": len(items) if isinstance(items, list) else None,
    }
    append_transaction_log(transaction_id=transaction_id, phase=PHASE_STARTED, context=context)
    db.session.commit()

    try:
        report = validate_sale(
            items,
            payment_details,
            config=config,
            customer_id=customer_id,
            sale_type=sale_type or "",
            counter_customer=counter_customer,
        )
    except Exception as exc:
        current_app.logger.exception("Validation crashed for sale %s", transaction_id)
        _record_failure(
            transaction_id=transaction_id,
            phase=PHASE_ERROR,
            error={"code": type(exc).__name__, "message": str(exc)},
            context=context,
            notifier=notifier,
            sale_type=sale_type,
        )
        raise FatalSaleError(
            "Sale could not be validated", {"transaction_id": transaction_id}
        ) from exc
    # End the read-only transaction before taking the write lock.
    db.session.rollback()
    if not report.valid:
        append_transaction_log(
            transaction_id=transaction_id,
            phase=PHASE_VALIDATION_FAILED,
            context=dict(context, errors=report.errors),
        )
        db.session.commit()
        return SaleResult(success=False, transaction_id=transaction_id, errors=report.errors)

    parsed_customer_id = parse_int(customer_id, "customer_id") if customer_id is not None else None
    context.update(
        total_amount_cents=report.total_amount_cents,
        total_items=report.total_items,
    )
    retries_context = {"max_retries": max_retries, "batch_size": batch_size}

    try:
        run_with_retry(
            begin_immediate,
            attempts=max_retries,
            backoff_base=config.retry_base_delay,
            max_delay=config.retry_max_delay,
            deadline=deadline,
        )
        db.session.info[SALE_UNIT_FLAG] = True
        sale, decrements = _write_sale(
            sale_type=sale_type,
            lines=report.items,
            payment=report.payment,
            config=config,
            customer_id=parsed_customer_id,
            counter_customer=report.counter_customer,
            staff_id=staff_id,
            transaction_id=transaction_id,
            batch_size=batch_size,
            max_retries=max_retries,
            deadline=deadline,
            timeout=timeout,
        )
        duration_ms = round((time.monotonic() - started_at) * 1000, 2)
        append_transaction_log(
            transaction_id=transaction_id,
            phase=PHASE_COMPLETED,
            sale_id=sale.id,
            context=dict(
                context,
                sale_number=sale.sale_number,
                duration_ms=duration_ms,
                stock_attempts={str(d.product_id): d.attempts for d in decrements},
            ),
        )
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        replay = _replay(transaction_id)
        if replay is not None:
            return replay
        current_app.logger.exception("Integrity failure completing sale %s", transaction_id)
        fatal = FatalSaleError("Sale could not be completed", {"transaction_id": transaction_id})
        _record_failure(
            transaction_id=transaction_id,
            phase=PHASE_ERROR,
            error={"code": "integrity_error", "message": str(exc.orig)},
            context=dict(context, **retries_context),
            notifier=notifier,
            sale_type=sale_type,
        )
        raise fatal from exc
    except ROLLBACK_ERRORS as exc:
        current_app.logger.warning("Sale %s rolled back: %s", transaction_id, exc)
        _record_failure(
            transaction_id=transaction_id,
            phase=PHASE_ROLLED_BACK,
            error=exc.to_dict(),
            context=context,
            notifier=notifier,
            sale_type=sale_type,
        )
        raise
    except FatalSaleError as exc:
        current_app.logger.error("Sale %s failed: %s", transaction_id, exc)
        _record_failure(
            transaction_id=transaction_id,
            phase=PHASE_ERROR,
            error=exc.to_dict(),
            context=dict(context, **retries_context),
            notifier=notifier,
            sale_type=sale_type,
        )
        raise
    except Exception as exc:
        current_app.logger.exception("Unexpected failure completing sale %s", transaction_id)
        _record_failure(
            transaction_id=transaction_id,
            phase=PHASE_ERROR,
            error={"code": type(exc).__name__, "message": str(exc)},
            context=dict(context, **retries_context),
            notifier=notifier,
            sale_type=sale_type,
        )
        raise FatalSaleError(
            "Sale could not be completed", {"transaction_id": transaction_id}
        ) from exc
    finally:
        db.session.info.pop(SALE_UNIT_FLAG, None)

    for decrement in decrements:
        if decrement.low_stock_event is not None:
            emit_safely(notifier, decrement.low_stock_event)

    if config.analytics_inline:
        analytics_service.process_sale_safely(sale.id, top_n=config.analytics_top_n)

    current_app.logger.info(
        "Sale %s completed (%s, %s cents, txn %s)",
        sale.sale_number, sale_type, sale.total_amount_cents, transaction_id,
    )
    return _result_for_sale(sale, replayed=False)


def get_sale(sale_id: int) -> Optional[Sale]:
    return db.session.get(Sale, sale_id)
