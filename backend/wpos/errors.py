# Overview: Error taxonomy for the sale-completion engine.

"""
Sale engine errors.

Every error carries a stable ``code`` and a ``details`` dict so routes can
render it without string matching. Validation-class problems are collected
into lists; everything else aborts the atomic unit.
"""

from __future__ import annotations


class SaleError(Exception):
    """Base class for sale engine errors."""
    code = "sale_error"

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "error": self.message,
            "code": self.code,
            "details": self.details,
        }


class SaleValidationError(SaleError):
    """Input failed validation; nothing was written."""
    code = "validation_failed"

    def __init__(self, errors: list[dict], message: str = "Sale validation failed"):
        super().__init__(message, {"errors": errors})
        self.errors = errors


class StockError(SaleError):
    """Stock could not be decremented for an item."""
    code = "stock_error"


class InsufficientStockError(StockError):
    code = "insufficient_stock"

    def __init__(self, product_id: int, requested: int, available: int):
        super().__init__(
            f"Insufficient stock for product {product_id}: requested {requested}, available {available}",
            {"product_id": product_id, "requested": requested, "available": available},
        )
        self.product_id = product_id
        self.requested = requested
        self.available = available


class ProductNotFoundError(StockError):
    code = "product_not_found"

    def __init__(self, product_id: int):
        super().__init__(f"Product {product_id} not found", {"product_id": product_id})
        self.product_id = product_id


class CustomerNotFoundError(SaleError):
    code = "customer_not_found"

    def __init__(self, customer_id: int):
        super().__init__(f"Customer {customer_id} not found", {"customer_id": customer_id})
        self.customer_id = customer_id


class ConcurrencyError(SaleError):
    """
    Lost a conditional-update race.

    Not retried internally: the caller should re-validate and submit a fresh
    attempt, since prices or availability may have changed.
    """
    code = "concurrency_conflict"
    retryable = True


class TransientError(SaleError):
    """Infrastructure hiccup that is safe to retry with backoff."""
    code = "transient_error"


class FatalSaleError(SaleError):
    """Retries exhausted or unexpected failure; the unit was rolled back."""
    code = "fatal_error"


class StockUpdateFailedError(FatalSaleError):
    code = "stock_update_failed"

    def __init__(
        self,
        product_id: int,
        quantity: int,
        last_known_stock: int | None,
        retry_history: list[dict],
    ):
        super().__init__(
            f"Stock update for product {product_id} failed after {len(retry_history)} attempts",
            {
                "product_id": product_id,
                "quantity": quantity,
                "last_known_stock": last_known_stock,
                "retry_history": retry_history,
            },
        )
        self.product_id = product_id
        self.quantity = quantity
        self.last_known_stock = last_known_stock
        self.retry_history = retry_history


class SaleTimeoutError(FatalSaleError):
    code = "timeout"

    def __init__(self, stage: str, timeout_seconds: float | None = None):
        super().__init__(
            f"Sale timed out during {stage}",
            {"stage": stage, "timeout_seconds": timeout_seconds},
        )
        self.stage = stage


class StockBatchError(SaleError):
    """Batch-mode stock update stopped; earlier batches stay committed."""
    code = "stock_batch_failed"

    def __init__(self, message: str, committed_items: int = 0, details: dict | None = None):
        merged = {"committed_items": committed_items}
        merged.update(details or {})
        super().__init__(message, merged)
        self.committed_items = committed_items
