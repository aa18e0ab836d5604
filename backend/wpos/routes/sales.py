# Overview: Flask API routes for sale completion; parses input and returns JSON responses.

# backend/wpos/routes/sales.py
"""
Sales API routes.

Authorization happens upstream of this service; staff_id arrives in the body.
"""

import uuid

from flask import Blueprint, current_app, jsonify, request

from ..errors import ConcurrencyError, FatalSaleError, SaleError, StockError
from ..services import sales_service
from ..services.payment_service import PaymentReconciliationError
from ..services.sale_validator import validate_sale
from ..services.transaction_log_service import get_transaction_logs
from ..validation import ValidationError, parse_int


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


def _engine_config():
    return current_app.extensions["sale_engine_config"]


def _optional_int(data: dict, name: str):
    value = data.get(name)
    if value is None:
        return None
    return parse_int(value, name, minimum=1)


@sales_bp.post("/complete")
def complete_sale_route():
    """
    Complete a sale atomically.

    Returns:
    - 201: sale created
    - 200: transaction id already completed (idempotent replay)
    - 422: validation or payment reconciliation errors
    - 409: stock conflict (insufficient stock, lost race)
    - 500: fatal; details are in the transaction log
    """
    data = request.get_json(silent=True) or {}
    transaction_id = request.headers.get("Idempotency-Key") or data.get("transaction_id")
    transaction_id = str(transaction_id) if transaction_id else str(uuid.uuid4())

    try:
        staff_id = _optional_int(data, "staff_id")
        batch_size = _optional_int(data, "batch_size")
        max_retries = _optional_int(data, "max_retries")
    except ValidationError as e:
        return jsonify({"error": "Invalid request", "errors": [e.to_dict()]}), 422

    timeout_seconds = data.get("timeout_seconds")
    if timeout_seconds is not None and (
        isinstance(timeout_seconds, bool) or not isinstance(timeout_seconds, (int, float)) or timeout_seconds <= 0
    ):
        return jsonify({
            "error": "Invalid request",
            "errors": [{"field": "timeout_seconds", "message": "must be a positive number", "context": {}}],
        }), 422

    try:
        result = sales_service.complete_sale(
            sale_type=data.get("sale_type"),
            items=data.get("items"),
            payment_details=data.get("payment_details"),
            config=_engine_config(),
            customer_id=data.get("customer_id"),
            counter_customer=data.get("counter_customer"),
            staff_id=staff_id,
            transaction_id=transaction_id,
            batch_size=batch_size,
            max_retries=max_retries,
            timeout_seconds=timeout_seconds,
        )
    except PaymentReconciliationError as e:
        return jsonify(dict(e.to_dict(), errors=[e.to_field_error()])), 422
    except ConcurrencyError as e:
        return jsonify(dict(e.to_dict(), retryable=True)), 409
    except StockError as e:
        return jsonify(e.to_dict()), 409
    except FatalSaleError as e:
        return jsonify({
            "error": "Sale could not be completed",
            "code": e.code,
            "transaction_id": transaction_id,
        }), 500
    except SaleError as e:
        return jsonify(e.to_dict()), 422

    if not result.success:
        return jsonify(result.to_dict()), 422
    return jsonify(result.to_dict()), 200 if result.replayed else 201


@sales_bp.post("/validate")
def validate_sale_route():
    """Dry run of the validator. Never writes."""
    data = request.get_json(silent=True) or {}
    try:
        report = validate_sale(
            data.get("items"),
            data.get("payment_details"),
            config=_engine_config(),
            customer_id=data.get("customer_id"),
            sale_type=data.get("sale_type"),
            counter_customer=data.get("counter_customer"),
        )
        return jsonify(report.to_dict()), 200 if report.valid else 422
    except Exception:
        current_app.logger.exception("Failed to validate sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/<int:sale_id>")
def get_sale_route(sale_id: int):
    sale = sales_service.get_sale(sale_id)
    if sale is None:
        return jsonify({"error": "Sale not found"}), 404
    return jsonify({"sale": sale.to_dict(include_lines=True)})


@sales_bp.get("/transactions/<transaction_id>")
def get_transaction_log_route(transaction_id: str):
    """Append-only phase log for one transaction id."""
    entries = get_transaction_logs(transaction_id)
    if not entries:
        return jsonify({"error": "Transaction not found"}), 404
    return jsonify({
        "transaction_id": transaction_id,
        "entries": [entry.to_dict() for entry in entries],
    })
