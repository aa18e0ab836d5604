# backend/wpos/routes/system.py
"""
System health and version endpoints.

Health covers the database and the sale engine's derived state, so an
operator can tell when analytics has fallen behind.
"""

import sys
import time
from datetime import timedelta

from flask import Blueprint, current_app

from ..extensions import db
from ..models import AnalyticsProcessedSale, Product, Sale, TransactionLog
from ..models.sales import SALE_STATUS_ACCEPTED
from ..services.transaction_log_service import PHASE_ERROR
from ..time_utils import to_utc_z, utcnow

system_bp = Blueprint("system", __name__, url_prefix="/api")


def _run_check(name: str, probe) -> dict:
    """
    Run one probe and wrap its result with status and latency.

    A probe returns (status, details). Any exception marks the check
    unhealthy; the traceback goes to the app log, not the response.
    """
    started = time.perf_counter()
    try:
        status, details = probe()
    except Exception:
        current_app.logger.exception("%s health check failed", name)
        return {
            "status": "unhealthy",
            "latency_ms": round((time.perf_counter() - started) * 1000, 2),
            "error": f"{name} error",
        }
    return {
        "status": status,
        "latency_ms": round((time.perf_counter() - started) * 1000, 2),
        "details": details,
    }


def _database_probe():
    return "healthy", {
        "products": db.session.query(Product).count(),
        "sales": db.session.query(Sale).count(),
    }


def _sale_engine_probe():
    # Degraded never blocks new sales; catch-up clears pending analytics.
    pending_analytics = (
        db.session.query(Sale.id)
        .outerjoin(AnalyticsProcessedSale, AnalyticsProcessedSale.sale_id == Sale.id)
        .filter(AnalyticsProcessedSale.id.is_(None), Sale.status == SALE_STATUS_ACCEPTED)
        .count()
    )
    errors_last_hour = (
        db.session.query(TransactionLog)
        .filter(
            TransactionLog.phase == PHASE_ERROR,
            TransactionLog.created_at >= utcnow() - timedelta(hours=1),
        )
        .count()
    )
    status = "degraded" if pending_analytics or errors_last_hour else "healthy"
    return status, {"pending_analytics": pending_analytics, "errors_last_hour": errors_last_hour}


@system_bp.get("/health")
def health():
    """
    Health check endpoint.

    Returns:
    - 200: healthy or degraded
    - 503: one or more checks unhealthy
    """
    started = time.perf_counter()
    checks = {
        "database": _run_check("Database", _database_probe),
        "sale_engine": _run_check("Sale engine", _sale_engine_probe),
    }

    statuses = {check["status"] for check in checks.values()}
    if "unhealthy" in statuses:
        overall, http_status = "unhealthy", 503
    elif "degraded" in statuses:
        overall, http_status = "degraded", 200
    else:
        overall, http_status = "healthy", 200

    return {
        "status": overall,
        "timestamp": to_utc_z(utcnow()),
        "total_latency_ms": round((time.perf_counter() - started) * 1000, 2),
        "checks": checks,
    }, http_status


@system_bp.get("/version")
def version():
    """Non-sensitive deployment info."""
    return {
        "api_version": "0.1.0",
        "environment": "development" if current_app.debug else "production",
        "python_version": sys.version.split()[0],
        "server_time": to_utc_z(utcnow()),
    }
