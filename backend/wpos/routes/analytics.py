# Overview: Flask API routes for analytics rollups; parses input and returns JSON responses.

"""
Analytics Routes

Read access to the daily, manufacturer and category rollups, plus the
operator actions that recover them (catch-up and full rebuild).
"""

import re
from datetime import date

from flask import Blueprint, current_app, jsonify, request

from ..services import analytics_service


analytics_bp = Blueprint("analytics", __name__, url_prefix="/api/analytics")

_MONTH_RE = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")


def _month_arg():
    month = request.args.get("month")
    if not month or not _MONTH_RE.match(month):
        return None
    return month


@analytics_bp.get("/daily/<day>")
def daily_route(day: str):
    try:
        parsed = date.fromisoformat(day)
    except ValueError:
        return jsonify({"error": "day must be YYYY-MM-DD"}), 400

    row = analytics_service.get_daily(parsed)
    if row is None:
        return jsonify({"error": "No analytics for this day"}), 404
    return jsonify({"daily": row.to_dict()})


@analytics_bp.get("/manufacturers")
def manufacturers_route():
    month = _month_arg()
    if month is None:
        return jsonify({"error": "month is required (YYYY-MM)"}), 400
    rows = analytics_service.list_manufacturers(month)
    return jsonify({"month": month, "manufacturers": [row.to_dict() for row in rows]})


@analytics_bp.get("/categories")
def categories_route():
    month = _month_arg()
    if month is None:
        return jsonify({"error": "month is required (YYYY-MM)"}), 400
    rows = analytics_service.list_categories(month)
    return jsonify({"month": month, "categories": [row.to_dict() for row in rows]})


@analytics_bp.post("/catch-up")
def catch_up_route():
    config = current_app.extensions["sale_engine_config"]
    try:
        applied = analytics_service.process_pending_sales(top_n=config.analytics_top_n)
        return jsonify({"processed_sales": applied})
    except Exception:
        current_app.logger.exception("Analytics catch-up failed")
        return jsonify({"error": "Internal server error"}), 500


@analytics_bp.post("/rebuild")
def rebuild_route():
    config = current_app.extensions["sale_engine_config"]
    try:
        applied = analytics_service.rebuild_analytics(top_n=config.analytics_top_n)
        return jsonify({"processed_sales": applied})
    except Exception:
        current_app.logger.exception("Analytics rebuild failed")
        return jsonify({"error": "Internal server error"}), 500
