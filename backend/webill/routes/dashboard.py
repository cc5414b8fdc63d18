# Overview: Flask API routes for dashboard widgets; headline stats and recent ledger activity.

from flask import Blueprint, current_app, jsonify, request

from ..services.reporting import dashboard


dashboard_bp = Blueprint("dashboard", __name__, url_prefix="/api/dashboard")


@dashboard_bp.get("/stats")
def stats_route():
    try:
        return jsonify(dashboard.dashboard_stats()), 200
    except Exception:
        current_app.logger.exception("Failed to fetch dashboard stats")
        return jsonify({"error": "Internal server error"}), 500


@dashboard_bp.get("/recent-transactions")
def recent_transactions_route():
    limit = min(max(request.args.get("limit", default=5, type=int), 1), 50)
    try:
        return jsonify(dashboard.recent_transactions(limit)), 200
    except Exception:
        current_app.logger.exception("Failed to fetch recent transactions")
        return jsonify({"error": "Internal server error"}), 500
