# Overview: Flask API routes for point-of-sale analytics; daily register summary and range performance.

from flask import Blueprint, current_app, jsonify, request

from ..services import reporting
from ..validation import ValidationError


pos_bp = Blueprint("pos", __name__, url_prefix="/api/pos")


@pos_bp.get("/analytics")
def daily_analytics_route():
    try:
        return jsonify(reporting.run_pos_daily(request.args.get("date"))), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except reporting.ReportTimeoutError:
        return jsonify({"error": "Report timed out"}), 504
    except Exception:
        current_app.logger.exception("Failed to fetch POS analytics")
        return jsonify({"error": "Internal server error"}), 500


@pos_bp.post("/analytics")
def performance_route():
    try:
        return jsonify(reporting.run_pos_performance(request.get_json(silent=True))), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except reporting.ReportTimeoutError:
        return jsonify({"error": "Report timed out"}), 504
    except Exception:
        current_app.logger.exception("Failed to generate POS performance report")
        return jsonify({"error": "Internal server error"}), 500
