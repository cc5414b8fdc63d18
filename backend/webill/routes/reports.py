# Overview: Flask API routes for reports; one endpoint per reporting domain, selected by ?type=.

from flask import Blueprint, current_app, jsonify, request

from ..services import reporting
from ..validation import ValidationError


reports_bp = Blueprint("reports", __name__, url_prefix="/api/reports")


@reports_bp.get("/<domain>")
def domain_report(domain: str):
    """
    Query params:
        type        report within the domain (domain default when omitted)
        period      today | yesterday | this-week | this-month | last-month |
                    this-quarter | this-year | last-year
        start_date, end_date   explicit inclusive range, wins over period
    Other params are passed through to the report (e.g. party_type).
    """
    if domain not in reporting.DOMAINS:
        return jsonify({"error": f"Unknown report domain '{domain}'"}), 404

    try:
        report = reporting.run_report(domain, request.args.get("type"), request.args)
        return jsonify(report), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except reporting.ReportTimeoutError:
        return jsonify({"error": "Report timed out"}), 504
    except Exception:
        current_app.logger.exception("Failed to generate %s report", domain)
        return jsonify({"error": "Internal server error"}), 500
