# Overview: Flask API routes for invoices; CRUD, status transitions, payments, reminders and analytics.

from flask import Blueprint, current_app, jsonify, request

from ..services import invoice_lifecycle_service, invoice_service, reporting
from ..validation import ConflictError, NotFoundError, ValidationError


invoices_bp = Blueprint("invoices", __name__, url_prefix="/api/invoices")


@invoices_bp.get("")
def list_invoices_route():
    page = max(request.args.get("page", default=1, type=int), 1)
    limit = min(max(request.args.get("limit", default=20, type=int), 1), 200)
    try:
        rows, total = invoice_service.list_invoices(
            status=request.args.get("status"),
            customer_id=request.args.get("customer_id", type=int),
            search=request.args.get("search"),
            page=page,
            limit=limit,
        )
        return jsonify({
            "invoices": [invoice.to_dict() for invoice in rows],
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "pages": -(-total // limit),
            },
        }), 200
    except Exception:
        current_app.logger.exception("Failed to list invoices")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.post("")
def create_invoice_route():
    try:
        invoice = invoice_service.create_invoice(request.get_json(silent=True))
        return jsonify(invoice.to_dict()), 201
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to create invoice")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.get("/analytics")
def invoice_analytics_route():
    try:
        return jsonify(reporting.run_invoice_analytics(request.args)), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except reporting.ReportTimeoutError:
        return jsonify({"error": "Report timed out"}), 504
    except Exception:
        current_app.logger.exception("Failed to build invoice analytics")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.post("/from-transaction")
def invoice_from_transaction_route():
    """Issue a DRAFT Net-30 invoice copying a customer SALE."""
    data = request.get_json(silent=True) or {}
    if data.get("transaction_id") in (None, ""):
        return jsonify({"error": "transaction_id is required"}), 400
    try:
        transaction_id = int(data["transaction_id"])
    except (TypeError, ValueError):
        return jsonify({"error": "transaction_id must be an integer id"}), 400

    try:
        invoice = invoice_service.create_invoice_from_transaction(transaction_id)
        return jsonify({
            "message": "Invoice created successfully from transaction",
            "invoice": invoice.to_dict(),
        }), 201
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to create invoice from transaction")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.get("/<int:invoice_id>")
def get_invoice_route(invoice_id: int):
    try:
        return jsonify(invoice_service.get_invoice(invoice_id).to_dict()), 200
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404


@invoices_bp.put("/<int:invoice_id>")
def update_invoice_route(invoice_id: int):
    try:
        invoice = invoice_service.update_invoice(invoice_id, request.get_json(silent=True))
        return jsonify(invoice.to_dict()), 200
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to update invoice")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.delete("/<int:invoice_id>")
def delete_invoice_route(invoice_id: int):
    try:
        invoice_service.delete_invoice(invoice_id)
        return jsonify({"message": "Invoice deleted successfully"}), 200
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to delete invoice")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.get("/<int:invoice_id>/status")
def get_invoice_status_route(invoice_id: int):
    try:
        invoice = invoice_service.get_invoice(invoice_id)
        return jsonify({
            "invoice": invoice.to_dict(),
            "analytics": invoice_lifecycle_service.status_analytics(invoice),
        }), 200
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404


@invoices_bp.put("/<int:invoice_id>/status")
def update_invoice_status_route(invoice_id: int):
    """
    Move an invoice through its status machine.

    PAID and CANCELLED are terminal; an invalid transition is a 400 and
    leaves the invoice unchanged.
    """
    try:
        invoice = invoice_lifecycle_service.transition_status(invoice_id, request.get_json(silent=True))
        return jsonify({
            "message": f"Invoice status updated to {invoice.status}",
            "invoice": invoice.to_dict(),
        }), 200
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to update invoice status")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.post("/<int:invoice_id>/payments")
def record_invoice_payment_route(invoice_id: int):
    try:
        invoice = invoice_service.record_payment(invoice_id, request.get_json(silent=True))
        return jsonify(invoice.to_dict()), 201
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to record invoice payment")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.post("/<int:invoice_id>/reminder")
def send_reminder_route(invoice_id: int):
    data = request.get_json(silent=True) or {}
    try:
        result = invoice_lifecycle_service.generate_reminder(
            invoice_id,
            data.get("reminder_type") or "payment",
            data.get("custom_message"),
        )
        return jsonify(result), 200
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to send invoice reminder")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.get("/<int:invoice_id>/reminder")
def reminder_info_route(invoice_id: int):
    try:
        return jsonify(invoice_lifecycle_service.get_reminder_info(invoice_id)), 200
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
