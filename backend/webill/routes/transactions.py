# Overview: Flask API routes for ledger transactions; parses input and returns JSON responses.

from flask import Blueprint, current_app, jsonify, request

from ..services import ledger_service
from ..validation import NotFoundError, ValidationError


transactions_bp = Blueprint("transactions", __name__, url_prefix="/api/transactions")


def _pagination(page: int, limit: int, total: int) -> dict:
    return {"page": page, "limit": limit, "total": total, "pages": -(-total // limit) if limit else 0}


@transactions_bp.get("")
def list_transactions_route():
    page = max(request.args.get("page", default=1, type=int), 1)
    limit = min(max(request.args.get("limit", default=20, type=int), 1), 200)
    raw_types = request.args.get("type")
    types = [t.strip().upper() for t in raw_types.split(",") if t.strip()] if raw_types else None

    try:
        rows, total = ledger_service.list_transactions(
            types=types,
            customer_id=request.args.get("customer_id", type=int),
            supplier_id=request.args.get("supplier_id", type=int),
            status=request.args.get("status"),
            search=request.args.get("search"),
            page=page,
            limit=limit,
        )
        return jsonify({
            "transactions": [tx.to_dict() for tx in rows],
            "pagination": _pagination(page, limit, total),
        }), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to list transactions")
        return jsonify({"error": "Internal server error"}), 500


@transactions_bp.post("")
def create_transaction_route():
    """
    Create a transaction with its lines.

    SALE/PURCHASE adjust stock in the same unit of work; a COMPLETED payment
    status with a payment method also records a Payment.
    """
    try:
        tx = ledger_service.create_transaction(request.get_json(silent=True))
        return jsonify(tx.to_dict()), 201
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to create transaction")
        return jsonify({"error": "Internal server error"}), 500


@transactions_bp.get("/<int:transaction_id>")
def get_transaction_route(transaction_id: int):
    try:
        return jsonify(ledger_service.get_transaction(transaction_id).to_dict()), 200
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to load transaction")
        return jsonify({"error": "Internal server error"}), 500


@transactions_bp.put("/<int:transaction_id>")
def update_transaction_route(transaction_id: int):
    """Full replace: old stock effect reversed, new one applied, in one unit."""
    try:
        tx = ledger_service.update_transaction(transaction_id, request.get_json(silent=True))
        return jsonify(tx.to_dict()), 200
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to update transaction")
        return jsonify({"error": "Internal server error"}), 500


@transactions_bp.delete("/<int:transaction_id>")
def delete_transaction_route(transaction_id: int):
    try:
        ledger_service.delete_transaction(transaction_id)
        return jsonify({"message": "Transaction deleted successfully"}), 200
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to delete transaction")
        return jsonify({"error": "Internal server error"}), 500
