# WeBill API Tests - Ledger Transactions
#
# Tests for:
# - Sale creation and stock deduction
# - Purchase receiving
# - Transaction updates (stock reconciliation)
# - Transaction deletion (stock restore)
# - Validation and not-found errors

import pytest

from tests.conftest import APIClient, TestFailure, assert_response


def _stock_of(transaction: dict, item_id: int) -> int:
    for line in transaction["items"]:
        if line["item_id"] == item_id:
            return line["item"]["stock_quantity"]
    raise TestFailure(
        scenario="Transaction lines should include the item",
        expected=f"A line for item {item_id}",
        actual=f"Lines: {transaction['items']}",
        likely_cause="Line serialization dropped the nested item",
        code_location="backend/webill/models/transactions.py:TransactionItem.to_dict",
    )


class TestTransactionLifecycle:
    """Create, update and delete keep stock consistent."""

    @pytest.mark.smoke
    @pytest.mark.ledger
    def test_health(self, client: APIClient):
        """
        SCENARIO: Server is up
        EXPECTED: HTTP 200 with status healthy
        """
        response = client.get("/health")
        assert_response(
            response, 200,
            scenario="Health check",
            code_location="backend/webill/routes/system.py:health",
            expected_body_contains="healthy",
        )

    @pytest.mark.ledger
    def test_sale_round_trip_restores_stock(self, client: APIClient, seed):
        """
        SCENARIO: Sell 3 desks, change the sale to 1 desk, then delete it
        EXPECTED: Stock drops by 3, recovers 2 on update, then the sale is gone
        """
        desk_id = seed.item_ids["DESK-001"]
        sale_body = {
            "type": "SALE",
            "customer_id": seed.customer_id,
            "payment_status": "COMPLETED",
            "payment_method": "CARD",
            "items": [{"item_id": desk_id, "quantity": 3, "unit_price": "299.99"}],
        }

        response = client.post("/api/transactions", json=sale_body)
        assert_response(
            response, 201,
            scenario="Create sale",
            code_location="backend/webill/routes/transactions.py:create_transaction_route",
        )
        sale = response.json()
        stock_after_sale = _stock_of(sale, desk_id)

        sale_body["items"][0]["quantity"] = 1
        response = client.put(f"/api/transactions/{sale['id']}", json=sale_body)
        assert_response(
            response, 200,
            scenario="Reduce sale quantity",
            code_location="backend/webill/services/ledger_service.py:update_transaction",
        )
        updated = response.json()
        if _stock_of(updated, desk_id) != stock_after_sale + 2:
            raise TestFailure(
                scenario="Updating a sale from 3 to 1 units",
                expected=f"stock = {stock_after_sale + 2}",
                actual=f"stock = {_stock_of(updated, desk_id)}",
                likely_cause="Old lines not reversed before new lines applied",
                code_location="backend/webill/services/ledger_service.py:update_transaction",
                response=response,
            )

        response = client.delete(f"/api/transactions/{sale['id']}")
        assert_response(
            response, 200,
            scenario="Delete sale",
            code_location="backend/webill/routes/transactions.py:delete_transaction_route",
            expected_body_contains="Transaction deleted successfully",
        )

        response = client.get(f"/api/transactions/{sale['id']}")
        assert_response(
            response, 404,
            scenario="Deleted sale is gone",
            code_location="backend/webill/services/ledger_service.py:delete_transaction",
        )

    @pytest.mark.ledger
    def test_pending_purchase_totals(self, client: APIClient, seed):
        """
        SCENARIO: Buy 5 licenses from the supplier
        EXPECTED: HTTP 201, total 999.95, no payment recorded while pending
        """
        license_id = seed.item_ids["SW-001"]
        response = client.post("/api/transactions", json={
            "type": "PURCHASE",
            "supplier_id": seed.supplier_id,
            "items": [{"item_id": license_id, "quantity": 5, "unit_price": "199.99"}],
        })
        assert_response(
            response, 201,
            scenario="Create purchase",
            code_location="backend/webill/routes/transactions.py:create_transaction_route",
        )
        purchase = response.json()
        if purchase["total_amount"] != 999.95 or purchase["payments"]:
            raise TestFailure(
                scenario="Pending purchase totals",
                expected="total_amount = 999.95 and no payments",
                actual=f"total_amount = {purchase['total_amount']}, payments = {purchase['payments']}",
                likely_cause="Totals or payment creation rule changed",
                code_location="backend/webill/services/ledger_service.py:create_transaction",
                response=response,
            )
        client.delete(f"/api/transactions/{purchase['id']}")


class TestTransactionValidation:
    """Rejected writes leave the ledger untouched."""

    @pytest.mark.ledger
    @pytest.mark.parametrize("body", [
        {"type": "SALE", "items": []},
        {"type": "EXPENSE", "amount": "12.00"},
        {"type": "REFUND", "amount": "1.00"},
    ])
    def test_invalid_body_is_400(self, client: APIClient, body):
        """
        SCENARIO: Post a malformed transaction
        EXPECTED: HTTP 400 with an error message
        """
        response = client.post("/api/transactions", json=body)
        assert_response(
            response, 400,
            scenario=f"Invalid transaction {body}",
            code_location="backend/webill/services/ledger_service.py:parse_transaction_payload",
            expected_body_contains="error",
        )

    @pytest.mark.ledger
    def test_unknown_item_is_404(self, client: APIClient):
        response = client.post("/api/transactions", json={
            "type": "SALE",
            "items": [{"item_id": 987654, "quantity": 1, "unit_price": "1.00"}],
        })
        assert_response(
            response, 404,
            scenario="Sale of an unknown item",
            code_location="backend/webill/services/ledger_service.py:create_transaction",
        )
