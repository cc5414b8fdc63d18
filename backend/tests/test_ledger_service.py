"""
Ledger mutation tests.

Verifies:
- Stock moves only through transaction create / update / delete
- Update reverts the old effect before applying the new one
- Failed mutations leave stock and rows untouched
- Derived totals follow the line formula
"""

from decimal import Decimal

import pytest
from webill.extensions import db
from webill.models import Item, Payment, Transaction, TransactionItem
from webill.services import ledger_service
from webill.services.inventory_service import compute_stock_delta, invert_delta, merge_deltas
from webill.validation import NotFoundError, ValidationError


def _stock(item_id):
    return db.session.get(Item, item_id).stock_quantity


def _sale(item_id, quantity, unit_price="8.00", **extra):
    line = {"item_id": item_id, "quantity": quantity, "unit_price": unit_price}
    line.update(extra.pop("line", {}))
    body = {"type": "SALE", "items": [line]}
    body.update(extra)
    return body


def _purchase(item_id, quantity, unit_price="5.00", **extra):
    body = _sale(item_id, quantity, unit_price, **extra)
    body["type"] = "PURCHASE"
    return body


# =============================================================================
# PURE STOCK DELTAS
# =============================================================================


class TestStockDelta:

    class Line:
        def __init__(self, item_id, quantity):
            self.item_id = item_id
            self.quantity = quantity

    def test_sale_is_negative_purchase_positive(self):
        lines = [self.Line(1, 3), self.Line(2, 1)]
        assert compute_stock_delta("SALE", lines) == {1: -3, 2: -1}
        assert compute_stock_delta("PURCHASE", lines) == {1: 3, 2: 1}

    def test_amount_types_do_not_move_stock(self):
        assert compute_stock_delta("EXPENSE", [self.Line(1, 3)]) == {}
        assert compute_stock_delta("INCOME", [self.Line(1, 3)]) == {}

    def test_repeated_item_lines_are_summed(self):
        assert compute_stock_delta("SALE", [self.Line(1, 2), self.Line(1, 5)]) == {1: -7}

    def test_invert_and_merge_cancel(self):
        delta = {1: -3, 2: 4}
        assert merge_deltas(delta, invert_delta(delta)) == {1: 0, 2: 0}


# =============================================================================
# CREATE / UPDATE / DELETE
# =============================================================================


class TestStockRoundTrip:

    def test_create_update_delete_restores_stock(self, make_item):
        item = make_item("Gadget", "8.00", stock=20)

        tx = ledger_service.create_transaction(_sale(item.id, 5))
        assert _stock(item.id) == 15

        ledger_service.update_transaction(tx.id, _sale(item.id, 3))
        assert _stock(item.id) == 17

        ledger_service.delete_transaction(tx.id)
        assert _stock(item.id) == 20
        assert db.session.get(Transaction, tx.id) is None

    def test_update_is_idempotent(self, make_item):
        item = make_item("Gadget", "8.00", stock=20)
        tx = ledger_service.create_transaction(_sale(item.id, 5))

        ledger_service.update_transaction(tx.id, _sale(item.id, 4))
        once = _stock(item.id)
        ledger_service.update_transaction(tx.id, _sale(item.id, 4))

        assert once == 16
        assert _stock(item.id) == once

    def test_type_change_reverses_direction(self, make_item):
        item = make_item("Gadget", "8.00", stock=20)
        tx = ledger_service.create_transaction(_sale(item.id, 5))

        ledger_service.update_transaction(tx.id, _purchase(item.id, 5))

        assert _stock(item.id) == 25

    def test_update_to_expense_drops_lines_and_stock_effect(self, make_item):
        item = make_item("Gadget", "8.00", stock=20)
        tx = ledger_service.create_transaction(_sale(item.id, 5))

        updated = ledger_service.update_transaction(
            tx.id, {"type": "EXPENSE", "amount": "12.50", "category": "Rent"}
        )

        assert _stock(item.id) == 20
        assert updated.items == []
        assert updated.total_amount == Decimal("12.50")
        assert updated.customer_id is None

    def test_moving_lines_between_items(self, make_item):
        first = make_item("First", "8.00", stock=10)
        second = make_item("Second", "8.00", stock=10)
        tx = ledger_service.create_transaction(_sale(first.id, 4))

        ledger_service.update_transaction(tx.id, _sale(second.id, 2))

        assert _stock(first.id) == 10
        assert _stock(second.id) == 8

    def test_service_items_never_move_stock(self, make_item):
        service = make_item("Consulting", "100.00", stock=0, is_service=True)

        ledger_service.create_transaction(_sale(service.id, 3))

        assert _stock(service.id) == 0

    def test_sales_may_drive_stock_negative(self, make_item):
        item = make_item("Gadget", "8.00", stock=1)

        ledger_service.create_transaction(_sale(item.id, 3))

        assert _stock(item.id) == -2


class TestPurchaseThenSale:

    def test_end_to_end_stock_and_totals(self, db_session, customer, supplier, widget):
        ledger_service.create_transaction(_purchase(widget.id, 10, "5.00", supplier_id=supplier.id))
        assert _stock(widget.id) == 10

        sale = ledger_service.create_transaction(
            _sale(widget.id, 4, "8.00", customer_id=customer.id, line={"tax_rate": 10})
        )

        assert _stock(widget.id) == 6
        assert sale.subtotal == Decimal("32.00")
        assert sale.tax_amount == Decimal("3.20")
        assert sale.total_amount == Decimal("35.20")
        assert sale.items[0].total_amount == Decimal("35.20")

        ledger_service.delete_transaction(sale.id)
        assert _stock(widget.id) == 10

    def test_discount_is_taken_before_tax(self, db_session, widget):
        sale = ledger_service.create_transaction(
            _sale(widget.id, 2, "10.00", line={"discount": "5.00", "tax_rate": 10})
        )
        # (2 * 10 - 5) * 1.10
        assert sale.total_amount == Decimal("16.50")
        assert sale.discount_amount == Decimal("5.00")

    def test_gst_components_recorded(self, db_session, widget):
        sale = ledger_service.create_transaction(
            _sale(widget.id, 1, "100.00", line={"tax_rate": 18, "cgst_rate": 9, "sgst_rate": 9})
        )
        line = sale.items[0]
        assert line.cgst_amount == Decimal("9.00")
        assert line.sgst_amount == Decimal("9.00")
        assert line.igst_amount is None


class TestPayments:

    def test_completed_with_method_records_payment(self, db_session, customer, widget):
        sale = ledger_service.create_transaction(
            _sale(widget.id, 2, customer_id=customer.id, payment_status="COMPLETED", payment_method="cash")
        )

        assert len(sale.payments) == 1
        payment = sale.payments[0]
        assert payment.amount == sale.total_amount
        assert payment.payment_method == "CASH"
        assert payment.status == "COMPLETED"

    def test_pending_records_no_payment(self, db_session, widget):
        ledger_service.create_transaction(_sale(widget.id, 2, payment_method="CASH"))
        assert db.session.query(Payment).count() == 0

    def test_delete_removes_payments_and_lines(self, db_session, widget):
        sale = ledger_service.create_transaction(
            _sale(widget.id, 2, payment_status="COMPLETED", payment_method="CARD")
        )
        ledger_service.delete_transaction(sale.id)

        assert db.session.query(Payment).count() == 0
        assert db.session.query(TransactionItem).count() == 0


# =============================================================================
# FAILURES LEAVE NOTHING BEHIND
# =============================================================================


class TestAtomicity:

    def test_unknown_item_rolls_back_whole_create(self, db_session, widget):
        body = {
            "type": "PURCHASE",
            "items": [
                {"item_id": widget.id, "quantity": 5, "unit_price": "5.00"},
                {"item_id": 999999, "quantity": 1, "unit_price": "5.00"},
            ],
        }
        with pytest.raises(NotFoundError):
            ledger_service.create_transaction(body)

        assert _stock(widget.id) == 0
        assert db.session.query(Transaction).count() == 0

    def test_failed_update_keeps_previous_state(self, db_session, widget):
        tx = ledger_service.create_transaction(_purchase(widget.id, 5))

        with pytest.raises(NotFoundError):
            ledger_service.update_transaction(tx.id, _purchase(999999, 1))

        assert _stock(widget.id) == 5
        assert [line.quantity for line in ledger_service.get_transaction(tx.id).items] == [5]

    def test_unknown_customer(self, db_session, widget):
        with pytest.raises(NotFoundError):
            ledger_service.create_transaction(_sale(widget.id, 1, customer_id=424242))
        assert _stock(widget.id) == 0

    def test_missing_transaction(self, db_session):
        with pytest.raises(NotFoundError):
            ledger_service.update_transaction(12345, {"type": "EXPENSE", "amount": 1, "category": "x"})
        with pytest.raises(NotFoundError):
            ledger_service.delete_transaction(12345)


class TestValidation:

    @pytest.mark.parametrize(
        "line",
        [
            {"quantity": 0},
            {"quantity": 1.5},
            {"quantity": "two"},
            {"unit_price": "-1"},
            {"tax_rate": 101},
            {"discount": "100.00"},
        ],
    )
    def test_bad_line_rejected(self, db_session, widget, line):
        body = {"type": "SALE", "items": [{"item_id": widget.id, "quantity": 1, "unit_price": "8.00", **line}]}
        with pytest.raises(ValidationError):
            ledger_service.create_transaction(body)

    def test_customer_and_supplier_are_exclusive(self, db_session, customer, supplier, widget):
        with pytest.raises(ValidationError):
            ledger_service.create_transaction(_sale(widget.id, 1, customer_id=customer.id, supplier_id=supplier.id))

    def test_itemized_types_need_items(self, db_session):
        with pytest.raises(ValidationError):
            ledger_service.create_transaction({"type": "SALE"})
        with pytest.raises(ValidationError):
            ledger_service.create_transaction({"type": "PURCHASE", "items": []})

    def test_expense_needs_amount_and_category(self, db_session):
        with pytest.raises(ValidationError):
            ledger_service.create_transaction({"type": "EXPENSE", "category": "Rent"})
        with pytest.raises(ValidationError):
            ledger_service.create_transaction({"type": "EXPENSE", "amount": "10.00"})

    def test_unknown_type_rejected(self, db_session):
        with pytest.raises(ValidationError):
            ledger_service.create_transaction({"type": "REFUND", "amount": 1, "category": "x"})


# =============================================================================
# LISTING
# =============================================================================


class TestListTransactions:

    def test_filters_and_search(self, db_session, customer, supplier, widget):
        ledger_service.create_transaction(_purchase(widget.id, 10, supplier_id=supplier.id))
        ledger_service.create_transaction(_sale(widget.id, 1, customer_id=customer.id))
        ledger_service.create_transaction({"type": "INCOME", "amount": "50.00", "category": "Interest"})

        rows, total = ledger_service.list_transactions(types=["SALE", "PURCHASE"])
        assert total == 2
        assert {row.type for row in rows} == {"SALE", "PURCHASE"}

        rows, total = ledger_service.list_transactions(search="acme")
        assert total == 1
        assert rows[0].customer_id == customer.id

        rows, total = ledger_service.list_transactions(supplier_id=supplier.id)
        assert total == 1

    def test_pagination(self, db_session):
        for _ in range(3):
            ledger_service.create_transaction({"type": "EXPENSE", "amount": "1.00", "category": "Misc"})

        rows, total = ledger_service.list_transactions(page=2, limit=2)

        assert total == 3
        assert len(rows) == 1

    def test_unknown_type_filter(self, db_session):
        with pytest.raises(ValidationError):
            ledger_service.list_transactions(types=["GIFT"])
