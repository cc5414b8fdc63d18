# Overview: Ledger mutation service; creates, replaces and deletes transactions with coupled stock effects.

"""
WeBill Ledger Mutation Service

================================================================================
PURPOSE: The only writer of Transaction rows and of Item.stock_quantity
================================================================================

Every public mutation runs as ONE atomic unit (a single DB transaction,
serialized per item by row locks / BEGIN IMMEDIATE on SQLite and by
optimistic item versioning). Any failure rolls back every step.

CREATE:  insert transaction -> insert lines -> apply +delta(new)
         -> insert COMPLETED payment (when paid with a method)
UPDATE:  lock -> apply -delta(old) -> drop old lines -> write fields + lines
         -> apply +delta(new)
DELETE:  lock -> apply -delta(old) -> delete row (lines and payments cascade)

delta() is inventory_service.compute_stock_delta; the old delta is always
derived from the RECORDED type and lines, never from the request.
"""

from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Iterable

from sqlalchemy import func, or_
from sqlalchemy.orm import aliased, selectinload

from ..extensions import db
from ..models import Item, Party, Payment, Transaction, TransactionItem
from ..models.transactions import PAYMENT_METHODS, PAYMENT_STATUSES, TRANSACTION_TYPES
from ..validation import (
    CENT,
    ZERO,
    NotFoundError,
    ValidationError,
    clean_str,
    optional_id,
    optional_money,
    optional_rate,
    to_choice,
    to_datetime,
    to_int_id,
    to_money,
    to_quantity,
    to_rate,
)
from ..time_utils import utcnow
from .concurrency import begin_serialized_write, lock_for_update, run_with_retry
from .inventory_service import (
    apply_stock_delta,
    compute_stock_delta,
    invert_delta,
    load_items_for_update,
    merge_deltas,
)

logger = logging.getLogger(__name__)


ITEMIZED_TYPES = ("SALE", "PURCHASE")
AMOUNT_TYPES = ("EXPENSE", "INCOME")
GST_COMPONENTS = ("cgst", "sgst", "igst", "cess")


# =============================================================================
# Input parsing
# =============================================================================

@dataclass
class LineInput:
    item_id: int
    quantity: int
    unit_price: Decimal
    discount: Decimal = ZERO
    tax_rate: Decimal = ZERO
    gst_rates: dict[str, Decimal | None] = field(default_factory=dict)

    @property
    def taxable_amount(self) -> Decimal:
        return self.quantity * self.unit_price - self.discount

    @property
    def tax_amount(self) -> Decimal:
        return (self.taxable_amount * self.tax_rate / 100).quantize(CENT, rounding=ROUND_HALF_UP)

    @property
    def total_amount(self) -> Decimal:
        return line_total(self.quantity, self.unit_price, self.discount, self.tax_rate)

    def component_amount(self, component: str) -> Decimal | None:
        rate = self.gst_rates.get(component)
        if rate is None:
            return None
        return (self.taxable_amount * rate / 100).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass
class TransactionInput:
    type: str
    date: datetime
    payment_status: str
    payment_method: str | None
    subtotal: Decimal
    tax_amount: Decimal
    discount_amount: Decimal
    total_amount: Decimal
    customer_id: int | None = None
    supplier_id: int | None = None
    category: str | None = None
    description: str | None = None
    reference: str | None = None
    notes: str | None = None
    payment_reference: str | None = None
    payment_notes: str | None = None
    lines: list[LineInput] = field(default_factory=list)


def line_total(quantity: int, unit_price: Decimal, discount: Decimal, tax_rate: Decimal) -> Decimal:
    """(quantity * unit_price - discount) * (1 + tax_rate / 100), rounded to cents."""
    gross = (Decimal(quantity) * unit_price - discount) * (1 + tax_rate / Decimal(100))
    return gross.quantize(CENT, rounding=ROUND_HALF_UP)


def parse_lines(raw_items: Any) -> list[LineInput]:
    if not isinstance(raw_items, list) or not raw_items:
        raise ValidationError("items must be a non-empty list")
    lines = []
    for index, raw in enumerate(raw_items):
        if not isinstance(raw, dict):
            raise ValidationError(f"items[{index}] must be an object")
        line = LineInput(
            item_id=to_int_id(raw.get("item_id"), f"items[{index}].item_id"),
            quantity=to_quantity(raw.get("quantity"), f"items[{index}].quantity"),
            unit_price=to_money(raw.get("unit_price"), f"items[{index}].unit_price"),
            discount=optional_money(raw.get("discount"), f"items[{index}].discount"),
            tax_rate=to_rate(raw.get("tax_rate"), f"items[{index}].tax_rate"),
            gst_rates={
                component: optional_rate(raw.get(f"{component}_rate"), f"items[{index}].{component}_rate")
                for component in GST_COMPONENTS
            },
        )
        if line.taxable_amount < 0:
            raise ValidationError(f"items[{index}].discount exceeds line amount")
        lines.append(line)
    return lines


def derive_totals(lines: Iterable[LineInput]) -> tuple[Decimal, Decimal, Decimal, Decimal]:
    """(subtotal, tax_amount, discount_amount, total_amount) from lines."""
    subtotal = tax = discount = ZERO
    for line in lines:
        subtotal += line.quantity * line.unit_price
        discount += line.discount
        tax += line.tax_amount
    total = subtotal - discount + tax
    return subtotal, tax, discount, total


def _field(data: dict, key: str, current: Transaction | None):
    if key in data:
        return data[key]
    if current is not None:
        return getattr(current, key)
    return None


def parse_transaction_payload(data: dict, current: Transaction | None = None) -> TransactionInput:
    """
    Validate a create/replace body.

    On replace, omitted scalar fields keep the current values; lines are
    always taken from the body.
    """
    if not isinstance(data, dict):
        raise ValidationError("JSON object body required")

    tx_type = to_choice(_field(data, "type", current), "type", TRANSACTION_TYPES)
    tx_date = to_datetime(data.get("date"), "date", default=current.date if current else utcnow())
    payment_status = to_choice(_field(data, "payment_status", current), "payment_status", PAYMENT_STATUSES, "PENDING")
    raw_method = _field(data, "payment_method", current)
    payment_method = to_choice(raw_method, "payment_method", PAYMENT_METHODS) if raw_method else None

    common = dict(
        type=tx_type,
        date=tx_date,
        payment_status=payment_status,
        payment_method=payment_method,
        reference=clean_str(_field(data, "reference", current), 128),
        notes=clean_str(_field(data, "notes", current)),
        payment_reference=clean_str(data.get("payment_reference"), 128),
        payment_notes=clean_str(data.get("payment_notes")),
    )

    if tx_type in AMOUNT_TYPES:
        raw_amount = data.get("amount", data.get("total_amount"))
        if raw_amount is None and current is not None and current.type == tx_type:
            raw_amount = current.total_amount
        if raw_amount is None:
            raise ValidationError(f"amount is required for {tx_type}")
        amount = to_money(raw_amount, "amount")
        category = clean_str(_field(data, "category", current), 128)
        if not category:
            raise ValidationError(f"category is required for {tx_type}")
        return TransactionInput(
            subtotal=amount,
            tax_amount=ZERO,
            discount_amount=ZERO,
            total_amount=amount,
            category=category,
            description=clean_str(_field(data, "description", current)),
            **common,
        )

    if "items" not in data:
        raise ValidationError(f"items are required for {tx_type}")
    lines = parse_lines(data.get("items"))
    subtotal, tax, discount, total = derive_totals(lines)

    customer_id = optional_id(_field(data, "customer_id", current), "customer_id")
    supplier_id = optional_id(_field(data, "supplier_id", current), "supplier_id")
    if customer_id and supplier_id:
        raise ValidationError("customer_id and supplier_id are mutually exclusive")

    return TransactionInput(
        subtotal=optional_money(data.get("subtotal"), "subtotal", default=subtotal),
        tax_amount=optional_money(data.get("tax_amount"), "tax_amount", default=tax),
        discount_amount=optional_money(data.get("discount_amount"), "discount_amount", default=discount),
        total_amount=optional_money(data.get("total_amount"), "total_amount", default=total),
        customer_id=customer_id,
        supplier_id=supplier_id,
        lines=lines,
        **common,
    )


# =============================================================================
# Numbering
# =============================================================================

def generate_transaction_number(tx_type: str) -> str:
    """<TYP>-<last 6 digits of epoch ms>-<3 random digits>, unique in the store."""
    prefix = tx_type[:3].upper()
    for _ in range(10):
        stamp = str(int(time.time() * 1000))[-6:]
        candidate = f"{prefix}-{stamp}-{random.randint(0, 999):03d}"
        exists = db.session.query(Transaction.id).filter_by(transaction_no=candidate).first()
        if not exists:
            return candidate
    raise ValidationError("Could not allocate a transaction number")


def generate_payment_number() -> str:
    return f"PAY-{int(time.time() * 1000)}"


# =============================================================================
# Helpers
# =============================================================================

def _require_party(party_id: int | None, label: str) -> None:
    if party_id is None:
        return
    if db.session.get(Party, party_id) is None:
        raise NotFoundError(f"{label} not found")


def _write_fields(tx: Transaction, payload: TransactionInput) -> None:
    tx.type = payload.type
    tx.date = payload.date
    tx.subtotal = payload.subtotal
    tx.tax_amount = payload.tax_amount
    tx.discount_amount = payload.discount_amount
    tx.total_amount = payload.total_amount
    tx.payment_status = payload.payment_status
    tx.payment_method = payload.payment_method
    tx.reference = payload.reference
    tx.notes = payload.notes
    if payload.type in AMOUNT_TYPES:
        tx.customer_id = None
        tx.supplier_id = None
        tx.category = payload.category
        tx.description = payload.description
    else:
        tx.customer_id = payload.customer_id
        tx.supplier_id = payload.supplier_id
        tx.category = None
        tx.description = None


def _build_lines(lines: list[LineInput]) -> list[TransactionItem]:
    rows = []
    for position, line in enumerate(lines):
        row = TransactionItem(
            item_id=line.item_id,
            position=position,
            quantity=line.quantity,
            unit_price=line.unit_price,
            discount=line.discount,
            tax_rate=line.tax_rate,
            total_amount=line.total_amount,
        )
        for component in GST_COMPONENTS:
            setattr(row, f"{component}_rate", line.gst_rates.get(component))
            setattr(row, f"{component}_amount", line.component_amount(component))
        rows.append(row)
    return rows


def _hydrated_query():
    return db.session.query(Transaction).options(
        selectinload(Transaction.items).selectinload(TransactionItem.item).selectinload(Item.category),
        selectinload(Transaction.payments),
        selectinload(Transaction.customer),
        selectinload(Transaction.supplier),
    )


# =============================================================================
# Reads
# =============================================================================

def get_transaction(transaction_id: int) -> Transaction:
    tx = _hydrated_query().filter(Transaction.id == transaction_id).first()
    if not tx:
        raise NotFoundError("Transaction not found")
    return tx


def list_transactions(
    *,
    types: list[str] | None = None,
    customer_id: int | None = None,
    supplier_id: int | None = None,
    status: str | None = None,
    search: str | None = None,
    page: int = 1,
    limit: int = 20,
) -> tuple[list[Transaction], int]:
    page = max(page, 1)
    limit = min(max(limit, 1), 200)

    query = db.session.query(Transaction)
    if types:
        bad = [t for t in types if t not in TRANSACTION_TYPES]
        if bad:
            raise ValidationError(f"Unknown transaction type: {bad[0]}")
        query = query.filter(Transaction.type.in_(types))
    if customer_id:
        query = query.filter(Transaction.customer_id == customer_id)
    if supplier_id:
        query = query.filter(Transaction.supplier_id == supplier_id)
    if status:
        query = query.filter(Transaction.payment_status == status.upper())
    if search:
        customer = aliased(Party)
        supplier = aliased(Party)
        pattern = f"%{search.strip().lower()}%"
        query = (
            query.outerjoin(customer, Transaction.customer_id == customer.id)
            .outerjoin(supplier, Transaction.supplier_id == supplier.id)
            .filter(
                or_(
                    func.lower(Transaction.transaction_no).like(pattern),
                    func.lower(customer.name).like(pattern),
                    func.lower(supplier.name).like(pattern),
                    func.lower(Transaction.notes).like(pattern),
                )
            )
        )

    total = query.with_entities(func.count(func.distinct(Transaction.id))).scalar() or 0
    rows = (
        query.options(
            selectinload(Transaction.items).selectinload(TransactionItem.item),
            selectinload(Transaction.payments),
        )
        .order_by(Transaction.date.desc(), Transaction.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return rows, int(total)


# =============================================================================
# Mutations
# =============================================================================

def create_transaction(data: dict) -> Transaction:
    """Create a transaction with its lines, stock effect and optional payment."""
    payload = parse_transaction_payload(data)

    def _op():
        begin_serialized_write()
        _require_party(payload.customer_id, "Customer")
        _require_party(payload.supplier_id, "Supplier")

        items = load_items_for_update(line.item_id for line in payload.lines)

        tx = Transaction(transaction_no=generate_transaction_number(payload.type))
        _write_fields(tx, payload)
        tx.items = _build_lines(payload.lines)
        db.session.add(tx)

        apply_stock_delta(compute_stock_delta(payload.type, payload.lines), items)

        if payload.payment_status == "COMPLETED" and payload.payment_method:
            tx.payments.append(
                Payment(
                    payment_no=generate_payment_number(),
                    amount=payload.total_amount,
                    payment_date=utcnow(),
                    payment_method=payload.payment_method,
                    status="COMPLETED",
                    reference=payload.payment_reference,
                    notes=payload.payment_notes,
                )
            )

        db.session.commit()
        logger.info("Created transaction %s (%s, total=%s)", tx.transaction_no, tx.type, tx.total_amount)
        return tx.id

    tx_id = run_with_retry(_op)
    return get_transaction(tx_id)


def update_transaction(transaction_id: int, data: dict) -> Transaction:
    """
    Full replace of a transaction.

    Reverts the recorded stock effect, swaps lines and fields, then applies
    the new effect; all in one unit.
    """
    def _op():
        begin_serialized_write()
        tx = lock_for_update(db.session.query(Transaction).filter_by(id=transaction_id)).first()
        if not tx:
            raise NotFoundError("Transaction not found")

        payload = parse_transaction_payload(data, current=tx)
        _require_party(payload.customer_id, "Customer")
        _require_party(payload.supplier_id, "Supplier")

        old_delta = compute_stock_delta(tx.type, tx.items)
        new_delta = compute_stock_delta(payload.type, payload.lines)
        items = load_items_for_update(
            merge_deltas(old_delta, {line.item_id: 0 for line in payload.lines}).keys()
        )

        apply_stock_delta(invert_delta(old_delta), items)

        tx.items.clear()
        db.session.flush()

        _write_fields(tx, payload)
        tx.items.extend(_build_lines(payload.lines))

        apply_stock_delta(new_delta, items)

        db.session.commit()
        logger.info("Updated transaction %s (%s, total=%s)", tx.transaction_no, tx.type, tx.total_amount)
        return tx.id

    tx_id = run_with_retry(_op)
    return get_transaction(tx_id)


def delete_transaction(transaction_id: int) -> None:
    """Revert the recorded stock effect and delete the transaction."""
    def _op():
        begin_serialized_write()
        tx = lock_for_update(db.session.query(Transaction).filter_by(id=transaction_id)).first()
        if not tx:
            raise NotFoundError("Transaction not found")

        apply_stock_delta(invert_delta(compute_stock_delta(tx.type, tx.items)))

        transaction_no = tx.transaction_no
        db.session.delete(tx)
        db.session.commit()
        logger.info("Deleted transaction %s", transaction_no)

    run_with_retry(_op)
