# Overview: Service-layer operations for invoices; creation, replacement, deletion and payments.

from __future__ import annotations

import logging
import time
from datetime import timedelta
from decimal import Decimal
from typing import Any

from flask import current_app
from sqlalchemy import func, or_
from sqlalchemy.orm import selectinload

from ..extensions import db
from ..models import Invoice, InvoiceItem, Item, Party, Payment, Transaction
from ..models.transactions import PAYMENT_METHODS
from ..validation import (
    ZERO,
    ConflictError,
    NotFoundError,
    ValidationError,
    clean_str,
    optional_id,
    optional_money,
    parse_bool,
    to_choice,
    to_datetime,
    to_int_id,
    to_money,
    to_quantity,
    to_rate,
)
from webill.time_utils import utcnow
from .concurrency import begin_serialized_write, lock_for_update, run_with_retry
from .ledger_service import generate_payment_number, line_total

logger = logging.getLogger(__name__)


RECURRING_PERIODS = ("WEEKLY", "MONTHLY", "QUARTERLY", "YEARLY")
DEFAULT_TERMS_CONDITIONS = (
    "Payment is due within the specified period. Late payments may incur additional charges."
)


# =============================================================================
# Numbering
# =============================================================================

def generate_invoice_number(year: int | None = None) -> str:
    """INV-<year>-<last 6 digits of epoch ms>, bumped until unused."""
    year = year or utcnow().year
    seq = int(str(int(time.time() * 1000))[-6:])
    for _ in range(1000):
        candidate = f"INV-{year}-{seq:06d}"
        if not db.session.query(Invoice.id).filter_by(invoice_no=candidate).first():
            return candidate
        seq = (seq + 1) % 1_000_000
    raise ValidationError("Could not allocate an invoice number")


# =============================================================================
# Input parsing
# =============================================================================

def _parse_invoice_lines(raw_items: Any) -> list[dict]:
    if raw_items is None:
        return []
    if not isinstance(raw_items, list):
        raise ValidationError("items must be a list")
    lines = []
    for index, raw in enumerate(raw_items):
        if not isinstance(raw, dict):
            raise ValidationError(f"items[{index}] must be an object")
        quantity = to_quantity(raw.get("quantity"), f"items[{index}].quantity")
        unit_price = to_money(raw.get("unit_price"), f"items[{index}].unit_price")
        discount = optional_money(raw.get("discount"), f"items[{index}].discount")
        tax_rate = to_rate(raw.get("tax_rate"), f"items[{index}].tax_rate")
        lines.append({
            "item_id": optional_id(raw.get("item_id"), f"items[{index}].item_id"),
            "description": clean_str(raw.get("description"), 255),
            "quantity": quantity,
            "unit_price": unit_price,
            "discount": discount,
            "tax_rate": tax_rate,
            "total_amount": line_total(quantity, unit_price, discount, tax_rate),
        })
    return lines


def _derive_invoice_totals(lines: list[dict]) -> tuple[Decimal, Decimal, Decimal, Decimal]:
    subtotal = tax = discount = ZERO
    for line in lines:
        gross = line["quantity"] * line["unit_price"]
        subtotal += gross
        discount += line["discount"]
        tax += line["total_amount"] - (gross - line["discount"])
    return subtotal, tax, discount, subtotal - discount + tax


def _require_customer(customer_id: int) -> Party:
    party = db.session.get(Party, customer_id)
    if party is None:
        raise NotFoundError("Customer not found")
    if party.type != "CUSTOMER":
        raise ValidationError("Invoices can only be issued to customers")
    return party


def _require_items(lines: list[dict]) -> None:
    ids = {line["item_id"] for line in lines if line["item_id"] is not None}
    if not ids:
        return
    found = {row.id for row in db.session.query(Item.id).filter(Item.id.in_(ids)).all()}
    missing = sorted(ids - found)
    if missing:
        raise NotFoundError(f"Item not found: {missing[0]}")


def _build_invoice_lines(lines: list[dict]) -> list[InvoiceItem]:
    return [InvoiceItem(position=position, **line) for position, line in enumerate(lines)]


def _apply_header_fields(invoice: Invoice, data: dict) -> None:
    """Copy optional header fields present in the body onto the invoice."""
    text_fields = {
        "payment_terms": 64,
        "billing_address": None,
        "shipping_address": None,
        "po_number": 64,
        "reference": 128,
        "notes": None,
        "terms_conditions": None,
        "template": 32,
    }
    for key, max_len in text_fields.items():
        if key in data:
            setattr(invoice, key, clean_str(data.get(key), max_len))
    if not invoice.template:
        invoice.template = "modern"

    if "currency" in data:
        currency = clean_str(data.get("currency"), 8)
        invoice.currency = (currency or "USD").upper()
    if "exchange_rate" in data:
        rate = optional_money(data.get("exchange_rate"), "exchange_rate", default=Decimal("1"))
        if rate <= 0:
            raise ValidationError("exchange_rate must be positive")
        invoice.exchange_rate = rate
    if "is_recurring" in data:
        invoice.is_recurring = parse_bool(data.get("is_recurring"))
    if "recurring_period" in data:
        raw_period = data.get("recurring_period")
        invoice.recurring_period = to_choice(raw_period, "recurring_period", RECURRING_PERIODS) if raw_period else None
    if "next_invoice_date" in data:
        invoice.next_invoice_date = to_datetime(data.get("next_invoice_date"), "next_invoice_date")


def _hydrated_query():
    return db.session.query(Invoice).options(
        selectinload(Invoice.items).selectinload(InvoiceItem.item),
        selectinload(Invoice.payments),
        selectinload(Invoice.customer),
    )


# =============================================================================
# Reads
# =============================================================================

def get_invoice(invoice_id: int) -> Invoice:
    invoice = _hydrated_query().filter(Invoice.id == invoice_id).first()
    if not invoice:
        raise NotFoundError("Invoice not found")
    return invoice


def list_invoices(
    *,
    status: str | None = None,
    customer_id: int | None = None,
    search: str | None = None,
    page: int = 1,
    limit: int = 20,
) -> tuple[list[Invoice], int]:
    page = max(page, 1)
    limit = min(max(limit, 1), 200)

    query = db.session.query(Invoice)
    if status:
        query = query.filter(Invoice.status == status.upper())
    if customer_id:
        query = query.filter(Invoice.customer_id == customer_id)
    if search:
        pattern = f"%{search.strip().lower()}%"
        query = query.join(Party, Invoice.customer_id == Party.id).filter(
            or_(
                func.lower(Invoice.invoice_no).like(pattern),
                func.lower(Party.name).like(pattern),
                func.lower(Invoice.notes).like(pattern),
                func.lower(Invoice.po_number).like(pattern),
                func.lower(Invoice.reference).like(pattern),
            )
        )

    total = query.with_entities(func.count(Invoice.id)).scalar() or 0
    rows = (
        query.options(selectinload(Invoice.items), selectinload(Invoice.payments), selectinload(Invoice.customer))
        .order_by(Invoice.issue_date.desc(), Invoice.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return rows, int(total)


# =============================================================================
# Mutations
# =============================================================================

def create_invoice(data: dict) -> Invoice:
    """
    Create an invoice with its lines.

    due_date defaults to issue_date + payment_terms_days; totals are derived
    from the lines unless given explicitly.
    """
    if not isinstance(data, dict):
        raise ValidationError("JSON object body required")
    if data.get("customer_id") in (None, ""):
        raise ValidationError("customer_id is required")
    customer_id = to_int_id(data.get("customer_id"), "customer_id")
    transaction_id = optional_id(data.get("transaction_id"), "transaction_id")

    status = to_choice(data.get("status"), "status", ("DRAFT", "SENT"), "DRAFT")
    issue_date = to_datetime(data.get("issue_date"), "issue_date", default=utcnow())
    terms_days = data.get("payment_terms_days")
    if terms_days in (None, ""):
        terms_days = int(current_app.config.get("DEFAULT_PAYMENT_TERMS_DAYS", 30))
    else:
        terms_days = to_quantity(terms_days, "payment_terms_days")
    due_date = to_datetime(data.get("due_date"), "due_date", default=issue_date + timedelta(days=terms_days))
    if due_date < issue_date:
        raise ValidationError("due_date must not be before issue_date")

    lines = _parse_invoice_lines(data.get("items"))
    subtotal, tax, discount, total = _derive_invoice_totals(lines)
    total_amount = optional_money(data.get("total_amount"), "total_amount", default=total)
    paid_amount = optional_money(data.get("paid_amount"), "paid_amount")

    def _op():
        begin_serialized_write()
        customer = _require_customer(customer_id)
        _require_items(lines)
        if transaction_id is not None and db.session.get(Transaction, transaction_id) is None:
            raise NotFoundError("Transaction not found")

        invoice_no = clean_str(data.get("invoice_no"), 32)
        if invoice_no and db.session.query(Invoice.id).filter_by(invoice_no=invoice_no).first():
            raise ConflictError(f"Invoice number {invoice_no} already exists")

        invoice = Invoice(
            invoice_no=invoice_no or generate_invoice_number(issue_date.year),
            customer_id=customer.id,
            transaction_id=transaction_id,
            status=status,
            issue_date=issue_date,
            due_date=due_date,
            payment_terms_days=terms_days,
            payment_terms=f"Net {terms_days}",
            subtotal=optional_money(data.get("subtotal"), "subtotal", default=subtotal),
            tax_amount=optional_money(data.get("tax_amount"), "tax_amount", default=tax),
            discount_amount=optional_money(data.get("discount_amount"), "discount_amount", default=discount),
            total_amount=total_amount,
            paid_amount=paid_amount,
            billing_address=customer.address,
            shipping_address=customer.address,
            sent_date=utcnow() if status == "SENT" else None,
        )
        _apply_header_fields(invoice, data)
        invoice.items = _build_invoice_lines(lines)
        invoice.recompute_balance()
        db.session.add(invoice)
        db.session.commit()
        logger.info("Created invoice %s (total=%s)", invoice.invoice_no, invoice.total_amount)
        return invoice.id

    return get_invoice(run_with_retry(_op))


def update_invoice(invoice_id: int, data: dict) -> Invoice:
    """
    Replace invoice header fields and lines; balance is re-derived.

    A status in the body is routed through the lifecycle state machine.
    """
    from .invoice_lifecycle_service import apply_status_change

    if not isinstance(data, dict):
        raise ValidationError("JSON object body required")

    def _op():
        begin_serialized_write()
        invoice = lock_for_update(db.session.query(Invoice).filter_by(id=invoice_id)).first()
        if not invoice:
            raise NotFoundError("Invoice not found")
        if invoice.status in ("PAID", "CANCELLED"):
            raise ValidationError(f"Cannot edit a {invoice.status.lower()} invoice")

        if "customer_id" in data:
            invoice.customer_id = _require_customer(to_int_id(data.get("customer_id"), "customer_id")).id
        if "transaction_id" in data:
            transaction_id = optional_id(data.get("transaction_id"), "transaction_id")
            if transaction_id is not None and db.session.get(Transaction, transaction_id) is None:
                raise NotFoundError("Transaction not found")
            invoice.transaction_id = transaction_id

        if "issue_date" in data:
            invoice.issue_date = to_datetime(data.get("issue_date"), "issue_date", default=invoice.issue_date)
        if data.get("payment_terms_days") not in (None, ""):
            invoice.payment_terms_days = to_quantity(data.get("payment_terms_days"), "payment_terms_days")
            invoice.due_date = invoice.issue_date + timedelta(days=invoice.payment_terms_days)
        elif "due_date" in data:
            invoice.due_date = to_datetime(data.get("due_date"), "due_date", default=invoice.due_date)
        if invoice.due_date < invoice.issue_date:
            raise ValidationError("due_date must not be before issue_date")

        if "items" in data:
            lines = _parse_invoice_lines(data.get("items"))
            _require_items(lines)
            subtotal, tax, discount, total = _derive_invoice_totals(lines)
            invoice.items.clear()
            db.session.flush()
            invoice.items.extend(_build_invoice_lines(lines))
            invoice.subtotal, invoice.tax_amount, invoice.discount_amount, invoice.total_amount = (
                subtotal, tax, discount, total,
            )
        for key in ("subtotal", "tax_amount", "discount_amount", "total_amount", "paid_amount"):
            if data.get(key) not in (None, ""):
                setattr(invoice, key, to_money(data.get(key), key))

        _apply_header_fields(invoice, data)
        invoice.recompute_balance()

        if data.get("status"):
            apply_status_change(invoice, data.get("status"))

        db.session.commit()
        logger.info("Updated invoice %s", invoice.invoice_no)
        return invoice.id

    return get_invoice(run_with_retry(_op))


def delete_invoice(invoice_id: int) -> None:
    """Delete a DRAFT invoice (lines and payments cascade)."""
    def _op():
        begin_serialized_write()
        invoice = lock_for_update(db.session.query(Invoice).filter_by(id=invoice_id)).first()
        if not invoice:
            raise NotFoundError("Invoice not found")
        if invoice.status != "DRAFT":
            raise ValidationError("Only draft invoices can be deleted")
        invoice_no = invoice.invoice_no
        db.session.delete(invoice)
        db.session.commit()
        logger.info("Deleted invoice %s", invoice_no)

    run_with_retry(_op)


def create_invoice_from_transaction(transaction_id: int) -> Invoice:
    """Copy a SALE transaction into a Net-30 DRAFT invoice."""
    def _op():
        begin_serialized_write()
        tx = db.session.get(Transaction, transaction_id)
        if tx is None:
            raise NotFoundError("Transaction not found")
        if tx.type != "SALE":
            raise ValidationError("Only sales transactions can be converted to invoices")
        if tx.customer is None:
            raise ValidationError("Transaction must have a customer to create an invoice")
        existing = db.session.query(Invoice.id).filter_by(transaction_id=tx.id).first()
        if existing:
            raise ConflictError(f"Invoice already exists for this transaction (invoice {existing.id})")

        issue_date = utcnow()
        invoice = Invoice(
            invoice_no=generate_invoice_number(issue_date.year),
            customer_id=tx.customer_id,
            transaction_id=tx.id,
            status="DRAFT",
            issue_date=issue_date,
            due_date=issue_date + timedelta(days=30),
            payment_terms="Net 30",
            payment_terms_days=30,
            subtotal=tx.subtotal,
            tax_amount=tx.tax_amount,
            discount_amount=tx.discount_amount,
            total_amount=tx.total_amount,
            paid_amount=ZERO,
            notes=f"Invoice generated from transaction {tx.transaction_no}",
            terms_conditions=DEFAULT_TERMS_CONDITIONS,
            template="modern",
            currency="USD",
            exchange_rate=Decimal("1"),
            billing_address=tx.customer.address or "",
            shipping_address=tx.customer.address or "",
        )
        invoice.items = [
            InvoiceItem(
                position=line.position,
                item_id=line.item_id,
                quantity=line.quantity,
                unit_price=line.unit_price,
                discount=line.discount,
                tax_rate=line.tax_rate,
                total_amount=line.total_amount,
            )
            for line in tx.items
        ]
        invoice.recompute_balance()
        db.session.add(invoice)
        db.session.commit()
        logger.info("Created invoice %s from transaction %s", invoice.invoice_no, tx.transaction_no)
        return invoice.id

    return get_invoice(run_with_retry(_op))


def record_payment(invoice_id: int, data: dict) -> Invoice:
    """
    Record a completed payment against a SENT/OVERDUE invoice.

    The invoice moves to PAID when the payment completes the balance.
    """
    if not isinstance(data, dict):
        raise ValidationError("JSON object body required")
    amount = to_money(data.get("amount"), "amount")
    if amount <= 0:
        raise ValidationError("amount must be positive")
    method = to_choice(data.get("payment_method"), "payment_method", PAYMENT_METHODS)
    payment_date = to_datetime(data.get("payment_date"), "payment_date", default=utcnow())

    def _op():
        begin_serialized_write()
        invoice = lock_for_update(db.session.query(Invoice).filter_by(id=invoice_id)).first()
        if not invoice:
            raise NotFoundError("Invoice not found")
        if invoice.status not in ("SENT", "OVERDUE"):
            raise ValidationError(f"Cannot record a payment on a {invoice.status.lower()} invoice")
        if amount > invoice.balance_amount:
            raise ValidationError("amount exceeds the outstanding balance")

        invoice.payments.append(
            Payment(
                payment_no=generate_payment_number(),
                amount=amount,
                payment_date=payment_date,
                payment_method=method,
                status="COMPLETED",
                reference=clean_str(data.get("reference"), 128),
                notes=clean_str(data.get("notes")) or f"Payment for invoice {invoice.invoice_no}",
            )
        )
        invoice.paid_amount = (invoice.paid_amount or ZERO) + amount
        invoice.recompute_balance()
        if invoice.balance_amount == 0:
            invoice.status = "PAID"
            invoice.paid_date = payment_date
        db.session.commit()
        logger.info("Recorded payment of %s on invoice %s", amount, invoice.invoice_no)
        return invoice.id

    return get_invoice(run_with_retry(_op))
