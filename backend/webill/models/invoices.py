from __future__ import annotations

from ..extensions import db
from webill.time_utils import to_utc_z, utcnow
from webill.validation import money_out


INVOICE_STATUSES = ("DRAFT", "SENT", "PAID", "OVERDUE", "CANCELLED")


class Invoice(db.Model):
    """
    Customer invoice.

    Invariant: balance_amount == max(0, total_amount - paid_amount). Every
    write path goes through recompute_balance() before flush.
    """
    __tablename__ = "invoices"
    __table_args__ = (
        db.Index("ix_invoices_status_due", "status", "due_date"),
        db.Index("ix_invoices_customer_issue", "customer_id", "issue_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    invoice_no = db.Column(db.String(32), nullable=False, unique=True)
    status = db.Column(db.String(16), nullable=False, default="DRAFT", index=True)

    customer_id = db.Column(db.Integer, db.ForeignKey("parties.id"), nullable=False, index=True)
    # Originating transaction (one-directional link)
    transaction_id = db.Column(
        db.Integer, db.ForeignKey("transactions.id", ondelete="SET NULL"), nullable=True, index=True
    )

    issue_date = db.Column(db.DateTime, nullable=False)
    due_date = db.Column(db.DateTime, nullable=False)
    payment_terms = db.Column(db.String(64), nullable=True)  # e.g. "Net 30"
    payment_terms_days = db.Column(db.Integer, nullable=False, default=30)

    subtotal = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    tax_amount = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    discount_amount = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    total_amount = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    paid_amount = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    balance_amount = db.Column(db.Numeric(14, 2), nullable=False, default=0)

    currency = db.Column(db.String(8), nullable=False, default="USD")
    exchange_rate = db.Column(db.Numeric(12, 6), nullable=False, default=1)

    billing_address = db.Column(db.Text, nullable=True)
    shipping_address = db.Column(db.Text, nullable=True)
    po_number = db.Column(db.String(64), nullable=True)
    reference = db.Column(db.String(128), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    terms_conditions = db.Column(db.Text, nullable=True)
    template = db.Column(db.String(32), nullable=False, default="modern")

    is_recurring = db.Column(db.Boolean, nullable=False, default=False)
    recurring_period = db.Column(db.String(16), nullable=True)  # WEEKLY, MONTHLY, QUARTERLY, YEARLY
    next_invoice_date = db.Column(db.DateTime, nullable=True)

    sent_date = db.Column(db.DateTime, nullable=True)
    paid_date = db.Column(db.DateTime, nullable=True)
    reminders_sent = db.Column(db.Integer, nullable=False, default=0)
    last_reminder_date = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    customer = db.relationship("Party")
    transaction = db.relationship("Transaction", backref=db.backref("invoices", lazy=True))
    items = db.relationship(
        "InvoiceItem",
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="InvoiceItem.position",
    )
    payments = db.relationship(
        "Payment",
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="Payment.payment_date",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def recompute_balance(self) -> None:
        balance = (self.total_amount or 0) - (self.paid_amount or 0)
        self.balance_amount = balance if balance > 0 else 0

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "invoice_no": self.invoice_no,
            "status": self.status,
            "customer_id": self.customer_id,
            "customer": self.customer.to_dict() if self.customer else None,
            "transaction_id": self.transaction_id,
            "issue_date": to_utc_z(self.issue_date),
            "due_date": to_utc_z(self.due_date),
            "payment_terms": self.payment_terms,
            "payment_terms_days": self.payment_terms_days,
            "subtotal": money_out(self.subtotal),
            "tax_amount": money_out(self.tax_amount),
            "discount_amount": money_out(self.discount_amount),
            "total_amount": money_out(self.total_amount),
            "paid_amount": money_out(self.paid_amount),
            "balance_amount": money_out(self.balance_amount),
            "currency": self.currency,
            "exchange_rate": float(self.exchange_rate) if self.exchange_rate is not None else 1.0,
            "billing_address": self.billing_address,
            "shipping_address": self.shipping_address,
            "po_number": self.po_number,
            "reference": self.reference,
            "notes": self.notes,
            "terms_conditions": self.terms_conditions,
            "template": self.template,
            "is_recurring": self.is_recurring,
            "recurring_period": self.recurring_period,
            "next_invoice_date": to_utc_z(self.next_invoice_date) if self.next_invoice_date else None,
            "sent_date": to_utc_z(self.sent_date) if self.sent_date else None,
            "paid_date": to_utc_z(self.paid_date) if self.paid_date else None,
            "reminders_sent": self.reminders_sent,
            "last_reminder_date": to_utc_z(self.last_reminder_date) if self.last_reminder_date else None,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
        if include_items:
            data["items"] = [line.to_dict() for line in self.items]
            data["payments"] = [payment.to_dict() for payment in self.payments]
        return data


class InvoiceItem(db.Model):
    """Individual line items on an invoice."""
    __tablename__ = "invoice_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True)
    item_id = db.Column(db.Integer, db.ForeignKey("items.id"), nullable=True, index=True)
    position = db.Column(db.Integer, nullable=False, default=0)

    description = db.Column(db.String(255), nullable=True)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price = db.Column(db.Numeric(14, 2), nullable=False)
    discount = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    tax_rate = db.Column(db.Numeric(5, 2), nullable=False, default=0)
    total_amount = db.Column(db.Numeric(14, 2), nullable=False)

    invoice = db.relationship("Invoice", back_populates="items")
    item = db.relationship("Item")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "item_id": self.item_id,
            "item_name": self.item.name if self.item else None,
            "description": self.description,
            "quantity": self.quantity,
            "unit_price": money_out(self.unit_price),
            "discount": money_out(self.discount),
            "tax_rate": float(self.tax_rate or 0),
            "total_amount": money_out(self.total_amount),
        }
