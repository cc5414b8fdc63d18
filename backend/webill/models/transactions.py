from __future__ import annotations

from ..extensions import db
from webill.time_utils import to_utc_z, utcnow
from webill.validation import money_out


TRANSACTION_TYPES = ("SALE", "PURCHASE", "EXPENSE", "INCOME")
PAYMENT_STATUSES = ("PENDING", "COMPLETED", "FAILED", "REFUNDED")
PAYMENT_METHODS = ("CASH", "CARD", "BANK_TRANSFER", "CHEQUE", "UPI", "WALLET")


class Transaction(db.Model):
    """
    Ledger transaction (SALE, PURCHASE, EXPENSE, INCOME).

    Only SALE/PURCHASE carry line items and move stock. Rows are replaced
    wholesale on update; items and payments are deleted with the row.
    """
    __tablename__ = "transactions"
    __table_args__ = (
        db.Index("ix_transactions_type_date", "type", "date"),
        db.Index("ix_transactions_type_status_date", "type", "payment_status", "date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    transaction_no = db.Column(db.String(32), nullable=False, unique=True)
    type = db.Column(db.String(16), nullable=False, index=True)
    date = db.Column(db.DateTime, nullable=False, index=True)

    customer_id = db.Column(db.Integer, db.ForeignKey("parties.id"), nullable=True, index=True)
    supplier_id = db.Column(db.Integer, db.ForeignKey("parties.id"), nullable=True, index=True)

    subtotal = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    tax_amount = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    discount_amount = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    total_amount = db.Column(db.Numeric(14, 2), nullable=False, default=0)

    payment_status = db.Column(db.String(16), nullable=False, default="PENDING", index=True)
    payment_method = db.Column(db.String(32), nullable=True)

    # EXPENSE/INCOME only
    category = db.Column(db.String(128), nullable=True)
    description = db.Column(db.Text, nullable=True)
    reference = db.Column(db.String(128), nullable=True)

    notes = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    customer = db.relationship("Party", foreign_keys=[customer_id])
    supplier = db.relationship("Party", foreign_keys=[supplier_id])
    items = db.relationship(
        "TransactionItem",
        back_populates="transaction",
        cascade="all, delete-orphan",
        order_by="TransactionItem.position",
    )
    payments = db.relationship(
        "Payment",
        back_populates="transaction",
        cascade="all, delete-orphan",
        order_by="Payment.payment_date",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "transaction_no": self.transaction_no,
            "type": self.type,
            "date": to_utc_z(self.date),
            "customer_id": self.customer_id,
            "supplier_id": self.supplier_id,
            "customer": self.customer.to_dict() if self.customer else None,
            "supplier": self.supplier.to_dict() if self.supplier else None,
            "subtotal": money_out(self.subtotal),
            "tax_amount": money_out(self.tax_amount),
            "discount_amount": money_out(self.discount_amount),
            "total_amount": money_out(self.total_amount),
            "payment_status": self.payment_status,
            "payment_method": self.payment_method,
            "category": self.category,
            "description": self.description,
            "reference": self.reference,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
        if include_items:
            data["items"] = [line.to_dict() for line in self.items]
            data["payments"] = [payment.to_dict() for payment in self.payments]
        return data


class TransactionItem(db.Model):
    """
    Line on a SALE/PURCHASE.

    total_amount = (quantity * unit_price - discount) * (1 + tax_rate / 100)
    """
    __tablename__ = "transaction_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    transaction_id = db.Column(
        db.Integer, db.ForeignKey("transactions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    item_id = db.Column(db.Integer, db.ForeignKey("items.id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False, default=0)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price = db.Column(db.Numeric(14, 2), nullable=False)
    discount = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    tax_rate = db.Column(db.Numeric(5, 2), nullable=False, default=0)
    total_amount = db.Column(db.Numeric(14, 2), nullable=False)

    # GST components (optional)
    cgst_rate = db.Column(db.Numeric(5, 2), nullable=True)
    sgst_rate = db.Column(db.Numeric(5, 2), nullable=True)
    igst_rate = db.Column(db.Numeric(5, 2), nullable=True)
    cess_rate = db.Column(db.Numeric(5, 2), nullable=True)
    cgst_amount = db.Column(db.Numeric(14, 2), nullable=True)
    sgst_amount = db.Column(db.Numeric(14, 2), nullable=True)
    igst_amount = db.Column(db.Numeric(14, 2), nullable=True)
    cess_amount = db.Column(db.Numeric(14, 2), nullable=True)

    transaction = db.relationship("Transaction", back_populates="items")
    item = db.relationship("Item")

    def to_dict(self) -> dict:
        def _opt(value):
            return float(value) if value is not None else None

        return {
            "id": self.id,
            "transaction_id": self.transaction_id,
            "item_id": self.item_id,
            "item": self.item.to_dict() if self.item else None,
            "quantity": self.quantity,
            "unit_price": money_out(self.unit_price),
            "discount": money_out(self.discount),
            "tax_rate": float(self.tax_rate or 0),
            "total_amount": money_out(self.total_amount),
            "cgst_rate": _opt(self.cgst_rate),
            "sgst_rate": _opt(self.sgst_rate),
            "igst_rate": _opt(self.igst_rate),
            "cess_rate": _opt(self.cess_rate),
            "cgst_amount": _opt(self.cgst_amount),
            "sgst_amount": _opt(self.sgst_amount),
            "igst_amount": _opt(self.igst_amount),
            "cess_amount": _opt(self.cess_amount),
        }


class Payment(db.Model):
    """
    Payment record, linked to exactly one of {invoice, transaction}.
    """
    __tablename__ = "payments"
    __table_args__ = (
        db.CheckConstraint(
            "(invoice_id IS NULL) <> (transaction_id IS NULL)",
            name="ck_payments_single_parent",
        ),
        db.Index("ix_payments_status_date", "status", "payment_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    payment_no = db.Column(db.String(32), nullable=False, index=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id", ondelete="CASCADE"), nullable=True, index=True)
    transaction_id = db.Column(
        db.Integer, db.ForeignKey("transactions.id", ondelete="CASCADE"), nullable=True, index=True
    )

    amount = db.Column(db.Numeric(14, 2), nullable=False)
    payment_date = db.Column(db.DateTime, nullable=False)
    payment_method = db.Column(db.String(32), nullable=False)
    status = db.Column(db.String(16), nullable=False, default="COMPLETED")  # PENDING, COMPLETED, FAILED, REFUNDED
    reference = db.Column(db.String(128), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    transaction = db.relationship("Transaction", back_populates="payments")
    invoice = db.relationship("Invoice", back_populates="payments")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "payment_no": self.payment_no,
            "invoice_id": self.invoice_id,
            "transaction_id": self.transaction_id,
            "amount": money_out(self.amount),
            "payment_date": to_utc_z(self.payment_date),
            "payment_method": self.payment_method,
            "status": self.status,
            "reference": self.reference,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }
