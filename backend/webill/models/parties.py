from __future__ import annotations

from ..extensions import db
from webill.time_utils import to_utc_z, utcnow
from webill.validation import money_out


class Party(db.Model):
    """
    Customer or supplier.

    Referenced (never owned) by transactions and invoices.
    """
    __tablename__ = "parties"
    __table_args__ = (
        db.Index("ix_parties_type_name", "type", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    type = db.Column(db.String(16), nullable=False, index=True)  # CUSTOMER, SUPPLIER
    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=True, unique=True)
    phone = db.Column(db.String(64), nullable=True)
    address = db.Column(db.Text, nullable=True)
    tax_number = db.Column(db.String(64), nullable=True)

    credit_limit = db.Column(db.Numeric(14, 2), nullable=True)
    payment_terms = db.Column(db.Integer, nullable=True)  # days

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "address": self.address,
            "tax_number": self.tax_number,
            "credit_limit": money_out(self.credit_limit) if self.credit_limit is not None else None,
            "payment_terms": self.payment_terms,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Category(db.Model):
    """Item category."""
    __tablename__ = "categories"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False, unique=True)
    description = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
        }
