from __future__ import annotations

from ..extensions import db
from webill.time_utils import to_utc_z, utcnow
from webill.validation import money_out


class Item(db.Model):
    """
    Sellable product or service.

    stock_quantity is only meaningful when is_service is False, and it is
    changed exclusively by ledger mutations (transaction create/update/delete).
    """
    __tablename__ = "items"
    __table_args__ = (
        db.Index("ix_items_active_service", "is_active", "is_service"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    sku = db.Column(db.String(64), nullable=True, unique=True)
    description = db.Column(db.Text, nullable=True)
    category_id = db.Column(db.Integer, db.ForeignKey("categories.id"), nullable=True, index=True)

    unit_price = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    cost_price = db.Column(db.Numeric(14, 2), nullable=True)  # falls back to unit_price
    tax_rate = db.Column(db.Numeric(5, 2), nullable=True)

    stock_quantity = db.Column(db.Integer, nullable=False, default=0)
    min_stock = db.Column(db.Integer, nullable=False, default=0)

    is_service = db.Column(db.Boolean, nullable=False, default=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    category = db.relationship("Category", backref=db.backref("items", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def effective_cost(self):
        return self.cost_price if self.cost_price is not None else self.unit_price

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "sku": self.sku,
            "description": self.description,
            "category_id": self.category_id,
            "category": self.category.to_dict() if self.category else None,
            "unit_price": money_out(self.unit_price),
            "cost_price": money_out(self.cost_price) if self.cost_price is not None else None,
            "tax_rate": float(self.tax_rate) if self.tax_rate is not None else None,
            "stock_quantity": self.stock_quantity,
            "min_stock": self.min_stock,
            "is_service": self.is_service,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "version_id": self.version_id,
        }
