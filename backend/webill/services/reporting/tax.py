# Overview: Tax reports; GST summary, return, liability and compliance checks.

from __future__ import annotations

from decimal import Decimal

from sqlalchemy import case, func, or_

from webill.extensions import db
from webill.models import Invoice, Item, Party, Transaction, TransactionItem
from webill.time_utils import to_utc_z
from webill.validation import money_out

from . import metrics
from .common import ReportContext, dec, in_range, month_label, period_key, transaction_totals

DEFAULT_TYPE = "summary"
DEFAULT_PERIOD = "this-quarter"
FULL_QUARTER = True

HIGH_VALUE_THRESHOLD = Decimal("50000")
TAX_PAYMENT_CATEGORY = "Tax Payment"


def _lines(tx_type: str, period):
    return db.session.query(TransactionItem).join(
        Transaction, TransactionItem.transaction_id == Transaction.id
    ).filter(
        Transaction.type == tx_type,
        in_range(Transaction.date, period),
    ).all()


def _rate_dict(row: metrics.GstRateRow) -> dict:
    return {
        "rate": float(row.rate),
        "taxable_amount": money_out(row.taxable_amount),
        "cgst_amount": money_out(row.cgst_amount),
        "sgst_amount": money_out(row.sgst_amount),
        "igst_amount": money_out(row.igst_amount),
        "cess_amount": money_out(row.cess_amount),
        "total_gst_amount": money_out(row.total_gst_amount),
        "transaction_count": row.line_count,
    }


def issued_invoice_totals(period):
    """(count, subtotal, tax) over invoices issued in range and not cancelled."""
    count, subtotal, tax = db.session.query(
        func.count(Invoice.id),
        func.coalesce(func.sum(Invoice.subtotal), 0),
        func.coalesce(func.sum(Invoice.tax_amount), 0),
    ).filter(
        in_range(Invoice.issue_date, period),
        Invoice.status != "CANCELLED",
    ).one()
    return int(count or 0), dec(subtotal), dec(tax)


def summary(ctx: ReportContext) -> dict:
    period = ctx.period
    sales = transaction_totals("SALE", period)
    purchases = transaction_totals("PURCHASE", period)
    invoice_count, invoice_subtotal, invoice_tax = issued_invoice_totals(period)
    ctx.checkpoint()

    sales_by_rate = metrics.group_by_gst_rate(_lines("SALE", period))
    ctx.checkpoint()
    purchases_by_rate = metrics.group_by_gst_rate(_lines("PURCHASE", period))

    output_tax = sales.tax + invoice_tax
    input_tax = purchases.tax
    return {
        "period": period.to_dict(),
        "summary": {
            "output_gst": {
                "from_sales": money_out(sales.tax),
                "from_invoices": money_out(invoice_tax),
                "total": money_out(output_tax),
            },
            "input_gst": {
                "from_purchases": money_out(purchases.tax),
                "total": money_out(input_tax),
            },
            "net_gst_liability": money_out(output_tax - input_tax),
            "taxable_revenue": money_out(sales.subtotal + invoice_subtotal),
            "taxable_purchases": money_out(purchases.subtotal),
        },
        "breakdown": {
            "sales_gst_by_rate": [_rate_dict(row) for row in sales_by_rate],
            "purchase_gst_by_rate": [_rate_dict(row) for row in purchases_by_rate],
        },
        "transactions": {
            "sales_count": sales.count,
            "purchase_count": purchases.count,
            "invoice_count": invoice_count,
        },
    }


def _supplies(lines, *, include_exempt: bool) -> tuple[dict, Decimal]:
    """
    Group lines by flat tax rate. Taxable value backs the embedded tax out of
    the tax-inclusive line total. Zero-rated lines form one Exempt row.
    """
    groups: dict[Decimal, dict] = {}
    for line in lines:
        rate = dec(line.tax_rate)
        if rate <= 0:
            if not include_exempt:
                continue
            rate = metrics.ZERO
        entry = groups.setdefault(rate, {"value": metrics.ZERO, "tax": metrics.ZERO, "transactions": set()})
        entry["value"] += metrics.taxable_value(line.total_amount, rate)
        entry["tax"] += metrics.embedded_tax(line.total_amount, rate)
        entry["transactions"].add(line.transaction_id)

    total_value = sum((entry["value"] for entry in groups.values()), metrics.ZERO)
    total_tax = sum((entry["tax"] for entry in groups.values()), metrics.ZERO)
    block = {
        "supplies": [
            {
                "supply_type": "Taxable" if rate > 0 else "Exempt",
                "tax_rate": float(rate),
                "taxable_value": money_out(entry["value"]),
                "tax_amount": money_out(entry["tax"]),
                "invoice_count": len(entry["transactions"]),
            }
            for rate, entry in sorted(groups.items())
        ],
        "totals": {"taxable_value": money_out(total_value), "tax_amount": money_out(total_tax)},
    }
    return block, total_tax


def gst_return(ctx: ReportContext) -> dict:
    period = ctx.period
    outward, outward_tax = _supplies(_lines("SALE", period), include_exempt=True)
    ctx.checkpoint()
    inward, inward_tax = _supplies(_lines("PURCHASE", period), include_exempt=False)
    net = outward_tax - inward_tax
    return {
        "period": period.to_dict(),
        "gst_return": {
            "outward_supplies": outward,
            "inward_supplies": inward,
            "net_tax_liability": money_out(net),
        },
    }


def liability(ctx: ReportContext) -> dict:
    period = ctx.period
    month = period_key(Transaction.date, "month")
    output_tax = func.coalesce(
        func.sum(case((Transaction.type == "SALE", Transaction.tax_amount), else_=0)), 0
    )
    input_tax = func.coalesce(
        func.sum(case((Transaction.type == "PURCHASE", Transaction.tax_amount), else_=0)), 0
    )
    monthly = db.session.query(month, output_tax, input_tax).filter(
        Transaction.type.in_(("SALE", "PURCHASE")),
        in_range(Transaction.date, period),
    ).group_by(month).order_by(month).all()
    ctx.checkpoint()

    payments = db.session.query(Transaction).filter(
        Transaction.type == "EXPENSE",
        Transaction.category == TAX_PAYMENT_CATEGORY,
        in_range(Transaction.date, period),
    ).order_by(Transaction.date.desc()).all()

    breakdown = []
    total_output = total_input = metrics.ZERO
    for key, out_tax, in_tax in monthly:
        out_tax, in_tax = dec(out_tax), dec(in_tax)
        total_output += out_tax
        total_input += in_tax
        breakdown.append(
            {
                "month": key,
                "month_name": month_label(key),
                "output_tax": money_out(out_tax),
                "input_tax": money_out(in_tax),
                "net_liability": money_out(out_tax - in_tax),
            }
        )
    total_paid = sum((dec(p.total_amount) for p in payments), metrics.ZERO)
    net = total_output - total_input

    return {
        "period": period.to_dict(),
        "liability": {
            "total_output_tax": money_out(total_output),
            "total_input_tax": money_out(total_input),
            "total_net_liability": money_out(net),
            "total_tax_paid": money_out(total_paid),
            "outstanding_liability": money_out(net - total_paid),
        },
        "monthly_breakdown": breakdown,
        "tax_payments": [
            {
                "id": p.id,
                "date": to_utc_z(p.date),
                "amount": money_out(p.total_amount),
                "description": p.description,
                "reference": p.reference,
            }
            for p in payments
        ],
    }


def compliance(ctx: ReportContext) -> dict:
    period = ctx.period
    transactions_without_tax = db.session.query(func.count(Transaction.id)).filter(
        Transaction.type.in_(("SALE", "PURCHASE")),
        in_range(Transaction.date, period),
        Transaction.tax_amount == 0,
    ).scalar() or 0
    invoices_without_tax = db.session.query(func.count(Invoice.id)).filter(
        in_range(Invoice.issue_date, period),
        Invoice.tax_amount == 0,
        Invoice.status != "CANCELLED",
    ).scalar() or 0
    parties_without_tax_number = db.session.query(func.count(Party.id)).filter(
        Party.is_active.is_(True),
        or_(Party.tax_number.is_(None), Party.tax_number == ""),
    ).scalar() or 0
    items_without_tax_rate = db.session.query(func.count(Item.id)).filter(
        Item.is_active.is_(True),
        or_(Item.tax_rate.is_(None), Item.tax_rate == 0),
    ).scalar() or 0
    ctx.checkpoint()

    high_value = db.session.query(Transaction).filter(
        Transaction.type.in_(("SALE", "PURCHASE")),
        in_range(Transaction.date, period),
        Transaction.total_amount >= HIGH_VALUE_THRESHOLD,
    ).order_by(Transaction.total_amount.desc()).limit(20).all()

    counts = (
        int(transactions_without_tax),
        int(invoices_without_tax),
        int(parties_without_tax_number),
        int(items_without_tax_rate),
    )
    return {
        "period": period.to_dict(),
        "compliance": {
            "issues": {
                "transactions_without_tax": counts[0],
                "invoices_without_tax": counts[1],
                "parties_without_tax_number": counts[2],
                "items_without_tax_rate": counts[3],
            },
            "recommendations": metrics.compliance_recommendations(*counts),
            "compliance_score": metrics.compliance_score(*counts),
        },
        "high_value_transactions": [_high_value_dict(tx) for tx in high_value],
    }


def _high_value_dict(tx: Transaction) -> dict:
    party = tx.customer or tx.supplier
    return {
        "id": tx.id,
        "transaction_no": tx.transaction_no,
        "type": tx.type,
        "date": to_utc_z(tx.date),
        "total_amount": money_out(tx.total_amount),
        "tax_amount": money_out(tx.tax_amount),
        "party_name": party.name if party else "Unknown",
        "party_tax_number": party.tax_number if party else None,
        "tax_rate": metrics.pct(tx.tax_amount, tx.total_amount),
    }


REPORTS = {
    "summary": summary,
    "gst-return": gst_return,
    "liability": liability,
    "compliance": compliance,
}
