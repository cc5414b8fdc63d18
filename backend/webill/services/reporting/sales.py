# Overview: Sales reports; overview with growth, time patterns, customer and product analysis.

from __future__ import annotations

from sqlalchemy import func

from webill.extensions import db
from webill.models import Category, Item, Party, Transaction, TransactionItem
from webill.validation import money_out

from . import metrics
from .common import ReportContext, dec, in_range, month_label, period_key, transaction_totals

DEFAULT_TYPE = "overview"
DAY_NAMES = ("Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday")


def _sales(period):
    return (Transaction.type == "SALE", in_range(Transaction.date, period))


def _breakdown(column, label: str, period, total) -> list[dict]:
    rows = db.session.query(
        column,
        func.count(Transaction.id),
        func.coalesce(func.sum(Transaction.total_amount), 0),
    ).filter(*_sales(period), column.isnot(None)).group_by(column).order_by(
        func.sum(Transaction.total_amount).desc()
    ).all()
    return [
        {label: key, "amount": money_out(amount), "count": int(count), "percentage": metrics.pct(amount, total)}
        for key, count, amount in rows
    ]


def grouped_sales(period, unit: str):
    """[(key, count, amount)] of SALE transactions grouped by a period unit."""
    key = period_key(Transaction.date, unit)
    return db.session.query(
        key,
        func.count(Transaction.id),
        func.coalesce(func.sum(Transaction.total_amount), 0),
    ).filter(*_sales(period)).group_by(key).order_by(key).all()


def overview(ctx: ReportContext) -> dict:
    period = ctx.period
    current = transaction_totals("SALE", period)
    previous = transaction_totals("SALE", period.previous())
    ctx.checkpoint()

    by_method = _breakdown(Transaction.payment_method, "method", period, current.total)
    by_status = _breakdown(Transaction.payment_status, "status", period, current.total)
    daily = grouped_sales(period, "day")

    return {
        "period": period.to_dict(),
        "overview": {
            "total_sales": money_out(current.total),
            "total_transactions": current.count,
            "average_order_value": money_out(current.average),
            "total_tax": money_out(current.tax),
            "total_discount": money_out(current.discount),
        },
        "comparison": {
            "previous_period": {
                "total_sales": money_out(previous.total),
                "total_transactions": previous.count,
            },
            "growth": {
                "sales_growth": metrics.growth_pct(current.total, previous.total),
                "transaction_growth": metrics.growth_pct(current.count, previous.count),
            },
        },
        "breakdown": {
            "by_payment_method": by_method,
            "by_payment_status": by_status,
        },
        "trends": {
            "daily": [
                {"date": day, "amount": money_out(amount), "transactions": int(count)}
                for day, count, amount in daily
            ],
        },
    }


def hourly_pattern(period) -> list[dict]:
    found = {int(hour): (int(count), amount) for hour, count, amount in grouped_sales(period, "hour")}
    pattern = []
    for hour in range(24):
        count, amount = found.get(hour, (0, 0))
        pattern.append({"hour": hour, "amount": money_out(amount), "transactions": count})
    return pattern


def trends(ctx: ReportContext) -> dict:
    period = ctx.period
    hourly = hourly_pattern(period)
    ctx.checkpoint()
    weekly = {int(day): (int(count), amount) for day, count, amount in grouped_sales(period, "weekday")}
    monthly = grouped_sales(period, "month")

    return {
        "period": period.to_dict(),
        "patterns": {
            "hourly": hourly,
            "weekly": [
                {
                    "day": day,
                    "day_name": DAY_NAMES[day],
                    "amount": money_out(weekly.get(day, (0, 0))[1]),
                    "transactions": weekly.get(day, (0, 0))[0],
                }
                for day in range(7)
            ],
            "monthly": [
                {
                    "month": key,
                    "month_name": month_label(key),
                    "amount": money_out(amount),
                    "transactions": int(count),
                }
                for key, count, amount in monthly
            ],
        },
    }


def customers(ctx: ReportContext) -> dict:
    period = ctx.period
    per_customer = db.session.query(
        Party,
        func.count(Transaction.id).label("tx_count"),
        func.coalesce(func.sum(Transaction.total_amount), 0).label("total"),
    ).join(Transaction, Transaction.customer_id == Party.id).filter(
        *_sales(period)
    ).group_by(Party.id).order_by(func.sum(Transaction.total_amount).desc()).all()
    ctx.checkpoint()

    new_customers = db.session.query(func.count(Party.id)).filter(
        Party.type == "CUSTOMER",
        in_range(Party.created_at, period),
    ).scalar() or 0
    repeat_customers = sum(1 for _, count, _ in per_customer if count > 1)

    return {
        "period": period.to_dict(),
        "top_customers": [
            {
                "customer_id": party.id,
                "customer_name": party.name,
                "customer_email": party.email,
                "customer_phone": party.phone,
                "total_sales": money_out(total),
                "total_transactions": int(count),
                "average_order_value": money_out(dec(total) / int(count)),
            }
            for party, count, total in per_customer[:10]
        ],
        "metrics": {
            "new_customers": int(new_customers),
            "repeat_customers": repeat_customers,
            "total_active_customers": len(per_customer),
        },
    }


def products(ctx: ReportContext) -> dict:
    period = ctx.period
    top = db.session.query(
        Item,
        func.coalesce(func.sum(TransactionItem.quantity), 0),
        func.coalesce(func.sum(TransactionItem.total_amount), 0),
        func.count(TransactionItem.id),
    ).join(TransactionItem, TransactionItem.item_id == Item.id).join(
        Transaction, TransactionItem.transaction_id == Transaction.id
    ).filter(*_sales(period)).group_by(Item.id).order_by(
        func.sum(TransactionItem.total_amount).desc()
    ).limit(20).all()
    ctx.checkpoint()

    by_category = db.session.query(
        Category.name,
        func.count(TransactionItem.id),
        func.coalesce(func.sum(TransactionItem.quantity), 0),
        func.coalesce(func.sum(TransactionItem.total_amount), 0),
    ).join(Item, Item.category_id == Category.id).join(
        TransactionItem, TransactionItem.item_id == Item.id
    ).join(Transaction, TransactionItem.transaction_id == Transaction.id).filter(
        *_sales(period)
    ).group_by(Category.id, Category.name).order_by(func.sum(TransactionItem.total_amount).desc()).all()

    rows = []
    for item, quantity, revenue, count in top:
        revenue = dec(revenue)
        # profit uses the recorded cost only; items without one show full revenue as profit
        profit = revenue - dec(item.cost_price) * int(quantity)
        rows.append(
            {
                "item_id": item.id,
                "product_name": item.name,
                "sku": item.sku,
                "category": item.category.name if item.category else None,
                "unit_price": money_out(item.unit_price),
                "cost_price": money_out(item.cost_price),
                "quantity_sold": int(quantity),
                "total_revenue": money_out(revenue),
                "total_profit": money_out(profit),
                "profit_margin": metrics.pct(profit, revenue),
                "sales_count": int(count),
            }
        )

    return {
        "period": period.to_dict(),
        "top_products": rows,
        "category_performance": [
            {
                "category_name": name,
                "total_sales": int(count),
                "total_quantity": int(quantity),
                "total_amount": money_out(amount),
            }
            for name, count, quantity, amount in by_category
        ],
    }


REPORTS = {
    "overview": overview,
    "trends": trends,
    "customers": customers,
    "products": products,
}
