# Overview: Point-of-sale analytics; single-day register summary and range performance with comparison.

from __future__ import annotations

from datetime import datetime, timedelta

from sqlalchemy import func
from sqlalchemy.orm import selectinload

from webill.extensions import db
from webill.models import Item, Transaction, TransactionItem
from webill.services.period_service import DateRange, resolve_period
from webill.time_utils import end_of_day, start_of_day, to_utc_z, utcnow
from webill.validation import ValidationError, money_out, to_datetime

from . import metrics
from .common import dec, in_range, period_key

WALK_IN = "Walk-in Customer"


def _completed_sales(window: DateRange):
    return (
        Transaction.type == "SALE",
        Transaction.payment_status == "COMPLETED",
        in_range(Transaction.created_at, window),
    )


def daily_analytics(day: str | None = None, *, now: datetime | None = None, checkpoint=None) -> dict:
    """Register summary for one calendar day (completed sales by creation time)."""
    tick = checkpoint or (lambda: None)
    moment = to_datetime(day, "date", default=now or utcnow())
    window = DateRange(start_of_day(moment), end_of_day(moment))

    transactions = db.session.query(Transaction).options(
        selectinload(Transaction.items).selectinload(TransactionItem.item),
        selectinload(Transaction.customer),
    ).filter(*_completed_sales(window)).order_by(
        Transaction.created_at.desc(), Transaction.id.desc()
    ).all()
    tick()

    total_sales = sum((dec(tx.total_amount) for tx in transactions), metrics.ZERO)
    total_items = sum(line.quantity for tx in transactions for line in tx.items)
    count = len(transactions)

    methods: dict[str, dict] = {}
    items: dict[int, dict] = {}
    hourly = [{"hour": hour, "sales": metrics.ZERO, "transactions": 0} for hour in range(24)]
    for tx in transactions:
        method = methods.setdefault(
            tx.payment_method or "UNKNOWN",
            {"method": tx.payment_method or "UNKNOWN", "count": 0, "amount": metrics.ZERO},
        )
        method["count"] += 1
        method["amount"] += dec(tx.total_amount)

        slot = hourly[tx.created_at.hour]
        slot["sales"] += dec(tx.total_amount)
        slot["transactions"] += 1

        for line in tx.items:
            entry = items.setdefault(
                line.item_id,
                {"item": line.item, "quantity": 0, "revenue": metrics.ZERO, "transactions": set()},
            )
            entry["quantity"] += line.quantity
            entry["revenue"] += dec(line.total_amount)
            entry["transactions"].add(tx.id)

    payment_methods = sorted(methods.values(), key=lambda m: m["amount"], reverse=True)
    top_items = sorted(items.values(), key=lambda i: i["revenue"], reverse=True)[:10]
    # first hour wins ties
    peak = max(hourly, key=lambda h: h["sales"])
    popular = max(payment_methods, key=lambda m: m["count"]) if payment_methods else None

    def _item_ref(item: Item | None) -> dict | None:
        if item is None:
            return None
        return {"id": item.id, "name": item.name, "sku": item.sku}

    top_rows = [
        {
            "item": _item_ref(entry["item"]),
            "quantity": entry["quantity"],
            "revenue": money_out(entry["revenue"]),
            "transactions": len(entry["transactions"]),
        }
        for entry in top_items
    ]
    return {
        "today_sales": {
            "total_sales": money_out(total_sales),
            "total_transactions": count,
            "average_transaction": money_out(total_sales / count) if count else 0.0,
            "total_items": total_items,
        },
        "payment_methods": [
            {
                "method": m["method"],
                "count": m["count"],
                "amount": money_out(m["amount"]),
                "percentage": metrics.pct(m["amount"], total_sales),
            }
            for m in payment_methods
        ],
        "top_items": top_rows,
        "hourly_trends": [
            {"hour": h["hour"], "sales": money_out(h["sales"]), "transactions": h["transactions"]}
            for h in hourly
        ],
        "recent_transactions": [
            {
                "id": tx.id,
                "transaction_no": tx.transaction_no,
                "customer": {"name": tx.customer.name if tx.customer else WALK_IN},
                "total_amount": money_out(tx.total_amount),
                "payment_method": tx.payment_method,
                "created_at": to_utc_z(tx.created_at),
                "item_count": len(tx.items),
            }
            for tx in transactions[:10]
        ],
        "date": window.start.date().isoformat(),
        "summary": {
            "peak_hour": peak["hour"] if count else None,
            "most_popular_payment": popular["method"] if popular else None,
            "top_selling_item": top_rows[0]["item"] if top_rows else None,
        },
    }


# =============================================================================
# Range performance
# =============================================================================

def _range_metrics(window: DateRange) -> dict:
    count, total = db.session.query(
        func.count(Transaction.id),
        func.coalesce(func.sum(Transaction.total_amount), 0),
    ).filter(*_completed_sales(window)).one()
    items = db.session.query(func.coalesce(func.sum(TransactionItem.quantity), 0)).join(
        Transaction, TransactionItem.transaction_id == Transaction.id
    ).filter(*_completed_sales(window)).scalar()
    count, total, items = int(count or 0), dec(total), int(items or 0)
    return {
        "total_sales": total,
        "total_transactions": count,
        "total_items": items,
        "average_transaction": total / count if count else metrics.ZERO,
        "average_items_per_transaction": round(items / count, 2) if count else 0.0,
    }


def _metrics_out(m: dict) -> dict:
    return dict(m, total_sales=money_out(m["total_sales"]), average_transaction=money_out(m["average_transaction"]))


def _daily_breakdown(window: DateRange) -> list[dict]:
    day = period_key(Transaction.created_at, "day")
    sales = {
        key: (int(count), amount)
        for key, count, amount in db.session.query(
            day, func.count(Transaction.id), func.coalesce(func.sum(Transaction.total_amount), 0)
        ).filter(*_completed_sales(window)).group_by(day).all()
    }
    items = {
        key: int(quantity)
        for key, quantity in db.session.query(
            day, func.coalesce(func.sum(TransactionItem.quantity), 0)
        ).join(Transaction, TransactionItem.transaction_id == Transaction.id).filter(
            *_completed_sales(window)
        ).group_by(day).all()
    }

    rows = []
    current = window.start.date()
    while current <= window.end.date():
        key = current.isoformat()
        count, amount = sales.get(key, (0, 0))
        rows.append({"date": key, "sales": money_out(amount), "transactions": count, "items": items.get(key, 0)})
        current += timedelta(days=1)
    return rows


def performance(data: dict, *, now: datetime | None = None, checkpoint=None) -> dict:
    """Metrics and day-by-day breakdown over a range, optionally against a comparison range."""
    if not isinstance(data, dict):
        raise ValidationError("JSON object body required")
    tick = checkpoint or (lambda: None)
    if not data.get("start_date") or not data.get("end_date"):
        raise ValidationError("start_date and end_date are required")
    window = resolve_period(None, data["start_date"], data["end_date"], now=now)

    current = _range_metrics(window)
    tick()
    report = {
        "period": window.to_dict(),
        "metrics": _metrics_out(current),
        "daily_breakdown": _daily_breakdown(window),
    }

    compare = data.get("compare_with")
    if compare:
        if not isinstance(compare, dict) or not compare.get("start_date") or not compare.get("end_date"):
            raise ValidationError("compare_with requires start_date and end_date")
        tick()
        other_window = resolve_period(None, compare["start_date"], compare["end_date"], now=now)
        other = _range_metrics(other_window)
        report["comparison"] = {
            "period": other_window.to_dict(),
            "metrics": _metrics_out(other),
            "changes": {
                "sales_change": metrics.growth_pct(current["total_sales"], other["total_sales"]),
                "transactions_change": metrics.growth_pct(
                    current["total_transactions"], other["total_transactions"]
                ),
                "items_change": metrics.growth_pct(current["total_items"], other["total_items"]),
            },
        }

    report["generated_at"] = to_utc_z(now or utcnow())
    return report
