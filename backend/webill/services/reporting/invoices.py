# Overview: Invoice analytics; collection summary, status mix, overdue list, trends and aging.

from __future__ import annotations

from datetime import datetime, timedelta

from sqlalchemy import case, func

from webill.extensions import db
from webill.models import Invoice, Party, Payment
from webill.services.invoice_lifecycle_service import days_overdue
from webill.services.period_service import DateRange
from webill.time_utils import add_months, start_of_month, to_utc_z, utcnow
from webill.validation import money_out, optional_id, to_quantity

from . import metrics
from .common import dec, month_label, period_key

DEFAULT_DAYS = 30
OPEN_STATUSES = ("SENT", "OVERDUE")


def parse_params(params) -> tuple[int, int | None]:
    raw_days = params.get("period")
    days = to_quantity(raw_days, "period") if raw_days not in (None, "") else DEFAULT_DAYS
    return days, optional_id(params.get("customer_id"), "customer_id")


def _scoped(query, since: datetime, customer_id: int | None):
    query = query.filter(Invoice.created_at >= since)
    if customer_id is not None:
        query = query.filter(Invoice.customer_id == customer_id)
    return query


def _summary(since, customer_id) -> dict:
    paid_revenue = func.coalesce(
        func.sum(case((Invoice.status == "PAID", Invoice.paid_amount), else_=0)), 0
    )
    outstanding = func.coalesce(
        func.sum(case((Invoice.status.in_(OPEN_STATUSES), Invoice.balance_amount), else_=0)), 0
    )
    overdue = func.coalesce(
        func.sum(case((Invoice.status == "OVERDUE", Invoice.balance_amount), else_=0)), 0
    )
    count, total, paid, open_balance, overdue_balance = _scoped(
        db.session.query(
            func.count(Invoice.id),
            func.coalesce(func.sum(Invoice.total_amount), 0),
            paid_revenue,
            outstanding,
            overdue,
        ),
        since,
        customer_id,
    ).one()

    # issue -> payment delay over completed invoice payments in scope
    delays = _scoped(
        db.session.query(Payment.payment_date, Invoice.issue_date).join(
            Invoice, Payment.invoice_id == Invoice.id
        ).filter(Payment.status == "COMPLETED"),
        since,
        customer_id,
    ).all()
    avg_days = (
        sum((paid_on - issued) / timedelta(days=1) for paid_on, issued in delays) / len(delays)
        if delays else 0.0
    )

    count = int(count or 0)
    total = dec(total)
    return {
        "total_invoices": count,
        "total_revenue": money_out(total),
        "paid_revenue": money_out(paid),
        "outstanding_revenue": money_out(open_balance),
        "overdue_revenue": money_out(overdue_balance),
        "average_invoice_value": money_out(total / count) if count else 0.0,
        "collection_efficiency": metrics.pct(paid, total),
        "avg_days_to_payment": round(avg_days, 1),
    }


def _status_breakdown(since, customer_id) -> list[dict]:
    rows = _scoped(
        db.session.query(
            Invoice.status,
            func.count(Invoice.id),
            func.coalesce(func.sum(Invoice.total_amount), 0),
            func.coalesce(func.sum(Invoice.balance_amount), 0),
        ),
        since,
        customer_id,
    ).group_by(Invoice.status).order_by(Invoice.status).all()
    return [
        {
            "status": status,
            "count": int(count),
            "total_amount": money_out(total),
            "outstanding_amount": money_out(balance),
        }
        for status, count, total, balance in rows
    ]


def _payment_stats(since, customer_id) -> dict:
    base = _scoped(
        db.session.query(Payment).join(Invoice, Payment.invoice_id == Invoice.id).filter(
            Payment.status == "COMPLETED"
        ),
        since,
        customer_id,
    )
    count, total, average = base.with_entities(
        func.count(Payment.id),
        func.coalesce(func.sum(Payment.amount), 0),
        func.avg(Payment.amount),
    ).one()
    by_method = base.with_entities(
        Payment.payment_method,
        func.count(Payment.id),
        func.coalesce(func.sum(Payment.amount), 0),
    ).group_by(Payment.payment_method).order_by(func.sum(Payment.amount).desc()).all()
    return {
        "total_payments": int(count or 0),
        "total_paid": money_out(total),
        "average_payment": money_out(average),
        "by_method": [
            {"method": method, "count": int(n), "amount": money_out(amount)}
            for method, n, amount in by_method
        ],
    }


def _overdue_invoices(since, customer_id, now) -> list[dict]:
    rows = _scoped(
        db.session.query(Invoice).filter(Invoice.status == "OVERDUE", Invoice.due_date < now),
        since,
        customer_id,
    ).order_by(Invoice.due_date.asc()).limit(10).all()
    return [
        {
            "id": invoice.id,
            "invoice_no": invoice.invoice_no,
            "customer_name": invoice.customer.name if invoice.customer else None,
            "total_amount": money_out(invoice.total_amount),
            "balance_amount": money_out(invoice.balance_amount),
            "due_date": to_utc_z(invoice.due_date),
            "days_overdue": days_overdue(invoice.due_date, now),
        }
        for invoice in rows
    ]


def _monthly_trends(customer_id, now) -> list[dict]:
    window = DateRange(start_of_month(add_months(now, -11)), now)
    month = period_key(Invoice.issue_date, "month")
    query = db.session.query(
        month,
        func.count(Invoice.id),
        func.coalesce(func.sum(Invoice.total_amount), 0),
        func.coalesce(func.sum(Invoice.paid_amount), 0),
        func.coalesce(func.sum(Invoice.balance_amount), 0),
    ).filter(Invoice.issue_date.between(window.start, window.end))
    if customer_id is not None:
        query = query.filter(Invoice.customer_id == customer_id)
    rows = query.group_by(month).order_by(month).all()
    return [
        {
            "month": key,
            "month_name": month_label(key),
            "invoice_count": int(count),
            "total_revenue": money_out(total),
            "paid_revenue": money_out(paid),
            "outstanding_revenue": money_out(balance),
        }
        for key, count, total, paid, balance in rows
    ]


def _top_customers(since, customer_id) -> list[dict]:
    rows = _scoped(
        db.session.query(
            Party.id,
            Party.name,
            Party.email,
            func.count(Invoice.id),
            func.coalesce(func.sum(Invoice.total_amount), 0),
            func.coalesce(func.sum(Invoice.paid_amount), 0),
            func.coalesce(func.sum(Invoice.balance_amount), 0),
        ).join(Invoice, Invoice.customer_id == Party.id),
        since,
        customer_id,
    ).group_by(Party.id, Party.name, Party.email).order_by(
        func.sum(Invoice.total_amount).desc()
    ).limit(10).all()
    return [
        {
            "customer": {"id": party_id, "name": name, "email": email},
            "total_invoices": int(count),
            "total_revenue": money_out(total),
            "paid_revenue": money_out(paid),
            "outstanding_revenue": money_out(balance),
        }
        for party_id, name, email, count, total, paid, balance in rows
    ]


def _aging_report(customer_id, now) -> list[dict]:
    query = db.session.query(Invoice.due_date, Invoice.balance_amount).filter(
        Invoice.status.in_(OPEN_STATUSES)
    )
    if customer_id is not None:
        query = query.filter(Invoice.customer_id == customer_id)
    buckets = metrics.age_balances(query.all(), now)
    return [
        {
            "range": metrics.AGING_LABELS[name],
            "count": buckets.counts[name],
            "amount": money_out(getattr(buckets, name)),
        }
        for name in metrics.AGING_BUCKETS
    ]


def analytics(days: int = DEFAULT_DAYS, customer_id: int | None = None, *, now: datetime | None = None,
              checkpoint=None) -> dict:
    """Invoice collection analytics over invoices created in the last `days` days."""
    now = now or utcnow()
    since = now - timedelta(days=days)
    tick = checkpoint or (lambda: None)

    report = {"summary": _summary(since, customer_id)}
    tick()
    report["status_breakdown"] = _status_breakdown(since, customer_id)
    report["payment_stats"] = _payment_stats(since, customer_id)
    tick()
    report["overdue_invoices"] = _overdue_invoices(since, customer_id, now)
    report["monthly_trends"] = _monthly_trends(customer_id, now)
    tick()
    report["top_customers"] = _top_customers(since, customer_id)
    report["aging_report"] = _aging_report(customer_id, now)
    report["period"] = {
        "days": days,
        "start_date": to_utc_z(since),
        "end_date": to_utc_z(now),
    }
    return report
