# Overview: Party reports; customer/supplier overview, aging, performance and credit analysis.

from __future__ import annotations

from datetime import timedelta

from sqlalchemy import func

from webill.extensions import db
from webill.models import Invoice, Party, Payment, Transaction
from webill.time_utils import add_months, to_utc_z
from webill.validation import money_out, to_choice

from . import metrics
from .common import ReportContext, ReportError, dec, in_range, month_label, period_key

DEFAULT_TYPE = "overview"
PARTY_TYPES = ("CUSTOMER", "SUPPLIER")
OPEN_INVOICE_STATUSES = ("SENT", "OVERDUE")

# supplier payables have no due date; purchases are treated as due 30 days after the purchase date
SUPPLIER_DUE_DAYS = 30


def _party_type(ctx: ReportContext) -> str:
    return to_choice(ctx.arg("party_type"), "party_type", PARTY_TYPES, "CUSTOMER")


def _relation(party_type: str):
    if party_type == "CUSTOMER":
        return "SALE", Transaction.customer_id
    return "PURCHASE", Transaction.supplier_id


def _outstanding_by_party(party_type: str) -> dict[int, tuple[object, int]]:
    if party_type == "CUSTOMER":
        rows = db.session.query(
            Invoice.customer_id,
            func.coalesce(func.sum(Invoice.balance_amount), 0),
            func.count(Invoice.id),
        ).filter(Invoice.status.in_(OPEN_INVOICE_STATUSES)).group_by(Invoice.customer_id).all()
    else:
        rows = db.session.query(
            Transaction.supplier_id,
            func.coalesce(func.sum(Transaction.total_amount), 0),
            func.count(Transaction.id),
        ).filter(
            Transaction.type == "PURCHASE",
            Transaction.payment_status == "PENDING",
            Transaction.supplier_id.isnot(None),
        ).group_by(Transaction.supplier_id).all()
    return {party_id: (dec(amount), int(count)) for party_id, amount, count in rows}


def overview(ctx: ReportContext) -> dict:
    party_type = _party_type(ctx)
    tx_type, relation = _relation(party_type)
    period = ctx.period

    active = db.session.query(Party).filter(Party.type == party_type, Party.is_active.is_(True))
    total_parties = active.count()
    new_parties = active.filter(in_range(Party.created_at, period)).count()

    per_party = db.session.query(
        relation,
        func.count(Transaction.id),
        func.coalesce(func.sum(Transaction.total_amount), 0),
    ).filter(
        Transaction.type == tx_type,
        in_range(Transaction.date, period),
        relation.isnot(None),
    ).group_by(relation).all()
    ctx.checkpoint()

    outstanding = _outstanding_by_party(party_type)

    payment_parent = Payment.invoice_id if party_type == "CUSTOMER" else Payment.transaction_id
    payments_count, payments_total = db.session.query(
        func.count(Payment.id),
        func.coalesce(func.sum(Payment.amount), 0),
    ).filter(
        Payment.status == "COMPLETED",
        in_range(Payment.payment_date, period),
        payment_parent.isnot(None),
    ).one()

    ranked = sorted(per_party, key=lambda row: dec(row[2]), reverse=True)[:10]
    details = {
        party.id: party
        for party in db.session.query(Party).filter(Party.id.in_([row[0] for row in ranked])).all()
    } if ranked else {}

    total_value = sum((dec(row[2]) for row in per_party), metrics.ZERO)
    total_count = sum(int(row[1]) for row in per_party)
    # mean of per-party averages
    average_value = (
        sum((dec(row[2]) / int(row[1]) for row in per_party), metrics.ZERO) / len(per_party)
        if per_party else metrics.ZERO
    )

    top_parties = []
    for party_id, count, amount in ranked:
        party = details.get(party_id)
        owed, owed_count = outstanding.get(party_id, (metrics.ZERO, 0))
        top_parties.append(
            {
                "party_id": party_id,
                "party_name": party.name if party else "Unknown",
                "email": party.email if party else None,
                "phone": party.phone if party else None,
                "address": party.address if party else None,
                "credit_limit": money_out(party.credit_limit) if party and party.credit_limit is not None else None,
                "payment_terms": party.payment_terms if party else None,
                "transaction_value": money_out(amount),
                "transaction_count": int(count),
                "average_transaction_value": money_out(dec(amount) / int(count)) if count else 0.0,
                "outstanding_amount": money_out(owed),
                "outstanding_count": owed_count,
            }
        )

    return {
        "period": period.to_dict(),
        "party_type": party_type,
        "overview": {
            "total_parties": total_parties,
            "new_parties": new_parties,
            "active_parties": len(per_party),
            "total_transaction_value": money_out(total_value),
            "average_transaction_value": money_out(average_value),
            "total_transactions": total_count,
        },
        "top_parties": top_parties,
        "summary": {
            "total_outstanding": money_out(sum((v[0] for v in outstanding.values()), metrics.ZERO)),
            "total_outstanding_count": sum(v[1] for v in outstanding.values()),
            "payments_made": money_out(payments_total),
            "payments_count": int(payments_count or 0),
        },
    }


def _aging_amounts(buckets: metrics.AgingBuckets) -> dict:
    out = {name: money_out(amount) for name, amount in buckets.amounts().items()}
    out["total"] = money_out(buckets.total)
    return out


def customer_aging_rows():
    """(party, due_date, balance) for every open customer invoice."""
    return db.session.query(Party, Invoice.due_date, Invoice.balance_amount).join(
        Invoice, Invoice.customer_id == Party.id
    ).filter(
        Invoice.status.in_(OPEN_INVOICE_STATUSES),
        Invoice.balance_amount > 0,
        Party.type == "CUSTOMER",
    ).all()


def supplier_aging_rows():
    """(party, effective due date, amount) for every pending purchase."""
    rows = db.session.query(Party, Transaction.date, Transaction.total_amount).join(
        Transaction, Transaction.supplier_id == Party.id
    ).filter(
        Transaction.type == "PURCHASE",
        Transaction.payment_status == "PENDING",
        Party.type == "SUPPLIER",
    ).all()
    return [(party, date + timedelta(days=SUPPLIER_DUE_DAYS), amount) for party, date, amount in rows]


def aging(ctx: ReportContext) -> dict:
    party_type = _party_type(ctx)
    as_of = ctx.period.end
    rows = customer_aging_rows() if party_type == "CUSTOMER" else supplier_aging_rows()
    ctx.checkpoint()

    per_party: dict[int, tuple[Party, metrics.AgingBuckets]] = {}
    for party, due_date, amount in rows:
        _, buckets = per_party.setdefault(party.id, (party, metrics.AgingBuckets()))
        buckets.add(metrics.aging_bucket(due_date, as_of), amount)

    totals = metrics.AgingBuckets()
    details = []
    for party, buckets in sorted(per_party.values(), key=lambda pb: pb[1].total, reverse=True):
        if buckets.total <= 0:
            continue
        totals.merge(buckets)
        details.append(
            {
                "party_id": party.id,
                "party_name": party.name,
                "email": party.email,
                "phone": party.phone,
                "credit_limit": money_out(party.credit_limit) if party.credit_limit is not None else None,
                "aging": _aging_amounts(buckets),
                "transaction_count": buckets.count,
                "risk_level": buckets.risk_level,
            }
        )

    return {
        "as_of_date": to_utc_z(as_of),
        "party_type": party_type,
        "summary": {
            "total_parties": len(details),
            "total_outstanding": money_out(totals.total),
            "breakdown": {name: money_out(amount) for name, amount in totals.amounts().items()},
            "percentages": {
                name: metrics.pct(amount, totals.total) for name, amount in totals.amounts().items()
            },
        },
        "aging_details": details,
    }


def _payment_behavior(period) -> list[dict]:
    invoices = db.session.query(Invoice, Party.name).join(Party, Invoice.customer_id == Party.id).filter(
        in_range(Invoice.issue_date, period),
        Invoice.status != "CANCELLED",
    ).all()

    stats: dict[int, dict] = {}
    for invoice, name in invoices:
        entry = stats.setdefault(
            invoice.customer_id,
            {"name": name, "total": 0, "paid": 0, "overdue": 0, "days": [], "outstanding": metrics.ZERO},
        )
        entry["total"] += 1
        entry["outstanding"] += dec(invoice.balance_amount)
        if invoice.status == "PAID":
            entry["paid"] += 1
            settled = invoice.paid_date or invoice.updated_at
            if settled is not None:
                entry["days"].append((settled - invoice.due_date).days)
        elif invoice.status == "OVERDUE":
            entry["overdue"] += 1

    ranked = sorted(stats.items(), key=lambda kv: kv[1]["total"], reverse=True)[:20]
    return [
        {
            "party_id": party_id,
            "party_name": entry["name"],
            "total_invoices": entry["total"],
            "paid_invoices": entry["paid"],
            "overdue_invoices": entry["overdue"],
            "payment_rate": metrics.pct(entry["paid"], entry["total"]),
            "avg_days_to_pay": round(sum(entry["days"]) / len(entry["days"]), 1) if entry["days"] else None,
            "outstanding_amount": money_out(entry["outstanding"]),
            "payment_risk": metrics.payment_risk(entry["paid"], entry["overdue"]),
        }
        for party_id, entry in ranked
    ]


def performance(ctx: ReportContext) -> dict:
    party_type = _party_type(ctx)
    tx_type, relation = _relation(party_type)
    period = ctx.period

    month = period_key(Transaction.date, "month")
    monthly = db.session.query(
        month.label("month"),
        func.count(func.distinct(relation)),
        func.count(Transaction.id),
        func.coalesce(func.sum(Transaction.total_amount), 0),
    ).filter(
        Transaction.type == tx_type,
        in_range(Transaction.date, period),
        relation.isnot(None),
    ).group_by(month).order_by(month).all()
    ctx.checkpoint()

    loyal = db.session.query(
        Party.id,
        Party.name,
        func.count(Transaction.id).label("tx_count"),
        func.coalesce(func.sum(Transaction.total_amount), 0).label("total"),
        func.min(Transaction.date),
        func.max(Transaction.date),
    ).join(Transaction, relation == Party.id).filter(
        Transaction.type == tx_type,
        in_range(Transaction.date, period),
    ).group_by(Party.id, Party.name).having(func.count(Transaction.id) > 1).order_by(
        func.count(Transaction.id).desc(), func.sum(Transaction.total_amount).desc()
    ).limit(20).all()

    report = {
        "period": period.to_dict(),
        "party_type": party_type,
        "monthly_trends": [
            {
                "month": key,
                "month_name": month_label(key),
                "active_parties": int(parties),
                "transaction_count": int(count),
                "total_amount": money_out(total),
                "avg_transaction_value": money_out(dec(total) / int(count)) if count else 0.0,
            }
            for key, parties, count, total in monthly
        ],
        "loyalty_analysis": [
            {
                "party_id": party_id,
                "party_name": name,
                "transaction_count": int(count),
                "total_amount": money_out(total),
                "avg_transaction_value": money_out(dec(total) / int(count)),
                "first_transaction": to_utc_z(first),
                "last_transaction": to_utc_z(last),
                "relationship_days": (last - first).days,
                "loyalty_score": metrics.loyalty_score(int(count), total),
            }
            for party_id, name, count, total, first, last in loyal
        ],
    }
    if party_type == "CUSTOMER":
        ctx.checkpoint()
        report["payment_behavior"] = _payment_behavior(period)
    return report


def credit_analysis(ctx: ReportContext) -> dict:
    if _party_type(ctx) != "CUSTOMER":
        raise ReportError("Credit analysis is only available for customers")
    as_of = ctx.period.end

    customers = db.session.query(Party).filter(
        Party.type == "CUSTOMER",
        Party.is_active.is_(True),
        Party.credit_limit.isnot(None),
        Party.credit_limit > 0,
    ).all()
    outstanding = _outstanding_by_party("CUSTOMER")
    overdue = {
        customer_id: (dec(amount), int(count))
        for customer_id, amount, count in db.session.query(
            Invoice.customer_id,
            func.coalesce(func.sum(Invoice.balance_amount), 0),
            func.count(Invoice.id),
        ).filter(Invoice.status == "OVERDUE").group_by(Invoice.customer_id).all()
    }
    ctx.checkpoint()
    recent = {
        customer_id: (dec(amount), int(count))
        for customer_id, amount, count in db.session.query(
            Invoice.customer_id,
            func.coalesce(func.sum(Payment.amount), 0),
            func.count(Payment.id),
        ).join(Invoice, Payment.invoice_id == Invoice.id).filter(
            Payment.status == "COMPLETED",
            Payment.payment_date >= add_months(as_of, -6),
            Payment.payment_date <= as_of,
        ).group_by(Invoice.customer_id).all()
    }

    rows = []
    for customer in customers:
        limit = dec(customer.credit_limit)
        owed, owed_count = outstanding.get(customer.id, (metrics.ZERO, 0))
        overdue_amount, overdue_count = overdue.get(customer.id, (metrics.ZERO, 0))
        paid, paid_count = recent.get(customer.id, (metrics.ZERO, 0))
        utilization = metrics.credit_utilization(limit, owed)
        rows.append(
            {
                "customer_id": customer.id,
                "customer_name": customer.name,
                "email": customer.email,
                "phone": customer.phone,
                "credit_limit": money_out(limit),
                "payment_terms": customer.payment_terms,
                "outstanding_amount": money_out(owed),
                "credit_utilization": utilization,
                "available_credit": money_out(metrics.available_credit(limit, owed)),
                "outstanding_invoices": owed_count,
                "overdue_amount": money_out(overdue_amount),
                "overdue_invoices": overdue_count,
                "recent_payments": money_out(paid),
                "recent_payment_count": paid_count,
                "credit_risk": metrics.credit_risk(utilization),
                "recommended_action": metrics.recommended_action(utilization, overdue_count),
            }
        )
    rows.sort(key=lambda r: r["credit_utilization"], reverse=True)

    total_limit = sum((dec(customer.credit_limit) for customer in customers), metrics.ZERO)
    total_owed = sum((outstanding.get(c.id, (metrics.ZERO, 0))[0] for c in customers), metrics.ZERO)
    total_overdue = sum((overdue.get(c.id, (metrics.ZERO, 0))[0] for c in customers), metrics.ZERO)
    risk_counts = {level: 0 for level in ("HIGH", "MEDIUM", "LOW", "MINIMAL")}
    for row in rows:
        risk_counts[row["credit_risk"]] += 1

    return {
        "as_of_date": to_utc_z(as_of),
        "summary": {
            "total_customers_with_credit": len(customers),
            "total_credit_limit": money_out(total_limit),
            "total_outstanding": money_out(total_owed),
            "total_overdue": money_out(total_overdue),
            "overall_credit_utilization": metrics.credit_utilization(total_limit, total_owed),
            "total_available_credit": money_out(total_limit - total_owed),
            "risk_distribution": {level.lower(): count for level, count in risk_counts.items()},
        },
        "credit_analysis": rows[:50],
        "high_risk_customers": [r for r in rows if r["credit_risk"] == "HIGH"],
        "customers_needing_attention": [r for r in rows if r["recommended_action"] != "NORMAL"],
    }


REPORTS = {
    "overview": overview,
    "aging": aging,
    "performance": performance,
    "credit-analysis": credit_analysis,
}
