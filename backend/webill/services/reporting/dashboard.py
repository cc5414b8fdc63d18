# Overview: Dashboard report; KPIs with period comparison, trends, insights and financial health.

from __future__ import annotations

from sqlalchemy import case, func

from webill.extensions import db
from webill.models import Category, Invoice, Item, Party, Transaction, TransactionItem
from webill.services.period_service import DateRange
from webill.time_utils import add_months, start_of_month, to_utc_z, utcnow
from webill.validation import money_out

from . import metrics
from .common import ReportContext, dec, in_range, month_label, period_key, transaction_totals
from .financial import completed_payments, inventory_value
from .sales import hourly_pattern

DEFAULT_TYPE = "overview"
OPEN_INVOICE_STATUSES = ("SENT", "OVERDUE")


def _distinct_parties(column, tx_type: str, period) -> int:
    return int(
        db.session.query(func.count(func.distinct(column))).filter(
            Transaction.type == tx_type,
            in_range(Transaction.date, period),
            column.isnot(None),
        ).scalar() or 0
    )


def _profit_trend(margin: float) -> str:
    if margin > 20:
        return "up"
    if margin > 10:
        return "stable"
    return "down"


def kpis(ctx: ReportContext) -> dict:
    period = ctx.period
    previous = period.previous()

    sales = transaction_totals("SALE", period)
    income = transaction_totals("INCOME", period)
    purchases = transaction_totals("PURCHASE", period)
    expenses = transaction_totals("EXPENSE", period)
    ctx.checkpoint()
    prev_sales = transaction_totals("SALE", previous)
    prev_income = transaction_totals("INCOME", previous)
    prev_purchases = transaction_totals("PURCHASE", previous)
    prev_expenses = transaction_totals("EXPENSE", previous)
    ctx.checkpoint()

    outstanding_count, outstanding = db.session.query(
        func.count(Invoice.id),
        func.coalesce(func.sum(Invoice.balance_amount), 0),
    ).filter(Invoice.status.in_(OPEN_INVOICE_STATUSES)).one()
    stock_value, _ = inventory_value()
    stock_units = db.session.query(func.coalesce(func.sum(Item.stock_quantity), 0)).filter(
        Item.is_active.is_(True), Item.is_service.is_(False)
    ).scalar()

    revenue = sales.total + income.total
    prev_revenue = prev_sales.total + prev_income.total
    costs = purchases.total + expenses.total
    prev_costs = prev_purchases.total + prev_expenses.total
    gross_profit = revenue - costs
    margin = metrics.pct(gross_profit, revenue)

    revenue_growth = metrics.growth_pct(revenue, prev_revenue)
    sales_growth = metrics.growth_pct(sales.total, prev_sales.total)
    expense_growth = metrics.growth_pct(expenses.total, prev_expenses.total)
    profit_growth = metrics.growth_pct(gross_profit, prev_revenue - prev_costs)
    order_growth = metrics.growth_pct(sales.average, prev_sales.average)

    return {
        "total_revenue": {
            "value": money_out(revenue),
            "previous": money_out(prev_revenue),
            "growth": revenue_growth,
            "trend": metrics.trend(revenue_growth),
        },
        "total_sales": {
            "value": money_out(sales.total),
            "count": sales.count,
            "growth": sales_growth,
            "trend": metrics.trend(sales_growth),
        },
        "gross_profit": {
            "value": money_out(gross_profit),
            "margin": margin,
            "growth": profit_growth,
            "trend": _profit_trend(margin),
        },
        "average_order_value": {
            "value": money_out(sales.average),
            "growth": order_growth,
            "trend": metrics.trend(order_growth),
        },
        "outstanding_invoices": {
            "value": money_out(outstanding),
            "count": int(outstanding_count or 0),
            "trend": "down" if (outstanding_count or 0) > 10 else "stable",
        },
        "inventory_value": {
            "value": money_out(stock_value),
            "items": int(stock_units or 0),
            "trend": "stable",
        },
        "active_customers": {
            "count": _distinct_parties(Transaction.customer_id, "SALE", period),
            "previous": _distinct_parties(Transaction.customer_id, "SALE", previous),
        },
        "active_suppliers": {
            "count": _distinct_parties(Transaction.supplier_id, "PURCHASE", period),
            "previous": _distinct_parties(Transaction.supplier_id, "PURCHASE", previous),
        },
        "total_expenses": {
            "value": money_out(expenses.total),
            "count": expenses.count,
            "growth": expense_growth,
            "trend": metrics.trend(expense_growth),
        },
    }


def _revenue_rows(date_range: DateRange, unit: str):
    key = period_key(Transaction.date, unit)
    sales = func.coalesce(func.sum(case((Transaction.type == "SALE", Transaction.total_amount), else_=0)), 0)
    other = func.coalesce(func.sum(case((Transaction.type == "INCOME", Transaction.total_amount), else_=0)), 0)
    sales_count = func.coalesce(func.sum(case((Transaction.type == "SALE", 1), else_=0)), 0)
    return db.session.query(key, sales, other, sales_count).filter(
        Transaction.type.in_(("SALE", "INCOME")),
        in_range(Transaction.date, date_range),
    ).group_by(key).order_by(key).all()


def revenue_trends(ctx: ReportContext) -> dict:
    period = ctx.period
    daily = _revenue_rows(period, "day")
    year_window = DateRange(start_of_month(add_months(period.end, -11)), period.end)
    monthly = _revenue_rows(year_window, "month")
    return {
        "daily": [
            {
                "date": key,
                "sales": money_out(sales),
                "other_income": money_out(other),
                "total_revenue": money_out(dec(sales) + dec(other)),
                "sales_count": int(count),
            }
            for key, sales, other, count in daily
        ],
        "monthly": [
            {
                "month": key,
                "month_name": month_label(key),
                "sales": money_out(sales),
                "other_income": money_out(other),
                "total_revenue": money_out(dec(sales) + dec(other)),
                "sales_count": int(count),
            }
            for key, sales, other, count in monthly
        ],
    }


def sales_analytics(ctx: ReportContext) -> dict:
    period = ctx.period
    methods = db.session.query(
        Transaction.payment_method,
        func.count(Transaction.id),
        func.coalesce(func.sum(Transaction.total_amount), 0),
    ).filter(
        Transaction.type == "SALE",
        in_range(Transaction.date, period),
        Transaction.payment_method.isnot(None),
    ).group_by(Transaction.payment_method).all()

    top_items = db.session.query(
        Item.id,
        Item.name,
        Item.sku,
        func.coalesce(func.sum(TransactionItem.quantity), 0),
        func.coalesce(func.sum(TransactionItem.total_amount), 0),
        func.count(TransactionItem.id),
        func.avg(TransactionItem.unit_price),
    ).join(TransactionItem, TransactionItem.item_id == Item.id).join(
        Transaction, TransactionItem.transaction_id == Transaction.id
    ).filter(
        Transaction.type == "SALE",
        in_range(Transaction.date, period),
    ).group_by(Item.id, Item.name, Item.sku).order_by(
        func.sum(TransactionItem.total_amount).desc()
    ).limit(10).all()
    ctx.checkpoint()

    return {
        "payment_methods": [
            {"method": method, "amount": money_out(amount), "count": int(count)}
            for method, count, amount in methods
        ],
        "top_selling_items": [
            {
                "item_id": item_id,
                "item_name": name,
                "sku": sku,
                "quantity_sold": int(quantity),
                "revenue": money_out(revenue),
                "sales_count": int(count),
                "avg_price": money_out(avg_price),
            }
            for item_id, name, sku, quantity, revenue, count, avg_price in top_items
        ],
        "hourly_pattern": [
            {"hour": row["hour"], "transactions": row["transactions"], "amount": row["amount"]}
            for row in hourly_pattern(period)
        ],
    }


def inventory_insights(ctx: ReportContext) -> dict:
    physical = db.session.query(Item).filter(Item.is_active.is_(True), Item.is_service.is_(False))
    total_items = physical.count()
    low_stock = physical.filter(Item.stock_quantity <= Item.min_stock).count()
    out_of_stock = physical.filter(Item.stock_quantity <= 0).count()

    price = func.coalesce(Item.cost_price, Item.unit_price)
    in_stock_value = case((Item.stock_quantity > 0, Item.stock_quantity * price), else_=0)
    categories = db.session.query(
        Category.id,
        Category.name,
        func.count(Item.id),
        func.coalesce(func.sum(in_stock_value), 0),
    ).join(Item, Item.category_id == Category.id).filter(
        Item.is_active.is_(True),
    ).group_by(Category.id, Category.name).order_by(
        func.coalesce(func.sum(in_stock_value), 0).desc(), func.count(Item.id).desc()
    ).limit(5).all()

    return {
        "total_items": total_items,
        "low_stock_items": low_stock,
        "out_of_stock_items": out_of_stock,
        "stock_health_percentage": (
            round((total_items - low_stock) / total_items * 100, 2) if total_items else 100.0
        ),
        "top_categories": [
            {
                "category_id": category_id,
                "category_name": name,
                "item_count": int(count),
                "stock_value": money_out(value),
            }
            for category_id, name, count, value in categories
        ],
    }


def customer_insights(ctx: ReportContext) -> dict:
    period = ctx.period
    customers = db.session.query(Party).filter(Party.type == "CUSTOMER")
    new_customers = customers.filter(in_range(Party.created_at, period)).count()
    total_customers = customers.filter(Party.is_active.is_(True)).count()
    with_outstanding = db.session.query(func.count(func.distinct(Invoice.customer_id))).filter(
        Invoice.status.in_(OPEN_INVOICE_STATUSES),
        Invoice.balance_amount > 0,
    ).scalar() or 0
    # buyers in range who existed before it
    returning = db.session.query(func.count(func.distinct(Transaction.customer_id))).join(
        Party, Transaction.customer_id == Party.id
    ).filter(
        Transaction.type == "SALE",
        in_range(Transaction.date, period),
        Party.created_at < period.start,
    ).scalar() or 0
    ctx.checkpoint()

    top = db.session.query(
        Party.id,
        Party.name,
        func.coalesce(func.sum(Transaction.total_amount), 0),
        func.count(Transaction.id),
    ).join(Transaction, Transaction.customer_id == Party.id).filter(
        Transaction.type == "SALE",
        in_range(Transaction.date, period),
        Party.type == "CUSTOMER",
    ).group_by(Party.id, Party.name).order_by(func.sum(Transaction.total_amount).desc()).limit(5).all()

    return {
        "total_customers": total_customers,
        "new_customers": new_customers,
        "returning_customers": int(returning),
        "customers_with_outstanding": int(with_outstanding),
        "top_customers": [
            {
                "customer_id": party_id,
                "customer_name": name,
                "revenue": money_out(revenue),
                "transaction_count": int(count),
            }
            for party_id, name, revenue, count in top
        ],
    }


def financial_health(ctx: ReportContext) -> dict:
    period = ctx.period
    now = ctx.now or utcnow()
    _, inflow = completed_payments(period)
    outflow = transaction_totals(("PURCHASE", "EXPENSE"), period, payment_status="COMPLETED").total

    current = dec(
        db.session.query(func.coalesce(func.sum(Invoice.balance_amount), 0)).filter(
            Invoice.status.in_(OPEN_INVOICE_STATUSES),
            Invoice.due_date >= now,
        ).scalar()
    )
    overdue = dec(
        db.session.query(func.coalesce(func.sum(Invoice.balance_amount), 0)).filter(
            Invoice.status.in_(OPEN_INVOICE_STATUSES),
            Invoice.due_date < now,
        ).scalar()
    )
    flow = metrics.CashFlow(receipts=inflow, other_income=metrics.ZERO, purchases=outflow, expenses=metrics.ZERO)
    total_receivables = current + overdue

    return {
        "cash_flow": {
            "inflow": money_out(flow.inflow),
            "outflow": money_out(flow.outflow),
            "net": money_out(flow.net),
            "trend": flow.direction,
        },
        "accounts_receivable": {
            "current": money_out(current),
            "overdue": money_out(overdue),
            "total": money_out(total_receivables),
            "overdue_percentage": metrics.pct(overdue, total_receivables),
        },
        "health_score": metrics.health_score(flow.net, total_receivables, overdue),
    }


def overview(ctx: ReportContext) -> dict:
    report = {"period": ctx.period.to_dict(), "kpis": kpis(ctx)}
    ctx.checkpoint()
    report["revenue_trends"] = revenue_trends(ctx)
    ctx.checkpoint()
    report["sales_analytics"] = sales_analytics(ctx)
    ctx.checkpoint()
    report["inventory_insights"] = inventory_insights(ctx)
    report["customer_insights"] = customer_insights(ctx)
    ctx.checkpoint()
    report["financial_health"] = financial_health(ctx)
    report["last_updated"] = to_utc_z(ctx.now or utcnow())
    return report


REPORTS = {
    "overview": overview,
    "kpis": kpis,
}


# =============================================================================
# Dashboard widgets
# =============================================================================

def dashboard_stats(now=None) -> dict:
    """Headline totals across the whole ledger plus this month's sales."""
    now = now or utcnow()
    month = DateRange(start_of_month(now), now)

    sales = transaction_totals("SALE")
    purchases = transaction_totals("PURCHASE")
    expenses = transaction_totals("EXPENSE")
    income = transaction_totals("INCOME")
    sales_this_month = transaction_totals("SALE", month)
    pnl = metrics.profit_and_loss(sales.total, income.total, purchases.total, expenses.total)

    receivables = db.session.query(func.coalesce(func.sum(Invoice.balance_amount), 0)).filter(
        Invoice.status.in_(OPEN_INVOICE_STATUSES)
    ).scalar()
    pending_invoices = db.session.query(func.count(Invoice.id)).filter(
        Invoice.status.in_(("DRAFT", "SENT"))
    ).scalar() or 0

    def _count_parties(party_type: str) -> int:
        return db.session.query(func.count(Party.id)).filter(
            Party.type == party_type, Party.is_active.is_(True)
        ).scalar() or 0

    physical = db.session.query(func.count(Item.id)).filter(Item.is_active.is_(True), Item.is_service.is_(False))
    return {
        "total_sales": money_out(sales.total),
        "total_purchases": money_out(purchases.total),
        "total_expenses": money_out(expenses.total),
        "total_income": money_out(income.total),
        "net_profit": money_out(pnl.net_profit),
        "sales_this_month": {"count": sales_this_month.count, "amount": money_out(sales_this_month.total)},
        "receivables": money_out(receivables),
        "pending_invoices": int(pending_invoices),
        "active_customers": int(_count_parties("CUSTOMER")),
        "active_suppliers": int(_count_parties("SUPPLIER")),
        "total_items": int(physical.scalar() or 0),
        "low_stock_items": int(physical.filter(Item.stock_quantity <= Item.min_stock).scalar() or 0),
    }


PAYMENT_STATUS_LABELS = {"COMPLETED": "Paid", "PENDING": "Pending"}


def recent_transactions(limit: int = 5) -> list[dict]:
    rows = db.session.query(Transaction).order_by(Transaction.date.desc(), Transaction.id.desc()).limit(limit).all()
    result = []
    for tx in rows:
        party = tx.customer or tx.supplier
        result.append(
            {
                "id": tx.id,
                "transaction_no": tx.transaction_no,
                "party": party.name if party else "Unknown",
                "amount": money_out(tx.total_amount),
                "status": PAYMENT_STATUS_LABELS.get(tx.payment_status, "Failed"),
                "date": tx.date.date().isoformat(),
                "type": tx.type,
            }
        )
    return result
