# Overview: Financial statements; profit & loss, balance sheet and cash flow over the ledger.

from __future__ import annotations

from sqlalchemy import func

from webill.extensions import db
from webill.models import Invoice, Item, Payment, Transaction
from webill.time_utils import to_utc_z
from webill.validation import money_out

from . import metrics
from .common import ReportContext, dec, in_range, transaction_totals

DEFAULT_TYPE = "profit-loss"


def inventory_value() -> tuple:
    """(value, quantity) of active physical stock at cost (unit price when no cost)."""
    rows = db.session.query(Item.stock_quantity, Item.unit_price, Item.cost_price).filter(
        Item.is_active.is_(True),
        Item.is_service.is_(False),
        Item.stock_quantity > 0,
    ).all()
    value = sum(
        (metrics.stock_value(row.stock_quantity, row.unit_price, row.cost_price) for row in rows),
        metrics.ZERO,
    )
    quantity = sum(int(row.stock_quantity) for row in rows)
    return value, quantity


def profit_loss(ctx: ReportContext) -> dict:
    period = ctx.period
    sales = transaction_totals("SALE", period)
    income = transaction_totals("INCOME", period)
    purchases = transaction_totals("PURCHASE", period)
    expenses = transaction_totals("EXPENSE", period)
    ctx.checkpoint()

    by_category = db.session.query(
        Transaction.category,
        func.count(Transaction.id),
        func.coalesce(func.sum(Transaction.total_amount), 0),
    ).filter(
        Transaction.type == "EXPENSE",
        in_range(Transaction.date, period),
        Transaction.category.isnot(None),
    ).group_by(Transaction.category).order_by(func.sum(Transaction.total_amount).desc()).all()

    pnl = metrics.profit_and_loss(sales.total, income.total, purchases.total, expenses.total)
    return {
        "period": period.to_dict(),
        "revenue": {
            "sales": {
                "amount": money_out(sales.total),
                "count": sales.count,
                "tax": money_out(sales.tax),
                "discount": money_out(sales.discount),
            },
            "other_income": {"amount": money_out(income.total), "count": income.count},
            "total": money_out(pnl.total_revenue),
        },
        "cost_of_goods_sold": {
            "purchases": {"amount": money_out(purchases.total), "count": purchases.count},
            "total": money_out(pnl.cogs),
        },
        "gross_profit": {"amount": money_out(pnl.gross_profit), "margin": pnl.gross_margin},
        "operating_expenses": {
            "total": money_out(pnl.operating_expenses),
            "count": expenses.count,
            "by_category": [
                {"category": category or "Uncategorized", "amount": money_out(amount), "count": int(count)}
                for category, count, amount in by_category
            ],
        },
        "net_profit": {"amount": money_out(pnl.net_profit), "margin": pnl.net_margin},
        "summary": {
            "total_revenue": money_out(pnl.total_revenue),
            "total_cogs": money_out(pnl.cogs),
            "gross_profit": money_out(pnl.gross_profit),
            "total_expenses": money_out(pnl.operating_expenses),
            "net_profit": money_out(pnl.net_profit),
            "profit_margin": pnl.net_margin,
        },
    }


def balance_sheet(ctx: ReportContext) -> dict:
    """Position as of the end of the requested range."""
    as_of = ctx.period.end
    stock_value, stock_quantity = inventory_value()

    receivable_count, receivable = db.session.query(
        func.count(Invoice.id),
        func.coalesce(func.sum(Invoice.balance_amount), 0),
    ).filter(
        Invoice.status.in_(("SENT", "OVERDUE")),
        Invoice.due_date <= as_of,
    ).one()
    ctx.checkpoint()
    payable = transaction_totals("PURCHASE", payment_status="PENDING", until=as_of)

    sheet = metrics.BalanceSheet(
        inventory_value=stock_value,
        accounts_receivable=dec(receivable),
        accounts_payable=payable.total,
    )
    return {
        "as_of_date": to_utc_z(as_of),
        "assets": {
            "current_assets": {
                "inventory": {"value": money_out(sheet.inventory_value), "quantity": stock_quantity},
                "accounts_receivable": {
                    "amount": money_out(sheet.accounts_receivable),
                    "count": int(receivable_count or 0),
                },
                "total": money_out(sheet.total_assets),
            },
            "total_assets": money_out(sheet.total_assets),
        },
        "liabilities": {
            "current_liabilities": {
                "accounts_payable": {"amount": money_out(sheet.accounts_payable), "count": payable.count},
                "total": money_out(sheet.total_liabilities),
            },
            "total_liabilities": money_out(sheet.total_liabilities),
        },
        "equity": {
            "retained_earnings": money_out(sheet.equity),
            "total_equity": money_out(sheet.equity),
        },
    }


def completed_payments(period) -> tuple[int, object]:
    count, amount = db.session.query(
        func.count(Payment.id),
        func.coalesce(func.sum(Payment.amount), 0),
    ).filter(
        Payment.status == "COMPLETED",
        in_range(Payment.payment_date, period),
    ).one()
    return int(count or 0), dec(amount)


def cash_flow(ctx: ReportContext) -> dict:
    period = ctx.period
    receipt_count, receipts = completed_payments(period)
    income = transaction_totals("INCOME", period, payment_status="COMPLETED")
    ctx.checkpoint()
    purchases = transaction_totals("PURCHASE", period, payment_status="COMPLETED")
    expenses = transaction_totals("EXPENSE", period, payment_status="COMPLETED")

    flow = metrics.CashFlow(
        receipts=receipts,
        other_income=income.total,
        purchases=purchases.total,
        expenses=expenses.total,
    )
    return {
        "period": period.to_dict(),
        "operating_activities": {
            "cash_inflows": {
                "sales_receipts": {"amount": money_out(flow.receipts), "count": receipt_count},
                "other_income": {"amount": money_out(flow.other_income), "count": income.count},
                "total": money_out(flow.inflow),
            },
            "cash_outflows": {
                "purchases": {"amount": money_out(flow.purchases), "count": purchases.count},
                "expenses": {"amount": money_out(flow.expenses), "count": expenses.count},
                "total": money_out(flow.outflow),
            },
            "net_operating_cash_flow": money_out(flow.net),
        },
        "summary": {
            "net_cash_flow": money_out(flow.net),
            "cash_flow_from_operations": money_out(flow.net),
            "trend": flow.direction,
        },
    }


REPORTS = {
    "profit-loss": profit_loss,
    "balance-sheet": balance_sheet,
    "cash-flow": cash_flow,
}
