# Overview: Pure report algorithms; growth, P&L, aging, valuation, turnover, tax, credit and scoring.

"""
Report arithmetic with no store access.

All money is Decimal. Percentages and ratios are floats rounded to two
places. Every ratio guards its denominator: a zero or missing base yields 0,
never a division error.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Iterable

ZERO = Decimal("0")
HUNDRED = Decimal("100")


def _d(value) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def pct(part, whole) -> float:
    """part / whole * 100, or 0 when whole is not positive."""
    whole = _d(whole)
    if whole <= 0:
        return 0.0
    return round(float(_d(part) / whole * HUNDRED), 2)


def growth_pct(current, previous) -> float:
    """Period-over-period change; 0 when there is no positive previous value."""
    previous = _d(previous)
    if previous <= 0:
        return 0.0
    return round(float((_d(current) - previous) / previous * HUNDRED), 2)


def trend(growth: float) -> str:
    if growth > 0:
        return "up"
    if growth < 0:
        return "down"
    return "stable"


def ratio(numerator, denominator) -> float:
    denominator = _d(denominator)
    if denominator <= 0:
        return 0.0
    return float(_d(numerator) / denominator)


# =============================================================================
# Financial statements
# =============================================================================

@dataclass(frozen=True)
class ProfitAndLoss:
    sales: Decimal
    other_income: Decimal
    purchases: Decimal
    expenses: Decimal

    @property
    def total_revenue(self) -> Decimal:
        return self.sales + self.other_income

    @property
    def cogs(self) -> Decimal:
        return self.purchases

    @property
    def gross_profit(self) -> Decimal:
        return self.total_revenue - self.cogs

    @property
    def operating_expenses(self) -> Decimal:
        return self.expenses

    @property
    def net_profit(self) -> Decimal:
        return self.gross_profit - self.operating_expenses

    @property
    def gross_margin(self) -> float:
        return pct(self.gross_profit, self.total_revenue)

    @property
    def net_margin(self) -> float:
        return pct(self.net_profit, self.total_revenue)


def profit_and_loss(sales, other_income, purchases, expenses) -> ProfitAndLoss:
    return ProfitAndLoss(_d(sales), _d(other_income), _d(purchases), _d(expenses))


@dataclass(frozen=True)
class BalanceSheet:
    inventory_value: Decimal
    accounts_receivable: Decimal
    accounts_payable: Decimal

    @property
    def total_assets(self) -> Decimal:
        return self.inventory_value + self.accounts_receivable

    @property
    def total_liabilities(self) -> Decimal:
        return self.accounts_payable

    @property
    def equity(self) -> Decimal:
        return self.total_assets - self.total_liabilities


@dataclass(frozen=True)
class CashFlow:
    receipts: Decimal
    other_income: Decimal
    purchases: Decimal
    expenses: Decimal

    @property
    def inflow(self) -> Decimal:
        return self.receipts + self.other_income

    @property
    def outflow(self) -> Decimal:
        return self.purchases + self.expenses

    @property
    def net(self) -> Decimal:
        return self.inflow - self.outflow

    @property
    def direction(self) -> str:
        if self.net > 0:
            return "positive"
        if self.net < 0:
            return "negative"
        return "neutral"


def stock_value(quantity: int, unit_price, cost_price=None) -> Decimal:
    """quantity * (cost_price ?? unit_price)."""
    price = cost_price if cost_price is not None else unit_price
    return _d(price) * int(quantity or 0)


def health_score(net_cash_flow, total_receivables, overdue_receivables) -> float:
    """
    0..100 composite:
        40 if cash flow is positive
      + 40 scaled down by the overdue share of receivables (40 when none)
      + 20 base
    """
    total_receivables = _d(total_receivables)
    score = 40.0 if _d(net_cash_flow) > 0 else 0.0
    if total_receivables > 0:
        overdue_fraction = float(_d(overdue_receivables) / total_receivables)
        score += max(0.0, 40.0 - overdue_fraction * 40.0)
    else:
        score += 40.0
    score += 20.0
    return round(max(0.0, min(100.0, score)), 2)


# =============================================================================
# Aging
# =============================================================================

AGING_BUCKETS = ("current", "days_1_30", "days_31_60", "days_61_90", "days_over_90")
AGING_LABELS = {
    "current": "Current",
    "days_1_30": "1-30 days",
    "days_31_60": "31-60 days",
    "days_61_90": "61-90 days",
    "days_over_90": "90+ days",
}


def aging_bucket(due_date: datetime, as_of: datetime) -> str:
    """
    Classify a due date against as_of in 30-day windows.

    Not yet due (due >= as_of) is current; otherwise the overdue distance
    falls in (0, 30], (30, 60], (60, 90] or beyond. The windows are
    contiguous so every balance lands in exactly one bucket.
    """
    if due_date >= as_of:
        return "current"
    overdue = as_of - due_date
    if overdue <= timedelta(days=30):
        return "days_1_30"
    if overdue <= timedelta(days=60):
        return "days_31_60"
    if overdue <= timedelta(days=90):
        return "days_61_90"
    return "days_over_90"


@dataclass
class AgingBuckets:
    current: Decimal = ZERO
    days_1_30: Decimal = ZERO
    days_31_60: Decimal = ZERO
    days_61_90: Decimal = ZERO
    days_over_90: Decimal = ZERO
    counts: dict = field(default_factory=lambda: {name: 0 for name in AGING_BUCKETS})

    def add(self, bucket: str, amount) -> None:
        setattr(self, bucket, getattr(self, bucket) + _d(amount))
        self.counts[bucket] += 1

    def merge(self, other: "AgingBuckets") -> None:
        for name in AGING_BUCKETS:
            setattr(self, name, getattr(self, name) + getattr(other, name))
            self.counts[name] += other.counts[name]

    @property
    def total(self) -> Decimal:
        return sum((getattr(self, name) for name in AGING_BUCKETS), ZERO)

    @property
    def count(self) -> int:
        return sum(self.counts.values())

    @property
    def risk_level(self) -> str:
        if self.days_over_90 > 0:
            return "HIGH"
        if self.days_61_90 > 0:
            return "MEDIUM"
        if self.days_31_60 > 0:
            return "LOW"
        return "CURRENT"

    def amounts(self) -> dict[str, Decimal]:
        return {name: getattr(self, name) for name in AGING_BUCKETS}


def age_balances(rows: Iterable[tuple[datetime, object]], as_of: datetime) -> AgingBuckets:
    """Bucket (due_date, balance) pairs. The bucket sums always equal the total."""
    buckets = AgingBuckets()
    for due_date, amount in rows:
        buckets.add(aging_bucket(due_date, as_of), amount)
    return buckets


# =============================================================================
# Inventory
# =============================================================================

@dataclass(frozen=True)
class ItemValuation:
    item_id: int
    name: str
    sku: str | None
    category: str
    quantity: int
    cost_price: Decimal
    retail_price: Decimal

    @property
    def cost_value(self) -> Decimal:
        return self.cost_price * self.quantity

    @property
    def retail_value(self) -> Decimal:
        return self.retail_price * self.quantity

    @property
    def potential_profit(self) -> Decimal:
        return self.retail_value - self.cost_value

    @property
    def profit_margin(self) -> float:
        return pct(self.potential_profit, self.retail_value)


def value_item(item_id, name, sku, category, quantity, unit_price, cost_price=None) -> ItemValuation:
    retail = _d(unit_price)
    cost = _d(cost_price) if cost_price is not None else retail
    return ItemValuation(item_id, name, sku, category or "Uncategorized", int(quantity or 0), cost, retail)


@dataclass
class CategoryValuation:
    category: str
    item_count: int = 0
    total_quantity: int = 0
    total_cost_value: Decimal = ZERO
    total_retail_value: Decimal = ZERO

    @property
    def total_potential_profit(self) -> Decimal:
        return self.total_retail_value - self.total_cost_value


def rollup_by_category(valuations: Iterable[ItemValuation]) -> list[CategoryValuation]:
    """Sum item valuations per category, largest retail value first."""
    rollup: dict[str, CategoryValuation] = {}
    for row in valuations:
        entry = rollup.setdefault(row.category, CategoryValuation(row.category))
        entry.item_count += 1
        entry.total_quantity += row.quantity
        entry.total_cost_value += row.cost_value
        entry.total_retail_value += row.retail_value
    return sorted(rollup.values(), key=lambda c: c.total_retail_value, reverse=True)


def turnover_ratio(cogs, average_inventory_value) -> float:
    return ratio(cogs, average_inventory_value)


def days_in_inventory(turnover: float) -> float:
    return 365.0 / turnover if turnover > 0 else 365.0


def classify_turnover(turnover: float) -> str:
    if turnover > 12:
        return "FAST_MOVING"
    if turnover > 4:
        return "MEDIUM_MOVING"
    if turnover > 0:
        return "SLOW_MOVING"
    return "NO_MOVEMENT"


@dataclass(frozen=True)
class TurnoverRow:
    item_id: int
    name: str
    sku: str | None
    category: str
    current_stock: int
    quantity_sold: int
    sales_value: Decimal
    sales_count: int
    cost_price: Decimal

    @property
    def cost_of_goods_sold(self) -> Decimal:
        return self.cost_price * self.quantity_sold

    @property
    def average_inventory_value(self) -> Decimal:
        # current stock stands in for the period average
        return self.cost_price * self.current_stock

    @property
    def turnover_ratio(self) -> float:
        return turnover_ratio(self.cost_of_goods_sold, self.average_inventory_value)

    @property
    def days_in_inventory(self) -> float:
        return days_in_inventory(self.turnover_ratio)

    @property
    def classification(self) -> str:
        return classify_turnover(self.turnover_ratio)


def low_stock_urgency(stock: int, min_stock: int) -> str | None:
    """OUT_OF_STOCK, CRITICAL (<= half of min), LOW (<= min) or None."""
    if stock <= 0:
        return "OUT_OF_STOCK"
    if stock <= min_stock * 0.5:
        return "CRITICAL"
    if stock <= min_stock:
        return "LOW"
    return None


def suggested_order_quantity(min_stock: int) -> int:
    return max(min_stock * 2, 10)


def estimated_reorder_cost(quantity: int, unit_price) -> Decimal:
    # cost assumed at 70% of the selling price
    return _d(unit_price) * quantity * Decimal("0.7")


def days_until_stock_out(stock: int, min_stock: int) -> int:
    if stock <= 0:
        return 0
    return math.ceil(stock / max(1.0, min_stock / 30))


# =============================================================================
# Tax
# =============================================================================

def effective_gst_rate(igst_rate, cgst_rate, sgst_rate, tax_rate) -> Decimal:
    """
    Grouping rate for a line: IGST rate if set, else CGST + SGST when both
    are set, else the flat tax rate.
    """
    if igst_rate is not None:
        return _d(igst_rate)
    if cgst_rate is not None and sgst_rate is not None:
        return _d(cgst_rate) + _d(sgst_rate)
    return _d(tax_rate)


def has_tax(line) -> bool:
    return any(
        _d(value) > 0
        for value in (line.cgst_rate, line.sgst_rate, line.igst_rate, line.tax_rate)
    )


@dataclass
class GstRateRow:
    rate: Decimal
    taxable_amount: Decimal = ZERO
    cgst_amount: Decimal = ZERO
    sgst_amount: Decimal = ZERO
    igst_amount: Decimal = ZERO
    cess_amount: Decimal = ZERO
    line_count: int = 0

    @property
    def total_gst_amount(self) -> Decimal:
        return self.cgst_amount + self.sgst_amount + self.igst_amount


def group_by_gst_rate(lines: Iterable) -> list[GstRateRow]:
    """
    Per-rate GST breakdown over taxed lines. Missing component amounts count
    as zero; taxable amount is the line total less CGST, SGST and IGST.
    """
    groups: dict[Decimal, GstRateRow] = {}
    for line in lines:
        if not has_tax(line):
            continue
        rate = effective_gst_rate(line.igst_rate, line.cgst_rate, line.sgst_rate, line.tax_rate)
        row = groups.setdefault(rate, GstRateRow(rate))
        cgst, sgst, igst = _d(line.cgst_amount), _d(line.sgst_amount), _d(line.igst_amount)
        row.taxable_amount += _d(line.total_amount) - cgst - sgst - igst
        row.cgst_amount += cgst
        row.sgst_amount += sgst
        row.igst_amount += igst
        row.cess_amount += _d(line.cess_amount)
        row.line_count += 1
    return [groups[rate] for rate in sorted(groups)]


def embedded_tax(total, rate) -> Decimal:
    """Tax contained in a tax-inclusive total: total * rate / (100 + rate)."""
    rate = _d(rate)
    if rate <= 0:
        return ZERO
    return _d(total) * rate / (HUNDRED + rate)


def taxable_value(total, rate) -> Decimal:
    return _d(total) - embedded_tax(total, rate)


def compliance_score(
    transactions_without_tax: int,
    invoices_without_tax: int,
    parties_without_tax_number: int,
    items_without_tax_rate: int,
) -> int:
    penalty = (
        transactions_without_tax * 5
        + invoices_without_tax * 5
        + parties_without_tax_number * 2
        + items_without_tax_rate * 1
    )
    return max(0, 100 - penalty)


def compliance_recommendations(
    transactions_without_tax: int,
    invoices_without_tax: int,
    parties_without_tax_number: int,
    items_without_tax_rate: int,
) -> list[str]:
    messages = []
    if transactions_without_tax > 0:
        messages.append(f"{transactions_without_tax} transactions are missing tax information")
    if invoices_without_tax > 0:
        messages.append(f"{invoices_without_tax} invoices are missing tax details")
    if parties_without_tax_number > 0:
        messages.append(f"{parties_without_tax_number} parties are missing tax numbers")
    if items_without_tax_rate > 0:
        messages.append(f"{items_without_tax_rate} items are missing tax rates")
    return messages


# =============================================================================
# Parties
# =============================================================================

def credit_utilization(credit_limit, outstanding) -> float:
    return pct(outstanding, credit_limit)


def credit_risk(utilization: float) -> str:
    if utilization > 90:
        return "HIGH"
    if utilization > 70:
        return "MEDIUM"
    if utilization > 50:
        return "LOW"
    return "MINIMAL"


def available_credit(credit_limit, outstanding) -> Decimal:
    return max(ZERO, _d(credit_limit) - _d(outstanding))


def recommended_action(utilization: float, overdue_invoices: int) -> str:
    if utilization > 90:
        return "SUSPEND_CREDIT"
    if utilization > 70:
        return "MONITOR_CLOSELY"
    if overdue_invoices > 0:
        return "FOLLOW_UP_PAYMENT"
    return "NORMAL"


def loyalty_score(transaction_count: int, total_amount) -> float:
    return round(transaction_count * 10 + float(_d(total_amount)) / 1000, 2)


def payment_risk(paid_invoices: int, overdue_invoices: int) -> str:
    if overdue_invoices > paid_invoices:
        return "HIGH"
    if overdue_invoices > 0:
        return "MEDIUM"
    return "LOW"
