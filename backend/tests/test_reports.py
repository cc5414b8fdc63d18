"""
Reporting engine tests against a small March 2024 ledger.

Ledger:
- PURCHASE 10 x Widget @ 5.00 (pending) from the supplier      = 50.00
- SALE 4 x Widget @ 8.00 + 10% tax (cash, completed) to customer = 35.20
- EXPENSE Rent                                                  = 10.00
- INCOME Interest                                               =  5.00
"""

import time
from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from webill.services import invoice_service, ledger_service
from webill.services.reporting import (
    ReportError,
    ReportTimeoutError,
    run_invoice_analytics,
    run_pos_daily,
    run_pos_performance,
    run_report,
)
from webill.services.reporting.common import ReportContext
from webill.time_utils import utcnow
from webill.validation import ValidationError

MARCH = {"start_date": "2024-03-01", "end_date": "2024-03-31"}
JUNE = {"start_date": "2024-06-01", "end_date": "2024-06-30"}


@pytest.fixture
def ledger(customer, supplier, widget):
    ledger_service.create_transaction({
        "type": "PURCHASE",
        "date": "2024-03-05T10:00:00",
        "supplier_id": supplier.id,
        "items": [{"item_id": widget.id, "quantity": 10, "unit_price": "5.00"}],
    })
    sale = ledger_service.create_transaction({
        "type": "SALE",
        "date": "2024-03-10T14:30:00",
        "customer_id": customer.id,
        "payment_status": "COMPLETED",
        "payment_method": "CASH",
        "items": [{"item_id": widget.id, "quantity": 4, "unit_price": "8.00", "tax_rate": 10}],
    })
    ledger_service.create_transaction(
        {"type": "EXPENSE", "date": "2024-03-12", "amount": "10.00", "category": "Rent"}
    )
    ledger_service.create_transaction(
        {"type": "INCOME", "date": "2024-03-15", "amount": "5.00", "category": "Interest"}
    )
    return sale


# =============================================================================
# DISPATCH
# =============================================================================


class TestDispatch:

    def test_unknown_report_type(self, db_session):
        with pytest.raises(ReportError, match="Invalid report type"):
            run_report("sales", "bogus")

    def test_unknown_domain(self, db_session):
        with pytest.raises(ReportError):
            run_report("payroll")

    def test_report_error_is_a_validation_error(self):
        assert issubclass(ReportError, ValidationError)

    def test_default_type_per_domain(self, db_session):
        assert "revenue" in run_report("financial", params=MARCH)
        assert "overview" in run_report("sales", params=MARCH)

    def test_expired_deadline_times_out(self, db_session):
        with pytest.raises(ReportTimeoutError):
            run_report("sales", "overview", MARCH, timeout=-1)

    def test_context_without_period(self):
        # invoice and POS analytics carry their own windows
        ctx = ReportContext(period=None, deadline=None)
        ctx.checkpoint()
        assert ctx.arg("period", "30") == "30"

        with pytest.raises(ReportTimeoutError):
            ReportContext(period=None, deadline=time.monotonic() - 1).checkpoint()

    def test_bad_period_dates(self, db_session):
        with pytest.raises(ValidationError):
            run_report("sales", "overview", {"start_date": "2024-03-31", "end_date": "2024-03-01"})


# =============================================================================
# FINANCIAL
# =============================================================================


class TestFinancialReports:

    def test_profit_and_loss(self, ledger):
        report = run_report("financial", "profit-loss", MARCH)

        assert report["revenue"]["sales"] == {"amount": 35.2, "count": 1, "tax": 3.2, "discount": 0.0}
        assert report["revenue"]["other_income"] == {"amount": 5.0, "count": 1}
        assert report["revenue"]["total"] == 40.2
        assert report["cost_of_goods_sold"]["total"] == 50.0
        assert report["gross_profit"]["amount"] == -9.8
        assert report["operating_expenses"]["by_category"] == [{"category": "Rent", "amount": 10.0, "count": 1}]
        assert report["net_profit"]["amount"] == -19.8

    def test_empty_period(self, ledger):
        report = run_report("financial", "profit-loss", JUNE)
        assert report["summary"]["total_revenue"] == 0.0
        assert report["summary"]["profit_margin"] == 0.0

    def test_balance_sheet(self, ledger):
        report = run_report("financial", "balance-sheet", MARCH)

        # 6 widgets left at unit price
        assert report["assets"]["current_assets"]["inventory"] == {"value": 30.0, "quantity": 6}
        assert report["liabilities"]["total_liabilities"] == 50.0
        assert report["equity"]["total_equity"] == -20.0

    def test_cash_flow(self, customer, supplier, widget):
        # sale payments are stamped at creation time, so the window is around today
        today = utcnow().date()
        window = {
            "start_date": (today - timedelta(days=1)).isoformat(),
            "end_date": (today + timedelta(days=1)).isoformat(),
        }
        ledger_service.create_transaction({
            "type": "SALE",
            "customer_id": customer.id,
            "payment_status": "COMPLETED",
            "payment_method": "CASH",
            "items": [{"item_id": widget.id, "quantity": 2, "unit_price": "10.00"}],
        })
        ledger_service.create_transaction(
            {"type": "INCOME", "amount": "5.00", "category": "Interest", "payment_status": "COMPLETED"}
        )
        ledger_service.create_transaction({
            "type": "PURCHASE",
            "supplier_id": supplier.id,
            "payment_status": "COMPLETED",
            "items": [{"item_id": widget.id, "quantity": 1, "unit_price": "5.00"}],
        })
        ledger_service.create_transaction({
            "type": "PURCHASE",
            "supplier_id": supplier.id,
            "items": [{"item_id": widget.id, "quantity": 10, "unit_price": "5.00"}],
        })
        ledger_service.create_transaction(
            {"type": "EXPENSE", "amount": "8.00", "category": "Fuel", "payment_status": "COMPLETED"}
        )
        ledger_service.create_transaction({"type": "EXPENSE", "amount": "3.00", "category": "Fuel"})

        report = run_report("financial", "cash-flow", window)

        operating = report["operating_activities"]
        assert operating["cash_inflows"]["sales_receipts"] == {"amount": 20.0, "count": 1}
        assert operating["cash_inflows"]["other_income"] == {"amount": 5.0, "count": 1}
        assert operating["cash_inflows"]["total"] == 25.0
        # pending purchase and pending expense stay out
        assert operating["cash_outflows"]["purchases"] == {"amount": 5.0, "count": 1}
        assert operating["cash_outflows"]["expenses"] == {"amount": 8.0, "count": 1}
        assert operating["cash_outflows"]["total"] == 13.0
        assert operating["net_operating_cash_flow"] == 12.0
        assert report["summary"]["trend"] == "positive"


# =============================================================================
# SALES / INVENTORY
# =============================================================================


class TestSalesReports:

    def test_overview(self, ledger):
        report = run_report("sales", "overview", MARCH)

        assert report["overview"]["total_sales"] == 35.2
        assert report["overview"]["total_transactions"] == 1
        assert report["comparison"]["growth"]["sales_growth"] == 0.0
        methods = report["breakdown"]["by_payment_method"]
        assert [(m["method"], m["percentage"]) for m in methods] == [("CASH", 100.0)]


class TestInventoryReports:

    def test_valuation(self, ledger):
        report = run_report("inventory", "valuation")
        assert report["summary"]["total_quantity"] == 6
        assert report["summary"]["total_retail_value"] == 30.0
        assert report["category_valuation"][0]["category_name"] == "Hardware"

    def test_low_stock(self, make_item, ledger):
        make_item("Empty Shelf", "3.00", stock=0)
        make_item("Nearly Out", "4.00", stock=2, min_stock=10)

        report = run_report("inventory", "low-stock")

        assert report["summary"]["out_of_stock_count"] == 1
        assert report["summary"]["critically_low_count"] == 1
        assert report["summary"]["low_stock_count"] == 0
        assert {row["name"] for row in report["reorder_suggestions"]} == {"Empty Shelf", "Nearly Out"}

    def test_turnover(self, make_item, customer):
        mover = make_item("Mover", "10.00", stock=14, cost_price=Decimal("4.00"))
        make_item("Idle", "3.00", stock=7)
        ledger_service.create_transaction({
            "type": "SALE",
            "date": "2024-03-10",
            "customer_id": customer.id,
            "items": [{"item_id": mover.id, "quantity": 13, "unit_price": "10.00"}],
        })

        report = run_report("inventory", "turnover", MARCH)

        # COGS 13 x 4.00 = 52 over 1 x 4.00 left in stock
        fast = report["categories"]["fast_moving"]
        assert [row["item_name"] for row in fast] == ["Mover"]
        assert fast[0]["cost_of_goods_sold"] == 52.0
        assert fast[0]["average_inventory_value"] == 4.0
        assert fast[0]["turnover_ratio"] == 13.0
        assert fast[0]["days_in_inventory"] == 28.08

        idle = report["categories"]["no_movement"]
        assert [row["item_name"] for row in idle] == ["Idle"]
        assert idle[0]["turnover_ratio"] == 0.0
        assert idle[0]["days_in_inventory"] == 365.0

        summary = report["summary"]
        assert (summary["fast_moving_count"], summary["medium_moving_count"],
                summary["slow_moving_count"], summary["no_movement_count"]) == (1, 0, 0, 1)


# =============================================================================
# TAX
# =============================================================================


class TestTaxReports:

    @pytest.fixture
    def gst_ledger(self, customer, supplier, widget):
        ledger_service.create_transaction({
            "type": "SALE",
            "date": "2024-03-10",
            "customer_id": customer.id,
            "items": [
                # cgst without sgst falls through to the flat rate
                {"item_id": widget.id, "quantity": 1, "unit_price": "100.00", "tax_rate": 18, "cgst_rate": 9},
                # igst wins over the flat rate
                {"item_id": widget.id, "quantity": 1, "unit_price": "100.00", "tax_rate": 18, "igst_rate": 12},
                {"item_id": widget.id, "quantity": 1, "unit_price": "100.00", "cgst_rate": 6, "sgst_rate": 6},
            ],
        })
        ledger_service.create_transaction({
            "type": "PURCHASE",
            "date": "2024-03-05",
            "supplier_id": supplier.id,
            "items": [{"item_id": widget.id, "quantity": 1, "unit_price": "50.00", "tax_rate": 10}],
        })

    def test_gst_rate_grouping_order(self, gst_ledger):
        report = run_report("tax", "summary", MARCH)

        by_rate = {row["rate"]: row for row in report["breakdown"]["sales_gst_by_rate"]}
        assert {rate: row["transaction_count"] for rate, row in by_rate.items()} == {12.0: 2, 18.0: 1}
        assert by_rate[12.0]["igst_amount"] == 12.0
        assert by_rate[12.0]["cgst_amount"] == 6.0
        assert by_rate[12.0]["sgst_amount"] == 6.0
        assert by_rate[12.0]["total_gst_amount"] == 24.0

        purchases = report["breakdown"]["purchase_gst_by_rate"]
        assert [(row["rate"], row["transaction_count"]) for row in purchases] == [(10.0, 1)]

    def test_net_liability(self, gst_ledger, customer):
        invoice_service.create_invoice({
            "customer_id": customer.id,
            "status": "SENT",
            "issue_date": "2024-03-20",
            "items": [{"quantity": 1, "unit_price": "40.00", "tax_rate": 10}],
        })

        summary = run_report("tax", "summary", MARCH)["summary"]

        # flat tax on the sale lines: 18 + 18 + 0
        assert summary["output_gst"] == {"from_sales": 36.0, "from_invoices": 4.0, "total": 40.0}
        assert summary["input_gst"] == {"from_purchases": 5.0, "total": 5.0}
        assert summary["net_gst_liability"] == 35.0


# =============================================================================
# PARTIES
# =============================================================================


class TestPartyReports:

    def test_aging_buckets_sum_to_total(self, customer):
        invoice_service.create_invoice(
            {"customer_id": customer.id, "status": "SENT", "issue_date": "2024-01-01",
             "payment_terms_days": 1, "total_amount": "100.00"}
        )
        invoice_service.create_invoice(
            {"customer_id": customer.id, "status": "SENT", "issue_date": "2024-06-10",
             "payment_terms_days": 30, "total_amount": "60.00"}
        )

        report = run_report("parties", "aging", dict(JUNE, party_type="customer"))

        summary = report["summary"]
        assert summary["total_outstanding"] == 160.0
        assert summary["breakdown"]["current"] == 60.0
        assert summary["breakdown"]["days_over_90"] == 100.0
        assert sum(summary["breakdown"].values()) == summary["total_outstanding"]
        assert report["aging_details"][0]["risk_level"] == "HIGH"

    def test_supplier_aging_uses_pending_purchases(self, ledger):
        report = run_report("parties", "aging", dict(JUNE, party_type="supplier"))
        assert report["summary"]["total_outstanding"] == 50.0
        assert report["summary"]["breakdown"]["days_61_90"] == 50.0

    def test_credit_analysis(self, make_party):
        buyer = make_party("CUSTOMER", "Big Buyer", email="big@buyer.test", credit_limit=Decimal("1000"))
        invoice_service.create_invoice({"customer_id": buyer.id, "status": "SENT", "total_amount": "950.00"})

        report = run_report("parties", "credit-analysis", {"party_type": "customer"})

        row = report["credit_analysis"][0]
        assert row["credit_utilization"] == 95.0
        assert row["credit_risk"] == "HIGH"
        assert row["available_credit"] == 50.0
        assert row["recommended_action"] == "SUSPEND_CREDIT"
        assert report["summary"]["risk_distribution"]["high"] == 1

    def test_credit_analysis_customers_only(self, db_session):
        with pytest.raises(ReportError):
            run_report("parties", "credit-analysis", {"party_type": "supplier"})


# =============================================================================
# INVOICE / POS ANALYTICS
# =============================================================================


class TestInvoiceAnalytics:

    def test_summary_and_aging(self, customer):
        paid = invoice_service.create_invoice(
            {"customer_id": customer.id, "status": "SENT", "total_amount": "80.00"}
        )
        invoice_service.record_payment(paid.id, {"amount": "80.00", "payment_method": "CARD"})
        invoice_service.create_invoice({"customer_id": customer.id, "status": "SENT", "total_amount": "20.00"})

        report = run_invoice_analytics({"period": "30"})

        summary = report["summary"]
        assert summary["total_invoices"] == 2
        assert summary["total_revenue"] == 100.0
        assert summary["paid_revenue"] == 80.0
        assert summary["outstanding_revenue"] == 20.0
        assert summary["collection_efficiency"] == 80.0
        assert report["payment_stats"]["total_payments"] == 1
        assert sum(row["amount"] for row in report["aging_report"]) == 20.0
        assert report["period"]["days"] == 30

    def test_bad_period(self, db_session):
        with pytest.raises(ValidationError):
            run_invoice_analytics({"period": "-3"})


class TestPosAnalytics:

    def test_daily(self, ledger):
        report = run_pos_daily(ledger.created_at.date().isoformat())

        assert report["today_sales"]["total_sales"] == 35.2
        assert report["today_sales"]["total_items"] == 4
        assert report["payment_methods"][0]["method"] == "CASH"
        assert report["summary"]["peak_hour"] == ledger.created_at.hour
        assert len(report["hourly_trends"]) == 24

    def test_quiet_day(self, db_session):
        report = run_pos_daily("2001-01-01")
        assert report["today_sales"]["total_transactions"] == 0
        assert report["summary"]["peak_hour"] is None

    def test_performance_with_comparison(self, ledger):
        day = ledger.created_at.date().isoformat()

        report = run_pos_performance({
            "start_date": day,
            "end_date": day,
            "compare_with": {"start_date": "2001-01-01", "end_date": "2001-01-01"},
        })

        assert report["metrics"]["total_sales"] == 35.2
        assert report["comparison"]["changes"]["sales_change"] == 0.0
        assert len(report["daily_breakdown"]) == 1

    def test_performance_requires_dates(self, db_session):
        with pytest.raises(ValidationError):
            run_pos_performance({"start_date": "2024-03-01"})


class TestDashboard:

    def test_overview_shape(self, ledger):
        report = run_report("dashboard", "overview", MARCH)
        for key in ("kpis", "revenue_trends", "sales_analytics", "inventory_insights",
                    "customer_insights", "financial_health"):
            assert key in report
        assert report["kpis"]["total_revenue"]["value"] == 40.2

    def test_kpis(self, ledger):
        report = run_report("dashboard", "kpis", MARCH)
        assert report["total_sales"]["count"] == 1
        assert report["active_customers"]["count"] == 1
