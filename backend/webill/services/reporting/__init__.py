# Overview: Reporting entry points; dispatch report requests by domain and type inside a read snapshot.

"""
WeBill Reporting Aggregation Engine

================================================================================
PURPOSE: Derive read-only analytics from the ledger
================================================================================

Each domain module (dashboard, financial, inventory, parties, sales, tax)
exposes:
    REPORTS        {type: fn(ReportContext) -> dict}
    DEFAULT_TYPE   report served when no type is given
    DEFAULT_PERIOD optional period token (this-month otherwise)

RULES:
1. Reports never write. Every invocation runs inside report_snapshot, one
   read transaction that is always rolled back.
2. An unknown report type is a ReportError (400), never a silent default.
3. Reports past their deadline raise ReportTimeoutError (504).
"""

from __future__ import annotations

import logging
import time
from datetime import datetime
from typing import Any, Mapping

from webill.services.period_service import DEFAULT_PERIOD, resolve_period

from . import dashboard, financial, inventory, invoices, parties, pos, sales, tax
from .common import ReportContext, ReportError, ReportTimeoutError, report_snapshot

logger = logging.getLogger(__name__)

DOMAINS = {
    "dashboard": dashboard,
    "financial": financial,
    "inventory": inventory,
    "parties": parties,
    "sales": sales,
    "tax": tax,
}

__all__ = [
    "DOMAINS",
    "ReportError",
    "ReportTimeoutError",
    "run_report",
    "run_invoice_analytics",
    "run_pos_daily",
    "run_pos_performance",
]


def run_report(
    domain: str,
    report_type: str | None = None,
    params: Mapping[str, Any] | None = None,
    *,
    now: datetime | None = None,
    timeout: float | None = None,
) -> dict:
    module = DOMAINS.get(domain)
    if module is None:
        raise ReportError(f"Unknown report domain '{domain}'")
    params = params or {}
    report_type = report_type or module.DEFAULT_TYPE
    fn = module.REPORTS.get(report_type)
    if fn is None:
        raise ReportError("Invalid report type")

    period = resolve_period(
        params.get("period"),
        params.get("start_date"),
        params.get("end_date"),
        now=now,
        default=getattr(module, "DEFAULT_PERIOD", DEFAULT_PERIOD),
        full_quarter=getattr(module, "FULL_QUARTER", False),
    )

    started = time.monotonic()
    with report_snapshot(timeout) as deadline:
        result = fn(ReportContext(period=period, params=params, now=now, deadline=deadline))
    logger.info("Report %s/%s generated in %.3fs", domain, report_type, time.monotonic() - started)
    return result


def run_invoice_analytics(params: Mapping[str, Any], *, now: datetime | None = None, timeout: float | None = None) -> dict:
    days, customer_id = invoices.parse_params(params)
    with report_snapshot(timeout) as deadline:
        ctx = ReportContext(period=None, deadline=deadline)
        return invoices.analytics(days, customer_id, now=now, checkpoint=ctx.checkpoint)


def run_pos_daily(day: str | None = None, *, now: datetime | None = None, timeout: float | None = None) -> dict:
    with report_snapshot(timeout) as deadline:
        ctx = ReportContext(period=None, deadline=deadline)
        return pos.daily_analytics(day, now=now, checkpoint=ctx.checkpoint)


def run_pos_performance(data: dict, *, now: datetime | None = None, timeout: float | None = None) -> dict:
    with report_snapshot(timeout) as deadline:
        ctx = ReportContext(period=None, deadline=deadline)
        return pos.performance(data, now=now, checkpoint=ctx.checkpoint)
