# Overview: Shared plumbing for report generation; read snapshot, deadline checks and aggregate helpers.

from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Iterator, Mapping

from flask import current_app
from sqlalchemy import Integer, cast, extract, func, text
from sqlalchemy.exc import OperationalError

from webill.extensions import db
from webill.models import Transaction
from webill.services.period_service import DateRange
from webill.validation import ValidationError

logger = logging.getLogger(__name__)

ZERO = Decimal("0")

# sqlite3 progress handler granularity (VM instructions between deadline checks)
_PROGRESS_STEPS = 10000


class ReportError(ValidationError):
    """Raised when a report request is invalid (unknown type, bad filter)."""
    pass


class ReportTimeoutError(TimeoutError):
    """Raised when a report does not finish before its deadline."""
    pass


def _is_timeout(exc: OperationalError) -> bool:
    message = str(exc.orig if exc.orig is not None else exc).lower()
    return "interrupted" in message or "statement timeout" in message


@contextmanager
def report_snapshot(timeout: float | None = None) -> Iterator[float]:
    """
    Run the enclosed queries inside one read-only transaction.

    Every aggregate issued inside the block sees the same snapshot of the
    ledger. The deadline is enforced by the database (statement_timeout on
    PostgreSQL, a progress handler on SQLite) and by ReportContext.checkpoint
    between queries. Yields the monotonic deadline.

    The transaction is always rolled back on exit; reports never write.
    """
    if timeout is None:
        timeout = float(current_app.config.get("REPORT_TIMEOUT_SECONDS", 30))
    deadline = time.monotonic() + timeout

    # drop any implicit transaction left open by earlier reads
    db.session.rollback()
    dialect = db.engine.dialect.name
    raw = None
    try:
        if dialect == "sqlite":
            raw = db.session.connection().connection.dbapi_connection
            raw.set_progress_handler(
                lambda: 1 if time.monotonic() > deadline else 0, _PROGRESS_STEPS
            )
            if not raw.in_transaction:
                db.session.execute(text("BEGIN"))
        elif dialect == "postgresql":
            db.session.execute(text("SET TRANSACTION ISOLATION LEVEL REPEATABLE READ, READ ONLY"))
            db.session.execute(text(f"SET LOCAL statement_timeout = {int(timeout * 1000)}"))
        yield deadline
    except OperationalError as exc:
        if time.monotonic() > deadline or _is_timeout(exc):
            logger.warning("Report query exceeded %.1fs deadline", timeout)
            raise ReportTimeoutError("Report generation timed out") from exc
        raise
    finally:
        if raw is not None:
            raw.set_progress_handler(None, 0)
        db.session.rollback()


@dataclass
class ReportContext:
    period: DateRange | None
    params: Mapping[str, Any] = field(default_factory=dict)
    now: datetime | None = None
    deadline: float | None = None

    def arg(self, name: str, default: Any = None) -> Any:
        value = self.params.get(name)
        if value is None or value == "":
            return default
        return value

    def checkpoint(self) -> None:
        """Raise ReportTimeoutError once the deadline has passed."""
        if self.deadline is not None and time.monotonic() > self.deadline:
            raise ReportTimeoutError("Report generation timed out")


# =============================================================================
# Aggregate helpers
# =============================================================================

def dec(value) -> Decimal:
    """Coerce an aggregate result (None, int, float, Decimal) to Decimal."""
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def period_key(column, unit: str):
    """
    Grouping expression for a datetime column.

    day -> 'YYYY-MM-DD', month -> 'YYYY-MM', hour -> 0..23,
    weekday -> 0..6 (Sunday = 0).
    """
    if db.engine.dialect.name == "postgresql":
        if unit == "day":
            return func.to_char(column, "YYYY-MM-DD")
        if unit == "month":
            return func.to_char(column, "YYYY-MM")
        if unit == "hour":
            return cast(extract("hour", column), Integer)
        if unit == "weekday":
            return cast(extract("dow", column), Integer)
    else:
        if unit == "day":
            return func.strftime("%Y-%m-%d", column)
        if unit == "month":
            return func.strftime("%Y-%m", column)
        if unit == "hour":
            return cast(func.strftime("%H", column), Integer)
        if unit == "weekday":
            return cast(func.strftime("%w", column), Integer)
    raise ValueError(f"Unsupported period unit: {unit}")


def month_label(key: str | None) -> str | None:
    """'2024-03' -> 'Mar 2024'."""
    if not key:
        return None
    return datetime.strptime(key, "%Y-%m").strftime("%b %Y")


@dataclass(frozen=True)
class TransactionTotals:
    count: int = 0
    total: Decimal = ZERO
    subtotal: Decimal = ZERO
    tax: Decimal = ZERO
    discount: Decimal = ZERO

    @property
    def average(self) -> Decimal:
        if not self.count:
            return ZERO
        return self.total / self.count


def transaction_totals(
    tx_types: str | tuple[str, ...],
    date_range: DateRange | None = None,
    *,
    payment_status: str | None = None,
    until: datetime | None = None,
) -> TransactionTotals:
    """Count and money sums over transactions of the given type(s)."""
    if isinstance(tx_types, str):
        tx_types = (tx_types,)
    query = db.session.query(
        func.count(Transaction.id),
        func.coalesce(func.sum(Transaction.total_amount), 0),
        func.coalesce(func.sum(Transaction.subtotal), 0),
        func.coalesce(func.sum(Transaction.tax_amount), 0),
        func.coalesce(func.sum(Transaction.discount_amount), 0),
    ).filter(Transaction.type.in_(tx_types))
    if date_range is not None:
        query = query.filter(Transaction.date >= date_range.start, Transaction.date <= date_range.end)
    if until is not None:
        query = query.filter(Transaction.date <= until)
    if payment_status is not None:
        query = query.filter(Transaction.payment_status == payment_status)
    count, total, subtotal, tax, discount = query.one()
    return TransactionTotals(
        count=int(count or 0),
        total=dec(total),
        subtotal=dec(subtotal),
        tax=dec(tax),
        discount=dec(discount),
    )


def in_range(column, date_range: DateRange):
    return column.between(date_range.start, date_range.end)
