# Overview: Service-layer operations for invoice lifecycle; status transitions and reminder composition.

"""
WeBill Invoice Lifecycle Service

================================================================================
PURPOSE: Enforce the invoice status machine and compose payment reminders
================================================================================

STATE MACHINE:
    DRAFT -> SENT -> OVERDUE -> PAID
                 \\-----------> PAID
    any non-PAID state -> CANCELLED

    DRAFT:     editable, deletable, not yet issued
    SENT:      issued to the customer (sent_date stamped on first send)
    OVERDUE:   SENT and past due_date
    PAID:      terminal; paid_amount == total_amount, balance 0
    CANCELLED: terminal; paid_amount reset to 0, balance == total

RULES:
1. PAID and CANCELLED are terminal.
2. OVERDUE is only reachable from SENT, and only once due_date has passed.
3. Requesting the current status is a no-op.
4. Reminders are refused for PAID/CANCELLED invoices and for customers
   without an email; a refused reminder changes nothing.
5. Reminder "sending" is composition only; delivery is someone else's job.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal

from flask import current_app

from ..extensions import db
from ..models import Invoice, Payment
from ..models.invoices import INVOICE_STATUSES
from ..models.transactions import PAYMENT_METHODS
from ..validation import (
    ValidationError,
    NotFoundError,
    clean_str,
    money_out,
    optional_money,
    to_choice,
)
from webill.time_utils import to_utc_z, utcnow
from .concurrency import begin_serialized_write, lock_for_update, run_with_retry
from .ledger_service import generate_payment_number

logger = logging.getLogger(__name__)


TERMINAL_STATUSES = {"PAID", "CANCELLED"}

VALID_TRANSITIONS = {
    ("DRAFT", "SENT"),
    ("DRAFT", "CANCELLED"),
    ("SENT", "OVERDUE"),
    ("SENT", "PAID"),
    ("SENT", "CANCELLED"),
    ("OVERDUE", "PAID"),
    ("OVERDUE", "CANCELLED"),
}

REMINDER_TYPES = ("payment", "final_notice", "thank_you")


class InvoiceLifecycleError(ValidationError):
    """
    Raised when an invalid status transition or reminder is attempted.

    This is a domain error, not a technical error.
    """
    pass


def validate_status(status: str) -> None:
    if status not in INVOICE_STATUSES:
        raise InvoiceLifecycleError(
            f"Invalid status '{status}'. Must be one of: {', '.join(INVOICE_STATUSES)}"
        )


def can_transition(from_status: str, to_status: str) -> bool:
    validate_status(from_status)
    validate_status(to_status)
    if from_status == to_status:
        return True
    return (from_status, to_status) in VALID_TRANSITIONS


def days_overdue(due_date: datetime, now: datetime) -> int:
    """ceil((now - due_date) / 1 day); negative or zero when not yet due."""
    return math.ceil((now - due_date) / timedelta(days=1))


def days_until_due(due_date: datetime, now: datetime) -> int:
    return math.ceil((due_date - now) / timedelta(days=1)) if now < due_date else 0


def _load_locked(invoice_id: int) -> Invoice:
    invoice = lock_for_update(db.session.query(Invoice).filter_by(id=invoice_id)).first()
    if not invoice:
        raise NotFoundError("Invoice not found")
    return invoice


def apply_status_change(
    invoice: Invoice,
    new_status: str,
    *,
    payment_amount: Decimal | None = None,
    payment_method: str | None = None,
    payment_reference: str | None = None,
    now: datetime | None = None,
) -> bool:
    """
    Move a loaded invoice to new_status inside the caller's unit of work.

    Returns False for a same-status no-op. Does not commit.
    """
    now = now or utcnow()
    new_status = str(new_status).strip().upper()
    validate_status(new_status)
    old_status = invoice.status

    if new_status == old_status:
        return False
    if not can_transition(old_status, new_status):
        raise InvoiceLifecycleError(f"Cannot change invoice status from {old_status} to {new_status}")

    if new_status == "SENT":
        if old_status == "DRAFT":
            invoice.sent_date = now
    elif new_status == "OVERDUE":
        if now <= invoice.due_date:
            raise InvoiceLifecycleError("Invoice is not past its due date")
    elif new_status == "PAID":
        if payment_amount and payment_method:
            invoice.payments.append(
                Payment(
                    payment_no=generate_payment_number(),
                    amount=payment_amount,
                    payment_date=now,
                    payment_method=payment_method,
                    status="COMPLETED",
                    reference=payment_reference,
                    notes=f"Payment for invoice {invoice.invoice_no}",
                )
            )
        invoice.paid_amount = invoice.total_amount
        invoice.paid_date = now
    elif new_status == "CANCELLED":
        invoice.paid_amount = 0

    invoice.status = new_status
    invoice.recompute_balance()
    logger.info("Invoice %s status %s -> %s", invoice.invoice_no, old_status, new_status)
    return True


def transition_status(invoice_id: int, data: dict) -> Invoice:
    """Status change requested over the API: {status, payment_amount?, payment_method?, payment_reference?}."""
    from .invoice_service import get_invoice

    if not isinstance(data, dict) or not data.get("status"):
        raise ValidationError("status is required")
    status = str(data.get("status")).strip().upper()
    validate_status(status)
    payment_amount = optional_money(data.get("payment_amount"), "payment_amount", default=None)
    raw_method = data.get("payment_method")
    payment_method = to_choice(raw_method, "payment_method", PAYMENT_METHODS) if raw_method else None

    def _op():
        begin_serialized_write()
        invoice = _load_locked(invoice_id)
        apply_status_change(
            invoice,
            status,
            payment_amount=payment_amount,
            payment_method=payment_method,
            payment_reference=clean_str(data.get("payment_reference"), 128),
        )
        db.session.commit()
        return invoice.id

    return get_invoice(run_with_retry(_op))


def status_analytics(invoice: Invoice, now: datetime | None = None) -> dict:
    now = now or utcnow()
    open_invoice = invoice.status != "PAID"
    past_due = days_overdue(invoice.due_date, now) if open_invoice and now > invoice.due_date else 0
    until_due = days_until_due(invoice.due_date, now) if open_invoice else 0
    total = invoice.total_amount or 0
    return {
        "current_status": invoice.status,
        "days_past_due": past_due,
        "days_until_due": until_due,
        "is_overdue": past_due > 0,
        "total_paid": money_out(invoice.paid_amount),
        "balance_remaining": money_out(invoice.balance_amount),
        "payment_progress": float(invoice.paid_amount / total * 100) if total > 0 else 0.0,
        "reminders_sent": invoice.reminders_sent,
        "last_reminder_date": to_utc_z(invoice.last_reminder_date),
    }


# =============================================================================
# Reminders
# =============================================================================

@dataclass(frozen=True)
class ReminderMessage:
    subject: str
    message: str


def _us_date(value: datetime) -> str:
    return f"{value.month}/{value.day}/{value.year}"


def compose_reminder(
    *,
    invoice_no: str,
    customer_name: str,
    due_date: datetime,
    balance_amount,
    paid_amount,
    reminder_type: str,
    overdue_days: int,
    custom_message: str | None = None,
    company_name: str = "WeBill",
) -> ReminderMessage:
    """Subject and body for a reminder; custom_message replaces the template body."""
    sign_off = f"Best regards,\n{company_name} Team"
    amount_due = f"${money_out(balance_amount):.2f}"
    due = _us_date(due_date)
    greeting = f"Dear {customer_name},\n\n"

    if reminder_type == "payment":
        if overdue_days > 0:
            subject = f"Overdue Payment Reminder - Invoice {invoice_no}"
            body = (
                f"{greeting}This is a reminder that your payment for Invoice {invoice_no} is now "
                f"{overdue_days} days overdue. The original due date was {due}.\n\n"
                f"Amount Due: {amount_due}\n\n"
                "Please arrange payment at your earliest convenience to avoid any late fees.\n\n"
                "Thank you for your prompt attention to this matter.\n\n"
                f"{sign_off}"
            )
        else:
            subject = f"Payment Reminder - Invoice {invoice_no}"
            body = (
                f"{greeting}This is a friendly reminder that payment for Invoice {invoice_no} "
                f"is due on {due}.\n\n"
                f"Amount Due: {amount_due}\n\n"
                "Please ensure payment is made by the due date to avoid any late fees.\n\n"
                "Thank you for your business.\n\n"
                f"{sign_off}"
            )
    elif reminder_type == "final_notice":
        subject = f"Final Notice - Invoice {invoice_no}"
        body = (
            f"{greeting}This is a FINAL NOTICE for Invoice {invoice_no}, which is now "
            f"{overdue_days} days overdue.\n\n"
            f"Amount Due: {amount_due}\n"
            f"Original Due Date: {due}\n\n"
            "Immediate payment is required to avoid further collection actions. Please contact us "
            "immediately if you have any questions or concerns.\n\n"
            "Thank you for your immediate attention.\n\n"
            f"{sign_off}"
        )
    elif reminder_type == "thank_you":
        subject = f"Thank You - Payment Received for Invoice {invoice_no}"
        body = (
            f"{greeting}Thank you for your payment of ${money_out(paid_amount):.2f} "
            f"for Invoice {invoice_no}.\n\n"
            "We appreciate your prompt payment and continued business.\n\n"
            f"{sign_off}"
        )
    else:
        subject = f"Invoice {invoice_no} - {reminder_type}"
        body = (
            f"{greeting}Regarding Invoice {invoice_no}.\n\n"
            f"Amount Due: {amount_due}\n"
            f"Due Date: {due}\n\n"
            f"{sign_off}"
        )

    return ReminderMessage(subject=subject, message=custom_message or body)


def generate_reminder(
    invoice_id: int,
    reminder_type: str = "payment",
    custom_message: str | None = None,
    *,
    now: datetime | None = None,
) -> dict:
    """
    Record a reminder on the invoice and return the composed message.

    Bumps reminders_sent, stamps last_reminder_date and flips SENT to OVERDUE
    once past due, all in one unit.
    """
    from .invoice_service import get_invoice

    reminder_type = (reminder_type or "payment").strip()
    custom_message = clean_str(custom_message)
    company_name = current_app.config.get("COMPANY_NAME", "WeBill")

    def _op():
        begin_serialized_write()
        stamp = now or utcnow()
        invoice = _load_locked(invoice_id)
        if invoice.status in TERMINAL_STATUSES:
            raise InvoiceLifecycleError("Cannot send reminder for paid or cancelled invoices")
        customer = invoice.customer
        if customer is None or not customer.email:
            raise InvoiceLifecycleError("Customer email is required to send reminders")

        overdue = days_overdue(invoice.due_date, stamp)
        if overdue > 0 and invoice.status == "SENT":
            invoice.status = "OVERDUE"
        invoice.reminders_sent = (invoice.reminders_sent or 0) + 1
        invoice.last_reminder_date = stamp

        composed = compose_reminder(
            invoice_no=invoice.invoice_no,
            customer_name=customer.name,
            due_date=invoice.due_date,
            balance_amount=invoice.balance_amount,
            paid_amount=invoice.paid_amount,
            reminder_type=reminder_type,
            overdue_days=overdue,
            custom_message=custom_message,
            company_name=company_name,
        )
        reminder = {
            "invoice_id": invoice.id,
            "invoice_no": invoice.invoice_no,
            "customer_email": customer.email,
            "customer_name": customer.name,
            "reminder_type": reminder_type,
            "subject": composed.subject,
            "message": composed.message,
            "sent_at": to_utc_z(stamp),
            "reminder_count": invoice.reminders_sent,
        }
        db.session.commit()
        logger.info(
            "Composed %s reminder #%d for invoice %s", reminder_type, invoice.reminders_sent, invoice.invoice_no
        )
        return reminder

    reminder = run_with_retry(_op)
    return {
        "success": True,
        "message": "Reminder sent successfully",
        "reminder_data": reminder,
        "invoice": get_invoice(invoice_id).to_dict(),
    }


def suggested_reminder_type(overdue_days: int) -> str:
    return "final_notice" if overdue_days > 30 else "payment"


def get_reminder_info(invoice_id: int, *, now: datetime | None = None) -> dict:
    """Read-only reminder stats for an invoice."""
    now = now or utcnow()
    invoice = db.session.get(Invoice, invoice_id)
    if invoice is None:
        raise NotFoundError("Invoice not found")

    overdue = days_overdue(invoice.due_date, now) if now > invoice.due_date else 0
    return {
        "invoice": {
            "id": invoice.id,
            "invoice_no": invoice.invoice_no,
            "reminders_sent": invoice.reminders_sent,
            "last_reminder_date": to_utc_z(invoice.last_reminder_date),
            "status": invoice.status,
            "due_date": to_utc_z(invoice.due_date),
            "balance_amount": money_out(invoice.balance_amount),
        },
        "reminder_stats": {
            "total_reminders_sent": invoice.reminders_sent,
            "last_reminder_date": to_utc_z(invoice.last_reminder_date),
            "days_overdue": overdue,
            "days_until_due": days_until_due(invoice.due_date, now),
            "is_overdue": overdue > 0,
            "can_send_reminder": invoice.status not in TERMINAL_STATUSES,
            "suggested_reminder_type": suggested_reminder_type(overdue),
        },
    }
