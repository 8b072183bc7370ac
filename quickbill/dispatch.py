"""Delivering documents to clients by email.

Status only advances after the mailer confirms delivery; any failure in PDF
rendering or transport surfaces as ``DispatchError`` with the document left
untouched.
"""

import logging
from datetime import date
from decimal import Decimal
from typing import Optional

from .config import get_settings
from .errors import DispatchError, TransitionError, ValidationError
from .mailer import Attachment, Mailer, render_email
from .models import Estimate, Invoice, User
from .pdf import build_pdf_payload, render_pdf
from .services import (
    can_transition,
    client_display_name,
    is_overdue,
    mark_estimate_sent,
    mark_sent,
    money_round,
)

logger = logging.getLogger(__name__)


def _recipient(document, recipient: Optional[str]) -> str:
    if recipient:
        return recipient
    client = document.client
    if client is None or client.is_deleted or not client.email:
        raise ValidationError("No recipient address available.", {"recipient_email": "required"})
    return client.email


def _render_attachment(document, issuer: User, filename: str) -> Attachment:
    try:
        pdf_bytes = render_pdf(build_pdf_payload(document, issuer, document.client))
    except Exception as exc:
        logger.exception("PDF rendering failed for %s %s", type(document).__name__, document.id)
        raise DispatchError("Could not generate the PDF; nothing was sent.") from exc
    return Attachment(filename=filename, content=pdf_bytes)


def _deliver(mailer: Mailer, recipient: str, subject: str, body: str, attachment, issuer: User, timeout):
    try:
        delivered = mailer.send(
            recipient,
            subject,
            body,
            [attachment] if attachment else [],
            timeout=timeout,
            from_name=issuer.display_name,
        )
    except Exception as exc:
        logger.warning("Mailer raised while sending to %s: %s", recipient, exc)
        delivered = False
    if not delivered:
        raise DispatchError("Email delivery was not confirmed; status unchanged.")


def _money_context(document) -> dict:
    return {
        "subtotal": money_round(Decimal(document.subtotal or 0)),
        "total_tax": money_round(Decimal(document.total_tax or 0)),
        "total_amount": money_round(Decimal(document.total_amount or 0)),
    }


def send_invoice(
    invoice: Invoice,
    issuer: User,
    mailer: Mailer,
    recipient: Optional[str] = None,
    timeout: Optional[float] = None,
) -> Invoice:
    if not can_transition(invoice, "mark_sent"):
        raise TransitionError(f"Cannot send a {invoice.status} invoice.")
    address = _recipient(invoice, recipient)
    attachment = _render_attachment(invoice, issuer, f"Invoice-{invoice.invoice_number}.pdf")
    subject = f"Invoice #{invoice.invoice_number} from {issuer.display_name}"
    body = render_email(
        "invoice.html",
        {
            "issuer": issuer,
            "client_name": client_display_name(invoice.client),
            "number": invoice.invoice_number,
            "due_date": invoice.due_date,
            "notes": invoice.notes,
            "payment_terms": invoice.payment_terms,
            "currency": get_settings().currency_symbol,
            **_money_context(invoice),
        },
    )
    _deliver(mailer, address, subject, body, attachment, issuer, timeout)
    return mark_sent(invoice)


def send_reminder(
    invoice: Invoice,
    issuer: User,
    mailer: Mailer,
    today: Optional[date] = None,
    timeout: Optional[float] = None,
) -> int:
    """Email a payment reminder for an overdue invoice; returns days overdue."""
    today = today or date.today()
    if not is_overdue(invoice, today):
        raise TransitionError(f"Invoice {invoice.invoice_number} is not overdue.")
    days_overdue = (today - invoice.due_date).days
    address = _recipient(invoice, None)
    subject = f"Payment Reminder: Invoice #{invoice.invoice_number} is {days_overdue} days overdue"
    body = render_email(
        "reminder.html",
        {
            "issuer": issuer,
            "client_name": client_display_name(invoice.client),
            "number": invoice.invoice_number,
            "due_date": invoice.due_date,
            "days_overdue": days_overdue,
            "currency": get_settings().currency_symbol,
            **_money_context(invoice),
        },
    )
    _deliver(mailer, address, subject, body, None, issuer, timeout)
    return days_overdue


def send_estimate(
    estimate: Estimate,
    issuer: User,
    mailer: Mailer,
    recipient: Optional[str] = None,
    timeout: Optional[float] = None,
) -> Estimate:
    if not can_transition(estimate, "mark_sent"):
        raise TransitionError(f"Cannot send a {estimate.status} estimate.")
    address = _recipient(estimate, recipient)
    attachment = _render_attachment(estimate, issuer, f"Estimate-{estimate.estimate_number}.pdf")
    subject = f"Estimate #{estimate.estimate_number} from {issuer.display_name}"
    body = render_email(
        "estimate.html",
        {
            "issuer": issuer,
            "client_name": client_display_name(estimate.client),
            "number": estimate.estimate_number,
            "valid_until": estimate.valid_until,
            "notes": estimate.notes,
            "currency": get_settings().currency_symbol,
            **_money_context(estimate),
        },
    )
    _deliver(mailer, address, subject, body, attachment, issuer, timeout)
    return mark_estimate_sent(estimate)
