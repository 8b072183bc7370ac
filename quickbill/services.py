"""Invoice ledger: totals computation and document status lifecycle.

Everything in here is synchronous and free of I/O so it can be used from
request handlers, the PDF renderer or a batch job alike.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from .errors import InvoiceLockedError, TransitionError, ValidationError
from .models import (
    MONEY_DIGITS,
    QUANTITY_DIGITS,
    RATE_DIGITS,
    Estimate,
    EstimateLine,
    EstimateStatus,
    Invoice,
    InvoiceLine,
    InvoiceStatus,
)

logger = logging.getLogger(__name__)

HUNDRED = Decimal("100")
ZERO = Decimal("0")


@dataclass(frozen=True)
class LineItem:
    description: str
    quantity: Decimal
    unit_price: Decimal
    tax_rate: Decimal = ZERO


def money_round(value: Decimal) -> Decimal:
    return Decimal(value).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def _to_decimal(value: Any, field: str, errors: Dict[str, str]) -> Optional[Decimal]:
    if value is None or isinstance(value, bool):
        errors[field] = "A numeric value is required."
        return None
    try:
        result = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError):
        errors[field] = "Invalid numeric value."
        return None
    if not result.is_finite():
        errors[field] = "Invalid numeric value."
        return None
    return result


def _step(scale: int) -> Decimal:
    return Decimal(1).scaleb(-scale)


def _check_digits(value: Optional[Decimal], digits: Tuple[int, int], field: str, errors: Dict[str, str]) -> None:
    """Reject values the column declared by ``digits`` would not store exactly."""
    if value is None or field in errors:
        return
    precision, scale = digits
    if abs(value) >= Decimal(10) ** (precision - scale):
        errors[field] = f"Value must be less than {Decimal(10) ** (precision - scale)}."
    elif value != value.quantize(_step(scale)):
        errors[field] = f"At most {scale} decimal places are allowed."


def to_storage(value: Decimal) -> Decimal:
    """Quantize a computed amount to the scale of the money columns."""
    return Decimal(value).quantize(_step(MONEY_DIGITS[1]), rounding=ROUND_HALF_UP)


def _field(raw: Any, name: str, default: Any = None) -> Any:
    if isinstance(raw, Mapping):
        return raw.get(name, default)
    return getattr(raw, name, default)


def validate_items(items: Iterable[Any]) -> List[LineItem]:
    """Check every line and return them as ``LineItem`` values.

    Accepts mappings, ORM lines or any object exposing ``description``,
    ``quantity``, ``unit_price`` and ``tax_rate``. Raises ``ValidationError``
    listing every offending field before anything is computed.
    """
    raw_items = list(items or [])
    if not raw_items:
        raise ValidationError("At least one line item is required.", {"items": "required"})

    errors: Dict[str, str] = {}
    result: List[LineItem] = []
    for idx, raw in enumerate(raw_items):
        prefix = f"items[{idx}]"
        line_errors: Dict[str, str] = {}

        description = (_field(raw, "description") or "").strip()
        if not description:
            line_errors["description"] = "Description is required."

        qty = _to_decimal(_field(raw, "quantity"), "quantity", line_errors)
        if qty is not None and qty <= 0:
            line_errors["quantity"] = "Quantity must be greater than 0."
        _check_digits(qty, QUANTITY_DIGITS, "quantity", line_errors)

        price = _to_decimal(_field(raw, "unit_price"), "unit_price", line_errors)
        if price is not None and price < 0:
            line_errors["unit_price"] = "Unit price cannot be negative."
        _check_digits(price, MONEY_DIGITS, "unit_price", line_errors)

        tax_raw = _field(raw, "tax_rate", 0)
        tax = _to_decimal(ZERO if tax_raw is None else tax_raw, "tax_rate", line_errors)
        if tax is not None and (tax < 0 or tax > HUNDRED):
            line_errors["tax_rate"] = "Tax rate must be between 0 and 100."
        _check_digits(tax, RATE_DIGITS, "tax_rate", line_errors)

        if line_errors:
            for key, message in line_errors.items():
                errors[f"{prefix}.{key}"] = message
            continue
        result.append(LineItem(description, qty, price, tax))

    if errors:
        raise ValidationError("Invalid line items.", errors)
    return result


def validate_discount(discount_pct: Any) -> Decimal:
    errors: Dict[str, str] = {}
    value = _to_decimal(ZERO if discount_pct is None else discount_pct, "discount_pct", errors)
    if value is not None and (value < 0 or value > HUNDRED):
        errors["discount_pct"] = "Discount must be between 0 and 100."
    _check_digits(value, RATE_DIGITS, "discount_pct", errors)
    if errors:
        raise ValidationError("Invalid discount.", errors)
    return value


def compute_line_amounts(items: Iterable[Any]) -> List[Tuple[LineItem, Decimal, Decimal]]:
    result = []
    for item in validate_items(items):
        line_subtotal = item.quantity * item.unit_price
        line_tax = line_subtotal * item.tax_rate / HUNDRED
        result.append((item, line_subtotal, line_tax))
    return result


def compute_totals(items: Iterable[Any]) -> Dict[str, Decimal]:
    subtotal = ZERO
    total_tax = ZERO
    for _, line_subtotal, line_tax in compute_line_amounts(items):
        subtotal += line_subtotal
        total_tax += line_tax

    return {
        "subtotal": subtotal,
        "total_tax": total_tax,
        "total_amount": subtotal + total_tax,
    }


def compute_estimate_totals(items: Iterable[Any], discount_pct: Any = ZERO) -> Dict[str, Decimal]:
    """Totals for an estimate: the discount reduces both the base and its tax."""
    discount = validate_discount(discount_pct)
    totals = compute_totals(items)
    keep = (HUNDRED - discount) / HUNDRED
    discount_amount = totals["subtotal"] * discount / HUNDRED
    total_tax = totals["total_tax"] * keep
    return {
        "subtotal": totals["subtotal"],
        "discount_amount": discount_amount,
        "total_tax": total_tax,
        "total_amount": totals["subtotal"] - discount_amount + total_tax,
    }


def rounded_totals(totals: Mapping[str, Decimal]) -> Dict[str, Decimal]:
    return {key: money_round(value) for key, value in totals.items()}


UNKNOWN_CLIENT = "Unknown Client"


def client_display_name(client) -> str:
    """Deleted or missing clients stay referenced but display as unknown."""
    if client is None or client.is_deleted:
        return UNKNOWN_CLIENT
    return client.name


def ensure_editable(document: Union[Invoice, Estimate]) -> None:
    if isinstance(document, Invoice):
        if document.status in (InvoiceStatus.PAID.value, InvoiceStatus.CANCELLED.value):
            raise InvoiceLockedError(
                f"Invoice {document.invoice_number} is {document.status}; it can no longer be edited."
            )
    elif document.invoice_id is not None or document.status in (
        EstimateStatus.ACCEPTED.value,
        EstimateStatus.REJECTED.value,
    ):
        raise InvoiceLockedError(
            f"Estimate {document.estimate_number} is {document.status}; it can no longer be edited."
        )


def recompute_on_edit(document: Union[Invoice, Estimate], new_items: Iterable[Any]):
    """Replace the document's items and overwrite its stored totals.

    Totals are computed before anything is assigned so a rejected edit leaves
    the document as it was.
    """
    ensure_editable(document)
    items = validate_items(new_items)
    line_cls = InvoiceLine if isinstance(document, Invoice) else EstimateLine

    if isinstance(document, Invoice):
        totals = compute_totals(items)
    else:
        totals = compute_estimate_totals(items, document.discount_pct)
    limit = Decimal(10) ** (MONEY_DIGITS[0] - MONEY_DIGITS[1])
    too_large = {key: "Total is too large." for key, value in totals.items() if abs(value) >= limit}
    if too_large:
        raise ValidationError("Document totals are too large.", too_large)
    totals = {key: to_storage(value) for key, value in totals.items()}

    document.items = [
        line_cls(
            description=item.description,
            quantity=item.quantity,
            unit_price=item.unit_price,
            tax_rate=item.tax_rate,
            sort_order=idx,
        )
        for idx, item in enumerate(items, start=1)
    ]
    if isinstance(document, Estimate):
        document.discount_amount = totals["discount_amount"]
    document.subtotal = totals["subtotal"]
    document.total_tax = totals["total_tax"]
    document.total_amount = totals["total_amount"]
    return document


def apply_discount(estimate: Estimate, discount_pct: Any) -> Estimate:
    ensure_editable(estimate)
    estimate.discount_pct = validate_discount(discount_pct)
    return recompute_on_edit(estimate, estimate.items)


# Status lifecycle -----------------------------------------------------------

INVOICE_TRANSITIONS = {
    "mark_sent": (
        {InvoiceStatus.DRAFT, InvoiceStatus.SENT, InvoiceStatus.OVERDUE},
        InvoiceStatus.SENT,
    ),
    "mark_paid": (
        {InvoiceStatus.DRAFT, InvoiceStatus.SENT, InvoiceStatus.OVERDUE, InvoiceStatus.PAID},
        InvoiceStatus.PAID,
    ),
    "cancel": ({InvoiceStatus.DRAFT, InvoiceStatus.SENT}, InvoiceStatus.CANCELLED),
    "mark_overdue": ({InvoiceStatus.SENT}, InvoiceStatus.OVERDUE),
}

ESTIMATE_TRANSITIONS = {
    "mark_sent": ({EstimateStatus.DRAFT, EstimateStatus.SENT}, EstimateStatus.SENT),
    "accept": ({EstimateStatus.DRAFT, EstimateStatus.SENT}, EstimateStatus.ACCEPTED),
    "reject": ({EstimateStatus.DRAFT, EstimateStatus.SENT}, EstimateStatus.REJECTED),
}


def _transition(document, action: str, table, status_enum):
    allowed, target = table[action]
    current = status_enum(document.status)
    if current not in allowed:
        raise TransitionError(f"Cannot {action.replace('_', ' ')} a {current.value} document.")
    if current != target:
        logger.info(
            "%s %s: %s -> %s", type(document).__name__, document.id, current.value, target.value
        )
    document.status = target.value
    return document


def can_transition(document: Union[Invoice, Estimate], action: str) -> bool:
    if isinstance(document, Invoice):
        allowed, _ = INVOICE_TRANSITIONS[action]
        return InvoiceStatus(document.status) in allowed
    allowed, _ = ESTIMATE_TRANSITIONS[action]
    return EstimateStatus(document.status) in allowed


def mark_sent(invoice: Invoice, now: Optional[datetime] = None) -> Invoice:
    """Record a confirmed delivery. Call only after the mailer reported success."""
    _transition(invoice, "mark_sent", INVOICE_TRANSITIONS, InvoiceStatus)
    invoice.sent_at = now or datetime.now(timezone.utc)
    return invoice


def mark_paid(invoice: Invoice, now: Optional[datetime] = None) -> Invoice:
    already_paid = invoice.status == InvoiceStatus.PAID.value
    _transition(invoice, "mark_paid", INVOICE_TRANSITIONS, InvoiceStatus)
    if not already_paid:
        invoice.paid_at = now or datetime.now(timezone.utc)
    return invoice


def cancel(invoice: Invoice) -> Invoice:
    return _transition(invoice, "cancel", INVOICE_TRANSITIONS, InvoiceStatus)


def mark_overdue(invoice: Invoice) -> Invoice:
    return _transition(invoice, "mark_overdue", INVOICE_TRANSITIONS, InvoiceStatus)


def is_overdue(invoice: Invoice, today: Optional[date] = None) -> bool:
    if invoice.status in (InvoiceStatus.PAID.value, InvoiceStatus.CANCELLED.value):
        return False
    today = today or date.today()
    return today > invoice.due_date


def mark_estimate_sent(estimate: Estimate) -> Estimate:
    return _transition(estimate, "mark_sent", ESTIMATE_TRANSITIONS, EstimateStatus)


def accept_estimate(estimate: Estimate) -> Estimate:
    return _transition(estimate, "accept", ESTIMATE_TRANSITIONS, EstimateStatus)


def reject_estimate(estimate: Estimate) -> Estimate:
    return _transition(estimate, "reject", ESTIMATE_TRANSITIONS, EstimateStatus)


def ensure_convertible(estimate: Estimate) -> None:
    if estimate.status != EstimateStatus.ACCEPTED.value:
        raise TransitionError(f"Only accepted estimates can be converted (status: {estimate.status}).")
    if estimate.invoice_id is not None:
        raise TransitionError(f"Estimate {estimate.estimate_number} was already converted.")


def convert_to_invoice(
    estimate: Estimate,
    invoice_number: str,
    due_date: date,
    issue_date: Optional[date] = None,
) -> Invoice:
    """Build a draft invoice carrying an accepted estimate's items and totals.

    The discount is folded into each line's unit price so the invoice totals
    equal the estimate totals. The caller persists the returned invoice.
    """
    ensure_convertible(estimate)
    issue_date = issue_date or date.today()
    if due_date < issue_date:
        raise ValidationError("Due date cannot be before issue date.", {"due_date": "before issue_date"})

    keep = (HUNDRED - Decimal(estimate.discount_pct or 0)) / HUNDRED
    items = [
        LineItem(item.description, item.quantity, to_storage(item.unit_price * keep), item.tax_rate)
        for item in validate_items(estimate.items)
    ]
    invoice = Invoice(
        owner_id=estimate.owner_id,
        client_id=estimate.client_id,
        invoice_number=invoice_number,
        status=InvoiceStatus.DRAFT.value,
        issue_date=issue_date,
        due_date=due_date,
        notes=estimate.notes,
    )
    recompute_on_edit(invoice, items)
    logger.info("Estimate %s converted to invoice %s", estimate.estimate_number, invoice_number)
    return invoice


def effective_status(invoice: Invoice, today: Optional[date] = None) -> str:
    """Stored status, with ``overdue`` derived for unpaid invoices past due."""
    if is_overdue(invoice, today):
        return InvoiceStatus.OVERDUE.value
    return invoice.status
