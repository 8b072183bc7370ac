from datetime import date, datetime, timezone

import pytest

from quickbill.errors import TransitionError, ValidationError
from quickbill.models import Estimate, Invoice
from quickbill.services import (
    accept_estimate,
    cancel,
    convert_to_invoice,
    effective_status,
    is_overdue,
    mark_estimate_sent,
    mark_overdue,
    mark_paid,
    mark_sent,
    recompute_on_edit,
    reject_estimate,
)


def _invoice(status="draft", due=date(2026, 1, 31)):
    return Invoice(
        invoice_number="INV-2026-0001",
        status=status,
        issue_date=date(2026, 1, 1),
        due_date=due,
    )


def test_mark_sent_from_draft_sets_sent_at():
    inv = _invoice()
    when = datetime(2026, 1, 2, 9, 0, tzinfo=timezone.utc)
    mark_sent(inv, now=when)
    assert inv.status == "sent"
    assert inv.sent_at == when


@pytest.mark.parametrize("status", ["sent", "overdue"])
def test_mark_sent_allows_resend(status):
    inv = _invoice(status)
    mark_sent(inv)
    assert inv.status == "sent"


@pytest.mark.parametrize("status", ["paid", "cancelled"])
def test_mark_sent_rejected_for_finished(status):
    inv = _invoice(status)
    with pytest.raises(TransitionError):
        mark_sent(inv)
    assert inv.status == status


@pytest.mark.parametrize("status", ["draft", "sent", "overdue"])
def test_mark_paid(status):
    inv = _invoice(status)
    mark_paid(inv)
    assert inv.status == "paid"
    assert inv.paid_at is not None


def test_mark_paid_is_idempotent():
    inv = _invoice()
    first = datetime(2026, 2, 1, tzinfo=timezone.utc)
    mark_paid(inv, now=first)
    mark_paid(inv, now=datetime(2026, 2, 5, tzinfo=timezone.utc))
    assert inv.status == "paid"
    assert inv.paid_at == first


def test_mark_paid_rejected_when_cancelled():
    inv = _invoice("cancelled")
    with pytest.raises(TransitionError):
        mark_paid(inv)


@pytest.mark.parametrize("status", ["draft", "sent"])
def test_cancel(status):
    inv = _invoice(status)
    cancel(inv)
    assert inv.status == "cancelled"


@pytest.mark.parametrize("status", ["paid", "cancelled", "overdue"])
def test_cancel_rejected(status):
    inv = _invoice(status)
    with pytest.raises(TransitionError):
        cancel(inv)
    assert inv.status == status


def test_mark_overdue_only_from_sent():
    inv = _invoice("sent")
    mark_overdue(inv)
    assert inv.status == "overdue"
    with pytest.raises(TransitionError):
        mark_overdue(_invoice("draft"))


def test_is_overdue():
    due = date(2026, 1, 31)
    assert is_overdue(_invoice("sent", due), date(2026, 2, 1)) is True
    assert is_overdue(_invoice("sent", due), due) is False
    assert is_overdue(_invoice("paid", due), date(2026, 3, 1)) is False
    assert is_overdue(_invoice("cancelled", due), date(2026, 3, 1)) is False


def test_effective_status_derives_overdue():
    inv = _invoice("sent", date(2026, 1, 31))
    assert effective_status(inv, date(2026, 1, 15)) == "sent"
    assert effective_status(inv, date(2026, 2, 15)) == "overdue"
    assert inv.status == "sent"


def _estimate(status="draft", discount="0"):
    est = Estimate(
        owner_id=1,
        client_id=2,
        estimate_number="EST-2026-0001",
        status="draft",
        issue_date=date(2026, 1, 1),
        discount_pct=discount,
        notes="Scope A",
    )
    recompute_on_edit(
        est,
        [
            {"description": "Design", "quantity": "2", "unit_price": "50", "tax_rate": "10"},
            {"description": "Hosting", "quantity": "1", "unit_price": "20", "tax_rate": "0"},
        ],
    )
    est.status = status
    return est


def test_estimate_lifecycle():
    est = _estimate()
    mark_estimate_sent(est)
    assert est.status == "sent"
    accept_estimate(est)
    assert est.status == "accepted"
    with pytest.raises(TransitionError):
        reject_estimate(est)


def test_rejected_estimate_cannot_be_accepted():
    est = _estimate()
    reject_estimate(est)
    with pytest.raises(TransitionError):
        accept_estimate(est)


def test_convert_requires_accepted():
    est = _estimate("sent")
    with pytest.raises(TransitionError):
        convert_to_invoice(est, "INV-2026-0005", date(2026, 2, 1), date(2026, 1, 5))


def test_convert_rejects_already_converted():
    est = _estimate("accepted")
    est.invoice_id = 7
    with pytest.raises(TransitionError):
        convert_to_invoice(est, "INV-2026-0005", date(2026, 2, 1), date(2026, 1, 5))


def test_convert_rejects_due_before_issue():
    est = _estimate("accepted")
    with pytest.raises(ValidationError):
        convert_to_invoice(est, "INV-2026-0005", date(2026, 1, 1), date(2026, 1, 5))


def test_convert_carries_discounted_totals():
    est = _estimate("accepted", discount="10")
    assert est.total_amount == 117

    inv = convert_to_invoice(est, "INV-2026-0005", date(2026, 2, 1), date(2026, 1, 5))
    assert inv.status == "draft"
    assert inv.invoice_number == "INV-2026-0005"
    assert inv.client_id == 2
    assert inv.owner_id == 1
    assert inv.notes == "Scope A"
    assert [line.description for line in inv.items] == ["Design", "Hosting"]
    assert inv.subtotal == est.subtotal - est.discount_amount
    assert inv.total_tax == est.total_tax
    assert inv.total_amount == est.total_amount
