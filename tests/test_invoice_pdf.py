from datetime import date
from decimal import Decimal
from types import SimpleNamespace

from conftest import make_client, make_user

from quickbill.config import Settings
from quickbill.mailer import Attachment, SMTPMailer, render_email
from quickbill.models import Estimate, Invoice
from quickbill.pdf import build_pdf_payload, render_pdf
from quickbill.services import recompute_on_edit


def _invoice(db_session, lines=None):
    owner = make_user(db_session)
    acme = make_client(db_session, owner, street="1 Road", city="Springfield")
    inv = Invoice(
        owner_id=owner.id,
        client_id=acme.id,
        invoice_number="INV-2026-0001",
        status="draft",
        issue_date=date(2026, 1, 1),
        due_date=date(2026, 1, 31),
        notes="Thanks",
        payment_terms="Net 30",
    )
    recompute_on_edit(
        inv,
        lines
        or [
            {"description": "Widget", "quantity": "3", "unit_price": "19.99", "tax_rate": "18"},
            {"description": "Shipping", "quantity": "1", "unit_price": "5", "tax_rate": "0"},
        ],
    )
    db_session.add(inv)
    db_session.commit()
    db_session.refresh(inv)
    return inv


def test_payload_uses_stored_rounded_totals(db_session):
    inv = _invoice(db_session)
    payload = build_pdf_payload(inv, inv.owner, inv.client)
    assert payload["title"] == "INVOICE"
    assert payload["number"] == "INV-2026-0001"
    assert payload["issuer_name"] == "Owner Co"
    assert payload["client_name"] == "Acme"
    assert payload["client_address"] == "1 Road, Springfield"
    assert payload["totals"] == {
        "subtotal": Decimal("64.97"),
        "total_tax": Decimal("10.79"),
        "total_amount": Decimal("75.76"),
    }
    assert [line["total"] for line in payload["lines"]] == [Decimal("59.97"), Decimal("5.00")]


def test_payload_for_deleted_client(db_session):
    inv = _invoice(db_session)
    inv.client.is_deleted = True
    db_session.commit()
    payload = build_pdf_payload(inv, inv.owner, inv.client)
    assert payload["client_name"] == "Unknown Client"
    assert payload["client_email"] == ""
    assert payload["client_address"] == ""


def test_estimate_payload_includes_discount(db_session):
    owner = make_user(db_session)
    acme = make_client(db_session, owner)
    est = Estimate(
        owner_id=owner.id,
        client_id=acme.id,
        estimate_number="EST-2026-0001",
        status="draft",
        issue_date=date(2026, 1, 1),
        valid_until=date(2026, 2, 1),
        discount_pct=Decimal("10"),
    )
    recompute_on_edit(
        est, [{"description": "Design", "quantity": "2", "unit_price": "50", "tax_rate": "10"}]
    )
    db_session.add(est)
    db_session.commit()

    payload = build_pdf_payload(est, owner, acme)
    assert payload["title"] == "ESTIMATE"
    assert payload["due_date"] is None
    assert payload["valid_until"] == date(2026, 2, 1)
    assert payload["totals"]["discount_amount"] == Decimal("10.00")
    assert payload["totals"]["total_amount"] == Decimal("99.00")
    assert render_pdf(payload).startswith(b"%PDF")


def test_render_many_lines_spans_pages(db_session):
    lines = [
        {"description": f"Very long line number {i} " * 3, "quantity": "1", "unit_price": "10", "tax_rate": "5"}
        for i in range(80)
    ]
    inv = _invoice(db_session, lines)
    payload = build_pdf_payload(inv, inv.owner, inv.client)
    assert len(payload["lines"]) == 80
    assert payload["totals"]["total_amount"] == Decimal("840.00")
    assert render_pdf(payload).startswith(b"%PDF")


def test_smtp_mailer_without_host_reports_failure():
    settings = Settings()
    settings.smtp_host = None
    assert SMTPMailer(settings).send("someone@example.com", "Hi", "<p>Hi</p>") is False


def test_smtp_message_carries_attachment():
    settings = Settings()
    settings.mail_from = "billing@quickbill.example.com"
    msg = SMTPMailer(settings).build_message(
        "client@acme.example.com",
        "Invoice #INV-2026-0001",
        "<p>body</p>",
        [Attachment("Invoice-INV-2026-0001.pdf", b"%PDF-1.4 test")],
        from_name="Owner Co",
    )
    assert msg["To"] == "client@acme.example.com"
    sender = msg["From"].addresses[0]
    assert sender.display_name == "Owner Co"
    assert sender.addr_spec == "billing@quickbill.example.com"
    names = [part.get_filename() for part in msg.iter_attachments()]
    assert names == ["Invoice-INV-2026-0001.pdf"]


def test_reminder_email_body():
    body = render_email(
        "reminder.html",
        {
            "issuer": SimpleNamespace(name="Owner", company_name="Owner Co"),
            "client_name": "Acme",
            "number": "INV-2026-0001",
            "due_date": date(2026, 3, 1),
            "days_overdue": 14,
            "currency": "$",
            "total_amount": Decimal("110.00"),
        },
    )
    assert "14 days overdue" in body
    assert "$110.00" in body
    assert "Owner Co" in body