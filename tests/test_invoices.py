from conftest import make_client

from quickbill.models import Invoice
from quickbill.services import compute_totals, money_round


def _payload(client_id, **overrides):
    data = {
        "client_id": client_id,
        "issue_date": "2026-03-01",
        "due_date": "2026-03-31",
        "items": [
            {"description": "Design", "quantity": "2", "unit_price": "50", "tax_rate": "10"},
        ],
        "notes": "Thanks",
        "payment_terms": "Net 30",
    }
    data.update(overrides)
    return data


def _create(client, headers, client_id, **overrides):
    resp = client.post("/api/invoices", json=_payload(client_id, **overrides), headers=headers)
    assert resp.status_code == 201, resp.text
    return resp.json()


def test_create_invoice_draft_with_totals(client, auth_headers, acme):
    body = _create(client, auth_headers, acme.id)
    assert body["status"] == "draft"
    assert body["invoice_number"] == "INV-2026-0001"
    assert body["client_name"] == "Acme"
    assert body["subtotal"] == "100.00"
    assert body["total_tax"] == "10.00"
    assert body["total_amount"] == "110.00"
    assert body["is_overdue"] is False
    assert body["version"] == 1
    assert body["items"][0]["amount"] == "100.00"


def test_issue_date_defaults_to_today(client, auth_headers, acme):
    payload = _payload(acme.id)
    del payload["issue_date"]
    resp = client.post("/api/invoices", json=payload, headers=auth_headers)
    assert resp.status_code == 201
    assert resp.json()["issue_date"] == "2026-03-15"


def test_numbers_are_sequential_per_owner(client, auth_headers, other_headers, db_session, acme, other_user):
    first = _create(client, auth_headers, acme.id)
    second = _create(client, auth_headers, acme.id)
    assert first["invoice_number"] == "INV-2026-0001"
    assert second["invoice_number"] == "INV-2026-0002"

    other_client = make_client(db_session, other_user, name="Globex", email="ap@globex.example.com")
    theirs = _create(client, other_headers, other_client.id)
    assert theirs["invoice_number"] == "INV-2026-0001"


def test_rounding_of_fractional_tax(client, auth_headers, acme):
    body = _create(
        client,
        auth_headers,
        acme.id,
        items=[
            {"description": "Widget", "quantity": "3", "unit_price": "19.99", "tax_rate": "18"},
            {"description": "Shipping", "quantity": "1", "unit_price": "5", "tax_rate": "0"},
        ],
    )
    assert body["subtotal"] == "64.97"
    assert body["total_tax"] == "10.79"
    assert body["total_amount"] == "75.76"


def test_invalid_item_rejected(client, auth_headers, acme, db_session):
    resp = client.post(
        "/api/invoices",
        json=_payload(
            acme.id,
            items=[{"description": "Bad", "quantity": "0", "unit_price": "10", "tax_rate": "0"}],
        ),
        headers=auth_headers,
    )
    assert resp.status_code == 400
    body = resp.json()
    assert body["error"] == "ValidationError"
    assert "items[0].quantity" in body["errors"]
    assert db_session.query(Invoice).count() == 0


def test_quantity_below_storage_scale_rejected(client, auth_headers, acme, db_session):
    resp = client.post(
        "/api/invoices",
        json=_payload(
            acme.id,
            items=[{"description": "Tiny", "quantity": "0.00001", "unit_price": "10", "tax_rate": "0"}],
        ),
        headers=auth_headers,
    )
    assert resp.status_code == 400
    assert "items[0].quantity" in resp.json()["errors"]
    assert db_session.query(Invoice).count() == 0


def test_tax_rate_with_three_decimals_rejected(client, auth_headers, acme, db_session):
    resp = client.post(
        "/api/invoices",
        json=_payload(
            acme.id,
            items=[{"description": "Consulting", "quantity": "1", "unit_price": "1000000", "tax_rate": "12.345"}],
        ),
        headers=auth_headers,
    )
    assert resp.status_code == 400
    assert "items[0].tax_rate" in resp.json()["errors"]
    assert db_session.query(Invoice).count() == 0


def test_stored_totals_agree_with_stored_lines(client, auth_headers, acme, db_session):
    body = _create(
        client,
        auth_headers,
        acme.id,
        items=[
            {"description": "Consulting", "quantity": "1", "unit_price": "1000000", "tax_rate": "12.34"},
            {"description": "Stamps", "quantity": "0.0001", "unit_price": "0.12345678", "tax_rate": "21"},
        ],
    )
    assert body["total_tax"] == "123400.00"

    stored = db_session.get(Invoice, body["id"])
    again = compute_totals(stored.items)
    assert money_round(stored.subtotal) == money_round(again["subtotal"])
    assert money_round(stored.total_tax) == money_round(again["total_tax"])
    assert money_round(stored.total_amount) == money_round(again["total_amount"])


def test_empty_items_rejected(client, auth_headers, acme):
    resp = client.post("/api/invoices", json=_payload(acme.id, items=[]), headers=auth_headers)
    assert resp.status_code == 400


def test_missing_due_date_is_bad_request(client, auth_headers, acme):
    payload = _payload(acme.id)
    del payload["due_date"]
    resp = client.post("/api/invoices", json=payload, headers=auth_headers)
    assert resp.status_code == 400


def test_due_date_before_issue_rejected(client, auth_headers, acme):
    resp = client.post(
        "/api/invoices", json=_payload(acme.id, due_date="2026-02-01"), headers=auth_headers
    )
    assert resp.status_code == 400
    assert "due_date" in resp.json()["errors"]


def test_deleted_client_cannot_be_invoiced(client, auth_headers, acme, db_session):
    acme.is_deleted = True
    db_session.commit()
    resp = client.post("/api/invoices", json=_payload(acme.id), headers=auth_headers)
    assert resp.status_code == 404


def test_requires_authentication(client, acme):
    resp = client.get("/api/invoices")
    assert resp.status_code == 401


def test_other_owner_is_unauthorized(client, auth_headers, other_headers, acme):
    inv = _create(client, auth_headers, acme.id)
    assert client.get(f"/api/invoices/{inv['id']}", headers=other_headers).status_code == 401
    assert client.post(f"/api/invoices/{inv['id']}/pay", headers=other_headers).status_code == 401


def test_unknown_invoice_is_not_found(client, auth_headers):
    resp = client.get("/api/invoices/999", headers=auth_headers)
    assert resp.status_code == 404
    assert resp.json()["error"] == "NotFoundError"


def test_update_items_recomputes_totals(client, auth_headers, acme):
    inv = _create(client, auth_headers, acme.id)
    resp = client.put(
        f"/api/invoices/{inv['id']}",
        json={
            "version": inv["version"],
            "items": [
                {"description": "Design", "quantity": "2", "unit_price": "50", "tax_rate": "10"},
                {"description": "Extra", "quantity": "1", "unit_price": "5", "tax_rate": "0"},
            ],
        },
        headers=auth_headers,
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["subtotal"] == "105.00"
    assert body["total_tax"] == "10.00"
    assert body["total_amount"] == "115.00"
    assert len(body["items"]) == 2
    assert body["version"] == inv["version"] + 1


def test_update_without_items_keeps_totals(client, auth_headers, acme):
    inv = _create(client, auth_headers, acme.id)
    resp = client.put(
        f"/api/invoices/{inv['id']}", json={"notes": "Updated"}, headers=auth_headers
    )
    assert resp.status_code == 200
    assert resp.json()["notes"] == "Updated"
    assert resp.json()["total_amount"] == "110.00"


def test_stale_version_is_conflict(client, auth_headers, acme):
    inv = _create(client, auth_headers, acme.id)
    resp = client.put(
        f"/api/invoices/{inv['id']}",
        json={"version": inv["version"] + 5, "notes": "late"},
        headers=auth_headers,
    )
    assert resp.status_code == 409
    assert resp.json()["error"] == "ConcurrencyError"


def test_paid_invoice_is_locked(client, auth_headers, acme):
    inv = _create(client, auth_headers, acme.id)
    paid = client.post(f"/api/invoices/{inv['id']}/pay", headers=auth_headers)
    assert paid.status_code == 200
    assert paid.json()["status"] == "paid"
    assert paid.json()["paid_at"] is not None

    resp = client.put(
        f"/api/invoices/{inv['id']}",
        json={"items": [{"description": "x", "quantity": "1", "unit_price": "1", "tax_rate": "0"}]},
        headers=auth_headers,
    )
    assert resp.status_code == 409
    assert resp.json()["error"] == "InvoiceLockedError"


def test_pay_twice_is_idempotent(client, auth_headers, acme):
    inv = _create(client, auth_headers, acme.id)
    first = client.post(f"/api/invoices/{inv['id']}/pay", headers=auth_headers).json()
    second = client.post(f"/api/invoices/{inv['id']}/pay", headers=auth_headers)
    assert second.status_code == 200
    assert second.json()["paid_at"] == first["paid_at"]


def test_cancel_paid_invoice_rejected(client, auth_headers, acme):
    inv = _create(client, auth_headers, acme.id)
    client.post(f"/api/invoices/{inv['id']}/pay", headers=auth_headers)
    resp = client.post(f"/api/invoices/{inv['id']}/cancel", headers=auth_headers)
    assert resp.status_code == 409
    assert resp.json()["error"] == "TransitionError"


def test_cancel_then_pay_rejected(client, auth_headers, acme):
    inv = _create(client, auth_headers, acme.id)
    resp = client.post(f"/api/invoices/{inv['id']}/cancel", headers=auth_headers)
    assert resp.status_code == 200
    assert resp.json()["status"] == "cancelled"
    assert client.post(f"/api/invoices/{inv['id']}/pay", headers=auth_headers).status_code == 409


def test_delete_draft_invoice(client, auth_headers, acme, db_session):
    inv = _create(client, auth_headers, acme.id)
    resp = client.delete(f"/api/invoices/{inv['id']}", headers=auth_headers)
    assert resp.status_code == 204
    assert db_session.query(Invoice).count() == 0


def test_delete_sent_invoice_rejected(client, auth_headers, acme):
    inv = _create(client, auth_headers, acme.id)
    client.post(f"/api/invoices/{inv['id']}/send", headers=auth_headers)
    resp = client.delete(f"/api/invoices/{inv['id']}", headers=auth_headers)
    assert resp.status_code == 409


def test_send_marks_sent_after_delivery(client, auth_headers, acme, mailer):
    inv = _create(client, auth_headers, acme.id)
    resp = client.post(f"/api/invoices/{inv['id']}/send", headers=auth_headers)
    assert resp.status_code == 200
    assert resp.json()["status"] == "sent"
    assert resp.json()["sent_at"] is not None

    assert len(mailer.sent) == 1
    message = mailer.sent[0]
    assert message["recipient"] == "billing@acme.example.com"
    assert message["subject"] == "Invoice #INV-2026-0001 from Owner Co"
    assert message["from_name"] == "Owner Co"
    assert "110.00" in message["body"]
    attachment = message["attachments"][0]
    assert attachment.filename == "Invoice-INV-2026-0001.pdf"
    assert attachment.content.startswith(b"%PDF")


def test_send_to_explicit_recipient(client, auth_headers, acme, mailer):
    inv = _create(client, auth_headers, acme.id)
    resp = client.post(
        f"/api/invoices/{inv['id']}/send",
        json={"recipient_email": "cfo@acme.example.com"},
        headers=auth_headers,
    )
    assert resp.status_code == 200
    assert mailer.sent[0]["recipient"] == "cfo@acme.example.com"


def test_failed_delivery_leaves_status_unchanged(client, auth_headers, acme, mailer):
    inv = _create(client, auth_headers, acme.id)
    mailer.result = False
    resp = client.post(f"/api/invoices/{inv['id']}/send", headers=auth_headers)
    assert resp.status_code == 502
    assert resp.json()["error"] == "DispatchError"

    after = client.get(f"/api/invoices/{inv['id']}", headers=auth_headers).json()
    assert after["status"] == "draft"
    assert after["sent_at"] is None


def test_mailer_timeout_is_dispatch_error(client, auth_headers, acme, mailer):
    inv = _create(client, auth_headers, acme.id)
    mailer.error = TimeoutError("smtp timed out")
    resp = client.post(f"/api/invoices/{inv['id']}/send", headers=auth_headers)
    assert resp.status_code == 502
    after = client.get(f"/api/invoices/{inv['id']}", headers=auth_headers).json()
    assert after["status"] == "draft"


def test_send_paid_invoice_rejected(client, auth_headers, acme, mailer):
    inv = _create(client, auth_headers, acme.id)
    client.post(f"/api/invoices/{inv['id']}/pay", headers=auth_headers)
    resp = client.post(f"/api/invoices/{inv['id']}/send", headers=auth_headers)
    assert resp.status_code == 409
    assert mailer.sent == []


def test_overdue_is_derived_and_filterable(client, auth_headers, acme):
    late = _create(client, auth_headers, acme.id, issue_date="2026-02-01", due_date="2026-03-01")
    _create(client, auth_headers, acme.id)
    client.post(f"/api/invoices/{late['id']}/send", headers=auth_headers)

    fetched = client.get(f"/api/invoices/{late['id']}", headers=auth_headers).json()
    assert fetched["status"] == "sent"
    assert fetched["is_overdue"] is True

    resp = client.get("/api/invoices", params={"status": "overdue"}, headers=auth_headers)
    assert resp.status_code == 200
    assert [inv["id"] for inv in resp.json()] == [late["id"]]

    drafts = client.get("/api/invoices", params={"status": "draft"}, headers=auth_headers).json()
    assert len(drafts) == 1


def test_reminder_for_overdue_invoice(client, auth_headers, acme, mailer):
    late = _create(client, auth_headers, acme.id, issue_date="2026-02-01", due_date="2026-03-01")
    client.post(f"/api/invoices/{late['id']}/send", headers=auth_headers)

    resp = client.post(f"/api/invoices/{late['id']}/remind", headers=auth_headers)
    assert resp.status_code == 200
    assert resp.json() == {"invoice_id": late["id"], "days_overdue": 14}
    assert "14 days overdue" in mailer.sent[-1]["subject"]
    assert mailer.sent[-1]["attachments"] == []

    after = client.get(f"/api/invoices/{late['id']}", headers=auth_headers).json()
    assert after["status"] == "sent"


def test_reminder_for_current_invoice_rejected(client, auth_headers, acme, mailer):
    inv = _create(client, auth_headers, acme.id)
    resp = client.post(f"/api/invoices/{inv['id']}/remind", headers=auth_headers)
    assert resp.status_code == 409
    assert mailer.sent == []


def test_deleted_client_shows_unknown(client, auth_headers, acme):
    inv = _create(client, auth_headers, acme.id)
    assert client.delete(f"/api/clients/{acme.id}", headers=auth_headers).status_code == 204
    body = client.get(f"/api/invoices/{inv['id']}", headers=auth_headers).json()
    assert body["client_name"] == "Unknown Client"
    assert body["client_id"] == acme.id


def test_invoice_pdf_endpoint(client, auth_headers, acme):
    inv = _create(client, auth_headers, acme.id)
    resp = client.get(f"/api/invoices/{inv['id']}/pdf", headers=auth_headers)
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("application/pdf")
    assert resp.content.startswith(b"%PDF")
