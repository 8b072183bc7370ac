from decimal import Decimal
from io import BytesIO
from typing import Dict, Optional, Union

from reportlab.lib.pagesizes import A4
from reportlab.pdfgen import canvas

from .config import get_settings
from .models import Client, Estimate, Invoice, User
from .services import client_display_name, compute_line_amounts, money_round


def build_pdf_payload(
    document: Union[Invoice, Estimate], issuer: User, client: Optional[Client]
) -> Dict:
    """Collect what the PDF shows. Totals are the stored ones, never recomputed."""
    is_invoice = isinstance(document, Invoice)
    show_client = client is not None and not client.is_deleted

    totals = {
        "subtotal": money_round(Decimal(document.subtotal or 0)),
        "total_tax": money_round(Decimal(document.total_tax or 0)),
        "total_amount": money_round(Decimal(document.total_amount or 0)),
    }
    if not is_invoice:
        totals["discount_amount"] = money_round(Decimal(document.discount_amount or 0))

    lines = sorted(document.items, key=lambda l: (l.sort_order, l.id or 0))
    return {
        "title": "INVOICE" if is_invoice else "ESTIMATE",
        "number": document.invoice_number if is_invoice else document.estimate_number,
        "status": document.status,
        "issue_date": document.issue_date,
        "due_date": document.due_date if is_invoice else None,
        "valid_until": None if is_invoice else document.valid_until,
        "issuer_name": issuer.display_name,
        "issuer_address": issuer.company_address or "",
        "issuer_email": issuer.email,
        "issuer_phone": issuer.phone or "",
        "client_name": client_display_name(client),
        "client_address": client.address if show_client else "",
        "client_email": client.email if show_client else "",
        "client_phone": (client.phone or "") if show_client else "",
        "discount_pct": None if is_invoice else Decimal(document.discount_pct or 0),
        "notes": document.notes or "",
        "payment_terms": (document.payment_terms or "") if is_invoice else "",
        "currency_symbol": get_settings().currency_symbol,
        "totals": totals,
        "lines": [
            {
                "index": idx,
                "description": item.description,
                "quantity": item.quantity,
                "unit_price": money_round(item.unit_price),
                "tax_rate": item.tax_rate,
                "total": money_round(line_subtotal),
            }
            for idx, (item, line_subtotal, _) in enumerate(compute_line_amounts(lines), start=1)
        ],
    }


def render_pdf(payload: Dict) -> bytes:
    buffer = BytesIO()
    pdf = canvas.Canvas(buffer, pagesize=A4)
    width, height = A4
    cur = payload["currency_symbol"]

    y = height - 50
    pdf.setFont("Helvetica-Bold", 22)
    pdf.drawString(50, y, payload["title"])

    pdf.setFont("Helvetica-Bold", 11)
    y -= 26
    pdf.drawString(50, y, f"{payload['title'].title()} #: {payload['number']}")
    pdf.setFont("Helvetica", 10)
    y -= 14
    pdf.drawString(50, y, f"Issue Date: {payload['issue_date']}")
    y -= 14
    if payload["due_date"]:
        pdf.drawString(50, y, f"Due Date: {payload['due_date']}")
    elif payload["valid_until"]:
        pdf.drawString(50, y, f"Valid Until: {payload['valid_until']}")
    y -= 14
    pdf.drawString(50, y, f"Status: {payload['status']}")

    y -= 30
    pdf.setFont("Helvetica-Bold", 12)
    pdf.drawString(50, y, "From:")
    pdf.drawString(300, y, "Bill To:")
    pdf.setFont("Helvetica", 10)
    issuer_lines = [
        payload["issuer_name"],
        payload["issuer_address"],
        payload["issuer_email"],
        payload["issuer_phone"],
    ]
    client_lines = [
        payload["client_name"],
        payload["client_address"],
        payload["client_email"],
        payload["client_phone"],
    ]
    block_y = y
    for text in [t for t in issuer_lines if t]:
        block_y -= 14
        pdf.drawString(50, block_y, text[:45])
    client_y = y
    for text in [t for t in client_lines if t]:
        client_y -= 14
        pdf.drawString(300, client_y, text[:45])
    y = min(block_y, client_y) - 30

    pdf.setFont("Helvetica-Bold", 10)
    headers = ["#", "Description", "Qty", "Price", "Tax %", "Amount"]
    col_x = [50, 75, 320, 390, 450, 510]
    for hx, text in zip(col_x, headers):
        pdf.drawString(hx, y, text)
    y -= 6
    pdf.line(50, y, 545, y)
    y -= 14

    pdf.setFont("Helvetica", 9)
    for item in payload["lines"]:
        if y < 80:
            pdf.showPage()
            y = height - 60
            pdf.setFont("Helvetica", 9)
        pdf.drawString(col_x[0], y, str(item["index"]))
        pdf.drawString(col_x[1], y, item["description"][:45])
        pdf.drawRightString(col_x[2] + 40, y, f"{item['quantity']:.2f}")
        pdf.drawRightString(col_x[3] + 45, y, f"{cur}{item['unit_price']:.2f}")
        pdf.drawRightString(col_x[4] + 30, y, f"{item['tax_rate']:.2f}")
        pdf.drawRightString(col_x[5] + 35, y, f"{cur}{item['total']:.2f}")
        y -= 14

    pdf.line(50, y + 4, 545, y + 4)
    totals = payload["totals"]
    rows = [("Subtotal:", f"{cur}{totals['subtotal']:.2f}")]
    if "discount_amount" in totals:
        rows.append(
            (f"Discount ({payload['discount_pct']:.2f}%):", f"-{cur}{totals['discount_amount']:.2f}")
        )
    rows.append(("Tax:", f"{cur}{totals['total_tax']:.2f}"))
    rows.append(("Total:", f"{cur}{totals['total_amount']:.2f}"))

    if y < 80 + 18 * len(rows):
        pdf.showPage()
        y = height - 60
    y -= 18
    for label, value in rows:
        pdf.setFont("Helvetica-Bold", 10)
        pdf.drawString(380, y, label)
        pdf.setFont("Helvetica", 10)
        pdf.drawRightString(545, y, value)
        y -= 16

    for heading, text in (("Notes:", payload["notes"]), ("Payment Terms:", payload["payment_terms"])):
        if not text:
            continue
        if y < 100:
            pdf.showPage()
            y = height - 60
        y -= 20
        pdf.setFont("Helvetica-Bold", 11)
        pdf.drawString(50, y, heading)
        pdf.setFont("Helvetica", 10)
        y -= 14
        pdf.drawString(50, y, text[:95])

    pdf.setFont("Helvetica", 10)
    pdf.drawString(50, 40, "Thank you for your business!")

    pdf.save()
    buffer.seek(0)
    return buffer.getvalue()
