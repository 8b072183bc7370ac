"""Dashboard figures derived from a user's invoices."""

from collections import defaultdict
from datetime import date
from decimal import Decimal
from typing import Iterable, Optional

from .models import Invoice, InvoiceStatus
from .services import client_display_name, effective_status, money_round


def _init_bucket():
    return {"count": 0, "total_amount": Decimal("0")}


def summarize_invoices(invoices: Iterable[Invoice], today: Optional[date] = None) -> dict:
    """Counts and totals per effective status, plus top clients and months.

    Cancelled invoices are counted in their bucket but excluded from amounts.
    """
    today = today or date.today()
    buckets = {status.value: _init_bucket() for status in InvoiceStatus}
    client_totals = defaultdict(lambda: Decimal("0"))
    client_names = {}
    monthly = defaultdict(lambda: Decimal("0"))
    total_invoices = 0

    for invoice in invoices:
        total_invoices += 1
        status = effective_status(invoice, today)
        amount = Decimal(invoice.total_amount or 0)
        bucket = buckets[status]
        bucket["count"] += 1
        bucket["total_amount"] += amount
        if status == InvoiceStatus.CANCELLED.value:
            continue
        client_totals[invoice.client_id] += amount
        client_names[invoice.client_id] = client_display_name(invoice.client)
        monthly[invoice.issue_date.strftime("%Y-%m")] += amount

    paid = buckets["paid"]["total_amount"]
    outstanding = sum(
        (buckets[s]["total_amount"] for s in ("draft", "sent", "overdue")), Decimal("0")
    )
    top_clients = sorted(client_totals.items(), key=lambda kv: (-kv[1], kv[0]))[:5]

    return {
        "as_of": today,
        "total_invoices": total_invoices,
        "total_amount": str(money_round(paid + outstanding)),
        "paid_amount": str(money_round(paid)),
        "outstanding_amount": str(money_round(outstanding)),
        "overdue_amount": str(money_round(buckets["overdue"]["total_amount"])),
        "by_status": {
            key: {"count": data["count"], "total_amount": str(money_round(data["total_amount"]))}
            for key, data in buckets.items()
        },
        "top_clients": [
            {
                "client_id": client_id,
                "client_name": client_names[client_id],
                "total_amount": str(money_round(total)),
            }
            for client_id, total in top_clients
        ],
        "monthly_totals": {month: str(money_round(total)) for month, total in sorted(monthly.items())},
    }
