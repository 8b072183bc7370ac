"""Persist ``overdue`` for sent invoices past their due date.

Meant to be run periodically by an external scheduler (cron, systemd timer)::

    quickbill-sweep --date 2026-01-31
"""

import argparse
import logging
from datetime import date, datetime
from typing import List, Optional

from sqlalchemy.orm import Session

from .config import configure_logging
from .database import SessionLocal
from .repository import InvoiceRepository
from .services import mark_overdue

logger = logging.getLogger(__name__)


def sweep_overdue(db: Session, today: Optional[date] = None) -> List[str]:
    today = today or date.today()
    invoices = InvoiceRepository(db).find_sent_past_due(today)
    for invoice in invoices:
        mark_overdue(invoice)
    db.commit()
    numbers = [invoice.invoice_number for invoice in invoices]
    logger.info("Marked %d invoice(s) overdue as of %s", len(numbers), today.isoformat())
    return numbers


def _parse_date(value: str) -> date:
    return datetime.strptime(value, "%Y-%m-%d").date()


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Mark sent invoices past due as overdue.")
    parser.add_argument("--date", type=_parse_date, default=None, help="reference date (YYYY-MM-DD)")
    parser.add_argument("--log-level", default=None)
    args = parser.parse_args(argv)

    configure_logging(args.log_level)
    db = SessionLocal()
    try:
        numbers = sweep_overdue(db, args.date)
    finally:
        db.close()
    for number in numbers:
        print(number)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
