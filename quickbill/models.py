import enum
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from .database import Base


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class InvoiceStatus(str, enum.Enum):
    DRAFT = "draft"
    SENT = "sent"
    PAID = "paid"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"


class EstimateStatus(str, enum.Enum):
    DRAFT = "draft"
    SENT = "sent"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


# (precision, scale) of stored numbers; validation rejects anything that would not
# round-trip. Rounding to cents happens at presentation time.
MONEY_DIGITS = (20, 8)
QUANTITY_DIGITS = (12, 4)
RATE_DIGITS = (5, 2)

Money = Numeric(*MONEY_DIGITS, asdecimal=True)
Quantity = Numeric(*QUANTITY_DIGITS, asdecimal=True)
Rate = Numeric(*RATE_DIGITS, asdecimal=True)


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), nullable=False, unique=True, index=True)
    name = Column(String(255), nullable=False)
    company_name = Column(String(255), nullable=True)
    company_address = Column(String(500), nullable=True)
    phone = Column(String(100), nullable=True)
    hashed_password = Column(String(255), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utc_now)

    @property
    def display_name(self) -> str:
        return self.company_name or self.name


class Client(Base):
    __tablename__ = "clients"

    id = Column(Integer, primary_key=True, index=True)
    owner_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=False)
    phone = Column(String(100), nullable=True)
    street = Column(String(255), nullable=True)
    city = Column(String(255), nullable=True)
    state = Column(String(100), nullable=True)
    zip_code = Column(String(20), nullable=True)
    country = Column(String(100), nullable=True)
    is_deleted = Column(Boolean, nullable=False, default=False, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utc_now)

    @property
    def address(self) -> str:
        parts = [self.street, self.city, self.state, self.zip_code, self.country]
        return ", ".join(p for p in parts if p)


class Invoice(Base):
    __tablename__ = "invoices"
    __table_args__ = (UniqueConstraint("owner_id", "invoice_number"),)

    id = Column(Integer, primary_key=True, index=True)
    owner_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    client_id = Column(Integer, ForeignKey("clients.id"), nullable=False)
    invoice_number = Column(String(30), nullable=False)
    status = Column(String(20), nullable=False, default=InvoiceStatus.DRAFT.value)
    issue_date = Column(Date, nullable=False)
    due_date = Column(Date, nullable=False)
    subtotal = Column(Money, nullable=False, default=0)
    total_tax = Column(Money, nullable=False, default=0)
    total_amount = Column(Money, nullable=False, default=0)
    notes = Column(String(1000), nullable=True)
    payment_terms = Column(String(255), nullable=True)
    sent_at = Column(DateTime(timezone=True), nullable=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utc_now)
    updated_at = Column(
        DateTime(timezone=True), nullable=False, default=_utc_now, onupdate=_utc_now
    )

    __mapper_args__ = {"version_id_col": version}

    owner = relationship("User")
    client = relationship("Client")
    items = relationship(
        "InvoiceLine",
        cascade="all, delete-orphan",
        back_populates="invoice",
        order_by="InvoiceLine.sort_order",
    )


class InvoiceLine(Base):
    __tablename__ = "invoice_lines"

    id = Column(Integer, primary_key=True, index=True)
    invoice_id = Column(Integer, ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False)
    description = Column(String(500), nullable=False)
    quantity = Column(Quantity, nullable=False, default=1)
    unit_price = Column(Money, nullable=False, default=0)
    tax_rate = Column(Rate, nullable=False, default=0)
    sort_order = Column(Integer, nullable=False, default=1)

    invoice = relationship("Invoice", back_populates="items")


class Estimate(Base):
    __tablename__ = "estimates"
    __table_args__ = (UniqueConstraint("owner_id", "estimate_number"),)

    id = Column(Integer, primary_key=True, index=True)
    owner_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    client_id = Column(Integer, ForeignKey("clients.id"), nullable=False)
    estimate_number = Column(String(30), nullable=False)
    status = Column(String(20), nullable=False, default=EstimateStatus.DRAFT.value)
    issue_date = Column(Date, nullable=False)
    valid_until = Column(Date, nullable=True)
    discount_pct = Column(Rate, nullable=False, default=0)
    subtotal = Column(Money, nullable=False, default=0)
    discount_amount = Column(Money, nullable=False, default=0)
    total_tax = Column(Money, nullable=False, default=0)
    total_amount = Column(Money, nullable=False, default=0)
    notes = Column(String(1000), nullable=True)
    invoice_id = Column(Integer, ForeignKey("invoices.id"), nullable=True)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utc_now)
    updated_at = Column(
        DateTime(timezone=True), nullable=False, default=_utc_now, onupdate=_utc_now
    )

    __mapper_args__ = {"version_id_col": version}

    owner = relationship("User")
    client = relationship("Client")
    invoice = relationship("Invoice")
    items = relationship(
        "EstimateLine",
        cascade="all, delete-orphan",
        back_populates="estimate",
        order_by="EstimateLine.sort_order",
    )


class EstimateLine(Base):
    __tablename__ = "estimate_lines"

    id = Column(Integer, primary_key=True, index=True)
    estimate_id = Column(Integer, ForeignKey("estimates.id", ondelete="CASCADE"), nullable=False)
    description = Column(String(500), nullable=False)
    quantity = Column(Quantity, nullable=False, default=1)
    unit_price = Column(Money, nullable=False, default=0)
    tax_rate = Column(Rate, nullable=False, default=0)
    sort_order = Column(Integer, nullable=False, default=1)

    estimate = relationship("Estimate", back_populates="items")


class DocumentSequence(Base):
    __tablename__ = "document_sequences"
    __table_args__ = (UniqueConstraint("owner_id", "kind", "year_full"),)

    id = Column(Integer, primary_key=True, index=True)
    owner_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    kind = Column(String(10), nullable=False)
    year_full = Column(Integer, nullable=False)
    next_number = Column(Integer, nullable=False, default=1)
