"""Request and response schemas for the JSON API."""

from datetime import date, datetime
from decimal import Decimal
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_serializer

from .services import money_round


class UserCreate(BaseModel):
    email: EmailStr
    password: str = Field(min_length=6)
    name: str = Field(min_length=1)
    company_name: Optional[str] = None
    company_address: Optional[str] = None
    phone: Optional[str] = None


class UserRead(BaseModel):
    id: int
    email: EmailStr
    name: str
    company_name: Optional[str] = None
    company_address: Optional[str] = None
    phone: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


class ClientBase(BaseModel):
    phone: Optional[str] = None
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    country: Optional[str] = None


class ClientCreate(ClientBase):
    name: str = Field(min_length=1)
    email: EmailStr


class ClientUpdate(ClientBase):
    name: Optional[str] = Field(default=None, min_length=1)
    email: Optional[EmailStr] = None


class ClientRead(ClientBase):
    id: int
    name: str
    email: str
    is_deleted: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class LineItemIn(BaseModel):
    description: str
    quantity: Decimal
    unit_price: Decimal
    tax_rate: Decimal = Decimal("0")


class LineItemRead(BaseModel):
    description: str
    quantity: Decimal
    unit_price: Decimal
    tax_rate: Decimal
    amount: Decimal

    @field_serializer("amount")
    def _round_amount(self, value: Decimal) -> str:
        return str(money_round(value))


class MoneyFieldsMixin(BaseModel):
    subtotal: Decimal
    total_tax: Decimal
    total_amount: Decimal

    @field_serializer("subtotal", "total_tax", "total_amount")
    def _round_money(self, value: Decimal) -> str:
        return str(money_round(value))


class InvoiceCreate(BaseModel):
    client_id: int
    issue_date: Optional[date] = None
    due_date: date
    items: List[LineItemIn]
    notes: Optional[str] = None
    payment_terms: Optional[str] = None


class InvoiceUpdate(BaseModel):
    client_id: Optional[int] = None
    issue_date: Optional[date] = None
    due_date: Optional[date] = None
    items: Optional[List[LineItemIn]] = None
    notes: Optional[str] = None
    payment_terms: Optional[str] = None
    version: Optional[int] = None


class InvoiceRead(MoneyFieldsMixin):
    id: int
    invoice_number: str
    client_id: int
    client_name: str
    status: str
    is_overdue: bool
    issue_date: date
    due_date: date
    notes: Optional[str] = None
    payment_terms: Optional[str] = None
    sent_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    version: int
    items: List[LineItemRead]
    created_at: datetime
    updated_at: datetime


class SendRequest(BaseModel):
    recipient_email: Optional[EmailStr] = None


class ReminderResult(BaseModel):
    invoice_id: int
    days_overdue: int


class EstimateCreate(BaseModel):
    client_id: int
    issue_date: Optional[date] = None
    valid_until: Optional[date] = None
    discount_pct: Decimal = Decimal("0")
    items: List[LineItemIn]
    notes: Optional[str] = None


class EstimateUpdate(BaseModel):
    client_id: Optional[int] = None
    issue_date: Optional[date] = None
    valid_until: Optional[date] = None
    discount_pct: Optional[Decimal] = None
    items: Optional[List[LineItemIn]] = None
    notes: Optional[str] = None
    version: Optional[int] = None


class EstimateRead(MoneyFieldsMixin):
    id: int
    estimate_number: str
    client_id: int
    client_name: str
    status: str
    issue_date: date
    valid_until: Optional[date] = None
    discount_pct: Decimal
    discount_amount: Decimal
    notes: Optional[str] = None
    invoice_id: Optional[int] = None
    version: int
    items: List[LineItemRead]
    created_at: datetime
    updated_at: datetime

    @field_serializer("discount_amount")
    def _round_discount(self, value: Decimal) -> str:
        return str(money_round(value))


class ConvertRequest(BaseModel):
    due_date: date
    issue_date: Optional[date] = None


class StatusBucket(BaseModel):
    count: int
    total_amount: str


class ClientTotal(BaseModel):
    client_id: int
    client_name: str
    total_amount: str


class DashboardSummary(BaseModel):
    as_of: date
    total_invoices: int
    total_amount: str
    paid_amount: str
    outstanding_amount: str
    overdue_amount: str
    by_status: Dict[str, StatusBucket]
    top_clients: List[ClientTotal]
    monthly_totals: Dict[str, str]
