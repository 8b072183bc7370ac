import logging
from contextlib import asynccontextmanager
from datetime import date
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from sqlalchemy.orm import Session

from .config import configure_logging, get_settings
from .database import get_db
from .dispatch import send_estimate, send_invoice, send_reminder
from .errors import ConcurrencyError, QuickBillError, TransitionError, ValidationError
from .mailer import Mailer, get_mailer
from .models import Client, Estimate, EstimateStatus, Invoice, InvoiceStatus, User
from .pdf import build_pdf_payload, render_pdf
from .reports import summarize_invoices
from .repository import (
    ClientRepository,
    EstimateRepository,
    InvoiceRepository,
    UserRepository,
    next_document_number,
)
from .schemas import (
    ClientCreate,
    ClientRead,
    ClientUpdate,
    ConvertRequest,
    DashboardSummary,
    EstimateCreate,
    EstimateRead,
    EstimateUpdate,
    InvoiceCreate,
    InvoiceRead,
    InvoiceUpdate,
    LineItemRead,
    LoginRequest,
    ReminderResult,
    SendRequest,
    Token,
    UserCreate,
    UserRead,
)
from .security import create_access_token, get_current_user, get_password_hash, verify_password
from .services import (
    accept_estimate,
    apply_discount,
    cancel,
    client_display_name,
    compute_line_amounts,
    convert_to_invoice,
    effective_status,
    ensure_convertible,
    ensure_editable,
    is_overdue,
    mark_paid,
    recompute_on_edit,
    reject_estimate,
    validate_discount,
    validate_items,
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    logger.info("%s API starting", get_settings().app_name)
    yield


app = FastAPI(title="QuickBill", lifespan=lifespan)


@app.exception_handler(QuickBillError)
async def quickbill_error_handler(request: Request, exc: QuickBillError) -> JSONResponse:
    content = {"detail": exc.message, "error": type(exc).__name__}
    if isinstance(exc, ValidationError) and exc.errors:
        content["errors"] = exc.errors
    return JSONResponse(status_code=exc.status_code, content=content)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "detail": "Invalid request",
            "error": "ValidationError",
            "errors": jsonable_encoder(exc.errors()),
        },
    )


def get_today() -> date:
    return date.today()


def _check_version(document, version: Optional[int]) -> None:
    if version is not None and version != document.version:
        raise ConcurrencyError(
            f"Version mismatch: expected {document.version}, got {version}; reload and retry."
        )


def _validate_dates(issue_date: date, due_date: Optional[date], field: str = "due_date") -> None:
    if due_date is not None and due_date < issue_date:
        raise ValidationError(
            "Due date cannot be before issue date.", {field: "must be on or after issue_date"}
        )


def _line_reads(document) -> List[LineItemRead]:
    lines = sorted(document.items, key=lambda l: (l.sort_order, l.id or 0))
    if not lines:
        return []
    return [
        LineItemRead(
            description=item.description,
            quantity=item.quantity,
            unit_price=item.unit_price,
            tax_rate=item.tax_rate,
            amount=line_subtotal,
        )
        for item, line_subtotal, _ in compute_line_amounts(lines)
    ]


def _invoice_read(invoice: Invoice, today: date) -> InvoiceRead:
    return InvoiceRead(
        id=invoice.id,
        invoice_number=invoice.invoice_number,
        client_id=invoice.client_id,
        client_name=client_display_name(invoice.client),
        status=invoice.status,
        is_overdue=is_overdue(invoice, today),
        issue_date=invoice.issue_date,
        due_date=invoice.due_date,
        subtotal=invoice.subtotal,
        total_tax=invoice.total_tax,
        total_amount=invoice.total_amount,
        notes=invoice.notes,
        payment_terms=invoice.payment_terms,
        sent_at=invoice.sent_at,
        paid_at=invoice.paid_at,
        version=invoice.version,
        items=_line_reads(invoice),
        created_at=invoice.created_at,
        updated_at=invoice.updated_at,
    )


def _estimate_read(estimate: Estimate) -> EstimateRead:
    return EstimateRead(
        id=estimate.id,
        estimate_number=estimate.estimate_number,
        client_id=estimate.client_id,
        client_name=client_display_name(estimate.client),
        status=estimate.status,
        issue_date=estimate.issue_date,
        valid_until=estimate.valid_until,
        discount_pct=estimate.discount_pct,
        discount_amount=estimate.discount_amount,
        subtotal=estimate.subtotal,
        total_tax=estimate.total_tax,
        total_amount=estimate.total_amount,
        notes=estimate.notes,
        invoice_id=estimate.invoice_id,
        version=estimate.version,
        items=_line_reads(estimate),
        created_at=estimate.created_at,
        updated_at=estimate.updated_at,
    )


def _pdf_response(document, issuer: User, filename: str) -> Response:
    pdf_bytes = render_pdf(build_pdf_payload(document, issuer, document.client))
    return Response(
        content=pdf_bytes,
        media_type="application/pdf",
        headers={"Content-Disposition": f'inline; filename="{filename}"'},
    )


@app.get("/health")
def health_check():
    return {"status": "ok"}


# Auth -----------------------------------------------------------------------


@app.post("/api/auth/register", response_model=UserRead, status_code=status.HTTP_201_CREATED)
def register_user(payload: UserCreate, db: Session = Depends(get_db)):
    users = UserRepository(db)
    email = payload.email.lower()
    if users.find_by_email(email):
        raise ValidationError("Email already registered", {"email": "already registered"})
    user = User(
        email=email,
        name=payload.name.strip(),
        company_name=payload.company_name,
        company_address=payload.company_address,
        phone=payload.phone,
        hashed_password=get_password_hash(payload.password),
    )
    return users.save(user)


@app.post("/api/auth/login", response_model=Token)
def login(credentials: LoginRequest, db: Session = Depends(get_db)):
    user = UserRepository(db).find_by_email(credentials.email)
    if not user or not verify_password(credentials.password, user.hashed_password):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")
    return Token(access_token=create_access_token(user.id))


@app.get("/api/auth/me", response_model=UserRead)
def read_me(current_user: User = Depends(get_current_user)):
    return current_user


# Clients --------------------------------------------------------------------


@app.get("/api/clients", response_model=List[ClientRead])
def list_clients(
    include_deleted: bool = False,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return ClientRepository(db).find_all_by_user(current_user.id, include_deleted=include_deleted)


@app.post("/api/clients", response_model=ClientRead, status_code=status.HTTP_201_CREATED)
def create_client(
    payload: ClientCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    data = payload.model_dump()
    data["name"] = data["name"].strip()
    if not data["name"]:
        raise ValidationError("Client name is required", {"name": "required"})
    client = Client(owner_id=current_user.id, **data)
    return ClientRepository(db).save(client)


@app.get("/api/clients/{client_id}", response_model=ClientRead)
def get_client(
    client_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return ClientRepository(db).get_owned(client_id, current_user.id)


@app.put("/api/clients/{client_id}", response_model=ClientRead)
def update_client(
    client_id: int,
    payload: ClientUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    clients = ClientRepository(db)
    client = clients.get_usable(client_id, current_user.id)
    data = payload.model_dump(exclude_unset=True)
    if "name" in data:
        data["name"] = (data["name"] or "").strip()
        if not data["name"]:
            raise ValidationError("Client name is required", {"name": "required"})
    if "email" in data and not data["email"]:
        raise ValidationError("Client email is required", {"email": "required"})
    for key, value in data.items():
        setattr(client, key, value)
    return clients.save(client)


@app.delete("/api/clients/{client_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_client(
    client_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    # Soft delete: invoices keep the reference and show "Unknown Client".
    clients = ClientRepository(db)
    client = clients.get_owned(client_id, current_user.id)
    client.is_deleted = True
    clients.save(client)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.post("/api/clients/{client_id}/restore", response_model=ClientRead)
def restore_client(
    client_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    clients = ClientRepository(db)
    client = clients.get_owned(client_id, current_user.id)
    client.is_deleted = False
    return clients.save(client)


# Invoices -------------------------------------------------------------------


@app.get("/api/invoices", response_model=List[InvoiceRead])
def list_invoices(
    status_filter: Optional[InvoiceStatus] = Query(None, alias="status"),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    today: date = Depends(get_today),
):
    invoices = InvoiceRepository(db).find_all_by_user(current_user.id)
    if status_filter is not None:
        invoices = [inv for inv in invoices if effective_status(inv, today) == status_filter.value]
    return [_invoice_read(inv, today) for inv in invoices]


@app.post("/api/invoices", response_model=InvoiceRead, status_code=status.HTTP_201_CREATED)
def create_invoice(
    payload: InvoiceCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    today: date = Depends(get_today),
):
    client = ClientRepository(db).get_usable(payload.client_id, current_user.id)
    issue_date = payload.issue_date or today
    _validate_dates(issue_date, payload.due_date)
    items = validate_items(payload.items)

    invoice = Invoice(
        owner_id=current_user.id,
        client_id=client.id,
        invoice_number=next_document_number(db, current_user.id, "invoice", issue_date.year),
        status=InvoiceStatus.DRAFT.value,
        issue_date=issue_date,
        due_date=payload.due_date,
        notes=payload.notes,
        payment_terms=payload.payment_terms,
    )
    recompute_on_edit(invoice, items)
    invoice = InvoiceRepository(db).save(invoice)
    logger.info("Invoice %s created for user %s", invoice.invoice_number, current_user.id)
    return _invoice_read(invoice, today)


@app.get("/api/invoices/{invoice_id}", response_model=InvoiceRead)
def get_invoice(
    invoice_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    today: date = Depends(get_today),
):
    invoice = InvoiceRepository(db).get_owned(invoice_id, current_user.id)
    return _invoice_read(invoice, today)


@app.put("/api/invoices/{invoice_id}", response_model=InvoiceRead)
def update_invoice(
    invoice_id: int,
    payload: InvoiceUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    today: date = Depends(get_today),
):
    invoices = InvoiceRepository(db)
    invoice = invoices.get_owned(invoice_id, current_user.id)
    _check_version(invoice, payload.version)
    ensure_editable(invoice)

    data = payload.model_dump(exclude_unset=True, exclude={"items", "version"})
    if data.get("client_id") is not None and data["client_id"] != invoice.client_id:
        ClientRepository(db).get_usable(data["client_id"], current_user.id)
    for required in ("client_id", "issue_date", "due_date"):
        if required in data and data[required] is None:
            raise ValidationError(f"{required} cannot be empty", {required: "required"})
    _validate_dates(
        data.get("issue_date", invoice.issue_date), data.get("due_date", invoice.due_date)
    )
    items = validate_items(payload.items) if payload.items is not None else None

    for key, value in data.items():
        setattr(invoice, key, value)
    if items is not None:
        recompute_on_edit(invoice, items)
    invoice = invoices.save(invoice)
    return _invoice_read(invoice, today)


@app.delete("/api/invoices/{invoice_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_invoice(
    invoice_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    invoices = InvoiceRepository(db)
    invoice = invoices.get_owned(invoice_id, current_user.id)
    if invoice.status not in (InvoiceStatus.DRAFT.value, InvoiceStatus.CANCELLED.value):
        raise TransitionError(f"Cannot delete a {invoice.status} invoice; cancel it first.")
    EstimateRepository(db).unlink_invoice(invoice.id)
    invoices.delete(invoice)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.post("/api/invoices/{invoice_id}/send", response_model=InvoiceRead)
def send_invoice_by_email(
    invoice_id: int,
    payload: Optional[SendRequest] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    mailer: Mailer = Depends(get_mailer),
    today: date = Depends(get_today),
):
    invoices = InvoiceRepository(db)
    invoice = invoices.get_owned(invoice_id, current_user.id)
    recipient = payload.recipient_email if payload else None
    send_invoice(
        invoice,
        current_user,
        mailer,
        recipient=recipient,
        timeout=get_settings().smtp_timeout,
    )
    invoice = invoices.save(invoice)
    return _invoice_read(invoice, today)


@app.post("/api/invoices/{invoice_id}/pay", response_model=InvoiceRead)
def pay_invoice(
    invoice_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    today: date = Depends(get_today),
):
    invoices = InvoiceRepository(db)
    invoice = mark_paid(invoices.get_owned(invoice_id, current_user.id))
    return _invoice_read(invoices.save(invoice), today)


@app.post("/api/invoices/{invoice_id}/cancel", response_model=InvoiceRead)
def cancel_invoice(
    invoice_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    today: date = Depends(get_today),
):
    invoices = InvoiceRepository(db)
    invoice = cancel(invoices.get_owned(invoice_id, current_user.id))
    return _invoice_read(invoices.save(invoice), today)


@app.post("/api/invoices/{invoice_id}/remind", response_model=ReminderResult)
def remind_invoice(
    invoice_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    mailer: Mailer = Depends(get_mailer),
    today: date = Depends(get_today),
):
    invoice = InvoiceRepository(db).get_owned(invoice_id, current_user.id)
    days = send_reminder(
        invoice, current_user, mailer, today=today, timeout=get_settings().smtp_timeout
    )
    return ReminderResult(invoice_id=invoice.id, days_overdue=days)


@app.get("/api/invoices/{invoice_id}/pdf")
def invoice_pdf(
    invoice_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> Response:
    invoice = InvoiceRepository(db).get_owned(invoice_id, current_user.id)
    return _pdf_response(invoice, current_user, f"Invoice-{invoice.invoice_number}.pdf")


# Estimates ------------------------------------------------------------------


@app.get("/api/estimates", response_model=List[EstimateRead])
def list_estimates(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return [_estimate_read(e) for e in EstimateRepository(db).find_all_by_user(current_user.id)]


@app.post("/api/estimates", response_model=EstimateRead, status_code=status.HTTP_201_CREATED)
def create_estimate(
    payload: EstimateCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    today: date = Depends(get_today),
):
    client = ClientRepository(db).get_usable(payload.client_id, current_user.id)
    issue_date = payload.issue_date or today
    _validate_dates(issue_date, payload.valid_until, field="valid_until")
    discount = validate_discount(payload.discount_pct)
    items = validate_items(payload.items)

    estimate = Estimate(
        owner_id=current_user.id,
        client_id=client.id,
        estimate_number=next_document_number(db, current_user.id, "estimate", issue_date.year),
        status=EstimateStatus.DRAFT.value,
        issue_date=issue_date,
        valid_until=payload.valid_until,
        discount_pct=discount,
        notes=payload.notes,
    )
    recompute_on_edit(estimate, items)
    return _estimate_read(EstimateRepository(db).save(estimate))


@app.get("/api/estimates/{estimate_id}", response_model=EstimateRead)
def get_estimate(
    estimate_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return _estimate_read(EstimateRepository(db).get_owned(estimate_id, current_user.id))


@app.put("/api/estimates/{estimate_id}", response_model=EstimateRead)
def update_estimate(
    estimate_id: int,
    payload: EstimateUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    estimates = EstimateRepository(db)
    estimate = estimates.get_owned(estimate_id, current_user.id)
    _check_version(estimate, payload.version)
    ensure_editable(estimate)

    data = payload.model_dump(exclude_unset=True, exclude={"items", "version", "discount_pct"})
    if data.get("client_id") is not None and data["client_id"] != estimate.client_id:
        ClientRepository(db).get_usable(data["client_id"], current_user.id)
    for required in ("client_id", "issue_date"):
        if required in data and data[required] is None:
            raise ValidationError(f"{required} cannot be empty", {required: "required"})
    _validate_dates(
        data.get("issue_date", estimate.issue_date),
        data.get("valid_until", estimate.valid_until),
        field="valid_until",
    )
    discount = validate_discount(payload.discount_pct) if payload.discount_pct is not None else None
    items = validate_items(payload.items) if payload.items is not None else None

    for key, value in data.items():
        setattr(estimate, key, value)
    if discount is not None:
        estimate.discount_pct = discount
    if items is not None:
        recompute_on_edit(estimate, items)
    elif discount is not None:
        apply_discount(estimate, discount)
    return _estimate_read(estimates.save(estimate))


@app.delete("/api/estimates/{estimate_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_estimate(
    estimate_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    estimates = EstimateRepository(db)
    estimates.delete(estimates.get_owned(estimate_id, current_user.id))
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.post("/api/estimates/{estimate_id}/send", response_model=EstimateRead)
def send_estimate_by_email(
    estimate_id: int,
    payload: Optional[SendRequest] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    mailer: Mailer = Depends(get_mailer),
):
    estimates = EstimateRepository(db)
    estimate = estimates.get_owned(estimate_id, current_user.id)
    send_estimate(
        estimate,
        current_user,
        mailer,
        recipient=payload.recipient_email if payload else None,
        timeout=get_settings().smtp_timeout,
    )
    return _estimate_read(estimates.save(estimate))


@app.post("/api/estimates/{estimate_id}/accept", response_model=EstimateRead)
def accept_estimate_route(
    estimate_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    estimates = EstimateRepository(db)
    estimate = accept_estimate(estimates.get_owned(estimate_id, current_user.id))
    return _estimate_read(estimates.save(estimate))


@app.post("/api/estimates/{estimate_id}/reject", response_model=EstimateRead)
def reject_estimate_route(
    estimate_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    estimates = EstimateRepository(db)
    estimate = reject_estimate(estimates.get_owned(estimate_id, current_user.id))
    return _estimate_read(estimates.save(estimate))


@app.post(
    "/api/estimates/{estimate_id}/convert",
    response_model=InvoiceRead,
    status_code=status.HTTP_201_CREATED,
)
def convert_estimate(
    estimate_id: int,
    payload: ConvertRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    today: date = Depends(get_today),
):
    estimates = EstimateRepository(db)
    estimate = estimates.get_owned(estimate_id, current_user.id)
    issue_date = payload.issue_date or today
    ensure_convertible(estimate)
    _validate_dates(issue_date, payload.due_date)

    invoice = convert_to_invoice(
        estimate,
        next_document_number(db, current_user.id, "invoice", issue_date.year),
        payload.due_date,
        issue_date,
    )
    db.add(invoice)
    db.flush()
    estimate.invoice_id = invoice.id
    estimates.save(estimate)
    db.refresh(invoice)
    return _invoice_read(invoice, today)


@app.get("/api/estimates/{estimate_id}/pdf")
def estimate_pdf(
    estimate_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> Response:
    estimate = EstimateRepository(db).get_owned(estimate_id, current_user.id)
    return _pdf_response(estimate, current_user, f"Estimate-{estimate.estimate_number}.pdf")


# Dashboard ------------------------------------------------------------------


@app.get("/api/dashboard/summary", response_model=DashboardSummary)
def dashboard_summary(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    today: date = Depends(get_today),
):
    return summarize_invoices(InvoiceRepository(db).find_all_by_user(current_user.id), today)
