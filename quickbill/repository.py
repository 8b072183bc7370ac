import logging
from datetime import date
from typing import Generic, List, Optional, Type, TypeVar

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload, selectinload
from sqlalchemy.orm.exc import StaleDataError

from .errors import AuthorizationError, ConcurrencyError, NotFoundError
from .models import Client, DocumentSequence, Estimate, Invoice, User

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT")

NUMBER_PREFIXES = {"invoice": "INV", "estimate": "EST"}


class Repository(Generic[ModelT]):
    model: Type[ModelT]
    label = "Record"

    def __init__(self, db: Session):
        self.db = db

    def _query(self):
        return self.db.query(self.model)

    def find_by_id(self, obj_id: int) -> Optional[ModelT]:
        return self._query().filter(self.model.id == obj_id).first()

    def find_all_by_user(self, user_id: int) -> List[ModelT]:
        return (
            self._query()
            .filter(self.model.owner_id == user_id)
            .order_by(self.model.id.desc())
            .all()
        )

    def get_owned(self, obj_id: int, user_id: int) -> ModelT:
        obj = self.find_by_id(obj_id)
        if obj is None:
            raise NotFoundError(f"{self.label} not found")
        if obj.owner_id != user_id:
            raise AuthorizationError(f"Not authorized to access this {self.label.lower()}")
        return obj

    def save(self, obj: ModelT) -> ModelT:
        self.db.add(obj)
        try:
            self.db.commit()
        except StaleDataError as exc:
            self.db.rollback()
            raise ConcurrencyError(
                f"{self.label} was modified by another request; reload and retry."
            ) from exc
        self.db.refresh(obj)
        return obj

    def delete(self, obj: ModelT) -> None:
        self.db.delete(obj)
        self.db.commit()


class UserRepository(Repository[User]):
    model = User
    label = "User"

    def find_by_email(self, email: str) -> Optional[User]:
        return self.db.query(User).filter(User.email == email.lower()).first()


class ClientRepository(Repository[Client]):
    model = Client
    label = "Client"

    def find_all_by_user(self, user_id: int, include_deleted: bool = False) -> List[Client]:
        query = self._query().filter(Client.owner_id == user_id)
        if not include_deleted:
            query = query.filter(Client.is_deleted.is_(False))
        return query.order_by(Client.name, Client.id).all()

    def get_usable(self, client_id: int, user_id: int) -> Client:
        """Client that may be attached to a new or edited document."""
        client = self.get_owned(client_id, user_id)
        if client.is_deleted:
            raise NotFoundError("Client not found")
        return client


class InvoiceRepository(Repository[Invoice]):
    model = Invoice
    label = "Invoice"

    def _query(self):
        return self.db.query(Invoice).options(
            joinedload(Invoice.client), selectinload(Invoice.items)
        )

    def find_all_by_user(self, user_id: int, status: Optional[str] = None) -> List[Invoice]:
        query = self._query().filter(Invoice.owner_id == user_id)
        if status:
            query = query.filter(Invoice.status == status)
        return query.order_by(Invoice.issue_date.desc(), Invoice.id.desc()).all()

    def find_sent_past_due(self, today: date) -> List[Invoice]:
        return (
            self.db.query(Invoice)
            .filter(Invoice.status == "sent", Invoice.due_date < today)
            .order_by(Invoice.id)
            .all()
        )


class EstimateRepository(Repository[Estimate]):
    model = Estimate
    label = "Estimate"

    def _query(self):
        return self.db.query(Estimate).options(
            joinedload(Estimate.client), selectinload(Estimate.items)
        )

    def unlink_invoice(self, invoice_id: int) -> int:
        """Detach estimates converted into ``invoice_id``; returns how many."""
        return (
            self.db.query(Estimate)
            .filter(Estimate.invoice_id == invoice_id)
            .update({Estimate.invoice_id: None}, synchronize_session="fetch")
        )


def next_document_number(db: Session, owner_id: int, kind: str, year_full: int) -> str:
    """Reserve the owner's next number for ``kind`` in ``year_full``, e.g. INV-2026-0001.

    The sequence row is locked for the rest of the transaction; a concurrent
    first insert for the same year is retried once.
    """
    prefix = NUMBER_PREFIXES[kind]
    for attempt in range(2):
        try:
            seq = (
                db.query(DocumentSequence)
                .filter(
                    DocumentSequence.owner_id == owner_id,
                    DocumentSequence.kind == kind,
                    DocumentSequence.year_full == year_full,
                )
                .with_for_update()
                .first()
            )
            if not seq:
                seq = DocumentSequence(
                    owner_id=owner_id, kind=kind, year_full=year_full, next_number=1
                )
                db.add(seq)
                db.flush()
            n = seq.next_number
            seq.next_number = n + 1
            break
        except IntegrityError:
            db.rollback()
            logger.warning("Sequence race for %s/%s/%s, retrying", owner_id, kind, year_full)
            if attempt == 1:
                raise
    return f"{prefix}-{year_full}-{n:04d}"
