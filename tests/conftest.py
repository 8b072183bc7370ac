import os
import tempfile
from datetime import date

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker

from quickbill import models  # noqa: F401  ensure models are imported
from quickbill.database import Base, get_db
from quickbill.main import app, get_today
from quickbill.mailer import get_mailer
from quickbill.models import Client, User
from quickbill.security import create_access_token, get_password_hash

TODAY = date(2026, 3, 15)


class FakeMailer:
    def __init__(self, result=True, error=None):
        self.result = result
        self.error = error
        self.sent = []

    def send(self, recipient, subject, body, attachments=(), timeout=None, from_name=""):
        if self.error is not None:
            raise self.error
        self.sent.append(
            {
                "recipient": recipient,
                "subject": subject,
                "body": body,
                "attachments": list(attachments),
                "timeout": timeout,
                "from_name": from_name,
            }
        )
        return self.result


@pytest.fixture(scope="session")
def engine():
    fd, path = tempfile.mkstemp()
    os.close(fd)
    test_db_url = f"sqlite:///{path}"
    engine = create_engine(
        test_db_url, connect_args={"check_same_thread": False}
    )

    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    yield engine
    engine.dispose()
    if os.path.exists(path):
        os.unlink(path)


@pytest.fixture(scope="session")
def SessionTesting(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(autouse=True)
def prepare_db(engine, SessionTesting):
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db_session(SessionTesting):
    session = SessionTesting()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def mailer():
    return FakeMailer()


@pytest.fixture
def client(db_session, mailer):
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_mailer] = lambda: mailer
    app.dependency_overrides[get_today] = lambda: TODAY
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def make_user(db_session, email="owner@example.com", name="Owner", company_name="Owner Co"):
    user = User(
        email=email,
        name=name,
        company_name=company_name,
        company_address="1 Main St",
        hashed_password=get_password_hash("secret123"),
    )
    db_session.add(user)
    db_session.commit()
    return user


def make_client(db_session, owner, name="Acme", email="billing@acme.example.com", **extra):
    c = Client(owner_id=owner.id, name=name, email=email, **extra)
    db_session.add(c)
    db_session.commit()
    return c


@pytest.fixture
def user(db_session):
    return make_user(db_session)


@pytest.fixture
def auth_headers(user):
    return {"Authorization": f"Bearer {create_access_token(user.id)}"}


@pytest.fixture
def other_user(db_session):
    return make_user(db_session, email="other@example.com", name="Other", company_name=None)


@pytest.fixture
def other_headers(other_user):
    return {"Authorization": f"Bearer {create_access_token(other_user.id)}"}


@pytest.fixture
def acme(db_session, user):
    return make_client(db_session, user)
