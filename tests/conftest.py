"""
Shared fixtures for the Report Hub test suite.

The environment is pinned before anything under ``reporthub`` is imported:
settings and the SQLAlchemy engine are built at import time.

Provides:
- ``db``: a fresh Session over an empty SQLite schema per test
- ``storage`` / ``mailer``: in-memory fakes for the blob and mail collaborators
- ``client``: FastAPI TestClient with both fakes injected
- ``seed``: helpers that insert admins, partners, customers, units and reports
- ``auth_headers``: bearer headers for a seeded account
"""
import os
import tempfile
import uuid
from typing import Dict, List, Optional

_TMP = tempfile.mkdtemp(prefix="reporthub-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{_TMP}/test.db"
os.environ["STORAGE_PROVIDER"] = "local"
os.environ["STORAGE_LOCAL_DIR"] = os.path.join(_TMP, "storage")
os.environ["JWT_SECRET"] = "test-jwt-secret-for-unit-tests-only"
os.environ["RATE_LIMIT"] = "10000/minute"
os.environ["AUTO_CREATE_DB"] = "false"
os.environ["SMTP_HOST"] = ""

import pytest
from fastapi.testclient import TestClient

from reporthub.auth.security import create_access_token, get_password_hash, principal_for
from reporthub.db import Base, SessionLocal, engine
from reporthub.errors import DeliveryError, StorageError
from reporthub.models.models import Admin, Customer, Partner, Report, Unit
from reporthub.services.delivery import Mailer, get_mailer
from reporthub.storage.factory import get_storage
from reporthub.storage.provider import StorageProvider


DEFAULT_PASSWORD = "secret123"


class FakeStorage(StorageProvider):
    """Dict-backed blob store. ``fail_put_after`` makes the n-th put onwards fail."""

    name = "fake"

    def __init__(self):
        self.blobs: Dict[str, bytes] = {}
        self.fail_put_after: Optional[int] = None
        self.fail_delete = False
        self.puts = 0

    def put(self, data, key, content_type=None):
        if self.fail_put_after is not None and self.puts >= self.fail_put_after:
            raise StorageError(f"Failed to store file {key}")
        self.puts += 1
        self.blobs[key] = data.read() if hasattr(data, "read") else data
        return key

    def read(self, key):
        if key not in self.blobs:
            raise StorageError(f"Report file not found: {key}")
        return self.blobs[key]

    def exists(self, key):
        return key in self.blobs

    def delete(self, key):
        if self.fail_delete:
            raise StorageError(f"Failed to delete file {key}")
        return self.blobs.pop(key, None) is not None

    def get_download_url(self, key, expires_s=900):
        return f"memory://{key}" if key in self.blobs else None


class FakeMailer(Mailer):
    def __init__(self):
        self.sent: List[dict] = []
        self.fail = False

    def send(self, to_email, subject, html_body, attachments=()):
        if self.fail:
            raise DeliveryError(f"Failed to send email to {to_email}")
        self.sent.append({
            "to": to_email,
            "subject": subject,
            "html": html_body,
            "attachments": list(attachments),
        })


class Seed:
    def __init__(self, db):
        self.db = db

    def _save(self, entity):
        self.db.add(entity)
        self.db.commit()
        self.db.refresh(entity)
        return entity

    @staticmethod
    def _email(prefix: str) -> str:
        return f"{prefix}-{uuid.uuid4().hex[:8]}@example.com"

    def admin(self, name: str = "Admin A", email: Optional[str] = None, password: str = DEFAULT_PASSWORD) -> Admin:
        return self._save(Admin(name=name, email=email or self._email("admin"), password_hash=get_password_hash(password)))

    def partner(
        self,
        admin: Admin,
        name: str = "Partner One",
        email: Optional[str] = None,
        password: str = DEFAULT_PASSWORD,
    ) -> Partner:
        return self._save(Partner(
            name=name,
            email=email or self._email("partner"),
            password_hash=get_password_hash(password),
            admin_id=admin.id,
        ))

    def customer(self, partner: Partner, name: str = "Customer One", email: Optional[str] = None) -> Customer:
        return self._save(Customer(name=name, email=email or self._email("customer"), partner_id=partner.id))

    def unit(self, customer: Optional[Customer] = None, partner: Optional[Partner] = None, name: str = "Unit 1") -> Unit:
        return self._save(Unit(
            unit_name=name,
            customer_id=customer.id if customer else None,
            partner_id=partner.id if partner else None,
        ))

    def report(
        self,
        partner: Partner,
        customer: Optional[Customer] = None,
        unit: Optional[Unit] = None,
        number: str = "WO1000",
        vn: str = "VN1",
    ) -> Report:
        return self._save(Report(
            report_number=number,
            vn_number=vn,
            partner_id=partner.id,
            customer_id=customer.id if customer else None,
            unit_id=unit.id if unit else None,
        ))


@pytest.fixture(scope="session")
def app():
    from reporthub.main import app as fastapi_app

    return fastapi_app


@pytest.fixture
def db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def mailer():
    return FakeMailer()


@pytest.fixture
def seed(db):
    return Seed(db)


@pytest.fixture
def client(app, db, storage, mailer):
    app.dependency_overrides[get_storage] = lambda: storage
    app.dependency_overrides[get_mailer] = lambda: mailer
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    def _headers(entity) -> Dict[str, str]:
        return {"Authorization": f"Bearer {create_access_token(principal_for(entity))}"}

    return _headers


@pytest.fixture
def as_principal():
    return principal_for
