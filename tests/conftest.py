"""
Test fixtures and shared setup.

Uses a SQLite file database so the suite runs without a Postgres instance.
All tests run inside an outer transaction that is rolled back afterwards;
service code that calls commit() only releases a SAVEPOINT, so the DB is
always clean without needing to truncate tables.
"""

import os
from datetime import date
from decimal import Decimal

import pytest

from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker

# ── Override settings BEFORE importing app modules ────────────────────────────
os.environ.setdefault("DATABASE_URL", "sqlite:///./test_medidata.db")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379")
os.environ.setdefault("SECRET_KEY", "test-secret-key-not-for-production")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("STORAGE_BACKEND", "local")
os.environ.setdefault("LOCAL_STORAGE_PATH", "/tmp/medidata_test_documents")
os.environ.setdefault("MEDIDATA_PROXY_API_KEY", "test-proxy-key")

from app.main import app
from app.database import get_db
from app.models.base import Base
from app.models import *  # noqa: F401,F403 ensures all models registered
from app.services.transport.base import (
    ClearingHouseTransport,
    TransportError,
    UploadResult,
    UploadStatus,
    UpstreamStatus,
)


# ── Test engine ───────────────────────────────────────────────────────────────
TEST_DATABASE_URL = os.environ["DATABASE_URL"]
test_engine = create_engine(
    TEST_DATABASE_URL, connect_args={"check_same_thread": False}
)


# pysqlite opens transactions lazily and never emits SAVEPOINT-safe BEGINs;
# take over transaction control so nested savepoints work.
@event.listens_for(test_engine, "connect")
def _sqlite_connect(dbapi_connection, connection_record):
    dbapi_connection.isolation_level = None


@event.listens_for(test_engine, "begin")
def _sqlite_begin(conn):
    conn.exec_driver_sql("BEGIN")


TestSessionLocal = sessionmaker(bind=test_engine, autocommit=False, autoflush=False)


@pytest.fixture(scope="session")
def create_test_tables():
    """
    Create all tables once per test session.
    NOT autouse — only runs for tests that need DB fixtures.
    DB-independent tests (pricing, builder, parsers) run without this.
    """
    Base.metadata.drop_all(bind=test_engine)
    Base.metadata.create_all(bind=test_engine)
    yield
    Base.metadata.drop_all(bind=test_engine)


@pytest.fixture
def db(create_test_tables) -> Session:
    """
    Provide a DB session that is rolled back after each test.
    commit() inside the code under test releases a savepoint only.
    """
    connection = test_engine.connect()
    transaction = connection.begin()
    session = TestSessionLocal(bind=connection, join_transaction_mode="create_savepoint")

    yield session

    session.close()
    transaction.rollback()
    connection.close()


@pytest.fixture
def client(db: Session) -> TestClient:
    """
    FastAPI test client with DB dependency overridden to use the test session.
    """

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


# ── Clearing-house fake ───────────────────────────────────────────────────────


class FakeTransport(ClearingHouseTransport):
    """
    In-memory clearing house. Tests preload statuses, downloads and
    notifications, then inspect what was uploaded and confirmed.
    """

    def __init__(self):
        self.uploads: list[dict] = []
        self.statuses: dict = {}
        self.downloads: list = []
        self.contents: dict[str, str] = {}
        self.notifications: list = []
        self.confirmed_downloads: list[str] = []
        self.confirmed_notifications: list[str] = []
        self.upload_error = None
        self.confirm_ok = True
        self.list_error = None
        self.participants: list = []
        self.participant_queries: list[dict] = []
        self.reachable = True
        self.closed = False

    def submit(self, document_xml, filename, info):
        if self.upload_error is not None:
            raise self.upload_error
        message_id = f"MSG-{len(self.uploads) + 1:04d}"
        self.uploads.append(
            {"message_id": message_id, "filename": filename, "info": info, "xml": document_xml}
        )
        return UploadResult(message_id=message_id, status_code=200)

    def check_status(self, message_id):
        status = self.statuses.get(message_id)
        if isinstance(status, Exception):
            raise status
        return status or UploadStatus(status=UpstreamStatus.PROCESSING)

    def list_downloads(self):
        if self.list_error is not None:
            raise self.list_error
        return list(self.downloads)

    def fetch_download(self, ref):
        if ref not in self.contents:
            raise TransportError(f"No document {ref}", status_code=404)
        return self.contents[ref]

    def confirm_download(self, ref):
        if not self.confirm_ok:
            return False
        self.confirmed_downloads.append(ref)
        return True

    def list_notifications(self):
        if self.list_error is not None:
            raise self.list_error
        return list(self.notifications)

    def confirm_notification(self, notification_id):
        if not self.confirm_ok:
            return False
        self.confirmed_notifications.append(notification_id)
        return True

    def list_participants(self, **query):
        if self.list_error is not None:
            raise self.list_error
        self.participant_queries.append(query)
        return list(self.participants)

    def health(self):
        return self.reachable

    def close(self):
        self.closed = True


@pytest.fixture
def fake_transport() -> FakeTransport:
    return FakeTransport()


# ── Data builder fixtures ──────────────────────────────────────────────────────


@pytest.fixture
def billing_entity(db: Session):
    from app.models.party import BillingEntity

    entity = BillingEntity(
        name="Cabinet Médical du Lac",
        gln="7601000000002",
        zsr="H123456",
        iban="CH93 0076 2011 6238 5295 7",
        street="Rue du Rhône",
        street_no="12",
        zip_code="1204",
        city="Genève",
        canton="GE",
    )
    db.add(entity)
    db.commit()
    return entity


@pytest.fixture
def staff(db: Session):
    """Treating doctor without personal billing credentials."""
    from app.models.party import MedicalStaff

    doctor = MedicalStaff(name="Dr. Léa Martin")
    db.add(doctor)
    db.commit()
    return doctor


@pytest.fixture
def insurer(db: Session):
    from app.models.party import Insurer

    row = Insurer(name="Assura-Basis SA", gln="7601003000382")
    db.add(row)
    db.commit()
    return row


@pytest.fixture
def patient(db: Session):
    from app.models.party import Patient

    row = Patient(
        first_name="Marie",
        last_name="Dupont",
        birthdate=date(1980, 5, 12),
        sex="female",
        avs_number="756.1234.5678.97",
        insurance_card_number="80756012345678901234",
        street="Chemin des Vignes 4",
        zip_code="1227",
        city="Carouge",
    )
    db.add(row)
    db.commit()
    return row


def make_invoice(
    db: Session,
    patient,
    billing_entity=None,
    staff=None,
    insurer=None,
    invoice_number: str = "INV-2024-0001",
    billing_type: str = "TG",
    status: str = "OPEN",
    total: Decimal = Decimal("88.46"),
):
    """Invoice with one TARDOC line (AA.01.0010 × 2 in Geneva), committed."""
    from app.models.invoice import Invoice, LineItem

    invoice = Invoice(
        invoice_number=invoice_number,
        invoice_date=date(2024, 3, 1),
        due_date=date(2024, 3, 31),
        treatment_date=date(2024, 2, 28),
        patient_id=patient.id,
        billing_entity_id=billing_entity.id if billing_entity else None,
        staff_id=staff.id if staff else None,
        insurer_id=insurer.id if insurer else None,
        billing_type=billing_type,
        law_type="KVG",
        diagnosis_codes=[{"type": "ICD", "code": "J06.9"}],
        subtotal=total,
        total_amount=total,
        status=status,
    )
    invoice.line_items.append(
        LineItem(
            sort_order=1,
            catalog_name="TARDOC",
            code="AA.01.0010",
            name="First consultation, comprehensive",
            quantity=Decimal("2"),
            tax_points=Decimal("48.5"),
            unit_price=Decimal("44.23"),
            total_price=Decimal("88.46"),
        )
    )
    db.add(invoice)
    db.commit()
    return invoice


@pytest.fixture
def invoice_factory(db: Session, patient, billing_entity, staff, insurer):
    """Build further invoices for the same parties; keyword args override defaults."""

    def _make(**overrides):
        return make_invoice(db, patient, billing_entity, staff, insurer, **overrides)

    return _make


@pytest.fixture
def invoice(invoice_factory):
    return invoice_factory()


@pytest.fixture
def operator(db: Session):
    from app.models.party import User, UserRole
    from app.routers.auth import hash_password

    user = User(
        email="billing@cabinet-du-lac.ch",
        hashed_password=hash_password("correct horse"),
        role=UserRole.BILLING,
    )
    db.add(user)
    db.commit()
    return user


@pytest.fixture
def auth_headers(operator) -> dict:
    """Authorization header with a fresh JWT for the operator."""
    from app.routers.auth import token_for

    return {"Authorization": f"Bearer {token_for(operator)}"}
