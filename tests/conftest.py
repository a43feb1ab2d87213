"""
Test configuration and fixtures.
Every test gets a fresh in-memory SQLite ledger.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite://")

from datetime import datetime, timedelta, timezone
from typing import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from inventory_ledger.config import settings
from inventory_ledger.database import Base, get_db, init_db
from inventory_ledger.main import app
from inventory_ledger.models.user import User
from inventory_ledger.services import auth_service
from inventory_ledger.services.audit_service import AuditLogger
from inventory_ledger.services.inventory_service import InventoryService
from inventory_ledger.services.ledger_store import LedgerStore
from inventory_ledger.services.locks import KeyedLock

engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class FakeClock:
    """Deterministic clock; each call returns the current instant."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture(scope="function")
def db_session() -> Generator[Session, None, None]:
    init_db(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def store(db_session: Session) -> LedgerStore:
    return LedgerStore(db_session)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def service(store: LedgerStore, clock: FakeClock) -> InventoryService:
    return InventoryService(store, clock=clock, indexed=False, locks=KeyedLock())


@pytest.fixture
def indexed_service(store: LedgerStore, clock: FakeClock) -> InventoryService:
    return InventoryService(store, clock=clock, indexed=True, locks=KeyedLock())


@pytest.fixture
def audit_logger(store: LedgerStore, clock: FakeClock) -> AuditLogger:
    return AuditLogger(store, clock=clock)


@pytest.fixture(scope="function")
def client(db_session: Session) -> Generator[TestClient, None, None]:
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def admin_user(db_session: Session) -> User:
    return auth_service.create_user(db_session, "root", "root-password", "Root", role="admin")


@pytest.fixture
def staff_user(db_session: Session) -> User:
    return auth_service.create_user(db_session, "clerk", "clerk-password", "Clerk", role="staff")


@pytest.fixture
def admin_headers(admin_user: User) -> dict:
    token = auth_service.create_access_token(admin_user.id, admin_user.username, admin_user.role)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def staff_headers(staff_user: User) -> dict:
    token = auth_service.create_access_token(staff_user.id, staff_user.username, staff_user.role)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def api_key_headers() -> dict:
    return {"X-API-Key": settings.API_KEY}
