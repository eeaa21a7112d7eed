import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["JWT_SECRET"] = "test-access-secret"
os.environ["JWT_REFRESH_SECRET"] = "test-refresh-secret"
os.environ["ENVIRONMENT"] = "development"
os.environ["EMAIL_ENABLED"] = "false"
os.environ["DEFAULT_ADMIN_EMAIL"] = ""
os.environ["DEFAULT_ADMIN_PASSWORD"] = ""

from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest
from fastapi.testclient import TestClient

from app.main import app
from app.application.services.account_service import AccountService
from app.application.services.employee_id import EmployeeIdAllocator
from app.application.services.notification_service import DeliveryResult
from app.application.services.password_hasher import PasswordHasher, get_password_hasher
from app.application.services.token_service import RequestContext, TokenSigner
from app.config import get_policy
from app.domain.models.department import DEPARTMENT_NAMES
from app.domain.models.user import Role
from app.infrastructure.database import Base, SessionLocal, engine, get_db
from app.infrastructure.repositories.department_repository import SQLAlchemyDepartmentRepository
from app.infrastructure.repositories.user_repository import SQLAlchemyUserRepository
from app.interfaces.api.deps import get_notification_service


class FakeClock:
    def __init__(self):
        # Tokens are checked against wall-clock time, so start from it
        self.now = datetime.now(timezone.utc).replace(microsecond=0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class RecordingNotifier:
    """Stands in for NotificationService and keeps every message it was asked to send."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent: list[tuple[str, dict]] = []

    def _record(self, kind: str, fields: dict) -> DeliveryResult:
        self.sent.append((kind, fields))
        if self.fail:
            return DeliveryResult(False, "Email service not configured")
        return DeliveryResult(True, "Email sent successfully")

    def last(self, kind: str) -> Optional[dict]:
        for sent_kind, fields in reversed(self.sent):
            if sent_kind == kind:
                return fields
        return None

    def kinds(self) -> list[str]:
        return [kind for kind, _ in self.sent]

    async def send_teacher_welcome(self, **fields) -> DeliveryResult:
        return self._record("teacher_welcome", fields)

    async def send_admin_welcome(self, **fields) -> DeliveryResult:
        return self._record("admin_welcome", fields)

    async def send_password_change_otp(self, **fields) -> DeliveryResult:
        return self._record("password_change_otp", fields)

    async def send_password_reset_otp(self, **fields) -> DeliveryResult:
        return self._record("password_reset_otp", fields)

    async def send_password_reset_link(self, **fields) -> DeliveryResult:
        return self._record("password_reset_link", fields)


@pytest.fixture
def db():
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def hasher() -> PasswordHasher:
    return PasswordHasher(rounds=4)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def context() -> RequestContext:
    return RequestContext(user_agent="pytest-agent", ip="1.1.1.1")


@pytest.fixture
def users(db) -> SQLAlchemyUserRepository:
    return SQLAlchemyUserRepository(db)


@pytest.fixture
def departments(db) -> SQLAlchemyDepartmentRepository:
    repo = SQLAlchemyDepartmentRepository(db)
    repo.ensure_defaults()
    return repo


@pytest.fixture
def department_ids(departments) -> dict[str, str]:
    return {name: departments.get_by_name(name).id for name in DEPARTMENT_NAMES}


@pytest.fixture
def allocator(users, departments) -> EmployeeIdAllocator:
    return EmployeeIdAllocator(users, departments)


@pytest.fixture
def service(users, departments, allocator, hasher, notifier, clock) -> AccountService:
    return AccountService(
        users=users,
        departments=departments,
        allocator=allocator,
        hasher=hasher,
        tokens=TokenSigner(get_policy()),
        notifier=notifier,
        policy=get_policy(),
        clock=clock,
    )


@pytest.fixture
def make_user(users, hasher):
    def _make(
        email: str,
        password: str = "Aa1!aaaa",
        role: Role = Role.ADMIN,
        name: str = "Test User",
        department_id: Optional[str] = None,
        employee_id: Optional[str] = None,
        active: bool = True,
    ):
        data = {
            "name": name,
            "email": email,
            "role": role.value,
            "password_hash": hasher.hash(password),
            "active": active,
        }
        if department_id:
            data["department_id"] = department_id
        if employee_id:
            data["employee_id"] = employee_id
        return users.create(data)

    return _make


@pytest.fixture
def client(db, hasher, notifier, departments):
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_password_hasher] = lambda: hasher
    app.dependency_overrides[get_notification_service] = lambda: notifier
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
