"""FastAPI dependencies: service wiring and JWT auth."""

from functools import lru_cache
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from app.application.services.account_service import AccountService
from app.application.services.employee_id import EmployeeIdAllocator
from app.application.services.notification_service import NotificationService
from app.application.services.password_hasher import PasswordHasher, get_password_hasher
from app.application.services.token_service import RequestContext, TokenSigner
from app.config import get_policy
from app.core.exceptions import ForbiddenException, InvalidTokenException, UnauthorizedException
from app.domain.models.user import Role
from app.domain.schemas.user import AnyUser
from app.infrastructure.database import get_db
from app.infrastructure.email_api import EmailAPIClient
from app.infrastructure.repositories.department_repository import SQLAlchemyDepartmentRepository
from app.infrastructure.repositories.user_repository import SQLAlchemyUserRepository

ACCESS_COOKIE = "jwt"

security = HTTPBearer(auto_error=False)


@lru_cache
def get_token_signer() -> TokenSigner:
    return TokenSigner(get_policy())


def get_notification_service() -> NotificationService:
    return NotificationService(EmailAPIClient())


def get_account_service(
    db: Session = Depends(get_db),
    hasher: PasswordHasher = Depends(get_password_hasher),
    notifier: NotificationService = Depends(get_notification_service),
) -> AccountService:
    users = SQLAlchemyUserRepository(db)
    departments = SQLAlchemyDepartmentRepository(db)
    return AccountService(
        users=users,
        departments=departments,
        allocator=EmployeeIdAllocator(users, departments),
        hasher=hasher,
        tokens=get_token_signer(),
        notifier=notifier,
        policy=get_policy(),
    )


def request_context(request: Request) -> RequestContext:
    return RequestContext(
        user_agent=request.headers.get("user-agent", ""),
        ip=request.client.host if request.client else "",
    )


def _authenticate(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials],
    db: Session,
) -> AnyUser:
    token = credentials.credentials if credentials else request.cookies.get(ACCESS_COOKIE)
    if not token:
        raise UnauthorizedException("Not authorized, no token")

    try:
        claims = get_token_signer().verify_access(token)
    except InvalidTokenException as e:
        raise UnauthorizedException("Not authorized, token expired" if e.expired else "Not authorized, token failed")

    if claims.fingerprint != request_context(request).fingerprint():
        raise UnauthorizedException("Not authorized, token fingerprint mismatch")

    user = SQLAlchemyUserRepository(db).find_by_id(claims.user_id)
    if not user or not user.active:
        raise UnauthorizedException("Not authorized, user not found or inactive")
    return user


def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db),
) -> AnyUser:
    """Extract and validate the current user from the bearer header or jwt cookie."""
    return _authenticate(request, credentials, db)


def get_optional_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db),
) -> Optional[AnyUser]:
    try:
        return _authenticate(request, credentials, db)
    except UnauthorizedException:
        return None


def require_admin(user: AnyUser = Depends(get_current_user)) -> AnyUser:
    """Require admin role."""
    if user.role != Role.ADMIN.value:
        raise ForbiddenException("Not authorized as an admin")
    return user
