"""
SQLAlchemy Implementation of User Repository.
"""

import re
from datetime import datetime
from typing import Any, Dict, Optional

import structlog
from sqlalchemy import case, func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.exceptions import ConflictException, EntityNotFoundException
from app.domain.models.user import Role, User
from app.domain.repositories.user_repository import UserRepository
from app.domain.schemas.user import UserCredentials, UserPublic, to_public

logger = structlog.get_logger(__name__)

CREDENTIAL_FIELDS = frozenset({
    "password_hash",
    "refresh_token_hash",
    "password_reset_hash",
    "password_reset_expires_at",
    "otp_hash",
    "otp_expires_at",
    "failed_attempts",
    "locked_until",
})


def _credentials(user: User) -> UserCredentials:
    return UserCredentials(
        user_id=user.id,
        role=Role(user.role),
        active=bool(user.active),
        password_hash=user.password_hash,
        refresh_token_hash=user.refresh_token_hash,
        password_reset_hash=user.password_reset_hash,
        password_reset_expires_at=user.password_reset_expires_at,
        otp_hash=user.otp_hash,
        otp_expires_at=user.otp_expires_at,
        failed_attempts=user.failed_attempts or 0,
        locked_until=user.locked_until,
    )


class SQLAlchemyUserRepository(UserRepository):
    """User repository implementation using SQLAlchemy."""

    def __init__(self, db: Session):
        self.db = db

    def _get(self, user_id: str) -> Optional[User]:
        return self.db.query(User).filter(User.id == user_id).first()

    def _conflict(self, data: Dict[str, Any], exclude_id: Optional[str] = None) -> ConflictException:
        email = data.get("email")
        if email and self.email_exists(email, exclude_id=exclude_id):
            return ConflictException("User already exists", details={"field": "email"})
        return ConflictException("Employee ID already exists", details={"field": "employee_id"})

    # -- profile reads --

    def find_by_id(self, user_id: str) -> Optional[UserPublic]:
        user = self._get(user_id)
        return to_public(user) if user else None

    def find_by_email(self, email: str) -> Optional[UserPublic]:
        user = self.db.query(User).filter(User.email == email).first()
        return to_public(user) if user else None

    def find_by_employee_id(self, employee_id: str) -> Optional[UserPublic]:
        user = self.db.query(User).filter(User.employee_id == employee_id).first()
        return to_public(user) if user else None

    def email_exists(self, email: str, exclude_id: Optional[str] = None) -> bool:
        query = self.db.query(User.id).filter(User.email == email)
        if exclude_id:
            query = query.filter(User.id != exclude_id)
        return query.first() is not None

    def employee_id_exists(self, employee_id: str) -> bool:
        return self.db.query(User.id).filter(User.employee_id == employee_id).first() is not None

    def max_employee_suffix(self, code: str) -> int:
        pattern = re.compile(rf"^{re.escape(code)}-(\d+)$")
        rows = (
            self.db.query(User.employee_id)
            .filter(
                User.role == Role.TEACHER.value,
                User.employee_id.like(f"{code}-%"),
            )
            .all()
        )
        highest = 0
        for (employee_id,) in rows:
            match = pattern.match(employee_id or "")
            if match:
                highest = max(highest, int(match.group(1)))
        return highest

    # -- credential reads --

    def get_credentials(self, user_id: str) -> Optional[UserCredentials]:
        user = self._get(user_id)
        return _credentials(user) if user else None

    def find_credentials_by_reset_hash(self, reset_hash: str) -> Optional[UserCredentials]:
        user = self.db.query(User).filter(User.password_reset_hash == reset_hash).first()
        return _credentials(user) if user else None

    # -- writes --

    def create(self, data: Dict[str, Any]) -> UserPublic:
        user = User(**data)
        self.db.add(user)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise self._conflict(data)
        self.db.refresh(user)
        logger.info("User created", user_id=user.id, role=user.role)
        return to_public(user)

    def update(self, user_id: str, changes: Dict[str, Any]) -> UserPublic:
        leaked = CREDENTIAL_FIELDS.intersection(changes)
        if leaked:
            raise ValueError(f"Credential fields must go through update_credentials: {sorted(leaked)}")

        user = self._get(user_id)
        if not user:
            raise EntityNotFoundException("User not found")
        for field, value in changes.items():
            setattr(user, field, value)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise self._conflict(changes, exclude_id=user_id)
        self.db.refresh(user)
        return to_public(user)

    def update_credentials(self, user_id: str, **fields: Any) -> None:
        unknown = set(fields) - CREDENTIAL_FIELDS
        if unknown:
            raise ValueError(f"Not credential fields: {sorted(unknown)}")
        if not fields:
            return
        values = {getattr(User, name): value for name, value in fields.items()}
        self.db.query(User).filter(User.id == user_id).update(values, synchronize_session=False)
        self.db.commit()

    def rotate_refresh_token(self, user_id: str, old_hash: str, new_hash: str) -> bool:
        updated = (
            self.db.query(User)
            .filter(User.id == user_id, User.refresh_token_hash == old_hash)
            .update({User.refresh_token_hash: new_hash}, synchronize_session=False)
        )
        self.db.commit()
        return updated == 1

    def increment_failed_attempts(self, user_id: str, threshold: int) -> int:
        self.db.query(User).filter(User.id == user_id).update(
            {
                User.failed_attempts: case(
                    (User.failed_attempts < threshold, User.failed_attempts + 1),
                    else_=threshold,
                )
            },
            synchronize_session=False,
        )
        self.db.commit()
        count = self.db.query(User.failed_attempts).filter(User.id == user_id).scalar()
        return count or 0

    def lock_if_threshold(self, user_id: str, threshold: int, now: datetime, until: datetime) -> bool:
        updated = (
            self.db.query(User)
            .filter(
                User.id == user_id,
                User.failed_attempts >= threshold,
                or_(User.locked_until.is_(None), User.locked_until <= now),
            )
            .update({User.locked_until: until}, synchronize_session=False)
        )
        self.db.commit()
        return updated == 1

    def record_login(self, user_id: str, refresh_token_hash: str, now: datetime) -> None:
        self.db.query(User).filter(User.id == user_id).update(
            {
                User.failed_attempts: 0,
                User.locked_until: None,
                User.last_login_at: now,
                User.refresh_token_hash: refresh_token_hash,
            },
            synchronize_session=False,
        )
        self.db.commit()

    def delete(self, user_id: str) -> bool:
        user = self._get(user_id)
        if not user:
            return False
        self.db.delete(user)
        self.db.commit()
        logger.info("User deleted", user_id=user_id)
        return True

    def count_by_role(self, role: Role) -> int:
        return self.db.query(func.count(User.id)).filter(User.role == role.value).scalar() or 0
