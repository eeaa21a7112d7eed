"""User read models.

Two shapes leave the store: ``UserPublic`` (profile data, never credentials)
and ``UserCredentials`` (only the credential slots). Teacher-only fields exist
only on ``TeacherUser``.
"""

from dataclasses import dataclass
from datetime import date, datetime
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from app.domain.models.user import Role, User


class CamelModel(BaseModel):
    model_config = ConfigDict(
        from_attributes=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )


class DepartmentRead(CamelModel):
    id: str
    name: str
    code: str


class UserBase(CamelModel):
    id: str
    name: str
    email: str
    active: bool
    last_login_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class AdminUser(UserBase):
    role: Literal["admin"]


class TeacherUser(UserBase):
    role: Literal["teacher"]
    department_id: str
    department: Optional[DepartmentRead] = None
    employee_id: str
    phone: Optional[str] = None
    address: Optional[str] = None
    date_of_joining: Optional[date] = None
    qualification: Optional[str] = None
    experience: Optional[int] = Field(default=None, ge=0)
    specialization: Optional[str] = None


UserPublic = Annotated[Union[AdminUser, TeacherUser], Field(discriminator="role")]

# Plain union for dependency signatures
AnyUser = Union[AdminUser, TeacherUser]


def to_public(user: User) -> Union[AdminUser, TeacherUser]:
    if user.role == Role.TEACHER.value:
        return TeacherUser.model_validate(user)
    return AdminUser.model_validate(user)


@dataclass(frozen=True, repr=False)
class UserCredentials:
    """Credential slots of one account. Never serialised to clients."""

    user_id: str
    role: Role
    active: bool
    password_hash: Optional[str]
    refresh_token_hash: Optional[str]
    password_reset_hash: Optional[str]
    password_reset_expires_at: Optional[datetime]
    otp_hash: Optional[str]
    otp_expires_at: Optional[datetime]
    failed_attempts: int
    locked_until: Optional[datetime]

    def __repr__(self) -> str:
        return f"UserCredentials(user_id={self.user_id!r}, failed_attempts={self.failed_attempts})"
