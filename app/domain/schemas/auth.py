"""Pydantic schemas for auth and account requests/responses.

Request fields are optional so that missing values reach the service and come
back as a 400 with a specific message instead of a generic schema error.
"""

from datetime import date
from typing import Any, Optional

from pydantic import Field, model_validator

from app.domain.schemas.user import AdminUser, CamelModel, DepartmentRead, TeacherUser, UserPublic


class RegisterRequest(CamelModel):
    name: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None
    role: Optional[str] = None
    department: Optional[str] = None


class LoginRequest(CamelModel):
    # Either an email address or an employee ID
    email: Optional[str] = None
    password: Optional[str] = None


class AuthResponse(CamelModel):
    id: str
    name: str
    email: str
    role: str
    token: str


class ChangePasswordRequest(CamelModel):
    current_password: Optional[str] = None
    new_password: Optional[str] = None
    confirm_password: Optional[str] = None


class OtpRequest(CamelModel):
    otp: Optional[str] = None


class OtpChangePasswordRequest(CamelModel):
    otp: Optional[str] = None
    new_password: Optional[str] = None
    confirm_password: Optional[str] = None


class EmailRequest(CamelModel):
    """Forgot-password request. Any malformed body reads as "no email"."""

    email: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def drop_malformed(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return {}
        email = data.get("email")
        return {"email": email if isinstance(email, str) else None}


class VerifyForgotOtpRequest(CamelModel):
    email: Optional[str] = None
    otp: Optional[str] = None


class ResetWithOtpRequest(CamelModel):
    email: Optional[str] = None
    otp: Optional[str] = None
    new_password: Optional[str] = None
    confirm_password: Optional[str] = None


class ResetPasswordRequest(CamelModel):
    password: Optional[str] = None


class ProfileUpdate(CamelModel):
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    qualification: Optional[str] = None
    experience: Optional[int] = Field(default=None, ge=0)
    specialization: Optional[str] = None


class TeacherCreate(CamelModel):
    name: Optional[str] = None
    email: Optional[str] = None
    department: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    date_of_joining: Optional[date] = None
    qualification: Optional[str] = None
    experience: Optional[int] = Field(default=None, ge=0)
    specialization: Optional[str] = None
    active: bool = True


class TeacherUpdate(ProfileUpdate):
    department: Optional[str] = None
    date_of_joining: Optional[date] = None
    active: Optional[bool] = None


class AdminCreate(CamelModel):
    name: Optional[str] = None
    email: Optional[str] = None


class AdminUpdate(CamelModel):
    name: Optional[str] = None
    email: Optional[str] = None
    active: Optional[bool] = None


class AdminPasswordReset(CamelModel):
    new_password: Optional[str] = None


class MessageResponse(CamelModel):
    message: str
    success: bool = True


class DeliveryResponse(MessageResponse):
    email_sent: bool
    email_message: Optional[str] = None


class ProfileResponse(CamelModel):
    message: str
    user: UserPublic


class TeacherCreatedResponse(DeliveryResponse):
    user: TeacherUser
    password_generated: bool = True


class AdminCreatedResponse(DeliveryResponse):
    user: AdminUser
    password_generated: bool = True


class TemporaryPasswordResponse(MessageResponse):
    temporary_password: str
    instructions: str = (
        "Please provide this password to the teacher securely and advise them "
        "to change it immediately after logging in."
    )


class EmployeeIdPreview(CamelModel):
    employee_id: str
    department: DepartmentRead


class TokenRefreshResponse(MessageResponse):
    token: str
