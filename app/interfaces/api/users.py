"""User API routes: auth, sessions, password flows and account administration."""

from typing import Optional

from fastapi import APIRouter, Cookie, Depends, Response, status

from app.application.services.account_service import AccountService, AuthSession, CreatedAccount
from app.application.services.token_service import RequestContext
from app.config import PolicyConfig, get_policy
from app.domain.schemas.auth import (
    AdminCreate,
    AdminCreatedResponse,
    AdminPasswordReset,
    AdminUpdate,
    AuthResponse,
    ChangePasswordRequest,
    DeliveryResponse,
    EmailRequest,
    EmployeeIdPreview,
    LoginRequest,
    MessageResponse,
    OtpChangePasswordRequest,
    OtpRequest,
    ProfileResponse,
    ProfileUpdate,
    RegisterRequest,
    ResetPasswordRequest,
    ResetWithOtpRequest,
    TeacherCreate,
    TeacherCreatedResponse,
    TeacherUpdate,
    TemporaryPasswordResponse,
    TokenRefreshResponse,
    VerifyForgotOtpRequest,
)
from app.domain.schemas.user import AdminUser, AnyUser, DepartmentRead, TeacherUser
from app.interfaces.api.deps import (
    ACCESS_COOKIE,
    get_account_service,
    get_current_user,
    get_optional_user,
    request_context,
    require_admin,
)

router = APIRouter(prefix="/api/users", tags=["Users"])

REFRESH_COOKIE = "refreshToken"
REFRESH_COOKIE_PATH = "/api/users/refresh-token"

FORGOT_OTP_MESSAGE = "If an account with that email exists, an OTP has been sent."
FORGOT_LINK_MESSAGE = "If an account with that email exists, a password reset link has been sent."


def _set_access_cookie(response: Response, token: str, policy: PolicyConfig) -> None:
    response.set_cookie(
        ACCESS_COOKIE,
        token,
        max_age=int(policy.access_token_ttl.total_seconds()),
        path="/",
        httponly=True,
        secure=policy.cookie_secure,
        samesite=policy.cookie_samesite,
    )


def _set_session_cookies(response: Response, session: AuthSession, policy: PolicyConfig) -> None:
    _set_access_cookie(response, session.access_token, policy)
    if session.refresh_token:
        response.set_cookie(
            REFRESH_COOKIE,
            session.refresh_token,
            max_age=int(policy.refresh_token_ttl.total_seconds()),
            path=REFRESH_COOKIE_PATH,
            httponly=True,
            secure=policy.cookie_secure,
            samesite=policy.cookie_samesite,
        )


def _auth_response(session: AuthSession) -> AuthResponse:
    user = session.user
    return AuthResponse(id=user.id, name=user.name, email=user.email, role=user.role, token=session.access_token)


def _delivery_fields(created: CreatedAccount, kind: str) -> dict:
    if created.delivery.success:
        message = f"{kind} created successfully and welcome email sent!"
    else:
        message = f"{kind} created successfully but the welcome email could not be sent."
    return {
        "message": message,
        "email_sent": created.delivery.success,
        "email_message": created.delivery.message,
    }


# ----------------------------------------------------------------------
# Registration and sessions
# ----------------------------------------------------------------------


@router.post("", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
def register(
    body: RegisterRequest,
    response: Response,
    context: RequestContext = Depends(request_context),
    actor: Optional[AnyUser] = Depends(get_optional_user),
    service: AccountService = Depends(get_account_service),
    policy: PolicyConfig = Depends(get_policy),
):
    session = service.register(
        body.name,
        body.email,
        body.password,
        context,
        role=body.role,
        department_id=body.department,
        actor=actor,
    )
    _set_access_cookie(response, session.access_token, policy)
    return _auth_response(session)


@router.post("/login", response_model=AuthResponse)
def login(
    body: LoginRequest,
    response: Response,
    context: RequestContext = Depends(request_context),
    service: AccountService = Depends(get_account_service),
    policy: PolicyConfig = Depends(get_policy),
):
    session = service.login(body.email, body.password, context)
    _set_session_cookies(response, session, policy)
    return _auth_response(session)


@router.post("/refresh-token", response_model=TokenRefreshResponse)
def refresh_token(
    response: Response,
    refresh: Optional[str] = Cookie(default=None, alias=REFRESH_COOKIE),
    context: RequestContext = Depends(request_context),
    service: AccountService = Depends(get_account_service),
    policy: PolicyConfig = Depends(get_policy),
):
    session = service.refresh(refresh, context)
    _set_session_cookies(response, session, policy)
    return TokenRefreshResponse(message="Token refreshed successfully", token=session.access_token)


@router.post("/logout", response_model=MessageResponse)
def logout(
    response: Response,
    user: Optional[AnyUser] = Depends(get_optional_user),
    service: AccountService = Depends(get_account_service),
    policy: PolicyConfig = Depends(get_policy),
):
    service.logout(user.id if user else None)
    response.delete_cookie(
        ACCESS_COOKIE, path="/", httponly=True, secure=policy.cookie_secure, samesite=policy.cookie_samesite
    )
    response.delete_cookie(
        REFRESH_COOKIE,
        path=REFRESH_COOKIE_PATH,
        httponly=True,
        secure=policy.cookie_secure,
        samesite=policy.cookie_samesite,
    )
    return MessageResponse(message="Logged out successfully")


# ----------------------------------------------------------------------
# Profile
# ----------------------------------------------------------------------


@router.get("/profile", response_model=AnyUser)
def get_profile(
    user: AnyUser = Depends(get_current_user),
    service: AccountService = Depends(get_account_service),
):
    return service.get_profile(user.id)


@router.put("/profile", response_model=ProfileResponse)
def update_profile(
    body: ProfileUpdate,
    user: AnyUser = Depends(get_current_user),
    service: AccountService = Depends(get_account_service),
):
    updated = service.update_profile(user.id, body.model_dump(exclude_unset=True))
    return ProfileResponse(message="Profile updated successfully", user=updated)


# ----------------------------------------------------------------------
# Password change (authenticated)
# ----------------------------------------------------------------------


@router.put("/change-password", response_model=MessageResponse)
def change_password(
    body: ChangePasswordRequest,
    user: AnyUser = Depends(get_current_user),
    service: AccountService = Depends(get_account_service),
):
    service.change_password(user.id, body.current_password, body.new_password, body.confirm_password)
    return MessageResponse(message="Password changed successfully")


@router.post("/request-password-change-otp", response_model=DeliveryResponse)
async def request_password_change_otp(
    user: AnyUser = Depends(get_current_user),
    service: AccountService = Depends(get_account_service),
):
    delivery = await service.request_password_change_otp(user.id)
    return DeliveryResponse(
        message="OTP sent to your email address" if delivery.success else "OTP generated but the email could not be sent",
        success=delivery.success,
        email_sent=delivery.success,
        email_message=delivery.message,
    )


@router.post("/verify-password-change-otp", response_model=MessageResponse)
def verify_password_change_otp(
    body: OtpRequest,
    user: AnyUser = Depends(get_current_user),
    service: AccountService = Depends(get_account_service),
):
    service.verify_password_change_otp(user.id, body.otp)
    return MessageResponse(message="OTP verified successfully")


@router.put("/verify-otp-change-password", response_model=MessageResponse)
def verify_otp_change_password(
    body: OtpChangePasswordRequest,
    user: AnyUser = Depends(get_current_user),
    service: AccountService = Depends(get_account_service),
):
    service.change_password_with_otp(user.id, body.otp, body.new_password, body.confirm_password)
    return MessageResponse(message="Password changed successfully with OTP verification")


# ----------------------------------------------------------------------
# Forgotten password
# ----------------------------------------------------------------------


@router.post("/forgot-password-otp", response_model=MessageResponse)
async def forgot_password_otp(
    body: Optional[EmailRequest] = None,
    service: AccountService = Depends(get_account_service),
):
    await service.request_password_reset_otp(body.email if body else None)
    return MessageResponse(message=FORGOT_OTP_MESSAGE)


@router.post("/verify-forgot-password-otp", response_model=MessageResponse)
def verify_forgot_password_otp(
    body: VerifyForgotOtpRequest,
    service: AccountService = Depends(get_account_service),
):
    service.verify_password_reset_otp(body.email, body.otp)
    return MessageResponse(message="OTP verified successfully")


@router.put("/reset-password-with-otp", response_model=MessageResponse)
def reset_password_with_otp(
    body: ResetWithOtpRequest,
    service: AccountService = Depends(get_account_service),
):
    service.reset_password_with_otp(body.email, body.otp, body.new_password, body.confirm_password)
    return MessageResponse(message="Password reset successfully")


@router.post("/forgot-password", response_model=MessageResponse)
async def forgot_password(
    body: Optional[EmailRequest] = None,
    service: AccountService = Depends(get_account_service),
):
    await service.request_password_reset_link(body.email if body else None)
    return MessageResponse(message=FORGOT_LINK_MESSAGE)


@router.post("/reset-password/{token}", response_model=MessageResponse)
def reset_password(
    token: str,
    body: ResetPasswordRequest,
    service: AccountService = Depends(get_account_service),
):
    service.reset_password_with_token(token, body.password)
    return MessageResponse(message="Password has been reset successfully")


# ----------------------------------------------------------------------
# Teacher administration
# ----------------------------------------------------------------------


@router.get("/preview-employee-id/{department_id}", response_model=EmployeeIdPreview)
def preview_employee_id(
    department_id: str,
    admin: AnyUser = Depends(require_admin),
    service: AccountService = Depends(get_account_service),
):
    employee_id, department = service.preview_employee_id(department_id)
    return EmployeeIdPreview(employee_id=employee_id, department=DepartmentRead.model_validate(department))


@router.post("/teachers", response_model=TeacherCreatedResponse, status_code=status.HTTP_201_CREATED)
async def create_teacher(
    body: TeacherCreate,
    admin: AnyUser = Depends(require_admin),
    service: AccountService = Depends(get_account_service),
):
    created = await service.create_teacher(body.model_dump())
    return TeacherCreatedResponse(user=created.user, **_delivery_fields(created, "Teacher"))


@router.get("/teachers/{teacher_id}", response_model=TeacherUser)
def get_teacher(
    teacher_id: str,
    admin: AnyUser = Depends(require_admin),
    service: AccountService = Depends(get_account_service),
):
    return service.get_teacher(teacher_id)


@router.put("/teachers/{teacher_id}", response_model=ProfileResponse)
def update_teacher(
    teacher_id: str,
    body: TeacherUpdate,
    admin: AnyUser = Depends(require_admin),
    service: AccountService = Depends(get_account_service),
):
    updated = service.update_teacher(teacher_id, body.model_dump(exclude_unset=True))
    return ProfileResponse(message="Teacher updated successfully", user=updated)


@router.delete("/teachers/{teacher_id}", response_model=MessageResponse)
def delete_teacher(
    teacher_id: str,
    admin: AnyUser = Depends(require_admin),
    service: AccountService = Depends(get_account_service),
):
    service.delete_teacher(teacher_id)
    return MessageResponse(message="Teacher deleted successfully")


@router.put("/teachers/{teacher_id}/reset-password", response_model=TemporaryPasswordResponse)
def reset_teacher_password(
    teacher_id: str,
    admin: AnyUser = Depends(require_admin),
    service: AccountService = Depends(get_account_service),
):
    password = service.reset_teacher_password(teacher_id)
    return TemporaryPasswordResponse(message="Password reset successfully", temporary_password=password)


# ----------------------------------------------------------------------
# Admin administration
# ----------------------------------------------------------------------


@router.post("/admins", response_model=AdminCreatedResponse, status_code=status.HTTP_201_CREATED)
async def create_admin(
    body: AdminCreate,
    admin: AnyUser = Depends(require_admin),
    service: AccountService = Depends(get_account_service),
):
    created = await service.create_admin(body.name, body.email)
    return AdminCreatedResponse(user=created.user, **_delivery_fields(created, "Admin"))


@router.get("/admins/{admin_id}", response_model=AdminUser)
def get_admin(
    admin_id: str,
    admin: AnyUser = Depends(require_admin),
    service: AccountService = Depends(get_account_service),
):
    return service.get_admin(admin_id)


@router.put("/admins/{admin_id}", response_model=ProfileResponse)
def update_admin(
    admin_id: str,
    body: AdminUpdate,
    admin: AnyUser = Depends(require_admin),
    service: AccountService = Depends(get_account_service),
):
    updated = service.update_admin(admin_id, body.model_dump(exclude_unset=True))
    return ProfileResponse(message="Admin updated successfully", user=updated)


@router.delete("/admins/{admin_id}", response_model=MessageResponse)
def delete_admin(
    admin_id: str,
    admin: AnyUser = Depends(require_admin),
    service: AccountService = Depends(get_account_service),
):
    service.delete_admin(admin_id, admin.id)
    return MessageResponse(message="Admin deleted successfully")


@router.put("/admins/{admin_id}/reset-password", response_model=MessageResponse)
def reset_admin_password(
    admin_id: str,
    body: AdminPasswordReset,
    admin: AnyUser = Depends(require_admin),
    service: AccountService = Depends(get_account_service),
):
    service.reset_admin_password(admin_id, body.new_password)
    return MessageResponse(message="Admin password reset successfully")
