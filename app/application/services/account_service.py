"""Account service: registration, login, sessions, password flows and
account administration.

The service hashes passwords itself before they reach the store and reads
credentials only through ``UserCredentials``. Every security event is logged
by user id; secrets never reach the log.
"""

import hmac
import math
import secrets
import string
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple

import structlog

from app.application.services.employee_id import EMPLOYEE_ID_PATTERN, EmployeeIdAllocator
from app.application.services.notification_service import DeliveryResult, NotificationService
from app.application.services.otp_service import (
    OTP_LENGTH,
    generate_otp,
    generate_reset_token,
    reset_token_valid,
    verify_otp,
)
from app.application.services.password_hasher import (
    PasswordHasher,
    is_valid_email,
    validate_password_complexity,
    validate_password_length,
)
from app.application.services.token_service import RequestContext, TokenSigner, hash_token
from app.config import PolicyConfig
from app.core.clock import Clock, ensure_utc, utcnow
from app.core.exceptions import (
    AccountInactiveException,
    AccountLockedException,
    ConflictException,
    CredentialUnavailableException,
    EntityNotFoundException,
    ForbiddenException,
    InvalidCredentialsException,
    InvalidOtpException,
    InvalidRefreshTokenException,
    InvalidTokenException,
    ValidationException,
)
from app.domain.models.department import Department
from app.domain.models.user import Role
from app.domain.repositories.department_repository import DepartmentRepository
from app.domain.repositories.user_repository import UserRepository
from app.domain.schemas.user import AdminUser, TeacherUser, UserCredentials, UserPublic

logger = structlog.get_logger(__name__)

EMPLOYEE_ID_ATTEMPTS = 3
TEMPORARY_PASSWORD_LENGTH = 12
PASSWORD_SYMBOLS = "@$!%*?&"

MISSING_FIELDS = "Please provide all required fields"
PASSWORDS_DIFFER = "New password and confirm password do not match"
FORGOT_OTP_FAILED = "Invalid email or OTP"

TEACHER_PROFILE_FIELDS = ("phone", "address", "qualification", "experience", "specialization")


@dataclass(frozen=True)
class AuthSession:
    user: UserPublic
    access_token: str
    refresh_token: Optional[str] = None


@dataclass(frozen=True)
class CreatedAccount:
    user: UserPublic
    delivery: DeliveryResult


def capitalised_first_name(name: str) -> str:
    first = name.strip().split()[0]
    return first[0].upper() + first[1:].lower()


def four_digit_number() -> int:
    return 1000 + secrets.randbelow(9000)


def generate_temporary_password(length: int = TEMPORARY_PASSWORD_LENGTH) -> str:
    """Random password with at least one upper, lower, digit and symbol."""
    pools = (string.ascii_uppercase, string.ascii_lowercase, string.digits, PASSWORD_SYMBOLS)
    chars = [secrets.choice(pool) for pool in pools]
    alphabet = "".join(pools)
    chars.extend(secrets.choice(alphabet) for _ in range(length - len(chars)))
    secrets.SystemRandom().shuffle(chars)
    return "".join(chars)


def _require(*values: Optional[str]) -> None:
    if any(not v for v in values):
        raise ValidationException(MISSING_FIELDS)


def _clean_name(name: str) -> str:
    name = name.strip()
    if not 2 <= len(name) <= 50:
        raise ValidationException("Name must be between 2 and 50 characters")
    return name


def _clean_email(email: str) -> str:
    email = email.strip().lower()
    if not is_valid_email(email):
        raise ValidationException("Please enter a valid email")
    return email


class AccountService:
    def __init__(
        self,
        users: UserRepository,
        departments: DepartmentRepository,
        allocator: EmployeeIdAllocator,
        hasher: PasswordHasher,
        tokens: TokenSigner,
        notifier: NotificationService,
        policy: PolicyConfig,
        clock: Clock = utcnow,
    ):
        self.users = users
        self.departments = departments
        self.allocator = allocator
        self.hasher = hasher
        self.tokens = tokens
        self.notifier = notifier
        self.policy = policy
        self.clock = clock

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    def _credentials(self, user_id: str) -> UserCredentials:
        creds = self.users.get_credentials(user_id)
        if not creds:
            raise EntityNotFoundException("User not found")
        return creds

    def _department(self, department_id: str) -> Department:
        department = self.departments.get_by_id(department_id)
        if not department:
            raise EntityNotFoundException("Department not found")
        return department

    def _ensure_email_free(self, email: str, exclude_id: Optional[str] = None) -> None:
        if self.users.email_exists(email, exclude_id=exclude_id):
            raise ConflictException("User already exists", details={"field": "email"})

    def _with_employee_id(self, department_id: str, write: Callable[[str], Any]) -> Any:
        """Allocate an ID and write it; reallocate if the unique index rejects it."""
        for attempt in range(1, EMPLOYEE_ID_ATTEMPTS + 1):
            employee_id = self.allocator.allocate(department_id)
            try:
                return write(employee_id)
            except ConflictException as e:
                if e.details.get("field") != "employee_id" or attempt == EMPLOYEE_ID_ATTEMPTS:
                    raise
                logger.warning("Employee ID taken, reallocating", employee_id=employee_id, attempt=attempt)

    def _apply_changes(self, user: UserPublic, changes: Dict[str, Any], allowed: Tuple[str, ...]) -> Dict[str, Any]:
        update: Dict[str, Any] = {}
        if changes.get("name") is not None:
            update["name"] = _clean_name(changes["name"])
        if changes.get("email") is not None:
            email = _clean_email(changes["email"])
            if email != user.email:
                self._ensure_email_free(email, exclude_id=user.id)
                update["email"] = email
        for field in allowed:
            if field in changes:
                update[field] = changes[field]
        return update

    # ------------------------------------------------------------------
    # registration and account creation
    # ------------------------------------------------------------------

    def register(
        self,
        name: Optional[str],
        email: Optional[str],
        password: Optional[str],
        context: RequestContext,
        role: Optional[str] = None,
        department_id: Optional[str] = None,
        actor: Optional[UserPublic] = None,
    ) -> AuthSession:
        _require(name, email, password)
        name = _clean_name(name)
        email = _clean_email(email)
        validate_password_length(password)

        try:
            role = Role(role or Role.TEACHER.value)
        except ValueError:
            raise ValidationException("Role must be admin or teacher")

        self._ensure_email_free(email)

        if role is Role.ADMIN:
            admins_exist = self.users.count_by_role(Role.ADMIN) > 0
            if admins_exist and (actor is None or actor.role != Role.ADMIN.value):
                raise ForbiddenException("Only admins can create admin accounts")
            data = {"name": name, "email": email, "role": role.value, "password_hash": self.hasher.hash(password)}
            user = self.users.create(data)
        else:
            if not department_id:
                raise ValidationException("Department is required for teachers")
            self._department(department_id)
            password_hash = self.hasher.hash(password)
            user = self._with_employee_id(
                department_id,
                lambda employee_id: self.users.create({
                    "name": name,
                    "email": email,
                    "role": role.value,
                    "password_hash": password_hash,
                    "department_id": department_id,
                    "employee_id": employee_id,
                }),
            )

        logger.info("User registered", user_id=user.id, role=user.role)
        token = self.tokens.issue_access(user.id, context, self.clock())
        return AuthSession(user=user, access_token=token)

    async def create_teacher(self, profile: Dict[str, Any]) -> CreatedAccount:
        name, email, department_id = profile.get("name"), profile.get("email"), profile.get("department")
        if not name or not email or not department_id:
            raise ValidationException("Name, email and department are required")
        name = _clean_name(name)
        email = _clean_email(email)
        self._ensure_email_free(email)
        department = self._department(department_id)
        first = capitalised_first_name(name)

        def write(employee_id: str) -> Tuple[TeacherUser, str]:
            password = f"{employee_id}@{first}{four_digit_number()}"
            user = self.users.create({
                "name": name,
                "email": email,
                "role": Role.TEACHER.value,
                "password_hash": self.hasher.hash(password),
                "department_id": department_id,
                "employee_id": employee_id,
                "phone": profile.get("phone"),
                "address": profile.get("address"),
                "date_of_joining": profile.get("date_of_joining"),
                "qualification": profile.get("qualification"),
                "experience": profile.get("experience"),
                "specialization": profile.get("specialization"),
                "active": profile.get("active", True),
            })
            return user, password

        user, password = self._with_employee_id(department_id, write)
        logger.info("Teacher created", user_id=user.id, employee_id=user.employee_id)

        delivery = await self.notifier.send_teacher_welcome(
            name=user.name,
            email=user.email,
            employee_id=user.employee_id,
            password=password,
            department=department.name,
        )
        return CreatedAccount(user=user, delivery=delivery)

    async def create_admin(self, name: Optional[str], email: Optional[str]) -> CreatedAccount:
        if not name or not email:
            raise ValidationException("Name and email are required")
        name = _clean_name(name)
        email = _clean_email(email)
        self._ensure_email_free(email)

        password = f"Admin@{capitalised_first_name(name)}{four_digit_number()}"
        user = self.users.create({
            "name": name,
            "email": email,
            "role": Role.ADMIN.value,
            "password_hash": self.hasher.hash(password),
        })
        logger.info("Admin created", user_id=user.id)

        delivery = await self.notifier.send_admin_welcome(name=user.name, email=user.email, password=password)
        return CreatedAccount(user=user, delivery=delivery)

    def bootstrap_admin(self, email: Optional[str], password: Optional[str]) -> bool:
        """Create the first admin from configuration when none exists."""
        if not email or not password or self.users.count_by_role(Role.ADMIN) > 0:
            return False
        email = _clean_email(email)
        if self.users.email_exists(email):
            return False
        validate_password_length(password)
        user = self.users.create({
            "name": "Administrator",
            "email": email,
            "role": Role.ADMIN.value,
            "password_hash": self.hasher.hash(password),
        })
        logger.info("Default admin created", user_id=user.id)
        return True

    # ------------------------------------------------------------------
    # sessions
    # ------------------------------------------------------------------

    def _resolve_identifier(self, identifier: str) -> Optional[UserPublic]:
        identifier = identifier.strip()
        if "@" in identifier:
            email = identifier.lower()
            if not is_valid_email(email):
                raise ValidationException(
                    "Please enter a valid email or employee ID",
                    details={"reason": "MalformedIdentifier"},
                )
            return self.users.find_by_email(email)

        employee_id = identifier.upper()
        if not EMPLOYEE_ID_PATTERN.match(employee_id):
            raise ValidationException(
                "Please enter a valid email or employee ID",
                details={"reason": "MalformedIdentifier"},
            )
        return self.users.find_by_employee_id(employee_id)

    def login(self, identifier: Optional[str], password: Optional[str], context: RequestContext) -> AuthSession:
        _require(identifier, password)
        user = self._resolve_identifier(identifier)
        if not user:
            self.hasher.dummy_verify()
            raise InvalidCredentialsException()

        creds = self._credentials(user.id)
        now = self.clock()

        locked_until = ensure_utc(creds.locked_until)
        if locked_until and now < locked_until:
            remaining = math.ceil((locked_until - now).total_seconds() / 60)
            raise AccountLockedException(remaining)

        if not creds.active:
            raise AccountInactiveException()

        if not self.hasher.verify(password, creds.password_hash):
            threshold = self.policy.max_failed_attempts
            count = self.users.increment_failed_attempts(user.id, threshold)
            logger.warning("Failed login", user_id=user.id, failed_attempts=count)
            if count >= threshold:
                until = now + self.policy.lockout_duration
                if self.users.lock_if_threshold(user.id, threshold, now, until):
                    logger.warning("Account locked", user_id=user.id, locked_until=until.isoformat())
            raise InvalidCredentialsException()

        access = self.tokens.issue_access(user.id, context, now)
        refresh = self.tokens.issue_refresh(user.id, context, now)
        self.users.record_login(user.id, hash_token(refresh), now)
        logger.info("User logged in", user_id=user.id)
        return AuthSession(user=self.users.find_by_id(user.id), access_token=access, refresh_token=refresh)

    def refresh(self, refresh_token: Optional[str], context: RequestContext) -> AuthSession:
        if not refresh_token:
            raise InvalidRefreshTokenException("Refresh token not found")
        try:
            claims = self.tokens.verify_refresh(refresh_token)
        except InvalidTokenException as e:
            raise InvalidRefreshTokenException(
                "Refresh token expired" if e.expired else "Invalid refresh token"
            )

        presented_hash = hash_token(refresh_token)
        creds = self.users.get_credentials(claims.user_id)
        if (
            not creds
            or not creds.active
            or not creds.refresh_token_hash
            or not hmac.compare_digest(presented_hash, creds.refresh_token_hash)
        ):
            raise InvalidRefreshTokenException()

        now = self.clock()
        rotated = None
        if self.policy.rotate_refresh_tokens:
            rotated = self.tokens.issue_refresh(claims.user_id, context, now)
            if not self.users.rotate_refresh_token(claims.user_id, presented_hash, hash_token(rotated)):
                logger.warning("Refresh token already rotated", user_id=claims.user_id)
                raise InvalidRefreshTokenException()
        access = self.tokens.issue_access(claims.user_id, context, now)

        user = self.users.find_by_id(claims.user_id)
        return AuthSession(user=user, access_token=access, refresh_token=rotated)

    def logout(self, user_id: Optional[str]) -> None:
        if user_id:
            self.users.update_credentials(user_id, refresh_token_hash=None)
            logger.info("User logged out", user_id=user_id)

    # ------------------------------------------------------------------
    # password change (authenticated)
    # ------------------------------------------------------------------

    def change_password(
        self,
        user_id: str,
        current_password: Optional[str],
        new_password: Optional[str],
        confirm_password: Optional[str],
    ) -> None:
        _require(current_password, new_password, confirm_password)
        if new_password != confirm_password:
            raise ValidationException(PASSWORDS_DIFFER)
        validate_password_length(new_password)

        creds = self._credentials(user_id)
        if not self.hasher.verify(current_password, creds.password_hash):
            raise InvalidCredentialsException("Current password is incorrect")
        if self.hasher.verify(new_password, creds.password_hash):
            raise ValidationException("New password must be different from current password")

        self.users.update_credentials(user_id, password_hash=self.hasher.hash(new_password))
        logger.info("Password changed", user_id=user_id)

    async def request_password_change_otp(self, user_id: str) -> DeliveryResult:
        user = self.get_profile(user_id)
        issued = generate_otp(self.clock(), self.policy.otp_ttl)
        self.users.update_credentials(user_id, otp_hash=issued.digest, otp_expires_at=issued.expires_at)
        logger.info("Password change OTP issued", user_id=user_id)

        return await self.notifier.send_password_change_otp(
            name=user.name,
            email=user.email,
            otp=issued.code,
            expires_at=issued.expires_at,
            minutes=int(self.policy.otp_ttl.total_seconds() // 60),
        )

    def verify_password_change_otp(self, user_id: str, code: Optional[str]) -> None:
        if not code:
            raise ValidationException("OTP is required")
        creds = self._credentials(user_id)
        if not verify_otp(creds, code, self.clock()):
            raise InvalidOtpException()

    def change_password_with_otp(
        self,
        user_id: str,
        code: Optional[str],
        new_password: Optional[str],
        confirm_password: Optional[str],
    ) -> None:
        _require(code, new_password, confirm_password)
        if new_password != confirm_password:
            raise ValidationException(PASSWORDS_DIFFER)
        validate_password_length(new_password)

        creds = self._credentials(user_id)
        if not verify_otp(creds, code, self.clock()):
            raise InvalidOtpException()

        try:
            unchanged = self.hasher.verify(new_password, creds.password_hash)
        except CredentialUnavailableException:
            unchanged = False
        if unchanged:
            raise ValidationException("New password must be different from current password")

        self.users.update_credentials(
            user_id,
            password_hash=self.hasher.hash(new_password),
            otp_hash=None,
            otp_expires_at=None,
        )
        logger.info("Password changed with OTP", user_id=user_id)

    # ------------------------------------------------------------------
    # forgotten password
    # ------------------------------------------------------------------

    def _reset_target(self, email: Optional[str]) -> Optional[UserPublic]:
        if not email:
            return None
        email = email.strip().lower()
        if not is_valid_email(email):
            return None
        user = self.users.find_by_email(email)
        if not user or not user.active:
            return None
        return user

    async def request_password_reset_otp(self, email: Optional[str]) -> None:
        """Neutral: the caller learns nothing about whether the account exists."""
        user = self._reset_target(email)
        if not user:
            logger.info("Password reset OTP requested for unknown account")
            return

        issued = generate_otp(self.clock(), self.policy.otp_ttl)
        self.users.update_credentials(user.id, otp_hash=issued.digest, otp_expires_at=issued.expires_at)
        delivery = await self.notifier.send_password_reset_otp(
            name=user.name,
            email=user.email,
            otp=issued.code,
            expires_at=issued.expires_at,
            minutes=int(self.policy.otp_ttl.total_seconds() // 60),
        )
        logger.info("Password reset OTP issued", user_id=user.id, email_sent=delivery.success)

    def _forgot_otp_credentials(self, email: Optional[str], code: Optional[str]) -> UserCredentials:
        if not code or len(code) != OTP_LENGTH:
            raise InvalidOtpException(FORGOT_OTP_FAILED)
        user = self._reset_target(email)
        if not user:
            raise InvalidOtpException(FORGOT_OTP_FAILED)
        creds = self.users.get_credentials(user.id)
        if not creds or not verify_otp(creds, code, self.clock()):
            raise InvalidOtpException(FORGOT_OTP_FAILED)
        return creds

    def verify_password_reset_otp(self, email: Optional[str], code: Optional[str]) -> None:
        self._forgot_otp_credentials(email, code)

    def reset_password_with_otp(
        self,
        email: Optional[str],
        code: Optional[str],
        new_password: Optional[str],
        confirm_password: Optional[str],
    ) -> None:
        _require(email, code, new_password, confirm_password)
        if new_password != confirm_password:
            raise ValidationException(PASSWORDS_DIFFER)
        validate_password_complexity(new_password)

        creds = self._forgot_otp_credentials(email, code)
        self.users.update_credentials(
            creds.user_id,
            password_hash=self.hasher.hash(new_password),
            otp_hash=None,
            otp_expires_at=None,
            failed_attempts=0,
            locked_until=None,
            refresh_token_hash=None,
        )
        logger.info("Password reset with OTP", user_id=creds.user_id)

    async def request_password_reset_link(self, email: Optional[str]) -> None:
        user = self._reset_target(email)
        if not user:
            logger.info("Password reset link requested for unknown account")
            return

        issued = generate_reset_token(self.clock(), self.policy.reset_link_ttl)
        self.users.update_credentials(
            user.id,
            password_reset_hash=issued.digest,
            password_reset_expires_at=issued.expires_at,
        )
        delivery = await self.notifier.send_password_reset_link(
            name=user.name,
            email=user.email,
            token=issued.code,
            minutes=int(self.policy.reset_link_ttl.total_seconds() // 60),
        )
        logger.info("Password reset link issued", user_id=user.id, email_sent=delivery.success)

    def reset_password_with_token(self, token: Optional[str], password: Optional[str]) -> None:
        _require(token, password)
        validate_password_complexity(password)

        creds = self.users.find_credentials_by_reset_hash(hash_token(token))
        if not creds or not reset_token_valid(creds, self.clock()):
            raise ValidationException("Invalid or expired reset token")

        self.users.update_credentials(
            creds.user_id,
            password_hash=self.hasher.hash(password),
            password_reset_hash=None,
            password_reset_expires_at=None,
            failed_attempts=0,
            locked_until=None,
            refresh_token_hash=None,
        )
        logger.info("Password reset with link", user_id=creds.user_id)

    # ------------------------------------------------------------------
    # profile
    # ------------------------------------------------------------------

    def get_profile(self, user_id: str) -> UserPublic:
        user = self.users.find_by_id(user_id)
        if not user:
            raise EntityNotFoundException("User not found")
        return user

    def update_profile(self, user_id: str, changes: Dict[str, Any]) -> UserPublic:
        user = self.get_profile(user_id)
        allowed = TEACHER_PROFILE_FIELDS if isinstance(user, TeacherUser) else ()
        update = self._apply_changes(user, changes, allowed)
        if not update:
            return user
        return self.users.update(user_id, update)

    # ------------------------------------------------------------------
    # teacher administration
    # ------------------------------------------------------------------

    def preview_employee_id(self, department_id: str) -> Tuple[str, Department]:
        return self.allocator.preview(department_id)

    def get_teacher(self, teacher_id: str) -> TeacherUser:
        user = self.users.find_by_id(teacher_id)
        if not isinstance(user, TeacherUser):
            raise EntityNotFoundException("Teacher not found")
        return user

    def update_teacher(self, teacher_id: str, changes: Dict[str, Any]) -> TeacherUser:
        teacher = self.get_teacher(teacher_id)
        update = self._apply_changes(
            teacher,
            changes,
            TEACHER_PROFILE_FIELDS + ("date_of_joining", "active"),
        )
        if update.get("active") is None:
            update.pop("active", None)

        department_id = changes.get("department")
        if department_id and department_id != teacher.department_id:
            self._department(department_id)
            updated = self._with_employee_id(
                department_id,
                lambda employee_id: self.users.update(
                    teacher_id,
                    {**update, "department_id": department_id, "employee_id": employee_id},
                ),
            )
            logger.info("Teacher moved department", user_id=teacher_id, employee_id=updated.employee_id)
            return updated

        if not update:
            return teacher
        return self.users.update(teacher_id, update)

    def delete_teacher(self, teacher_id: str) -> None:
        self.get_teacher(teacher_id)
        self.users.delete(teacher_id)

    def reset_teacher_password(self, teacher_id: str) -> str:
        self.get_teacher(teacher_id)
        password = generate_temporary_password()
        self.users.update_credentials(
            teacher_id,
            password_hash=self.hasher.hash(password),
            failed_attempts=0,
            locked_until=None,
            refresh_token_hash=None,
        )
        logger.info("Teacher password reset by admin", user_id=teacher_id)
        return password

    # ------------------------------------------------------------------
    # admin administration
    # ------------------------------------------------------------------

    def get_admin(self, admin_id: str) -> AdminUser:
        user = self.users.find_by_id(admin_id)
        if not isinstance(user, AdminUser):
            raise EntityNotFoundException("Admin not found")
        return user

    def update_admin(self, admin_id: str, changes: Dict[str, Any]) -> AdminUser:
        admin = self.get_admin(admin_id)
        update = self._apply_changes(admin, changes, ("active",))
        if update.get("active") is None:
            update.pop("active", None)
        if not update:
            return admin
        return self.users.update(admin_id, update)

    def delete_admin(self, admin_id: str, actor_id: str) -> None:
        if admin_id == actor_id:
            raise ValidationException("You cannot delete your own admin account.")
        self.get_admin(admin_id)
        if self.users.count_by_role(Role.ADMIN) <= 1:
            raise ValidationException("Cannot delete the last admin. At least one admin must exist.")
        self.users.delete(admin_id)

    def reset_admin_password(self, admin_id: str, new_password: Optional[str]) -> None:
        if not new_password:
            raise ValidationException("New password is required")
        validate_password_length(new_password)
        self.get_admin(admin_id)
        self.users.update_credentials(
            admin_id,
            password_hash=self.hasher.hash(new_password),
            failed_attempts=0,
            locked_until=None,
            refresh_token_hash=None,
        )
        logger.info("Admin password reset", user_id=admin_id)
