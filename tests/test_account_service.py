import asyncio
import re
from datetime import timedelta

import pytest

from app.application.services.account_service import generate_temporary_password
from app.application.services.password_hasher import PASSWORD_COMPLEXITY_PATTERN
from app.application.services.token_service import RequestContext
from app.core.clock import ensure_utc
from app.core.exceptions import (
    AccountInactiveException,
    AccountLockedException,
    ConflictException,
    EntityNotFoundException,
    ForbiddenException,
    InvalidCredentialsException,
    InvalidOtpException,
    InvalidRefreshTokenException,
    ValidationException,
)
from app.domain.models.user import Role
from app.domain.schemas.user import TeacherUser


def run(coro):
    return asyncio.run(coro)


# ----------------------------------------------------------------------
# registration and creation
# ----------------------------------------------------------------------


def test_register_teacher_allocates_employee_id(service, context, department_ids):
    session = service.register(
        "  Priya Sharma ", " Priya@X.Test ", "secret123", context, department_id=department_ids["CADD"]
    )

    assert isinstance(session.user, TeacherUser)
    assert session.user.email == "priya@x.test"
    assert session.user.name == "Priya Sharma"
    assert session.user.employee_id == "CADD-001"
    assert session.access_token
    assert session.refresh_token is None


def test_register_teacher_requires_department(service, context):
    with pytest.raises(ValidationException, match="Department is required"):
        service.register("Priya", "p@x.test", "secret123", context, role="teacher")


@pytest.mark.parametrize(
    "name,email,password",
    [
        (None, "p@x.test", "secret123"),
        ("P", "p@x.test", "secret123"),
        ("Priya", "not-an-email", "secret123"),
        ("Priya", "p@x.test", "short"),
    ],
)
def test_register_validation(service, context, department_ids, name, email, password):
    with pytest.raises(ValidationException):
        service.register(name, email, password, context, department_id=department_ids["CADD"])


def test_register_duplicate_email(service, context, make_user):
    make_user("taken@x.test")
    with pytest.raises(ConflictException, match="User already exists"):
        service.register("Someone", "TAKEN@x.test", "secret123", context, role="admin")


def test_first_admin_may_self_register_later_ones_need_an_admin(service, context):
    first = service.register("Root", "root@x.test", "secret123", context, role="admin")
    assert first.user.role == "admin"

    with pytest.raises(ForbiddenException):
        service.register("Intruder", "intruder@x.test", "secret123", context, role="admin")

    second = service.register("Second", "second@x.test", "secret123", context, role="admin", actor=first.user)
    assert second.user.role == "admin"


def test_create_teacher_scenario_livewire(service, notifier, department_ids, context):
    lw = department_ids["LIVEWIRE"]
    run(service.create_teacher({"name": "Ravi", "email": "ravi@x.test", "department": lw}))
    run(service.create_teacher({"name": "Meera", "email": "meera@x.test", "department": lw}))

    created = run(service.create_teacher({"name": "alice SMITH", "email": "a@x.test", "department": lw}))

    assert created.user.employee_id == "LW-003"
    assert created.delivery.success
    welcome = notifier.last("teacher_welcome")
    assert welcome["employee_id"] == "LW-003"
    assert welcome["department"] == "LIVEWIRE"
    assert re.fullmatch(r"LW-003@Alice\d{4}", welcome["password"])

    session = service.login("lw-003", welcome["password"], context)
    assert session.user.id == created.user.id


def test_employee_ids_strictly_increase_per_department(service, department_ids):
    ids = [
        run(service.create_teacher({"name": f"T{i}x", "email": f"t{i}@x.test", "department": department_ids["DREAMZONE"]})).user.employee_id
        for i in range(3)
    ]
    other = run(service.create_teacher({"name": "Sam", "email": "s@x.test", "department": department_ids["SYNERGY"]}))

    assert ids == ["DZ-001", "DZ-002", "DZ-003"]
    assert other.user.employee_id == "SY-001"


def test_create_teacher_retries_when_employee_id_is_taken(service, make_user, department_ids, monkeypatch):
    cadd = department_ids["CADD"]
    make_user("old@x.test", role=Role.TEACHER, department_id=cadd, employee_id="CADD-001")
    handed_out = iter(["CADD-001", "CADD-002"])
    monkeypatch.setattr(service.allocator, "allocate", lambda department_id: next(handed_out))

    created = run(service.create_teacher({"name": "New", "email": "new@x.test", "department": cadd}))

    assert created.user.employee_id == "CADD-002"


def test_create_teacher_checks_email_before_allocating(service, make_user, departments, department_ids):
    make_user("dup@x.test")
    with pytest.raises(ConflictException):
        run(service.create_teacher({"name": "Dup", "email": "dup@x.test", "department": department_ids["CADD"]}))

    assert departments.get_counter("CADD") == 0


def test_create_teacher_unknown_department(service):
    with pytest.raises(EntityNotFoundException, match="Department not found"):
        run(service.create_teacher({"name": "Nina", "email": "n@x.test", "department": "missing"}))


def test_create_teacher_survives_email_failure(service, notifier, department_ids):
    notifier.fail = True

    created = run(service.create_teacher({"name": "Nina", "email": "n@x.test", "department": department_ids["CADD"]}))

    assert created.user.employee_id == "CADD-001"
    assert not created.delivery.success


def test_create_admin_password_format(service, notifier, context):
    created = run(service.create_admin("kiran rao", "kiran@x.test"))

    password = notifier.last("admin_welcome")["password"]
    assert created.user.role == "admin"
    assert re.fullmatch(r"Admin@Kiran\d{4}", password)
    assert service.login("kiran@x.test", password, context).user.id == created.user.id


def test_bootstrap_admin_only_when_no_admin(service, make_user):
    assert service.bootstrap_admin("boss@x.test", "secret123")
    assert not service.bootstrap_admin("other@x.test", "secret123")
    assert not service.bootstrap_admin(None, None)


# ----------------------------------------------------------------------
# login and lockout
# ----------------------------------------------------------------------


def test_login_lockout_and_recovery(service, make_user, users, clock, context):
    user = make_user("u@x.test", "Aa1!aaaa")

    for _ in range(5):
        with pytest.raises(InvalidCredentialsException):
            service.login("u@x.test", "wrong", context)

    creds = users.get_credentials(user.id)
    assert creds.failed_attempts == 5
    assert ensure_utc(creds.locked_until) == clock.now + timedelta(minutes=15)

    with pytest.raises(AccountLockedException) as exc:
        service.login("u@x.test", "Aa1!aaaa", context)
    assert exc.value.remaining_minutes == 15
    assert exc.value.status_code == 423

    clock.advance(minutes=15)
    session = service.login("u@x.test", "Aa1!aaaa", context)

    assert session.access_token
    creds = users.get_credentials(user.id)
    assert creds.failed_attempts == 0
    assert creds.locked_until is None


def test_remaining_minutes_round_up(service, make_user, clock, context):
    make_user("u@x.test")
    for _ in range(5):
        with pytest.raises(InvalidCredentialsException):
            service.login("u@x.test", "wrong", context)

    clock.advance(minutes=10, seconds=30)
    with pytest.raises(AccountLockedException) as exc:
        service.login("u@x.test", "Aa1!aaaa", context)
    assert exc.value.remaining_minutes == 5


def test_wrong_password_after_lock_expiry_relocks(service, make_user, users, clock, context):
    user = make_user("u@x.test")
    for _ in range(5):
        with pytest.raises(InvalidCredentialsException):
            service.login("u@x.test", "wrong", context)

    clock.advance(minutes=16)
    with pytest.raises(InvalidCredentialsException):
        service.login("u@x.test", "wrong", context)

    assert ensure_utc(users.get_credentials(user.id).locked_until) == clock.now + timedelta(minutes=15)


def test_login_unknown_user_and_malformed_identifier(service, context):
    with pytest.raises(InvalidCredentialsException):
        service.login("ghost@x.test", "whatever1", context)
    with pytest.raises(InvalidCredentialsException):
        service.login("CADD-999", "whatever1", context)
    with pytest.raises(ValidationException) as exc:
        service.login("not an id", "whatever1", context)
    assert exc.value.details["reason"] == "MalformedIdentifier"
    with pytest.raises(ValidationException):
        service.login("", "whatever1", context)


def test_login_accepts_long_top_level_domains(service, make_user, context):
    make_user("staff@cadd.academy")

    with pytest.raises(InvalidCredentialsException):
        service.login("staff@cadd.academy", "wrong", context)
    assert service.login("staff@cadd.academy", "Aa1!aaaa", context).user.email == "staff@cadd.academy"


def test_inactive_user_cannot_log_in(service, make_user, context):
    make_user("off@x.test", active=False)
    with pytest.raises(AccountInactiveException):
        service.login("off@x.test", "Aa1!aaaa", context)


def test_login_records_session(service, make_user, users, clock, context):
    user = make_user("u@x.test")

    session = service.login("  U@X.TEST ", "Aa1!aaaa", context)

    assert session.refresh_token
    assert users.get_credentials(user.id).refresh_token_hash
    assert ensure_utc(session.user.last_login_at) == clock.now


# ----------------------------------------------------------------------
# refresh and logout
# ----------------------------------------------------------------------


def test_refresh_rotates_and_logout_revokes(service, make_user, context):
    user = make_user("u@x.test")
    first = service.login("u@x.test", "Aa1!aaaa", context)

    refreshed = service.refresh(first.refresh_token, RequestContext("B", "2.2.2.2"))
    assert refreshed.access_token
    assert refreshed.refresh_token and refreshed.refresh_token != first.refresh_token

    with pytest.raises(InvalidRefreshTokenException):
        service.refresh(first.refresh_token, context)

    service.logout(user.id)
    with pytest.raises(InvalidRefreshTokenException):
        service.refresh(refreshed.refresh_token, context)


def test_concurrent_refresh_with_same_token_yields_one_session(service, make_user, users, context, monkeypatch):
    user = make_user("u@x.test")
    session = service.login("u@x.test", "Aa1!aaaa", context)
    stale = users.get_credentials(user.id)

    service.refresh(session.refresh_token, context)
    # second request read the credentials before the first one rotated them
    monkeypatch.setattr(users, "get_credentials", lambda user_id: stale)

    with pytest.raises(InvalidRefreshTokenException):
        service.refresh(session.refresh_token, context)


def test_rotate_refresh_token_is_compare_and_set(users, make_user):
    user = make_user("u@x.test")
    users.update_credentials(user.id, refresh_token_hash="old")

    assert users.rotate_refresh_token(user.id, "old", "new") is True
    assert users.rotate_refresh_token(user.id, "old", "newer") is False
    assert users.get_credentials(user.id).refresh_token_hash == "new"


def test_new_login_replaces_previous_session(service, make_user, context):
    make_user("u@x.test")
    old = service.login("u@x.test", "Aa1!aaaa", context)
    service.login("u@x.test", "Aa1!aaaa", context)

    with pytest.raises(InvalidRefreshTokenException):
        service.refresh(old.refresh_token, context)


def test_refresh_token_is_bound_to_its_user(service, make_user, context):
    make_user("a@x.test")
    make_user("b@x.test")
    a = service.login("a@x.test", "Aa1!aaaa", context)
    b = service.login("b@x.test", "Aa1!aaaa", context)

    assert service.refresh(a.refresh_token, context).user.email == "a@x.test"
    assert service.refresh(b.refresh_token, context).user.email == "b@x.test"


@pytest.mark.parametrize("token", [None, "", "garbage"])
def test_refresh_rejects_missing_or_malformed(service, context, token):
    with pytest.raises(InvalidRefreshTokenException):
        service.refresh(token, context)


def test_access_token_is_not_a_refresh_token(service, make_user, context):
    make_user("u@x.test")
    session = service.login("u@x.test", "Aa1!aaaa", context)
    with pytest.raises(InvalidRefreshTokenException):
        service.refresh(session.access_token, context)


def test_logout_without_user_is_fine(service):
    service.logout(None)


# ----------------------------------------------------------------------
# password change
# ----------------------------------------------------------------------


def test_change_password_direct(service, make_user, context):
    user = make_user("u@x.test", "Aa1!aaaa")

    with pytest.raises(ValidationException, match="do not match"):
        service.change_password(user.id, "Aa1!aaaa", "NewPass1!", "Other1!!")
    with pytest.raises(InvalidCredentialsException, match="Current password is incorrect"):
        service.change_password(user.id, "wrong-one", "NewPass1!", "NewPass1!")
    with pytest.raises(ValidationException, match="must be different"):
        service.change_password(user.id, "Aa1!aaaa", "Aa1!aaaa", "Aa1!aaaa")
    with pytest.raises(ValidationException):
        service.change_password(user.id, None, "NewPass1!", "NewPass1!")

    service.change_password(user.id, "Aa1!aaaa", "NewPass1!", "NewPass1!")

    assert service.login("u@x.test", "NewPass1!", context)


def test_otp_password_change_scenario(service, make_user, notifier, context):
    user = make_user("u@x.test", "Aa1!aaaa")

    delivery = run(service.request_password_change_otp(user.id))
    code = notifier.last("password_change_otp")["otp"]
    assert delivery.success

    service.verify_password_change_otp(user.id, code)
    service.change_password_with_otp(user.id, code, "NewPass1!", "NewPass1!")

    with pytest.raises(InvalidCredentialsException):
        service.login("u@x.test", "Aa1!aaaa", context)
    assert service.login("u@x.test", "NewPass1!", context)

    with pytest.raises(InvalidCredentialsException):
        service.change_password_with_otp(user.id, code, "Another1!", "Another1!")


def test_otp_expires_after_ten_minutes(service, make_user, notifier, clock):
    user = make_user("u@x.test")
    run(service.request_password_change_otp(user.id))
    code = notifier.last("password_change_otp")["otp"]

    clock.advance(minutes=10)

    with pytest.raises(InvalidOtpException) as exc:
        service.verify_password_change_otp(user.id, code)
    assert exc.value.status_code == 400


def test_new_otp_replaces_the_old_one(service, make_user, notifier):
    user = make_user("u@x.test")
    run(service.request_password_change_otp(user.id))
    first = notifier.last("password_change_otp")["otp"]
    run(service.request_password_change_otp(user.id))
    second = notifier.last("password_change_otp")["otp"]

    if first != second:
        with pytest.raises(InvalidOtpException):
            service.verify_password_change_otp(user.id, first)
    service.verify_password_change_otp(user.id, second)


def test_otp_change_rejects_same_password(service, make_user, notifier):
    user = make_user("u@x.test", "Aa1!aaaa")
    run(service.request_password_change_otp(user.id))
    code = notifier.last("password_change_otp")["otp"]

    with pytest.raises(ValidationException, match="must be different"):
        service.change_password_with_otp(user.id, code, "Aa1!aaaa", "Aa1!aaaa")


def test_otp_change_works_without_stored_digest(service, users, notifier, context):
    user = users.create({"name": "Legacy", "email": "legacy@x.test", "role": "admin", "password_hash": ""})
    run(service.request_password_change_otp(user.id))
    code = notifier.last("password_change_otp")["otp"]

    service.change_password_with_otp(user.id, code, "NewPass1!", "NewPass1!")

    assert service.login("legacy@x.test", "NewPass1!", context)


def test_verify_change_otp_requires_code(service, make_user):
    user = make_user("u@x.test")
    with pytest.raises(ValidationException):
        service.verify_password_change_otp(user.id, "")


# ----------------------------------------------------------------------
# forgotten password
# ----------------------------------------------------------------------


@pytest.mark.parametrize("email", [None, "", "not-an-email", "nobody@x.test", "off@x.test"])
def test_forgot_password_is_silent_for_non_targets(service, make_user, notifier, email):
    make_user("off@x.test", active=False)

    assert run(service.request_password_reset_otp(email)) is None
    assert run(service.request_password_reset_link(email)) is None
    assert notifier.sent == []


def test_reset_with_otp_clears_lockout_and_sessions(service, make_user, users, notifier, context):
    user = make_user("u@x.test", "Aa1!aaaa")
    session = service.login("u@x.test", "Aa1!aaaa", context)
    for _ in range(5):
        with pytest.raises(InvalidCredentialsException):
            service.login("u@x.test", "wrong", context)
    with pytest.raises(AccountLockedException):
        service.login("u@x.test", "Aa1!aaaa", context)

    run(service.request_password_reset_otp("U@x.test"))
    code = notifier.last("password_reset_otp")["otp"]
    service.verify_password_reset_otp("u@x.test", code)
    service.reset_password_with_otp("u@x.test", code, "Bb2@bbbb", "Bb2@bbbb")

    creds = users.get_credentials(user.id)
    assert creds.failed_attempts == 0
    assert creds.locked_until is None
    assert creds.otp_hash is None
    with pytest.raises(InvalidRefreshTokenException):
        service.refresh(session.refresh_token, context)
    assert service.login("u@x.test", "Bb2@bbbb", context)


def test_reset_with_otp_enforces_complexity(service, make_user, notifier):
    make_user("u@x.test")
    run(service.request_password_reset_otp("u@x.test"))
    code = notifier.last("password_reset_otp")["otp"]

    with pytest.raises(ValidationException):
        service.reset_password_with_otp("u@x.test", code, "short", "short")

    service.reset_password_with_otp("u@x.test", code, "Aa1!aaaa", "Aa1!aaaa")


@pytest.mark.parametrize("email,code", [("u@x.test", "12345"), ("nobody@x.test", "123456"), (None, "123456")])
def test_verify_forgot_otp_failures_look_alike(service, make_user, email, code):
    make_user("u@x.test")
    with pytest.raises(InvalidOtpException, match="Invalid email or OTP"):
        service.verify_password_reset_otp(email, code)


def test_forgot_otp_is_single_use(service, make_user, notifier):
    make_user("u@x.test")
    run(service.request_password_reset_otp("u@x.test"))
    code = notifier.last("password_reset_otp")["otp"]
    service.reset_password_with_otp("u@x.test", code, "Aa1!bbbb", "Aa1!bbbb")

    with pytest.raises(InvalidOtpException):
        service.reset_password_with_otp("u@x.test", code, "Aa1!cccc", "Aa1!cccc")


def test_reset_link_flow(service, make_user, notifier, clock, context):
    make_user("u@x.test")
    run(service.request_password_reset_link("u@x.test"))
    token = notifier.last("password_reset_link")["token"]

    with pytest.raises(ValidationException):
        service.reset_password_with_token(token, "weakpass")
    service.reset_password_with_token(token, "Cc3$cccc")

    assert service.login("u@x.test", "Cc3$cccc", context)
    with pytest.raises(ValidationException, match="Invalid or expired reset token"):
        service.reset_password_with_token(token, "Dd4$dddd")


def test_reset_link_expires(service, make_user, notifier, clock):
    make_user("u@x.test")
    run(service.request_password_reset_link("u@x.test"))
    token = notifier.last("password_reset_link")["token"]

    clock.advance(minutes=11)

    with pytest.raises(ValidationException, match="Invalid or expired reset token"):
        service.reset_password_with_token(token, "Cc3$cccc")


# ----------------------------------------------------------------------
# profile and administration
# ----------------------------------------------------------------------


def test_update_profile(service, make_user, department_ids):
    admin = make_user("admin@x.test")
    teacher = make_user("t@x.test", role=Role.TEACHER, department_id=department_ids["CADD"], employee_id="CADD-001")

    updated_admin = service.update_profile(admin.id, {"name": "Chief", "phone": "999"})
    updated_teacher = service.update_profile(teacher.id, {"phone": "999", "experience": 4})

    assert updated_admin.name == "Chief"
    assert "phone" not in updated_admin.model_dump()
    assert updated_teacher.phone == "999"
    assert updated_teacher.experience == 4

    with pytest.raises(ConflictException):
        service.update_profile(teacher.id, {"email": "ADMIN@x.test"})


def test_get_profile_missing(service):
    with pytest.raises(EntityNotFoundException):
        service.get_profile("missing")


def test_update_teacher_department_reallocates(service, make_user, department_ids):
    teacher = run(service.create_teacher({"name": "Moe", "email": "m@x.test", "department": department_ids["CADD"]})).user

    moved = service.update_teacher(teacher.id, {"department": department_ids["SYNERGY"], "active": False})

    assert moved.employee_id == "SY-001"
    assert moved.department.name == "SYNERGY"
    assert moved.active is False


def test_teacher_lookups_reject_admins(service, make_user):
    admin = make_user("admin@x.test")
    with pytest.raises(EntityNotFoundException, match="Teacher not found"):
        service.get_teacher(admin.id)


def test_delete_teacher(service, department_ids):
    teacher = run(service.create_teacher({"name": "Moe", "email": "m@x.test", "department": department_ids["CADD"]})).user
    service.delete_teacher(teacher.id)
    with pytest.raises(EntityNotFoundException):
        service.get_teacher(teacher.id)


def test_reset_teacher_password_unlocks(service, users, context, department_ids):
    teacher = run(service.create_teacher({"name": "Moe", "email": "m@x.test", "department": department_ids["CADD"]})).user
    for _ in range(5):
        with pytest.raises(InvalidCredentialsException):
            service.login("m@x.test", "wrong", context)

    password = service.reset_teacher_password(teacher.id)

    assert PASSWORD_COMPLEXITY_PATTERN.match(password)
    assert service.login("CADD-001", password, context)


def test_temporary_password_shape():
    for _ in range(20):
        password = generate_temporary_password()
        assert len(password) == 12
        assert PASSWORD_COMPLEXITY_PATTERN.match(password)


def test_admin_delete_guards(service, make_user):
    only = make_user("only@x.test")
    with pytest.raises(ValidationException, match="your own admin account"):
        service.delete_admin(only.id, only.id)

    other = make_user("other@x.test")
    service.delete_admin(other.id, only.id)

    # "only" is now the last admin; another actor id cannot remove it either
    with pytest.raises(ValidationException, match="last admin"):
        service.delete_admin(only.id, "someone-else")


def test_update_and_reset_admin(service, make_user, context):
    admin = make_user("a@x.test")

    updated = service.update_admin(admin.id, {"name": "Renamed", "active": None})
    assert updated.name == "Renamed"
    assert updated.active is True

    with pytest.raises(ValidationException):
        service.reset_admin_password(admin.id, "short")
    service.reset_admin_password(admin.id, "longenough")
    assert service.login("a@x.test", "longenough", context)


def test_preview_matches_next_creation(service, department_ids):
    preview, department = service.preview_employee_id(department_ids["DREAMZONE"])
    created = run(service.create_teacher({"name": "Ana", "email": "ana@x.test", "department": department_ids["DREAMZONE"]}))

    assert preview == created.user.employee_id == "DZ-001"
    assert department.code == "DZ"
