"""Per-department employee IDs: ``{CODE}-NNN``."""

import re

import structlog

from app.core.exceptions import (
    ConflictException,
    DepartmentCodeUnknownException,
    EntityNotFoundException,
    ValidationException,
)
from app.domain.models.department import Department
from app.domain.repositories.department_repository import DepartmentRepository
from app.domain.repositories.user_repository import UserRepository

logger = structlog.get_logger(__name__)

DEPARTMENT_CODE_MAP = {
    "CADD": "CADD",
    "LIVEWIRE": "LW",
    "DREAMZONE": "DZ",
    "SYNERGY": "SY",
}

EMPLOYEE_ID_PATTERN = re.compile(r"^(CADD|LW|DZ|SY)-\d{3}$")

MAX_CAS_ATTEMPTS = 5
MAX_EMPLOYEE_SUFFIX = 999


def format_employee_id(code: str, number: int) -> str:
    return f"{code}-{number:03d}"


class EmployeeIdAllocator:
    def __init__(self, users: UserRepository, departments: DepartmentRepository):
        self.users = users
        self.departments = departments

    def resolve(self, department_id: str) -> tuple[Department, str]:
        department = self.departments.get_by_id(department_id)
        if not department:
            raise EntityNotFoundException("Department not found")
        code = DEPARTMENT_CODE_MAP.get(department.name)
        if not code:
            raise DepartmentCodeUnknownException(department.name)
        return department, code

    def _next_suffix(self, code: str, counter: int) -> int:
        base = max(self.users.max_employee_suffix(code), counter)
        candidate = base + 1
        if self.users.employee_id_exists(format_employee_id(code, candidate)):
            candidate = base + 2
        if candidate > MAX_EMPLOYEE_SUFFIX:
            logger.error("Employee ID range exhausted", code=code)
            raise ValidationException(
                f"Employee ID range exhausted for {code}",
                details={"field": "department", "code": code},
            )
        return candidate

    def preview(self, department_id: str) -> tuple[str, Department]:
        """Next ID for the department. Does not reserve it."""
        department, code = self.resolve(department_id)
        counter = self.departments.get_counter(code)
        return format_employee_id(code, self._next_suffix(code, counter)), department

    def allocate(self, department_id: str) -> str:
        """Reserve the next ID. The counter write is committed by the caller's insert."""
        _, code = self.resolve(department_id)
        for _ in range(MAX_CAS_ATTEMPTS):
            counter = self.departments.get_counter(code)
            suffix = self._next_suffix(code, counter)
            if self.departments.advance_counter(code, counter, suffix):
                employee_id = format_employee_id(code, suffix)
                logger.info("Employee ID allocated", employee_id=employee_id)
                return employee_id
            logger.debug("Employee ID counter moved, retrying", code=code)
        raise ConflictException("Employee ID already exists", details={"field": "employee_id"})
