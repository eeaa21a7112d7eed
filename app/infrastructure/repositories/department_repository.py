"""
SQLAlchemy Implementation of Department Repository.
"""

from typing import Optional

import structlog
from sqlalchemy.orm import Session

from app.domain.models.department import DEPARTMENT_NAMES, Department, EmployeeIdCounter
from app.domain.repositories.department_repository import DepartmentRepository
from app.infrastructure.repositories.base_repository import SQLAlchemyRepository

logger = structlog.get_logger(__name__)

DEFAULT_DEPARTMENT_CODES = {
    "CADD": "CADD",
    "LIVEWIRE": "LW",
    "DREAMZONE": "DZ",
    "SYNERGY": "SY",
}


class SQLAlchemyDepartmentRepository(SQLAlchemyRepository[Department], DepartmentRepository):
    """Department repository implementation using SQLAlchemy."""

    def __init__(self, db: Session):
        super().__init__(db, Department)

    def get_by_name(self, name: str) -> Optional[Department]:
        return self.db.query(Department).filter(Department.name == name).first()

    def ensure_defaults(self) -> int:
        created = 0
        for name in DEPARTMENT_NAMES:
            if self.get_by_name(name):
                continue
            self.db.add(Department(name=name, code=DEFAULT_DEPARTMENT_CODES[name]))
            created += 1
        for code in DEFAULT_DEPARTMENT_CODES.values():
            self._ensure_counter_row(code)
        self.db.commit()
        if created:
            logger.info("Seeded departments", count=created)
        return created

    def get_counter(self, code: str) -> int:
        value = (
            self.db.query(EmployeeIdCounter.last_value)
            .filter(EmployeeIdCounter.code == code)
            .scalar()
        )
        return value or 0

    def _ensure_counter_row(self, code: str) -> None:
        exists = self.db.query(EmployeeIdCounter.code).filter(EmployeeIdCounter.code == code).first()
        if not exists:
            self.db.add(EmployeeIdCounter(code=code, last_value=0))
            self.db.flush()

    def advance_counter(self, code: str, expected: int, new_value: int) -> bool:
        self._ensure_counter_row(code)
        updated = (
            self.db.query(EmployeeIdCounter)
            .filter(
                EmployeeIdCounter.code == code,
                EmployeeIdCounter.last_value == expected,
            )
            .update({EmployeeIdCounter.last_value: new_value}, synchronize_session=False)
        )
        # Flushed only; commits with the caller's insert
        return updated == 1
