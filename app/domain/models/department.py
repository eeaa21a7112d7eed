"""Department registry: read by the employee ID allocator."""

import uuid

from sqlalchemy import Column, Integer, String, Boolean, DateTime
from sqlalchemy.sql import func

from app.infrastructure.database import Base

DEPARTMENT_NAMES = ("CADD", "LIVEWIRE", "DREAMZONE", "SYNERGY")


class Department(Base):
    __tablename__ = "departments"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String(100), unique=True, nullable=False)  # CADD, LIVEWIRE, DREAMZONE, SYNERGY
    code = Column(String(10), unique=True, nullable=False)
    description = Column(String(500), nullable=True)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self):
        return f"<Department {self.name}>"


class EmployeeIdCounter(Base):
    """Last employee ID suffix handed out per department code."""

    __tablename__ = "employee_id_counters"

    code = Column(String(10), primary_key=True)
    last_value = Column(Integer, nullable=False, default=0)
