"""User domain model: maps to the 'users' table."""

import enum
import uuid

from sqlalchemy import Column, Integer, String, Boolean, DateTime, Date, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from app.infrastructure.database import Base


class Role(str, enum.Enum):
    ADMIN = "admin"
    TEACHER = "teacher"


def _new_id() -> str:
    return str(uuid.uuid4())


class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=_new_id)
    name = Column(String(50), nullable=False)
    email = Column(String(255), unique=True, nullable=False, index=True)
    role = Column(String(20), nullable=False, default=Role.TEACHER.value)
    password_hash = Column(String(255), nullable=False)

    # Teacher only
    department_id = Column(String(36), ForeignKey("departments.id"), nullable=True)
    department = relationship("Department", lazy="joined")
    # NULL for admins; unique indexes allow repeated NULLs
    employee_id = Column(String(10), unique=True, nullable=True, index=True)
    phone = Column(String(20), nullable=True)
    address = Column(String(255), nullable=True)
    date_of_joining = Column(Date, nullable=True)
    qualification = Column(String(255), nullable=True)
    experience = Column(Integer, nullable=True)
    specialization = Column(String(255), nullable=True)

    active = Column(Boolean, nullable=False, default=True)
    last_login_at = Column(DateTime(timezone=True), nullable=True)

    # Credential slots
    refresh_token_hash = Column(String(64), nullable=True)
    password_reset_hash = Column(String(64), nullable=True, index=True)
    password_reset_expires_at = Column(DateTime(timezone=True), nullable=True)
    otp_hash = Column(String(64), nullable=True)
    otp_expires_at = Column(DateTime(timezone=True), nullable=True)
    failed_attempts = Column(Integer, nullable=False, default=0)
    locked_until = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<User {self.email} ({self.role})>"
