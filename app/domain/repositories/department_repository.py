"""
Department Repository Interface.
Departments are owned elsewhere; this service reads them and keeps the
per-department employee ID counters.
"""

from typing import Optional

from app.domain.models.department import Department
from app.domain.repositories.base import BaseRepository


class DepartmentRepository(BaseRepository[Department]):
    """Interface for Department lookups and employee ID counters."""

    def get_by_name(self, name: str) -> Optional[Department]:
        """Get a department by its canonical name (CADD, LIVEWIRE, ...)."""
        ...

    def ensure_defaults(self) -> int:
        """Create any missing fixed departments. Returns how many were created."""
        ...

    def get_counter(self, code: str) -> int:
        """Last suffix handed out for a department code (0 if none)."""
        ...

    def advance_counter(self, code: str, expected: int, new_value: int) -> bool:
        """Compare-and-set the counter inside the current transaction."""
        ...
