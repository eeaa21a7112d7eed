"""
User Repository Interface.
Profile reads return ``UserPublic``; credential reads return
``UserCredentials``. The store never hashes anything itself.
"""

from datetime import datetime
from typing import Any, Dict, Optional, Protocol

from app.domain.models.user import Role
from app.domain.schemas.user import UserCredentials, UserPublic


class UserRepository(Protocol):
    """Interface for User persistence."""

    def find_by_id(self, user_id: str) -> Optional[UserPublic]:
        ...

    def find_by_email(self, email: str) -> Optional[UserPublic]:
        ...

    def find_by_employee_id(self, employee_id: str) -> Optional[UserPublic]:
        ...

    def email_exists(self, email: str, exclude_id: Optional[str] = None) -> bool:
        ...

    def employee_id_exists(self, employee_id: str) -> bool:
        ...

    def max_employee_suffix(self, code: str) -> int:
        """Largest numeric suffix among teacher IDs ``{code}-NNN`` (0 if none)."""
        ...

    def get_credentials(self, user_id: str) -> Optional[UserCredentials]:
        ...

    def find_credentials_by_reset_hash(self, reset_hash: str) -> Optional[UserCredentials]:
        ...

    def create(self, data: Dict[str, Any]) -> UserPublic:
        """Insert a user. Raises ConflictException on email/employee ID clash."""
        ...

    def update(self, user_id: str, changes: Dict[str, Any]) -> UserPublic:
        """Update profile columns. Raises ConflictException on clash."""
        ...

    def update_credentials(self, user_id: str, **fields: Any) -> None:
        """Write credential slots in a single UPDATE."""
        ...

    def rotate_refresh_token(self, user_id: str, old_hash: str, new_hash: str) -> bool:
        """Swap the session hash only if it still equals ``old_hash``."""
        ...

    def increment_failed_attempts(self, user_id: str, threshold: int) -> int:
        """Atomic, saturating increment. Returns the new count."""
        ...

    def lock_if_threshold(self, user_id: str, threshold: int, now: datetime, until: datetime) -> bool:
        """Set locked_until if the count reached the threshold and no lock is active."""
        ...

    def record_login(self, user_id: str, refresh_token_hash: str, now: datetime) -> None:
        """Clear the failure counter and lock, stamp last login, install the session."""
        ...

    def delete(self, user_id: str) -> bool:
        ...

    def count_by_role(self, role: Role) -> int:
        ...
