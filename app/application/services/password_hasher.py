"""Password hashing and password policy validators."""

import re
from functools import lru_cache
from typing import Optional

from passlib.context import CryptContext

from app.config import get_policy
from app.core.exceptions import CredentialUnavailableException, ValidationException

MIN_PASSWORD_LENGTH = 8

EMAIL_PATTERN = re.compile(r"^\w+([.-]?\w+)*@\w+([.-]?\w+)*(\.\w{2,})+$")
PASSWORD_COMPLEXITY_PATTERN = re.compile(
    r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)(?=.*[@$!%*?&])[A-Za-z\d@$!%*?&]{8,}$"
)


class PasswordHasher:
    """bcrypt via passlib. Salt is generated per password."""

    def __init__(self, rounds: int = 12):
        self.rounds = rounds
        self.context = CryptContext(
            schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=rounds
        )

    def hash(self, plaintext: str) -> str:
        return self.context.hash(plaintext)

    def verify(self, plaintext: str, digest: Optional[str]) -> bool:
        if not digest:
            raise CredentialUnavailableException()
        return self.context.verify(plaintext, digest)

    def dummy_verify(self) -> None:
        """Spend the same CPU as a real verify when the account does not exist."""
        self.context.dummy_verify()


def is_valid_email(email: Optional[str]) -> bool:
    return bool(email) and EMAIL_PATTERN.match(email) is not None


def validate_password_length(password: str) -> None:
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationException(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters long"
        )


def validate_password_complexity(password: str) -> None:
    if not PASSWORD_COMPLEXITY_PATTERN.match(password):
        raise ValidationException(
            "Password must be at least 8 characters long and contain at least one "
            "uppercase letter, one lowercase letter, one number, and one special "
            "character (@$!%*?&)"
        )


@lru_cache
def get_password_hasher() -> PasswordHasher:
    return PasswordHasher(rounds=get_policy().hash_rounds)
