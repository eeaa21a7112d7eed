"""One-time codes and reset-link tokens. Only SHA-256 digests are stored."""

import hmac
import secrets
from datetime import datetime, timedelta
from typing import NamedTuple, Optional

from app.application.services.token_service import hash_token
from app.core.clock import ensure_utc
from app.domain.schemas.user import UserCredentials

OTP_LENGTH = 6


class IssuedSecret(NamedTuple):
    code: str
    digest: str
    expires_at: datetime


def generate_otp(now: datetime, ttl: timedelta) -> IssuedSecret:
    code = f"{secrets.randbelow(10 ** OTP_LENGTH):0{OTP_LENGTH}d}"
    return IssuedSecret(code, hash_token(code), now + ttl)


def generate_reset_token(now: datetime, ttl: timedelta) -> IssuedSecret:
    token = secrets.token_hex(32)
    return IssuedSecret(token, hash_token(token), now + ttl)


def _matches(code: str, digest: Optional[str], expires_at: Optional[datetime], now: datetime) -> bool:
    if not code or not digest or not expires_at:
        return False
    if now >= ensure_utc(expires_at):
        return False
    return hmac.compare_digest(hash_token(code), digest)


def verify_otp(credentials: UserCredentials, code: str, now: datetime) -> bool:
    return _matches(code, credentials.otp_hash, credentials.otp_expires_at, now)


def reset_token_valid(credentials: UserCredentials, now: datetime) -> bool:
    expires_at = ensure_utc(credentials.password_reset_expires_at)
    return bool(credentials.password_reset_hash) and expires_at is not None and now < expires_at
