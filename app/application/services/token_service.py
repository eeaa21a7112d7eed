"""JWT access/refresh tokens bound to a client fingerprint."""

import hashlib
import secrets
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from jose import ExpiredSignatureError, JWTError, jwt

from app.config import PolicyConfig
from app.core.exceptions import InvalidTokenException

ACCESS = "access"
REFRESH = "refresh"


@dataclass(frozen=True)
class RequestContext:
    user_agent: str = ""
    ip: str = ""

    def fingerprint(self) -> str:
        return fingerprint(self.user_agent, self.ip)


def fingerprint(user_agent: Optional[str], ip: Optional[str]) -> str:
    raw = f"{user_agent or ''}-{ip or ''}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()[:16]


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class TokenClaims:
    user_id: str
    fingerprint: str
    type: str
    issued_at: int
    expires_at: int


class TokenSigner:
    def __init__(self, policy: PolicyConfig):
        self.policy = policy

    def _encode(self, user_id: str, context: RequestContext, token_type: str, now: datetime) -> str:
        if token_type == ACCESS:
            secret, ttl = self.policy.access_secret, self.policy.access_token_ttl
        else:
            secret, ttl = self.policy.refresh_secret, self.policy.refresh_token_ttl
        payload = {
            "sub": user_id,
            "fp": context.fingerprint(),
            "type": token_type,
            "iat": int(now.timestamp()),
            "exp": int((now + ttl).timestamp()),
            "iss": self.policy.issuer,
            "aud": self.policy.audience,
            "jti": secrets.token_hex(8),
        }
        return jwt.encode(payload, secret, algorithm=self.policy.algorithm)

    def issue_access(self, user_id: str, context: RequestContext, now: datetime) -> str:
        return self._encode(user_id, context, ACCESS, now)

    def issue_refresh(self, user_id: str, context: RequestContext, now: datetime) -> str:
        return self._encode(user_id, context, REFRESH, now)

    def _decode(self, token: str, secret: str, expected_type: str) -> TokenClaims:
        try:
            payload = jwt.decode(
                token,
                secret,
                algorithms=[self.policy.algorithm],
                audience=self.policy.audience,
                issuer=self.policy.issuer,
            )
        except ExpiredSignatureError:
            raise InvalidTokenException("Token expired", expired=True)
        except JWTError:
            raise InvalidTokenException()

        if payload.get("type") != expected_type or not payload.get("sub"):
            raise InvalidTokenException("Invalid token type")

        return TokenClaims(
            user_id=payload["sub"],
            fingerprint=payload.get("fp", ""),
            type=payload["type"],
            issued_at=payload.get("iat", 0),
            expires_at=payload.get("exp", 0),
        )

    def verify_access(self, token: str) -> TokenClaims:
        return self._decode(token, self.policy.access_secret, ACCESS)

    def verify_refresh(self, token: str) -> TokenClaims:
        return self._decode(token, self.policy.refresh_secret, REFRESH)
