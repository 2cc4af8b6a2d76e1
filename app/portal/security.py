from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping

from jose import ExpiredSignatureError, JWTError, jwt
from werkzeug.security import check_password_hash, generate_password_hash

from app.portal.errors import InvalidToken
from app.portal.models import Role


@dataclass(frozen=True)
class CredentialHasher:
    """Salted password hashing via werkzeug. `method` is a werkzeug method string, e.g. "scrypt"."""

    method: str | None = None

    def hash(self, raw: str) -> str:
        if self.method:
            return generate_password_hash(raw, method=self.method)
        return generate_password_hash(raw)

    def verify(self, raw: str, hashed: str) -> bool:
        if not hashed:
            return False
        return check_password_hash(hashed, raw)


@dataclass(frozen=True)
class SessionClaims:
    subject_id: int
    role: Role
    email: str
    expires_at: datetime


@dataclass(frozen=True)
class IssuedToken:
    token: str
    expires_at: datetime


@dataclass(frozen=True)
class TokenIssuer:
    """Mints and validates signed JWT session tokens."""

    secret: str
    algorithm: str = "HS256"
    ttl: timedelta = timedelta(hours=24)

    def issue(self, subject_id: int, role: Role, email: str) -> IssuedToken:
        now = datetime.now(timezone.utc)
        expires_at = now + self.ttl
        claims = {
            "sub": str(subject_id),
            "email": email,
            "role": role.value,
            "iat": now,
            "exp": expires_at,
            "jti": str(uuid.uuid4()),
        }
        return IssuedToken(token=jwt.encode(claims, self.secret, algorithm=self.algorithm), expires_at=expires_at)

    def validate(self, token: str) -> SessionClaims:
        """
        Decode and verify signature and expiry.

        Raises:
            InvalidToken: malformed, tampered, expired or missing claims.
        """
        if not token:
            raise InvalidToken("Missing token")
        try:
            payload: dict[str, Any] = jwt.decode(token, self.secret, algorithms=[self.algorithm])
        except ExpiredSignatureError as exc:
            raise InvalidToken("Token has expired") from exc
        except JWTError as exc:
            raise InvalidToken() from exc

        try:
            return SessionClaims(
                subject_id=int(payload["sub"]),
                role=Role(payload["role"]),
                email=payload["email"],
                expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise InvalidToken("Token is missing required claims") from exc


def hasher_from_config(cfg: Mapping[str, Any]) -> CredentialHasher:
    return CredentialHasher(method=(cfg.get("PASSWORD_HASH_METHOD") or None))


def token_issuer_from_config(cfg: Mapping[str, Any]) -> TokenIssuer:
    return TokenIssuer(
        secret=cfg["JWT_SECRET"],
        algorithm=cfg.get("JWT_ALGORITHM") or "HS256",
        ttl=timedelta(hours=float(cfg.get("TOKEN_TTL_HOURS") or 24)),
    )
