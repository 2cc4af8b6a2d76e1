from __future__ import annotations

import logging
import uuid
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from functools import partial
from typing import Any

from flask import Blueprint, current_app, g, jsonify, request

from app.portal.audit import record_event
from app.portal.db import db_session
from app.portal.errors import AccountDeactivated, DuplicateIdentifier, InvalidCredentials, InvalidToken
from app.portal.models import Account, Role
from app.portal.security import CredentialHasher, TokenIssuer, hasher_from_config, token_issuer_from_config
from app.portal.stores import CredentialStore, SqlCredentialStore
from app.portal.utils import json_body
from app.portal.validation import clean_text, ensure_strings, normalize_email, raise_first, validate_account_fields

logger = logging.getLogger(__name__)

AuditSink = Callable[..., Any]


def _no_audit(**_kwargs: Any) -> None:
    return None


def parse_role(role_hint: str | None) -> Role:
    """Blank or unrecognised hints fall back to CITIZEN instead of failing."""
    if not isinstance(role_hint, str):
        return Role.CITIZEN
    raw = role_hint.strip().upper()
    if not raw:
        return Role.CITIZEN
    try:
        return Role[raw]
    except KeyError:
        return Role.CITIZEN


@dataclass(frozen=True)
class AuthResult:
    token: str
    expires_at: datetime
    account: Account

    def to_dict(self) -> dict:
        return {
            "token": self.token,
            "token_type": "Bearer",
            "expires_at": self.expires_at.isoformat(),
            "user": self.account.public_profile(),
        }


class AuthenticationService:
    def __init__(
        self,
        accounts: CredentialStore,
        hasher: CredentialHasher,
        tokens: TokenIssuer,
        audit: AuditSink | None = None,
    ):
        self.accounts = accounts
        self.hasher = hasher
        self.tokens = tokens
        self.audit = audit or _no_audit

    def register(self, name: str | None, email: str | None, password: str | None, role_hint: str | None = None) -> Account:
        ensure_strings(name=name, email=email, password=password)
        normalized = normalize_email(email)
        if normalized and self.accounts.exists_by_email(normalized):
            raise DuplicateIdentifier(normalized)

        raise_first(validate_account_fields(name, normalized, password))

        now = datetime.utcnow()
        account = Account(
            name=clean_text(name),
            email=normalized,
            password_hash=self.hasher.hash(password or ""),
            role=parse_role(role_hint),
            created_at=now,
            updated_at=now,
        )
        account = self.accounts.save(account)
        self.audit(
            actor=account,
            action="account.register",
            entity_type="Account",
            entity_id=str(account.id),
            metadata={"email": account.email, "role": account.role.value},
        )
        logger.info("Registered account id=%s role=%s", account.id, account.role.value)
        return account

    def authenticate(self, email: str | None, password: str | None) -> AuthResult:
        ensure_strings(email=email, password=password)
        normalized = normalize_email(email)
        account = self.accounts.find_by_email(normalized) if normalized else None
        if account is None:
            self._login_failed(normalized, "unknown email")
            raise InvalidCredentials()
        if not account.is_active:
            self._login_failed(normalized, "deactivated account")
            raise AccountDeactivated()
        if not self.hasher.verify(password or "", account.password_hash):
            self._login_failed(normalized, "wrong password")
            raise InvalidCredentials()

        issued = self.tokens.issue(account.id, account.role, account.email)
        self.audit(actor=account, action="auth.login", entity_type="Account", entity_id=str(account.id))
        return AuthResult(token=issued.token, expires_at=issued.expires_at, account=account)

    def account_for_token(self, token: str) -> Account:
        """Resolve a bearer token to its active account."""
        claims = self.tokens.validate(token)
        account = self.accounts.find_by_id(claims.subject_id)
        if account is None:
            raise InvalidToken("Token subject no longer exists")
        if not account.is_active:
            raise AccountDeactivated()
        return account

    def _login_failed(self, email: str, why: str) -> None:
        # The raw credential is never logged.
        logger.warning("Login failed (email=%s reason=%s)", email, why)
        self.audit(
            actor=None,
            action="auth.login_failed",
            entity_type="Account",
            entity_id=email,
            reason="Invalid credentials",
            metadata={"email": email},
        )


def auth_service_for_request() -> AuthenticationService:
    s = db_session()
    return AuthenticationService(
        SqlCredentialStore(s),
        hasher_from_config(current_app.config),
        token_issuer_from_config(current_app.config),
        audit=partial(record_event, s),
    )


bp = Blueprint("auth", __name__)
_login_attempts: dict[str, list[datetime]] = defaultdict(list)
_LOGIN_RATE_LIMIT = 5
_LOGIN_RATE_WINDOW = 300  # seconds


def _check_rate_limit(ip: str) -> bool:
    now = datetime.utcnow()
    cutoff = now - timedelta(seconds=_LOGIN_RATE_WINDOW)
    _login_attempts[ip] = [t for t in _login_attempts[ip] if t > cutoff]
    return len(_login_attempts[ip]) >= _LOGIN_RATE_LIMIT


def _record_attempt(ip: str) -> None:
    _login_attempts[ip].append(datetime.utcnow())


def _bearer_token() -> str | None:
    header = request.headers.get("Authorization") or ""
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def load_current_user() -> None:
    """
    Loads g.current_user from the bearer token, if any.
    Also assigns a simple per-request request_id (for audit/log correlation).
    """
    if not getattr(g, "request_id", None):
        g.request_id = uuid.uuid4().hex
    g.current_user = None

    token = _bearer_token()
    if not token:
        return
    try:
        g.current_user = auth_service_for_request().account_for_token(token)
    except (InvalidToken, AccountDeactivated) as e:
        current_app.logger.info("Ignoring bearer token (request_id=%s): %s", g.request_id, e.message)


@bp.post("/register")
def register_post():
    body = json_body()
    s = db_session()
    account = auth_service_for_request().register(
        body.get("name"),
        body.get("email"),
        body.get("password"),
        body.get("role"),
    )
    s.commit()
    payload = account.public_profile()
    payload["created_at"] = account.created_at.isoformat()
    return jsonify(payload), 201


@bp.post("/login")
def login_post():
    body = json_body()
    ip = request.remote_addr or "unknown"

    if _check_rate_limit(ip):
        return jsonify({"error": "RateLimited", "message": "Too many login attempts. Please wait 5 minutes."}), 429
    _record_attempt(ip)

    s = db_session()
    try:
        result = auth_service_for_request().authenticate(body.get("email"), body.get("password"))
    except (InvalidCredentials, AccountDeactivated):
        # keep the auth.login_failed audit row
        s.commit()
        raise
    _login_attempts[ip].clear()
    s.commit()
    return jsonify(result.to_dict())
