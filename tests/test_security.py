from datetime import timedelta

import pytest
from jose import jwt

from app.portal.errors import InvalidToken
from app.portal.models import Role
from app.portal.security import CredentialHasher, TokenIssuer, hasher_from_config, token_issuer_from_config


def test_hash_is_salted_and_verifies(hasher):
    a = hasher.hash("password123")
    b = hasher.hash("password123")
    assert a != b
    assert "password123" not in a
    assert hasher.verify("password123", a)
    assert not hasher.verify("password124", a)


def test_verify_against_empty_hash_is_false(hasher):
    assert not hasher.verify("password123", "")


def test_token_carries_identity_claims(token_issuer):
    issued = token_issuer.issue(42, Role.STAFF, "sam@city.gov")
    raw = jwt.get_unverified_claims(issued.token)
    assert raw["sub"] == "42"
    assert raw["role"] == "STAFF"
    assert raw["email"] == "sam@city.gov"
    assert {"iat", "exp", "jti"} <= set(raw)

    claims = token_issuer.validate(issued.token)
    assert claims.subject_id == 42
    assert claims.role == Role.STAFF
    assert claims.email == "sam@city.gov"
    assert abs((claims.expires_at - issued.expires_at).total_seconds()) < 1


def test_tokens_are_unique_per_issue(token_issuer):
    assert token_issuer.issue(1, Role.CITIZEN, "a@b.co").token != token_issuer.issue(1, Role.CITIZEN, "a@b.co").token


def test_expired_token_rejected():
    issuer = TokenIssuer(secret="test-jwt-secret", ttl=timedelta(seconds=-30))
    token = issuer.issue(1, Role.CITIZEN, "alice@example.com").token
    with pytest.raises(InvalidToken, match="expired"):
        issuer.validate(token)


def test_wrong_secret_rejected(token_issuer):
    token = TokenIssuer(secret="someone-else").issue(1, Role.ADMIN, "x@example.com").token
    with pytest.raises(InvalidToken):
        token_issuer.validate(token)


def test_tampered_payload_rejected(token_issuer):
    token = token_issuer.issue(1, Role.CITIZEN, "alice@example.com").token
    header, _payload, signature = token.split(".")
    forged_payload = jwt.encode({"sub": "1", "role": "ADMIN", "email": "alice@example.com"}, "x").split(".")[1]
    with pytest.raises(InvalidToken):
        token_issuer.validate(".".join([header, forged_payload, signature]))


@pytest.mark.parametrize("token", ["", "not-a-jwt", "a.b.c"])
def test_garbage_rejected(token_issuer, token):
    with pytest.raises(InvalidToken):
        token_issuer.validate(token)


def test_missing_claims_rejected(token_issuer):
    token = jwt.encode({"sub": "1"}, "test-jwt-secret", algorithm="HS256")
    with pytest.raises(InvalidToken, match="claims"):
        token_issuer.validate(token)


def test_from_config():
    cfg = {"JWT_SECRET": "s3cret", "JWT_ALGORITHM": "HS256", "TOKEN_TTL_HOURS": 2, "PASSWORD_HASH_METHOD": ""}
    issuer = token_issuer_from_config(cfg)
    assert issuer.ttl == timedelta(hours=2)
    assert issuer.secret == "s3cret"
    assert hasher_from_config(cfg) == CredentialHasher(method=None)
