"""Shared fixtures: in-memory stores and services wired the way the app wires them."""
from datetime import timedelta

import pytest

from app.portal.auth import AuthenticationService
from app.portal.errors import ConcurrentModification, DuplicateIdentifier
from app.portal.models import Account, Role
from app.portal.modules.issues.models import Category, Issue
from app.portal.modules.issues.service import IssueService
from app.portal.security import CredentialHasher, TokenIssuer
from app.portal.stores import IssueCriteria

# Cheap hash for tests; production uses werkzeug's default.
FAST_HASH = "pbkdf2:sha256:1000"
ISSUE_KWARGS = {
    "title": "Pothole on Main Street",
    "description": "Large pothole near the bus stop, about 30cm wide.",
    "category": Category.INFRASTRUCTURE,
    "location": "Main St & 3rd Ave",
}


class InMemoryAccountStore:
    def __init__(self):
        self.by_id: dict[int, Account] = {}
        self._next_id = 1

    def save(self, account: Account) -> Account:
        for other in self.by_id.values():
            if other is not account and other.email == account.email:
                raise DuplicateIdentifier(account.email)
        if account.id is None:
            account.id = self._next_id
            self._next_id += 1
        self.by_id[account.id] = account
        return account

    def find_by_id(self, account_id: int) -> Account | None:
        return self.by_id.get(account_id)

    def find_by_email(self, email: str) -> Account | None:
        return next((a for a in self.by_id.values() if a.email == email), None)

    def exists_by_email(self, email: str) -> bool:
        return self.find_by_email(email) is not None


class InMemoryIssueStore:
    """Keeps a snapshot of every saved issue so a conflict can roll the object back, like a session rollback."""

    _fields = tuple(c.key for c in Issue.__table__.columns) + ("reporter", "assignee")

    def __init__(self):
        self.by_id: dict[int, Issue] = {}
        self._snapshots: dict[int, dict] = {}
        self._next_id = 1
        self.conflicts_to_raise = 0
        self.resets = 0
        self.saves = 0

    def save(self, issue: Issue) -> Issue:
        if self.conflicts_to_raise > 0:
            self.conflicts_to_raise -= 1
            raise ConcurrentModification(issue.id)
        if issue.id is None:
            issue.id = self._next_id
            self._next_id += 1
        self.by_id[issue.id] = issue
        self._snapshots[issue.id] = {f: getattr(issue, f) for f in self._fields}
        self.saves += 1
        return issue

    def find_by_id(self, issue_id: int) -> Issue | None:
        return self.by_id.get(issue_id)

    def find_by_criteria(self, criteria: IssueCriteria) -> list[Issue]:
        found = [i for i in self.by_id.values() if criteria.matches(i)]
        return sorted(found, key=lambda i: i.id, reverse=True)

    def reset(self) -> None:
        self.resets += 1
        for issue_id, snapshot in self._snapshots.items():
            for field, value in snapshot.items():
                setattr(self.by_id[issue_id], field, value)


class AuditLog:
    def __init__(self):
        self.events: list[dict] = []

    def __call__(self, **event):
        self.events.append(event)

    @property
    def actions(self) -> list[str]:
        return [e["action"] for e in self.events]


@pytest.fixture()
def hasher():
    return CredentialHasher(method=FAST_HASH)


@pytest.fixture()
def token_issuer():
    return TokenIssuer(secret="test-jwt-secret", ttl=timedelta(hours=24))


@pytest.fixture()
def account_store():
    return InMemoryAccountStore()


@pytest.fixture()
def issue_store():
    return InMemoryIssueStore()


@pytest.fixture()
def audit_log():
    return AuditLog()


@pytest.fixture()
def auth_service(account_store, hasher, token_issuer, audit_log):
    return AuthenticationService(account_store, hasher, token_issuer, audit=audit_log)


@pytest.fixture()
def issue_service(issue_store, account_store, audit_log):
    return IssueService(issue_store, account_store, audit=audit_log)


@pytest.fixture()
def make_account(account_store, hasher):
    def _make(role: Role, email: str, name: str = "Test User", password: str = "password123") -> Account:
        return account_store.save(Account(name=name, email=email, password_hash=hasher.hash(password), role=role))

    return _make


@pytest.fixture()
def citizen(make_account):
    return make_account(Role.CITIZEN, "alice@example.com", name="Alice")


@pytest.fixture()
def other_citizen(make_account):
    return make_account(Role.CITIZEN, "bob@example.com", name="Bob")


@pytest.fixture()
def staff(make_account):
    return make_account(Role.STAFF, "sam@city.gov", name="Sam")


@pytest.fixture()
def other_staff(make_account):
    return make_account(Role.STAFF, "terry@city.gov", name="Terry")


@pytest.fixture()
def admin(make_account):
    return make_account(Role.ADMIN, "admin@city.gov", name="Admin")


@pytest.fixture()
def open_issue(issue_service, citizen):
    return issue_service.create_issue(reporter_id=citizen.id, **ISSUE_KWARGS)


@pytest.fixture()
def issue_kwargs():
    return dict(ISSUE_KWARGS)
