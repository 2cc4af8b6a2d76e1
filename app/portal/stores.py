"""
Persistence collaborators for the portal services.

The services only depend on the two Protocols; the SQLAlchemy classes are the
production implementation. Stores flush but never commit: the caller (request
teardown or session_scope) owns the transaction.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from app.portal.errors import ConcurrentModification, DuplicateIdentifier
from app.portal.models import Account
from app.portal.modules.issues.models import Category, Issue, IssueStatus, Priority

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IssueCriteria:
    status: IssueStatus | None = None
    priority: Priority | None = None
    category: Category | None = None
    reporter_id: int | None = None
    assignee_id: int | None = None
    include_deleted: bool = False

    def matches(self, issue: Issue) -> bool:
        if self.status is not None and issue.status != self.status:
            return False
        if self.priority is not None and issue.priority != self.priority:
            return False
        if self.category is not None and issue.category != self.category:
            return False
        if self.reporter_id is not None and issue.reporter_id != self.reporter_id:
            return False
        if self.assignee_id is not None and issue.assignee_id != self.assignee_id:
            return False
        if not self.include_deleted and issue.is_deleted:
            return False
        return True


class CredentialStore(Protocol):
    def save(self, account: Account) -> Account: ...

    def find_by_id(self, account_id: int) -> Account | None: ...

    def find_by_email(self, email: str) -> Account | None: ...

    def exists_by_email(self, email: str) -> bool: ...


class IssueStore(Protocol):
    def save(self, issue: Issue) -> Issue: ...

    def find_by_id(self, issue_id: int) -> Issue | None: ...

    def find_by_criteria(self, criteria: IssueCriteria) -> list[Issue]: ...

    def reset(self) -> None:
        """Discard pending state before a use case is retried."""
        ...


class SqlCredentialStore:
    def __init__(self, s: Session):
        self.s = s

    def save(self, account: Account) -> Account:
        self.s.add(account)
        try:
            self.s.flush()
        except IntegrityError as e:
            # Unique index on email is the authoritative duplicate guard.
            self.s.rollback()
            logger.info("Account insert rejected by unique constraint (email=%s): %s", account.email, e.orig)
            raise DuplicateIdentifier(account.email) from e
        return account

    def find_by_id(self, account_id: int) -> Account | None:
        return self.s.get(Account, account_id)

    def find_by_email(self, email: str) -> Account | None:
        return self.s.execute(select(Account).where(Account.email == email)).scalar_one_or_none()

    def exists_by_email(self, email: str) -> bool:
        n = self.s.execute(select(func.count(Account.id)).where(Account.email == email)).scalar_one()
        return n > 0


class SqlIssueStore:
    def __init__(self, s: Session):
        self.s = s

    def save(self, issue: Issue) -> Issue:
        self.s.add(issue)
        try:
            self.s.flush()
        except StaleDataError as e:
            self.s.rollback()
            raise ConcurrentModification(issue.id) from e
        return issue

    def find_by_id(self, issue_id: int) -> Issue | None:
        return self.s.get(Issue, issue_id)

    def find_by_criteria(self, criteria: IssueCriteria) -> list[Issue]:
        q = select(Issue)
        if criteria.status is not None:
            q = q.where(Issue.status == criteria.status)
        if criteria.priority is not None:
            q = q.where(Issue.priority == criteria.priority)
        if criteria.category is not None:
            q = q.where(Issue.category == criteria.category)
        if criteria.reporter_id is not None:
            q = q.where(Issue.reporter_id == criteria.reporter_id)
        if criteria.assignee_id is not None:
            q = q.where(Issue.assignee_id == criteria.assignee_id)
        if not criteria.include_deleted:
            q = q.where(Issue.deleted_at.is_(None))
        q = q.order_by(Issue.created_at.desc(), Issue.id.desc())
        return list(self.s.execute(q).scalars().all())

    def reset(self) -> None:
        # Drop identity-map state so the retry re-reads committed rows.
        self.s.expire_all()
