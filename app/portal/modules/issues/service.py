"""
Issue orchestration service.

Every use case runs the same skeleton: resolve issue and acting account ->
authorization gate -> lifecycle engine -> persist -> audit. A write conflict
reported by the store reruns the whole use case once (re-read, re-check,
re-apply) before it is surfaced.
"""
from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import replace
from typing import Any, TypeVar

from app.portal.errors import (
    AccountDeactivated,
    AccountNotFound,
    ConcurrentModification,
    IssueNotFound,
    ValidationError,
)
from app.portal.models import Account, Role
from app.portal.rbac import Action, authorize, can_view, visible_issues
from app.portal.stores import CredentialStore, IssueCriteria, IssueStore
from app.portal.validation import parse_enum

from . import lifecycle
from .models import Category, Issue, IssueStatus, Priority

logger = logging.getLogger(__name__)

T = TypeVar("T")
AuditSink = Callable[..., Any]


def _no_audit(**_kwargs: Any) -> None:
    return None


class IssueService:
    def __init__(self, issues: IssueStore, accounts: CredentialStore, audit: AuditSink | None = None):
        self.issues = issues
        self.accounts = accounts
        self.audit = audit or _no_audit

    # ------------------------------------------------------------------
    # lookups

    def _account(self, account_id: int | None) -> Account:
        account = self.accounts.find_by_id(account_id) if account_id is not None else None
        if account is None:
            raise AccountNotFound(account_id)
        return account

    def _actor(self, actor_id: int | None) -> Account:
        actor = self._account(actor_id)
        if not actor.is_active:
            raise AccountDeactivated()
        return actor

    def _issue(self, issue_id: int | None) -> Issue:
        issue = self.issues.find_by_id(issue_id) if issue_id is not None else None
        if issue is None:
            raise IssueNotFound(issue_id)
        return issue

    def _with_retry(self, name: str, use_case: Callable[[], T]) -> T:
        try:
            return use_case()
        except ConcurrentModification as e:
            logger.warning("Write conflict in %s (issue_id=%s); retrying once", name, e.entity_id)
            self.issues.reset()
            return use_case()

    def _record(self, actor: Account, action: str, issue: Issue, **metadata: Any) -> None:
        self.audit(
            actor=actor,
            action=action,
            entity_type="Issue",
            entity_id=str(issue.id),
            metadata=metadata or None,
        )

    # ------------------------------------------------------------------
    # use cases

    def create_issue(
        self,
        *,
        title: str | None,
        description: str | None,
        category: Category | str | None,
        location: str | None,
        reporter_id: int,
        priority: Priority | str | None = None,
    ) -> Issue:
        reporter = self._actor(reporter_id)
        authorize(reporter, Action.CREATE)

        issue = lifecycle.new_issue(
            title=title,
            description=description,
            category=parse_enum(Category, category, "category"),
            priority=parse_enum(Priority, priority, "priority"),
            location=location,
            reporter=reporter,
        )
        issue = self.issues.save(issue)
        self._record(reporter, "issue.create", issue, title=issue.title, category=issue.category.value)
        logger.info("Issue %s created by account %s", issue.id, reporter.id)
        return issue

    def update_issue(
        self,
        issue_id: int,
        actor_id: int,
        *,
        title: str | None = None,
        description: str | None = None,
        priority: Priority | str | None = None,
        category: Category | str | None = None,
        location: str | None = None,
    ) -> Issue:
        def run() -> Issue:
            issue = self._issue(issue_id)
            actor = self._actor(actor_id)
            parsed_priority = parse_enum(Priority, priority, "priority")
            parsed_category = parse_enum(Category, category, "category")
            authorize(actor, Action.EDIT, issue)
            changes = lifecycle.apply_changes(
                issue,
                title=title,
                description=description,
                priority=parsed_priority,
                category=parsed_category,
                location=location,
            )
            if not changes:
                return issue
            issue = self.issues.save(issue)
            self._record(actor, "issue.edit", issue, changes=changes)
            return issue

        return self._with_retry("update_issue", run)

    def assign_issue(self, issue_id: int, assignee_id: int | None, actor_id: int) -> Issue:
        def run() -> Issue:
            issue = self._issue(issue_id)
            actor = self._actor(actor_id)
            assignee = self._account(assignee_id) if assignee_id is not None else None
            authorize(actor, Action.ASSIGN, issue)
            previous = lifecycle.assign(issue, assignee)
            issue = self.issues.save(issue)
            self._record(actor, "issue.assign", issue, **{"from": previous, "to": issue.assignee_id})
            return issue

        return self._with_retry("assign_issue", run)

    def change_status(self, issue_id: int, target_status: IssueStatus | str, actor_id: int) -> Issue:
        def run() -> Issue:
            issue = self._issue(issue_id)
            actor = self._actor(actor_id)
            target = parse_enum(IssueStatus, target_status, "status")
            if target is None:
                raise ValidationError("Status cannot be null")
            authorize(actor, Action.TRANSITION, issue, target_status=target)
            previous = lifecycle.change_status(issue, target)
            issue = self.issues.save(issue)
            self._record(actor, "issue.status_change", issue, **{"from": previous.value, "to": target.value})
            logger.info("Issue %s: %s -> %s by account %s", issue.id, previous.value, target.value, actor.id)
            return issue

        return self._with_retry("change_status", run)

    def delete_issue(self, issue_id: int, actor_id: int) -> Issue:
        def run() -> Issue:
            issue = self._issue(issue_id)
            actor = self._actor(actor_id)
            authorize(actor, Action.DELETE, issue)
            lifecycle.soft_delete(issue)
            issue = self.issues.save(issue)
            self._record(actor, "issue.delete", issue)
            return issue

        return self._with_retry("delete_issue", run)

    def restore_issue(self, issue_id: int, actor_id: int) -> Issue:
        def run() -> Issue:
            issue = self._issue(issue_id)
            actor = self._actor(actor_id)
            authorize(actor, Action.RESTORE, issue)
            lifecycle.restore(issue)
            issue = self.issues.save(issue)
            self._record(actor, "issue.restore", issue)
            return issue

        return self._with_retry("restore_issue", run)

    # ------------------------------------------------------------------
    # reads: visibility denials come back empty, never as errors

    def get_issue(self, issue_id: int, actor_id: int) -> Issue | None:
        actor = self._actor(actor_id)
        issue = self.issues.find_by_id(issue_id)
        if issue is None or not can_view(actor.role, actor.id, issue):
            return None
        return issue

    def list_issues(self, criteria: IssueCriteria | None, actor_id: int) -> list[Issue]:
        actor = self._actor(actor_id)
        criteria = criteria or IssueCriteria()
        if criteria.include_deleted and actor.role != Role.ADMIN:
            criteria = replace(criteria, include_deleted=False)
        return visible_issues(actor, self.issues.find_by_criteria(criteria))
