"""
Issue lifecycle rules.

Enforces the structural side of every issue mutation, independent of who is
asking (that is rbac.py's job):
- Status only moves forward one step: OPEN -> IN_PROGRESS -> RESOLVED -> CLOSED
- CLOSED is terminal; closed issues can no longer be edited or assigned
- Soft-deleted issues reject every mutation except restore
- Only STAFF accounts can be assignees
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from app.portal.errors import (
    AlreadyDeleted,
    InvalidAssignee,
    InvalidTransition,
    IssueDeleted,
    IssueLocked,
    NotDeleted,
    ValidationError,
)
from app.portal.models import Account, Role
from app.portal.validation import clean_text, raise_first, validate_issue_fields

from .models import Category, Issue, IssueStatus, Priority

logger = logging.getLogger(__name__)


# Maps current status -> the statuses it may move to.
TRANSITION_MATRIX: dict[IssueStatus, list[IssueStatus]] = {
    IssueStatus.OPEN: [IssueStatus.IN_PROGRESS],
    IssueStatus.IN_PROGRESS: [IssueStatus.RESOLVED],
    IssueStatus.RESOLVED: [IssueStatus.CLOSED],
    IssueStatus.CLOSED: [],
}

EDITABLE_FIELDS = ("title", "description", "priority", "category", "location")


def _now() -> datetime:
    return datetime.utcnow()


def allowed_transitions(current: IssueStatus) -> list[IssueStatus]:
    return list(TRANSITION_MATRIX.get(current, []))


def is_transition_valid(current: IssueStatus, requested: IssueStatus) -> bool:
    return requested in TRANSITION_MATRIX.get(current, [])


def validate_transition(current: IssueStatus, requested: IssueStatus) -> None:
    """Raise InvalidTransition unless `requested` is the single next step (same-state included)."""
    if is_transition_valid(current, requested):
        return
    err = InvalidTransition(current, requested, allowed_transitions(current))
    logger.warning("Blocked transition: %s", err.message)
    raise err


def new_issue(
    *,
    title: str | None,
    description: str | None,
    category: Category | None,
    location: str | None,
    reporter: Account,
    priority: Priority | None = None,
    now: datetime | None = None,
) -> Issue:
    """Validating factory: a fresh OPEN issue, not yet persisted."""
    raise_first(validate_issue_fields(title=title, description=description, location=location))
    if category is None:
        raise ValidationError("Category cannot be null")

    now = now or _now()
    return Issue(
        title=clean_text(title),
        description=clean_text(description),
        location=clean_text(location),
        category=category,
        priority=priority or Priority.MEDIUM,
        status=IssueStatus.OPEN,
        reporter_id=reporter.id,
        reporter=reporter,
        assignee_id=None,
        created_at=now,
        updated_at=now,
    )


def ensure_mutable(issue: Issue, *, deleted_message: str, closed_message: str) -> None:
    if issue.is_deleted:
        raise IssueDeleted(deleted_message)
    if issue.is_closed:
        raise IssueLocked(closed_message)


def apply_changes(
    issue: Issue,
    *,
    title: str | None = None,
    description: str | None = None,
    priority: Priority | None = None,
    category: Category | None = None,
    location: str | None = None,
    now: datetime | None = None,
) -> dict[str, dict[str, Any]]:
    """
    Partial update: None means "leave as is".

    Returns {field: {"old": ..., "new": ...}} for the fields that actually changed.
    """
    ensure_mutable(issue, deleted_message="Cannot update deleted issue", closed_message="Cannot update closed issue")
    raise_first(validate_issue_fields(title=title, description=description, location=location, partial=True))

    incoming = {
        "title": clean_text(title),
        "description": clean_text(description),
        "priority": priority,
        "category": category,
        "location": clean_text(location),
    }
    changes: dict[str, dict[str, Any]] = {}
    for field in EDITABLE_FIELDS:
        new_value = incoming[field]
        if new_value is None:
            continue
        old_value = getattr(issue, field)
        if new_value != old_value:
            changes[field] = {"old": getattr(old_value, "value", old_value), "new": getattr(new_value, "value", new_value)}
            setattr(issue, field, new_value)

    if changes:
        issue.updated_at = now or _now()
    return changes


def change_status(issue: Issue, target: IssueStatus, now: datetime | None = None) -> IssueStatus:
    """Advance `issue` to `target`. Returns the previous status."""
    if issue.is_deleted:
        raise IssueDeleted("Cannot change status of deleted issue")
    validate_transition(issue.status, target)

    now = now or _now()
    previous = issue.status
    issue.status = target
    if target == IssueStatus.RESOLVED:
        issue.resolved_at = now
    elif target == IssueStatus.CLOSED:
        issue.closed_at = now
    issue.updated_at = now
    return previous


def assign(issue: Issue, assignee: Account | None, now: datetime | None = None) -> int | None:
    """Set or clear the assignee. Returns the previous assignee id."""
    ensure_mutable(issue, deleted_message="Cannot assign deleted issue", closed_message="Cannot assign closed issue")
    if assignee is not None:
        if assignee.role != Role.STAFF:
            raise InvalidAssignee(f"Issues can only be assigned to STAFF users (account {assignee.id} is {assignee.role.value})")
        if not assignee.is_active:
            raise InvalidAssignee(f"Account {assignee.id} is deactivated and cannot be assigned")

    previous = issue.assignee_id
    issue.assignee_id = assignee.id if assignee is not None else None
    issue.assignee = assignee
    issue.updated_at = now or _now()
    return previous


def soft_delete(issue: Issue, now: datetime | None = None) -> None:
    if issue.is_deleted:
        raise AlreadyDeleted()
    now = now or _now()
    issue.deleted_at = now
    issue.updated_at = now


def restore(issue: Issue, now: datetime | None = None) -> None:
    if not issue.is_deleted:
        raise NotDeleted()
    issue.deleted_at = None
    issue.updated_at = now or _now()
