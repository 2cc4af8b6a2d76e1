"""
Authorization policy for issues.

Every rule is a pure function of (actor role, actor id, issue snapshot,
action); nothing here touches the database. `authorize()` is the gate the
orchestration service calls before any mutation, `visible_issues()` is the
read-path filter.

    Action                  ADMIN  STAFF            CITIZEN reporter  CITIZEN other
    view                    yes    yes              yes               no
    create                  yes    yes              yes               -
    edit fields             yes    yes              only while OPEN   no
    assign / unassign       yes    yes              no                no
    -> IN_PROGRESS          yes    yes              no                no
    -> RESOLVED             yes    current assignee no                no
    -> CLOSED               yes    no               no                no
    soft-delete / restore   yes    no               no                no
"""
from __future__ import annotations

import enum
import logging
from collections.abc import Callable, Iterable
from functools import wraps
from typing import TYPE_CHECKING, Any

from flask import g

from app.portal.errors import Forbidden, InvalidToken
from app.portal.models import Account, Role
from app.portal.modules.issues.models import IssueStatus

if TYPE_CHECKING:
    from app.portal.modules.issues.models import Issue

logger = logging.getLogger(__name__)


class Action(str, enum.Enum):
    VIEW = "view"
    CREATE = "create"
    EDIT = "edit"
    ASSIGN = "assign"
    TRANSITION = "transition"
    DELETE = "delete"
    RESTORE = "restore"


# Who may request each target status. OPEN is never a legal target; ADMIN and
# STAFF may still ask so the lifecycle engine reports the structural error.
_TRANSITION_ROLES: dict[IssueStatus, frozenset[Role]] = {
    IssueStatus.OPEN: frozenset({Role.ADMIN, Role.STAFF}),
    IssueStatus.IN_PROGRESS: frozenset({Role.ADMIN, Role.STAFF}),
    IssueStatus.RESOLVED: frozenset({Role.ADMIN, Role.STAFF}),
    IssueStatus.CLOSED: frozenset({Role.ADMIN}),
}


def can_view(role: Role, actor_id: int | None, issue: "Issue") -> bool:
    if role == Role.ADMIN:
        return True
    if issue.is_deleted:
        return False
    if role == Role.STAFF:
        return True
    return issue.is_reported_by(actor_id)


def can_create(role: Role) -> bool:
    return role in (Role.ADMIN, Role.STAFF, Role.CITIZEN)


def can_edit(role: Role, actor_id: int | None, issue: "Issue") -> bool:
    if role in (Role.ADMIN, Role.STAFF):
        return True
    return issue.is_reported_by(actor_id) and issue.status == IssueStatus.OPEN


def can_assign(role: Role) -> bool:
    return role in (Role.ADMIN, Role.STAFF)


def can_transition(role: Role, actor_id: int | None, issue: "Issue", target: IssueStatus) -> bool:
    if role not in _TRANSITION_ROLES.get(target, frozenset()):
        return False
    # STAFF may only resolve what is assigned to them.
    if target == IssueStatus.RESOLVED and role == Role.STAFF:
        return issue.is_assigned_to(actor_id)
    return True


def can_delete(role: Role) -> bool:
    return role == Role.ADMIN


def can_restore(role: Role) -> bool:
    return role == Role.ADMIN


def is_allowed(
    role: Role,
    actor_id: int | None,
    action: Action,
    issue: "Issue | None" = None,
    target_status: IssueStatus | None = None,
) -> bool:
    if action == Action.CREATE:
        return can_create(role)
    if action == Action.ASSIGN:
        return can_assign(role)
    if action == Action.DELETE:
        return can_delete(role)
    if action == Action.RESTORE:
        return can_restore(role)
    if issue is None:
        raise ValueError(f"Action {action.value!r} needs an issue")
    if action == Action.VIEW:
        return can_view(role, actor_id, issue)
    if action == Action.EDIT:
        return can_edit(role, actor_id, issue)
    if action == Action.TRANSITION:
        if target_status is None:
            raise ValueError("Transition checks need a target status")
        return can_transition(role, actor_id, issue, target_status)
    raise ValueError(f"Unknown action: {action!r}")


def authorize(
    actor: Account,
    action: Action,
    issue: "Issue | None" = None,
    target_status: IssueStatus | None = None,
) -> None:
    """Raise Forbidden unless `actor` may perform `action`."""
    if is_allowed(actor.role, actor.id, action, issue, target_status):
        return
    label = action.value
    if target_status is not None:
        label = f"{label} to {target_status.value}"
    logger.warning(
        "Forbidden: action=%s role=%s actor_id=%s issue_id=%s",
        label,
        actor.role.value,
        actor.id,
        getattr(issue, "id", None),
    )
    raise Forbidden(label, actor.role)


def visible_issues(actor: Account, issues: Iterable["Issue"]) -> list["Issue"]:
    return [i for i in issues if can_view(actor.role, actor.id, i)]


def login_required(fn: Callable[..., Any]) -> Callable[..., Any]:
    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        account: Account | None = getattr(g, "current_user", None)
        if not account or not account.is_active:
            raise InvalidToken("Authentication required")
        return fn(*args, **kwargs)

    return wrapped
