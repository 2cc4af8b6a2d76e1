"""
Issue JSON routes.
Thin HTTP shaping around IssueService; all rules live in the service.
"""
from __future__ import annotations

from datetime import datetime
from functools import partial

from flask import Blueprint, g, jsonify, request

from app.portal.audit import record_event
from app.portal.db import db_session
from app.portal.errors import IssueNotFound, ValidationError
from app.portal.models import Account
from app.portal.rbac import login_required
from app.portal.stores import IssueCriteria, SqlCredentialStore, SqlIssueStore
from app.portal.utils import json_body
from app.portal.validation import parse_enum

from .models import Category, Issue, IssueStatus, Priority
from .service import IssueService

bp = Blueprint("issues", __name__)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _account_summary(account: Account | None) -> dict | None:
    if account is None:
        return None
    return {"id": account.id, "name": account.name, "email": account.email}


def issue_to_dict(issue: Issue) -> dict:
    return {
        "id": issue.id,
        "title": issue.title,
        "description": issue.description,
        "status": issue.status.value,
        "priority": issue.priority.value,
        "category": issue.category.value,
        "location": issue.location,
        "reporter": _account_summary(issue.reporter),
        "assignee": _account_summary(issue.assignee),
        "created_at": _iso(issue.created_at),
        "updated_at": _iso(issue.updated_at),
        "resolved_at": _iso(issue.resolved_at),
        "closed_at": _iso(issue.closed_at),
        "deleted_at": _iso(issue.deleted_at),
    }


def _service() -> IssueService:
    s = db_session()
    return IssueService(SqlIssueStore(s), SqlCredentialStore(s), audit=partial(record_event, s))


def _int_arg(name: str) -> int | None:
    raw = (request.args.get(name) or "").strip()
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError:
        raise ValidationError(f"{name} must be an integer") from None


def _criteria_from_args() -> IssueCriteria:
    return IssueCriteria(
        status=parse_enum(IssueStatus, request.args.get("status"), "status"),
        priority=parse_enum(Priority, request.args.get("priority"), "priority"),
        category=parse_enum(Category, request.args.get("category"), "category"),
        reporter_id=_int_arg("reporter_id"),
        assignee_id=_int_arg("assignee_id"),
        include_deleted=(request.args.get("include_deleted") or "").strip().lower() in ("1", "true", "yes"),
    )


@bp.get("")
@login_required
def issues_list():
    issues = _service().list_issues(_criteria_from_args(), g.current_user.id)
    return jsonify([issue_to_dict(i) for i in issues])


@bp.post("")
@login_required
def issues_create():
    body = json_body()
    s = db_session()
    issue = _service().create_issue(
        title=body.get("title"),
        description=body.get("description"),
        category=body.get("category"),
        priority=body.get("priority"),
        location=body.get("location"),
        reporter_id=g.current_user.id,
    )
    s.commit()
    return jsonify(issue_to_dict(issue)), 201


@bp.get("/<int:issue_id>")
@login_required
def issues_detail(issue_id: int):
    issue = _service().get_issue(issue_id, g.current_user.id)
    if issue is None:
        raise IssueNotFound(issue_id)
    return jsonify(issue_to_dict(issue))


@bp.put("/<int:issue_id>")
@login_required
def issues_update(issue_id: int):
    body = json_body()
    s = db_session()
    issue = _service().update_issue(
        issue_id,
        g.current_user.id,
        title=body.get("title"),
        description=body.get("description"),
        priority=body.get("priority"),
        category=body.get("category"),
        location=body.get("location"),
    )
    s.commit()
    return jsonify(issue_to_dict(issue))


@bp.patch("/<int:issue_id>/assign")
@login_required
def issues_assign(issue_id: int):
    body = json_body()
    if "assignee_id" not in body:
        raise ValidationError("assignee_id is required (null to unassign)")
    assignee_id = body.get("assignee_id")
    if assignee_id is not None and (isinstance(assignee_id, bool) or not isinstance(assignee_id, int)):
        raise ValidationError("assignee_id must be an integer or null")
    s = db_session()
    issue = _service().assign_issue(issue_id, assignee_id, g.current_user.id)
    s.commit()
    return jsonify(issue_to_dict(issue))


@bp.patch("/<int:issue_id>/status")
@login_required
def issues_change_status(issue_id: int):
    body = json_body()
    s = db_session()
    issue = _service().change_status(issue_id, body.get("status"), g.current_user.id)
    s.commit()
    return jsonify(issue_to_dict(issue))


@bp.delete("/<int:issue_id>")
@login_required
def issues_delete(issue_id: int):
    s = db_session()
    _service().delete_issue(issue_id, g.current_user.id)
    s.commit()
    return "", 204


@bp.post("/<int:issue_id>/restore")
@login_required
def issues_restore(issue_id: int):
    s = db_session()
    issue = _service().restore_issue(issue_id, g.current_user.id)
    s.commit()
    return jsonify(issue_to_dict(issue))
