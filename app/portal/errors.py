"""
Typed errors raised by the portal core.

Each error carries an HTTP status code so the JSON surface can render it
without a lookup table; the core itself never looks at it.
"""
from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from app.portal.models import Role
    from app.portal.modules.issues.models import IssueStatus


class PortalError(Exception):
    """Base class for every error the portal surfaces to callers."""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, Any]:
        return {"error": type(self).__name__, "message": self.message}


class ValidationError(PortalError):
    pass


class DuplicateIdentifier(PortalError):
    status_code = 409

    def __init__(self, email: str):
        super().__init__(f"Email already exists: {email}")
        self.email = email


# Same message for unknown email and wrong password.
class InvalidCredentials(PortalError):
    status_code = 401

    def __init__(self) -> None:
        super().__init__("Invalid email or password")


class AccountDeactivated(PortalError):
    status_code = 403

    def __init__(self) -> None:
        super().__init__("User account has been deleted")


class InvalidToken(PortalError):
    status_code = 401

    def __init__(self, message: str = "Invalid or expired token"):
        super().__init__(message)


class AccountNotFound(PortalError):
    status_code = 404

    def __init__(self, account_id: Any):
        super().__init__(f"User with ID {account_id} not found")
        self.account_id = account_id


class IssueNotFound(PortalError):
    status_code = 404

    def __init__(self, issue_id: Any):
        super().__init__(f"Issue with ID {issue_id} not found")
        self.issue_id = issue_id


class Forbidden(PortalError):
    status_code = 403

    def __init__(self, action: str, role: "Role | None", message: str | None = None):
        role_name = role.value if role is not None else "anonymous"
        super().__init__(message or f"Role {role_name} is not allowed to {action} this issue")
        self.action = action
        self.role = role


class LifecycleError(PortalError):
    """Structural violation of the issue lifecycle."""

    status_code = 409


class InvalidTransition(LifecycleError):
    def __init__(
        self,
        current_status: "IssueStatus",
        requested_status: "IssueStatus",
        allowed: "list[IssueStatus] | None" = None,
    ):
        allowed = allowed or []
        msg = f"Invalid status transition: {current_status.value} -> {requested_status.value}."
        if allowed:
            msg += f" From {current_status.value} the only next status is {', '.join(s.value for s in allowed)}."
        else:
            msg += f" {current_status.value} is terminal."
        super().__init__(msg)
        self.current_status = current_status
        self.requested_status = requested_status
        self.allowed = allowed


class IssueLocked(LifecycleError):
    def __init__(self, message: str = "Cannot update closed issue"):
        super().__init__(message)


class IssueDeleted(LifecycleError):
    def __init__(self, message: str = "Cannot update deleted issue"):
        super().__init__(message)


class InvalidAssignee(LifecycleError):
    status_code = 400

    def __init__(self, message: str = "Issues can only be assigned to STAFF users"):
        super().__init__(message)


class AlreadyDeleted(LifecycleError):
    def __init__(self) -> None:
        super().__init__("Issue is already deleted")


class NotDeleted(LifecycleError):
    def __init__(self) -> None:
        super().__init__("Issue is not deleted")


class ConcurrentModification(PortalError):
    """Another writer committed the same issue first; safe to retry."""

    status_code = 409

    def __init__(self, entity_id: Any = None):
        super().__init__(f"Issue {entity_id} was modified concurrently; retry the request")
        self.entity_id = entity_id
