from __future__ import annotations

import enum
import re
from typing import TypeVar

from app.portal.errors import ValidationError

EMAIL_RE = re.compile(r"^[A-Za-z0-9+_.-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}$")

NAME_MIN, NAME_MAX = 2, 100
EMAIL_MAX = 255
PASSWORD_MIN, PASSWORD_MAX = 8, 255
TITLE_MIN, TITLE_MAX = 10, 200
DESCRIPTION_MIN, DESCRIPTION_MAX = 20, 2000
LOCATION_MAX = 500

E = TypeVar("E", bound=enum.Enum)


def ensure_strings(**fields: object) -> None:
    """Reject JSON numbers, lists and the like before any text rule runs."""
    for name, value in fields.items():
        if value is not None and not isinstance(value, str):
            raise ValidationError(f"{name.capitalize()} must be a string")


def normalize_email(email: str | None) -> str:
    return (email or "").strip().lower()


def clean_text(value: str | None) -> str | None:
    if value is None:
        return None
    return value.strip()


def _length_errors(label: str, value: str | None, min_len: int | None, max_len: int, suffix: str = "") -> list[str]:
    if value is None or not value.strip():
        return [f"{label} cannot be empty"]
    if min_len is not None and len(value) < min_len:
        return [f"{label} must be at least {min_len} characters{suffix}"]
    if len(value) > max_len:
        return [f"{label} cannot exceed {max_len} characters"]
    return []


def validate_account_fields(name: str | None, email: str | None, password: str | None) -> list[str]:
    """Validate registration input. Returns errors in rule order (name, email, password)."""
    ensure_strings(name=name, email=email, password=password)
    errors = _length_errors("Name", clean_text(name), NAME_MIN, NAME_MAX)

    if not email:
        errors.append("Email cannot be empty")
    elif not EMAIL_RE.match(email):
        errors.append("Email format is invalid")
    elif len(email) > EMAIL_MAX:
        errors.append(f"Email cannot exceed {EMAIL_MAX} characters")

    if not password:
        errors.append("Password cannot be empty")
    elif len(password) < PASSWORD_MIN:
        errors.append(f"Password must be at least {PASSWORD_MIN} characters")
    elif len(password) > PASSWORD_MAX:
        errors.append(f"Password cannot exceed {PASSWORD_MAX} characters")
    return errors


def validate_issue_fields(
    *,
    title: str | None = None,
    description: str | None = None,
    location: str | None = None,
    partial: bool = False,
) -> list[str]:
    """
    Validate issue text fields.

    With partial=True, fields passed as None are treated as "not supplied" and
    skipped, which is what a partial update needs.
    """
    ensure_strings(title=title, description=description, location=location)
    errors: list[str] = []
    if title is not None or not partial:
        errors += _length_errors("Title", clean_text(title), TITLE_MIN, TITLE_MAX, " long")
    if description is not None or not partial:
        errors += _length_errors("Description", clean_text(description), DESCRIPTION_MIN, DESCRIPTION_MAX, " long")
    if location is not None or not partial:
        errors += _length_errors("Location", clean_text(location), None, LOCATION_MAX)
    return errors


def raise_first(errors: list[str]) -> None:
    if errors:
        raise ValidationError(errors[0])


def parse_enum(enum_cls: type[E], value: "str | E | None", label: str) -> E | None:
    """Case-insensitive enum lookup. None/blank passes through as None."""
    if value is None:
        return None
    if isinstance(value, enum_cls):
        return value
    raw = str(value).strip().upper()
    if not raw:
        return None
    try:
        return enum_cls[raw]
    except KeyError:
        allowed = ", ".join(m.name for m in enum_cls)
        raise ValidationError(f"Invalid {label}: {value!r}. Must be one of: {allowed}") from None
