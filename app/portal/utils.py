from __future__ import annotations

from flask import request

from app.portal.errors import ValidationError


def json_body() -> dict:
    """Request JSON as a dict. Missing or unparseable bodies read as empty."""
    body = request.get_json(silent=True)
    if body is None:
        return {}
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object.")
    return body
