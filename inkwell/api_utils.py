"""Shared helpers for the JSON blueprints."""
from __future__ import annotations

from typing import Any, Dict, Optional

from flask import Blueprint, abort, jsonify, request
from flask_login import current_user
from werkzeug.exceptions import HTTPException

from .extensions import db
from .models import Story


def api_error(error: str, message: str, status: int):
    return jsonify({"error": error, "message": message}), status


def json_payload() -> Dict[str, Any]:
    payload = request.get_json(silent=True)
    return payload if isinstance(payload, dict) else {}


def load_owned_story(story_id: int) -> Story:
    story = db.get_or_404(Story, story_id)
    if story.owner_id != current_user.id:
        abort(403)
    return story


def clean_text(value: Any) -> Optional[str]:
    """Return stripped text, or ``None`` for blank and missing values."""

    if value is None:
        return None
    text = value if isinstance(value, str) else str(value)
    return text.strip() or None


def register_json_errors(bp: Blueprint) -> None:
    """Render ``abort`` calls inside ``bp`` as JSON instead of HTML pages."""

    @bp.errorhandler(400)
    @bp.errorhandler(403)
    @bp.errorhandler(404)
    def _json_error(exc: HTTPException):
        return api_error(exc.name, exc.description or exc.name, exc.code or 500)
