from __future__ import annotations

import re
from typing import Any, Dict, List

from flask import current_app, jsonify, request
from flask_login import current_user, login_required

from ..api_utils import api_error, json_payload
from ..services.draft_store import (
    DRAFT_PREFIX,
    LocalDraftStore,
    LocalStorageItem,
    StorageUnavailableError,
    SyncStatus,
)
from . import bp

_DRAFT_ID = re.compile(r"[\w-]{1,64}")


def _store() -> LocalDraftStore:
    return current_app.extensions["draft_store"]


def _store_id(draft_id: str) -> str:
    return f"{current_user.id}-{draft_id}"


def _user_prefix() -> str:
    return f"{DRAFT_PREFIX}{current_user.id}-"


def _owned(item: LocalStorageItem) -> bool:
    meta = item.meta or {}
    return str(meta.get("ownerId")) == str(current_user.id)


def _serialize(item: LocalStorageItem) -> Dict[str, Any]:
    payload = item.to_dict()
    prefix = _user_prefix()
    if item.key.startswith(prefix):
        payload["draftId"] = item.key[len(prefix):]
    return payload


def _serialize_all(items: List[LocalStorageItem]) -> List[Dict[str, Any]]:
    return [_serialize(item) for item in items if _owned(item)]


@bp.before_request
def _check_draft_id():
    draft_id = (request.view_args or {}).get("draft_id")
    if draft_id is not None and not _DRAFT_ID.fullmatch(draft_id):
        return api_error("Invalid request", "Draft ids may only contain letters, digits, '_' and '-'.", 400)
    return None


@bp.route("", methods=["GET"])
@login_required
def list_drafts():
    prefix = _user_prefix()
    drafts = [item for item in _store().get_all_drafts() if item.key.startswith(prefix)]
    return jsonify({"drafts": _serialize_all(drafts)})


@bp.route("/pending", methods=["GET"])
@login_required
def pending_drafts():
    store = _store()
    return jsonify(
        {
            "pending": _serialize_all(store.get_pending_items()),
            "conflicts": _serialize_all(store.get_conflict_items()),
        }
    )


@bp.route("/storage", methods=["GET"])
@login_required
def storage_status():
    availability = _store().check_storage_availability()
    return jsonify({"available": availability.available, "remaining": availability.remaining})


@bp.route("/<draft_id>", methods=["PUT"])
@login_required
def save_draft(draft_id: str):
    payload = json_payload()
    if "content" not in payload:
        return api_error("Invalid request", "Provide the draft content.", 400)

    extra_meta = payload.get("meta") if isinstance(payload.get("meta"), dict) else {}
    meta = {**extra_meta, "ownerId": current_user.id}
    try:
        item = _store().save_draft(_store_id(draft_id), payload.get("content"), meta)
    except StorageUnavailableError as exc:
        return api_error("Storage unavailable", str(exc), 507)
    return jsonify({"draft": _serialize(item)})


@bp.route("/<draft_id>", methods=["GET"])
@login_required
def get_draft(draft_id: str):
    item = _store().get_item(f"{DRAFT_PREFIX}{_store_id(draft_id)}")
    if item is None or not _owned(item):
        return api_error("Not found", "We couldn't find that draft.", 404)
    return jsonify({"draft": _serialize(item)})


@bp.route("/<draft_id>", methods=["DELETE"])
@login_required
def delete_draft(draft_id: str):
    store = _store()
    key = f"{DRAFT_PREFIX}{_store_id(draft_id)}"
    item = store.get_item(key)
    if item is None or not _owned(item):
        return api_error("Not found", "We couldn't find that draft.", 404)
    if not store.remove_item(key):
        return api_error("Storage unavailable", "The draft could not be removed.", 507)
    return jsonify({"message": "Draft deleted.", "draftId": draft_id})


@bp.route("/<draft_id>/sync-status", methods=["POST"])
@login_required
def update_sync_status(draft_id: str):
    payload = json_payload()
    try:
        status = SyncStatus(payload.get("status"))
    except ValueError:
        allowed = ", ".join(member.value for member in SyncStatus)
        return api_error("Invalid request", f"status must be one of: {allowed}.", 400)

    store = _store()
    key = f"{DRAFT_PREFIX}{_store_id(draft_id)}"
    item = store.get_item(key)
    if item is None or not _owned(item):
        return api_error("Not found", "We couldn't find that draft.", 404)
    if not store.update_sync_status(key, status):
        return api_error("Storage unavailable", "The sync status could not be saved.", 507)
    return jsonify({"draft": _serialize(store.get_item(key))})
