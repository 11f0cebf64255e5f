from __future__ import annotations

from flask import current_app, g, jsonify, request
from sqlalchemy.exc import SQLAlchemyError

from app.api import api_bp
from app.extensions import db
from app.services.common import is_web_url
from app.services.feed import feed
from app.services.queries import (
    PROFILE_FIELDS,
    create_bookmark,
    create_category,
    delete_bookmark,
    delete_category,
    get_bookmark,
    get_user,
    list_bookmarks,
    list_categories,
    search_bookmarks,
    update_bookmark,
    update_category,
    update_user,
)
from app.services.security import AuthenticationRequired, api_auth_required


@api_bp.errorhandler(AuthenticationRequired)
def handle_authentication_required(exc: AuthenticationRequired):
    return jsonify({"error": exc.message}), 401


@api_bp.errorhandler(SQLAlchemyError)
def handle_provider_error(exc: SQLAlchemyError):
    db.session.rollback()
    current_app.logger.error("api: provider error: %s", exc)
    return jsonify({"error": str(getattr(exc, "orig", None) or exc)}), 500


def _payload() -> dict:
    payload = request.get_json(silent=True)
    return payload if isinstance(payload, dict) else {}


BOOKMARK_TEXT_FIELDS = ("title", "url", "description", "notes", "category")
CATEGORY_TEXT_FIELDS = ("name", "color")


def _non_text_field(payload: dict, fields) -> str | None:
    for field in fields:
        value = payload.get(field)
        if value is not None and not isinstance(value, str):
            return f"{field} must be a string"
    return None


def _bookmark_payload_error(payload: dict) -> str | None:
    error = _non_text_field(payload, BOOKMARK_TEXT_FIELDS)
    if error:
        return error
    tags = payload.get("tags")
    if tags is not None and not isinstance(tags, str):
        if not isinstance(tags, list) or not all(isinstance(tag, str) for tag in tags):
            return "tags must be a string or a list of strings"
    for field in ("title", "url"):
        if not (payload.get(field) or "").strip():
            return f"{field} is required"
    if not is_web_url(payload["url"]):
        return "url must be an http or https URL"
    return None


@api_bp.route("/bookmarks", methods=["GET"])
@api_auth_required
def bookmarks_list():
    q = (request.args.get("q") or "").strip()
    rows = search_bookmarks(q, g.api_identity) if q else list_bookmarks(g.api_identity)
    return jsonify({"q": q, "items": [row.as_dict() for row in rows]})


@api_bp.route("/bookmarks", methods=["POST"])
@api_auth_required
def bookmarks_create():
    payload = _payload()
    error = _bookmark_payload_error(payload)
    if error:
        return jsonify({"error": error}), 400
    bookmark = create_bookmark(payload, g.api_identity)
    return jsonify(bookmark.as_dict()), 201


@api_bp.route("/bookmarks/changes", methods=["GET"])
@api_auth_required
def bookmarks_changes():
    since = request.args.get("since", default=0, type=int)
    limit = max(1, min(request.args.get("limit", default=500, type=int), 1000))
    events = feed.read(g.api_identity.id, since, limit=limit)
    cursor = events[-1].cursor if events else since
    return jsonify(
        {"cursor": cursor, "items": [event.as_dict() for event in events]}
    )


@api_bp.route("/bookmarks/<bookmark_id>", methods=["GET"])
@api_auth_required
def bookmarks_get(bookmark_id: str):
    bookmark = get_bookmark(bookmark_id, g.api_identity)
    if bookmark is None:
        return jsonify({"error": "bookmark not found"}), 404
    return jsonify(bookmark.as_dict())


@api_bp.route("/bookmarks/<bookmark_id>", methods=["PUT"])
@api_auth_required
def bookmarks_update(bookmark_id: str):
    payload = _payload()
    error = _bookmark_payload_error(payload)
    if error:
        return jsonify({"error": error}), 400
    bookmark = update_bookmark(bookmark_id, payload, g.api_identity)
    if bookmark is None:
        return jsonify({"error": "bookmark not found"}), 404
    return jsonify(bookmark.as_dict())


@api_bp.route("/bookmarks/<bookmark_id>", methods=["DELETE"])
@api_auth_required
def bookmarks_delete(bookmark_id: str):
    if not delete_bookmark(bookmark_id, g.api_identity):
        return jsonify({"error": "bookmark not found"}), 404
    return jsonify({"deleted": True})


@api_bp.route("/categories", methods=["GET"])
@api_auth_required
def categories_list():
    rows = list_categories(g.api_identity)
    return jsonify({"items": [row.as_dict() for row in rows]})


@api_bp.route("/categories", methods=["POST"])
@api_auth_required
def categories_create():
    payload = _payload()
    error = _non_text_field(payload, CATEGORY_TEXT_FIELDS)
    if error:
        return jsonify({"error": error}), 400
    if not (payload.get("name") or "").strip():
        return jsonify({"error": "name is required"}), 400
    category = create_category(payload, g.api_identity)
    return jsonify(category.as_dict()), 201


@api_bp.route("/categories/<category_id>", methods=["PUT"])
@api_auth_required
def categories_update(category_id: str):
    payload = _payload()
    error = _non_text_field(payload, CATEGORY_TEXT_FIELDS)
    if error:
        return jsonify({"error": error}), 400
    if "name" in payload and not (payload.get("name") or "").strip():
        return jsonify({"error": "name is required"}), 400
    category = update_category(category_id, payload, g.api_identity)
    if category is None:
        return jsonify({"error": "category not found"}), 404
    return jsonify(category.as_dict())


@api_bp.route("/categories/<category_id>", methods=["DELETE"])
@api_auth_required
def categories_delete(category_id: str):
    if not delete_category(category_id, g.api_identity):
        return jsonify({"error": "category not found"}), 404
    return jsonify({"deleted": True})


@api_bp.route("/me", methods=["GET"])
@api_auth_required
def me():
    profile = get_user(g.api_identity)
    if profile is None:
        return jsonify({"error": "profile not found"}), 404
    return jsonify(profile.as_dict())


@api_bp.route("/me", methods=["PATCH"])
@api_auth_required
def me_update():
    payload = _payload()
    # id and email are owned by the identity provider.
    payload.pop("id", None)
    payload.pop("email", None)
    error = _non_text_field(payload, PROFILE_FIELDS)
    if error:
        return jsonify({"error": error}), 400
    profile = update_user(payload, g.api_identity)
    if profile is None:
        return jsonify({"error": "profile not found"}), 404
    return jsonify(profile.as_dict())
