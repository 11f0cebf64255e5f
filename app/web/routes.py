from __future__ import annotations

import json

from flask import (
    Response,
    abort,
    current_app,
    flash,
    g,
    jsonify,
    redirect,
    render_template,
    request,
    session,
    stream_with_context,
    url_for,
)
from flask_login import current_user, login_required
from sqlalchemy.exc import SQLAlchemyError

from app.extensions import db
from app.services.common import format_tags, hostname, is_web_url, parse_timestamp
from app.services.grouping import ExpansionState, group_bookmarks
from app.services.identity import set_session_cookies
from app.services.queries import (
    create_bookmark,
    delete_bookmark,
    get_bookmark,
    get_user,
    list_bookmarks,
    update_bookmark,
    update_user,
)
from app.services.security import AuthenticationRequired, guard_redirect, path_class
from app.services.subscription import BookmarksSubscription
from app.web import web_bp


THEMES = ("system", "light", "dark")


@web_bp.before_app_request
def route_guard():
    if request.endpoint == "static" or path_class(request.path) is None:
        return None
    target = guard_redirect(current_user.is_authenticated, request.path)
    if target:
        return redirect(target)
    return None


@web_bp.after_app_request
def persist_refreshed_session(response):
    refreshed = g.pop("refreshed_session", None)
    if refreshed is not None and not g.get("session_ended"):
        set_session_cookies(response, refreshed)
    return response


@web_bp.app_template_filter("hostname")
def hostname_filter(url: str) -> str:
    return hostname(url or "")


@web_bp.app_template_filter("safe_href")
def safe_href_filter(url: str) -> str:
    return url if is_web_url(url) else "#"


@web_bp.app_template_filter("short_date")
def short_date_filter(value) -> str:
    parsed = parse_timestamp(value)
    if parsed is None:
        return ""
    return f"{parsed:%b} {parsed.day}, {parsed.year}"


@web_bp.app_template_filter("tag_list")
def tag_list_filter(tags) -> str:
    return format_tags(tags)


def _wants_json() -> bool:
    best = request.accept_mimetypes.best_match(["application/json", "text/html"])
    return best == "application/json"


def _action_result(
    error: str | None = None,
    status: int = 200,
    payload: dict | None = None,
    message: str | None = None,
):
    if _wants_json():
        if error:
            return jsonify({"error": error}), status
        return jsonify(payload or {"ok": True}), status

    if error:
        flash(error, "error")
    elif message:
        flash(message, "success")
    return redirect(url_for("web.home"))


def _bookmark_form_values() -> dict:
    return {
        "title": request.form.get("title"),
        "url": request.form.get("url"),
        "description": request.form.get("description"),
        "notes": request.form.get("notes"),
        "category": request.form.get("category"),
        "tags": request.form.get("tags") or "",
    }


def _missing_required(values: dict) -> str | None:
    if not (values.get("title") or "").strip():
        return "Title is required."
    if not (values.get("url") or "").strip():
        return "URL is required."
    if not is_web_url(values["url"]):
        return "URL must start with http:// or https://."
    return None


def _provider_message(exc: SQLAlchemyError) -> str:
    return str(getattr(exc, "orig", None) or exc)


def _sections_html(bookmarks, expansion: ExpansionState) -> str:
    return render_template(
        "_bookmark_sections.html",
        sections=group_bookmarks(bookmarks),
        expansion=expansion,
    )


def _sse_event(event: str, payload: dict) -> str:
    return f"event: {event}\ndata: {json.dumps(payload)}\n\n"


@web_bp.route("/")
def landing():
    return render_template("landing.html", error=request.args.get("error"))


@web_bp.route("/home")
@login_required
def home():
    has_error = False
    try:
        bookmarks = [row.as_dict() for row in list_bookmarks()]
    except SQLAlchemyError:
        current_app.logger.exception("home: failed to fetch bookmarks")
        db.session.rollback()
        bookmarks = []
        has_error = True

    try:
        profile = get_user()
    except SQLAlchemyError:
        current_app.logger.exception("home: failed to load profile")
        db.session.rollback()
        profile = None

    return render_template(
        "home.html",
        bookmarks=bookmarks,
        sections=group_bookmarks(bookmarks),
        expansion=ExpansionState.from_session(session),
        identity=current_user,
        profile=profile,
        has_error=has_error,
    )


@web_bp.route("/home/feed")
@login_required
def home_feed():
    identity = current_user._get_current_object()
    expansion = ExpansionState.from_session(session)
    heartbeat = float(current_app.config["FEED_HEARTBEAT_SECONDS"])

    def stream():
        with BookmarksSubscription(identity) as live:
            yield _sse_event(
                "status", {"subscribed": live.is_subscribed, "error": live.has_error}
            )
            yield _sse_event(
                "render",
                {
                    "count": len(live.bookmarks),
                    "html": _sections_html(live.bookmarks, expansion),
                },
            )
            while live.is_subscribed:
                applied = live.pump(timeout=heartbeat)
                # Release the read transaction between polls.
                db.session.commit()
                if applied:
                    yield _sse_event(
                        "render",
                        {
                            "count": len(live.bookmarks),
                            "html": _sections_html(live.bookmarks, expansion),
                        },
                    )
                else:
                    yield ": keep-alive\n\n"
            yield _sse_event("status", {"subscribed": False, "error": live.has_error})

    return Response(
        stream_with_context(stream()),
        mimetype="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@web_bp.route("/home/bookmarks", methods=["POST"])
@login_required
def bookmarks_create():
    values = _bookmark_form_values()
    error = _missing_required(values)
    if error:
        return _action_result(error=error, status=400)

    try:
        bookmark = create_bookmark(values)
    except AuthenticationRequired as exc:
        return _action_result(error=exc.message, status=401)
    except SQLAlchemyError as exc:
        current_app.logger.error("create bookmark failed: %s", exc)
        return _action_result(error=_provider_message(exc), status=500)

    return _action_result(
        payload={"id": bookmark.id}, status=201, message="Bookmark saved."
    )


@web_bp.route("/home/bookmarks/<bookmark_id>/edit")
@login_required
def bookmarks_edit(bookmark_id: str):
    item = get_bookmark(bookmark_id)
    if item is None:
        abort(404)
    return render_template("bookmark_form.html", item=item.as_dict())


@web_bp.route("/home/bookmarks/<bookmark_id>", methods=["POST"])
@login_required
def bookmarks_update(bookmark_id: str):
    values = _bookmark_form_values()
    error = _missing_required(values)
    if error:
        return _action_result(error=error, status=400)

    try:
        bookmark = update_bookmark(bookmark_id, values)
    except AuthenticationRequired as exc:
        return _action_result(error=exc.message, status=401)
    except SQLAlchemyError as exc:
        current_app.logger.error("update bookmark failed: %s", exc)
        return _action_result(error=_provider_message(exc), status=500)

    if bookmark is None:
        return _action_result(error="Bookmark not found.", status=404)
    return _action_result(
        payload={"id": bookmark.id}, message="Bookmark updated."
    )


@web_bp.route("/home/bookmarks/<bookmark_id>/delete", methods=["POST"])
@login_required
def bookmarks_delete(bookmark_id: str):
    try:
        deleted = delete_bookmark(bookmark_id)
    except AuthenticationRequired as exc:
        return _action_result(error=exc.message, status=401)
    except SQLAlchemyError as exc:
        current_app.logger.error("delete bookmark failed: %s", exc)
        return _action_result(error=_provider_message(exc), status=500)

    if not deleted:
        return _action_result(error="Bookmark not found.", status=404)
    return _action_result(payload={"deleted": deleted}, message="Bookmark deleted.")


@web_bp.route("/home/categories/toggle", methods=["POST"])
@login_required
def categories_toggle():
    key = (request.form.get("key") or "").strip().lower()
    if not key:
        return _action_result(error="Category is required.", status=400)
    expansion = ExpansionState.from_session(session)
    expanded = expansion.toggle(key)
    expansion.save(session)
    return _action_result(payload={"key": key, "expanded": expanded})


@web_bp.route("/home/profile", methods=["GET", "POST"])
@login_required
def profile():
    if request.method == "POST":
        theme = (request.form.get("theme") or "").strip() or None
        if theme is not None and theme not in THEMES:
            flash("Unknown theme.", "error")
            return redirect(url_for("web.profile"))
        try:
            updated = update_user(
                {
                    "full_name": request.form.get("full_name"),
                    "bio": request.form.get("bio"),
                    "theme": theme,
                }
            )
        except SQLAlchemyError as exc:
            current_app.logger.error("profile update failed: %s", exc)
            flash(_provider_message(exc), "error")
            return redirect(url_for("web.profile"))
        if updated is None:
            flash("Profile not found. Sign out and back in to create it.", "error")
        else:
            flash("Profile updated.", "success")
        return redirect(url_for("web.profile"))

    return render_template(
        "profile.html", profile=get_user(), identity=current_user, themes=THEMES
    )
