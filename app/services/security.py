import json
from functools import wraps

from flask import (
    current_app,
    g,
    has_request_context,
    jsonify,
    redirect,
    request,
    url_for,
)
from flask_login import current_user
from sqlalchemy import text

from app.extensions import db, login_manager
from app.services.identity import (
    ACCESS_TOKEN_COOKIE,
    REFRESH_TOKEN_COOKIE,
    IdentityError,
    identity_client,
)


LANDING_PATH = "/"
HOME_PATH = "/home"

PATH_LANDING = "public-landing"
PATH_PROTECTED = "protected"


class AuthenticationRequired(Exception):
    def __init__(self, message: str = "authentication required"):
        super().__init__(message)
        self.message = message


def path_class(path: str) -> str | None:
    if path == LANDING_PATH:
        return PATH_LANDING
    if path == HOME_PATH or path.startswith(f"{HOME_PATH}/"):
        return PATH_PROTECTED
    return None


def guard_redirect(authenticated: bool, path: str) -> str | None:
    kind = path_class(path)
    if kind == PATH_PROTECTED and not authenticated:
        return LANDING_PATH
    if kind == PATH_LANDING and authenticated:
        return HOME_PATH
    return None


def _bearer_token(req) -> str | None:
    auth_header = req.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        return None
    return auth_header.removeprefix("Bearer ").strip() or None


@login_manager.request_loader
def load_identity(req):
    bearer = _bearer_token(req)
    token = bearer or req.cookies.get(ACCESS_TOKEN_COOKIE)
    if not token:
        return None

    try:
        client = identity_client()
    except IdentityError as exc:
        current_app.logger.error("cannot verify session: %s", exc.message)
        return None

    try:
        return client.get_user(token)
    except IdentityError as exc:
        refresh_token = None if bearer else req.cookies.get(REFRESH_TOKEN_COOKIE)
        if exc.status_code not in {401, 403} or not refresh_token:
            current_app.logger.info("session rejected: %s", exc.message)
            return None

    try:
        session = client.refresh_session(refresh_token)
    except IdentityError as exc:
        current_app.logger.info("session refresh failed: %s", exc.message)
        return None
    g.refreshed_session = session
    return session.user


@login_manager.unauthorized_handler
def unauthorized():
    if request.blueprint == "api":
        return jsonify({"error": "authentication required"}), 401
    return redirect(url_for("web.landing"))


def get_authenticated_identity():
    if current_user.is_authenticated:
        return current_user._get_current_object()
    return None


def resolve_identity(identity=None):
    if identity is not None and getattr(identity, "id", None):
        return identity
    if has_request_context():
        current = get_authenticated_identity()
        if current is not None:
            return current
    raise AuthenticationRequired()


def scope_session_to_owner(owner_id: str) -> None:
    """Run the rest of the current transaction as the owner under row-level security."""
    if not current_app.config.get("DB_ROW_LEVEL_SECURITY"):
        return
    if db.engine.dialect.name != "postgresql":
        return
    claims = json.dumps({"sub": owner_id, "role": "authenticated"})
    db.session.execute(
        text("SELECT set_config('request.jwt.claims', :claims, true)"),
        {"claims": claims},
    )
    db.session.execute(text("SET LOCAL ROLE authenticated"))


def api_auth_required(func):
    @wraps(func)
    def wrapped(*args, **kwargs):
        identity = get_authenticated_identity()
        if identity is None:
            return jsonify({"error": "authentication required"}), 401
        g.api_identity = identity
        return func(*args, **kwargs)

    return wrapped
