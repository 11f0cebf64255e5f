from urllib.parse import quote

from flask import current_app, g, jsonify, redirect, request
from flask_login import current_user
from sqlalchemy.exc import SQLAlchemyError

from app.auth import auth_bp
from app.services.common import safe_redirect_target
from app.services.identity import (
    CODE_VERIFIER_COOKIE,
    IdentityError,
    clear_code_verifier_cookie,
    clear_session_cookies,
    code_challenge,
    generate_code_verifier,
    identity_client,
    set_code_verifier_cookie,
    set_session_cookies,
)
from app.services.profiles import upsert_profile


OAUTH_PROVIDER = "google"
OAUTH_QUERY_PARAMS = {"access_type": "offline", "prompt": "consent"}


def _error_redirect(reason: str):
    return redirect(f"/?error={quote(reason, safe='')}")


@auth_bp.route("/auth/login")
def login():
    site_url = current_app.config["SITE_URL"].rstrip("/")
    verifier = generate_code_verifier()
    try:
        authorize_url = identity_client().authorize_url(
            OAUTH_PROVIDER,
            redirect_to=f"{site_url}/auth/callback",
            challenge=code_challenge(verifier),
            query_params=OAUTH_QUERY_PARAMS,
        )
    except IdentityError as exc:
        current_app.logger.error("auth/login: %s", exc.message)
        return jsonify({"error": "Failed to initiate Google sign-in."}), 500

    response = redirect(authorize_url)
    set_code_verifier_cookie(response, verifier)
    return response


@auth_bp.route("/auth/callback")
def callback():
    code = request.args.get("code")
    next_url = safe_redirect_target(request.args.get("next"), "/home")

    if not code:
        current_app.logger.error("auth/callback: missing code in callback URL")
        return _error_redirect("missing_oauth_code")

    verifier = request.cookies.get(CODE_VERIFIER_COOKIE) or ""
    try:
        session = identity_client().exchange_code_for_session(code, verifier)
    except IdentityError as exc:
        current_app.logger.error("auth/callback: code exchange failed: %s", exc.message)
        return _error_redirect(exc.message)

    if session.user is None:
        current_app.logger.error("auth/callback: no user returned after exchange")
        return _error_redirect("no_user_after_exchange")

    try:
        upsert_profile(session.user)
    except SQLAlchemyError as exc:
        # The session stays valid; the profile retry job fills the row later.
        current_app.logger.error("auth/callback: profile upsert failed: %s", exc)

    response = redirect(next_url)
    set_session_cookies(response, session)
    clear_code_verifier_cookie(response)
    return response


@auth_bp.route("/auth/logout", methods=["POST"])
def logout():
    if current_user.is_authenticated and current_user.access_token:
        try:
            identity_client().sign_out(current_user.access_token)
        except IdentityError as exc:
            current_app.logger.error("auth/logout: sign out failed: %s", exc.message)

    g.session_ended = True
    response = redirect("/")
    clear_session_cookies(response)
    return response
