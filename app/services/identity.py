from __future__ import annotations

import base64
import hashlib
import secrets
from dataclasses import dataclass, field
from urllib.parse import urlencode

import httpx
from flask import current_app
from flask_login import UserMixin


ACCESS_TOKEN_COOKIE = "sb-access-token"
REFRESH_TOKEN_COOKIE = "sb-refresh-token"
CODE_VERIFIER_COOKIE = "sb-code-verifier"

SESSION_COOKIE_MAX_AGE = 60 * 60 * 24 * 30
CODE_VERIFIER_MAX_AGE = 60 * 10


class IdentityError(Exception):
    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


@dataclass(eq=False)
class Identity(UserMixin):
    id: str
    email: str
    full_name: str | None = None
    avatar_url: str | None = None
    created_at: str | None = None
    access_token: str | None = field(default=None, repr=False)

    @classmethod
    def from_payload(cls, payload: dict, access_token: str | None = None) -> Identity:
        metadata = payload.get("user_metadata") or {}
        return cls(
            id=str(payload["id"]),
            email=payload.get("email") or "",
            full_name=metadata.get("full_name") or metadata.get("name"),
            avatar_url=metadata.get("avatar_url") or metadata.get("picture"),
            created_at=payload.get("created_at"),
            access_token=access_token,
        )

    @property
    def display_name(self) -> str:
        return self.full_name or self.email


@dataclass
class AuthSession:
    access_token: str
    refresh_token: str | None
    expires_in: int | None
    user: Identity | None


def generate_code_verifier() -> str:
    return secrets.token_urlsafe(64)


def code_challenge(verifier: str) -> str:
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def _error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict):
        for key in ("error_description", "msg", "message", "error"):
            value = payload.get(key)
            if value:
                return str(value)
    text = response.text.strip()
    return text or f"identity provider returned HTTP {response.status_code}"


def _normalize_error(exc: Exception) -> str:
    message = str(exc).strip()
    if message:
        return message
    return exc.__class__.__name__


class IdentityClient:
    """Thin client for the hosted auth REST API (``/auth/v1``)."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.transport = transport

    def _request(
        self,
        method: str,
        path: str,
        *,
        access_token: str | None = None,
        params: dict | None = None,
        json: dict | None = None,
    ) -> dict:
        headers = {"apikey": self.api_key}
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"
        try:
            with httpx.Client(
                base_url=f"{self.base_url}/auth/v1",
                timeout=self.timeout,
                transport=self.transport,
            ) as client:
                response = client.request(
                    method, path, headers=headers, params=params, json=json
                )
        except httpx.HTTPError as exc:
            raise IdentityError(_normalize_error(exc)) from exc

        if response.status_code >= 400:
            raise IdentityError(_error_message(response), response.status_code)
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as exc:
            raise IdentityError(
                "identity provider returned a malformed response",
                response.status_code,
            ) from exc

    def _session(self, payload: dict) -> AuthSession:
        access_token = payload.get("access_token")
        if not access_token:
            raise IdentityError("identity provider returned no access token")
        user_payload = payload.get("user")
        return AuthSession(
            access_token=access_token,
            refresh_token=payload.get("refresh_token"),
            expires_in=payload.get("expires_in"),
            user=(
                Identity.from_payload(user_payload, access_token=access_token)
                if user_payload
                else None
            ),
        )

    def authorize_url(
        self,
        provider: str,
        redirect_to: str,
        challenge: str,
        query_params: dict | None = None,
    ) -> str:
        params = {
            "provider": provider,
            "redirect_to": redirect_to,
            "code_challenge": challenge,
            "code_challenge_method": "s256",
        }
        params.update(query_params or {})
        return f"{self.base_url}/auth/v1/authorize?{urlencode(params)}"

    def exchange_code_for_session(self, auth_code: str, code_verifier: str) -> AuthSession:
        payload = self._request(
            "POST",
            "/token",
            params={"grant_type": "pkce"},
            json={"auth_code": auth_code, "code_verifier": code_verifier},
        )
        return self._session(payload)

    def refresh_session(self, refresh_token: str) -> AuthSession:
        payload = self._request(
            "POST",
            "/token",
            params={"grant_type": "refresh_token"},
            json={"refresh_token": refresh_token},
        )
        session = self._session(payload)
        if session.user is None:
            session.user = self.get_user(session.access_token)
        return session

    def get_user(self, access_token: str) -> Identity:
        payload = self._request("GET", "/user", access_token=access_token)
        if not payload.get("id"):
            raise IdentityError("identity provider returned no user", 401)
        return Identity.from_payload(payload, access_token=access_token)

    def sign_out(self, access_token: str) -> None:
        self._request("POST", "/logout", access_token=access_token)

    def list_users(self, page: int = 1, per_page: int = 100) -> list[Identity]:
        # Admin endpoint; only valid when constructed with the service-role key.
        payload = self._request(
            "GET",
            "/admin/users",
            access_token=self.api_key,
            params={"page": page, "per_page": per_page},
        )
        return [Identity.from_payload(row) for row in payload.get("users") or []]


def _build_client(api_key: str) -> IdentityClient:
    config = current_app.config
    base_url = config.get("SUPABASE_URL") or ""
    if not base_url or not api_key:
        raise IdentityError("identity provider is not configured")
    return IdentityClient(
        base_url,
        api_key,
        timeout=float(config.get("IDENTITY_TIMEOUT", 10)),
        transport=config.get("IDENTITY_TRANSPORT"),
    )


def identity_client() -> IdentityClient:
    return _build_client(current_app.config.get("SUPABASE_PUBLISHABLE_KEY") or "")


def admin_identity_client() -> IdentityClient:
    return _build_client(current_app.config.get("SUPABASE_SERVICE_ROLE_KEY") or "")


def _cookie_options() -> dict:
    return {
        "httponly": True,
        "samesite": "Lax",
        "secure": bool(current_app.config.get("SESSION_COOKIE_SECURE")),
        "path": "/",
    }


def set_session_cookies(response, session: AuthSession) -> None:
    options = _cookie_options()
    response.set_cookie(
        ACCESS_TOKEN_COOKIE,
        session.access_token,
        max_age=SESSION_COOKIE_MAX_AGE,
        **options,
    )
    if session.refresh_token:
        response.set_cookie(
            REFRESH_TOKEN_COOKIE,
            session.refresh_token,
            max_age=SESSION_COOKIE_MAX_AGE,
            **options,
        )


def clear_session_cookies(response) -> None:
    response.delete_cookie(ACCESS_TOKEN_COOKIE, path="/")
    response.delete_cookie(REFRESH_TOKEN_COOKIE, path="/")


def set_code_verifier_cookie(response, verifier: str) -> None:
    response.set_cookie(
        CODE_VERIFIER_COOKIE,
        verifier,
        max_age=CODE_VERIFIER_MAX_AGE,
        **_cookie_options(),
    )


def clear_code_verifier_cookie(response) -> None:
    response.delete_cookie(CODE_VERIFIER_COOKIE, path="/")
