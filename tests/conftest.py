import itertools
import json

import httpx
import pytest

from app import create_app
from app.config import TestConfig
from app.extensions import db
from app.services.identity import ACCESS_TOKEN_COOKIE, REFRESH_TOKEN_COOKIE, Identity


class FakeIdentityProvider:
    """In-memory stand-in for the hosted auth REST API."""

    def __init__(self):
        self.users = {}
        self.tokens = {}
        self.codes = {}
        self.refresh_tokens = {}
        self.requests = []
        self._serial = itertools.count(1)

    def add_user(self, user_id, email, full_name=None, avatar_url=None):
        self.users[user_id] = {
            "id": user_id,
            "email": email,
            "created_at": "2024-01-01T00:00:00Z",
            "user_metadata": {"full_name": full_name, "avatar_url": avatar_url},
        }
        return self.users[user_id]

    def issue_token(self, user_id, token=None):
        token = token or f"access-{user_id}-{next(self._serial)}"
        self.tokens[token] = user_id
        return token

    def issue_code(self, user_id, code="auth-code"):
        self.codes[code] = user_id
        return code

    def issue_refresh_token(self, user_id, token=None):
        token = token or f"refresh-{user_id}"
        self.refresh_tokens[token] = user_id
        return token

    def identity(self, user_id, token=None):
        return Identity.from_payload(self.users[user_id], access_token=token)

    def _session(self, user_id):
        access = self.issue_token(user_id)
        return {
            "access_token": access,
            "refresh_token": self.issue_refresh_token(user_id, f"refresh-{access}"),
            "expires_in": 3600,
            "user": self.users[user_id],
        }

    def _bearer(self, request):
        header = request.headers.get("Authorization", "")
        return header.removeprefix("Bearer ").strip()

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path.removeprefix("/auth/v1")

        if path == "/user" and request.method == "GET":
            user_id = self.tokens.get(self._bearer(request))
            if user_id is None:
                return httpx.Response(401, json={"msg": "invalid JWT"})
            return httpx.Response(200, json=self.users[user_id])

        if path == "/token" and request.method == "POST":
            body = json.loads(request.content or b"{}")
            grant = request.url.params.get("grant_type")
            if grant == "pkce":
                user_id = self.codes.pop(body.get("auth_code"), None)
                if user_id is None or not body.get("code_verifier"):
                    return httpx.Response(
                        400, json={"error_description": "invalid flow state"}
                    )
                return httpx.Response(200, json=self._session(user_id))
            if grant == "refresh_token":
                user_id = self.refresh_tokens.pop(body.get("refresh_token"), None)
                if user_id is None:
                    return httpx.Response(
                        400, json={"error_description": "refresh token not found"}
                    )
                return httpx.Response(200, json=self._session(user_id))
            return httpx.Response(400, json={"error": "unsupported_grant_type"})

        if path == "/logout" and request.method == "POST":
            self.tokens.pop(self._bearer(request), None)
            return httpx.Response(204)

        if path == "/admin/users" and request.method == "GET":
            if self._bearer(request) != TestConfig.SUPABASE_SERVICE_ROLE_KEY:
                return httpx.Response(403, json={"msg": "not admin"})
            page = int(request.url.params.get("page", 1))
            per_page = int(request.url.params.get("per_page", 50))
            rows = list(self.users.values())
            start = (page - 1) * per_page
            return httpx.Response(200, json={"users": rows[start : start + per_page]})

        return httpx.Response(404, json={"msg": "not found"})


@pytest.fixture
def provider():
    return FakeIdentityProvider()


@pytest.fixture
def app(provider):
    app = create_app(TestConfig)
    app.config["IDENTITY_TRANSPORT"] = httpx.MockTransport(provider)
    with app.app_context():
        db.drop_all()
        db.create_all()
    yield app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def alice(provider):
    provider.add_user("user-alice", "alice@example.com", full_name="Alice Doe")
    return provider.identity("user-alice")


@pytest.fixture
def bob(provider):
    provider.add_user("user-bob", "bob@example.com")
    return provider.identity("user-bob")


@pytest.fixture
def sign_in(client, provider):
    def _sign_in(user_id, refresh_token=None):
        token = provider.issue_token(user_id)
        client.set_cookie(ACCESS_TOKEN_COOKIE, token)
        if refresh_token:
            client.set_cookie(REFRESH_TOKEN_COOKIE, refresh_token)
        return token

    return _sign_in
