import base64
import hashlib

import httpx
import pytest

from app.extensions import db
from app.jobs.scheduler import run_profile_retry
from app.models import User
from app.services.identity import (
    IdentityClient,
    IdentityError,
    code_challenge,
    generate_code_verifier,
)
from app.services.profiles import retry_missing_profiles, upsert_profile
from app.services.security import (
    HOME_PATH,
    LANDING_PATH,
    PATH_LANDING,
    PATH_PROTECTED,
    guard_redirect,
    path_class,
)


def _client(provider):
    return IdentityClient(
        "http://identity.test", "publishable", transport=httpx.MockTransport(provider)
    )


def test_code_challenge_is_unpadded_s256():
    verifier = generate_code_verifier()
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    expected = base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")
    assert code_challenge(verifier) == expected
    assert "=" not in code_challenge(verifier)
    assert 43 <= len(verifier) <= 128


def test_authorize_url_carries_provider_and_challenge():
    url = httpx.URL(
        IdentityClient("http://identity.test/", "key").authorize_url(
            "google",
            redirect_to="http://localhost/auth/callback",
            challenge="abc",
            query_params={"access_type": "offline", "prompt": "consent"},
        )
    )
    assert url.path == "/auth/v1/authorize"
    assert url.params["provider"] == "google"
    assert url.params["code_challenge"] == "abc"
    assert url.params["code_challenge_method"] == "s256"
    assert url.params["access_type"] == "offline"
    assert url.params["prompt"] == "consent"


def test_exchange_and_get_user(provider):
    provider.add_user("u1", "u1@example.com", full_name="User One")
    code = provider.issue_code("u1")
    client = _client(provider)

    session = client.exchange_code_for_session(code, "verifier")
    assert session.user.id == "u1"
    assert session.user.display_name == "User One"
    assert session.refresh_token

    identity = client.get_user(session.access_token)
    assert identity.email == "u1@example.com"
    assert identity.access_token == session.access_token
    sent = provider.requests[-1]
    assert sent.headers["apikey"] == "publishable"
    assert sent.headers["Authorization"] == f"Bearer {session.access_token}"


def test_provider_errors_carry_message_and_status(provider):
    client = _client(provider)
    with pytest.raises(IdentityError) as excinfo:
        client.exchange_code_for_session("unknown", "verifier")
    assert excinfo.value.message == "invalid flow state"
    assert excinfo.value.status_code == 400

    with pytest.raises(IdentityError) as excinfo:
        client.get_user("expired")
    assert excinfo.value.status_code == 401


def test_network_failure_becomes_identity_error():
    def unreachable(request):
        raise httpx.ConnectError("connection refused", request=request)

    client = IdentityClient(
        "http://identity.test", "key", transport=httpx.MockTransport(unreachable)
    )
    with pytest.raises(IdentityError) as excinfo:
        client.get_user("token")
    assert "connection refused" in excinfo.value.message
    assert excinfo.value.status_code is None


def test_path_classes_and_guard_table():
    assert path_class("/") == PATH_LANDING
    assert path_class("/home") == PATH_PROTECTED
    assert path_class("/home/bookmarks/1") == PATH_PROTECTED
    assert path_class("/homepage") is None
    assert path_class("/auth/callback") is None

    assert guard_redirect(False, "/home") == LANDING_PATH
    assert guard_redirect(False, "/home/profile") == LANDING_PATH
    assert guard_redirect(True, "/") == HOME_PATH
    assert guard_redirect(True, "/home") is None
    assert guard_redirect(False, "/") is None
    assert guard_redirect(False, "/auth/login") is None


def test_upsert_profile_keeps_user_owned_fields(app, alice):
    with app.app_context():
        upsert_profile(alice)
        profile = db.session.get(User, alice.id)
        profile.bio = "My bio"
        profile.theme = "dark"
        db.session.commit()

        alice.full_name = "Alice Renamed"
        upsert_profile(alice)
        profile = db.session.get(User, alice.id)
        assert profile.full_name == "Alice Renamed"
        assert profile.bio == "My bio"
        assert profile.theme == "dark"
        assert User.query.count() == 1


def test_retry_missing_profiles_backfills_once(app, provider, alice):
    for index in range(3):
        provider.add_user(f"user-{index}", f"user{index}@example.com")

    with app.app_context():
        upsert_profile(alice)
        assert retry_missing_profiles(page_size=2) == 3
        assert User.query.count() == 4
        assert retry_missing_profiles(page_size=2) == 0


def test_profile_retry_job_logs_when_not_configured(app, caplog):
    app.config["SUPABASE_SERVICE_ROLE_KEY"] = ""
    with caplog.at_level("WARNING"):
        run_profile_retry(app)
    assert "not configured" in caplog.text
