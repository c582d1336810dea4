# Shared fixtures: isolated config dir, a controllable clock, and a wired app.
# Created: 2026-10-07

import asyncio
import base64
import hashlib
import secrets
from datetime import timedelta
from urllib.parse import parse_qs, urlparse

import pytest
from fastapi.testclient import TestClient

from albert.api.oauth2.models import utcnow
from albert.api.serve import create_api_app
from albert.api.services import build_services
from albert.config import Settings
from albert.context import reset_current_user, set_current_user
from albert.users import ADMIN_CAPABILITIES

ADMIN_PASSWORD = "correct-horse-battery"
READER_PASSWORD = "reader-pass-123"
REDIRECT_URI = "http://localhost:3000/callback"


def make_pkce_pair(method: str = "S256") -> tuple[str, str]:
    """Generate a PKCE code_verifier and code_challenge pair."""
    verifier = secrets.token_urlsafe(48)
    if method == "plain":
        return verifier, verifier
    challenge = (
        base64.urlsafe_b64encode(hashlib.sha256(verifier.encode()).digest())
        .rstrip(b"=")
        .decode()
    )
    return verifier, challenge


def event_loop_running() -> bool:
    """True when called on the thread running the event loop."""
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return False
    return True


class FakeClock:
    """Callable clock the tests can move forward."""

    def __init__(self):
        self.now = utcnow()

    def __call__(self):
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class OAuthFlow:
    """Drives register, login, authorize, consent and token exchange through the API."""

    def __init__(self, client: TestClient):
        self.client = client

    def register(self, auth_method: str = "none", redirect_uris=None) -> dict:
        resp = self.client.post(
            "/api/v1/oauth/register",
            json={
                "client_name": "Test MCP Client",
                "redirect_uris": [REDIRECT_URI] if redirect_uris is None else redirect_uris,
                "token_endpoint_auth_method": auth_method,
            },
        )
        assert resp.status_code == 201, resp.text
        return resp.json()

    def login(self, login: str = "admin", password: str = ADMIN_PASSWORD) -> None:
        resp = self.client.post("/api/v1/auth/login", json={"login": login, "password": password})
        assert resp.status_code == 200, resp.text

    def authorize(self, client_id: str, challenge: str | None, state: str = "xyz", **extra):
        params = {
            "response_type": "code",
            "client_id": client_id,
            "redirect_uri": REDIRECT_URI,
            "scope": "default",
            "state": state,
            **extra,
        }
        if challenge is not None:
            params["code_challenge"] = challenge
            params.setdefault("code_challenge_method", "S256")
        return self.client.get(
            "/api/v1/oauth/authorize", params=params, headers={"Accept": "application/json"}
        )

    def consent(self, auth_request_id: str, approve: str = "yes") -> str:
        resp = self.client.post(
            "/api/v1/oauth/authorize/consent",
            json={"auth_request_id": auth_request_id, "approve": approve},
        )
        assert resp.status_code == 200, resp.text
        return resp.json()["redirect_to"]

    def obtain_code(self, client_id: str, challenge: str | None) -> str:
        resp = self.authorize(client_id, challenge)
        assert resp.status_code == 200, resp.text
        location = self.consent(resp.json()["auth_request_id"])
        query = parse_qs(urlparse(location).query)
        assert query["state"] == ["xyz"]
        return query["code"][0]

    def exchange(self, client_id: str, code: str, verifier: str | None, secret: str | None = None):
        data = {
            "grant_type": "authorization_code",
            "client_id": client_id,
            "code": code,
            "redirect_uri": REDIRECT_URI,
        }
        if verifier is not None:
            data["code_verifier"] = verifier
        if secret is not None:
            data["client_secret"] = secret
        return self.client.post("/api/v1/oauth/token", data=data)

    def refresh(self, client_id: str, refresh_token: str, secret: str | None = None):
        data = {
            "grant_type": "refresh_token",
            "client_id": client_id,
            "refresh_token": refresh_token,
        }
        if secret is not None:
            data["client_secret"] = secret
        return self.client.post("/api/v1/oauth/token", data=data)

    def tokens(self, login: str = "admin", password: str = ADMIN_PASSWORD) -> tuple[dict, dict]:
        """Run the whole flow for a public PKCE client. Returns (registration, tokens)."""
        registration = self.register()
        self.login(login, password)
        verifier, challenge = make_pkce_pair()
        code = self.obtain_code(registration["client_id"], challenge)
        resp = self.exchange(registration["client_id"], code, verifier)
        assert resp.status_code == 200, resp.text
        return registration, resp.json()


@pytest.fixture(autouse=True)
def config_dir(tmp_path, monkeypatch):
    path = tmp_path / "config"
    monkeypatch.setenv("ALBERT_CONFIG_DIR", str(path))
    return path


@pytest.fixture
def settings(tmp_path):
    return Settings(
        site_name="Test Site",
        base_url="https://example.test",
        db_path=str(tmp_path / "albert.sqlite3"),
        audit_enabled=False,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def services(settings, clock):
    return build_services(settings, clock=clock)


@pytest.fixture
def admin_user(services):
    return services.users.create_user(
        "admin", ADMIN_PASSWORD, display_name="Site Admin", capabilities=ADMIN_CAPABILITIES
    )


@pytest.fixture
def reader_user(services):
    return services.users.create_user("reader", READER_PASSWORD)


@pytest.fixture
def app(services):
    return create_api_app(services=services)


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def flow(client, admin_user):
    return OAuthFlow(client)


@pytest.fixture
def as_user():
    """Make a user current for the duration of a test."""
    tokens = []

    def _set(user):
        tokens.append(set_current_user(user))
        return user

    yield _set
    for token in reversed(tokens):
        reset_current_user(token)


@pytest.fixture(autouse=True)
def clean_current_user():
    """Validators set the current user as a side effect; undo it after each test."""
    token = set_current_user(None)
    yield
    reset_current_user(token)
