# Tests for the authorization server and its grants.
# Created: 2026-10-07

import base64
import threading
from urllib.parse import parse_qs, urlparse

import jwt
import pytest

import albert.api.oauth2.grants as grants_mod
from albert.api.oauth2.exceptions import OAuthServerException
from albert.api.oauth2.grants import s256_challenge
from conftest import make_pkce_pair

REDIRECT = "https://client.example/callback"


@pytest.fixture
def server(services):
    return services.authorization_servers.create()


@pytest.fixture
def public_client(services):
    client, _ = services.repositories.clients.create_client(
        "Public", [REDIRECT], is_confidential=False
    )
    return client


@pytest.fixture
def confidential_client(services):
    return services.repositories.clients.create_client("Confidential", [REDIRECT])


def _validate(server, client, challenge=None, method="S256", **overrides):
    params = {
        "response_type": "code",
        "client_id": client.identifier,
        "redirect_uri": REDIRECT,
        "state": "abc",
    }
    if challenge is not None:
        params["code_challenge"] = challenge
        params["code_challenge_method"] = method
    params.update(overrides)
    return server.validate_authorization_request(params)


def _issue_code(server, client, user, challenge=None, method="S256"):
    request = _validate(server, client, challenge, method)
    request.user_id = user.id
    request.approved = True
    location = server.complete_authorization_request(request)
    query = parse_qs(urlparse(location).query)
    assert query["state"] == ["abc"]
    return query["code"][0]


def _exchange(server, client, code, verifier=None, secret=None, headers=None, **overrides):
    form = {
        "grant_type": "authorization_code",
        "client_id": client.identifier,
        "code": code,
        "redirect_uri": REDIRECT,
    }
    if verifier is not None:
        form["code_verifier"] = verifier
    if secret is not None:
        form["client_secret"] = secret
    form.update(overrides)
    return server.respond_to_access_token_request(form, headers or {})


def _refresh(server, client, refresh_token, secret=None):
    form = {
        "grant_type": "refresh_token",
        "client_id": client.identifier,
        "refresh_token": refresh_token,
    }
    if secret is not None:
        form["client_secret"] = secret
    return server.respond_to_access_token_request(form, {})


def _tokens(server, client, user):
    verifier, challenge = make_pkce_pair()
    code = _issue_code(server, client, user, challenge)
    return _exchange(server, client, code, verifier)


def _race(attempt, workers=8):
    """Run *attempt* on *workers* threads released together.

    Each result is the returned dict or the OAuth error type raised.
    """
    barrier = threading.Barrier(workers)
    results = [None] * workers

    def run(index):
        barrier.wait()
        try:
            results[index] = attempt()
        except OAuthServerException as exc:
            results[index] = exc.error_type

    threads = [threading.Thread(target=run, args=(i,)) for i in range(workers)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=60)
    return results


class TestAuthorizationRequest:
    def test_valid_request(self, server, public_client):
        _, challenge = make_pkce_pair()
        request = _validate(server, public_client, challenge)

        assert request.client.identifier == public_client.identifier
        assert request.redirect_uri == REDIRECT
        assert request.state == "abc"
        assert [s.identifier for s in request.scopes] == ["default"]
        assert request.code_challenge_method == "S256"

    def test_missing_client_id(self, server):
        with pytest.raises(OAuthServerException) as exc_info:
            server.validate_authorization_request({"response_type": "code"})
        assert exc_info.value.error_type == "invalid_request"

    def test_wrong_response_type(self, server, public_client):
        with pytest.raises(OAuthServerException) as exc_info:
            _validate(server, public_client, response_type="token")
        assert exc_info.value.error_type == "unsupported_response_type"

    def test_unknown_client(self, server):
        with pytest.raises(OAuthServerException) as exc_info:
            server.validate_authorization_request(
                {"response_type": "code", "client_id": "albert_nope"}
            )
        assert exc_info.value.error_type == "invalid_client"
        assert exc_info.value.http_status == 401

    def test_unregistered_redirect_uri(self, server, confidential_client):
        client, _ = confidential_client
        with pytest.raises(OAuthServerException) as exc_info:
            _validate(server, client, redirect_uri="https://evil.example/cb")
        assert exc_info.value.error_type == "invalid_client"

    def test_missing_redirect_uses_the_registered_one(self, server, confidential_client):
        client, _ = confidential_client
        params = {"response_type": "code", "client_id": client.identifier}
        assert server.validate_authorization_request(params).redirect_uri == REDIRECT

    def test_unknown_scope_redirects_with_state(self, server, confidential_client):
        client, _ = confidential_client
        with pytest.raises(OAuthServerException) as exc_info:
            _validate(server, client, scope="admin")
        exc = exc_info.value
        assert exc.error_type == "invalid_scope"
        location = exc.redirect_location()
        assert location.startswith(REDIRECT + "?")
        assert parse_qs(urlparse(location).query)["state"] == ["abc"]

    def test_public_client_must_use_pkce(self, server, public_client):
        with pytest.raises(OAuthServerException) as exc_info:
            _validate(server, public_client)
        assert exc_info.value.error_type == "invalid_request"
        assert "public clients" in exc_info.value.hint

    def test_confidential_client_may_skip_pkce(self, server, confidential_client):
        client, _ = confidential_client
        assert _validate(server, client).code_challenge is None

    @pytest.mark.parametrize(
        "challenge,method",
        [("a" * 43, "S512"), ("short", "S256"), ("a" * 129, "plain"), ("a" * 42 + "!", "plain")],
    )
    def test_malformed_pkce_parameters(self, server, public_client, challenge, method):
        with pytest.raises(OAuthServerException) as exc_info:
            _validate(server, public_client, challenge, method)
        assert exc_info.value.error_type == "invalid_request"

    def test_denied_request_redirects_with_access_denied(
        self, server, public_client, admin_user
    ):
        _, challenge = make_pkce_pair()
        request = _validate(server, public_client, challenge)
        request.user_id = admin_user.id

        with pytest.raises(OAuthServerException) as exc_info:
            server.complete_authorization_request(request)

        query = parse_qs(urlparse(exc_info.value.redirect_location()).query)
        assert query["error"] == ["access_denied"]
        assert query["state"] == ["abc"]

    def test_completion_requires_a_user(self, server, public_client):
        _, challenge = make_pkce_pair()
        request = _validate(server, public_client, challenge)
        request.approved = True
        with pytest.raises(ValueError):
            server.complete_authorization_request(request)


class TestAuthCodeGrant:
    def test_exchange_issues_tokens(self, server, public_client, admin_user, services):
        result = _tokens(server, public_client, admin_user)

        assert result["token_type"] == "Bearer"
        assert result["expires_in"] == 3600
        claims = jwt.decode(
            result["access_token"],
            services.keys.get_public_key(),
            algorithms=["RS256"],
            audience=public_client.identifier,
        )
        assert claims["sub"] == str(admin_user.id)
        assert claims["scopes"] == ["default"]
        assert claims["exp"] - claims["iat"] == 3600
        assert not services.repositories.access_tokens.is_access_token_revoked(claims["jti"])

    def test_code_is_single_use(self, server, public_client, admin_user):
        verifier, challenge = make_pkce_pair()
        code = _issue_code(server, public_client, admin_user, challenge)
        _exchange(server, public_client, code, verifier)

        with pytest.raises(OAuthServerException) as exc_info:
            _exchange(server, public_client, code, verifier)
        assert exc_info.value.error_type == "invalid_grant"
        assert exc_info.value.hint == "Authorization code has been revoked"

    def test_concurrent_redemptions_issue_tokens_once(self, server, public_client, admin_user):
        verifier, challenge = make_pkce_pair()
        code = _issue_code(server, public_client, admin_user, challenge)

        results = _race(lambda: _exchange(server, public_client, code, verifier))

        issued = [r for r in results if isinstance(r, dict)]
        assert len(issued) == 1
        assert results.count("invalid_grant") == len(results) - 1

    def test_wrong_verifier(self, server, public_client, admin_user):
        _, challenge = make_pkce_pair()
        other_verifier, _ = make_pkce_pair()
        code = _issue_code(server, public_client, admin_user, challenge)

        with pytest.raises(OAuthServerException) as exc_info:
            _exchange(server, public_client, code, other_verifier)
        assert exc_info.value.error_type == "invalid_grant"

    def test_missing_verifier(self, server, public_client, admin_user):
        _, challenge = make_pkce_pair()
        code = _issue_code(server, public_client, admin_user, challenge)

        with pytest.raises(OAuthServerException) as exc_info:
            _exchange(server, public_client, code)
        assert exc_info.value.error_type == "invalid_request"

    def test_plain_challenge(self, server, public_client, admin_user):
        verifier, challenge = make_pkce_pair("plain")
        code = _issue_code(server, public_client, admin_user, challenge, method="plain")
        assert _exchange(server, public_client, code, verifier)["token_type"] == "Bearer"

    def test_s256_challenge_matches_rfc_example(self):
        verifier = "dBjftJeZ4CVP-mB92K27uhbUJU1p1r_wW1gFWFOEjXk"
        assert s256_challenge(verifier) == "E9Melhoa2OwvFrEMTJguCHaoeK1t8URWbuGJSstw-cM"

    def test_expired_code(self, server, public_client, admin_user, clock):
        verifier, challenge = make_pkce_pair()
        code = _issue_code(server, public_client, admin_user, challenge)
        clock.advance(minutes=11)

        with pytest.raises(OAuthServerException) as exc_info:
            _exchange(server, public_client, code, verifier)
        assert exc_info.value.error_type == "invalid_grant"
        assert exc_info.value.hint == "Authorization code has expired"

    def test_code_bound_to_client(self, server, public_client, confidential_client, admin_user):
        other, secret = confidential_client
        verifier, challenge = make_pkce_pair()
        code = _issue_code(server, public_client, admin_user, challenge)

        with pytest.raises(OAuthServerException) as exc_info:
            _exchange(server, other, code, verifier, secret=secret)
        assert exc_info.value.error_type == "invalid_request"

    def test_redirect_uri_must_match(self, server, public_client, admin_user):
        verifier, challenge = make_pkce_pair()
        code = _issue_code(server, public_client, admin_user, challenge)

        with pytest.raises(OAuthServerException) as exc_info:
            _exchange(
                server, public_client, code, verifier, redirect_uri="https://client.example/other"
            )
        assert exc_info.value.error_type == "invalid_request"

    def test_tampered_code(self, server, public_client):
        with pytest.raises(OAuthServerException) as exc_info:
            _exchange(server, public_client, "garbage", "x" * 43)
        assert exc_info.value.hint == "Cannot decrypt the authorization code"

    def test_confidential_client_needs_its_secret(self, server, confidential_client, admin_user):
        client, secret = confidential_client
        code = _issue_code(server, client, admin_user)

        with pytest.raises(OAuthServerException) as exc_info:
            _exchange(server, client, code, secret="wrong")
        assert exc_info.value.error_type == "invalid_client"
        assert exc_info.value.headers() == {}

        assert _exchange(server, client, code, secret=secret)["token_type"] == "Bearer"

    def test_basic_auth_failure_sets_challenge_header(
        self, server, confidential_client, admin_user
    ):
        client, _ = confidential_client
        code = _issue_code(server, client, admin_user)
        basic = base64.b64encode(f"{client.identifier}:wrong".encode()).decode()

        with pytest.raises(OAuthServerException) as exc_info:
            server.respond_to_access_token_request(
                {"grant_type": "authorization_code", "code": code, "redirect_uri": REDIRECT},
                {"Authorization": f"Basic {basic}"},
            )
        assert exc_info.value.headers() == {"WWW-Authenticate": 'Basic realm="OAuth"'}

    def test_basic_auth_success(self, server, confidential_client, admin_user):
        client, secret = confidential_client
        code = _issue_code(server, client, admin_user)
        basic = base64.b64encode(f"{client.identifier}:{secret}".encode()).decode()

        result = server.respond_to_access_token_request(
            {"grant_type": "authorization_code", "code": code, "redirect_uri": REDIRECT},
            {"authorization": f"Basic {basic}"},
        )
        assert result["token_type"] == "Bearer"

    def test_unsupported_grant_type(self, server, public_client):
        with pytest.raises(OAuthServerException) as exc_info:
            server.respond_to_access_token_request(
                {"grant_type": "password", "client_id": public_client.identifier}, {}
            )
        assert exc_info.value.error_type == "unsupported_grant_type"

    def test_identifier_collisions_are_retried(
        self, server, public_client, admin_user, monkeypatch
    ):
        ids = iter(["dup", "dup", "dup", "code-2", "access-1", "refresh-1"])
        monkeypatch.setattr(grants_mod, "generate_identifier", lambda: next(ids))
        verifier, challenge = make_pkce_pair()

        _issue_code(server, public_client, admin_user, challenge)
        code = _issue_code(server, public_client, admin_user, challenge)
        result = _exchange(server, public_client, code, verifier)

        claims = jwt.decode(result["access_token"], options={"verify_signature": False})
        assert claims["jti"] == "access-1"

    def test_identifier_retries_are_bounded(self, server, public_client, admin_user, monkeypatch):
        monkeypatch.setattr(grants_mod, "generate_identifier", lambda: "always-the-same")
        _, challenge = make_pkce_pair()
        _issue_code(server, public_client, admin_user, challenge)

        with pytest.raises(OAuthServerException) as exc_info:
            _issue_code(server, public_client, admin_user, challenge)
        assert exc_info.value.error_type == "server_error"
        assert exc_info.value.http_status == 500


class TestRefreshTokenGrant:
    def test_rotation(self, server, public_client, admin_user, services):
        first = _tokens(server, public_client, admin_user)
        old_jti = jwt.decode(first["access_token"], options={"verify_signature": False})["jti"]

        second = _refresh(server, public_client, first["refresh_token"])

        assert second["access_token"] != first["access_token"]
        assert second["refresh_token"] != first["refresh_token"]
        assert services.repositories.access_tokens.is_access_token_revoked(old_jti)

    def test_old_refresh_token_is_rejected(self, server, public_client, admin_user):
        first = _tokens(server, public_client, admin_user)
        _refresh(server, public_client, first["refresh_token"])

        with pytest.raises(OAuthServerException) as exc_info:
            _refresh(server, public_client, first["refresh_token"])
        assert exc_info.value.error_type == "invalid_grant"
        assert exc_info.value.hint == "Token has been revoked"

    def test_concurrent_refreshes_rotate_once(self, server, public_client, admin_user):
        first = _tokens(server, public_client, admin_user)

        results = _race(lambda: _refresh(server, public_client, first["refresh_token"]))

        rotated = [r for r in results if isinstance(r, dict)]
        assert len(rotated) == 1
        assert results.count("invalid_grant") == len(results) - 1
        # The single winner's refresh token carries on the chain.
        assert _refresh(server, public_client, rotated[0]["refresh_token"])["access_token"]

    def test_refresh_token_bound_to_client(
        self, server, public_client, confidential_client, admin_user
    ):
        other, secret = confidential_client
        first = _tokens(server, public_client, admin_user)

        with pytest.raises(OAuthServerException) as exc_info:
            _refresh(server, other, first["refresh_token"], secret=secret)
        assert exc_info.value.hint == "Token is not linked to client"

    def test_expired_refresh_token(self, server, public_client, admin_user, clock):
        first = _tokens(server, public_client, admin_user)
        clock.advance(days=31)

        with pytest.raises(OAuthServerException) as exc_info:
            _refresh(server, public_client, first["refresh_token"])
        assert exc_info.value.hint == "Token has expired"

    def test_refresh_after_key_regeneration_fails(
        self, server, public_client, admin_user, services
    ):
        first = _tokens(server, public_client, admin_user)
        services.regenerate_keys()
        fresh = services.authorization_servers.create()

        with pytest.raises(OAuthServerException) as exc_info:
            _refresh(fresh, public_client, first["refresh_token"])
        assert exc_info.value.error_type == "invalid_request"


class TestRevocation:
    def test_revoking_access_token_revokes_its_refresh_token(
        self, server, public_client, admin_user
    ):
        tokens = _tokens(server, public_client, admin_user)

        assert server.revoke_token(tokens["access_token"], client=public_client) is True
        with pytest.raises(OAuthServerException):
            _refresh(server, public_client, tokens["refresh_token"])

    def test_revoking_refresh_token_revokes_access_token(
        self, server, public_client, admin_user, services
    ):
        tokens = _tokens(server, public_client, admin_user)
        jti = jwt.decode(tokens["access_token"], options={"verify_signature": False})["jti"]

        assert server.revoke_token(tokens["refresh_token"], "refresh_token") is True
        assert services.repositories.access_tokens.is_access_token_revoked(jti)

    def test_other_clients_tokens_are_left_alone(
        self, server, public_client, confidential_client, admin_user
    ):
        other, _ = confidential_client
        tokens = _tokens(server, public_client, admin_user)

        assert server.revoke_token(tokens["access_token"], client=other) is False
        assert server.revoke_token(tokens["refresh_token"], client=other) is False

    def test_unknown_token(self, server):
        assert server.revoke_token("not-a-token") is False
