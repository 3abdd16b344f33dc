"""Identity provider integration tests.

Learn: No network here. Authlib's client is replaced with a small fake
that returns canned tokens and responses, so these tests exercise our
normalization and error handling, not Authlib's HTTP plumbing.
"""

import httpx
import pytest
from authlib.integrations.starlette_client import OAuthError

from portcullis.auth.providers import (
    ProviderIntegration,
    ProviderRegistry,
    normalize_facebook,
    normalize_github,
    normalize_oidc,
    normalize_twitter,
    resolve_options,
)
from portcullis.config import ProviderSettings


def creds(**overrides) -> ProviderSettings:
    return ProviderSettings(client_id="id", client_secret="secret", **overrides)


# ═══════════════════════════════════════════════════════════
# Normalizers
# ═══════════════════════════════════════════════════════════


def test_normalize_oidc():
    assertion = normalize_oidc(
        "google",
        {"sub": "123", "name": "Alice", "email": "a@x.com", "email_verified": True},
    )
    assert assertion.provider == "google"
    assert assertion.external_uid == "123"
    assert assertion.display_name == "Alice"
    assert assertion.email == "a@x.com"
    assert assertion.fallback_username is None


def test_normalize_oidc_uses_preferred_username_as_fallback():
    assertion = normalize_oidc("okta", {"sub": "u1", "preferred_username": "al"})
    assert assertion.display_name is None
    assert assertion.derived_username() == "al"


def test_normalize_github_stringifies_id_and_falls_back_to_login():
    assertion = normalize_github(
        "github", {"id": 583231, "login": "octocat", "name": None, "email": None}
    )
    assert assertion.external_uid == "583231"
    assert assertion.email is None
    assert assertion.derived_username() == "octocat"


def test_normalize_facebook():
    assertion = normalize_facebook("facebook", {"id": "10", "name": "Bob"})
    assert (assertion.external_uid, assertion.display_name) == ("10", "Bob")


def test_normalize_twitter_unwraps_data():
    assertion = normalize_twitter(
        "twitter2", {"data": {"id": "42", "name": "", "username": "jack"}}
    )
    assert assertion.external_uid == "42"
    assert assertion.email is None
    assert assertion.derived_username() == "jack"


# ═══════════════════════════════════════════════════════════
# Options
# ═══════════════════════════════════════════════════════════


def test_resolve_google_defaults():
    options = resolve_options("google", creds())
    assert options["client_id"] == "id"
    assert options["client_secret"] == "secret"
    assert options["server_metadata_url"].startswith("https://accounts.google.com/")
    assert options["client_kwargs"] == {"scope": "openid email profile"}
    assert "authorize_url" not in options


def test_resolve_linkedin_posts_client_secret():
    options = resolve_options("linkedin", creds())
    assert options["client_kwargs"]["token_endpoint_auth_method"] == "client_secret_post"


def test_resolve_twitter_uses_pkce():
    options = resolve_options("twitter2", creds())
    assert options["client_kwargs"]["code_challenge_method"] == "S256"
    assert options["userinfo_path"] == "users/me"


def test_settings_override_defaults():
    options = resolve_options("github", creds(scope="read:user", userinfo_path="me"))
    assert options["client_kwargs"] == {"scope": "read:user"}
    assert options["userinfo_path"] == "me"
    assert options["authorize_url"] == "https://github.com/login/oauth/authorize"


def test_unknown_provider_takes_only_what_is_configured():
    options = resolve_options(
        "acme",
        creds(
            authorize_url="https://acme.example/authorize",
            access_token_url="https://acme.example/token",
        ),
    )
    assert options == {
        "client_id": "id",
        "client_secret": "secret",
        "authorize_url": "https://acme.example/authorize",
        "access_token_url": "https://acme.example/token",
        "client_kwargs": {},
    }


# ═══════════════════════════════════════════════════════════
# Registry
# ═══════════════════════════════════════════════════════════


def test_registry_from_settings():
    registry = ProviderRegistry.from_settings(
        {"google": creds(), "github": creds()}
    )
    assert registry.names() == ["github", "google"]

    github = registry.get("github")
    assert github.name == "github"
    assert github.normalize is normalize_github
    assert github.userinfo_path == "user"
    assert registry.get("google").normalize is normalize_oidc
    assert registry.get("twitter2") is None


def test_empty_registry():
    registry = ProviderRegistry.from_settings({})
    assert registry.names() == []
    assert registry.get("google") is None


# ═══════════════════════════════════════════════════════════
# Callback handling
# ═══════════════════════════════════════════════════════════


class FakeClient:
    """Just enough of an Authlib Starlette client."""

    def __init__(
        self,
        token: dict | None = None,
        response: httpx.Response | None = None,
        redirect_error: Exception | None = None,
    ):
        self.token = token or {}
        self.response = response
        self.redirect_error = redirect_error
        self.requested: list[str] = []

    async def authorize_redirect(self, request, redirect_uri):
        if self.redirect_error is not None:
            raise self.redirect_error
        return redirect_uri

    async def authorize_access_token(self, request):
        return self.token

    async def get(self, url, token=None):
        self.requested.append(url)
        return self.response

    async def userinfo(self, token=None):
        return {"sub": "from-userinfo"}


def _response(status_code: int, json=None, content: bytes | None = None) -> httpx.Response:
    return httpx.Response(
        status_code,
        json=json,
        content=content,
        request=httpx.Request("GET", "https://api.example/user"),
    )


@pytest.mark.asyncio
async def test_oidc_claims_from_token():
    client = FakeClient({"access_token": "t", "userinfo": {"sub": "123", "name": "Alice"}})
    integration = ProviderIntegration("google", client)

    assertion = await integration.fetch_assertion(request=None)

    assert assertion.external_uid == "123"
    assert client.requested == []


@pytest.mark.asyncio
async def test_userinfo_endpoint_when_token_has_no_claims():
    integration = ProviderIntegration("google", FakeClient({"access_token": "t"}))
    assertion = await integration.fetch_assertion(request=None)
    assert assertion.external_uid == "from-userinfo"


@pytest.mark.asyncio
async def test_userinfo_path_is_fetched():
    client = FakeClient(
        {"access_token": "t"},
        _response(200, {"id": 7, "login": "octocat"}),
    )
    integration = ProviderIntegration(
        "github", client, normalize=normalize_github, userinfo_path="user"
    )

    assertion = await integration.fetch_assertion(request=None)

    assert client.requested == ["user"]
    assert assertion.external_uid == "7"
    assert assertion.derived_username() == "octocat"


@pytest.mark.asyncio
async def test_userinfo_http_error_becomes_oauth_error():
    client = FakeClient({"access_token": "t"}, _response(401, {"message": "Bad credentials"}))
    integration = ProviderIntegration(
        "github", client, normalize=normalize_github, userinfo_path="user"
    )

    with pytest.raises(OAuthError) as exc:
        await integration.fetch_assertion(request=None)
    assert exc.value.error == "userinfo_failed"


def test_missing_uid_is_rejected():
    integration = ProviderIntegration("google", client=None)
    with pytest.raises(OAuthError) as exc:
        integration.assertion_from({"name": "Alice"})
    assert exc.value.error == "missing_uid"


@pytest.mark.asyncio
async def test_userinfo_that_is_not_json_becomes_oauth_error():
    client = FakeClient({"access_token": "t"}, _response(200, content=b"<html>oops</html>"))
    integration = ProviderIntegration(
        "github", client, normalize=normalize_github, userinfo_path="user"
    )

    with pytest.raises(OAuthError) as exc:
        await integration.fetch_assertion(request=None)
    assert exc.value.error == "userinfo_failed"


@pytest.mark.asyncio
async def test_userinfo_that_is_not_an_object_becomes_oauth_error():
    client = FakeClient({"access_token": "t"}, _response(200, [{"id": 7}]))
    integration = ProviderIntegration(
        "github", client, normalize=normalize_github, userinfo_path="user"
    )

    with pytest.raises(OAuthError) as exc:
        await integration.fetch_assertion(request=None)
    assert exc.value.error == "userinfo_failed"


def test_twitter_payload_with_unexpected_data_has_no_uid():
    integration = ProviderIntegration("twitter2", client=None, normalize=normalize_twitter)
    with pytest.raises(OAuthError) as exc:
        integration.assertion_from({"data": ["42"]})
    assert exc.value.error == "missing_uid"


@pytest.mark.asyncio
async def test_authorize_redirect_passes_through():
    integration = ProviderIntegration("google", FakeClient())
    assert await integration.authorize_redirect(None, "http://test/cb") == "http://test/cb"


@pytest.mark.asyncio
async def test_unreachable_metadata_becomes_oauth_error():
    error = httpx.ConnectError(
        "connection refused",
        request=httpx.Request("GET", "https://accounts.google.com/.well-known/openid-configuration"),
    )
    integration = ProviderIntegration("google", FakeClient(redirect_error=error))

    with pytest.raises(OAuthError) as exc:
        await integration.authorize_redirect(None, "http://test/cb")
    assert exc.value.error == "metadata_failed"
