"""Identity provider integrations — OAuth2 / OpenID Connect via Authlib.

Learn: Each configured provider becomes an Authlib Starlette client. The
integration does two things:
1. authorize_redirect() — send the browser to the provider's consent page
2. fetch_assertion() — on the callback, exchange the code for a token,
   fetch the provider's user info and normalize it into an
   IdentityAssertion

Everything provider-specific (endpoints, scopes, the shape of the user
info payload) lives in PROVIDER_DEFAULTS. Settings only need the client
credentials for a well-known provider; any endpoint can be overridden,
and an unknown provider name works as long as its endpoints are given
(its user info is read as OpenID Connect claims).

The registry is built once at startup from settings.providers and put on
app.state; nothing is registered at request time.
"""

from collections.abc import Callable
from dataclasses import dataclass, fields
from typing import Any, Optional

import httpx
import structlog
from authlib.integrations.starlette_client import OAuth, OAuthError
from starlette.requests import Request

from portcullis.config import ProviderSettings
from portcullis.services.federation import IdentityAssertion

logger = structlog.get_logger()

Normalizer = Callable[[str, dict], IdentityAssertion]


# ─── User info normalizers ──────────────────────────────


def _str_or_none(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


def normalize_oidc(provider: str, info: dict) -> IdentityAssertion:
    """Standard OpenID Connect claims (Google, LinkedIn, generic OIDC)."""
    return IdentityAssertion(
        provider=provider,
        external_uid=_str_or_none(info.get("sub")) or "",
        display_name=_str_or_none(info.get("name")),
        email=_str_or_none(info.get("email")),
        fallback_username=_str_or_none(
            info.get("preferred_username") or info.get("nickname")
        ),
    )


def normalize_github(provider: str, info: dict) -> IdentityAssertion:
    # GitHub ids are integers; name is null unless the user set one.
    return IdentityAssertion(
        provider=provider,
        external_uid=_str_or_none(info.get("id")) or "",
        display_name=_str_or_none(info.get("name")),
        email=_str_or_none(info.get("email")),
        fallback_username=_str_or_none(info.get("login")),
    )


def normalize_facebook(provider: str, info: dict) -> IdentityAssertion:
    return IdentityAssertion(
        provider=provider,
        external_uid=_str_or_none(info.get("id")) or "",
        display_name=_str_or_none(info.get("name")),
        email=_str_or_none(info.get("email")),
    )


def normalize_twitter(provider: str, info: dict) -> IdentityAssertion:
    # Twitter API v2 wraps the user in {"data": {...}} and never returns email.
    data = info.get("data", info)
    if not isinstance(data, dict):
        data = {}
    return IdentityAssertion(
        provider=provider,
        external_uid=_str_or_none(data.get("id")) or "",
        display_name=_str_or_none(data.get("name")),
        fallback_username=_str_or_none(data.get("username")),
    )


# ─── Built-in provider defaults ─────────────────────────


@dataclass(frozen=True)
class ProviderDefaults:
    server_metadata_url: Optional[str] = None
    authorize_url: Optional[str] = None
    access_token_url: Optional[str] = None
    api_base_url: Optional[str] = None
    userinfo_path: Optional[str] = None
    scope: Optional[str] = None
    token_endpoint_auth_method: Optional[str] = None
    code_challenge_method: Optional[str] = None
    normalize: Normalizer = normalize_oidc


PROVIDER_DEFAULTS: dict[str, ProviderDefaults] = {
    "google": ProviderDefaults(
        server_metadata_url="https://accounts.google.com/.well-known/openid-configuration",
        scope="openid email profile",
    ),
    "github": ProviderDefaults(
        authorize_url="https://github.com/login/oauth/authorize",
        access_token_url="https://github.com/login/oauth/access_token",
        api_base_url="https://api.github.com/",
        userinfo_path="user",
        scope="read:user user:email",
        normalize=normalize_github,
    ),
    "facebook": ProviderDefaults(
        authorize_url="https://www.facebook.com/v19.0/dialog/oauth",
        access_token_url="https://graph.facebook.com/v19.0/oauth/access_token",
        api_base_url="https://graph.facebook.com/v19.0/",
        userinfo_path="me?fields=id,name,email",
        scope="email public_profile",
        normalize=normalize_facebook,
    ),
    "twitter2": ProviderDefaults(
        authorize_url="https://twitter.com/i/oauth2/authorize",
        access_token_url="https://api.twitter.com/2/oauth2/token",
        api_base_url="https://api.twitter.com/2/",
        userinfo_path="users/me",
        scope="tweet.read users.read",
        code_challenge_method="S256",
        normalize=normalize_twitter,
    ),
    # LinkedIn rejects the client secret in a Basic auth header; it has
    # to be posted in the token request body.
    "linkedin": ProviderDefaults(
        server_metadata_url="https://www.linkedin.com/oauth/.well-known/openid-configuration",
        scope="openid profile email",
        token_endpoint_auth_method="client_secret_post",
    ),
}

_GENERIC = ProviderDefaults()


def resolve_options(name: str, conf: ProviderSettings) -> dict:
    """Merge a provider's settings over its built-in defaults.

    Returns the keyword arguments for OAuth.register(), minus the ones
    left unset, plus "userinfo_path".
    """
    defaults = PROVIDER_DEFAULTS.get(name, _GENERIC)
    merged = {}
    for f in fields(ProviderDefaults):
        if f.name == "normalize":
            continue
        override = getattr(conf, f.name, None)
        merged[f.name] = override if override is not None else getattr(defaults, f.name)

    client_kwargs = {
        key: merged.pop(key)
        for key in ("scope", "token_endpoint_auth_method", "code_challenge_method")
    }
    options = {
        "client_id": conf.client_id,
        "client_secret": conf.client_secret,
        **merged,
        "client_kwargs": {k: v for k, v in client_kwargs.items() if v is not None},
    }
    return {k: v for k, v in options.items() if v is not None}


# ─── Integrations ───────────────────────────────────────


class ProviderIntegration:
    """One identity provider, wrapped around an Authlib client."""

    def __init__(
        self,
        name: str,
        client: Any,
        normalize: Normalizer = normalize_oidc,
        userinfo_path: Optional[str] = None,
    ):
        self.name = name
        self.client = client
        self.normalize = normalize
        self.userinfo_path = userinfo_path

    async def authorize_redirect(self, request: Request, redirect_uri: str):
        """Response redirecting the browser to the provider's consent page.

        OIDC providers fetch their discovery document on first use; if that
        fails the error is raised as OAuthError like any other provider error.
        """
        try:
            return await self.client.authorize_redirect(request, redirect_uri)
        except httpx.HTTPError as e:
            logger.warning(
                "portcullis.provider_metadata_failed", provider=self.name, error=str(e)
            )
            raise OAuthError(
                error="metadata_failed",
                description=f"could not reach {self.name}",
            )

    async def fetch_assertion(self, request: Request) -> IdentityAssertion:
        """Complete the callback and return the normalized identity.

        Raises OAuthError when the provider refuses, the state doesn't
        match, or the user info can't be used.
        """
        token = await self.client.authorize_access_token(request)

        # OIDC providers hand back verified claims with the token.
        info = token.get("userinfo")
        if not info:
            info = await self._fetch_userinfo(token)
        return self.assertion_from(info)

    def assertion_from(self, info: Any) -> IdentityAssertion:
        if not isinstance(info, dict):
            raise OAuthError(
                error="userinfo_failed",
                description=f"{self.name} returned unusable user info",
            )
        assertion = self.normalize(self.name, info)
        if not assertion.external_uid:
            raise OAuthError(
                error="missing_uid",
                description=f"{self.name} did not return a user id",
            )
        return assertion

    async def _fetch_userinfo(self, token: dict) -> dict:
        try:
            if self.userinfo_path:
                resp = await self.client.get(self.userinfo_path, token=token)
                resp.raise_for_status()
                return resp.json()
            return dict(await self.client.userinfo(token=token))
        except (httpx.HTTPError, ValueError, TypeError) as e:
            # ValueError: the body isn't JSON.
            logger.warning(
                "portcullis.userinfo_failed", provider=self.name, error=str(e)
            )
            raise OAuthError(
                error="userinfo_failed",
                description=f"could not fetch user info from {self.name}",
            )


class ProviderRegistry:
    """The configured identity providers, by name."""

    def __init__(self, integrations: dict[str, ProviderIntegration] | None = None):
        self._integrations = dict(integrations or {})

    @classmethod
    def from_settings(
        cls, providers: dict[str, ProviderSettings]
    ) -> "ProviderRegistry":
        oauth = OAuth()
        integrations = {}
        for name, conf in providers.items():
            options = resolve_options(name, conf)
            userinfo_path = options.pop("userinfo_path", None)
            oauth.register(name, **options)
            defaults = PROVIDER_DEFAULTS.get(name, _GENERIC)
            integrations[name] = ProviderIntegration(
                name,
                oauth.create_client(name),
                normalize=defaults.normalize,
                userinfo_path=userinfo_path,
            )
            logger.info("portcullis.provider_registered", provider=name)
        return cls(integrations)

    def get(self, name: str) -> ProviderIntegration | None:
        return self._integrations.get(name)

    def names(self) -> list[str]:
        return sorted(self._integrations)
