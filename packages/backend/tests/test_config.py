"""Settings tests."""

import pytest
from pydantic import ValidationError

from portcullis.config import DEFAULT_SESSION_SECRET, Settings


def test_development_allows_default_secret():
    config = Settings(environment="development")
    assert config.session_secret == DEFAULT_SESSION_SECRET


def test_production_requires_session_secret():
    with pytest.raises(ValidationError, match="PORTCULLIS_SESSION_SECRET"):
        Settings(environment="production")


def test_production_with_secret():
    config = Settings(environment="production", session_secret="s3cr3t-value")
    assert config.session_secret == "s3cr3t-value"


def test_providers_from_nested_env(monkeypatch):
    monkeypatch.setenv("PORTCULLIS_PROVIDERS__GOOGLE__CLIENT_ID", "gid")
    monkeypatch.setenv("PORTCULLIS_PROVIDERS__GOOGLE__CLIENT_SECRET", "gsecret")

    config = Settings()

    assert list(config.providers) == ["google"]
    assert config.providers["google"].client_id == "gid"
    assert config.providers["google"].client_secret == "gsecret"
    assert config.providers["google"].scope is None


def test_providers_from_json_env(monkeypatch):
    monkeypatch.setenv(
        "PORTCULLIS_PROVIDERS",
        '{"github": {"client_id": "a", "client_secret": "b", "scope": "read:user"}}',
    )
    config = Settings()
    assert config.providers["github"].scope == "read:user"


def test_no_providers_by_default():
    assert Settings().providers == {}
