"""Tests for environment-driven settings."""

import pytest

from chatdesk.config import AuthMethod, Settings


def test_environment_variables_are_read(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("GEMINI_API_KEY", "env-key")
    monkeypatch.setenv("AUTH_METHOD", "code_assist")
    monkeypatch.setenv("USE_STREAMING", "false")
    monkeypatch.setenv("GEMINI_MODEL", "gemini-2.5-pro")

    settings = Settings()

    assert settings.gemini_api_key is not None
    assert settings.gemini_api_key.get_secret_value() == "env-key"
    assert settings.auth_method is AuthMethod.CODE_ASSIST
    assert settings.use_streaming is False
    assert settings.default_model == "gemini-2.5-pro"


def test_google_api_key_is_accepted_as_fallback(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    monkeypatch.setenv("GOOGLE_API_KEY", "google-key")

    settings = Settings()

    assert settings.gemini_api_key is not None
    assert settings.gemini_api_key.get_secret_value() == "google-key"


def test_missing_credentials_per_auth_method(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("GEMINI_API_KEY", "GOOGLE_API_KEY", "CODE_ASSIST_OAUTH_TOKEN"):
        monkeypatch.delenv(name, raising=False)

    assert Settings(gemini_api_key="").missing_credentials() == "API key not set."
    assert Settings(gemini_api_key="k").missing_credentials() is None

    oauth = Settings(auth_method="code_assist", code_assist_oauth_token="t")
    oauth.code_assist_project_id = None
    assert oauth.missing_credentials() == (
        "OAuth token or Project ID not set. Please login in settings."
    )
    oauth.code_assist_project_id = "p"
    assert oauth.missing_credentials() is None


def test_cancel_poll_interval_must_be_positive() -> None:
    with pytest.raises(ValueError):
        Settings(cancel_poll_interval=0)
