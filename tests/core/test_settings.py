"""Tests for deploystore.core.settings — pydantic-settings configuration."""

import pytest
from pydantic import ValidationError

from deploystore.core.settings import DeployStoreSettings, clear_settings_cache, get_settings


class TestDefaults:
    def test_defaults(self):
        settings = DeployStoreSettings(_env_file=None)
        assert settings.api_base_url == "https://api.vercel.com"
        assert settings.token is None
        assert settings.token_value is None
        assert settings.retry_attempts == 3
        assert settings.retry_base_delay == 1.0
        assert settings.calls_per_window == 60
        assert settings.rate_limit_window_seconds == 60.0
        assert settings.store_name == "deploydatasave"
        assert settings.file_name == "data.json"
        assert settings.propagation_delay == 2.0
        assert settings.cache_ttl_seconds == 300.0
        assert settings.cache_max_bytes == 10 * 1024 * 1024

    def test_store_url_is_derived_from_name(self):
        settings = DeployStoreSettings(_env_file=None, store_name="team-data")
        assert settings.store_url == "https://team-data.vercel.app"

    def test_explicit_store_url_wins(self):
        settings = DeployStoreSettings(_env_file=None, store_url="https://example.com/")
        assert settings.store_url == "https://example.com"

    def test_token_is_secret(self):
        settings = DeployStoreSettings(_env_file=None, token="abc_123")
        assert "abc_123" not in repr(settings)
        assert settings.token_value == "abc_123"


class TestValidation:
    @pytest.mark.parametrize("name", ["ab", "Has_Underscore", "x" * 64, "with space"])
    def test_invalid_store_name(self, name):
        with pytest.raises(ValidationError):
            DeployStoreSettings(_env_file=None, store_name=name)

    def test_store_name_is_lowercased(self):
        assert DeployStoreSettings(_env_file=None, store_name="MyStore").store_name == "mystore"

    def test_retry_attempts_must_be_positive(self):
        with pytest.raises(ValidationError):
            DeployStoreSettings(_env_file=None, retry_attempts=0)


class TestEnvironment:
    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("DEPLOYSTORE_RETRY_ATTEMPTS", "5")
        monkeypatch.setenv("DEPLOYSTORE_TEAM_ID", "team_42")
        settings = DeployStoreSettings(_env_file=None)
        assert settings.retry_attempts == 5
        assert settings.team_id == "team_42"

    def test_env_file(self, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text("DEPLOYSTORE_STORE_NAME=from-file\n")
        settings = get_settings(env_file=env_file)
        assert settings.store_name == "from-file"

    def test_get_settings_is_cached(self, monkeypatch):
        first = get_settings()
        monkeypatch.setenv("DEPLOYSTORE_CALLS_PER_WINDOW", "7")
        assert get_settings() is first
        assert get_settings(_force_reload=True).calls_per_window == 7

    def test_clear_settings_cache(self, monkeypatch):
        first = get_settings()
        clear_settings_cache()
        assert get_settings() is not first
