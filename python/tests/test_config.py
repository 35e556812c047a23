"""Tests for environment-driven settings."""

import pytest
from pydantic import ValidationError

from redline.config import Environment, Settings, clear_settings_cache, get_settings

AUTH_VARS = ("AUTH_JWKS_URL", "AUTH_ISSUER", "AUTH_AUDIENCES")


@pytest.fixture
def env(monkeypatch):
    """Clean environment with only DATABASE_URL set."""
    for name in (*AUTH_VARS, "REDLINE_ENV", "SUPABASE_URL", "SUPABASE_SERVICE_KEY", "REDIS_URL"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("DATABASE_URL", "postgresql+psycopg://localhost/redline")
    return monkeypatch


def set_auth(env):
    env.setenv("AUTH_JWKS_URL", "https://auth.example/.well-known/jwks.json")
    env.setenv("AUTH_ISSUER", "https://auth.example/auth/v1/")
    env.setenv("AUTH_AUDIENCES", "authenticated, redline-web ,")


class TestSettings:
    def test_prod_requires_auth(self, env):
        env.setenv("REDLINE_ENV", "prod")

        with pytest.raises(ValidationError) as exc:
            Settings(_env_file=None)

        assert "AUTH_JWKS_URL" in str(exc.value)

    def test_test_env_skips_auth(self, env):
        env.setenv("REDLINE_ENV", "test")

        settings = Settings(_env_file=None)

        assert settings.redline_env == Environment.TEST
        assert settings.audience_list == []
        assert settings.normalized_issuer is None

    def test_database_url_required(self, env):
        env.delenv("DATABASE_URL")
        env.setenv("REDLINE_ENV", "test")

        with pytest.raises(ValidationError):
            Settings(_env_file=None)

    def test_auth_values_are_normalized(self, env):
        env.setenv("REDLINE_ENV", "staging")
        set_auth(env)

        settings = Settings(_env_file=None)

        assert settings.audience_list == ["authenticated", "redline-web"]
        assert settings.normalized_issuer == "https://auth.example/auth/v1"

    def test_defaults(self, env):
        env.setenv("REDLINE_ENV", "test")

        settings = Settings(_env_file=None)

        assert settings.comment_images_bucket == "comment-images"
        assert settings.image_upload_timeout_s == 30.0
        assert settings.max_comment_image_bytes == 10 * 1024 * 1024
        assert settings.redis_url is None
        assert settings.storage_configured is False

    def test_storage_needs_both_credentials(self, env):
        env.setenv("REDLINE_ENV", "test")
        env.setenv("SUPABASE_URL", "https://project.supabase.co")

        assert Settings(_env_file=None).storage_configured is False

        env.setenv("SUPABASE_SERVICE_KEY", "service-role-key")
        assert Settings(_env_file=None).storage_configured is True

    def test_get_settings_is_cached_until_cleared(self, env):
        env.setenv("REDLINE_ENV", "test")
        first = get_settings()

        assert get_settings() is first
        clear_settings_cache()
        assert get_settings() is not first
