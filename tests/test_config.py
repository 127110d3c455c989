"""Tests for environment-driven settings."""

import pydantic
import pytest

from umiauth.config import Settings, get_settings, parse_duration, reset_settings_cache

GOOD_ACCESS = "a" * 40
GOOD_REFRESH = "r" * 40


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("30s", 30),
        ("15m", 900),
        ("24h", 86400),
        ("7d", 604800),
        ("7D", 604800),
        ("3600", 3600),
        (120, 120),
    ],
)
def test_parse_duration(raw, expected):
    assert parse_duration(raw) == expected


@pytest.mark.parametrize("raw", ["", "soon", "-5m", "0", 0, True, "10w"])
def test_parse_duration_rejects(raw):
    with pytest.raises(ValueError):
        parse_duration(raw)


def test_defaults():
    settings = Settings(jwt_secret=GOOD_ACCESS, jwt_refresh_secret=GOOD_REFRESH)

    assert settings.access_token_ttl_seconds == 24 * 60 * 60
    assert settings.refresh_token_ttl_seconds == 7 * 24 * 60 * 60
    assert settings.token_cleanup_interval_seconds == 60 * 60
    assert settings.key_namespace == ""
    assert settings.token_cleanup_enabled is True


def test_from_env_reads_aliases(monkeypatch):
    monkeypatch.setenv("JWT_SECRET", GOOD_ACCESS)
    monkeypatch.setenv("JWT_REFRESH_SECRET", GOOD_REFRESH)
    monkeypatch.setenv("JWT_EXPIRES_IN", "15m")
    monkeypatch.setenv("JWT_REFRESH_EXPIRES_IN", "30d")
    monkeypatch.setenv("REDIS_URL", "redis://cache:6379/2")
    monkeypatch.setenv("REDIS_KEY_NAMESPACE", "umi:")
    monkeypatch.setenv("TOKEN_CLEANUP_INTERVAL_SECONDS", "10m")

    settings = Settings.from_env()

    assert settings.access_token_ttl_seconds == 900
    assert settings.refresh_token_ttl_seconds == 30 * 24 * 60 * 60
    assert settings.redis_url == "redis://cache:6379/2"
    assert settings.key_namespace == "umi:"
    assert settings.token_cleanup_interval_seconds == 600


def test_missing_secret_outside_test_mode():
    with pytest.raises(pydantic.ValidationError):
        Settings(jwt_secret=GOOD_ACCESS, test_mode=False)


def test_missing_secrets_generated_in_test_mode():
    settings = Settings(test_mode=True)

    assert len(settings.jwt_secret) >= 32
    assert len(settings.jwt_refresh_secret) >= 32
    assert settings.jwt_secret != settings.jwt_refresh_secret


def test_short_secret_rejected():
    with pytest.raises(pydantic.ValidationError):
        Settings(jwt_secret="short", jwt_refresh_secret=GOOD_REFRESH)


def test_identical_secrets_rejected():
    with pytest.raises(pydantic.ValidationError):
        Settings(jwt_secret=GOOD_ACCESS, jwt_refresh_secret=GOOD_ACCESS)


def test_settings_cache(monkeypatch):
    reset_settings_cache()
    first = get_settings()

    assert get_settings() is first

    monkeypatch.setenv("REDIS_KEY_NAMESPACE", "other:")
    reset_settings_cache()
    assert get_settings().key_namespace == "other:"
