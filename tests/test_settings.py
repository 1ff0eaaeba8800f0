from __future__ import annotations

import pytest

from errors import Unconfigured
from settings import Settings

ENV_VARS = (
    "SHOPIFY_SHOP",
    "SHOPIFY_API_VER",
    "SHOPIFY_API_KEY",
    "SHOPIFY_API_SECRET",
    "APP_URL",
    "SHOPIFY_ADMIN_TOKEN",
    "ALLOWED_LOCATION_IDS",
    "OAUTH_STATE_STRATEGY",
    "OAUTH_STATE_MAX_AGE_MS",
    "HMAC_CANONICALIZATION",
    "PROXY_REQUIRE_SIGNATURE",
    "CACHE_TTL_MS",
    "CACHE_MAX_ENTRIES",
    "HTTP_TIMEOUT_SECONDS",
    "PORT",
    "LOG_LEVEL",
    "DEBUG_ENDPOINTS",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def test_defaults() -> None:
    settings = Settings.from_env(env_file=None)

    assert settings.shop is None
    assert settings.api_version == "2024-10"
    assert settings.state_strategy == "signed"
    assert settings.state_max_age_ms == 600_000
    assert settings.cache_ttl_ms == 60_000
    assert settings.cache_max_entries is None
    assert settings.allowed_location_ids == ()
    assert settings.port == 3000
    assert not settings.oauth_configured


def test_reads_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SHOPIFY_SHOP", "binsprouts.myshopify.com")
    monkeypatch.setenv("SHOPIFY_API_KEY", "key")
    monkeypatch.setenv("SHOPIFY_API_SECRET", "secret")
    monkeypatch.setenv("APP_URL", "https://inventory-proxy.example.com/")
    monkeypatch.setenv("ALLOWED_LOCATION_IDS", " gid://shopify/Location/111, ,gid://shopify/Location/222 ")
    monkeypatch.setenv("OAUTH_STATE_STRATEGY", "STORE")
    monkeypatch.setenv("PROXY_REQUIRE_SIGNATURE", "true")
    monkeypatch.setenv("CACHE_MAX_ENTRIES", "1000")
    monkeypatch.setenv("PORT", "8080")

    settings = Settings.from_env(env_file=None)

    assert settings.oauth_configured
    assert settings.redirect_uri == "https://inventory-proxy.example.com/auth/callback"
    assert settings.allowed_location_ids == ("gid://shopify/Location/111", "gid://shopify/Location/222")
    assert settings.state_strategy == "store"
    assert settings.proxy_require_signature is True
    assert settings.cache_max_entries == 1000
    assert settings.port == 8080


@pytest.mark.parametrize(
    ("name", "value"),
    [
        ("OAUTH_STATE_STRATEGY", "cookie"),
        ("HMAC_CANONICALIZATION", "base64"),
        ("CACHE_TTL_MS", "a minute"),
        ("CACHE_MAX_ENTRIES", "0"),
        ("HTTP_TIMEOUT_SECONDS", "forever"),
        ("LOG_LEVEL", "CHATTY"),
    ],
)
def test_invalid_values_are_unconfigured(monkeypatch: pytest.MonkeyPatch, name: str, value: str) -> None:
    monkeypatch.setenv(name, value)

    with pytest.raises(Unconfigured):
        Settings.from_env(env_file=None)


def test_log_level_is_case_insensitive(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LOG_LEVEL", " debug ")

    assert Settings.from_env(env_file=None).log_level == "DEBUG"


def test_empty_values_fall_back_to_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SHOPIFY_SHOP", "")
    monkeypatch.setenv("CACHE_MAX_ENTRIES", "")

    settings = Settings.from_env(env_file=None)

    assert settings.shop is None
    assert settings.cache_max_entries is None


def test_debug_endpoints_off_by_default() -> None:
    assert Settings.from_env(env_file=None).debug_endpoints is False
