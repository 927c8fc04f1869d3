import pytest

from cardwire.domain.models.errors import ConfigurationError
from cardwire.infrastructure.config import settings as settings_module
from cardwire.infrastructure.config.settings import (
    DEFAULT_BASE_URL,
    ClientSettings,
    get_config,
    load_client_settings,
    set_config_for_testing,
)


def test_defaults_with_api_key(monkeypatch):
    monkeypatch.setenv("MCP_API_KEY", "key-abc")

    settings = load_client_settings()

    assert settings.base_url == DEFAULT_BASE_URL
    assert settings.auth_method == "api_key"
    assert settings.role == "user"
    assert settings.issuer == "magi-archive"
    assert settings.max_retries == 3
    assert settings.refresh_buffer_seconds == 300
    assert settings.max_page_size == 100
    assert settings.verify_tokens is False


def test_environment_values_are_coerced(monkeypatch):
    monkeypatch.setenv("MCP_API_KEY", "key-abc")
    monkeypatch.setenv("MCP_ROLE", "gm")
    monkeypatch.setenv("JWKS_CACHE_TTL", "600")
    monkeypatch.setenv("CARDWIRE_VERIFY_TOKENS", "yes")
    monkeypatch.setenv("DECKO_API_BASE_URL", "http://localhost:3000/api/mcp")

    settings = load_client_settings()

    assert settings.role == "gm"
    assert settings.key_set_ttl_seconds == 600
    assert settings.verify_tokens is True
    assert settings.url_for("/cards") == "http://localhost:3000/api/mcp/cards"


def test_yaml_values_are_used_below_the_environment(monkeypatch):
    monkeypatch.setattr(settings_module, "_config", {"auth.api_key": "from-yaml", "pagination.max_pages": 5})
    monkeypatch.setenv("CARDWIRE_MAX_PAGES", "7")

    settings = load_client_settings()

    assert settings.api_key == "from-yaml"
    assert settings.max_pages == 7


def test_test_config_wins_over_environment(monkeypatch):
    monkeypatch.setenv("MCP_ROLE", "gm")
    set_config_for_testing({"MCP_ROLE": "admin"})

    assert get_config("MCP_ROLE") == "admin"


def test_explicit_overrides_win(monkeypatch):
    monkeypatch.setenv("MCP_API_KEY", "key-abc")

    settings = load_client_settings(role="admin", max_retries=None)

    assert settings.role == "admin"
    assert settings.max_retries == 3


def test_username_auth_wins_when_both_are_configured():
    settings = ClientSettings(api_key="k", username="alice", password="pw").validate()

    assert settings.auth_method == "username"
    assert settings.auth_payload() == {"username": "alice", "password": "pw"}


def test_username_auth_sends_non_default_role():
    settings = ClientSettings(username="alice", password="pw", role="gm").validate()

    assert settings.auth_payload() == {"username": "alice", "password": "pw", "role": "gm"}


def test_api_key_payload_always_carries_role():
    assert ClientSettings(api_key="k").auth_payload() == {"api_key": "k", "role": "user"}


@pytest.mark.parametrize("kwargs, message", [
    ({}, "Must provide either"),
    ({"username": "alice"}, "MCP_PASSWORD is required"),
    ({"password": "pw"}, "MCP_USERNAME is required"),
    ({"api_key": "k", "role": "superuser"}, "MCP_ROLE must be one of: user, gm, admin"),
    ({"api_key": "k", "base_url": "ftp://cards"}, r"http\(s\) URL"),
    ({"api_key": "k", "max_page_size": 0}, "max_page_size must be positive"),
    ({"api_key": "k", "max_retries": -1}, "max_retries cannot be negative"),
    ({"api_key": "k", "backoff_factor": 0.5}, "backoff_factor must be at least 1"),
])
def test_invalid_settings_are_rejected(kwargs, message):
    with pytest.raises(ConfigurationError, match=message):
        ClientSettings(**kwargs).validate()


def test_credentials_optional_when_not_required():
    settings = ClientSettings().validate(require_credentials=False)

    assert settings.auth_method is None


def test_invalid_number_in_environment_is_a_configuration_error(monkeypatch):
    monkeypatch.setenv("MCP_API_KEY", "key-abc")
    monkeypatch.setenv("CARDWIRE_MAX_RETRIES", "many")

    with pytest.raises(ConfigurationError, match="max_retries"):
        load_client_settings()


def test_url_for_joins_with_a_single_slash():
    settings = ClientSettings(base_url="https://cards.test/api/mcp/", api_key="k")

    assert settings.url_for("/auth") == "https://cards.test/api/mcp/auth"
    assert settings.url_for("health") == "https://cards.test/api/mcp/health"


def test_repr_hides_secrets():
    text = repr(ClientSettings(api_key="super-secret", password="pw", username="u"))

    assert "super-secret" not in text
    assert "pw" not in text
