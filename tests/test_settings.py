import pytest

from toolrelay.infrastructure.config import settings as settings_module
from toolrelay.infrastructure.config.settings import AppSettings, get_settings, reload_settings

_ENV = (
    "OLLAMA_MODEL", "OLLAMA_API_KEY", "TOOL_MAX_RECURSION_DEPTH", "WEB_SEARCH_PROVIDER",
    "LOG_LEVEL", "TOOL_CALL_TIMEOUT_S", "GOOGLE_API_KEY", "TOOL_CATALOG_TTL_S",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in _ENV:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr(settings_module, "_settings", None)
    yield


def test_defaults():
    settings = AppSettings()

    assert settings.ollama.model == "gpt-oss:20b"
    assert settings.tool_calls.call_timeout_s == 15.0
    assert settings.tool_calls.list_tools_timeout_s == 1.2
    assert settings.tool_calls.duplicate_window_s == 60.0
    assert settings.tool_calls.reuse_window_s == 600.0
    assert settings.recursion.max_depth == 2
    assert settings.catalog.ttl_s == 86400.0
    assert settings.web_search.provider == "duckduckgo"
    assert settings.log_level == "INFO"


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("OLLAMA_MODEL", "deepseek-r1:14b")
    monkeypatch.setenv("TOOL_MAX_RECURSION_DEPTH", "infinite")
    monkeypatch.setenv("WEB_SEARCH_PROVIDER", " Google ")
    monkeypatch.setenv("LOG_LEVEL", "debug")
    monkeypatch.setenv("TOOL_CATALOG_TTL_S", "60")

    settings = AppSettings()

    assert settings.ollama.model == "deepseek-r1:14b"
    assert settings.recursion.max_depth == "infinite"
    assert settings.web_search.provider == "google"
    assert settings.log_level == "DEBUG"
    assert settings.catalog.ttl_s == 60.0


@pytest.mark.parametrize("raw,expected", [("7", 7), ("40", 2), ("many", 2), ("1", 2)])
def test_recursion_depth_validation(monkeypatch, raw, expected):
    monkeypatch.setenv("TOOL_MAX_RECURSION_DEPTH", raw)

    assert AppSettings().recursion.max_depth == expected


def test_invalid_values_fall_back(monkeypatch):
    monkeypatch.setenv("TOOL_CALL_TIMEOUT_S", "-3")
    monkeypatch.setenv("LOG_LEVEL", "chatty")

    settings = AppSettings()

    assert settings.tool_calls.call_timeout_s == 15.0
    assert settings.log_level == "INFO"


def test_to_dict_masks_secrets(monkeypatch):
    monkeypatch.setenv("OLLAMA_API_KEY", "secret")
    monkeypatch.setenv("GOOGLE_API_KEY", "also-secret")

    settings = AppSettings()
    data = settings.to_dict()

    assert data["ollama"]["api_key"] == "***"
    assert data["web_search"]["google_api_key"] == "***"
    assert settings.web_search.credentials()["google_api_key"] == "also-secret"


def test_get_settings_is_cached_until_reload(monkeypatch):
    first = get_settings()
    assert get_settings() is first

    monkeypatch.setenv("OLLAMA_MODEL", "other")
    reloaded = reload_settings()
    assert reloaded is not first
    assert get_settings().ollama.model == "other"
