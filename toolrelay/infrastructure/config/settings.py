"""
Configuration settings - Infrastructure component for managing application configuration.
Uses pydantic-settings for validation and environment variable loading.
"""

from __future__ import annotations
from typing import Optional, Dict, Any, Union

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_ENV_CONFIG = SettingsConfigDict(env_file='.env', extra='ignore', populate_by_name=True)


class OllamaSettings(BaseSettings):
    """Ollama model transport configuration."""

    api_key: Optional[str] = Field(None, validation_alias='OLLAMA_API_KEY')
    host: str = Field('http://localhost:11434', validation_alias='OLLAMA_HOST')
    model: str = Field('gpt-oss:20b', validation_alias='OLLAMA_MODEL')
    think: bool = Field(True, validation_alias='OLLAMA_THINK')

    model_config = _ENV_CONFIG


class ToolCallSettings(BaseSettings):
    """Timeouts, preview limits and call history windows."""

    call_timeout_s: float = Field(15.0, validation_alias='TOOL_CALL_TIMEOUT_S')
    list_tools_timeout_s: float = Field(1.2, validation_alias='LIST_TOOLS_TIMEOUT_S')
    preconnect_timeout_s: float = Field(3.0, validation_alias='PRECONNECT_TIMEOUT_S')
    result_preview_max_chars: int = Field(12000, validation_alias='RESULT_PREVIEW_MAX_CHARS')
    follow_up_result_max_chars: int = Field(4000, validation_alias='FOLLOW_UP_RESULT_MAX_CHARS')

    duplicate_window_s: float = Field(60.0, validation_alias='DUPLICATE_WINDOW_S')
    reuse_window_s: float = Field(600.0, validation_alias='REUSE_WINDOW_S')
    history_max_entries: int = Field(100, validation_alias='HISTORY_MAX_ENTRIES')
    history_expire_s: float = Field(3600.0, validation_alias='HISTORY_EXPIRE_S')
    history_path: Optional[str] = Field(None, validation_alias='TOOL_HISTORY_PATH')

    model_config = _ENV_CONFIG

    @field_validator('call_timeout_s', 'list_tools_timeout_s', 'preconnect_timeout_s')
    @classmethod
    def validate_timeout(cls, v):
        """Timeouts must be positive."""
        return v if v > 0 else 15.0


class RecursionSettings(BaseSettings):
    """Follow-up loop depth."""

    max_depth: Union[int, str] = Field(2, validation_alias='TOOL_MAX_RECURSION_DEPTH')

    model_config = _ENV_CONFIG

    @field_validator('max_depth', mode='before')
    @classmethod
    def validate_max_depth(cls, v):
        """An int in 2..15 or 'infinite'; anything else falls back to 2."""
        if isinstance(v, str):
            text = v.strip().lower()
            if text == 'infinite':
                return 'infinite'
            try:
                v = int(text)
            except ValueError:
                return 2
        if isinstance(v, bool) or not isinstance(v, int):
            return 2
        return v if 2 <= v <= 15 else 2


class CatalogSettings(BaseSettings):
    """Tool catalog cache and @mention preheating."""

    ttl_s: float = Field(86400.0, validation_alias='TOOL_CATALOG_TTL_S')
    path: str = Field('~/.toolrelay/tool_catalog.json', validation_alias='TOOL_CATALOG_PATH')
    preheat_timeout_s: float = Field(5.0, validation_alias='PREHEAT_TIMEOUT_S')
    preheat_debounce_s: float = Field(0.5, validation_alias='PREHEAT_DEBOUNCE_S')
    preheat_refresh_s: float = Field(30.0, validation_alias='PREHEAT_REFRESH_S')
    preheat_cleanup_s: float = Field(300.0, validation_alias='PREHEAT_CLEANUP_S')

    model_config = _ENV_CONFIG


class WebSearchSettings(BaseSettings):
    """Native web search provider credentials."""

    provider: str = Field('duckduckgo', validation_alias='WEB_SEARCH_PROVIDER')
    google_api_key: Optional[str] = Field(None, validation_alias='GOOGLE_API_KEY')
    google_cse_id: Optional[str] = Field(None, validation_alias='GOOGLE_CSE_ID')
    bing_api_key: Optional[str] = Field(None, validation_alias='BING_API_KEY')
    ollama_api_key: Optional[str] = Field(None, validation_alias='OLLAMA_WEB_SEARCH_API_KEY')
    max_results: int = Field(5, validation_alias='WEB_SEARCH_MAX_RESULTS')
    fetch_max_content_chars: int = Field(8000, validation_alias='WEB_FETCH_MAX_CONTENT_CHARS')
    request_timeout_s: float = Field(10.0, validation_alias='WEB_SEARCH_TIMEOUT_S')

    model_config = _ENV_CONFIG

    @field_validator('provider')
    @classmethod
    def validate_provider(cls, v):
        """Normalize the provider id."""
        return (v or 'duckduckgo').strip().lower()

    def credentials(self) -> Dict[str, Optional[str]]:
        """Credential map consumed by the provider registry."""
        return {
            'google_api_key': self.google_api_key,
            'google_cse_id': self.google_cse_id,
            'bing_api_key': self.bing_api_key,
            'ollama_api_key': self.ollama_api_key,
        }


class AppSettings(BaseSettings):
    """Main application settings."""

    # Sub-configurations
    ollama: OllamaSettings = Field(default_factory=OllamaSettings)
    tool_calls: ToolCallSettings = Field(default_factory=ToolCallSettings)
    recursion: RecursionSettings = Field(default_factory=RecursionSettings)
    catalog: CatalogSettings = Field(default_factory=CatalogSettings)
    web_search: WebSearchSettings = Field(default_factory=WebSearchSettings)

    config_path: str = Field('~/.toolrelay/config.json', validation_alias='TOOLRELAY_CONFIG_PATH')

    # Logging
    log_level: str = Field('INFO', validation_alias='LOG_LEVEL')
    log_format: str = Field(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        validation_alias='LOG_FORMAT'
    )

    model_config = _ENV_CONFIG

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v):
        """Ensure log level is valid."""
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if v.upper() not in valid_levels:
            return 'INFO'
        return v.upper()

    def to_dict(self) -> Dict[str, Any]:
        """Convert settings to dictionary for serialization, secrets masked."""
        data = self.model_dump()
        for section, key in (('ollama', 'api_key'), ('web_search', 'google_api_key'),
                             ('web_search', 'bing_api_key'), ('web_search', 'ollama_api_key')):
            if data.get(section, {}).get(key):
                data[section][key] = '***'
        return data


# Global settings instance
_settings: Optional[AppSettings] = None


def get_settings() -> AppSettings:
    """Get global settings instance (singleton pattern)."""
    global _settings
    if _settings is None:
        _settings = AppSettings()
    return _settings


def reload_settings() -> AppSettings:
    """Reload settings from environment (for testing)."""
    global _settings
    _settings = AppSettings()
    return _settings
