"""Configuration package."""

from .settings import AppSettings, get_settings, reload_settings
from .store import JsonConfigStore

__all__ = ['AppSettings', 'get_settings', 'reload_settings', 'JsonConfigStore']
