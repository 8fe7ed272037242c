"""Web search providers package."""

from .providers import WebSearchClient, WebSearchError, list_providers, missing_credentials

__all__ = ['WebSearchClient', 'WebSearchError', 'list_providers', 'missing_credentials']
