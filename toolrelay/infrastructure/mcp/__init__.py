"""MCP infrastructure package."""

from .catalog_cache import ToolCatalogCache
from .connection_manager import ConnectionManager
from .preheater import McpPreheater, extract_mentions

__all__ = ['ToolCatalogCache', 'ConnectionManager', 'McpPreheater', 'extract_mentions']
