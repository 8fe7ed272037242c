"""Tool executors package."""

from .base import BaseToolExecutor
from .mcp_executor import McpToolExecutor
from .router import ServerExecutorRouter
from .web_search_executor import WEB_SEARCH_TOOLS, WebSearchExecutor

__all__ = ['BaseToolExecutor', 'McpToolExecutor', 'ServerExecutorRouter', 'WEB_SEARCH_TOOLS', 'WebSearchExecutor']
