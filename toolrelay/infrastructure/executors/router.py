"""
Executor router - picks the backend for a server name.
"""

from __future__ import annotations

from ...domain.interfaces.tool_executor import ToolExecutor
from ...domain.models.tool import WEB_SEARCH_SERVER


class ServerExecutorRouter:
    """The web search sentinel goes to the native backend, everything else to MCP."""

    def __init__(self, mcp: ToolExecutor, web_search: ToolExecutor, web_search_server: str = WEB_SEARCH_SERVER):
        self._mcp = mcp
        self._web_search = web_search
        self._web_search_server = web_search_server

    def executor_for(self, server: str) -> ToolExecutor:
        if server == self._web_search_server:
            return self._web_search
        return self._mcp
