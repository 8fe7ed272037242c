"""
Generic MCP executor - runs CallTool on a connected server.
"""

from __future__ import annotations
import logging
from typing import Any, List, Optional

from ...domain.interfaces.tool_transport import ToolTransport
from ...domain.models.errors import ToolNotFound
from ...domain.models.tool import CallState, ToolCallRequest, ToolDescriptor
from ...domain.services.authorization import AuthorizationGate
from ...domain.services.call_history import CallHistory
from ...domain.services.execution import ExecutionContext
from ...domain.services.failure_escalation import FailureTracker
from ..mcp.catalog_cache import ToolCatalogCache
from ..mcp.connection_manager import ConnectionManager
from .base import BaseToolExecutor

LIST_TOOLS_TIMEOUT_S = 1.2


class McpToolExecutor(BaseToolExecutor):
    """Validates against the tool catalog, reconnects on demand, then calls the tool."""

    def __init__(
        self,
        transport: ToolTransport,
        catalog: ToolCatalogCache,
        connections: ConnectionManager,
        gate: AuthorizationGate,
        history: CallHistory,
        failures: FailureTracker,
        list_tools_timeout_s: float = LIST_TOOLS_TIMEOUT_S,
        logger: Optional[logging.Logger] = None,
        **kwargs
    ):
        super().__init__(gate, history, failures, logger=logger or logging.getLogger(__name__), **kwargs)
        self._transport = transport
        self._catalog = catalog
        self._connections = connections
        self.list_tools_timeout_s = list_tools_timeout_s

    async def validate(self, context: ExecutionContext, request: ToolCallRequest) -> None:
        """Unknown tools fail early with the server's tool list; an empty catalog skips the check."""
        available = await self._catalog.get_tools(request.server, timeout_s=self.list_tools_timeout_s)
        if not available:
            self._logger.debug(f"No tool list for {request.server}; skipping tool validation")
            return
        wanted = request.tool.lower()
        if any(t.name.lower() == wanted for t in available):
            return
        self._logger.warning(f"Tool not found: {request.server}.{request.tool}")
        raise ToolNotFound(
            request.server,
            request.tool,
            available=[t.name for t in available],
            described=[f"{t.name} - {t.description}" if t.description else t.name for t in available],
        )

    async def prepare(self, context: ExecutionContext, request: ToolCallRequest) -> None:
        context.check_cancelled()
        context.set_state(CallState.CONNECTING)
        await self._connections.ensure_connected(request.server)

    async def invoke(self, context: ExecutionContext, request: ToolCallRequest) -> Any:
        self._logger.debug(f"CallTool {request.server}.{request.tool}")
        return await self._transport.call_tool(request.server, request.tool, request.args)

    def known_tools(self, request: ToolCallRequest) -> List[ToolDescriptor]:
        return self._catalog.cached_tools(request.server)
