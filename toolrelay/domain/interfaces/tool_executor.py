"""
Tool executor protocol interface.
"""

from __future__ import annotations
from typing import Protocol, TYPE_CHECKING

from ..models.tool import ToolCallResult

if TYPE_CHECKING:
    from ..services.execution import ExecutionContext


class ToolExecutor(Protocol):
    """A backend able to run one tool call to a uniform result."""

    async def execute(self, context: ExecutionContext) -> ToolCallResult:
        """Authorize, execute and record a tool call."""
        ...


class ExecutorRouter(Protocol):
    """Selects the backend for a server name."""

    def executor_for(self, server: str) -> ToolExecutor:
        """Native backend for the web search sentinel, generic MCP otherwise."""
        ...
