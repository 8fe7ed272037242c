"""
Tool transport protocol interface.
Defines the contract for reaching MCP tool servers (stdio, SSE, HTTP or an RPC bridge).
"""

from __future__ import annotations
from typing import Protocol, List, Dict, Any, Optional


class ToolTransport(Protocol):
    """Protocol for MCP client implementations."""

    async def connect(self, name: str, config: Dict[str, Any]) -> None:
        """Start a connection to the named server using its persisted config."""
        ...

    async def disconnect(self, name: str) -> None:
        """Close the connection to the named server."""
        ...

    async def list_tools(self, name: str) -> List[Any]:
        """Return the server's tools (name, description, JSON schema)."""
        ...

    async def call_tool(self, name: str, tool: str, args: Optional[Dict[str, Any]] = None) -> Any:
        """Invoke a tool and return its raw result."""
        ...

    def status(self, name: str) -> str:
        """Connection status, 'connected' when usable."""
        ...
