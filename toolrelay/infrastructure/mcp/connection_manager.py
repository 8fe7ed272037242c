"""
Connection manager - lazily (re)connects a named MCP server from persisted config.
"""

from __future__ import annotations
import logging
from typing import Optional

from ...domain.interfaces.config_store import ConfigStore
from ...domain.interfaces.tool_transport import ToolTransport
from ...domain.models.errors import ConfigurationMissing, ConnectionFailed, ToolRelayError

CONNECTED = "connected"


class ConnectionManager:
    """Makes exactly one connection attempt per call; retries belong to the follow-up loop."""

    def __init__(self, transport: ToolTransport, config: ConfigStore, logger: Optional[logging.Logger] = None):
        self._transport = transport
        self._config = config
        self._logger = logger or logging.getLogger(__name__)

    def is_connected(self, server: str) -> bool:
        return self._transport.status(server) == CONNECTED

    async def ensure_connected(self, server: str) -> None:
        """No-op when connected; otherwise connect once using the persisted config."""
        status = self._transport.status(server)
        if status == CONNECTED:
            return
        self._logger.debug(f"Server {server} is {status!r}; reconnecting")
        config = self._config.get_server_config(server)
        if config is None:
            self._logger.error(f"No configuration found for server {server}")
            raise ConfigurationMissing(server)
        try:
            await self._transport.connect(server, config)
        except ToolRelayError:
            raise
        except Exception as e:
            self._logger.error(f"Reconnecting {server} failed: {e}")
            raise ConnectionFailed(server, f"Failed to connect to server '{server}': {e}") from e
        self._logger.debug(f"Server {server} reconnected")
