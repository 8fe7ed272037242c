"""
Persisted configuration protocol interface.
"""

from __future__ import annotations
from typing import Protocol, List, Dict, Any, Optional, Union


class ConfigStore(Protocol):
    """Read side of the persisted MCP configuration."""

    def get_server_config(self, name: str) -> Optional[Dict[str, Any]]:
        """Connection config for a named server, None when unknown."""
        ...

    def enabled_servers(self) -> List[str]:
        """Names of servers enabled for tool use."""
        ...

    def default_auto_authorize(self) -> bool:
        """Global default for auto-authorizing tool calls."""
        ...

    def server_auto_authorize(self, name: str) -> Optional[bool]:
        """Per-server authorization override, None when unset."""
        ...

    def server_max_recursion_depth(self, name: str) -> Optional[int]:
        """Per-server recursion depth override, None when unset."""
        ...

    def max_recursion_depth(self) -> Union[int, str]:
        """Global recursion depth: an int in 2..15 or 'infinite'."""
        ...
