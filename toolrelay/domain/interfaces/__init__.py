"""Domain interfaces package - Protocols for ports."""

from .tool_transport import ToolTransport
from .config_store import ConfigStore
from .llm_client import ModelTransport
from .chat_state import ChatStateDispatcher
from .tool_executor import ToolExecutor, ExecutorRouter

__all__ = [
    "ToolTransport",
    "ConfigStore",
    "ModelTransport",
    "ChatStateDispatcher",
    "ToolExecutor",
    "ExecutorRouter"
]
