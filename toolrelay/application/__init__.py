"""Application layer - Application services orchestrating business logic."""

from .tool_chat_service import ToolChatService

__all__ = [
    "ToolChatService"
]
