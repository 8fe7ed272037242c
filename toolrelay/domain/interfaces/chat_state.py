"""
Chat state protocol interface.
The orchestrator is write-only toward this collaborator, apart from the
cancellation check.
"""

from __future__ import annotations
from typing import Protocol

from ..models.ui import UIAction


class ChatStateDispatcher(Protocol):
    """Protocol for the UI/state store."""

    def dispatch(self, message_id: str, action: UIAction) -> None:
        """Apply an action to an assistant message."""
        ...

    def notify(self, title: str, description: str) -> None:
        """Show a user-visible notice (toast)."""
        ...

    def mark_error(self, message_id: str, error: str) -> None:
        """Mark the message as failed (model stream failure only)."""
        ...

    def is_cancelled(self, message_id: str) -> bool:
        """True once the message reached an externally-set terminal state."""
        ...
