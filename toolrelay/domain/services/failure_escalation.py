"""
Failure escalation - consecutive failure counts per (conversation, server, tool).
"""

from __future__ import annotations
import logging
from typing import Any, Dict, NamedTuple, Optional, Sequence, Tuple

from ..models.tool import ToolDescriptor
from .schema_hints import build_escalated_hint


class FailKey(NamedTuple):
    conversation_id: str
    server: str
    tool: str


class FailureTracker:
    """Counts consecutive failures and turns the count into hint verbosity."""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self._counts: Dict[FailKey, int] = {}
        self._logger = logger or logging.getLogger(__name__)

    def increment(self, conversation_id: str, server: str, tool: str) -> int:
        """Record a failure and return the new stage."""
        key = FailKey(conversation_id, server, tool)
        stage = self._counts.get(key, 0) + 1
        self._counts[key] = stage
        self._logger.debug(f"Failure stage {stage} for {server}.{tool} in {conversation_id}")
        return stage

    def get(self, conversation_id: str, server: str, tool: str) -> int:
        return self._counts.get(FailKey(conversation_id, server, tool), 0)

    def reset(self, conversation_id: str, server: str, tool: str) -> None:
        self._counts.pop(FailKey(conversation_id, server, tool), None)

    def reset_conversation(self, conversation_id: str) -> None:
        """Forget every counter of a conversation, used when a new user turn starts."""
        for key in [k for k in self._counts if k.conversation_id == conversation_id]:
            del self._counts[key]

    def escalate(
        self,
        conversation_id: str,
        server: str,
        tool: str,
        tools: Sequence[ToolDescriptor],
        provided_args: Optional[Dict[str, Any]] = None
    ) -> Tuple[int, str]:
        """Increment and build the matching hint; returns ``(stage, hint)``."""
        stage = self.increment(conversation_id, server, tool)
        return stage, build_escalated_hint(stage, server, tool, tools, provided_args)
