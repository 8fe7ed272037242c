"""
UI action models - messages the orchestrator writes to the chat state collaborator.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, Optional
from enum import Enum


class UIActionType(Enum):
    """Action kinds understood by the chat state collaborator."""
    TOOL_HIT = "TOOL_HIT"
    TOOL_RESULT = "TOOL_RESULT"
    TOOL_DETECTING_START = "TOOL_DETECTING_START"
    TOOL_DETECTING_END = "TOOL_DETECTING_END"
    THINK_START = "THINK_START"
    THINK_APPEND = "THINK_APPEND"
    THINK_END = "THINK_END"
    TOKEN_APPEND = "TOKEN_APPEND"
    STREAM_END = "STREAM_END"


@dataclass(frozen=True)
class UIAction:
    """One dispatched action."""
    type: UIActionType
    chunk: Optional[str] = None
    server: Optional[str] = None
    tool: Optional[str] = None
    card_id: Optional[str] = None
    ok: Optional[bool] = None
    result_preview: Optional[str] = None
    error_message: Optional[str] = None
    schema_hint: Optional[str] = None
    args: Dict[str, Any] = field(default_factory=dict)
    marker: Optional[str] = None

    @classmethod
    def token(cls, chunk: str) -> UIAction:
        return cls(UIActionType.TOKEN_APPEND, chunk=chunk)

    @classmethod
    def think_append(cls, chunk: str) -> UIAction:
        return cls(UIActionType.THINK_APPEND, chunk=chunk)

    @classmethod
    def simple(cls, action_type: UIActionType) -> UIAction:
        return cls(action_type)

    def to_dict(self) -> Dict[str, Any]:
        """Wire shape with None fields omitted."""
        data: Dict[str, Any] = {"type": self.type.value}
        for key in ("chunk", "server", "tool", "ok", "marker"):
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        if self.card_id is not None:
            data["cardId"] = self.card_id
        if self.result_preview is not None:
            data["resultPreview"] = self.result_preview
        if self.error_message is not None:
            data["errorMessage"] = self.error_message
        if self.schema_hint is not None:
            data["schemaHint"] = self.schema_hint
        if self.args:
            data["args"] = self.args
        return data
