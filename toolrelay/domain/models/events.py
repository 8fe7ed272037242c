"""
Stream event models - canonical output of the token classifier.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union
import json


@dataclass(frozen=True)
class StreamDelta:
    """One raw increment from a model transport."""
    content: Optional[str] = None
    thinking: Optional[str] = None
    reasoning_content: Optional[str] = None
    done: bool = False


@dataclass(frozen=True)
class ParsedToolCall:
    """Structured view of a detected tool-call instruction."""
    server_name: str
    tool_name: str
    arguments: Optional[str] = None  # JSON text

    def arguments_dict(self) -> Dict[str, Any]:
        """Decode the JSON arguments, empty dict when absent or malformed."""
        if not self.arguments:
            return {}
        try:
            value = json.loads(self.arguments)
        except json.JSONDecodeError:
            return {}
        return value if isinstance(value, dict) else {}


@dataclass(frozen=True)
class ThinkingStart:
    mode: Optional[str] = None
    type: str = "thinking_start"


@dataclass(frozen=True)
class ThinkingToken:
    content: str
    type: str = "thinking_token"


@dataclass(frozen=True)
class ThinkingEnd:
    type: str = "thinking_end"


@dataclass(frozen=True)
class ContentToken:
    content: str
    type: str = "content_token"


@dataclass(frozen=True)
class ToolCallEvent:
    raw: str
    parsed: Optional[ParsedToolCall] = None
    type: str = "tool_call"


@dataclass(frozen=True)
class StreamComplete:
    type: str = "stream_complete"


StreamEvent = Union[ThinkingStart, ThinkingToken, ThinkingEnd, ContentToken, ToolCallEvent, StreamComplete]
