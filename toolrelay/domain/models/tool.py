"""
Tool domain models - Pure business logic for tool call requests and results.
"""

from __future__ import annotations
from dataclasses import dataclass, field, replace
from typing import List, Dict, Any, Optional, Tuple
from enum import Enum
import asyncio
import json
import time

from .errors import ToolRelayError

WEB_SEARCH_SERVER = "web_search"
RESULT_PREVIEW_MAX_CHARS = 12000


def fingerprint_args(args: Optional[Dict[str, Any]]) -> str:
    """Stable JSON fingerprint of tool arguments."""
    return json.dumps(args or {}, sort_keys=True, ensure_ascii=False, default=str)


def stringify_payload(payload: Any) -> str:
    """Render a tool payload as text for previews and prompts."""
    if isinstance(payload, str):
        return payload
    return json.dumps(payload, ensure_ascii=False, default=str)


def normalize_tool_call(server: str, tool: str, args: Optional[Dict[str, Any]]) -> Tuple[str, Dict[str, Any]]:
    """Apply server-specific tool and argument normalization."""
    normalized = dict(args or {})
    effective_tool = tool
    if server == "filesystem":
        if tool == "list":
            effective_tool = "dir"
        path = normalized.get("path")
        if isinstance(path, str):
            normalized["path"] = path.replace("\\", "/")
    return effective_tool, normalized


class ResultClass(Enum):
    """Coarse classification of a tool result used to tailor follow-up instructions."""
    ERROR = "error"
    EMPTY = "empty"
    DATA = "data"
    UNKNOWN = "unknown"


class CallState(Enum):
    """Orchestration state of a single tool call."""
    DETECTED = "detected"
    AUTHORIZING = "authorizing"
    DENIED = "denied"
    CACHED = "cached"
    CONNECTING = "connecting"
    EXECUTING = "executing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    INJECTING = "injecting"
    FOLLOWING_UP = "following_up"
    RECURSING = "recursing"
    ENDED = "ended"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class ToolCallRequest:
    """A tool invocation recovered from model output."""
    server: str
    tool: str
    args: Dict[str, Any] = field(default_factory=dict)
    card_id: str = ""

    @property
    def fingerprint(self) -> str:
        """Argument fingerprint used by the cache and run-key map."""
        return fingerprint_args(self.args)

    def with_card_id(self, card_id: str) -> ToolCallRequest:
        """Copy of this request bound to another UI card."""
        return replace(self, card_id=card_id)

    def normalized(self) -> ToolCallRequest:
        """Copy with server-specific normalization applied."""
        tool, args = normalize_tool_call(self.server, self.tool, self.args)
        return replace(self, tool=tool, args=args)


@dataclass
class ToolCallResult:
    """Outcome of one tool call; always produced so the conversation can continue."""
    ok: bool
    result_preview: Optional[str] = None
    error_message: Optional[str] = None
    schema_hint: Optional[str] = None
    payload: Any = None
    error_code: Optional[str] = None
    cached: bool = False
    execution_time_ms: Optional[float] = None

    @classmethod
    def success(cls, payload: Any, max_chars: int = RESULT_PREVIEW_MAX_CHARS, cached: bool = False) -> ToolCallResult:
        """Build a successful result with a bounded preview."""
        return cls(
            ok=True,
            result_preview=stringify_payload(payload)[:max_chars],
            payload=payload,
            cached=cached,
        )

    @classmethod
    def failure(cls, error: ToolRelayError, schema_hint: Optional[str] = None) -> ToolCallResult:
        """Build a failed result carrying the structured error payload."""
        payload = error.to_payload()
        hint = schema_hint or payload.get("schemaHint")
        if hint:
            payload["schemaHint"] = hint
        return cls(
            ok=False,
            error_message=error.message,
            schema_hint=hint,
            payload=payload,
            error_code=error.error_code,
        )

    def classify(self) -> ResultClass:
        """Classify the payload as error, empty, data or unknown."""
        if not self.ok:
            return ResultClass.ERROR
        payload = self.payload
        if isinstance(payload, dict) and payload.get("error"):
            return ResultClass.ERROR
        if payload is None:
            return ResultClass.EMPTY
        if isinstance(payload, str):
            return ResultClass.DATA if payload.strip() else ResultClass.EMPTY
        if isinstance(payload, dict):
            if payload.get("isError"):
                return ResultClass.ERROR
            if "content" in payload and isinstance(payload["content"], list):
                texts = [
                    str(item.get("text", "")).strip() if isinstance(item, dict) else str(item).strip()
                    for item in payload["content"]
                ]
                return ResultClass.DATA if any(texts) else ResultClass.EMPTY
            return ResultClass.DATA if payload else ResultClass.EMPTY
        if isinstance(payload, (list, tuple)):
            return ResultClass.DATA if payload else ResultClass.EMPTY
        return ResultClass.UNKNOWN


@dataclass
class ToolDescriptor:
    """A tool advertised by a server's ListTools."""
    name: str
    description: str = ""
    input_schema: Optional[Dict[str, Any]] = None

    @classmethod
    def from_dict(cls, data: Any) -> Optional[ToolDescriptor]:
        """Create descriptor from a ListTools entry (dict or object)."""
        if isinstance(data, ToolDescriptor):
            return data
        if isinstance(data, dict):
            getter = data.get
        else:
            def getter(key, default=None):
                return getattr(data, key, default)
        name = getter("name")
        if not name:
            return None
        schema = getter("inputSchema") or getter("input_schema")
        # Some servers nest the JSON schema one level deeper
        if isinstance(schema, dict) and isinstance(schema.get("schema"), dict):
            schema = schema["schema"]
        return cls(
            name=str(name),
            description=str(getter("description") or ""),
            input_schema=schema if isinstance(schema, dict) else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serialize in ListTools shape."""
        data: Dict[str, Any] = {"name": self.name, "description": self.description}
        if self.input_schema is not None:
            data["inputSchema"] = self.input_schema
        return data

    @property
    def required(self) -> List[str]:
        """Required argument names."""
        schema = self.input_schema or {}
        required = schema.get("required")
        return list(required) if isinstance(required, list) else []


@dataclass
class ToolCatalogEntry:
    """Cached tool list for one server."""
    server_name: str
    tools: List[ToolDescriptor]
    last_connected: float
    ttl: float

    def is_fresh(self, now: Optional[float] = None) -> bool:
        """True while the entry is inside its TTL and non-empty."""
        now = time.time() if now is None else now
        return bool(self.tools) and (now - self.last_connected) < self.ttl


@dataclass
class PendingAuthorization:
    """A tool call waiting for the user to approve or reject it."""
    id: str
    message_id: str
    server: str
    tool: str
    args: Dict[str, Any]
    created_at: float
    future: asyncio.Future

    def approve(self) -> bool:
        """Resolve as approved; False if already resolved."""
        if self.future.done():
            return False
        self.future.set_result(True)
        return True

    def reject(self) -> bool:
        """Resolve as rejected; False if already resolved."""
        if self.future.done():
            return False
        self.future.set_result(False)
        return True

    @property
    def resolved(self) -> bool:
        return self.future.done()


@dataclass
class CallHistoryRecord:
    """One remembered execution attempt."""
    server: str
    tool: str
    args_fingerprint: str
    timestamp: float
    success: bool
    result: Any = None
    last_success_at: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "server": self.server,
            "tool": self.tool,
            "args": self.args_fingerprint,
            "timestamp": self.timestamp,
            "success": self.success,
            "result": self.result,
            "lastSuccessAt": self.last_success_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> CallHistoryRecord:
        return cls(
            server=data["server"],
            tool=data["tool"],
            args_fingerprint=data["args"],
            timestamp=float(data["timestamp"]),
            success=bool(data.get("success")),
            result=data.get("result"),
            last_success_at=data.get("lastSuccessAt"),
        )


def create_tool_card_marker(
    card_id: str,
    server: str,
    tool: str,
    args: Optional[Dict[str, Any]],
    message_id: str
) -> str:
    """JSON marker appended to message content to anchor a running tool card."""
    return json.dumps({
        "__tool_call_card__": {
            "id": card_id,
            "server": server,
            "tool": tool,
            "status": "running",
            "args": args or {},
            "messageId": message_id,
        }
    }, ensure_ascii=False)
