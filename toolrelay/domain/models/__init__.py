"""Domain models package."""

from .errors import (
    ToolRelayError,
    ToolNotFound,
    AuthorizationDenied,
    ConnectionFailed,
    ConfigurationMissing,
    InvocationTimeout,
    InvocationFailed,
    CredentialsMissing,
    MissingRequiredArgument,
    RecursionLimitExceeded,
    CallCancelled
)
from .events import (
    StreamDelta,
    ParsedToolCall,
    ThinkingStart,
    ThinkingToken,
    ThinkingEnd,
    ContentToken,
    ToolCallEvent,
    StreamComplete,
    StreamEvent
)
from .tool import (
    WEB_SEARCH_SERVER,
    ToolCallRequest,
    ToolCallResult,
    ToolDescriptor,
    ToolCatalogEntry,
    PendingAuthorization,
    CallHistoryRecord,
    CallState,
    ResultClass,
    create_tool_card_marker,
    fingerprint_args,
    normalize_tool_call
)
from .ui import UIAction, UIActionType

__all__ = [
    "ToolRelayError",
    "ToolNotFound",
    "AuthorizationDenied",
    "ConnectionFailed",
    "ConfigurationMissing",
    "InvocationTimeout",
    "InvocationFailed",
    "CredentialsMissing",
    "MissingRequiredArgument",
    "RecursionLimitExceeded",
    "CallCancelled",
    "StreamDelta",
    "ParsedToolCall",
    "ThinkingStart",
    "ThinkingToken",
    "ThinkingEnd",
    "ContentToken",
    "ToolCallEvent",
    "StreamComplete",
    "StreamEvent",
    "WEB_SEARCH_SERVER",
    "ToolCallRequest",
    "ToolCallResult",
    "ToolDescriptor",
    "ToolCatalogEntry",
    "PendingAuthorization",
    "CallHistoryRecord",
    "CallState",
    "ResultClass",
    "create_tool_card_marker",
    "fingerprint_args",
    "normalize_tool_call",
    "UIAction",
    "UIActionType"
]
