"""
Error taxonomy for tool-call orchestration.

Every error except RecursionLimitExceeded is recoverable at the conversation
level: executors raise them, the orchestrator converts them into a structured
ToolCallResult and feeds that back to the model.
"""

from __future__ import annotations
from typing import Any, Dict, List, Optional


class ToolRelayError(Exception):
    """Base class for all tool relay errors."""

    error_code = "TOOL_RELAY_ERROR"

    def __init__(self, message: str, **extra: Any):
        super().__init__(message)
        self.message = message
        self.extra: Dict[str, Any] = dict(extra)

    def to_payload(self) -> Dict[str, Any]:
        """Structured payload injected into the follow-up turn."""
        payload: Dict[str, Any] = {"error": self.error_code, "message": self.message}
        payload.update({k: v for k, v in self.extra.items() if v is not None})
        return payload


class ToolNotFound(ToolRelayError):
    """The requested tool does not exist on the target server."""

    error_code = "TOOL_NOT_FOUND"

    def __init__(self, server: str, tool: str, available: Optional[List[str]] = None,
                 described: Optional[List[str]] = None):
        available = list(available or [])
        described = list(described or available)
        listing = "\n".join(f"- {line}" for line in described) or "(none)"
        super().__init__(
            f'Server "{server}" has no tool named "{tool}".\n\nAvailable tools on this server:\n{listing}',
            availableTools=available,
            availableToolsWithDescriptions=described or None,
        )
        self.server = server
        self.tool = tool
        self.available = available
        self.fix_hint = (
            f"Pick one of the available tools:\n{listing}\n\nThen call it again: "
            f"<use_mcp_tool><server_name>{server}</server_name><tool_name>TOOL_NAME</tool_name>"
            f"<arguments>{{}}</arguments></use_mcp_tool>"
        )


class AuthorizationDenied(ToolRelayError):
    """The user rejected the tool call."""

    error_code = "AUTHORIZATION_DENIED"

    def __init__(self, server: str, tool: str):
        super().__init__(
            "The user rejected this tool call. The call may have looked unreasonable or its "
            "arguments may be wrong. Take that feedback into account, adjust the approach, "
            "or ask the user what they need."
        )
        self.server = server
        self.tool = tool


class ConnectionFailed(ToolRelayError):
    """The tool server could not be (re)connected."""

    error_code = "CONNECTION_FAILED"

    def __init__(self, server: str, message: Optional[str] = None):
        super().__init__(message or f"Failed to connect to server '{server}'")
        self.server = server


class ConfigurationMissing(ConnectionFailed):
    """No persisted configuration exists for the server."""

    def __init__(self, server: str):
        super().__init__(server, f"No configuration found for server '{server}'")


class InvocationTimeout(ToolRelayError):
    """CallTool did not finish within the hard timeout."""

    error_code = "CALL_TOOL_FAILED"

    def __init__(self, server: str, tool: str, timeout_s: float):
        super().__init__("timeout", timeoutSeconds=timeout_s)
        self.server = server
        self.tool = tool
        self.timeout_s = timeout_s


class InvocationFailed(ToolRelayError):
    """CallTool raised or returned an error."""

    error_code = "CALL_TOOL_FAILED"


class CredentialsMissing(ToolRelayError):
    """The selected web search provider has no usable credentials."""

    error_code = "WEB_SEARCH_CREDENTIALS_MISSING"

    def __init__(self, provider: str, missing: Optional[List[str]] = None):
        super().__init__(
            "No credentials are configured for this web search provider. "
            "Switch to another available search provider.",
            provider=provider,
            missing=list(missing or []) or None,
        )
        self.provider = provider


class MissingRequiredArgument(ToolRelayError):
    """A required tool argument is absent."""

    error_code = "MISSING_REQUIRED_ARGUMENT"

    def __init__(self, argument: str, schema_hint: Optional[str] = None):
        super().__init__(f"{argument} is required", schemaHint=schema_hint)
        self.argument = argument
        self.schema_hint = schema_hint


class RecursionLimitExceeded(ToolRelayError):
    """The follow-up loop hit its configured maximum depth."""

    error_code = "RECURSION_LIMIT_EXCEEDED"

    def __init__(self, conversation_id: str, max_depth: int):
        super().__init__(
            f"Tool call limit reached ({max_depth} follow-up rounds); stopping the tool loop.",
            maxDepth=max_depth,
        )
        self.conversation_id = conversation_id
        self.max_depth = max_depth


class CallCancelled(Exception):
    """The owning assistant message was stopped; no further transitions."""

    def __init__(self, message_id: str):
        super().__init__(f"message {message_id} was cancelled")
        self.message_id = message_id
