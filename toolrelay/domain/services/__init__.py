"""Domain services package."""

from .authorization import AuthorizationGate
from .call_history import CallHistory
from .execution import ExecutionContext, RunKey, ToolRun, TurnContext
from .failure_escalation import FailureTracker
from .follow_up_prompts import FollowUpPromptManager
from .recursion import RecursionCounter, parse_max_depth
from .thinking_strategies import ThinkingStrategy, ThinkingStrategyFactory
from .token_classifier import TokenClassifier
from .tool_instructions import StreamingGuard, ToolInstructionExtractor, rewrite_events_with_tool_calls
from .tool_orchestrator import ToolCallOrchestrator, TurnOutcome

__all__ = [
    "AuthorizationGate",
    "CallHistory",
    "ExecutionContext",
    "RunKey",
    "ToolRun",
    "TurnContext",
    "FailureTracker",
    "FollowUpPromptManager",
    "RecursionCounter",
    "parse_max_depth",
    "ThinkingStrategy",
    "ThinkingStrategyFactory",
    "TokenClassifier",
    "StreamingGuard",
    "ToolInstructionExtractor",
    "rewrite_events_with_tool_calls",
    "ToolCallOrchestrator",
    "TurnOutcome"
]
