"""
Execution context - the per-call state handed from the orchestrator to an executor.
"""

from __future__ import annotations
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, NamedTuple, Optional

from ..models.errors import CallCancelled, ToolRelayError
from ..models.tool import CallState, ToolCallRequest, ToolCallResult

logger = logging.getLogger(__name__)


class RunKey(NamedTuple):
    """Identity used to coalesce identical in-flight executions."""
    message_id: str
    server: str
    tool: str
    fingerprint: str


@dataclass
class TurnContext:
    """What a follow-up needs to know about the conversation that produced a call."""
    conversation_id: str
    message_id: str
    original_question: str
    history: List[Dict[str, Any]] = field(default_factory=list)

    def child(self, history: List[Dict[str, Any]]) -> TurnContext:
        """Same message, extended history for a recursive follow-up."""
        return TurnContext(
            conversation_id=self.conversation_id,
            message_id=self.message_id,
            original_question=self.original_question,
            history=list(history),
        )


@dataclass
class ToolRun:
    """One orchestrated execution and the states it went through."""
    key: RunKey
    request: ToolCallRequest
    states: List[CallState] = field(default_factory=list)
    result: Optional[ToolCallResult] = None
    error: Optional[ToolRelayError] = None

    @property
    def state(self) -> Optional[CallState]:
        return self.states[-1] if self.states else None


@dataclass
class ExecutionContext:
    """Call-scoped handle passed to ToolExecutor.execute."""
    run: ToolRun
    conversation_id: str
    message_id: str
    is_cancelled: Callable[[], bool] = lambda: False

    @property
    def request(self) -> ToolCallRequest:
        return self.run.request

    def set_state(self, state: CallState) -> None:
        self.run.states.append(state)
        logger.debug(f"{self.request.server}.{self.request.tool} [{self.request.card_id}] -> {state.value}")

    def check_cancelled(self) -> None:
        """Raise CallCancelled once the owning message was stopped."""
        if self.is_cancelled():
            self.set_state(CallState.CANCELLED)
            raise CallCancelled(self.message_id)
