"""
Base tool executor - the authorize / cache / invoke / record skeleton shared by backends.
"""

from __future__ import annotations
import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, List, Optional

from ...domain.models.errors import (
    AuthorizationDenied,
    CallCancelled,
    InvocationFailed,
    InvocationTimeout,
    MissingRequiredArgument,
    ToolNotFound,
    ToolRelayError,
)
from ...domain.models.tool import (
    RESULT_PREVIEW_MAX_CHARS,
    CallState,
    ToolCallRequest,
    ToolCallResult,
    ToolDescriptor,
)
from ...domain.services.authorization import AuthorizationGate
from ...domain.services.call_history import CallHistory
from ...domain.services.execution import ExecutionContext
from ...domain.services.failure_escalation import FailureTracker

CALL_TIMEOUT_S = 15.0


class BaseToolExecutor(ABC):
    """
    Runs one call to a uniform ToolCallResult.

    Subclasses supply the backend hooks: ``validate`` (before authorization),
    ``prepare`` (after the cache miss), ``invoke`` and ``known_tools``.
    Every outcome is recorded in the call history; failures escalate the hint.
    """

    def __init__(
        self,
        gate: AuthorizationGate,
        history: CallHistory,
        failures: FailureTracker,
        call_timeout_s: float = CALL_TIMEOUT_S,
        result_max_chars: int = RESULT_PREVIEW_MAX_CHARS,
        logger: Optional[logging.Logger] = None
    ):
        self._gate = gate
        self._history = history
        self._failures = failures
        self.call_timeout_s = call_timeout_s
        self.result_max_chars = result_max_chars
        self._logger = logger or logging.getLogger(__name__)

    # ---------- Hooks ----------
    async def validate(self, context: ExecutionContext, request: ToolCallRequest) -> None:
        """Reject requests that cannot succeed before asking the user."""

    async def prepare(self, context: ExecutionContext, request: ToolCallRequest) -> None:
        """Backend setup right before invocation (connections, credentials)."""

    @abstractmethod
    async def invoke(self, context: ExecutionContext, request: ToolCallRequest) -> Any:
        """Perform the call and return its raw payload."""

    def known_tools(self, request: ToolCallRequest) -> List[ToolDescriptor]:
        """Descriptors used to build corrective hints."""
        return []

    # ---------- Template ----------
    async def execute(self, context: ExecutionContext) -> ToolCallResult:
        request = context.request.normalized()
        start_time = time.time()
        result = await self._execute(context, request)
        result.execution_time_ms = (time.time() - start_time) * 1000
        return result

    async def _execute(self, context: ExecutionContext, request: ToolCallRequest) -> ToolCallResult:
        try:
            await self.validate(context, request)
        except ToolRelayError as e:
            return self._fail(context, request, e)

        context.set_state(CallState.AUTHORIZING)
        approved = await self._gate.authorize(request, context.message_id)
        context.check_cancelled()
        if not approved:
            context.set_state(CallState.DENIED)
            return self._fail(context, request, AuthorizationDenied(request.server, request.tool))

        if self._history.has_recent_result(request.server, request.tool, request.args):
            recent = self._history.recent_result(request.server, request.tool, request.args)
            context.set_state(CallState.CACHED)
            reason = "duplicate call" if self._history.is_duplicate(request.server, request.tool, request.args) else "reused result"
            self._logger.debug(f"Replaying cached result for {request.server}.{request.tool} ({reason})")
            return ToolCallResult.success(recent, self.result_max_chars, cached=True)

        try:
            await self.prepare(context, request)
            context.check_cancelled()
            context.set_state(CallState.EXECUTING)
            payload = await self._invoke_bounded(context, request)
        except ToolRelayError as e:
            return self._fail(context, request, e)

        self._history.record(request.server, request.tool, request.args, True, payload)
        self._failures.reset(context.conversation_id, request.server, request.tool)
        context.set_state(CallState.SUCCEEDED)
        self._logger.debug(f"{request.server}.{request.tool} succeeded")
        return ToolCallResult.success(payload, self.result_max_chars)

    async def _invoke_bounded(self, context: ExecutionContext, request: ToolCallRequest) -> Any:
        """Race the invocation against the hard timeout."""
        try:
            return await asyncio.wait_for(self.invoke(context, request), self.call_timeout_s)
        except (ToolRelayError, CallCancelled):
            raise
        except asyncio.TimeoutError as e:
            self._logger.warning(f"{request.server}.{request.tool} timed out after {self.call_timeout_s}s")
            raise InvocationTimeout(request.server, request.tool, self.call_timeout_s) from e
        except Exception as e:
            self._logger.warning(f"{request.server}.{request.tool} failed: {e}")
            raise InvocationFailed(str(e) or e.__class__.__name__) from e

    def _fail(self, context: ExecutionContext, request: ToolCallRequest, error: ToolRelayError) -> ToolCallResult:
        if context.run.state != CallState.DENIED:
            context.set_state(CallState.FAILED)
        self._history.record(request.server, request.tool, request.args, False)
        stage, escalated = self._failures.escalate(
            context.conversation_id, request.server, request.tool, self.known_tools(request), request.args
        )
        result = ToolCallResult.failure(error, self._hint_for(error, escalated))
        result.payload["failStage"] = stage
        self._logger.debug(f"{request.server}.{request.tool} failed ({error.error_code}, stage {stage})")
        return result

    @staticmethod
    def _hint_for(error: ToolRelayError, escalated: str) -> Optional[str]:
        if isinstance(error, MissingRequiredArgument):
            return error.schema_hint
        if isinstance(error, ToolNotFound):
            return error.fix_hint
        if isinstance(error, (InvocationFailed, InvocationTimeout)):
            return escalated or None
        return None
