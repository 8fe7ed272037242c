"""
Tool call orchestrator - Domain service driving detected tool calls to an answer.

Detected -> Authorizing -> (Denied|Cached|Connecting) -> Executing ->
(Succeeded|Failed) -> Injecting -> Following-up -> (Ended|Recursing)
"""

from __future__ import annotations
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set

from ..interfaces.chat_state import ChatStateDispatcher
from ..interfaces.config_store import ConfigStore
from ..interfaces.llm_client import ModelTransport
from ..interfaces.tool_executor import ExecutorRouter
from ..models.errors import CallCancelled, RecursionLimitExceeded
from ..models.events import (
    ContentToken,
    StreamEvent,
    ThinkingEnd,
    ThinkingStart,
    ThinkingToken,
)
from ..models.tool import (
    CallState,
    ResultClass,
    ToolCallRequest,
    ToolCallResult,
    create_tool_card_marker,
)
from ..models.ui import UIAction, UIActionType
from .authorization import AuthorizationGate
from .execution import ExecutionContext, RunKey, ToolRun, TurnContext
from .failure_escalation import FailureTracker
from .follow_up_prompts import FollowUpPromptManager
from .recursion import RecursionCounter, parse_max_depth
from .token_classifier import TokenClassifier
from .tool_instructions import card_id_for


@dataclass
class TurnOutcome:
    """What one streamed model turn produced."""
    requests: List[ToolCallRequest] = field(default_factory=list)
    has_text: bool = False
    runs: List[ToolRun] = field(default_factory=list)


class ToolCallOrchestrator:
    """Owns run-key coalescing, per-message ordering and the bounded follow-up loop."""

    def __init__(
        self,
        router: ExecutorRouter,
        model: ModelTransport,
        dispatcher: ChatStateDispatcher,
        config: ConfigStore,
        gate: AuthorizationGate,
        failures: Optional[FailureTracker] = None,
        recursion: Optional[RecursionCounter] = None,
        prompts: Optional[FollowUpPromptManager] = None,
        logger: Optional[logging.Logger] = None
    ):
        self._router = router
        self._model = model
        self._dispatcher = dispatcher
        self._config = config
        self._gate = gate
        self.failures = failures or FailureTracker()
        self.recursion = recursion or RecursionCounter()
        self._prompts = prompts or FollowUpPromptManager()
        self._logger = logger or logging.getLogger(__name__)
        self._runs: Dict[RunKey, asyncio.Task] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._tasks: Dict[str, Set[asyncio.Task]] = {}
        self._cancelled: Set[str] = set()
        self._completed: Dict[str, List[ToolRun]] = {}

    # ---------- Turn lifecycle ----------
    def start_user_turn(self, conversation_id: str) -> None:
        """A fresh top-level user turn clears fail and recursion counters."""
        self.failures.reset_conversation(conversation_id)
        self.recursion.reset(conversation_id)

    def cancel_message(self, message_id: str) -> None:
        """User pressed stop: close pending approvals and stop further transitions."""
        self._cancelled.add(message_id)
        closed = self._gate.cancel_message(message_id)
        self._logger.debug(f"Cancelled message {message_id} ({closed} pending approvals closed)")

    def is_cancelled(self, message_id: str) -> bool:
        return message_id in self._cancelled or bool(self._dispatcher.is_cancelled(message_id))

    async def wait_for_message(self, message_id: str) -> None:
        """Wait until every run queued for the message, including recursive ones, has finished."""
        while True:
            pending = [t for t in self._tasks.get(message_id, set()) if not t.done()]
            if not pending:
                break
            await asyncio.gather(*pending, return_exceptions=True)
        self._tasks.pop(message_id, None)
        self._locks.pop(message_id, None)

    def runs(self, message_id: str) -> List[ToolRun]:
        """Finished runs for a message, in execution order."""
        return list(self._completed.get(message_id, []))

    def forget_message(self, message_id: str) -> None:
        self._completed.pop(message_id, None)
        self._cancelled.discard(message_id)

    # ---------- Detection ----------
    def submit(self, turn: TurnContext, request: ToolCallRequest) -> asyncio.Task:
        """
        Queue a detected request for the message.

        Identical in-flight requests (same message, server, tool and argument
        fingerprint) share one task. New requests get a running card at once.
        """
        if not request.card_id:
            request = request.with_card_id(card_id_for(request.server, request.tool, request.args))
        effective = request.normalized()
        key = RunKey(turn.message_id, effective.server, effective.tool, effective.fingerprint)
        existing = self._runs.get(key)
        if existing is not None and not existing.done():
            self._logger.debug(f"Coalesced duplicate {effective.server}.{effective.tool} for {turn.message_id}")
            return existing

        run = ToolRun(key=key, request=request, states=[CallState.DETECTED])
        self._dispatcher.dispatch(turn.message_id, UIAction(
            UIActionType.TOOL_HIT,
            server=request.server,
            tool=request.tool,
            card_id=request.card_id,
            args=dict(request.args),
            marker=create_tool_card_marker(
                request.card_id, request.server, request.tool, request.args, turn.message_id
            ),
        ))
        task = asyncio.get_running_loop().create_task(self._run(turn, run))
        self._runs[key] = task
        tasks = self._tasks.setdefault(turn.message_id, set())
        tasks.add(task)
        task.add_done_callback(tasks.discard)
        return task

    async def handle(self, turn: TurnContext, request: ToolCallRequest) -> None:
        """Submit and wait for this request's own run."""
        await self.submit(turn, request)

    # ---------- One run ----------
    def _lock_for(self, message_id: str) -> asyncio.Lock:
        lock = self._locks.get(message_id)
        if lock is None:
            lock = self._locks[message_id] = asyncio.Lock()
        return lock

    async def _run(self, turn: TurnContext, run: ToolRun) -> None:
        context = ExecutionContext(
            run=run,
            conversation_id=turn.conversation_id,
            message_id=turn.message_id,
            is_cancelled=lambda: self.is_cancelled(turn.message_id),
        )
        try:
            async with self._lock_for(turn.message_id):
                context.check_cancelled()
                executor = self._router.executor_for(run.request.server)
                result = await executor.execute(context)
                run.result = result
                self._release_key(run)
                self._dispatch_result(turn.message_id, run, result)
                context.check_cancelled()
                context.set_state(CallState.INJECTING)
                await self._follow_up(turn, context, result)
        except CallCancelled:
            self._logger.debug(f"Run {run.request.server}.{run.request.tool} stopped: message cancelled")
        finally:
            self._release_key(run)
            self._completed.setdefault(turn.message_id, []).append(run)

    def _release_key(self, run: ToolRun) -> None:
        task = self._runs.get(run.key)
        if task is not None and task is asyncio.current_task():
            del self._runs[run.key]

    def _dispatch_result(self, message_id: str, run: ToolRun, result: ToolCallResult) -> None:
        effective = run.request.normalized()
        self._dispatcher.dispatch(message_id, UIAction(
            UIActionType.TOOL_RESULT,
            server=effective.server,
            tool=effective.tool,
            card_id=run.request.card_id,
            ok=result.ok,
            result_preview=result.result_preview,
            error_message=result.error_message,
            schema_hint=result.schema_hint,
            args=dict(effective.args),
        ))

    # ---------- Follow-up loop ----------
    def _max_depth(self, server: str) -> Optional[int]:
        override = self._config.server_max_recursion_depth(server)
        if override is not None:
            return parse_max_depth(override)
        return parse_max_depth(self._config.max_recursion_depth())

    async def _follow_up(self, turn: TurnContext, context: ExecutionContext, result: ToolCallResult) -> None:
        request = context.request.normalized()
        max_depth = self._max_depth(request.server)
        if not self.recursion.try_advance(turn.conversation_id, max_depth):
            error = RecursionLimitExceeded(turn.conversation_id, max_depth or 0)
            context.run.error = error
            self._logger.warning(f"{error.message} (conversation {turn.conversation_id})")
            context.set_state(CallState.ENDED)
            self._dispatcher.dispatch(turn.message_id, UIAction.token(f"\n\n{error.message}"))
            self._end_stream(turn)
            return

        result_class = result.classify()
        payload = result.payload if result.payload is not None else result.result_preview
        history = list(turn.history) + [self._prompts.result_message(
            turn.original_question, request.server, request.tool, payload, result_class
        )]
        servers = self._config.enabled_servers()

        context.check_cancelled()
        context.set_state(CallState.FOLLOWING_UP)
        messages = self._prompts.system_messages(
            "first", turn.original_question, servers, has_error=(result_class == ResultClass.ERROR)
        ) + history
        outcome = await self.stream_turn(turn.message_id, messages)
        if outcome is None:
            return
        if outcome.requests:
            self._recurse(turn, context, history, outcome.requests)
            return
        if outcome.has_text:
            self._finish(turn, context)
            return

        # Stall: one stricter nudge turn, then a synthesized answer
        self._logger.debug(f"Follow-up for {turn.message_id} produced no text; nudging")
        context.check_cancelled()
        messages = self._prompts.system_messages("second", turn.original_question) + history + [
            self._prompts.nudge_message()
        ]
        outcome = await self.stream_turn(turn.message_id, messages)
        if outcome is None:
            return
        if outcome.requests:
            self._recurse(turn, context, history, outcome.requests)
            return
        if not outcome.has_text:
            self._logger.debug(f"Nudge for {turn.message_id} produced no text; using fallback answer")
            fallback = self._prompts.fallback_answer(request.server, request.tool, payload)
            self._dispatcher.dispatch(turn.message_id, UIAction.token(fallback))
        self._finish(turn, context)

    def _recurse(
        self,
        turn: TurnContext,
        context: ExecutionContext,
        history: List[Dict],
        requests: List[ToolCallRequest]
    ) -> None:
        context.set_state(CallState.RECURSING)
        child = turn.child(history)
        for request in requests:
            self.submit(child, request)

    def _finish(self, turn: TurnContext, context: ExecutionContext) -> None:
        context.set_state(CallState.ENDED)
        self.recursion.reset(turn.conversation_id)
        self._end_stream(turn)

    def _end_stream(self, turn: TurnContext) -> None:
        self._dispatcher.dispatch(turn.message_id, UIAction.simple(UIActionType.STREAM_END))

    # ---------- Model streaming ----------
    def new_classifier(self, message_id: str) -> TokenClassifier:
        """Classifier for one model turn, reporting instruction detection to the UI."""
        def on_detecting(active: bool) -> None:
            action = UIActionType.TOOL_DETECTING_START if active else UIActionType.TOOL_DETECTING_END
            self._dispatcher.dispatch(message_id, UIAction.simple(action))

        return TokenClassifier.for_model(self._model.model_name, on_detecting=on_detecting)

    async def stream_turn(self, message_id: str, messages: List[Dict]) -> Optional[TurnOutcome]:
        """
        Stream one model turn, dispatching thinking and answer text as it arrives.

        Returns None when the model stream itself failed; the message is then
        marked as errored since the loop cannot continue without model output.
        """
        classifier = self.new_classifier(message_id)
        try:
            async for delta in self._model.stream_chat(messages):
                if self.is_cancelled(message_id):
                    raise CallCancelled(message_id)
                for event in classifier.feed_delta(delta):
                    self._dispatch_event(message_id, event)
            for event in classifier.feed(done=True):
                self._dispatch_event(message_id, event)
        except CallCancelled:
            raise
        except Exception as e:
            self._logger.error(f"Model stream failed for message {message_id}: {e}")
            self._dispatcher.mark_error(message_id, str(e))
            return None
        return TurnOutcome(requests=list(classifier.requests), has_text=classifier.has_visible_text)

    def _dispatch_event(self, message_id: str, event: StreamEvent) -> None:
        if isinstance(event, ThinkingStart):
            self._dispatcher.dispatch(message_id, UIAction.simple(UIActionType.THINK_START))
        elif isinstance(event, ThinkingToken):
            self._dispatcher.dispatch(message_id, UIAction.think_append(event.content))
        elif isinstance(event, ThinkingEnd):
            self._dispatcher.dispatch(message_id, UIAction.simple(UIActionType.THINK_END))
        elif isinstance(event, ContentToken):
            self._dispatcher.dispatch(message_id, UIAction.token(event.content))
