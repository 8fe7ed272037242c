"""
Tool chat service - Application service running one user turn end to end.
Wires the classifier, orchestrator, executors and caches from settings.
"""

from __future__ import annotations
import logging
from typing import Any, Dict, List, Optional

from ..domain.interfaces.chat_state import ChatStateDispatcher
from ..domain.interfaces.config_store import ConfigStore
from ..domain.interfaces.llm_client import ModelTransport
from ..domain.interfaces.tool_transport import ToolTransport
from ..domain.models.errors import CallCancelled
from ..domain.models.ui import UIAction, UIActionType
from ..domain.services.authorization import AuthorizationGate
from ..domain.services.call_history import CallHistory
from ..domain.services.execution import TurnContext
from ..domain.services.failure_escalation import FailureTracker
from ..domain.services.follow_up_prompts import FollowUpPromptManager
from ..domain.services.recursion import RecursionCounter
from ..domain.services.tool_orchestrator import ToolCallOrchestrator, TurnOutcome
from ..infrastructure.config.settings import AppSettings, get_settings
from ..infrastructure.config.store import JsonConfigStore
from ..infrastructure.executors.mcp_executor import McpToolExecutor
from ..infrastructure.executors.router import ServerExecutorRouter
from ..infrastructure.executors.web_search_executor import WebSearchExecutor
from ..infrastructure.mcp.catalog_cache import ToolCatalogCache
from ..infrastructure.mcp.connection_manager import ConnectionManager
from ..infrastructure.mcp.preheater import McpPreheater
from ..infrastructure.ollama.transport import OllamaModelTransport
from ..infrastructure.websearch.providers import WebSearchClient


class ToolChatService:
    """Application service for tool-enabled chat turns."""

    def __init__(
        self,
        orchestrator: ToolCallOrchestrator,
        dispatcher: ChatStateDispatcher,
        config: ConfigStore,
        gate: AuthorizationGate,
        history: CallHistory,
        catalog: Optional[ToolCatalogCache] = None,
        preheater: Optional[McpPreheater] = None,
        web_search: Optional[WebSearchExecutor] = None,
        history_path: Optional[str] = None,
        logger: Optional[logging.Logger] = None
    ):
        self.orchestrator = orchestrator
        self.gate = gate
        self.history = history
        self.catalog = catalog
        self.preheater = preheater
        self.web_search = web_search
        self._dispatcher = dispatcher
        self._config = config
        self._history_path = history_path
        self._logger = logger or logging.getLogger(__name__)

    @classmethod
    def from_settings(
        cls,
        transport: ToolTransport,
        dispatcher: ChatStateDispatcher,
        settings: Optional[AppSettings] = None,
        config: Optional[ConfigStore] = None,
        model: Optional[ModelTransport] = None,
        logger: Optional[logging.Logger] = None
    ) -> ToolChatService:
        """Build the full stack around a tool transport and a UI dispatcher."""
        settings = settings or get_settings()
        calls = settings.tool_calls
        config = config or JsonConfigStore(settings.config_path, default_max_depth=settings.recursion.max_depth)

        history = CallHistory(
            duplicate_window_s=calls.duplicate_window_s,
            reuse_window_s=calls.reuse_window_s,
            max_entries=calls.history_max_entries,
            expire_s=calls.history_expire_s,
        )
        if calls.history_path:
            history.load(calls.history_path)
        failures = FailureTracker()
        gate = AuthorizationGate(config, dispatcher)

        catalog = ToolCatalogCache(
            transport,
            path=settings.catalog.path,
            ttl_s=settings.catalog.ttl_s,
            fetch_timeout_s=calls.preconnect_timeout_s,
        )
        preheater = McpPreheater(
            catalog,
            config,
            timeout_s=settings.catalog.preheat_timeout_s,
            debounce_s=settings.catalog.preheat_debounce_s,
            refresh_s=settings.catalog.preheat_refresh_s,
            cleanup_s=settings.catalog.preheat_cleanup_s,
        )
        mcp = McpToolExecutor(
            transport,
            catalog,
            ConnectionManager(transport, config),
            gate,
            history,
            failures,
            list_tools_timeout_s=calls.list_tools_timeout_s,
            call_timeout_s=calls.call_timeout_s,
            result_max_chars=calls.result_preview_max_chars,
        )
        web = settings.web_search
        web_search = WebSearchExecutor(
            WebSearchClient(timeout_s=web.request_timeout_s, max_results=web.max_results),
            dispatcher,
            gate,
            history,
            failures,
            provider=web.provider,
            credentials=web.credentials(),
            fetch_max_content_chars=web.fetch_max_content_chars,
            call_timeout_s=calls.call_timeout_s,
            result_max_chars=calls.result_preview_max_chars,
        )
        model = model or OllamaModelTransport(
            model=settings.ollama.model,
            host=settings.ollama.host,
            api_key=settings.ollama.api_key,
            think=settings.ollama.think,
        )
        orchestrator = ToolCallOrchestrator(
            ServerExecutorRouter(mcp, web_search),
            model,
            dispatcher,
            config,
            gate,
            failures=failures,
            recursion=RecursionCounter(),
            prompts=FollowUpPromptManager(calls.follow_up_result_max_chars),
        )
        return cls(
            orchestrator,
            dispatcher,
            config,
            gate,
            history,
            catalog=catalog,
            preheater=preheater,
            web_search=web_search,
            history_path=calls.history_path,
            logger=logger,
        )

    async def run_user_turn(
        self,
        conversation_id: str,
        message_id: str,
        user_content: str,
        history: Optional[List[Dict[str, Any]]] = None
    ) -> Optional[TurnOutcome]:
        """
        Stream the model's reply to a new user message and drive any tool calls.

        Returns the first turn's outcome carrying the finished tool runs, or
        None when the model stream failed or the message was stopped. Per-message
        orchestrator state is released before returning.
        """
        self.orchestrator.start_user_turn(conversation_id)
        messages = list(history or []) + [{"role": "user", "content": user_content}]
        turn = TurnContext(conversation_id, message_id, user_content, messages)
        self._logger.debug(f"User turn {message_id} in {conversation_id}")

        try:
            outcome = await self.orchestrator.stream_turn(message_id, messages)
            if outcome is None:
                return None
            if outcome.requests:
                for request in outcome.requests:
                    self.orchestrator.submit(turn, request)
                await self.orchestrator.wait_for_message(message_id)
                outcome.runs = self.orchestrator.runs(message_id)
            else:
                self._dispatcher.dispatch(message_id, UIAction.simple(UIActionType.STREAM_END))
            return outcome
        except CallCancelled:
            self._logger.debug(f"Message {message_id} stopped during the first turn")
            return None
        finally:
            self.orchestrator.forget_message(message_id)

    def stop(self, message_id: str) -> None:
        """User pressed stop for a message."""
        self.orchestrator.cancel_message(message_id)

    def approve(self, pending_id: str, message_id: Optional[str] = None) -> bool:
        return self.gate.approve(pending_id, message_id)

    def reject(self, pending_id: str, message_id: Optional[str] = None) -> bool:
        return self.gate.reject(pending_id, message_id)

    async def preheat(self, draft: str) -> List[str]:
        """Warm servers @mentioned in a draft message."""
        if self.preheater is None:
            return []
        return await self.preheater.preheat_from_input(draft)

    async def aclose(self) -> None:
        """Stop background work and persist the call history."""
        if self.catalog is not None:
            await self.catalog.aclose()
        if self.web_search is not None:
            await self.web_search.aclose()
        if self._history_path:
            self.history.save(self._history_path)
