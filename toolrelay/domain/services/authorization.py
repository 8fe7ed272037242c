"""
Authorization gate - decides whether a tool call runs immediately or waits for approval.
"""

from __future__ import annotations
import asyncio
import logging
import time
from typing import Callable, Dict, List, Optional, Tuple

from ..interfaces.config_store import ConfigStore
from ..interfaces.chat_state import ChatStateDispatcher
from ..models.tool import PendingAuthorization, ToolCallRequest
from ..models.ui import UIAction, UIActionType

# Servers that can touch the local machine always need a human in the loop
SENSITIVE_SERVERS = frozenset({"filesystem", "file-system", "fs"})

PENDING_AUTH_MARKER = "pending_auth"


class AuthorizationGate:
    """Owns pending approvals; the UI collaborator only resolves them."""

    def __init__(
        self,
        config: ConfigStore,
        dispatcher: Optional[ChatStateDispatcher] = None,
        clock: Callable[[], float] = time.time,
        logger: Optional[logging.Logger] = None
    ):
        self._config = config
        self._dispatcher = dispatcher
        self._clock = clock
        self._logger = logger or logging.getLogger(__name__)
        self._pending: Dict[Tuple[str, str], PendingAuthorization] = {}

    def should_auto_authorize(self, server: str) -> bool:
        """Server override first, then the sensitive denylist, then the global default."""
        override = self._config.server_auto_authorize(server)
        if override is not None:
            return bool(override)
        if server.lower() in SENSITIVE_SERVERS:
            return False
        return bool(self._config.default_auto_authorize())

    async def authorize(self, request: ToolCallRequest, message_id: str) -> bool:
        """Auto-approve or wait for a human decision."""
        if self.should_auto_authorize(request.server):
            self._logger.debug(f"Auto-authorized {request.server}.{request.tool}")
            return True
        return await self.request_authorization(request, message_id)

    async def request_authorization(self, request: ToolCallRequest, message_id: str) -> bool:
        """
        Register a pending approval and wait for it to be resolved exactly once.

        Re-entrant calls with the same card id on the same message share one
        pending entry; other messages always get their own. Being cancelled from
        outside propagates; a rejected or closed entry yields False.
        """
        key = (message_id, request.card_id)
        pending = self._pending.get(key)
        if pending is None:
            loop = asyncio.get_running_loop()
            pending = PendingAuthorization(
                id=request.card_id,
                message_id=message_id,
                server=request.server,
                tool=request.tool,
                args=dict(request.args),
                created_at=self._clock(),
                future=loop.create_future(),
            )
            self._pending[key] = pending
            self._logger.debug(f"Awaiting approval for {request.server}.{request.tool} ({request.card_id} on {message_id})")
            if self._dispatcher:
                self._dispatcher.dispatch(message_id, UIAction(
                    UIActionType.TOOL_RESULT,
                    server=request.server,
                    tool=request.tool,
                    card_id=request.card_id,
                    ok=False,
                    error_message=PENDING_AUTH_MARKER,
                    args=dict(request.args),
                ))
        try:
            approved = await asyncio.shield(pending.future)
        except asyncio.CancelledError:
            task = asyncio.current_task()
            if task is not None and task.cancelling():
                raise
            # The entry itself was cancelled by cancel()/cancel_message()
            approved = False
        finally:
            if pending.resolved and self._pending.get(key) is pending:
                del self._pending[key]
        self._logger.debug(f"Authorization for {pending.server}.{pending.tool}: {'approved' if approved else 'rejected'}")
        return bool(approved)

    def _take(self, pending_id: str, message_id: Optional[str]) -> Optional[PendingAuthorization]:
        """Pop the entry for a card id; without a message id the card must be unambiguous."""
        if message_id is not None:
            return self._pending.pop((message_id, pending_id), None)
        keys = [key for key in self._pending if key[1] == pending_id]
        if len(keys) != 1:
            if keys:
                self._logger.warning(f"Pending id {pending_id} is shared by {len(keys)} messages; pass the message id")
            return None
        return self._pending.pop(keys[0])

    def approve(self, pending_id: str, message_id: Optional[str] = None) -> bool:
        """Resolve a pending entry as approved."""
        pending = self._take(pending_id, message_id)
        return pending.approve() if pending else False

    def reject(self, pending_id: str, message_id: Optional[str] = None) -> bool:
        """Resolve a pending entry as rejected."""
        pending = self._take(pending_id, message_id)
        return pending.reject() if pending else False

    def cancel(self, pending_id: str, message_id: Optional[str] = None) -> bool:
        """Close a pending entry without a decision."""
        pending = self._take(pending_id, message_id)
        if pending is None or pending.future.done():
            return False
        pending.future.cancel()
        return True

    def cancel_message(self, message_id: str) -> int:
        """Close every pending entry owned by a stopped message."""
        ids = [p.id for p in self._pending.values() if p.message_id == message_id]
        return sum(1 for pending_id in ids if self.cancel(pending_id, message_id))

    def pending(self, message_id: Optional[str] = None) -> List[PendingAuthorization]:
        """Unresolved entries, optionally for one message, oldest first."""
        entries = [p for p in self._pending.values() if not p.resolved]
        if message_id is not None:
            entries = [p for p in entries if p.message_id == message_id]
        return sorted(entries, key=lambda p: p.created_at)
