"""
Preheater - warms servers mentioned as @name while the user is still typing.
"""

from __future__ import annotations
import asyncio
import logging
import re
import time
from dataclasses import dataclass, replace
from typing import Callable, Dict, List, Optional

from ...domain.interfaces.config_store import ConfigStore
from .catalog_cache import ToolCatalogCache

MENTION_PATTERN = re.compile(r"@([a-zA-Z0-9_-]+)")

PREHEATING = "preheating"
COMPLETED = "completed"
FAILED = "failed"


@dataclass(frozen=True)
class PreheatState:
    server_name: str
    start_time: float
    status: str


def extract_mentions(text: str) -> List[str]:
    """Unique @server mentions in order of appearance."""
    return list(dict.fromkeys(MENTION_PATTERN.findall(text or "")))


class McpPreheater:
    """Debounced, time-boxed catalog warm-up for @mentioned servers."""

    def __init__(
        self,
        catalog: ToolCatalogCache,
        config: ConfigStore,
        timeout_s: float = 5.0,
        debounce_s: float = 0.5,
        refresh_s: float = 30.0,
        cleanup_s: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
        logger: Optional[logging.Logger] = None
    ):
        self._catalog = catalog
        self._config = config
        self.timeout_s = timeout_s
        self.debounce_s = debounce_s
        self.refresh_s = refresh_s
        self.cleanup_s = cleanup_s
        self._clock = clock
        self._logger = logger or logging.getLogger(__name__)
        self._states: Dict[str, PreheatState] = {}
        self._timers: Dict[str, asyncio.Task] = {}
        self._running: Dict[str, asyncio.Task] = {}

    async def preheat_from_input(self, text: str) -> List[str]:
        """Schedule warm-up for enabled @mentioned servers; returns the ones scheduled."""
        mentioned = extract_mentions(text)
        if not mentioned:
            return []
        enabled = set(self._config.enabled_servers())
        scheduled = []
        for server in (name for name in mentioned if name in enabled):
            timer = self._timers.pop(server, None)
            if timer is not None:
                timer.cancel()
            if server in self._running or not self._should_preheat(server):
                continue
            self._timers[server] = asyncio.get_running_loop().create_task(self._debounced(server))
            scheduled.append(server)
        return scheduled

    def _should_preheat(self, server: str) -> bool:
        state = self._states.get(server)
        if state is None or state.status == FAILED:
            return True
        return (self._clock() - state.start_time) > self.refresh_s

    async def _debounced(self, server: str) -> None:
        await asyncio.sleep(self.debounce_s)
        self._timers.pop(server, None)
        task = asyncio.get_running_loop().create_task(self._preheat(server))
        self._running[server] = task
        try:
            await task
        finally:
            self._running.pop(server, None)

    async def _preheat(self, server: str) -> None:
        start = self._clock()
        state = PreheatState(server, start, PREHEATING)
        self._states[server] = state
        self._logger.debug(f"Preheating {server}")
        try:
            tools = await asyncio.wait_for(self._catalog.get_tools(server), self.timeout_s)
        except asyncio.TimeoutError:
            self._logger.warning(f"Preheat of {server} timed out after {self.timeout_s}s")
            self._states[server] = replace(state, status=FAILED)
            return
        except Exception as e:
            self._logger.warning(f"Preheat of {server} failed: {e}")
            self._states[server] = replace(state, status=FAILED)
            return
        self._states[server] = replace(state, status=COMPLETED)
        self._logger.debug(f"Preheated {server} with {len(tools)} tools")

    def status(self) -> Dict[str, PreheatState]:
        return dict(self._states)

    def is_preheated(self, server: str) -> bool:
        state = self._states.get(server)
        return state is not None and state.status == COMPLETED

    def cleanup(self) -> None:
        """Forget states older than the cleanup threshold and idle timers."""
        now = self._clock()
        for server in [s for s, st in self._states.items() if now - st.start_time > self.cleanup_s]:
            del self._states[server]
        for server in list(self._timers):
            state = self._states.get(server)
            if state is not None and state.status != PREHEATING:
                self._timers.pop(server).cancel()

    async def wait_idle(self) -> None:
        """Wait for scheduled and running warm-ups."""
        pending = list(self._timers.values()) + list(self._running.values())
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
