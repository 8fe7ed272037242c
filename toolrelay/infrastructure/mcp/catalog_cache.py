"""
Tool catalog cache - TTL'd, persisted cache of each server's ListTools result.

A valid entry is returned immediately while a background task refreshes it.
Without a valid entry the list is fetched live, falling back to a stale entry
when the fetch fails. Persistence is best-effort.
"""

from __future__ import annotations
import asyncio
import json
import logging
import time
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Union

from ...domain.interfaces.tool_transport import ToolTransport
from ...domain.models.tool import ToolCatalogEntry, ToolDescriptor

CACHE_TTL_S = 24 * 60 * 60
FETCH_TIMEOUT_S = 3.0


class ToolCatalogCache:
    """Per-server tool lists with whole-file expiry and background refresh."""

    def __init__(
        self,
        transport: ToolTransport,
        path: Optional[Union[str, Path]] = None,
        ttl_s: float = CACHE_TTL_S,
        fetch_timeout_s: float = FETCH_TIMEOUT_S,
        clock: Callable[[], float] = time.time,
        logger: Optional[logging.Logger] = None
    ):
        self._transport = transport
        self._path = Path(path).expanduser() if path else None
        self.ttl_s = ttl_s
        self.fetch_timeout_s = fetch_timeout_s
        self._clock = clock
        self._logger = logger or logging.getLogger(__name__)
        self._entries: Dict[str, ToolCatalogEntry] = {}
        self._last_update = 0.0
        self._loaded = False
        self._refreshing: Dict[str, asyncio.Task] = {}
        self._background: Set[asyncio.Task] = set()

    # ---------- Persistence ----------
    def load(self) -> None:
        """Read the cache file once; an expired or unreadable file starts empty."""
        if self._loaded:
            return
        self._loaded = True
        now = self._clock()
        if self._path is None or not self._path.exists():
            self._last_update = now
            return
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            self._logger.warning(f"Tool catalog cache unreadable, starting empty: {e}")
            self._last_update = now
            return
        if not isinstance(raw, dict):
            self._logger.warning("Tool catalog cache is not an object, starting empty")
            self._last_update = now
            return
        try:
            last_update = float(raw.get("lastUpdate", 0))
        except (TypeError, ValueError):
            self._logger.warning(f"Tool catalog cache has a bad lastUpdate {raw.get('lastUpdate')!r}; resetting")
            last_update = 0.0
        if now - last_update > self.ttl_s:
            self._logger.debug("Tool catalog cache expired; resetting")
            self._last_update = now
            self._save()
            return
        servers = raw.get("servers")
        for name, info in (servers.items() if isinstance(servers, dict) else []):
            try:
                tools = [t for t in (ToolDescriptor.from_dict(d) for d in info.get("tools") or []) if t]
                self._entries[name] = ToolCatalogEntry(
                    server_name=name,
                    tools=tools,
                    last_connected=float(info.get("lastConnected", 0)),
                    ttl=self.ttl_s,
                )
            except (AttributeError, TypeError, ValueError) as e:
                self._logger.warning(f"Skipping malformed tool catalog entry for {name}: {e}")
        self._last_update = last_update
        self._logger.debug(f"Loaded tool catalog with {len(self._entries)} servers")

    def _save(self) -> None:
        if self._path is None:
            return
        data = {
            "servers": {
                name: {
                    "serverName": name,
                    "tools": [t.to_dict() for t in entry.tools],
                    "lastConnected": entry.last_connected,
                }
                for name, entry in self._entries.items()
            },
            "lastUpdate": self._last_update,
        }
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.write_text(json.dumps(data, ensure_ascii=False, default=str), encoding="utf-8")
        except (OSError, TypeError, ValueError) as e:
            self._logger.warning(f"Failed to persist tool catalog: {e}")

    # ---------- Lookup ----------
    def cached_tools(self, server: str) -> List[ToolDescriptor]:
        """Whatever is cached for the server, fresh or stale, without I/O."""
        self.load()
        entry = self._entries.get(server)
        return list(entry.tools) if entry else []

    async def get_tools(self, server: str, timeout_s: Optional[float] = None) -> List[ToolDescriptor]:
        """Cached list when valid (refreshed in the background), else a live fetch."""
        self.load()
        entry = self._entries.get(server)
        if entry is not None and entry.is_fresh(self._clock()):
            self._schedule_refresh(server)
            return list(entry.tools)
        return await self._fetch(server, timeout_s or self.fetch_timeout_s)

    async def _fetch(self, server: str, timeout_s: float) -> List[ToolDescriptor]:
        try:
            raw = await asyncio.wait_for(self._transport.list_tools(server), timeout_s)
        except asyncio.TimeoutError:
            self._logger.warning(f"ListTools for {server} timed out after {timeout_s}s")
            return self._stale(server)
        except Exception as e:
            self._logger.warning(f"ListTools for {server} failed: {e}")
            return self._stale(server)
        tools = self._update(server, raw)
        return tools

    def _stale(self, server: str) -> List[ToolDescriptor]:
        entry = self._entries.get(server)
        if entry and entry.tools:
            self._logger.debug(f"Using stale tool catalog for {server}")
            return list(entry.tools)
        return []

    def _update(self, server: str, raw: Iterable[Any]) -> List[ToolDescriptor]:
        tools = [t for t in (ToolDescriptor.from_dict(item) for item in (raw or [])) if t]
        now = self._clock()
        self._entries[server] = ToolCatalogEntry(server_name=server, tools=tools, last_connected=now, ttl=self.ttl_s)
        self._last_update = now
        self._save()
        return list(tools)

    def _schedule_refresh(self, server: str) -> None:
        running = self._refreshing.get(server)
        if running is not None and not running.done():
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        task = loop.create_task(self._refresh(server))
        self._refreshing[server] = task
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _refresh(self, server: str) -> None:
        try:
            raw = await asyncio.wait_for(self._transport.list_tools(server), self.fetch_timeout_s)
        except Exception as e:
            self._logger.debug(f"Background tool refresh for {server} failed: {e}")
            return
        self._update(server, raw)
        self._logger.debug(f"Background tool refresh for {server} done")

    # ---------- Maintenance ----------
    async def preconnect_servers(self, servers: Iterable[str]) -> Dict[str, List[ToolDescriptor]]:
        """Warm several servers in parallel; failures yield empty lists."""
        names = list(dict.fromkeys(servers))
        outcomes = await asyncio.gather(*(self.get_tools(name) for name in names), return_exceptions=True)
        results: Dict[str, List[ToolDescriptor]] = {}
        for name, outcome in zip(names, outcomes):
            if isinstance(outcome, BaseException):
                self._logger.warning(f"Preconnect failed for {name}: {outcome}")
                results[name] = []
            else:
                results[name] = outcome
        ok = sum(1 for tools in results.values() if tools)
        self._logger.debug(f"Preconnected {ok}/{len(names)} servers")
        return results

    def invalidate(self, server: Optional[str] = None) -> None:
        """Drop one server's entry, or everything."""
        self.load()
        if server:
            self._entries.pop(server, None)
        else:
            self._entries.clear()
        self._last_update = self._clock()
        self._save()

    def stats(self) -> Dict[str, Any]:
        self.load()
        snapshot = {
            "servers": {n: [t.to_dict() for t in e.tools] for n, e in self._entries.items()},
            "lastUpdate": self._last_update,
        }
        return {
            "total_servers": len(self._entries),
            "cached_servers": sorted(self._entries),
            "last_update": self._last_update,
            "cache_size": len(json.dumps(snapshot, ensure_ascii=False, default=str)),
        }

    async def wait_background(self) -> None:
        """Wait for in-flight background refreshes."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def aclose(self) -> None:
        """Cancel background refreshes."""
        for task in list(self._background):
            task.cancel()
        await self.wait_background()
