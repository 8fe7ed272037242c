import asyncio

from toolrelay.infrastructure.config.store import JsonConfigStore
from toolrelay.infrastructure.mcp.catalog_cache import ToolCatalogCache
from toolrelay.infrastructure.mcp.preheater import COMPLETED, FAILED, McpPreheater, extract_mentions


class _Clock:
    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now


def _preheater(transport, clock=None, **kwargs):
    config = JsonConfigStore(data={"servers": [{"name": "notes", "config": {}}]})
    kwargs.setdefault("debounce_s", 0)
    return McpPreheater(ToolCatalogCache(transport), config, clock=clock or _Clock(), **kwargs)


def test_extract_mentions_unique_in_order():
    assert extract_mentions("ask @notes and @web-1, then @notes again") == ["notes", "web-1"]
    assert extract_mentions("no mentions") == []
    assert extract_mentions(None) == []


def test_only_enabled_servers_are_preheated(transport):
    preheater = _preheater(transport)

    async def scenario():
        scheduled = await preheater.preheat_from_input("@notes and @unknown")
        await preheater.wait_idle()
        return scheduled

    assert asyncio.run(scenario()) == ["notes"]
    assert preheater.is_preheated("notes")
    assert preheater.status()["notes"].status == COMPLETED
    assert transport.list_calls == ["notes"]


def test_recent_preheat_is_not_repeated_until_refresh_interval(transport):
    clock = _Clock()
    preheater = _preheater(transport, clock=clock, refresh_s=30)

    async def scenario():
        await preheater.preheat_from_input("@notes")
        await preheater.wait_idle()
        again = await preheater.preheat_from_input("@notes")
        clock.now += 31
        later = await preheater.preheat_from_input("@notes")
        await preheater.wait_idle()
        return again, later

    assert asyncio.run(scenario()) == ([], ["notes"])


def test_debounce_collapses_rapid_typing(transport):
    preheater = _preheater(transport, debounce_s=0.05)

    async def scenario():
        await preheater.preheat_from_input("@notes")
        await preheater.preheat_from_input("@notes ple")
        await preheater.wait_idle()

    asyncio.run(scenario())
    assert transport.list_calls == ["notes"]


def test_timed_out_preheat_is_marked_failed_and_retried(transport):
    transport.list_delay = 0.2
    preheater = _preheater(transport, timeout_s=0.01)

    async def scenario():
        await preheater.preheat_from_input("@notes")
        await preheater.wait_idle()
        assert preheater.status()["notes"].status == FAILED
        return await preheater.preheat_from_input("@notes")

    assert asyncio.run(scenario()) == ["notes"]
    assert not preheater.is_preheated("notes")


def test_cleanup_forgets_old_states(transport):
    clock = _Clock()
    preheater = _preheater(transport, clock=clock, cleanup_s=300)

    async def scenario():
        await preheater.preheat_from_input("@notes")
        await preheater.wait_idle()

    asyncio.run(scenario())
    clock.now += 301
    preheater.cleanup()
    assert preheater.status() == {}
