import asyncio

import pytest

from toolrelay.domain.models.tool import ToolCallRequest
from toolrelay.domain.models.ui import UIActionType
from toolrelay.domain.services.authorization import PENDING_AUTH_MARKER, AuthorizationGate
from toolrelay.infrastructure.config.store import JsonConfigStore


def _config(default=False, overrides=None):
    return JsonConfigStore(data={
        "authorization": {"defaultAutoAuthorize": default, "serverConfigs": overrides or {}},
    })


def _request(server="notes", tool="read_file", card_id="card-1"):
    return ToolCallRequest(server, tool, {"path": "a"}, card_id=card_id)


async def _wait_pending(gate, count=1):
    for _ in range(50):
        if len(gate.pending()) >= count:
            return
        await asyncio.sleep(0)
    raise AssertionError("authorization never became pending")


@pytest.mark.parametrize("default,overrides,server,expected", [
    (True, {}, "notes", True),
    (False, {}, "notes", False),
    (True, {}, "filesystem", False),
    (True, {}, "FS", False),
    (False, {"filesystem": {"autoAuthorize": True}}, "filesystem", True),
    (True, {"notes": {"autoAuthorize": False}}, "notes", False),
])
def test_should_auto_authorize(default, overrides, server, expected):
    gate = AuthorizationGate(_config(default, overrides))

    assert gate.should_auto_authorize(server) is expected


def test_auto_authorized_call_does_not_wait(dispatcher):
    gate = AuthorizationGate(_config(default=True), dispatcher)

    assert asyncio.run(gate.authorize(_request(), "m1")) is True
    assert dispatcher.actions == []


def test_pending_call_waits_for_approval(dispatcher):
    gate = AuthorizationGate(_config(), dispatcher, clock=lambda: 42.0)

    async def scenario():
        task = asyncio.ensure_future(gate.authorize(_request(), "m1"))
        await _wait_pending(gate)
        entry = gate.pending("m1")[0]
        assert entry.created_at == 42.0
        assert gate.approve(entry.id)
        return await task

    assert asyncio.run(scenario()) is True
    assert gate.pending() == []
    marker = dispatcher.of_type(UIActionType.TOOL_RESULT)[0]
    assert marker.ok is False
    assert marker.error_message == PENDING_AUTH_MARKER
    assert marker.card_id == "card-1"


def test_rejection_resolves_false_and_second_decision_is_ignored(dispatcher):
    gate = AuthorizationGate(_config(), dispatcher)

    async def scenario():
        task = asyncio.ensure_future(gate.authorize(_request(), "m1"))
        await _wait_pending(gate)
        pending_id = gate.pending()[0].id
        assert gate.reject(pending_id)
        assert not gate.approve(pending_id)
        return await task

    assert asyncio.run(scenario()) is False


def test_reentrant_requests_share_one_pending_entry(dispatcher):
    gate = AuthorizationGate(_config(), dispatcher)

    async def scenario():
        first = asyncio.ensure_future(gate.authorize(_request(), "m1"))
        second = asyncio.ensure_future(gate.authorize(_request(), "m1"))
        await _wait_pending(gate)
        await asyncio.sleep(0)
        assert len(gate.pending()) == 1
        gate.approve("card-1")
        return await asyncio.gather(first, second)

    assert asyncio.run(scenario()) == [True, True]
    assert len(dispatcher.of_type(UIActionType.TOOL_RESULT)) == 1


def test_cancel_message_closes_only_that_messages_entries(dispatcher):
    gate = AuthorizationGate(_config(), dispatcher)

    async def scenario():
        mine = asyncio.ensure_future(gate.authorize(_request(card_id="a"), "m1"))
        other = asyncio.ensure_future(gate.authorize(_request(card_id="b"), "m2"))
        await _wait_pending(gate, count=2)
        assert gate.cancel_message("m1") == 1
        assert await mine is False
        assert [p.id for p in gate.pending()] == ["b"]
        gate.approve("b")
        return await other

    assert asyncio.run(scenario()) is True


def test_cancelling_the_waiting_task_propagates(dispatcher):
    gate = AuthorizationGate(_config(), dispatcher)

    async def scenario():
        task = asyncio.ensure_future(gate.authorize(_request(), "m1"))
        await _wait_pending(gate)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        # The shared entry survives for other waiters
        assert [p.id for p in gate.pending()] == ["card-1"]

    asyncio.run(scenario())


def test_same_call_on_two_messages_gets_separate_approvals(dispatcher):
    gate = AuthorizationGate(_config(), dispatcher)

    async def scenario():
        first = asyncio.ensure_future(gate.authorize(_request(server="filesystem"), "m1"))
        second = asyncio.ensure_future(gate.authorize(_request(server="filesystem"), "m2"))
        await _wait_pending(gate, count=2)
        assert [p.message_id for p in gate.pending()] == ["m1", "m2"]
        # Ambiguous without the owning message
        assert gate.approve("card-1") is False

        assert gate.cancel_message("m1") == 1
        assert await first is False
        assert [p.message_id for p in gate.pending("m2")] == ["m2"]
        assert gate.approve("card-1", "m2")
        return await second

    assert asyncio.run(scenario()) is True
    assert [a.card_id for _, a in dispatcher.actions] == ["card-1", "card-1"]
    assert [mid for mid, _ in dispatcher.actions] == ["m1", "m2"]
