import asyncio
import json

import pytest

from toolrelay.application.tool_chat_service import ToolChatService
from toolrelay.domain.models.ui import UIActionType
from toolrelay.infrastructure.config.settings import AppSettings
from toolrelay.infrastructure.config.store import JsonConfigStore

CALL = '<tool_call>{"server": "notes", "tool": "read_file", "parameters": {"path": "a"}}</tool_call>'


@pytest.fixture
def settings(tmp_path, monkeypatch):
    monkeypatch.setenv("TOOL_CATALOG_PATH", str(tmp_path / "catalog.json"))
    monkeypatch.setenv("TOOL_HISTORY_PATH", str(tmp_path / "history.json"))
    monkeypatch.setenv("PREHEAT_DEBOUNCE_S", "0")
    monkeypatch.setenv("WEB_SEARCH_PROVIDER", "duckduckgo")
    return AppSettings()


def _service(settings, transport, dispatcher, model):
    config = JsonConfigStore(data={
        "servers": [{"name": "notes", "config": {"command": "notes-server"}}],
        "authorization": {"defaultAutoAuthorize": True},
    })
    return ToolChatService.from_settings(transport, dispatcher, settings=settings, config=config, model=model)


def test_plain_answer_ends_the_stream(settings, transport, dispatcher, make_model):
    service = _service(settings, transport, dispatcher, make_model([["Hello there."]]))

    outcome = asyncio.run(service.run_user_turn("c1", "m1", "Hi"))

    assert outcome.requests == []
    assert outcome.has_text
    assert dispatcher.text("m1") == "Hello there."
    assert dispatcher.types("m1")[-1] == UIActionType.STREAM_END
    assert transport.calls == []


def test_tool_call_in_first_turn_is_executed_and_answered(settings, transport, dispatcher, make_model, tmp_path):
    model = make_model([["Let me check. ", CALL], ["Note a says ok."]])
    service = _service(settings, transport, dispatcher, model)

    async def scenario():
        outcome = await service.run_user_turn("c1", "m1", "What is in note a?", history=[
            {"role": "assistant", "content": "Earlier reply"},
        ])
        await service.aclose()
        return outcome

    outcome = asyncio.run(scenario())

    assert [(r.server, r.tool) for r in outcome.requests] == [("notes", "read_file")]
    assert transport.calls == [("notes", "read_file", {"path": "a"})]
    assert dispatcher.text("m1") == "Let me check. Note a says ok."
    assert dispatcher.types("m1").count(UIActionType.STREAM_END) == 1
    first_turn = model.calls[0]
    assert first_turn[0] == {"role": "assistant", "content": "Earlier reply"}
    assert first_turn[-1] == {"role": "user", "content": "What is in note a?"}
    assert [run.result.ok for run in outcome.runs] == [True]
    assert service.orchestrator.runs("m1") == []
    assert "notes:read_file:" in next(iter(json.loads((tmp_path / "history.json").read_text())))


def test_model_failure_returns_none(settings, transport, dispatcher, make_model):
    service = _service(settings, transport, dispatcher, make_model([RuntimeError("boom")]))

    assert asyncio.run(service.run_user_turn("c1", "m1", "Hi")) is None
    assert dispatcher.errors == [("m1", "boom")]


def test_preheat_and_approval_delegation(settings, transport, dispatcher, make_model):
    service = _service(settings, transport, dispatcher, make_model())

    async def scenario():
        scheduled = await service.preheat("ask @notes about @nobody")
        await service.preheater.wait_idle()
        return scheduled

    assert asyncio.run(scenario()) == ["notes"]
    assert service.preheater.is_preheated("notes")
    assert service.approve("missing") is False
    assert service.reject("missing") is False


def test_stopped_message_state_is_released(settings, transport, dispatcher, make_model):
    service = _service(settings, transport, dispatcher, make_model([["Hello."]]))
    service.stop("m1")

    assert service.orchestrator.is_cancelled("m1")
    assert asyncio.run(service.run_user_turn("c1", "m1", "Hi")) is None
    assert not service.orchestrator.is_cancelled("m1")
    assert service.orchestrator.runs("m1") == []
