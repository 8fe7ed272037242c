import asyncio

from toolrelay.domain.models.events import StreamDelta
from toolrelay.domain.models.tool import CallState, ToolCallRequest
from toolrelay.domain.models.ui import UIActionType
from toolrelay.domain.services.execution import TurnContext
from toolrelay.infrastructure.config.store import JsonConfigStore

QUESTION = "What does note a say?"


def _turn(message_id="m1", conversation_id="c1"):
    return TurnContext(conversation_id, message_id, QUESTION, [{"role": "user", "content": QUESTION}])


def _read(path="a"):
    return ToolCallRequest("notes", "read_file", {"path": path})


def _call_text(path):
    return f'<tool_call>{{"server": "notes", "tool": "read_file", "parameters": {{"path": "{path}"}}}}</tool_call>'


async def _wait_pending(gate):
    for _ in range(100):
        if gate.pending():
            return gate.pending()
        await asyncio.sleep(0)
    raise AssertionError("no pending authorization")


def _run(stack, *requests, message_id="m1"):
    async def scenario():
        for request in requests:
            stack.orchestrator.submit(_turn(message_id), request)
        await stack.orchestrator.wait_for_message(message_id)

    asyncio.run(scenario())
    return stack.orchestrator.runs(message_id)


def test_successful_call_is_answered_by_follow_up(make_stack):
    stack = make_stack(turns=[["The note ", "says hello."]])

    runs = _run(stack, _read())

    assert runs[0].states == [
        CallState.DETECTED, CallState.AUTHORIZING, CallState.CONNECTING, CallState.EXECUTING,
        CallState.SUCCEEDED, CallState.INJECTING, CallState.FOLLOWING_UP, CallState.ENDED,
    ]
    types = stack.dispatcher.types("m1")
    assert types[0] == UIActionType.TOOL_HIT
    assert types[1] == UIActionType.TOOL_RESULT
    assert types[-1] == UIActionType.STREAM_END
    assert stack.dispatcher.text("m1") == "The note says hello."

    hit = stack.dispatcher.of_type(UIActionType.TOOL_HIT)[0]
    result = stack.dispatcher.of_type(UIActionType.TOOL_RESULT)[0]
    assert hit.card_id == result.card_id
    assert '"__tool_call_card__"' in hit.marker
    assert result.ok and '"ok"' in result.result_preview

    follow_up = stack.model.calls[0]
    assert follow_up[0]["role"] == "system"
    assert follow_up[0]["content"].startswith("Give the user a complete answer")
    assert follow_up[1] == {"role": "user", "content": QUESTION}
    assert "Tool call result: notes.read_file -> " in follow_up[-1]["content"]


def test_identical_requests_share_one_execution(make_stack):
    stack = make_stack(turns=[["Done."]])

    async def scenario():
        first = stack.orchestrator.submit(_turn(), _read())
        second = stack.orchestrator.submit(_turn(), _read())
        assert first is second
        await stack.orchestrator.wait_for_message("m1")

    asyncio.run(scenario())

    assert len(stack.transport.calls) == 1
    assert len(stack.dispatcher.of_type(UIActionType.TOOL_HIT)) == 1


def test_runs_for_one_message_are_serialized_in_order(make_stack):
    stack = make_stack(turns=[["First."], ["Second."]])
    stack.transport.call_delay = 0.01

    runs = _run(stack, _read("a"), _read("b"))

    assert [r.request.args["path"] for r in runs] == ["a", "b"]
    assert [c[2]["path"] for c in stack.transport.calls] == ["a", "b"]
    assert stack.dispatcher.text("m1") == "First.Second."
    assert stack.dispatcher.types("m1").count(UIActionType.STREAM_END) == 2


def test_silent_follow_up_is_nudged_once(make_stack):
    stack = make_stack(turns=[[], ["Answer after nudge."]])

    runs = _run(stack, _read())

    assert runs[0].state == CallState.ENDED
    assert len(stack.model.calls) == 2
    nudge = stack.model.calls[1]
    assert nudge[0]["content"].startswith("Final answer required.")
    assert nudge[-1]["content"].startswith("Using all tool results above")
    assert stack.dispatcher.text("m1") == "Answer after nudge."


def test_silent_nudge_falls_back_to_raw_result(make_stack):
    stack = make_stack(turns=[[], [StreamDelta(thinking="hmm")]])

    runs = _run(stack, _read())

    assert runs[0].state == CallState.ENDED
    assert stack.dispatcher.text("m1") == "Result from notes.read_file:\nok"
    assert stack.dispatcher.types("m1")[-1] == UIActionType.STREAM_END


def test_follow_up_tool_calls_recurse_until_the_limit(make_stack):
    stack = make_stack(turns=[[_call_text("b")], [_call_text("c")], ["never used"]])

    runs = _run(stack, _read("a"))

    assert [c[2]["path"] for c in stack.transport.calls] == ["a", "b", "c"]
    assert len(stack.model.calls) == 2
    assert [r.state for r in runs] == [CallState.RECURSING, CallState.RECURSING, CallState.ENDED]
    assert [r.error for r in runs[:2]] == [None, None]
    assert runs[-1].error.error_code == "RECURSION_LIMIT_EXCEEDED"
    assert runs[-1].error.max_depth == 2
    assert stack.dispatcher.text("m1").strip() == (
        "Tool call limit reached (2 follow-up rounds); stopping the tool loop."
    )
    assert stack.dispatcher.types("m1")[-1] == UIActionType.STREAM_END
    assert stack.orchestrator.recursion.get("c1") == 0


def test_server_depth_override_allows_more_rounds(make_stack):
    config = JsonConfigStore(data={
        "servers": [{"name": "notes", "config": {}}],
        "authorization": {"defaultAutoAuthorize": True,
                          "serverConfigs": {"notes": {"maxRecursionDepth": 3}}},
    })
    stack = make_stack(config=config, turns=[[_call_text("b")], [_call_text("c")], ["All done."]])

    runs = _run(stack, _read("a"))

    assert runs[-1].state == CallState.ENDED
    assert stack.dispatcher.text("m1") == "All done."


def test_rejected_call_is_reported_to_the_model(make_stack):
    stack = make_stack(
        config=JsonConfigStore(data={"servers": [{"name": "notes", "config": {}}]}),
        turns=[["Okay, I will not read it."]],
    )

    async def scenario():
        stack.orchestrator.submit(_turn(), _read())
        pending = await _wait_pending(stack.gate)
        stack.gate.reject(pending[0].id)
        await stack.orchestrator.wait_for_message("m1")

    asyncio.run(scenario())
    run = stack.orchestrator.runs("m1")[0]

    assert run.states == [
        CallState.DETECTED, CallState.AUTHORIZING, CallState.DENIED,
        CallState.INJECTING, CallState.FOLLOWING_UP, CallState.ENDED,
    ]
    assert run.result.error_code == "AUTHORIZATION_DENIED"
    assert stack.transport.calls == []
    results = stack.dispatcher.of_type(UIActionType.TOOL_RESULT)
    assert results[0].error_message == "pending_auth"
    assert results[-1].ok is False
    assert stack.model.calls[0][0]["content"].startswith("The tool call ran into a problem")


def test_stop_while_awaiting_approval_ends_silently(make_stack):
    stack = make_stack(config=JsonConfigStore(data={"servers": [{"name": "notes", "config": {}}]}))

    async def scenario():
        stack.orchestrator.submit(_turn(), _read())
        await _wait_pending(stack.gate)
        stack.orchestrator.cancel_message("m1")
        await stack.orchestrator.wait_for_message("m1")

    asyncio.run(scenario())
    run = stack.orchestrator.runs("m1")[0]

    assert run.states == [CallState.DETECTED, CallState.AUTHORIZING, CallState.CANCELLED]
    assert stack.gate.pending() == []
    assert stack.model.calls == []
    assert UIActionType.STREAM_END not in stack.dispatcher.types("m1")


def test_externally_cancelled_message_never_executes(make_stack):
    stack = make_stack()
    stack.dispatcher.cancelled.add("m1")

    runs = _run(stack, _read())

    assert runs[0].states == [CallState.DETECTED, CallState.CANCELLED]
    assert stack.transport.calls == []


def test_model_failure_marks_the_message(make_stack):
    stack = make_stack(turns=[RuntimeError("model offline")])

    runs = _run(stack, _read())

    assert runs[0].state == CallState.FOLLOWING_UP
    assert stack.dispatcher.errors == [("m1", "model offline")]
    assert UIActionType.STREAM_END not in stack.dispatcher.types("m1")


def test_failed_call_still_continues_the_conversation(make_stack):
    stack = make_stack(turns=[["Sorry, that failed."]])
    stack.transport.results[("notes", "read_file")] = RuntimeError("disk on fire")

    runs = _run(stack, _read())

    assert CallState.FAILED in runs[0].states
    assert runs[0].state == CallState.ENDED
    result = stack.dispatcher.of_type(UIActionType.TOOL_RESULT)[0]
    assert result.ok is False
    assert result.error_message == "disk on fire"
    assert result.schema_hint.startswith("Parameter hint (concise):")
    assert "disk on fire" in stack.model.calls[0][-1]["content"]


def test_stream_turn_reports_thinking_and_detection(make_stack):
    stack = make_stack(turns=[[
        StreamDelta(thinking="let me see"),
        "Sure. <|channel|>commentary to=notes.read_file <|message|>",
        '{"path": "z"}<|call|>',
    ]])

    outcome = asyncio.run(stack.orchestrator.stream_turn("m1", [{"role": "user", "content": "hi"}]))

    assert [r.args for r in outcome.requests] == [{"path": "z"}]
    assert outcome.has_text
    types = stack.dispatcher.types("m1")
    assert types[:2] == [UIActionType.THINK_START, UIActionType.THINK_APPEND]
    assert types.index(UIActionType.THINK_END) < types.index(UIActionType.TOKEN_APPEND)
    assert UIActionType.TOOL_DETECTING_START in types
    assert UIActionType.TOOL_DETECTING_END in types
    assert "commentary" not in stack.dispatcher.text("m1")


def test_new_user_turn_resets_counters(make_stack):
    stack = make_stack()
    stack.orchestrator.failures.increment("c1", "notes", "read_file")
    stack.orchestrator.recursion.try_advance("c1", 2)

    stack.orchestrator.start_user_turn("c1")

    assert stack.orchestrator.failures.get("c1", "notes", "read_file") == 0
    assert stack.orchestrator.recursion.get("c1") == 0
