import json

from toolrelay.domain.models.tool import ToolDescriptor
from toolrelay.domain.services.failure_escalation import FailureTracker
from toolrelay.domain.services.schema_hints import (
    build_detailed_tool_guide,
    build_escalated_hint,
    build_example_for_type,
    build_schema_hint,
    diagnose_arguments,
    find_tool,
)

READ_FILE = ToolDescriptor(
    name="read_file",
    description="Read a note",
    input_schema={
        "type": "object",
        "properties": {
            "path": {"type": "string", "description": "Note path"},
            "mode": {"type": "string", "enum": ["r", "w"]},
            "limit": {"type": "integer", "default": 3},
        },
        "required": ["path"],
    },
)
LIST_NOTES = ToolDescriptor(name="list_notes", description="List all notes")
TOOLS = [READ_FILE, LIST_NOTES]


def test_schema_hint_lists_parameters_and_example():
    hint = build_schema_hint("notes", "read_file", TOOLS)

    assert hint.startswith('Parameters for tool "notes.read_file":')
    assert "- path (string) [required] - Note path" in hint
    assert "- mode (string) enum: r, w" in hint
    assert "- limit (integer) default: 3" in hint
    assert "Required: path" in hint
    example = hint.split("Example arguments:\n", 1)[1].rsplit("\n", 1)[0]
    assert json.loads(example) == {"path": "", "mode": "r", "limit": 3}


def test_schema_hint_without_schema():
    hint = build_schema_hint("notes", "list_notes", TOOLS)

    assert "Description: List all notes" in hint
    assert "publishes no parameter schema" in hint


def test_find_tool_is_case_insensitive():
    assert find_tool(TOOLS, "READ_FILE") is READ_FILE
    assert find_tool(TOOLS, "missing") is None


def test_example_values_per_type():
    assert build_example_for_type("array", {"items": {"type": "integer"}}) == [0]
    assert build_example_for_type("boolean", {}) is False
    assert build_example_for_type("object", {}) == {}
    assert build_example_for_type("string", {"enum": ["a", "b"]}) == "a"
    assert build_example_for_type("number", {"default": 1.5}) == 1.5


def test_diagnose_reports_every_kind_of_issue():
    issues = diagnose_arguments(READ_FILE.input_schema, {"mode": "x", "limit": "5", "extra": 1})

    assert issues.missing_required == ["path"]
    assert issues.unknown_keys == ["extra"]
    assert issues.type_mismatches == [{"key": "limit", "expected": "integer", "actual": "string"}]
    assert issues.enum_violations[0]["key"] == "mode"
    assert bool(issues)
    assert not diagnose_arguments(READ_FILE.input_schema, {"path": "a", "limit": 2})


def test_detailed_guide_suggests_minimal_arguments():
    guide = build_detailed_tool_guide("notes", "read_file", TOOLS, {})

    assert guide.has_schema
    assert guide.suggested_arguments == {"path": "", "mode": "r", "limit": 3}
    assert "Missing required: path" in guide.text


def test_escalated_hint_grows_with_stage():
    args = {"limit": "many"}
    first = build_escalated_hint(1, "notes", "read_file", TOOLS, args)
    second = build_escalated_hint(2, "notes", "read_file", TOOLS, args)
    third = build_escalated_hint(3, "notes", "read_file", TOOLS, args)

    assert first.startswith("Parameter hint (concise):")
    assert second.startswith("Argument corrections (focused):")
    assert "Missing required: path" in second
    assert "limit (expected: integer, actual: string)" in second
    assert third.startswith("Detailed guide:")
    assert "If it still fails consider:\nread_file - Read a note\nlist_notes - List all notes" in third


def test_failure_tracker_counts_per_conversation_and_tool():
    tracker = FailureTracker()

    stage, hint = tracker.escalate("c1", "notes", "read_file", TOOLS)
    assert stage == 1
    assert hint.startswith("Parameter hint (concise):")
    assert tracker.escalate("c1", "notes", "read_file", TOOLS)[0] == 2
    assert tracker.increment("c1", "notes", "list_notes") == 1
    assert tracker.increment("c2", "notes", "read_file") == 1

    tracker.reset("c1", "notes", "read_file")
    assert tracker.get("c1", "notes", "read_file") == 0
    assert tracker.get("c1", "notes", "list_notes") == 1

    tracker.reset_conversation("c1")
    assert tracker.get("c1", "notes", "list_notes") == 0
    assert tracker.get("c2", "notes", "read_file") == 1
