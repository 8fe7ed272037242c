import json

import pytest

from toolrelay.cli import main
from toolrelay.utils import split_chunks, truncate_text


def test_extract_prints_request(capsys):
    code = main(["extract", 'Hi <tool_call>{"server": "notes", "tool": "read_file", "parameters": {"path": "a"}}</tool_call>'])

    out = json.loads(capsys.readouterr().out)
    assert code == 0
    assert out["cleaned_text"] == "Hi "
    assert out["request"]["server"] == "notes"
    assert out["request"]["args"] == {"path": "a"}
    assert out["request"]["card_id"].startswith("tc_")


def test_extract_without_instruction_exits_nonzero(capsys):
    assert main(["extract", "just text"]) == 1
    assert json.loads(capsys.readouterr().out)["request"] is None


def test_extract_reads_stdin(monkeypatch, capsys):
    import io
    monkeypatch.setattr("sys.stdin", io.StringIO("to= >>notes>>list_notes>>{}>>"))

    assert main(["extract"]) == 0
    assert json.loads(capsys.readouterr().out)["request"]["tool"] == "list_notes"


def test_classify_prints_one_event_per_line(capsys):
    assert main(["classify", "<think>hm</think>Hi there", "--chunk-size", "3"]) == 0

    events = [json.loads(line) for line in capsys.readouterr().out.splitlines()]
    types = [e["type"] for e in events]
    assert types[0] == "thinking_start"
    assert "thinking_end" in types
    assert types[-1] == "stream_complete"
    assert "".join(e["content"] for e in events if e["type"] == "content_token") == "Hi there"


def test_catalog_stats_and_clear(tmp_path, capsys):
    path = tmp_path / "catalog.json"
    path.write_text(json.dumps({"servers": {"notes": {"tools": [{"name": "read_file"}], "lastConnected": 0}},
                                "lastUpdate": 4102444800}))

    assert main(["catalog", "stats", "--path", str(path)]) == 0
    assert json.loads(capsys.readouterr().out)["cached_servers"] == ["notes"]

    assert main(["catalog", "clear", "--server", "notes", "--path", str(path)]) == 0
    assert "Cleared catalog for notes" in capsys.readouterr().out
    assert json.loads(path.read_text())["servers"] == {}


def test_missing_command_is_a_usage_error():
    with pytest.raises(SystemExit):
        main([])


def test_text_helpers():
    assert truncate_text("short") == "short"
    assert truncate_text("x" * 10, max_length=6) == "xxx..."
    assert split_chunks("abcdefg", 3) == ["abc", "def", "g"]
    assert split_chunks("abc", 0) == ["a", "b", "c"]
