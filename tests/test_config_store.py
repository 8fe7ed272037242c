import json

from toolrelay.infrastructure.config.store import JsonConfigStore


def test_defaults_without_file():
    store = JsonConfigStore()

    assert store.enabled_servers() == []
    assert store.default_auto_authorize() is False
    assert store.max_recursion_depth() == 2
    assert store.get_server_config("notes") is None
    assert store.save() is False


def test_servers_and_overrides_from_data():
    store = JsonConfigStore(data={
        "servers": [
            {"name": "notes", "config": {"command": "notes-server"}},
            {"name": "mail", "enabled": False},
            {"config": {"orphan": True}},
        ],
        "authorization": {
            "defaultAutoAuthorize": True,
            "serverConfigs": {"mail": {"autoAuthorize": False, "maxRecursionDepth": 5}},
        },
        "maxToolRecursionDepth": 99,
    })

    assert store.enabled_servers() == ["notes"]
    assert store.get_server_config("notes") == {"command": "notes-server"}
    assert store.get_server_config("mail") == {}
    assert store.server_auto_authorize("mail") is False
    assert store.server_auto_authorize("notes") is None
    assert store.server_max_recursion_depth("mail") == 5
    assert store.max_recursion_depth() == 2


def test_changes_are_persisted(tmp_path):
    path = tmp_path / "config.json"
    store = JsonConfigStore(path)
    store.upsert_server("notes", {"command": "notes-server"})
    store.set_default_auto_authorize(True)
    store.set_server_config("notes", auto_authorize=False, max_recursion_depth="infinite")
    store.set_max_recursion_depth("infinite")

    reloaded = JsonConfigStore(path)

    assert reloaded.enabled_servers() == ["notes"]
    assert reloaded.default_auto_authorize() is True
    assert reloaded.server_auto_authorize("notes") is False
    assert reloaded.server_max_recursion_depth("notes") == "infinite"
    assert reloaded.max_recursion_depth() == "infinite"
    assert json.loads(path.read_text())["maxToolRecursionDepth"] == "infinite"


def test_clearing_every_override_removes_the_entry(tmp_path):
    store = JsonConfigStore(tmp_path / "config.json")
    store.set_server_config("notes", auto_authorize=True)
    store.set_server_config("notes")

    assert "notes" not in store.to_dict()["authorization"]["serverConfigs"]


def test_unreadable_file_keeps_defaults(tmp_path):
    path = tmp_path / "config.json"
    path.write_text("[not, an, object")

    store = JsonConfigStore(path, default_max_depth=4)

    assert store.enabled_servers() == []
    assert store.max_recursion_depth() == 4
