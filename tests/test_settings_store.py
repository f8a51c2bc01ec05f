from __future__ import annotations

import json

from eames.adapters.permission_store import PermissionStore
from eames.shared.services.durable_write import atomic_write_json
from eames.shared.services.settings_store import SettingsStore


def test_settings_set_get_delete(tmp_path) -> None:
    store = SettingsStore(path=tmp_path / "settings.json", legacy_path=None)
    assert store.load() == {}
    assert store.get("model", "fallback") == "fallback"

    assert store.set("model", "claude-opus")
    assert store.set("permission_mode", "plan-only")
    assert store.get("model") == "claude-opus"

    assert store.delete("model")
    assert not store.delete("model")


def test_settings_round_trip_stored_null(tmp_path) -> None:
    store = SettingsStore(path=tmp_path / "settings.json", legacy_path=None)
    assert store.set("last_model", None)
    assert store.get("last_model", "fallback") is None
    assert store.get("never_set", "fallback") == "fallback"
    assert SettingsStore(path=tmp_path / "settings.json", legacy_path=None).load() == {
        "last_model": None,
    }
    assert json.loads(store.path.read_text()) == {"permission_mode": "plan-only"}


def test_legacy_settings_are_migrated(tmp_path) -> None:
    legacy = tmp_path / "old" / "settings.json"
    legacy.parent.mkdir()
    legacy.write_text(json.dumps({"model": "claude-haiku"}), encoding="utf-8")
    target = tmp_path / "home" / "settings.json"

    store = SettingsStore(path=target, legacy_path=legacy)
    assert store.get("model") == "claude-haiku"
    assert target.exists()
    assert json.loads(target.read_text()) == {"model": "claude-haiku"}


def test_corrupt_or_non_object_settings_read_as_empty(tmp_path) -> None:
    path = tmp_path / "settings.json"
    path.write_text("[1, 2, 3]", encoding="utf-8")
    assert SettingsStore(path=path, legacy_path=None).load() == {}
    path.write_text("{oops", encoding="utf-8")
    assert SettingsStore(path=path, legacy_path=None).load() == {}


def test_atomic_write_leaves_no_temp_files(tmp_path) -> None:
    target = tmp_path / "nested" / "state.json"
    atomic_write_json(target, {"a": 1})
    atomic_write_json(target, {"a": 2})
    assert json.loads(target.read_text()) == {"a": 2}
    assert [p.name for p in target.parent.iterdir()] == ["state.json"]


def test_permission_store_merges_project_and_global(tmp_path) -> None:
    store = PermissionStore(project_dir=tmp_path / "proj", global_dir=tmp_path / "global")
    store.add_global("read_file")
    store.add_project("run_command")
    store.add_project("run_command")

    assert store.load() == {"read_file", "run_command"}
    project_file = tmp_path / "proj" / ".eames" / "allowed_tools.json"
    assert json.loads(project_file.read_text()) == ["run_command"]


def test_permission_store_without_project_uses_global(tmp_path) -> None:
    store = PermissionStore(global_dir=tmp_path)
    store.add_project("write_file")
    assert json.loads((tmp_path / "allowed_tools.json").read_text()) == ["write_file"]
