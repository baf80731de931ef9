"""
Tests for the backup engine: disable/enable, uninstall backups, cleanup.
"""

import json
import threading

import pytest

import backup_engine
from backup_engine import (
    DISABLE_INDEX_FILENAME,
    UNINSTALL_MANIFEST_FILENAME,
    ModBackupEngine,
    decode_backup_name,
    directory_size,
    encode_backup_name,
)
from errors import BackupNotFound
from tests.conftest import write_file


def snapshot(root, rels):
    return {rel: (root / rel).read_bytes() for rel in rels}


# ── name codec ──────────────────────────────────────────────────────────────

def test_encode_flattens_relative_path():
    assert encode_backup_name("Mods/Foo.dll") == "Mods_Foo.dll"
    assert encode_backup_name("Mods\\Foo.dll") == "Mods_Foo.dll"


def test_codec_round_trips_awkward_names():
    for rel in ("Mods/My_Mod.dll", "UserData/a_b/c%d.cfg", "Mods/x%5F.dll", "Mods/%25_.txt"):
        assert decode_backup_name(encode_backup_name(rel)) == rel


def test_encoding_keeps_underscores_and_separators_apart():
    assert encode_backup_name("Mods/a_b.dll") != encode_backup_name("Mods/a/b.dll")


def test_legacy_names_decode_every_underscore_as_separator():
    assert decode_backup_name("UserData_Config.cfg") == "UserData/Config.cfg"


# ── disable / enable ────────────────────────────────────────────────────────

def test_disable_moves_files_and_writes_index(game_root):
    files = ["Mods/Foo.dll", "UserData/Foo/cfg_1.ini"]
    write_file(game_root, files[0], b"foo")
    write_file(game_root, files[1], b"cfg")
    engine = ModBackupEngine(game_root)

    assert engine.disable("foo", files)

    assert not (game_root / files[0]).exists()
    assert not (game_root / files[1]).exists()
    assert engine.is_disabled("foo")
    assert engine.disabled_ids() == ["foo"]
    index = json.loads((engine.disabled_dir / "foo" / DISABLE_INDEX_FILENAME).read_text("utf-8"))
    assert index == {encode_backup_name(f): f for f in files}


def test_disable_then_enable_round_trip(game_root):
    files = ["Mods/Foo.dll", "Mods/Foo/Assets/a_b.bundle", "UserData/Foo.cfg"]
    for i, rel in enumerate(files):
        write_file(game_root, rel, f"payload {i}".encode())
    before = snapshot(game_root, files)
    engine = ModBackupEngine(game_root)

    assert engine.disable("foo", files)
    assert engine.enable("foo")

    assert snapshot(game_root, files) == before
    assert not (engine.disabled_dir / "foo").exists()
    assert not engine.is_disabled("foo")


def test_disable_twice_is_harmless(game_root):
    write_file(game_root, "Mods/Foo.dll", b"foo")
    engine = ModBackupEngine(game_root)

    assert engine.disable("foo", ["Mods/Foo.dll"])
    assert engine.disable("foo", ["Mods/Foo.dll"])
    assert engine.enable("foo")

    assert (game_root / "Mods/Foo.dll").read_bytes() == b"foo"


def test_disable_skips_missing_files(game_root):
    write_file(game_root, "Mods/Foo.dll", b"foo")
    engine = ModBackupEngine(game_root)

    assert engine.disable("foo", ["Mods/Foo.dll", "Mods/Optional.dll"])
    assert engine.enable("foo")
    assert (game_root / "Mods/Foo.dll").exists()
    assert not (game_root / "Mods/Optional.dll").exists()


def test_enable_without_index_decodes_file_names(game_root):
    engine = ModBackupEngine(game_root)
    folder = engine.disabled_dir / "foo"
    write_file(folder, "Mods_Foo.dll", b"legacy")

    assert engine.enable("foo")
    assert (game_root / "Mods/Foo.dll").read_bytes() == b"legacy"


def test_enable_unknown_mod_fails(game_root):
    assert ModBackupEngine(game_root).enable("nothing") is False


def test_cancelled_disable_leaves_files_in_place(game_root):
    write_file(game_root, "Mods/Foo.dll")
    cancel = threading.Event()
    cancel.set()

    assert ModBackupEngine(game_root).disable("foo", ["Mods/Foo.dll"], cancel=cancel) is False
    assert (game_root / "Mods/Foo.dll").exists()


def test_failed_enable_can_be_retried(game_root, monkeypatch):
    files = ["Mods/A.dll", "Mods/B.dll"]
    for rel in files:
        write_file(game_root, rel, rel.encode())
    engine = ModBackupEngine(game_root)
    assert engine.disable("foo", files)

    real_move = backup_engine._move_file

    def flaky_move(src, dst):
        if dst.name == "B.dll":
            raise PermissionError("locked")
        real_move(src, dst)

    monkeypatch.setattr(backup_engine, "_move_file", flaky_move)
    assert engine.enable("foo") is False
    assert (game_root / "Mods/A.dll").exists()
    assert engine.is_disabled("foo")

    monkeypatch.setattr(backup_engine, "_move_file", real_move)
    assert engine.enable("foo") is True
    assert snapshot(game_root, files) == {rel: rel.encode() for rel in files}
    assert not engine.is_disabled("foo")


def test_operations_fail_without_game_root(tmp_path):
    engine = ModBackupEngine(tmp_path / "missing")
    assert engine.initialize() is False
    assert engine.disable("foo", ["Mods/Foo.dll"]) is False
    assert engine.backup_for_uninstall("foo", "v1", ["Mods/Foo.dll"]) is False


# ── uninstall backups ───────────────────────────────────────────────────────

def test_uninstall_backup_copies_files_and_keeps_originals(game_root):
    files = ["Mods/Foo.dll", "Mods/Sub/Foo.dll"]
    write_file(game_root, files[0], b"top")
    write_file(game_root, files[1], b"nested")
    engine = ModBackupEngine(game_root)

    assert engine.backup_for_uninstall("foo", "v1.0", files)

    assert (game_root / files[0]).exists()
    assert engine.backup_exists("foo", "v1.0")
    record = engine.read_uninstall_record("foo", "v1.0")
    assert record.original_files == files
    assert sorted(record.backup_paths.values()) == files
    for name, rel in record.backup_paths.items():
        assert (record.folder / name).read_bytes() == (game_root / rel).read_bytes()


def test_reinstall_from_backup_restores_nested_paths(game_root):
    files = ["Mods/Foo.dll", "Mods/Sub/Foo.dll"]
    write_file(game_root, files[0], b"top")
    write_file(game_root, files[1], b"nested")
    engine = ModBackupEngine(game_root)
    engine.backup_for_uninstall("foo", "v1.0", files)
    for rel in files:
        (game_root / rel).unlink()

    ok, restored = engine.reinstall_from_backup("foo", "v1.0")

    assert ok
    assert sorted(restored) == files
    assert (game_root / "Mods/Sub/Foo.dll").read_bytes() == b"nested"


def test_legacy_backup_restores_flat_into_mods(game_root):
    engine = ModBackupEngine(game_root)
    folder = engine.uninstalled_dir / "foo_v1.0"
    write_file(folder, "Foo.dll", b"legacy")
    (folder / UNINSTALL_MANIFEST_FILENAME).write_text(json.dumps({
        "ModId": "foo",
        "Version": "1.0",
        "BackupDate": "2024-05-01T10:00:00.1234567+08:00",
        "OriginalFiles": ["Mods/Foo.dll"],
    }), encoding="utf-8")

    ok, restored = engine.reinstall_from_backup("foo", "1.0")

    assert ok
    assert restored == ["Mods/Foo.dll"]
    assert (game_root / "Mods/Foo.dll").read_bytes() == b"legacy"


def test_reinstall_from_missing_backup_fails(game_root):
    assert ModBackupEngine(game_root).reinstall_from_backup("foo", "v9") == (False, [])


def test_read_missing_uninstall_record_raises(game_root):
    with pytest.raises(BackupNotFound):
        ModBackupEngine(game_root).read_uninstall_record("foo", "v1")


def test_list_uninstall_backups_newest_first(game_root):
    write_file(game_root, "Mods/Foo.dll")
    write_file(game_root, "Mods/Bar.dll")
    engine = ModBackupEngine(game_root)
    engine.backup_for_uninstall("foo", "v1", ["Mods/Foo.dll"])
    engine.backup_for_uninstall("bar", "v2", ["Mods/Bar.dll"])

    old_manifest = engine.uninstalled_dir / "foo_vv1" / UNINSTALL_MANIFEST_FILENAME
    data = json.loads(old_manifest.read_text("utf-8"))
    data["backupDate"] = "2020-01-01T00:00:00"
    old_manifest.write_text(json.dumps(data), encoding="utf-8")

    assert [(r.mod_id, r.version) for r in engine.list_uninstall_backups()] == [
        ("bar", "v2"), ("foo", "v1"),
    ]
    assert [r.mod_id for r in engine.list_uninstall_backups("foo")] == ["foo"]


def test_list_skips_unreadable_backups(game_root):
    write_file(game_root, "Mods/Foo.dll")
    engine = ModBackupEngine(game_root)
    engine.backup_for_uninstall("foo", "v1", ["Mods/Foo.dll"])
    write_file(engine.uninstalled_dir / "broken_v1", UNINSTALL_MANIFEST_FILENAME, b"{oops")

    assert [r.mod_id for r in engine.list_uninstall_backups()] == ["foo"]


def test_retried_backup_keeps_files_from_first_attempt(game_root):
    files = ["Mods/A.dll", "Mods/B.dll"]
    for rel in files:
        write_file(game_root, rel)
    engine = ModBackupEngine(game_root)
    assert engine.backup_for_uninstall("foo", "v1", files)

    (game_root / "Mods/A.dll").unlink()
    assert engine.backup_for_uninstall("foo", "v1", files)

    record = engine.read_uninstall_record("foo", "v1")
    assert sorted(record.backup_paths.values()) == files


# ── cleanup ─────────────────────────────────────────────────────────────────

def test_cleanup_removes_all_backups_and_reports_bytes(game_root):
    write_file(game_root, "Mods/Foo.dll", b"x" * 1000)
    write_file(game_root, "Mods/Bar.dll", b"y" * 500)
    engine = ModBackupEngine(game_root)
    engine.backup_for_uninstall("foo", "v1", ["Mods/Foo.dll"])
    engine.disable("bar", ["Mods/Bar.dll"])
    expected = directory_size(engine.disabled_dir) + directory_size(engine.uninstalled_dir)

    freed = engine.cleanup()

    assert freed == expected
    assert freed >= 1500
    assert list(engine.disabled_dir.iterdir()) == []
    assert list(engine.uninstalled_dir.iterdir()) == []
    assert (game_root / "Mods/Foo.dll").exists()
