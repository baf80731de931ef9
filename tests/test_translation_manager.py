"""
Tests for the translation bundle (XUnity plugin + translation data).
"""

import shutil
from pathlib import Path

import pytest

import mod_manager
from backup_engine import ModBackupEngine
from manifest_store import MANUAL_VERSION
from mod_manager import ModManager
from translation_manager import (
    DATA_ID,
    PLUGIN_ID,
    TRANSLATION_BACKUP_DIR_NAME,
    TranslationManager,
    is_plugin_asset,
)
from version_reconciler import TRANSLATION_PLUGIN_FILENAME, TRANSLATION_PLUGIN_ID
from tests.conftest import make_descriptor, make_zip, write_file

PLUGIN_FILE = f"Mods/{TRANSLATION_PLUGIN_FILENAME}"


def publish_plugin(network, tag, payload=b"plugin"):
    network.add_release("bbepis", "XUnity.AutoTranslator", tag, {
        f"XUnity.AutoTranslator-MelonMod-IL2CPP-{tag}.zip": make_zip({"Mods/il2cpp.dll": b"wrong"}),
        f"XUnity.AutoTranslator-MelonMod-{tag}.zip": make_zip({
            PLUGIN_FILE: payload,
            "UserLibs/XUnity.Common.dll": b"common",
        }),
        f"XUnity.AutoTranslator-BepInEx-{tag}.zip": make_zip({"BepInEx/x.dll": b"wrong"}),
    })


def publish_data(network, tag, text=b"hello"):
    network.add_release("tl", "ghpc-translation", tag, {
        f"ghpc-translation-{tag[8:]}.zip": make_zip({
            "AutoTranslator/Translation/zh/a.txt": text,
            "README.md": b"readme",
        }),
    })


def tree(root):
    return {
        p.relative_to(root).as_posix(): p.read_bytes()
        for p in root.rglob("*")
        if p.is_file() and p.relative_to(root).parts[0] != "GHPCMM"
    }


class FlakyShutil:
    def __init__(self, fail_name):
        self.fail_name = fail_name

    def __getattr__(self, name):
        return getattr(shutil, name)

    def copy2(self, src, dst):
        if Path(dst).name == self.fail_name:
            raise PermissionError(f"locked: {dst}")
        return shutil.copy2(src, dst)


@pytest.fixture
def translation(config, network):
    publish_plugin(network, "v5.3.0")
    publish_plugin(network, "v5.4.0")
    network.add_release("tl", "ghpc-translation", "nightly", {"ghpc-translation-nightly.zip": b""})
    publish_data(network, "release-20250101-120000")
    return TranslationManager(config, network, log_callback=lambda _: None)


def test_plugin_asset_filter():
    assert is_plugin_asset("XUnity.AutoTranslator-MelonMod-5.4.0.zip")
    assert not is_plugin_asset("XUnity.AutoTranslator-MelonMod-IL2CPP-5.4.0.zip")
    assert not is_plugin_asset("XUnity.AutoTranslator-MelonMod-5.4.0.rar")


def test_install_places_plugin_and_data(translation, game_root):
    assert not translation.is_installed()

    ok, msg = translation.install()

    assert ok, msg
    assert tree(game_root) == {
        PLUGIN_FILE: b"plugin",
        "UserLibs/XUnity.Common.dll": b"common",
        "AutoTranslator/Translation/zh/a.txt": b"hello",
    }
    status = translation.status()
    assert status.installed and status.enabled and not status.manual
    assert status.plugin_version == "v5.4.0"
    assert status.data_version == "release-20250101-120000"
    assert not status.plugin_update_available
    assert not status.data_update_available
    assert (game_root / "GHPCMM" / "translation_install_manifest.json").is_file()


def test_install_specific_plugin_version(translation):
    assert translation.install("v5.3.0")[0]
    assert translation.installed_plugin_version() == "v5.3.0"
    assert translation.status().plugin_update_available


def test_install_twice_is_refused(translation):
    assert translation.install()[0]
    assert not translation.install()[0]


def test_failed_data_placement_removes_plugin(translation, game_root, monkeypatch):
    monkeypatch.setattr(mod_manager, "shutil", FlakyShutil("a.txt"))

    assert not translation.install()[0]

    assert tree(game_root) == {}
    assert not translation.is_installed()


def test_disable_enable_bundle(translation, game_root):
    assert translation.install()[0]
    before = tree(game_root)

    assert translation.disable()[0]
    assert tree(game_root) == {}
    assert translation.is_installed()
    assert not translation.is_enabled()

    assert translation.enable()[0]
    assert tree(game_root) == before
    assert translation.is_enabled()


def test_update_data(translation, network, game_root):
    assert translation.install()[0]
    publish_data(network, "release-20250301-080000", b"newer")
    assert translation.status().data_update_available

    ok, msg = translation.update_data()

    assert ok, msg
    assert translation.installed_data_version() == "release-20250301-080000"
    assert (game_root / "AutoTranslator/Translation/zh/a.txt").read_bytes() == b"newer"
    engine = ModBackupEngine(game_root, game_root / "GHPCMM" / TRANSLATION_BACKUP_DIR_NAME)
    assert engine.backup_exists(DATA_ID, "release-20250101-120000")


def test_update_when_current_skips_download(translation, network):
    assert translation.install()[0]
    downloads = len(network.downloads)

    ok, msg = translation.update_data()

    assert ok
    assert "already" in msg
    assert len(network.downloads) == downloads


def test_update_plugin(translation, network, game_root):
    assert translation.install("v5.3.0")[0]

    assert translation.update_plugin()[0]

    assert translation.installed_plugin_version() == "v5.4.0"
    assert (game_root / "AutoTranslator/Translation/zh/a.txt").exists()


def test_failed_update_restores_previous_data(translation, network, game_root, monkeypatch):
    assert translation.install()[0]
    before = tree(game_root)
    publish_data(network, "release-20250301-080000", b"newer")
    monkeypatch.setattr(mod_manager, "shutil", FlakyShutil("a.txt"))

    assert not translation.update_data()[0]

    assert tree(game_root) == before
    assert translation.installed_data_version() == "release-20250101-120000"


def test_update_refused_while_disabled(translation, network):
    assert translation.install()[0]
    assert translation.disable()[0]
    publish_data(network, "release-20250301-080000")

    ok, msg = translation.update_data()
    assert not ok
    assert "disabled" in msg


def test_uninstall_backs_up_both_components(translation, game_root):
    assert translation.install()[0]
    assert translation.disable()[0]

    ok, msg = translation.uninstall()

    assert ok, msg
    assert tree(game_root) == {}
    assert not translation.is_installed()
    engine = ModBackupEngine(game_root, game_root / "GHPCMM" / TRANSLATION_BACKUP_DIR_NAME)
    assert {(b.mod_id, b.version) for b in engine.list_uninstall_backups()} == {
        (PLUGIN_ID, "v5.4.0"),
        (DATA_ID, "release-20250101-120000"),
    }


def test_manual_plugin_is_detected_and_uninstallable(config, network, game_root):
    write_file(game_root, PLUGIN_FILE, b"by hand")
    translation = TranslationManager(config, network, log_callback=lambda _: None)

    assert translation.is_manually_installed()
    assert translation.installed_plugin_version() == MANUAL_VERSION
    assert translation.installed_data_version() is None

    assert translation.uninstall()[0]
    assert not (game_root / PLUGIN_FILE).exists()


def test_status_without_network_data(config, network):
    network.fail_releases = True
    translation = TranslationManager(config, network, log_callback=lambda _: None)

    status = translation.status()

    assert not status.installed
    assert status.latest_plugin_version is None
    assert status.latest_data_version is None


def test_mod_list_includes_translation_plugin(translation, network, game_root, config):
    assert translation.install()[0]
    manager = ModManager(config, network, descriptors=[make_descriptor("foo")],
                         log_callback=lambda _: None, translation=translation)

    entries = {s.id: s for s in manager.get_mod_list(fetch_latest=False)}
    assert entries[TRANSLATION_PLUGIN_ID].installed_version == "v5.4.0"
    assert entries[TRANSLATION_PLUGIN_ID].is_enabled
    # the plugin dll is never reported as an unsupported manual mod
    assert not any(i.startswith("manual_") for i in entries)

    assert manager.disable_mod(TRANSLATION_PLUGIN_ID)[0]
    assert not translation.is_enabled()
    assert manager.enable_mod(TRANSLATION_PLUGIN_ID)[0]
    assert translation.is_enabled()
