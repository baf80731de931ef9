"""
Translation bundle management for GHPC Mod Manager.

The translation bundle is two components installed together:

    xunity_autotranslator   the XUnity AutoTranslator MelonMod plugin
    translation_data        the GHPC translation files, released as
                            ``release-YYYYMMDD-HHMMSS`` tags

Both are tracked in their own manifest (``translation_install_manifest.json``)
and backed up under ``GHPCMM/translation_backup`` with the same layout and
guarantees as ordinary mods. The bundle is enabled and disabled as one unit.
"""

from __future__ import annotations

import logging
import re
import tempfile
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from backup_engine import ModBackupEngine
from errors import AssetNotFound, IOFailure, ModManagerError
from manifest_store import (
    MANUAL_VERSION,
    SOURCE_GITHUB,
    InstalledModRecord,
    InstallSource,
    ManifestStore,
)
from mod_manager import Result, place_files, remove_files, stage_download
from network_provider import NetworkProvider, ProgressCallback, Release, ReleaseAsset
from settings import MODS_DIR_NAME, ManagerConfig
from version_reconciler import TRANSLATION_PLUGIN_FILENAME, is_managed

_log = logging.getLogger(__name__)

PLUGIN_ID = "xunity_autotranslator"
DATA_ID = "translation_data"
DISABLE_ID = "translation"

XUNITY_REPO = ("bbepis", "XUnity.AutoTranslator")
TRANSLATION_MANIFEST_FILENAME = "translation_install_manifest.json"
TRANSLATION_BACKUP_DIR_NAME = "translation_backup"

DATA_TAG_RE = re.compile(r"^release-\d{8}-\d{6}$")
DATA_ASSET_KEYWORD = "ghpc-translation-"
DATA_EXCLUDE = frozenset({".git", ".gitignore", "README.md", "LICENSE"})


def is_plugin_asset(name: str) -> bool:
    return "MelonMod" in name and "IL2CPP" not in name and name.endswith(".zip")


def is_data_asset(name: str, suffix: str = ".zip") -> bool:
    return DATA_ASSET_KEYWORD in name and name.endswith(suffix)


@dataclass
class TranslationStatus:
    installed: bool = False
    manual: bool = False
    enabled: bool = False
    plugin_version: str | None = None
    data_version: str | None = None
    latest_plugin_version: str | None = None
    latest_data_version: str | None = None

    @property
    def plugin_update_available(self) -> bool:
        return (
            not self.manual
            and bool(self.plugin_version and self.latest_plugin_version)
            and self.plugin_version != self.latest_plugin_version
        )

    @property
    def data_update_available(self) -> bool:
        # Data tags embed a timestamp, so string order is release order
        return (
            not self.manual
            and bool(self.data_version and self.latest_data_version)
            and self.latest_data_version > self.data_version
        )


class TranslationManager:
    def __init__(
        self,
        config: ManagerConfig,
        network: NetworkProvider | None = None,
        log_callback: Optional[Callable[[str], None]] = None,
        data_repo: tuple[str, str] | None = None,
    ):
        self.config = config
        self.network = network
        self._log_cb = log_callback or _log.info
        self._data_repo = data_repo
        self._data_suffix = ".zip"
        self._lock = threading.Lock()

    def log(self, msg: str):
        self._log_cb(msg)

    # ── Components ────────────────────────────────────────────────────

    @property
    def game_root(self) -> Path:
        return self.config.require_game_root()

    @property
    def manifest(self) -> ManifestStore:
        return ManifestStore(self.config.data_dir / TRANSLATION_MANIFEST_FILENAME)

    @property
    def backups(self) -> ModBackupEngine:
        return ModBackupEngine(
            self.game_root, self.config.workspace_dir / TRANSLATION_BACKUP_DIR_NAME
        )

    @property
    def plugin_relpath(self) -> str:
        return f"{MODS_DIR_NAME}/{TRANSLATION_PLUGIN_FILENAME}"

    def _configured(self) -> bool:
        return self.config.game_root is not None and self.config.game_root.is_dir()

    def _records(self) -> list[InstalledModRecord]:
        return [rec for rec in (self.manifest.get(PLUGIN_ID), self.manifest.get(DATA_ID))
                if is_managed(rec)]

    # ── Status ────────────────────────────────────────────────────────

    def is_installed(self) -> bool:
        if not self._configured():
            return False
        return (
            bool(self._records())
            or (self.game_root / self.plugin_relpath).is_file()
            or self.backups.is_disabled(DISABLE_ID)
        )

    def is_manually_installed(self) -> bool:
        return self.is_installed() and not is_managed(self.manifest.get(PLUGIN_ID))

    def is_enabled(self) -> bool:
        return self.is_installed() and not self.backups.is_disabled(DISABLE_ID)

    def installed_plugin_version(self) -> str | None:
        if not self._configured():
            return None
        rec = self.manifest.get(PLUGIN_ID)
        if is_managed(rec):
            return rec.version
        return MANUAL_VERSION if self.is_installed() else None

    def installed_data_version(self) -> str | None:
        if not self._configured():
            return None
        rec = self.manifest.get(DATA_ID)
        return rec.version if is_managed(rec) else None

    def status(self, fetch_latest: bool = True) -> TranslationStatus:
        status = TranslationStatus(
            installed=self.is_installed(),
            manual=self.is_manually_installed(),
            enabled=self.is_enabled(),
            plugin_version=self.installed_plugin_version(),
            data_version=self.installed_data_version(),
        )
        if fetch_latest and self.network is not None:
            status.latest_plugin_version = self._latest_or_none(self.plugin_releases)
            status.latest_data_version = self._latest_or_none(self.data_releases)
        return status

    # ── Releases ──────────────────────────────────────────────────────

    def _require_network(self) -> NetworkProvider:
        if self.network is None:
            raise ModManagerError("No network provider configured")
        return self.network

    def plugin_releases(self) -> list[Release]:
        releases = self._require_network().fetch_latest_releases(*XUNITY_REPO)
        return [r for r in releases if any(is_plugin_asset(a.name) for a in r.assets)]

    def _resolve_data_repo(self) -> tuple[str, str]:
        if self._data_repo is None:
            source = self._require_network().fetch_translation_source(
                self.config.translation_config_url
            )
            owner, name = source.repo
            if not owner or not name:
                raise ModManagerError("Translation configuration does not name a repository")
            self._data_repo = (owner, name)
            self._data_suffix = source.target_asset_name or ".zip"
        return self._data_repo

    def data_releases(self) -> list[Release]:
        owner, name = self._resolve_data_repo()
        releases = self._require_network().fetch_latest_releases(owner, name)
        return [
            r for r in releases
            if DATA_TAG_RE.match(r.tag)
            and any(is_data_asset(a.name, self._data_suffix) for a in r.assets)
        ]

    @staticmethod
    def _latest_or_none(fetch: Callable[[], list[Release]]) -> str | None:
        try:
            releases = fetch()
        except ModManagerError as exc:
            _log.warning("Could not determine latest translation release: %s", exc)
            return None
        return releases[0].tag if releases else None

    def _pick(
        self, releases: list[Release], version: str | None, match: Callable[[str], bool], what: str
    ) -> tuple[str, ReleaseAsset]:
        if not releases:
            raise AssetNotFound(f"No {what} releases found")
        release = releases[0] if version is None else next(
            (r for r in releases if r.tag == version), None
        )
        if release is None:
            raise AssetNotFound(f"{what} version {version} not found")
        asset = next((a for a in release.assets if match(a.name)), None)
        if asset is None:
            raise AssetNotFound(f"No {what} asset in release {release.tag}")
        return release.tag, asset

    def _resolve(self, record_id: str, version: str | None) -> tuple[str, ReleaseAsset]:
        if record_id == PLUGIN_ID:
            return self._pick(self.plugin_releases(), version, is_plugin_asset, "XUnity plugin")
        return self._pick(
            self.data_releases(), version,
            lambda n: is_data_asset(n, self._data_suffix), "translation data",
        )

    def _stage(
        self,
        record_id: str,
        version: str | None,
        tmpdir: Path,
        on_progress: Optional[ProgressCallback],
        resolved: tuple[str, ReleaseAsset] | None = None,
    ) -> tuple[str, str, list[tuple[Path, str]]]:
        """Download one component; returns (version, asset url, placements)."""
        tag, asset = resolved or self._resolve(record_id, version)
        if record_id == PLUGIN_ID:
            root_relative, exclude = None, frozenset()
        else:
            root_relative, exclude = True, DATA_EXCLUDE

        self.log(f"  Downloading {asset.name}...")
        stage_dir = tmpdir / record_id
        stage_dir.mkdir(parents=True, exist_ok=True)
        download = self._require_network().download_asset(
            asset.url, stage_dir / asset.name, on_progress
        )
        return tag, asset.url, stage_download(download, stage_dir, root_relative, exclude)

    def _commit(self, record_id: str, version: str, url: str, files: list[str]) -> None:
        self.manifest.put(
            InstalledModRecord(
                mod_id=record_id,
                version=version,
                installed_files=files,
                install_source=InstallSource(SOURCE_GITHUB, url),
            )
        )

    # ── Error boundary ────────────────────────────────────────────────

    def _guarded(self, operation: str, func: Callable[[], Result]) -> Result:
        if not self._configured():
            return False, "Game root directory is not configured"
        with self._lock:
            try:
                ok, msg = func()
            except ModManagerError as exc:
                _log.error("Translation %s failed: %s", operation, exc)
                ok, msg = False, str(exc)
            except Exception as exc:
                _log.exception("Translation %s failed unexpectedly", operation)
                ok, msg = False, f"Translation {operation} failed: {exc}"
        self.log(f"Translation {operation}: {'OK' if ok else 'FAILED'} - {msg}")
        return ok, msg

    # ── Install / update ──────────────────────────────────────────────

    def install(
        self,
        plugin_version: str | None = None,
        on_progress: Optional[ProgressCallback] = None,
        cancel: threading.Event | None = None,
    ) -> Result:
        """Install the plugin and the latest translation data as one unit."""
        return self._guarded("install", lambda: self._install(plugin_version, on_progress, cancel))

    def _install(self, plugin_version, on_progress, cancel) -> Result:
        if self.is_installed():
            return False, "Translation is already installed. Use update instead."

        with tempfile.TemporaryDirectory(prefix="ghpcmm_tl_") as tmpdir:
            plugin_tag, plugin_url, plugin_stage = self._stage(
                PLUGIN_ID, plugin_version, Path(tmpdir), on_progress
            )
            data_tag, data_url, data_stage = self._stage(DATA_ID, None, Path(tmpdir), on_progress)

            plugin_files = place_files(self.game_root, plugin_stage, cancel)
            data_files: list[str] = []
            try:
                data_files = place_files(self.game_root, data_stage, cancel)
                self._commit(PLUGIN_ID, plugin_tag, plugin_url, plugin_files)
                self._commit(DATA_ID, data_tag, data_url, data_files)
            except Exception:
                remove_files(self.game_root, plugin_files + data_files, strict=False)
                self.manifest.remove(PLUGIN_ID)
                self.manifest.remove(DATA_ID)
                raise
        return True, f"Installed XUnity {plugin_tag} and translation data {data_tag}"

    def update_plugin(
        self,
        version: str | None = None,
        on_progress: Optional[ProgressCallback] = None,
        cancel: threading.Event | None = None,
    ) -> Result:
        return self._guarded(
            "plugin update", lambda: self._update(PLUGIN_ID, version, on_progress, cancel)
        )

    def update_data(
        self,
        version: str | None = None,
        on_progress: Optional[ProgressCallback] = None,
        cancel: threading.Event | None = None,
    ) -> Result:
        return self._guarded(
            "data update", lambda: self._update(DATA_ID, version, on_progress, cancel)
        )

    def _update(self, record_id, version, on_progress, cancel) -> Result:
        record = self.manifest.get(record_id)
        if not is_managed(record):
            return False, f"{record_id} is not installed by this tool"
        if self.backups.is_disabled(DISABLE_ID):
            return False, "Translation is disabled. Enable it before updating."

        resolved = self._resolve(record_id, version)
        if resolved[0] == record.version:
            return True, f"{record_id} is already at {record.version}"

        with tempfile.TemporaryDirectory(prefix="ghpcmm_tl_") as tmpdir:
            tag, url, staged = self._stage(
                record_id, version, Path(tmpdir), on_progress, resolved
            )

            backups = self.backups
            if not backups.backup_for_uninstall(record_id, record.version, record.installed_files, cancel):
                raise IOFailure(f"Backup of {record_id} {record.version} failed; nothing was changed")

            new_files: list[str] = []
            try:
                remove_files(self.game_root, record.installed_files)
                new_files = place_files(self.game_root, staged, cancel)
                self._commit(record_id, tag, url, new_files)
            except Exception:
                remove_files(self.game_root, new_files, strict=False)
                self.log(f"  Restoring {record_id} {record.version} from backup...")
                ok, _ = backups.reinstall_from_backup(record_id, record.version)
                if not ok:
                    _log.error("Restore of %s %s incomplete", record_id, record.version)
                raise
        return True, f"Updated {record_id} {record.version} -> {tag}"

    # ── Enable / disable ──────────────────────────────────────────────

    def _bundle_files(self) -> list[str]:
        records = self._records()
        if records:
            return sorted({f for rec in records for f in rec.installed_files})
        return [self.plugin_relpath]

    def enable(self, cancel: threading.Event | None = None) -> Result:
        return self._guarded("enable", lambda: self._enable(cancel))

    def _enable(self, cancel) -> Result:
        if not self.backups.is_disabled(DISABLE_ID):
            if self.is_installed():
                return True, "Translation is already enabled"
            return False, "Translation is not installed"
        if not self.backups.enable(DISABLE_ID, cancel):
            return False, "Some translation files could not be restored; run enable again"
        return True, "Translation enabled"

    def disable(self, cancel: threading.Event | None = None) -> Result:
        return self._guarded("disable", lambda: self._disable(cancel))

    def _disable(self, cancel) -> Result:
        if not self.is_installed():
            return False, "Translation is not installed"
        if not self.backups.disable(DISABLE_ID, self._bundle_files(), cancel):
            return False, "Some translation files could not be moved; run disable again"
        return True, "Translation disabled"

    # ── Uninstall ─────────────────────────────────────────────────────

    def uninstall(self, cancel: threading.Event | None = None) -> Result:
        return self._guarded("uninstall", lambda: self._uninstall(cancel))

    def _uninstall(self, cancel) -> Result:
        if not self.is_installed():
            return False, "Translation is not installed"
        backups = self.backups
        if backups.is_disabled(DISABLE_ID) and not backups.enable(DISABLE_ID, cancel):
            return False, "Could not restore disabled translation files; nothing was removed"

        records = self._records()
        if not records:
            records = [
                InstalledModRecord(mod_id=PLUGIN_ID, version=MANUAL_VERSION,
                                   installed_files=[self.plugin_relpath])
            ]

        removed = 0
        for rec in records:
            if not backups.backup_for_uninstall(rec.mod_id, rec.version, rec.installed_files, cancel):
                return False, f"Backup of {rec.mod_id} failed; its files were left in place"
            removed += remove_files(self.game_root, rec.installed_files)
            self.manifest.remove(rec.mod_id)
        return True, f"Removed {removed} translation file(s); backups kept"
