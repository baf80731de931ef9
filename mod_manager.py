"""
GHPC Mod Manager - Core Logic

Orchestrates the mod lifecycle: install, update, reinstall, uninstall,
enable and disable. Each operation consults the install manifest, the backup
engine and the version reconciler before touching the game directory, and
commits the manifest only after the file system is in its new state.

Every public lifecycle operation returns ``(success, message)`` and never
raises. Operations on the same mod id are serialized by a per-mod lock;
operations on different mods may run concurrently.
"""

from __future__ import annotations

import base64
import binascii
import logging
import os
import shutil
import subprocess
import tempfile
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path, PurePosixPath
from typing import Callable, Iterator, Optional

import archive_utils
from backup_engine import ModBackupEngine, UninstallBackupRecord
from dependency_resolver import ConflictResult, DependencyResolver, DependencyResult
from errors import AssetNotFound, ConfigurationError, IOFailure, ModManagerError
from manifest_store import (
    MANUAL_VERSION,
    SOURCE_BACKUP,
    SOURCE_GITHUB,
    SOURCE_SCRIPT,
    InstalledModRecord,
    InstallSource,
    ManifestStore,
    normalize_relpath,
)
from mod_descriptor import InstallMethod, ModDescriptor
from network_provider import NetworkProvider, ProgressCallback, Release, ReleaseAsset
from settings import MODS_DIR_NAME, WORKSPACE_DIR_NAME, ManagerConfig
from version_reconciler import (
    TRANSLATION_PLUGIN_ID,
    InstallClassification,
    ManualInstall,
    ModStatus,
    VersionReconciler,
    compute_update_eligibility,
    is_managed,
)

_log = logging.getLogger(__name__)

# Top-level archive folders that mean "extract relative to the game root"
GAME_ROOT_FOLDERS = frozenset({"mods", "userlibs", "userdata", "plugins"})

SCRIPT_TIMEOUT = 300

Result = tuple[bool, str]


@dataclass
class _StagedRelease:
    """A release fetched and unpacked into a temp dir, not yet placed."""

    version: str
    source: InstallSource
    placements: list[tuple[Path, str]] = field(default_factory=list)  # (staged file, dest relpath)
    script: str | None = None  # decoded install script for scripted installs


# ── File placement helpers ────────────────────────────────────────────

def stage_download(
    download: Path,
    tmpdir: Path,
    root_relative: bool | None = None,
    exclude: frozenset[str] = frozenset(),
) -> list[tuple[Path, str]]:
    """Unpack a downloaded asset and map each file to its game-root destination.

    Archives land under ``Mods/`` unless ``root_relative`` is set, or, when it
    is None, unless their top level already holds game-root folders. A bare
    ``.dll`` goes to ``Mods/``. Members whose first path part is in ``exclude``
    are skipped.
    """
    if archive_utils.is_archive(download):
        extracted_dir = tmpdir / "extracted"
        try:
            names = archive_utils.extract(download, extracted_dir)
        except archive_utils.ARCHIVE_ERRORS as exc:
            raise ModManagerError(f"Extraction of {download.name} failed: {exc}") from exc
        names = [n for n in names if PurePosixPath(n).parts[0] not in exclude]
        if root_relative is None:
            top_level = {PurePosixPath(n).parts[0].lower() for n in names}
            root_relative = bool(top_level & GAME_ROOT_FOLDERS)
        prefix = "" if root_relative else f"{MODS_DIR_NAME}/"
        placements = [(extracted_dir / n, normalize_relpath(prefix + n)) for n in names]
    elif download.suffix.lower() == ".dll":
        placements = [(download, f"{MODS_DIR_NAME}/{download.name}")]
    else:
        raise AssetNotFound(f"Unsupported asset type: {download.name}")

    if not placements:
        raise AssetNotFound(f"{download.name} contains no files")
    return placements


def place_files(
    game_root: Path,
    placements: list[tuple[Path, str]],
    cancel: threading.Event | None = None,
) -> list[str]:
    """Copy staged files into the game tree.

    Files that already exist at a destination are saved first. On failure the
    newly placed files are removed and the saved ones are put back.
    """
    root = game_root.resolve()
    placed: list[str] = []
    with tempfile.TemporaryDirectory(prefix="ghpcmm_overwritten_") as saved_dir:
        saved: list[tuple[Path, Path]] = []  # (saved copy, original destination)
        try:
            for src, rel in placements:
                if cancel is not None and cancel.is_set():
                    raise ModManagerError("Operation cancelled")
                dst = game_root / rel
                if not dst.resolve().is_relative_to(root):
                    raise ModManagerError(f"Refusing to write outside game root: {rel}")
                dst.parent.mkdir(parents=True, exist_ok=True)
                if dst.is_file():
                    keep = Path(saved_dir) / str(len(saved))
                    shutil.copy2(dst, keep)
                    saved.append((keep, dst))
                placed.append(rel)
                shutil.copy2(src, dst)
                _log.debug("  Placed: %s", rel)
        except (OSError, ModManagerError) as exc:
            _log.warning("Placement failed, rolling back %d file(s)", len(placed))
            remove_files(game_root, placed, strict=False)
            for keep, dst in saved:
                try:
                    dst.parent.mkdir(parents=True, exist_ok=True)
                    shutil.copy2(keep, dst)
                except OSError as restore_exc:
                    _log.error("Could not put back %s: %s", dst, restore_exc)
            if isinstance(exc, OSError):
                raise IOFailure(
                    f"Could not place files: {exc}", path=str(exc.filename or "")
                ) from exc
            raise
    return placed


def _is_game_root_folder(game_root: Path, path: Path) -> bool:
    return path.parent == game_root and path.name.lower() in GAME_ROOT_FOLDERS


def remove_files(game_root: Path, files: list[str], strict: bool = True) -> int:
    """Delete tracked files and prune directories they leave empty.

    Pruning never removes the game root or its MelonLoader folders (``Mods``,
    ``UserLibs``, ``UserData``, ``Plugins``). With ``strict`` an undeletable
    file raises ``IOFailure`` after every other file was attempted.
    """
    removed = 0
    failures: list[str] = []
    for rel in files:
        fp = game_root / rel
        try:
            if fp.is_file():
                fp.unlink()
                removed += 1
                _log.debug("  Removed: %s", rel)
        except OSError as exc:
            _log.error("Could not delete %s: %s", fp, exc)
            failures.append(rel)

    parents = {(game_root / rel).parent for rel in files}
    for parent in sorted(parents, key=lambda p: len(p.parts), reverse=True):
        while game_root in parent.parents and not _is_game_root_folder(game_root, parent):
            try:
                if not parent.is_dir() or any(parent.iterdir()):
                    break
                parent.rmdir()
            except OSError:
                break
            parent = parent.parent

    if failures and strict:
        raise IOFailure(
            f"Could not delete {len(failures)} file(s): {', '.join(failures[:5])}",
            path=failures[0],
        )
    return removed


class ModManager:
    """
    Main mod manager controller.

    Workflow:
        1. refresh_descriptors() to load the supported-mod feed
        2. get_mod_list() to see installed / enabled / manual / updatable mods
        3. install_mod() / update_mod() / reinstall_mod() / uninstall_mod()
           / enable_mod() / disable_mod() to change one mod
    """

    def __init__(
        self,
        config: ManagerConfig,
        network: NetworkProvider | None = None,
        descriptors: list[ModDescriptor] | None = None,
        log_callback: Optional[Callable[[str], None]] = None,
        script_prompt_callback: Optional[Callable[[str], bool]] = None,
        translation=None,
    ):
        self.config = config
        self.network = network
        self.descriptors: dict[str, ModDescriptor] = {d.id: d for d in descriptors or []}
        self.translation = translation  # optional TranslationManager
        self._log_cb = log_callback or _log.info
        self._script_prompt_cb = script_prompt_callback

        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()
        self._components_guard = threading.Lock()
        self._manifest: ManifestStore | None = None
        self._backups: ModBackupEngine | None = None

    # ── Logging ───────────────────────────────────────────────────────

    def log(self, msg: str):
        self._log_cb(msg)

    # ── Components ────────────────────────────────────────────────────

    @property
    def game_root(self) -> Path:
        return self.config.require_game_root()

    @property
    def manifest(self) -> ManifestStore:
        path = self.config.install_manifest_path
        with self._components_guard:
            if self._manifest is None or self._manifest.path != path:
                self._manifest = ManifestStore(path)
            return self._manifest

    @property
    def backups(self) -> ModBackupEngine:
        root = self.game_root
        with self._components_guard:
            if self._backups is None or self._backups.game_root != root:
                self._backups = ModBackupEngine(root)
            return self._backups

    @property
    def reconciler(self) -> VersionReconciler:
        return VersionReconciler(
            self.game_root, self.descriptors, self.manifest, self.backups, self.network
        )

    @property
    def resolver(self) -> DependencyResolver:
        return DependencyResolver(self.descriptors, self._installed_ids, self._enabled_ids)

    def _configured(self) -> bool:
        return self.config.game_root is not None

    def _installed_ids(self) -> set[str]:
        return {rec.mod_id for rec in self.manifest.list_all() if is_managed(rec)}

    def _enabled_ids(self) -> set[str]:
        backups = self.backups
        return {mod_id for mod_id in self._installed_ids() if not backups.is_disabled(mod_id)}

    # ── Locking / error boundary ──────────────────────────────────────

    @contextmanager
    def _mod_lock(self, mod_id: str) -> Iterator[None]:
        with self._locks_guard:
            lock = self._locks.setdefault(mod_id, threading.Lock())
        with lock:
            yield

    def _guarded(self, operation: str, mod_id: str, func: Callable[[], Result]) -> Result:
        """Run one lifecycle operation under the mod's lock; never raises."""
        if not self._configured():
            msg = "Game root directory is not configured"
            self.log(f"{operation} {mod_id}: {msg}")
            return False, msg
        if not self.game_root.is_dir():
            msg = f"Game root directory does not exist: {self.game_root}"
            self.log(f"{operation} {mod_id}: {msg}")
            return False, msg

        with self._mod_lock(mod_id):
            try:
                ok, msg = func()
            except ModManagerError as exc:
                _log.error("%s %s failed: %s", operation, mod_id, exc)
                ok, msg = False, str(exc)
            except Exception as exc:
                _log.exception("%s %s failed unexpectedly", operation, mod_id)
                ok, msg = False, f"{operation} failed: {exc}"
        self.log(f"{operation} {mod_id}: {'OK' if ok else 'FAILED'} - {msg}")
        return ok, msg

    # ── Descriptors ───────────────────────────────────────────────────

    def refresh_descriptors(self) -> Result:
        if self.network is None:
            return False, "No network provider configured"
        try:
            descriptors = self.network.fetch_mod_descriptors(self.config.mod_config_url)
        except ModManagerError as exc:
            _log.error("Could not load mod configuration: %s", exc)
            return False, str(exc)
        self.descriptors = {d.id: d for d in descriptors}
        self.log(f"Loaded {len(self.descriptors)} supported mod(s)")
        return True, f"Loaded {len(self.descriptors)} mod(s)"

    def _descriptor(self, mod_id: str) -> ModDescriptor:
        descriptor = self.descriptors.get(mod_id)
        if descriptor is None:
            raise ModManagerError(f"Unknown mod: {mod_id}")
        return descriptor

    # ── Read accessors ────────────────────────────────────────────────

    def get_mod_list(self, fetch_latest: bool = True) -> list[ModStatus]:
        if not self._configured():
            return []
        statuses = self.reconciler.build_mod_list(self.config.language, fetch_latest)
        if self.translation is not None and self.translation.is_installed():
            statuses.append(
                ModStatus(
                    id=TRANSLATION_PLUGIN_ID,
                    display_name="Translation plugin",
                    classification=(
                        InstallClassification.SUPPORTED_MANUAL
                        if self.translation.is_manually_installed()
                        else InstallClassification.MANAGED
                    ),
                    installed_version=self.translation.installed_plugin_version(),
                    is_enabled=self.translation.is_enabled(),
                )
            )
        return statuses

    def check_for_updates(self) -> list[ModStatus]:
        return [s for s in self.get_mod_list(fetch_latest=True) if s.update_available]

    def get_record(self, mod_id: str) -> InstalledModRecord | None:
        return self.manifest.get(mod_id) if self._configured() else None

    def is_installed(self, mod_id: str) -> bool:
        if not self._configured():
            return False
        return self.reconciler.classify(mod_id) != InstallClassification.NOT_INSTALLED

    def is_enabled(self, mod_id: str) -> bool:
        if not self._configured() or not self.is_installed(mod_id):
            return False
        return not self.backups.is_disabled(mod_id)

    def installed_version(self, mod_id: str) -> str | None:
        rec = self.get_record(mod_id)
        if is_managed(rec):
            return rec.version
        return MANUAL_VERSION if self.is_installed(mod_id) else None

    def check_dependencies(self, mod_id: str) -> DependencyResult:
        if not self._configured():
            return DependencyResult(all_satisfied=True)
        return self.resolver.check_dependencies(mod_id)

    def check_all_enabled_conflicts(self) -> ConflictResult:
        if not self._configured():
            return ConflictResult(has_conflicts=False)
        return self.resolver.check_all_enabled_conflicts()

    def check_install_conflicts(self, mod_id: str) -> ConflictResult:
        if not self._configured():
            return ConflictResult(has_conflicts=False)
        return self.resolver.check_install_conflicts(mod_id)

    def list_backups(self, mod_id: str | None = None) -> list[UninstallBackupRecord]:
        if not self._configured():
            return []
        return self.backups.list_uninstall_backups(mod_id)

    def cleanup_backups(self) -> int:
        """Delete every disable and uninstall backup; returns bytes freed.

        Must not run while lifecycle operations are in flight.
        """
        if not self._configured():
            self.log("Cleanup: game root directory is not configured")
            return 0
        freed = self.backups.cleanup()
        self.log(f"Cleanup freed {freed / (1024 * 1024):.1f} MB")
        return freed

    # ── Release resolution ────────────────────────────────────────────

    def _require_network(self) -> NetworkProvider:
        if self.network is None:
            raise ModManagerError("No network provider configured")
        return self.network

    def _releases(self, descriptor: ModDescriptor) -> list[Release]:
        owner, repo = descriptor.repo
        return self._require_network().fetch_latest_releases(owner, repo)

    def _resolve_latest(self, descriptor: ModDescriptor) -> str:
        releases = self._releases(descriptor)
        if not releases:
            raise AssetNotFound(f"No releases published for {descriptor.id}")
        return releases[0].tag

    def _resolve_asset(self, descriptor: ModDescriptor, version: str) -> ReleaseAsset:
        release = next((r for r in self._releases(descriptor) if r.tag == version), None)
        if release is None:
            raise AssetNotFound(f"Version {version} of {descriptor.id} not found")
        asset = release.find_asset(descriptor.target_file_keyword)
        if asset is None:
            raise AssetNotFound(
                f"No asset matching {descriptor.target_file_keyword!r} "
                f"in {descriptor.id} {version}"
            )
        return asset

    # ── Staging ───────────────────────────────────────────────────────

    def _stage_release(
        self,
        descriptor: ModDescriptor,
        version: str,
        tmpdir: Path,
        on_progress: Optional[ProgressCallback] = None,
    ) -> _StagedRelease:
        """Download and unpack a release without touching the game directory."""
        asset = self._resolve_asset(descriptor, version)

        if descriptor.install_method == InstallMethod.SCRIPTED:
            return _StagedRelease(
                version=version,
                source=InstallSource(SOURCE_SCRIPT, asset.url),
                script=self._decode_install_script(descriptor),
            )

        self.log(f"  Downloading {asset.name}...")
        download = self._require_network().download_asset(
            asset.url, tmpdir / asset.name, on_progress
        )

        return _StagedRelease(
            version=version,
            source=InstallSource(SOURCE_GITHUB, asset.url),
            placements=stage_download(download, tmpdir),
        )

    def _apply_staged(
        self, staged: _StagedRelease, cancel: threading.Event | None = None
    ) -> list[str]:
        if staged.script is not None:
            return self._run_install_script(staged.script, staged.source.url)
        return place_files(self.game_root, staged.placements, cancel)

    # ── Scripted installs ─────────────────────────────────────────────

    def _decode_install_script(self, descriptor: ModDescriptor) -> str:
        if not descriptor.install_script_base64:
            raise ModManagerError(f"{descriptor.id} is scripted but ships no install script")
        if not self.config.allow_install_scripts:
            raise ModManagerError("Scripted installs are disabled in settings")
        if self._script_prompt_cb is not None and not self._script_prompt_cb(descriptor.id):
            raise ModManagerError("Scripted install declined")
        try:
            return base64.b64decode(descriptor.install_script_base64).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError) as exc:
            raise ModManagerError(f"Install script of {descriptor.id} is not valid: {exc}") from exc

    def _snapshot_files(self) -> set[str]:
        workspace = WORKSPACE_DIR_NAME.lower()
        files: set[str] = set()
        for path in self.game_root.rglob("*"):
            rel = path.relative_to(self.game_root)
            if rel.parts[0].lower() == workspace or not path.is_file():
                continue
            files.add(rel.as_posix())
        return files

    def _run_install_script(self, script: str, asset_url: str) -> list[str]:
        before = self._snapshot_files()
        with tempfile.TemporaryDirectory(prefix="ghpcmm_script_") as tmpdir:
            if os.name == "nt":
                script_path = Path(tmpdir) / "install.bat"
                cmd = ["cmd", "/c", str(script_path), asset_url]
            else:
                script_path = Path(tmpdir) / "install.sh"
                cmd = ["sh", str(script_path), asset_url]
            script_path.write_text(script, encoding="utf-8")

            self.log(f"  Running install script in {self.game_root}")
            try:
                proc = subprocess.run(
                    cmd,
                    cwd=str(self.game_root),
                    stdout=subprocess.PIPE,
                    stderr=subprocess.STDOUT,
                    text=True,
                    timeout=SCRIPT_TIMEOUT,
                )
            except subprocess.TimeoutExpired:
                raise ModManagerError(f"Install script timed out after {SCRIPT_TIMEOUT}s")
            except OSError as exc:
                raise ModManagerError(f"Could not run install script: {exc}") from exc

            if proc.stdout:
                for line in proc.stdout.strip().split("\n")[-10:]:
                    self.log(f"  [script] {line}")
            if proc.returncode != 0:
                raise ModManagerError(f"Install script exited with code {proc.returncode}")

        new_files = sorted(self._snapshot_files() - before)
        if not new_files:
            raise ModManagerError("Install script did not add any files")
        return new_files

    # ── Replace / restore ─────────────────────────────────────────────

    def _remove_files(self, files: list[str], strict: bool = True) -> int:
        return remove_files(self.game_root, files, strict)

    def _restore_previous(self, mod_id: str, version: str) -> None:
        self.log(f"  Restoring {mod_id} {version} from backup...")
        ok, restored = self.backups.reinstall_from_backup(mod_id, version)
        if not ok:
            _log.error("Restore of %s %s incomplete (%d file(s) restored)", mod_id, version, len(restored))

    def _replace_install(
        self,
        mod_id: str,
        descriptor: ModDescriptor,
        version: str,
        old_version: str | None,
        old_files: list[str],
        on_progress: Optional[ProgressCallback],
        cancel: threading.Event | None,
    ) -> InstalledModRecord:
        """Stage ``version``, back up and remove ``old_files``, place and commit.

        Any failure after the old files were removed puts them back from the
        durable backup; the manifest record is only written on success.
        """
        with tempfile.TemporaryDirectory(prefix="ghpcmm_") as tmpdir:
            staged = self._stage_release(descriptor, version, Path(tmpdir), on_progress)

            if old_files:
                if not self.backups.backup_for_uninstall(mod_id, old_version, old_files, cancel):
                    raise IOFailure("Backup of the current files failed; nothing was changed")

            new_files: list[str] = []
            try:
                if old_files:
                    self._remove_files(old_files)
                new_files = self._apply_staged(staged, cancel)
                record = InstalledModRecord(
                    mod_id=mod_id,
                    version=version,
                    installed_files=new_files,
                    install_date=datetime.now(),
                    install_source=staged.source,
                )
                self.manifest.put(record)
            except Exception:
                if new_files:
                    self._remove_files(new_files, strict=False)
                if old_files:
                    self._restore_previous(mod_id, old_version)
                raise
        return record

    # ── Install ───────────────────────────────────────────────────────

    def install_mod(
        self,
        mod_id: str,
        version: str | None = None,
        on_progress: Optional[ProgressCallback] = None,
        cancel: threading.Event | None = None,
    ) -> Result:
        """Install ``version`` (latest if None) of a supported mod.

        Dependency and conflict checks are advisory here; callers gate on
        ``check_dependencies`` / ``check_install_conflicts`` beforehand.
        """
        return self._guarded(
            "Install", mod_id, lambda: self._install(mod_id, version, on_progress, cancel)
        )

    def _install(self, mod_id, version, on_progress, cancel) -> Result:
        descriptor = self._descriptor(mod_id)
        if is_managed(self.manifest.get(mod_id)):
            return False, f"{mod_id} is already installed. Use update or reinstall."
        if self.reconciler.find_manual_install(mod_id) is not None:
            return False, f"{mod_id} was installed manually. Use reinstall to adopt it."

        if version is None:
            version = self._resolve_latest(descriptor)
        self.log(f"Installing {mod_id} {version}...")

        deps = self.resolver.check_dependencies(mod_id)
        if not deps.all_satisfied:
            self.log(f"  Warning: missing requirement(s): {', '.join(deps.missing_ids)}")
        conflicts = self.resolver.check_install_conflicts(mod_id)
        if conflicts.has_conflicts:
            others = [i for i in conflicts.conflicting_ids if i != mod_id]
            self.log(f"  Warning: conflicts with installed mod(s): {', '.join(others)}")

        if self.backups.backup_exists(mod_id, version):
            self.log(f"  Found backup of {version}, reinstalling from it...")
            ok, files = self.backups.reinstall_from_backup(mod_id, version, cancel)
            if ok:
                self.manifest.put(
                    InstalledModRecord(
                        mod_id=mod_id,
                        version=version,
                        installed_files=files,
                        install_source=InstallSource(SOURCE_BACKUP, ""),
                    )
                )
                return True, f"Reinstalled {mod_id} {version} from backup ({len(files)} file(s))"
            self.log("  Backup restore failed, falling back to download")
            self._remove_files(files, strict=False)

        record = self._replace_install(mod_id, descriptor, version, None, [], on_progress, cancel)
        return True, f"Installed {mod_id} {version} ({len(record.installed_files)} file(s))"

    # ── Update ────────────────────────────────────────────────────────

    def update_mod(
        self,
        mod_id: str,
        version: str | None = None,
        on_progress: Optional[ProgressCallback] = None,
        cancel: threading.Event | None = None,
    ) -> Result:
        """Replace a managed install with ``version`` (latest if None)."""
        return self._guarded(
            "Update", mod_id, lambda: self._update(mod_id, version, on_progress, cancel)
        )

    def _update(self, mod_id, version, on_progress, cancel) -> Result:
        descriptor = self._descriptor(mod_id)
        record = self.manifest.get(mod_id)
        if not is_managed(record):
            return False, f"{mod_id} is not managed by this tool. Use reinstall instead."
        if version is None:
            version = self._resolve_latest(descriptor)
        if record.version == version:
            return True, f"{mod_id} is already at {version}"
        if not compute_update_eligibility(record, version):
            return False, f"{mod_id} cannot be updated to {version}"
        if self.backups.is_disabled(mod_id):
            return False, f"{mod_id} is disabled. Enable it before updating."

        self.log(f"Updating {mod_id} {record.version} -> {version}...")
        new = self._replace_install(
            mod_id, descriptor, version, record.version, record.installed_files, on_progress, cancel
        )
        return True, f"Updated {mod_id} to {version} ({len(new.installed_files)} file(s))"

    # ── Reinstall / adopt ─────────────────────────────────────────────

    def reinstall_mod(
        self,
        mod_id: str,
        version: str | None = None,
        on_progress: Optional[ProgressCallback] = None,
        cancel: threading.Event | None = None,
    ) -> Result:
        """Clean reinstall of a supported mod.

        For a supported-manual install this adopts the mod: the manual files are
        backed up under version ``manual`` and removed before a fresh install.
        """
        return self._guarded(
            "Reinstall", mod_id, lambda: self._reinstall(mod_id, version, on_progress, cancel)
        )

    def _reinstall(self, mod_id, version, on_progress, cancel) -> Result:
        descriptor = self._descriptor(mod_id)
        if version is None:
            version = self._resolve_latest(descriptor)

        record = self.manifest.get(mod_id)
        if is_managed(record):
            old_version, old_files = record.version, record.installed_files
        else:
            manual = self.reconciler.find_manual_install(mod_id)
            old_version = MANUAL_VERSION
            old_files = manual.files if manual is not None else []

        if self.backups.is_disabled(mod_id) and not self.backups.enable(mod_id, cancel):
            return False, f"Could not restore disabled files of {mod_id}"

        self.log(f"Reinstalling {mod_id} {version}...")
        new = self._replace_install(
            mod_id, descriptor, version, old_version, old_files, on_progress, cancel
        )
        return True, f"Reinstalled {mod_id} {version} ({len(new.installed_files)} file(s))"

    # ── Uninstall ─────────────────────────────────────────────────────

    def uninstall_mod(self, mod_id: str, cancel: threading.Event | None = None) -> Result:
        """Back up a mod's files under its version, then delete them."""
        return self._guarded("Uninstall", mod_id, lambda: self._uninstall(mod_id, cancel))

    def _uninstall(self, mod_id, cancel) -> Result:
        record = self.manifest.get(mod_id)
        if is_managed(record):
            version, files = record.version, record.installed_files
        else:
            manual = self.reconciler.find_manual_install(mod_id)
            if manual is None:
                return False, f"{mod_id} is not installed"
            version, files = MANUAL_VERSION, manual.files

        if self.backups.is_disabled(mod_id) and not self.backups.enable(mod_id, cancel):
            return False, f"Could not restore disabled files of {mod_id}; nothing was removed"

        self.log(f"Uninstalling {mod_id} {version}...")
        if not self.backups.backup_for_uninstall(mod_id, version, files, cancel):
            return False, f"Backup of {mod_id} failed; files were left in place"

        removed = self._remove_files(files)
        if record is not None:
            self.manifest.remove(mod_id)
        return True, f"Removed {removed} file(s); backup kept for {version}"

    # ── Enable / disable ──────────────────────────────────────────────

    def _files_for_toggle(self, mod_id: str) -> list[str] | None:
        record = self.manifest.get(mod_id)
        if is_managed(record):
            return list(record.installed_files)
        manual: ManualInstall | None = self.reconciler.find_manual_install(mod_id)
        return list(manual.files) if manual is not None else None

    def disable_mod(self, mod_id: str, cancel: threading.Event | None = None) -> Result:
        if mod_id == TRANSLATION_PLUGIN_ID and self.translation is not None:
            return self.translation.disable()
        return self._guarded("Disable", mod_id, lambda: self._disable(mod_id, cancel))

    def _disable(self, mod_id, cancel) -> Result:
        files = self._files_for_toggle(mod_id)
        if files is None:
            return False, f"{mod_id} is not installed"
        if not self.backups.disable(mod_id, files, cancel):
            return False, f"Some files of {mod_id} could not be moved; run disable again"
        return True, f"Disabled {mod_id}"

    def enable_mod(self, mod_id: str, cancel: threading.Event | None = None) -> Result:
        if mod_id == TRANSLATION_PLUGIN_ID and self.translation is not None:
            return self.translation.enable()
        return self._guarded("Enable", mod_id, lambda: self._enable(mod_id, cancel))

    def _enable(self, mod_id, cancel) -> Result:
        if not self.backups.is_disabled(mod_id):
            if self._files_for_toggle(mod_id) is not None:
                return True, f"{mod_id} is already enabled"
            return False, f"{mod_id} is not installed"
        if not self.backups.enable(mod_id, cancel):
            return False, f"Some files of {mod_id} could not be restored; run enable again"
        return True, f"Enabled {mod_id}"

    # ── Validation ────────────────────────────────────────────────────

    def validate_paths(self) -> list[str]:
        issues = []
        try:
            root = self.config.require_game_root()
        except ConfigurationError as exc:
            return [str(exc)]

        if not root.exists():
            issues.append(f"Game root directory does not exist: {root}")
            return issues
        if not (root / MODS_DIR_NAME).exists():
            issues.append(
                f"Mods directory does not exist: {root / MODS_DIR_NAME} "
                "(is MelonLoader installed?)"
            )
        if self.network is None:
            issues.append("No network provider configured: install and update are unavailable")
        return issues
