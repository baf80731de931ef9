"""
Backup engine for GHPC Mod Manager.

Two independent protocols share one backup area inside the game directory, so
backups travel with the game install:

    <gameRoot>/GHPCMM/modbackup/
        disabled/<modId>/<encodedName>...          + backup_paths.json
        uninstalled/<modId>_v<version>/<encodedName>... + backup_manifest.json

*Disable* moves a mod's files out of the game tree (one live backup per mod);
*enable* moves them back. *Uninstall* copies the files into a version-keyed
folder that is kept until an explicit cleanup; deleting the live files is the
caller's job and must only happen after the copy succeeded.

Per-file I/O errors never abort an operation: the file is logged and skipped,
the remaining files are processed, and the overall result is ``False``.
Re-running a failed operation is safe because files already at their
destination are skipped.
"""

from __future__ import annotations

import errno
import logging
import os
import re
import shutil
import threading
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from errors import BackupNotFound, ManifestCorrupt
from manifest_store import atomic_write_json, normalize_relpath, read_json
from settings import MODS_DIR_NAME, WORKSPACE_DIR_NAME

_log = logging.getLogger(__name__)

BACKUP_DIR_NAME = "modbackup"
DISABLED_DIR_NAME = "disabled"
UNINSTALLED_DIR_NAME = "uninstalled"
DISABLE_INDEX_FILENAME = "backup_paths.json"
UNINSTALL_MANIFEST_FILENAME = "backup_manifest.json"
WORKSPACE_NOTICE_FILENAME = "GHPC Mod Manager working directory.txt"

_INVALID_NAME_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f]')
_ESCAPE = re.compile(r"%(25|5F)")


# ── Backup filename codec ─────────────────────────────────────────────


def encode_backup_name(relpath: str) -> str:
    """Flatten a relative path into a single file name.

    ``%`` and ``_`` are escaped first so that ``_`` can stand for the path
    separator without two different paths ever producing the same name.
    """
    rel = normalize_relpath(relpath)
    return rel.replace("%", "%25").replace("_", "%5F").replace("/", "_")


def decode_backup_name(name: str) -> str:
    """Inverse of :func:`encode_backup_name`.

    Names written before escaping existed contain no escapes and decode the
    way they always did (every ``_`` becomes a separator).
    """
    path = name.replace("_", "/")
    return _ESCAPE.sub(lambda m: "%" if m.group(1) == "25" else "_", path)


def safe_dir_name(value: str) -> str:
    cleaned = _INVALID_NAME_CHARS.sub("-", value).strip(" .")
    return cleaned or "_"


def version_folder_name(mod_id: str, version: str) -> str:
    return f"{safe_dir_name(mod_id)}_v{safe_dir_name(version)}"


# ── Records ───────────────────────────────────────────────────────────


@dataclass
class DisableBackupRecord:
    mod_id: str
    folder: Path
    entries: dict[str, str] = field(default_factory=dict)  # encoded name -> original relpath


@dataclass
class UninstallBackupRecord:
    mod_id: str
    version: str
    backup_date: datetime
    original_files: list[str] = field(default_factory=list)
    # encoded name -> original relpath; empty for backups that stored bare file names
    backup_paths: dict[str, str] = field(default_factory=dict)
    folder: Path | None = None

    def to_dict(self) -> dict:
        return {
            "modId": self.mod_id,
            "version": self.version,
            "backupDate": self.backup_date.isoformat(timespec="seconds"),
            "originalFiles": list(self.original_files),
            "backupPaths": dict(self.backup_paths),
        }

    @classmethod
    def from_dict(cls, data: dict, folder: Path | None = None) -> UninstallBackupRecord:
        def pick(camel: str, default=None):
            # Older manifests were written with PascalCase keys
            return data.get(camel, data.get(camel[0].upper() + camel[1:], default))

        mod_id = pick("modId")
        if not mod_id:
            raise ValueError("backup manifest has no modId")
        raw_date = pick("backupDate", "")
        try:
            backup_date = datetime.fromisoformat(str(raw_date)[:19])
        except ValueError:
            backup_date = datetime.fromtimestamp(0)
        return cls(
            mod_id=str(mod_id),
            version=str(pick("version", "")),
            backup_date=backup_date,
            original_files=[normalize_relpath(f) for f in pick("originalFiles", []) or []],
            backup_paths={
                str(k): normalize_relpath(v) for k, v in (pick("backupPaths", {}) or {}).items()
            },
            folder=folder,
        )

    @property
    def size_bytes(self) -> int:
        return directory_size(self.folder) if self.folder is not None else 0


# ── File helpers ──────────────────────────────────────────────────────


def directory_size(path: Path) -> int:
    total = 0
    if not path.is_dir():
        return 0
    for f in path.rglob("*"):
        try:
            if f.is_file():
                total += f.stat().st_size
        except OSError as exc:
            _log.warning("Could not stat %s: %s", f, exc)
    return total


def _move_file(src: Path, dst: Path) -> None:
    """Move ``src`` over ``dst``, falling back to copy+delete across devices."""
    try:
        os.replace(src, dst)
    except OSError as exc:
        if exc.errno != errno.EXDEV:
            raise
        shutil.copy2(src, dst)
        src.unlink()


def _is_within(root: Path, target: Path) -> bool:
    try:
        target.resolve().relative_to(root.resolve())
    except ValueError:
        return False
    return True


def _cancelled(cancel: threading.Event | None) -> bool:
    return cancel is not None and cancel.is_set()


# ── Engine ────────────────────────────────────────────────────────────


class ModBackupEngine:
    """Stages and restores mod file sets under the game's backup area.

    ``backup_root`` defaults to ``<gameRoot>/GHPCMM/modbackup``; the translation
    bundle uses its own root with the same layout.
    """

    def __init__(self, game_root: str | Path, backup_root: str | Path | None = None):
        self.game_root = Path(game_root)
        self.workspace_dir = self.game_root / WORKSPACE_DIR_NAME
        self.backup_root = (
            Path(backup_root) if backup_root is not None
            else self.workspace_dir / BACKUP_DIR_NAME
        )
        self.disabled_dir = self.backup_root / DISABLED_DIR_NAME
        self.uninstalled_dir = self.backup_root / UNINSTALLED_DIR_NAME

    def initialize(self) -> bool:
        """Create the backup directory structure. Returns False if impossible."""
        if not self.game_root.is_dir():
            _log.error("Game root does not exist: %s", self.game_root)
            return False
        try:
            self.workspace_dir.mkdir(parents=True, exist_ok=True)
            notice = self.workspace_dir / WORKSPACE_NOTICE_FILENAME
            if not notice.exists():
                notice.write_text(
                    "This directory is used by GHPC Mod Manager for backup and "
                    "management operations.",
                    encoding="utf-8",
                )
            self.disabled_dir.mkdir(parents=True, exist_ok=True)
            self.uninstalled_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            _log.error("Could not create backup directory %s: %s", self.backup_root, exc)
            return False
        return True

    # ── Disable / enable ──────────────────────────────────────────────

    def _disable_folder(self, mod_id: str) -> Path:
        return self.disabled_dir / safe_dir_name(mod_id)

    def _read_disable_index(self, folder: Path) -> dict[str, str]:
        index_path = folder / DISABLE_INDEX_FILENAME
        if not index_path.exists():
            return {}
        try:
            data = read_json(index_path)
        except (OSError, ManifestCorrupt) as exc:
            _log.warning("Disable index unreadable, decoding file names instead: %s", exc)
            return {}
        if not isinstance(data, dict):
            _log.warning("Disable index %s is not a JSON object, ignoring it", index_path)
            return {}
        return {str(k): normalize_relpath(v) for k, v in data.items()}

    def is_disabled(self, mod_id: str) -> bool:
        folder = self._disable_folder(mod_id)
        return folder.is_dir() and any(folder.iterdir())

    def disabled_ids(self) -> list[str]:
        if not self.disabled_dir.is_dir():
            return []
        return sorted(p.name for p in self.disabled_dir.iterdir() if p.is_dir() and any(p.iterdir()))

    def read_disable_record(self, mod_id: str) -> DisableBackupRecord | None:
        folder = self._disable_folder(mod_id)
        if not folder.is_dir():
            return None
        entries = self._read_disable_index(folder)
        for f in folder.iterdir():
            if f.is_file() and not f.name.startswith(".") and f.name != DISABLE_INDEX_FILENAME:
                entries.setdefault(f.name, decode_backup_name(f.name))
        return DisableBackupRecord(mod_id=mod_id, folder=folder, entries=entries)

    def disable(
        self, mod_id: str, files: list[str], cancel: threading.Event | None = None
    ) -> bool:
        """Move ``files`` (relative to the game root) into the disable backup."""
        if not self.initialize():
            return False

        folder = self._disable_folder(mod_id)
        rels = [normalize_relpath(f) for f in files]
        try:
            folder.mkdir(parents=True, exist_ok=True)
            # The index is written before any move so an interrupted disable
            # can always be restored with the original paths.
            index = self._read_disable_index(folder)
            index.update({encode_backup_name(rel): rel for rel in rels})
            atomic_write_json(folder / DISABLE_INDEX_FILENAME, index)
        except OSError as exc:
            _log.error("Disable %s: could not prepare backup folder %s: %s", mod_id, folder, exc)
            return False

        ok = True
        moved = 0
        for rel in rels:
            if _cancelled(cancel):
                _log.warning("Disable %s: cancelled after %d file(s)", mod_id, moved)
                return False
            src = self.game_root / rel
            dst = folder / encode_backup_name(rel)
            if not src.is_file():
                if dst.exists():
                    _log.debug("Disable %s: %s already in backup", mod_id, rel)
                else:
                    _log.warning("Disable %s: %s not found, skipping", mod_id, rel)
                continue
            try:
                if dst.exists():
                    _log.warning("Disable %s: replacing stale backup copy of %s", mod_id, rel)
                _move_file(src, dst)
                moved += 1
            except OSError as exc:
                _log.error("Disable %s: could not move %s: %s", mod_id, src, exc)
                ok = False

        _log.info("Disabled %s: moved %d file(s) to %s", mod_id, moved, folder)
        return ok

    def enable(self, mod_id: str, cancel: threading.Event | None = None) -> bool:
        """Move a disabled mod's files back to their original locations."""
        if not self.initialize():
            return False

        folder = self._disable_folder(mod_id)
        if not folder.is_dir():
            _log.warning("Enable %s: no disable backup at %s", mod_id, folder)
            return False

        index = self._read_disable_index(folder)
        ok = True
        restored = 0
        for entry in sorted(folder.iterdir()):
            if not entry.is_file() or entry.name == DISABLE_INDEX_FILENAME:
                continue
            if entry.name.startswith("."):
                # leftover temp file from an interrupted index write
                continue
            if _cancelled(cancel):
                _log.warning("Enable %s: cancelled after %d file(s)", mod_id, restored)
                return False
            original = index.get(entry.name) or decode_backup_name(entry.name)
            target = self.game_root / original
            if not _is_within(self.game_root, target):
                _log.error("Enable %s: refusing to restore outside game root: %s", mod_id, original)
                ok = False
                continue
            try:
                target.parent.mkdir(parents=True, exist_ok=True)
                _move_file(entry, target)
                restored += 1
            except OSError as exc:
                _log.error("Enable %s: could not restore %s: %s", mod_id, target, exc)
                ok = False

        if ok:
            try:
                (folder / DISABLE_INDEX_FILENAME).unlink(missing_ok=True)
                for leftover in folder.glob(f".{DISABLE_INDEX_FILENAME}.*"):
                    leftover.unlink()
                if not any(folder.iterdir()):
                    folder.rmdir()
            except OSError as exc:
                _log.warning("Enable %s: could not remove backup folder %s: %s", mod_id, folder, exc)

        _log.info("Enabled %s: restored %d file(s)", mod_id, restored)
        return ok

    # ── Uninstall backups ─────────────────────────────────────────────

    def _uninstall_folder(self, mod_id: str, version: str) -> Path:
        return self.uninstalled_dir / version_folder_name(mod_id, version)

    def backup_for_uninstall(
        self,
        mod_id: str,
        version: str,
        files: list[str],
        cancel: threading.Event | None = None,
    ) -> bool:
        """Copy ``files`` into ``uninstalled/<modId>_v<version>`` and write its manifest."""
        if not self.initialize():
            return False

        folder = self._uninstall_folder(mod_id, version)
        record = UninstallBackupRecord(
            mod_id=mod_id,
            version=version,
            backup_date=datetime.now(),
            original_files=[normalize_relpath(f) for f in files],
            folder=folder,
        )
        try:
            folder.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            _log.error("Uninstall backup %s: could not create %s: %s", mod_id, folder, exc)
            return False

        # A retried backup keeps entries copied by the earlier attempt
        if (folder / UNINSTALL_MANIFEST_FILENAME).is_file():
            try:
                previous = self.read_uninstall_record(mod_id, version)
            except (OSError, ManifestCorrupt) as exc:
                _log.warning("Uninstall backup %s: ignoring unreadable manifest: %s", mod_id, exc)
            else:
                record.backup_paths.update(
                    (name, rel) for name, rel in previous.backup_paths.items()
                    if (folder / name).is_file()
                )

        ok = True
        for rel in record.original_files:
            if _cancelled(cancel):
                _log.warning("Uninstall backup %s: cancelled", mod_id)
                ok = False
                break
            src = self.game_root / rel
            if not src.is_file():
                _log.warning("Uninstall backup %s: %s not found, skipping", mod_id, rel)
                continue
            name = encode_backup_name(rel)
            try:
                shutil.copy2(src, folder / name)
                record.backup_paths[name] = rel
            except OSError as exc:
                _log.error("Uninstall backup %s: could not copy %s: %s", mod_id, src, exc)
                ok = False

        try:
            atomic_write_json(folder / UNINSTALL_MANIFEST_FILENAME, record.to_dict())
        except OSError as exc:
            _log.error("Uninstall backup %s: could not write manifest: %s", mod_id, exc)
            return False

        _log.info(
            "Backed up %s %s: %d file(s) in %s",
            mod_id, version, len(record.backup_paths), folder,
        )
        return ok

    def backup_exists(self, mod_id: str, version: str) -> bool:
        folder = self._uninstall_folder(mod_id, version)
        return (folder / UNINSTALL_MANIFEST_FILENAME).is_file()

    def read_uninstall_record(self, mod_id: str, version: str) -> UninstallBackupRecord:
        folder = self._uninstall_folder(mod_id, version)
        manifest_path = folder / UNINSTALL_MANIFEST_FILENAME
        if not manifest_path.is_file():
            raise BackupNotFound(f"No backup of {mod_id} {version} at {folder}")
        data = read_json(manifest_path)
        try:
            return UninstallBackupRecord.from_dict(data, folder=folder)
        except (AttributeError, TypeError, ValueError) as exc:
            raise ManifestCorrupt(f"{manifest_path}: {exc}") from exc

    def list_uninstall_backups(self, mod_id: str | None = None) -> list[UninstallBackupRecord]:
        """All readable durable backups, newest first."""
        records: list[UninstallBackupRecord] = []
        if not self.uninstalled_dir.is_dir():
            return records
        for folder in self.uninstalled_dir.iterdir():
            manifest_path = folder / UNINSTALL_MANIFEST_FILENAME
            if not manifest_path.is_file():
                continue
            try:
                rec = UninstallBackupRecord.from_dict(read_json(manifest_path), folder=folder)
            except (OSError, ManifestCorrupt, AttributeError, TypeError, ValueError) as exc:
                _log.warning("Skipping unreadable backup %s: %s", folder.name, exc)
                continue
            if mod_id is None or rec.mod_id == mod_id:
                records.append(rec)
        records.sort(key=lambda r: r.backup_date, reverse=True)
        return records

    def reinstall_from_backup(
        self, mod_id: str, version: str, cancel: threading.Event | None = None
    ) -> tuple[bool, list[str]]:
        """Copy a durable backup back into the game tree.

        Returns ``(success, restored_relpaths)``. Backups that carry a path map
        are restored to their original locations; older backups only stored bare
        file names and are restored flat into the ``Mods`` directory.
        """
        if not self.initialize():
            return False, []
        try:
            record = self.read_uninstall_record(mod_id, version)
        except BackupNotFound as exc:
            _log.warning("Reinstall %s: %s", mod_id, exc)
            return False, []
        except (OSError, ManifestCorrupt) as exc:
            _log.error("Reinstall %s: backup manifest unreadable: %s", mod_id, exc)
            return False, []

        folder = record.folder or self._uninstall_folder(mod_id, version)
        restored: list[str] = []
        ok = True
        for entry in sorted(folder.iterdir()):
            if not entry.is_file() or entry.name == UNINSTALL_MANIFEST_FILENAME:
                continue
            if entry.name.startswith("."):
                continue
            if _cancelled(cancel):
                _log.warning("Reinstall %s: cancelled", mod_id)
                return False, restored
            if record.backup_paths:
                original = record.backup_paths.get(entry.name) or decode_backup_name(entry.name)
            else:
                original = f"{MODS_DIR_NAME}/{entry.name}"
            target = self.game_root / original
            if not _is_within(self.game_root, target):
                _log.error("Reinstall %s: refusing to restore outside game root: %s", mod_id, original)
                ok = False
                continue
            try:
                target.parent.mkdir(parents=True, exist_ok=True)
                shutil.copy2(entry, target)
                restored.append(original)
            except OSError as exc:
                _log.error("Reinstall %s: could not restore %s: %s", mod_id, target, exc)
                ok = False

        if not restored:
            _log.warning("Reinstall %s: backup %s holds no files", mod_id, folder.name)
            return False, restored

        _log.info("Reinstalled %s %s from backup: %d file(s)", mod_id, version, len(restored))
        return ok, restored

    # ── Cleanup ───────────────────────────────────────────────────────

    def cleanup(self) -> int:
        """Delete every backup folder under ``disabled/`` and ``uninstalled/``.

        Returns the number of bytes freed. Disabled mods lose their files.
        """
        if not self.initialize():
            return 0

        freed = 0
        for area in (self.disabled_dir, self.uninstalled_dir):
            for sub in sorted(area.iterdir()):
                if not sub.is_dir():
                    continue
                size = directory_size(sub)
                try:
                    shutil.rmtree(sub)
                except OSError as exc:
                    _log.error("Cleanup: could not delete %s: %s", sub, exc)
                    continue
                freed += size
                _log.info("Cleanup: deleted %s (%d bytes)", sub.name, size)

        _log.info("Cleanup freed %.1f MB", freed / (1024 * 1024))
        return freed
