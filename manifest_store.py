"""
Install manifest for GHPC Mod Manager.

One JSON document maps mod id -> installed record. The document is rewritten
in full after every change using write-to-temp + ``os.replace`` so a crash never
leaves a truncated file behind.

On-disk shape::

    {
      "<modId>": {
        "modId": "...",
        "version": "v1.2.0",
        "installedFiles": ["Mods/Foo.dll", ...],
        "installDate": "2025-01-01T12:00:00",
        "installSource": {"method": "github", "url": "..."}
      }
    }
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from errors import ManifestCorrupt

_log = logging.getLogger(__name__)

# Version recorded for installs whose real version is unknown
MANUAL_VERSION = "manual"

SOURCE_GITHUB = "github"
SOURCE_SCRIPT = "script"
SOURCE_BACKUP = "backup"
MANAGED_SOURCES = frozenset({SOURCE_GITHUB, SOURCE_SCRIPT, SOURCE_BACKUP})


@dataclass
class InstallSource:
    method: str = SOURCE_GITHUB
    url: str = ""

    def to_dict(self) -> dict:
        return {"method": self.method, "url": self.url}

    @classmethod
    def from_dict(cls, data: dict | None) -> InstallSource:
        if not data:
            return cls()
        return cls(method=str(data.get("method", SOURCE_GITHUB)), url=str(data.get("url", "")))


@dataclass
class InstalledModRecord:
    """Persisted record of a mod installed by this tool."""

    mod_id: str
    version: str
    installed_files: list[str] = field(default_factory=list)  # relative to game root
    install_date: datetime = field(default_factory=datetime.now)
    install_source: InstallSource = field(default_factory=InstallSource)

    def to_dict(self) -> dict:
        return {
            "modId": self.mod_id,
            "version": self.version,
            "installedFiles": list(self.installed_files),
            "installDate": self.install_date.isoformat(timespec="seconds"),
            "installSource": self.install_source.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> InstalledModRecord:
        try:
            install_date = datetime.fromisoformat(data["installDate"])
        except (KeyError, TypeError, ValueError):
            install_date = datetime.now()
        files = data.get("installedFiles") or []
        if not isinstance(files, list):
            raise ValueError("installedFiles must be a list")
        return cls(
            mod_id=str(data["modId"]),
            version=str(data.get("version", "")),
            installed_files=[normalize_relpath(f) for f in files],
            install_date=install_date,
            install_source=InstallSource.from_dict(data.get("installSource")),
        )


def normalize_relpath(path: str | Path) -> str:
    """Relative path with forward slashes, as stored in every manifest."""
    return str(path).replace("\\", "/").lstrip("/")


def atomic_write_json(path: Path, data) -> None:
    """Write ``data`` as JSON to ``path`` via a temp file in the same directory."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            json.dump(data, fh, indent=2, ensure_ascii=False)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp, path)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise


def read_json(path: Path):
    """Read a JSON document, raising ``ManifestCorrupt`` if it cannot be parsed."""
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ManifestCorrupt(f"{path.name}: {exc}") from exc


class ManifestStore:
    """Durable registry of installed mods keyed by mod id.

    The document is re-read on every access so that records written by another
    component (e.g. a second store instance on the same file) are visible.
    A missing or corrupt document reads as "no installed mods".
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self._lock = threading.RLock()

    def _load(self) -> dict[str, InstalledModRecord]:
        if not self.path.exists():
            return {}
        try:
            data = read_json(self.path)
        except (OSError, ManifestCorrupt) as exc:
            _log.warning("Install manifest unreadable, treating as empty: %s", exc)
            return {}
        if not isinstance(data, dict):
            _log.warning("Install manifest %s is not a JSON object, treating as empty", self.path)
            return {}

        records: dict[str, InstalledModRecord] = {}
        for key, raw in data.items():
            try:
                rec = InstalledModRecord.from_dict(raw)
            except (KeyError, TypeError, ValueError, AttributeError) as exc:
                _log.warning("Skipping invalid manifest entry %r: %s", key, exc)
                continue
            records[rec.mod_id] = rec
        return records

    def _flush(self, records: dict[str, InstalledModRecord]) -> None:
        atomic_write_json(self.path, {k: rec.to_dict() for k, rec in records.items()})

    def get(self, mod_id: str) -> InstalledModRecord | None:
        with self._lock:
            return self._load().get(mod_id)

    def put(self, record: InstalledModRecord) -> None:
        with self._lock:
            records = self._load()
            records[record.mod_id] = record
            self._flush(records)
        _log.info("Manifest: recorded %s %s (%d file(s))",
                  record.mod_id, record.version, len(record.installed_files))

    def remove(self, mod_id: str) -> bool:
        with self._lock:
            records = self._load()
            if records.pop(mod_id, None) is None:
                return False
            self._flush(records)
        _log.info("Manifest: removed %s", mod_id)
        return True

    def list_all(self) -> list[InstalledModRecord]:
        with self._lock:
            return list(self._load().values())

    def __contains__(self, mod_id: str) -> bool:
        return self.get(mod_id) is not None
