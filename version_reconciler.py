"""
Version reconciliation for GHPC Mod Manager.

Decides, for every mod the manager knows about, whether it is *managed*
(installed through this tool and tracked in the install manifest) or *manual*
(files found in the game's ``Mods`` directory without a record). Manual installs
whose main binary matches a supported descriptor are *supported-manual* and can
be adopted through a clean reinstall; anything else is *unsupported-manual* and
is only offered a generic uninstall.

Manual detection is recomputed on every refresh; it is never stored.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Mapping

from backup_engine import ModBackupEngine
from errors import NetworkFailure
from manifest_store import MANAGED_SOURCES, MANUAL_VERSION, InstalledModRecord, ManifestStore
from mod_descriptor import DEFAULT_LOCALE, Locale, ModDescriptor
from network_provider import NetworkProvider
from settings import MODS_DIR_NAME

_log = logging.getLogger(__name__)

MANUAL_ID_PREFIX = "manual_"
TRANSLATION_PLUGIN_ID = "translation_plugin"
TRANSLATION_PLUGIN_FILENAME = "XUnity.AutoTranslator.Plugin.MelonMod.dll"


class InstallClassification(str, Enum):
    NOT_INSTALLED = "not_installed"
    MANAGED = "managed"
    SUPPORTED_MANUAL = "supported_manual"
    UNSUPPORTED_MANUAL = "unsupported_manual"


@dataclass
class ManualInstall:
    """Mod files present on disk that the install manifest does not account for."""

    mod_id: str
    files: list[str]  # relative to game root, original (live) locations
    enabled: bool
    descriptor: ModDescriptor | None = None

    @property
    def classification(self) -> InstallClassification:
        if self.descriptor is not None:
            return InstallClassification.SUPPORTED_MANUAL
        return InstallClassification.UNSUPPORTED_MANUAL


@dataclass
class ModStatus:
    """Derived, read-only state of one mod for display and gating."""

    id: str
    display_name: str
    classification: InstallClassification
    installed_version: str | None = None
    latest_version: str | None = None  # None = unknown
    is_enabled: bool = False
    update_available: bool = False
    descriptor: ModDescriptor | None = None
    files: list[str] = field(default_factory=list)

    @property
    def is_installed(self) -> bool:
        return self.classification != InstallClassification.NOT_INSTALLED

    @property
    def is_manual(self) -> bool:
        return self.classification in (
            InstallClassification.SUPPORTED_MANUAL,
            InstallClassification.UNSUPPORTED_MANUAL,
        )

    @property
    def can_reinstall(self) -> bool:
        return self.classification == InstallClassification.SUPPORTED_MANUAL


def is_managed(record: InstalledModRecord | None) -> bool:
    return (
        record is not None
        and record.install_source.method in MANAGED_SOURCES
        and record.version not in ("", MANUAL_VERSION)
    )


def compute_update_eligibility(record: InstalledModRecord | None, latest_version: str | None) -> bool:
    """True iff the mod is managed, has a real version, and differs from ``latest_version``.

    Manual installs are never eligible: their file set is unknown, so only the
    clean reinstall path may replace them.
    """
    if not is_managed(record) or not latest_version:
        return False
    return record.version != latest_version


class VersionReconciler:
    def __init__(
        self,
        game_root: str | Path,
        descriptors: Mapping[str, ModDescriptor],
        manifest: ManifestStore,
        backups: ModBackupEngine,
        network: NetworkProvider | None = None,
    ):
        self.game_root = Path(game_root)
        self.mods_dir = self.game_root / MODS_DIR_NAME
        self.descriptors = descriptors
        self.manifest = manifest
        self.backups = backups
        self.network = network

    # ── Latest versions ───────────────────────────────────────────────

    def latest_version(self, descriptor: ModDescriptor) -> str | None:
        """Tag of the newest release, or None if it cannot be determined."""
        if self.network is None:
            return None
        owner, repo = descriptor.repo
        try:
            releases = self.network.fetch_latest_releases(owner, repo)
        except NetworkFailure as exc:
            _log.warning("Could not fetch releases for %s: %s", descriptor.id, exc)
            return None
        return releases[0].tag if releases else None

    # ── Manual installs ───────────────────────────────────────────────

    def _tracked_files(self, records: list[InstalledModRecord]) -> set[str]:
        return {f.lower() for rec in records if is_managed(rec) for f in rec.installed_files}

    def _disabled_files(self, mod_id: str) -> list[str]:
        record = self.backups.read_disable_record(mod_id)
        return sorted(record.entries.values()) if record else []

    def find_manual_installs(self) -> list[ManualInstall]:
        records = self.manifest.list_all()
        managed_ids = {rec.mod_id for rec in records if is_managed(rec)}
        tracked = self._tracked_files(records)
        found: list[ManualInstall] = []
        main_binaries: set[str] = set()

        for descriptor in self.descriptors.values():
            if not descriptor.main_binary_file_name:
                continue
            main_binaries.add(descriptor.main_binary_file_name.lower())
            if descriptor.id in managed_ids:
                continue
            rel = f"{MODS_DIR_NAME}/{descriptor.main_binary_file_name}"
            if (self.game_root / rel).is_file():
                found.append(ManualInstall(descriptor.id, [rel], True, descriptor))
            elif self.backups.is_disabled(descriptor.id):
                found.append(
                    ManualInstall(descriptor.id, self._disabled_files(descriptor.id), False, descriptor)
                )

        seen_ids = {m.mod_id for m in found}
        if self.mods_dir.is_dir():
            for dll in sorted(self.mods_dir.rglob("*.dll")):
                rel = dll.relative_to(self.game_root).as_posix()
                name = dll.name.lower()
                if name in main_binaries or name == TRANSLATION_PLUGIN_FILENAME.lower():
                    continue
                if rel.lower() in tracked:
                    continue
                mod_id = MANUAL_ID_PREFIX + dll.stem
                if mod_id in seen_ids:
                    continue
                seen_ids.add(mod_id)
                found.append(ManualInstall(mod_id, [rel], True))

        for mod_id in self.backups.disabled_ids():
            if mod_id.startswith(MANUAL_ID_PREFIX) and mod_id not in seen_ids:
                seen_ids.add(mod_id)
                found.append(ManualInstall(mod_id, self._disabled_files(mod_id), False))

        return found

    def find_manual_install(self, mod_id: str) -> ManualInstall | None:
        return next((m for m in self.find_manual_installs() if m.mod_id == mod_id), None)

    # ── Classification ────────────────────────────────────────────────

    def classify(self, mod_id: str) -> InstallClassification:
        if is_managed(self.manifest.get(mod_id)):
            return InstallClassification.MANAGED
        manual = self.find_manual_install(mod_id)
        if manual is not None:
            return manual.classification
        return InstallClassification.NOT_INSTALLED

    def build_mod_list(
        self, locale: Locale = DEFAULT_LOCALE, fetch_latest: bool = True
    ) -> list[ModStatus]:
        """One status per descriptor, then one per unsupported manual mod."""
        records = {rec.mod_id: rec for rec in self.manifest.list_all()}
        manual = {m.mod_id: m for m in self.find_manual_installs()}
        statuses: list[ModStatus] = []

        for descriptor in self.descriptors.values():
            latest = self.latest_version(descriptor) if fetch_latest else None
            status = ModStatus(
                id=descriptor.id,
                display_name=descriptor.display_name(locale),
                classification=InstallClassification.NOT_INSTALLED,
                latest_version=latest,
                descriptor=descriptor,
            )
            record = records.get(descriptor.id)
            if is_managed(record):
                status.classification = InstallClassification.MANAGED
                status.installed_version = record.version
                status.is_enabled = not self.backups.is_disabled(descriptor.id)
                status.files = list(record.installed_files)
                status.update_available = compute_update_eligibility(record, latest)
            elif descriptor.id in manual:
                m = manual[descriptor.id]
                status.classification = m.classification
                status.installed_version = MANUAL_VERSION
                status.is_enabled = m.enabled
                status.files = list(m.files)
            statuses.append(status)

        for m in manual.values():
            if m.descriptor is not None:
                continue
            statuses.append(
                ModStatus(
                    id=m.mod_id,
                    display_name=m.mod_id[len(MANUAL_ID_PREFIX):],
                    classification=m.classification,
                    installed_version=MANUAL_VERSION,
                    is_enabled=m.enabled,
                    files=list(m.files),
                )
            )
        return statuses
