"""
Dependency and conflict resolution for GHPC Mod Manager.

Each ``ModDescriptor`` lists the mod ids it ``Requirements`` and the ids it
``Conflicts`` with. The resolver only classifies: it never blocks an operation,
callers decide what to do with missing or conflicting ids.

A dependency counts as satisfied only when it is installed *and* enabled; a
disabled plugin is not loaded by the game. A conflict between two enabled mods
is reported when either of them declares the other.

Public API
----------
DependencyResolver(descriptors, installed_ids, enabled_ids)
    .check_dependencies(mod_id)      -> DependencyResult
    .check_all_enabled_conflicts()   -> ConflictResult
    .check_install_conflicts(mod_id) -> ConflictResult
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Mapping

from mod_descriptor import ModDescriptor

_log = logging.getLogger(__name__)


@dataclass
class DependencyResult:
    all_satisfied: bool
    missing_ids: list[str] = field(default_factory=list)


@dataclass
class ConflictResult:
    has_conflicts: bool
    conflicting_pairs: list[tuple[str, str]] = field(default_factory=list)

    @property
    def conflicting_ids(self) -> list[str]:
        ids: set[str] = set()
        for a, b in self.conflicting_pairs:
            ids.update((a, b))
        return sorted(ids)


def _pair(a: str, b: str) -> tuple[str, str]:
    return (a, b) if a <= b else (b, a)


def _declares_conflict(descriptors: Mapping[str, ModDescriptor], a: str, b: str) -> bool:
    da = descriptors.get(a)
    db = descriptors.get(b)
    return bool((da and b in da.conflicts) or (db and a in db.conflicts))


class DependencyResolver:
    """Read-only view over descriptors and current install state.

    ``installed_ids`` and ``enabled_ids`` are called on every check so that the
    answer always reflects the manifest and backup area at call time.
    """

    def __init__(
        self,
        descriptors: Mapping[str, ModDescriptor],
        installed_ids: Callable[[], set[str]],
        enabled_ids: Callable[[], set[str]],
    ):
        self._descriptors = descriptors
        self._installed_ids = installed_ids
        self._enabled_ids = enabled_ids

    def check_dependencies(self, mod_id: str) -> DependencyResult:
        descriptor = self._descriptors.get(mod_id)
        if descriptor is None or not descriptor.requirements:
            return DependencyResult(all_satisfied=True)

        enabled = self._enabled_ids()
        missing = sorted(req for req in descriptor.requirements if req not in enabled)
        for req in missing:
            _log.warning("%s: required mod %s is not installed and enabled", mod_id, req)
        return DependencyResult(all_satisfied=not missing, missing_ids=missing)

    def check_all_enabled_conflicts(self) -> ConflictResult:
        """Every pair of enabled mods where at least one declares the other.

        Pairs are returned sorted, ``(min_id, max_id)``, in sorted order.
        """
        enabled = sorted(self._enabled_ids())
        pairs: list[tuple[str, str]] = []
        for i, a in enumerate(enabled):
            for b in enabled[i + 1:]:
                if _declares_conflict(self._descriptors, a, b):
                    pairs.append(_pair(a, b))
        for a, b in pairs:
            _log.warning("Enabled mods conflict: %s <-> %s", a, b)
        return ConflictResult(has_conflicts=bool(pairs), conflicting_pairs=pairs)

    def check_install_conflicts(self, mod_id: str) -> ConflictResult:
        """Installed mods that would conflict with installing ``mod_id``."""
        pairs = sorted(
            _pair(mod_id, other)
            for other in self._installed_ids()
            if other != mod_id and _declares_conflict(self._descriptors, mod_id, other)
        )
        for a, b in pairs:
            _log.warning("Install of %s conflicts with installed mod: %s <-> %s", mod_id, a, b)
        return ConflictResult(has_conflicts=bool(pairs), conflicting_pairs=pairs)
