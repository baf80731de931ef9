"""
Archive helpers for GHPC Mod Manager.

Release assets are usually ``.zip`` files, but ``.7z`` and ``.rar`` are handled
the same way. Extraction refuses members that would land outside the
destination directory.
"""

from __future__ import annotations

import logging
import sys
import zipfile
from pathlib import Path, PurePosixPath

import py7zr
import rarfile

_log = logging.getLogger(__name__)

# Point rarfile at UnRAR.exe: frozen builds use _MEIPASS, source runs use assets/
if getattr(sys, "frozen", False):
    _unrar = Path(sys._MEIPASS) / "UnRAR.exe"
else:
    _unrar = Path(__file__).parent / "assets" / "UnRAR.exe"
if _unrar.exists():
    rarfile.UNRAR_TOOL = str(_unrar)

SUPPORTED_EXTENSIONS = {".zip", ".7z", ".rar"}

# Everything a corrupt or unreadable archive may raise while listing or extracting
ARCHIVE_ERRORS = (OSError, ValueError, zipfile.BadZipFile, py7zr.Bad7zFile, rarfile.Error)


class UnsafeArchiveError(ValueError):
    """An archive member would be written outside the destination."""


def is_archive(filepath: Path) -> bool:
    return filepath.suffix.lower() in SUPPORTED_EXTENSIONS


def list_archive_names(filepath: Path) -> list[str]:
    """File members of the archive, with forward slashes, directories excluded."""
    ext = filepath.suffix.lower()
    if ext == ".zip":
        with zipfile.ZipFile(filepath, "r") as zf:
            names = [i.filename for i in zf.infolist() if not i.is_dir()]
    elif ext == ".7z":
        with py7zr.SevenZipFile(filepath, "r") as sz:
            names = [i.filename for i in sz.list() if not i.is_directory]
    elif ext == ".rar":
        with rarfile.RarFile(filepath, "r") as rf:
            names = [i.filename for i in rf.infolist() if not i.is_dir()]
    else:
        raise ValueError(f"Unsupported archive format: {ext}")
    return [n.replace("\\", "/") for n in names]


def _check_member(name: str) -> None:
    parts = PurePosixPath(name.replace("\\", "/")).parts
    if not parts or name.startswith("/") or ".." in parts or ":" in parts[0]:
        raise UnsafeArchiveError(f"Refusing unsafe archive member: {name!r}")


def extract(filepath: Path, dest: Path) -> list[str]:
    """Extract every file of ``filepath`` into ``dest``.

    Returns the extracted file paths relative to ``dest`` (forward slashes).
    """
    names = list_archive_names(filepath)
    for name in names:
        _check_member(name)

    dest.mkdir(parents=True, exist_ok=True)
    ext = filepath.suffix.lower()
    if ext == ".zip":
        with zipfile.ZipFile(filepath, "r") as zf:
            zf.extractall(dest)
    elif ext == ".7z":
        with py7zr.SevenZipFile(filepath, "r") as sz:
            sz.extractall(dest)
    elif ext == ".rar":
        with rarfile.RarFile(filepath, "r") as rf:
            rf.extractall(dest)

    extracted = [n for n in names if (dest / n).is_file()]
    missing = len(names) - len(extracted)
    if missing:
        _log.warning("%s: %d member(s) missing after extraction", filepath.name, missing)
    _log.info("Extracted %d file(s) from %s", len(extracted), filepath.name)
    return extracted
