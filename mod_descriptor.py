"""
Mod descriptor schema for GHPC Mod Manager.

The remote mod configuration feed is a JSON array with one entry per supported
mod. The manager validates it on load so that the rest of the code works with
typed fields instead of late-bound dictionary keys.

Example entry
-------------

{
    "Id": "ghpc_better_optics",
    "Name": {"zh-CN": "...", "en-US": "Better Optics"},
    "ReleaseUrl": "https://api.github.com/repos/someone/BetterOptics/releases",
    "TargetFileNameKeyword": ".zip",
    "MainBinaryFileName": "BetterOptics.dll",
    "ConfigSectionName": "BetterOptics",
    "InstallMethod": "DirectRelease",
    "Requirements": ["ghpc_core_lib"],
    "Conflicts": []
}

``InstallMethod`` may also be given as the integer the feed historically used
(0 = DirectRelease, 1 = Scripted).
"""

from __future__ import annotations

import json
import logging
from enum import Enum
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

_log = logging.getLogger(__name__)


class Locale(str, Enum):
    """Locales the feed may provide display names for."""

    ZH_CN = "zh-CN"
    EN_US = "en-US"


DEFAULT_LOCALE = Locale.EN_US


class InstallMethod(str, Enum):
    DIRECT_RELEASE = "DirectRelease"
    SCRIPTED = "Scripted"


_INSTALL_METHOD_CODES = {0: InstallMethod.DIRECT_RELEASE, 1: InstallMethod.SCRIPTED}


class ModDescriptor(BaseModel):
    """Static description of one supported mod, as published in the feed."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str = Field(alias="Id", min_length=1)
    names: dict[Locale, str] = Field(default_factory=dict, alias="Name")
    release_url: str = Field(alias="ReleaseUrl")
    target_file_keyword: str = Field(default=".zip", alias="TargetFileNameKeyword")
    main_binary_file_name: str = Field(default="", alias="MainBinaryFileName")
    config_section_name: str = Field(default="", alias="ConfigSectionName")
    install_method: InstallMethod = Field(
        default=InstallMethod.DIRECT_RELEASE, alias="InstallMethod"
    )
    install_script_base64: str | None = Field(default=None, alias="InstallScript_Base64")
    requirements: frozenset[str] = Field(default_factory=frozenset, alias="Requirements")
    conflicts: frozenset[str] = Field(default_factory=frozenset, alias="Conflicts")

    @field_validator("names", mode="before")
    @classmethod
    def _drop_unknown_locales(cls, v):
        if not isinstance(v, dict):
            return v
        known = {loc.value for loc in Locale}
        unknown = sorted(k for k in v if k not in known)
        if unknown:
            _log.warning("Ignoring display names for unknown locales: %s", unknown)
        return {k: name for k, name in v.items() if k in known}

    @field_validator("install_method", mode="before")
    @classmethod
    def _coerce_install_method(cls, v):
        if isinstance(v, int) and not isinstance(v, bool):
            try:
                return _INSTALL_METHOD_CODES[v]
            except KeyError:
                raise ValueError(f"Unknown install method code {v!r}")
        return v

    @field_validator("requirements", "conflicts", mode="before")
    @classmethod
    def _none_to_empty(cls, v):
        return frozenset() if v is None else v

    @model_validator(mode="after")
    def _check_self_references(self) -> ModDescriptor:
        if self.id in self.requirements:
            raise ValueError(f"Mod {self.id!r} lists itself as a requirement")
        if self.id in self.conflicts:
            raise ValueError(f"Mod {self.id!r} lists itself as a conflict")
        overlap = self.requirements & self.conflicts
        if overlap:
            raise ValueError(
                f"Mod {self.id!r} both requires and conflicts with {sorted(overlap)}"
            )
        return self

    def display_name(self, locale: Locale = DEFAULT_LOCALE) -> str:
        return self.names.get(locale) or self.names.get(DEFAULT_LOCALE) or self.id

    @property
    def repo(self) -> tuple[str, str]:
        return parse_repo_url(self.release_url)


def parse_repo_url(url: str) -> tuple[str, str]:
    """Return ``(owner, repo)`` for a GitHub API or web repository URL.

    Accepts ``https://api.github.com/repos/<owner>/<repo>/releases[/latest]``
    and ``https://github.com/<owner>/<repo>[.git]``. Returns empty strings for
    the parts that cannot be found.
    """
    segments = [s for s in urlparse(url).path.split("/") if s]
    if segments and segments[0] == "repos":
        segments = segments[1:]
    owner = segments[0] if len(segments) >= 1 else ""
    name = segments[1] if len(segments) >= 2 else ""
    if name.endswith(".git"):
        name = name[: -len(".git")]
    return owner, name


def parse_descriptors(data: bytes | str) -> list[ModDescriptor]:
    """Parse the raw feed into descriptors.

    Invalid entries are skipped with a warning so that one broken entry does not
    hide every other mod. Duplicate ids keep the first occurrence.
    Raises ``json.JSONDecodeError`` if the feed is not JSON and ``ValueError`` if
    it is not a list.
    """
    raw = json.loads(data)
    if not isinstance(raw, list):
        raise ValueError("Mod configuration feed must be a JSON array")

    descriptors: list[ModDescriptor] = []
    seen: set[str] = set()
    for index, entry in enumerate(raw):
        try:
            descriptor = ModDescriptor.model_validate(entry)
        except ValueError as exc:
            _log.warning("Skipping invalid mod descriptor #%d: %s", index, exc)
            continue
        if descriptor.id in seen:
            _log.warning("Skipping duplicate mod descriptor %r", descriptor.id)
            continue
        seen.add(descriptor.id)
        descriptors.append(descriptor)
    return descriptors


class TranslationSource(BaseModel):
    """Where the translation data releases are published.

    ``Owner``/``RepoName`` take precedence; otherwise they are parsed from
    ``RepoUrl``.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    repo_url: str = Field("", alias="RepoUrl")
    owner: str = Field("", alias="Owner")
    repo_name: str = Field("", alias="RepoName")
    target_asset_name: str = Field(".zip", alias="TargetAssetName")

    @property
    def repo(self) -> tuple[str, str]:
        if self.owner and self.repo_name:
            return self.owner, self.repo_name
        return parse_repo_url(self.repo_url)


def parse_translation_source(data: bytes | str) -> TranslationSource:
    return TranslationSource.model_validate(json.loads(data))
