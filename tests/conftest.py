"""
Shared fixtures and helpers for the GHPC Mod Manager test suite.
"""

import io
import zipfile
from pathlib import Path

import pytest

from errors import NetworkFailure
from mod_descriptor import ModDescriptor, TranslationSource
from network_provider import Release, ReleaseAsset
from settings import ManagerConfig


def make_zip(members: dict) -> bytes:
    """Build an in-memory zip from {member name: bytes/str}."""
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as zf:
        for member, data in members.items():
            zf.writestr(member, data)
    return buf.getvalue()


def make_descriptor(mod_id: str, **overrides) -> ModDescriptor:
    data = {
        "Id": mod_id,
        "Name": {"en-US": mod_id.replace("_", " ").title()},
        "ReleaseUrl": f"https://api.github.com/repos/author/{mod_id}/releases",
        "TargetFileNameKeyword": ".zip",
        "MainBinaryFileName": f"{mod_id}.dll",
        "InstallMethod": "DirectRelease",
        "Requirements": [],
        "Conflicts": [],
    }
    data.update(overrides)
    return ModDescriptor.model_validate(data)


def write_file(root: Path, rel: str, data: bytes = b"data") -> Path:
    path = root / rel
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
    return path


class FakeNetworkProvider:
    """In-memory release feed: repos map to releases, URLs map to payloads."""

    def __init__(self):
        self.releases: dict[tuple[str, str], list[Release]] = {}
        self.payloads: dict[str, bytes] = {}
        self.descriptors: list[ModDescriptor] = []
        self.translation_source = TranslationSource(RepoUrl="https://github.com/tl/ghpc-translation")
        self.downloads: list[str] = []
        self.fail_downloads = False
        self.fail_releases = False

    def add_release(self, owner: str, repo: str, tag: str, assets: dict[str, bytes]) -> Release:
        """Publish ``tag`` as the newest release of owner/repo."""
        release = Release(tag=tag)
        for name, payload in assets.items():
            url = f"https://github.com/{owner}/{repo}/releases/download/{tag}/{name}"
            self.payloads[url] = payload
            release.assets.append(ReleaseAsset(name=name, url=url, size=len(payload)))
        self.releases.setdefault((owner, repo), []).insert(0, release)
        return release

    def add_mod_release(self, mod_id: str, tag: str, members: dict | None = None) -> Release:
        members = members if members is not None else {f"{mod_id}.dll": f"{mod_id} {tag}"}
        return self.add_release("author", mod_id, tag, {f"{mod_id}-{tag}.zip": make_zip(members)})

    def fetch_latest_releases(self, repo_owner, repo_name):
        if self.fail_releases:
            raise NetworkFailure("releases unavailable")
        return list(self.releases.get((repo_owner, repo_name), []))

    def download_asset(self, url, destination, on_progress=None):
        if self.fail_downloads or url not in self.payloads:
            raise NetworkFailure(f"download failed: {url}", url=url)
        payload = self.payloads[url]
        destination = Path(destination)
        destination.parent.mkdir(parents=True, exist_ok=True)
        destination.write_bytes(payload)
        self.downloads.append(url)
        if on_progress:
            on_progress(len(payload), len(payload))
        return destination

    def fetch_mod_descriptors(self, url):
        return list(self.descriptors)

    def fetch_translation_source(self, url):
        return self.translation_source


@pytest.fixture
def game_root(tmp_path):
    """A fresh game directory with an empty Mods folder."""
    root = tmp_path / "GHPC"
    (root / "Mods").mkdir(parents=True)
    return root


@pytest.fixture
def config(game_root):
    return ManagerConfig(game_root=game_root)


@pytest.fixture
def network():
    return FakeNetworkProvider()
