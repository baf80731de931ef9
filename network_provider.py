"""
network_provider.py
Release feed access for GHPC Mod Manager.

The lifecycle core only depends on the ``NetworkProvider`` protocol; tests
substitute an in-memory fake. ``GitHubReleaseProvider`` is the production
implementation on top of the public GitHub REST API.

Usage
-----
    provider = GitHubReleaseProvider(timeout=30)
    releases = provider.fetch_latest_releases("owner", "repo")
    provider.download_asset(releases[0].assets[0].url, Path("asset.zip"))
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional, Protocol

import requests

from errors import NetworkFailure
from mod_descriptor import (
    ModDescriptor,
    TranslationSource,
    parse_descriptors,
    parse_translation_source,
)

_log = logging.getLogger(__name__)

API_BASE = "https://api.github.com"
GITHUB_PROXY_PREFIX = "https://gh.dmr.gg/"
USER_AGENT = "GHPC-Mod-Manager"

# Streaming chunk size for downloads (256 KB)
_CHUNK_SIZE = 256 * 1024

ProgressCallback = Callable[[int, int], None]  # (downloaded, total); total 0 if unknown


@dataclass
class ReleaseAsset:
    name: str
    url: str
    size: int = 0


@dataclass
class Release:
    tag: str
    assets: list[ReleaseAsset] = field(default_factory=list)
    prerelease: bool = False
    published_at: datetime | None = None
    name: str = ""

    def find_asset(self, keyword: str) -> ReleaseAsset | None:
        return next((a for a in self.assets if keyword in a.name), None)

    @classmethod
    def from_api(cls, data: dict) -> Release:
        published = data.get("published_at")
        try:
            published_at = (
                datetime.fromisoformat(published.replace("Z", "+00:00")) if published else None
            )
        except ValueError:
            published_at = None
        return cls(
            tag=data.get("tag_name", ""),
            name=data.get("name") or "",
            prerelease=bool(data.get("prerelease", False)),
            published_at=published_at,
            assets=[
                ReleaseAsset(
                    name=a.get("name", ""),
                    url=a.get("browser_download_url", ""),
                    size=int(a.get("size", 0) or 0),
                )
                for a in data.get("assets", [])
            ],
        )


class NetworkProvider(Protocol):
    """What the lifecycle core needs from the network."""

    def fetch_latest_releases(self, repo_owner: str, repo_name: str) -> list[Release]:
        """Releases of a repository, newest first."""
        ...

    def download_asset(
        self, url: str, destination: Path, on_progress: Optional[ProgressCallback] = None
    ) -> Path:
        """Download ``url`` to ``destination`` and return the written path."""
        ...

    def fetch_mod_descriptors(self, url: str) -> list[ModDescriptor]:
        """The supported-mod feed."""
        ...

    def fetch_translation_source(self, url: str) -> TranslationSource:
        """Location of the translation data releases."""
        ...


class GitHubReleaseProvider:
    """``NetworkProvider`` backed by the GitHub REST API."""

    def __init__(self, timeout: float = 30.0, use_proxy: bool = False,
                 session: requests.Session | None = None):
        self.timeout = timeout
        self.use_proxy = use_proxy
        self._session = session or requests.Session()
        self._session.headers.update({"User-Agent": USER_AGENT})

    def _get_json(self, url: str, params: dict | None = None):
        try:
            resp = self._session.get(url, params=params, timeout=self.timeout)
            resp.raise_for_status()
            return resp.json()
        except requests.HTTPError as exc:
            status = exc.response.status_code if exc.response is not None else 0
            raise NetworkFailure(f"GET {url} failed: {exc}", status_code=status, url=url) from exc
        except (requests.RequestException, ValueError) as exc:
            raise NetworkFailure(f"GET {url} failed: {exc}", url=url) from exc

    def fetch_latest_releases(self, repo_owner: str, repo_name: str) -> list[Release]:
        if not repo_owner or not repo_name:
            raise NetworkFailure(f"Invalid repository {repo_owner!r}/{repo_name!r}")
        url = f"{API_BASE}/repos/{repo_owner}/{repo_name}/releases"
        _log.info("Fetching releases: %s", url)
        data = self._get_json(url, params={"per_page": 30})
        if not isinstance(data, list):
            raise NetworkFailure(f"Unexpected releases payload from {url}", url=url)
        return [Release.from_api(item) for item in data if isinstance(item, dict)]

    def fetch_mod_descriptors(self, url: str) -> list[ModDescriptor]:
        _log.info("Fetching mod configuration: %s", url)
        try:
            resp = self._session.get(url, timeout=self.timeout)
            resp.raise_for_status()
        except requests.RequestException as exc:
            raise NetworkFailure(f"GET {url} failed: {exc}", url=url) from exc
        try:
            return parse_descriptors(resp.content)
        except ValueError as exc:
            raise NetworkFailure(f"Invalid mod configuration from {url}: {exc}", url=url) from exc

    def fetch_translation_source(self, url: str) -> TranslationSource:
        _log.info("Fetching translation configuration: %s", url)
        try:
            resp = self._session.get(url, timeout=self.timeout)
            resp.raise_for_status()
        except requests.RequestException as exc:
            raise NetworkFailure(f"GET {url} failed: {exc}", url=url) from exc
        try:
            return parse_translation_source(resp.content)
        except ValueError as exc:
            raise NetworkFailure(
                f"Invalid translation configuration from {url}: {exc}", url=url
            ) from exc

    def _proxied(self, url: str) -> str:
        if self.use_proxy and "github.com" in url and "/releases/download/" in url:
            return GITHUB_PROXY_PREFIX + url
        return url

    def download_asset(
        self, url: str, destination: Path, on_progress: Optional[ProgressCallback] = None
    ) -> Path:
        candidates = [self._proxied(url)]
        if candidates[0] != url:
            candidates.append(url)

        last_error: Exception | None = None
        for candidate in candidates:
            try:
                return self._stream_download(candidate, Path(destination), on_progress)
            except requests.RequestException as exc:
                _log.warning("Download failed from %s: %s", candidate, exc)
                last_error = exc
        raise NetworkFailure(f"Download of {url} failed: {last_error}", url=url)

    def _stream_download(
        self, url: str, destination: Path, on_progress: Optional[ProgressCallback]
    ) -> Path:
        destination.parent.mkdir(parents=True, exist_ok=True)
        with self._session.get(url, stream=True, timeout=self.timeout) as resp:
            resp.raise_for_status()
            total = int(resp.headers.get("Content-Length", 0) or 0)
            downloaded = 0
            with open(destination, "wb") as fh:
                for chunk in resp.iter_content(_CHUNK_SIZE):
                    fh.write(chunk)
                    downloaded += len(chunk)
                    if on_progress:
                        on_progress(downloaded, total)
        _log.info("Downloaded %s (%d bytes) -> %s", url, downloaded, destination)
        return destination
