"""
Configuration for GHPC Mod Manager.

``ManagerConfig`` is the single configuration object handed to the core
components at construction time. Nothing in the core reads global state.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from errors import ConfigurationError
from mod_descriptor import DEFAULT_LOCALE, Locale

_log = logging.getLogger(__name__)

WORKSPACE_DIR_NAME = "GHPCMM"
MODS_DIR_NAME = "Mods"
INSTALL_MANIFEST_FILENAME = "mod_install_manifest.json"

DEFAULT_MOD_CONFIG_URL = "https://GHPC.DMR.gg/config/modconfig.json"
DEFAULT_TRANSLATION_CONFIG_URL = "https://GHPC.DMR.gg/config/translationconfig.json"


class ManagerConfig(BaseModel):
    model_config = ConfigDict(validate_assignment=True)

    game_root: Path | None = None
    app_data_dir: Path | None = None
    language: Locale = DEFAULT_LOCALE
    mod_config_url: str = DEFAULT_MOD_CONFIG_URL
    translation_config_url: str = DEFAULT_TRANSLATION_CONFIG_URL
    use_github_proxy: bool = False
    dev_mode: bool = False
    allow_install_scripts: bool = False
    request_timeout: float = 30.0

    @field_validator("game_root", "app_data_dir", mode="before")
    @classmethod
    def _blank_to_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("request_timeout")
    @classmethod
    def _positive_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("request_timeout must be positive")
        return v

    # ── Derived paths ─────────────────────────────────────────────────

    def require_game_root(self) -> Path:
        """Return the game root, or raise if it is not configured."""
        if self.game_root is None:
            raise ConfigurationError("Game root directory is not configured")
        return self.game_root

    @property
    def workspace_dir(self) -> Path:
        return self.require_game_root() / WORKSPACE_DIR_NAME

    @property
    def mods_dir(self) -> Path:
        return self.require_game_root() / MODS_DIR_NAME

    @property
    def data_dir(self) -> Path:
        return self.app_data_dir if self.app_data_dir is not None else self.workspace_dir

    @property
    def install_manifest_path(self) -> Path:
        return self.data_dir / INSTALL_MANIFEST_FILENAME


def default_settings_path() -> Path:
    base = Path(os.environ.get("APPDATA", Path.home() / ".config"))
    return base / "GHPCModManager" / "settings.json"


def load_config(path: str | Path | None = None, **overrides) -> ManagerConfig:
    """Load settings from ``path`` (if it exists) and apply ``overrides``.

    Overrides whose value is ``None`` are ignored so CLI flags that were not
    given do not clobber stored settings. ``mod_config_url`` may only be
    overridden when ``dev_mode`` ends up enabled.
    """
    data: dict = {}
    if path is not None and Path(path).exists():
        try:
            data = json.loads(Path(path).read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise ConfigurationError(f"Could not read settings file {path}: {exc}") from exc
        if not isinstance(data, dict):
            raise ConfigurationError(f"Settings file {path} must contain a JSON object")

    given = {k: v for k, v in overrides.items() if v is not None}
    dev_mode = given.get("dev_mode", data.get("dev_mode", False))
    if "mod_config_url" in given and not dev_mode:
        _log.warning("Ignoring mod config URL override: developer mode is off")
        del given["mod_config_url"]
    data.update(given)

    try:
        return ManagerConfig.model_validate(data)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid settings: {exc}") from exc


def save_config(config: ManagerConfig, path: str | Path) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    # dev_mode is a per-launch switch, never persisted
    data = config.model_dump(mode="json", exclude={"dev_mode"})
    path.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")
