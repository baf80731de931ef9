#!/usr/bin/env python3
"""GHPC Mod Manager command-line entry point."""

import argparse
import faulthandler
import logging
import os
import sys
import traceback
from logging.handlers import RotatingFileHandler
from pathlib import Path

from errors import ConfigurationError
from mod_manager import ModManager
from network_provider import GitHubReleaseProvider
from settings import default_settings_path, load_config, save_config
from translation_manager import TranslationManager


def setup_logging(verbose: bool = False) -> tuple[logging.Logger, Path]:
    log_dir = Path(os.environ.get("APPDATA", Path.home() / ".config")) / "GHPCModManager"
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "ghpcmodmanager.log"

    handler = RotatingFileHandler(
        log_file,
        maxBytes=1 * 1024 * 1024,  # 1 MB
        backupCount=2,
        encoding="utf-8",
    )
    handler.setFormatter(logging.Formatter("%(asctime)s  %(levelname)-8s  %(name)s  %(message)s"))

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(logging.DEBUG if verbose else logging.WARNING)
    console.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)
    root.addHandler(console)
    return logging.getLogger("ghpcmodmanager"), log_dir


def install_crash_handler(logger: logging.Logger, log_dir: Path):
    # Python-level unhandled exceptions
    def handle_exception(exc_type, exc_value, exc_tb):
        if issubclass(exc_type, KeyboardInterrupt):
            sys.__excepthook__(exc_type, exc_value, exc_tb)
            return
        logger.critical(
            "Unhandled exception:\n%s",
            "".join(traceback.format_exception(exc_type, exc_value, exc_tb)),
        )

    sys.excepthook = handle_exception

    # faulthandler cannot use logging after a hard crash
    crash_file = log_dir / "crash.log"
    faulthandler.enable(open(crash_file, "w"), all_threads=True)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="GHPC Mod Manager")
    parser.add_argument("--game-root", help="Gunner, HEAT, PC! install directory")
    parser.add_argument("--settings", help="Settings file (default: per-user settings.json)")
    parser.add_argument("--language", choices=["zh-CN", "en-US"])
    parser.add_argument("--proxy", dest="use_github_proxy", action="store_const", const=True,
                        help="Download release assets through the GitHub proxy")
    parser.add_argument("--dev", dest="dev_mode", action="store_const", const=True)
    parser.add_argument("--mod-config-url", help="Override mod feed URL (requires --dev)")
    parser.add_argument("-v", "--verbose", action="store_true")

    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("list", help="List supported and installed mods")

    p = sub.add_parser("install", help="Install a supported mod")
    p.add_argument("mod_id")
    p.add_argument("--version")
    p.add_argument("--force", action="store_true",
                   help="Install despite missing requirements or conflicts")

    for name, help_text in (("update", "Update a managed mod"),
                            ("reinstall", "Clean reinstall / adopt a manual install")):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("mod_id")
        p.add_argument("--version")

    for name in ("uninstall", "enable", "disable"):
        p = sub.add_parser(name, help=f"{name.capitalize()} a mod")
        p.add_argument("mod_id")

    sub.add_parser("check", help="Check enabled mods for conflicts and missing requirements")

    p = sub.add_parser("backups", help="List uninstall backups")
    p.add_argument("mod_id", nargs="?")

    sub.add_parser("cleanup", help="Delete every backup")

    p = sub.add_parser("configure", help="Store settings")
    p.add_argument("--allow-install-scripts", choices=["yes", "no"])

    p = sub.add_parser("translation", help="Manage the translation bundle")
    p.add_argument("action", choices=["status", "install", "update", "enable", "disable", "uninstall"])
    p.add_argument("--version", help="XUnity plugin version for install")

    return parser


def _progress(downloaded: int, total: int):
    if total:
        print(f"\r  {downloaded * 100 // total:3d}%  ({downloaded // 1024} KB)", end="", flush=True)
        if downloaded >= total:
            print()


def _confirm_script(mod_id: str) -> bool:
    answer = input(f"{mod_id} runs an install script in your game directory. Continue? [y/N] ")
    return answer.strip().lower() in ("y", "yes")


def _report(result: tuple[bool, str]) -> int:
    ok, msg = result
    print(msg)
    return 0 if ok else 1


def cmd_list(manager: ModManager) -> int:
    statuses = manager.get_mod_list()
    if not statuses:
        print("No mods known. Check the game root and the mod feed.")
        return 0
    for s in statuses:
        state = "enabled" if s.is_enabled else ("disabled" if s.is_installed else "-")
        latest = s.latest_version or "?"
        flag = "  [update available]" if s.update_available else ""
        print(f"{s.id:32} {s.classification.value:20} {s.installed_version or '-':>14} "
              f"{latest:>14}  {state}{flag}")
    return 0


def cmd_install(manager: ModManager, args) -> int:
    deps = manager.check_dependencies(args.mod_id)
    conflicts = manager.check_install_conflicts(args.mod_id)
    if not deps.all_satisfied:
        print(f"Missing requirements: {', '.join(deps.missing_ids)}")
    if conflicts.has_conflicts:
        for a, b in conflicts.conflicting_pairs:
            print(f"Conflict: {a} <-> {b}")
    if (not deps.all_satisfied or conflicts.has_conflicts) and not args.force:
        print("Refusing to install. Use --force to install anyway.")
        return 1
    return _report(manager.install_mod(args.mod_id, args.version, on_progress=_progress))


def cmd_check(manager: ModManager) -> int:
    rc = 0
    conflicts = manager.check_all_enabled_conflicts()
    for a, b in conflicts.conflicting_pairs:
        print(f"Conflict: {a} <-> {b}")
        rc = 1
    for status in manager.get_mod_list(fetch_latest=False):
        if not status.is_enabled or status.descriptor is None:
            continue
        deps = manager.check_dependencies(status.id)
        if not deps.all_satisfied:
            print(f"{status.id}: missing {', '.join(deps.missing_ids)}")
            rc = 1
    if rc == 0:
        print("No conflicts or missing requirements.")
    return rc


def cmd_backups(manager: ModManager, mod_id) -> int:
    backups = manager.list_backups(mod_id)
    if not backups:
        print("No backups.")
    for b in backups:
        print(f"{b.mod_id:32} {b.version:>14}  {b.backup_date:%Y-%m-%d %H:%M}  "
              f"{len(b.original_files)} file(s)  {b.size_bytes / 1024:.0f} KB")
    return 0


def cmd_translation(translation: TranslationManager, args) -> int:
    if args.action == "status":
        st = translation.status()
        if not st.installed:
            print("Translation is not installed.")
            return 0
        print(f"Installed{' (manual)' if st.manual else ''}, "
              f"{'enabled' if st.enabled else 'disabled'}")
        print(f"  XUnity plugin:    {st.plugin_version or '-'} (latest {st.latest_plugin_version or '?'})")
        print(f"  Translation data: {st.data_version or '-'} (latest {st.latest_data_version or '?'})")
        return 0
    if args.action == "install":
        return _report(translation.install(args.version, on_progress=_progress))
    if args.action == "update":
        st = translation.status()
        rc = 0
        if st.plugin_update_available:
            rc |= _report(translation.update_plugin(on_progress=_progress))
        if st.data_update_available:
            rc |= _report(translation.update_data(on_progress=_progress))
        if not (st.plugin_update_available or st.data_update_available):
            print("Translation is up to date.")
        return rc
    if args.action == "enable":
        return _report(translation.enable())
    if args.action == "disable":
        return _report(translation.disable())
    return _report(translation.uninstall())


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    logger, log_dir = setup_logging(args.verbose)
    install_crash_handler(logger, log_dir)
    logger.info("Starting GHPC Mod Manager: %s", args.command)

    settings_path = Path(args.settings) if args.settings else default_settings_path()
    try:
        config = load_config(
            settings_path,
            game_root=args.game_root,
            language=args.language,
            use_github_proxy=args.use_github_proxy,
            dev_mode=args.dev_mode,
            mod_config_url=args.mod_config_url,
        )
    except ConfigurationError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 2

    if args.command == "configure":
        if args.allow_install_scripts is not None:
            config.allow_install_scripts = args.allow_install_scripts == "yes"
        save_config(config, settings_path)
        print(f"Settings saved to {settings_path}")
        return 0

    network = GitHubReleaseProvider(timeout=config.request_timeout, use_proxy=config.use_github_proxy)
    translation = TranslationManager(config, network, log_callback=logger.info)
    manager = ModManager(
        config,
        network,
        log_callback=logger.info,
        script_prompt_callback=_confirm_script,
        translation=translation,
    )

    issues = manager.validate_paths()
    if config.game_root is None or not config.game_root.is_dir():
        for issue in issues:
            print(f"Error: {issue}", file=sys.stderr)
        return 2
    for issue in issues:
        logger.warning(issue)

    if not manager.backups.initialize():
        print(f"Error: could not create {config.workspace_dir}", file=sys.stderr)
        return 2

    if args.command == "translation":
        return cmd_translation(translation, args)
    if args.command == "backups":
        return cmd_backups(manager, args.mod_id)
    if args.command == "cleanup":
        freed = manager.cleanup_backups()
        print(f"Freed {freed / (1024 * 1024):.1f} MB")
        return 0

    ok, msg = manager.refresh_descriptors()
    if not ok:
        print(f"Warning: {msg}", file=sys.stderr)

    if args.command == "list":
        return cmd_list(manager)
    if args.command == "check":
        return cmd_check(manager)
    if args.command == "install":
        return cmd_install(manager, args)
    if args.command == "update":
        return _report(manager.update_mod(args.mod_id, args.version, on_progress=_progress))
    if args.command == "reinstall":
        return _report(manager.reinstall_mod(args.mod_id, args.version, on_progress=_progress))
    if args.command == "uninstall":
        return _report(manager.uninstall_mod(args.mod_id))
    if args.command == "enable":
        return _report(manager.enable_mod(args.mod_id))
    return _report(manager.disable_mod(args.mod_id))


if __name__ == "__main__":
    sys.exit(main())
