"""
ext-pack command line

Usage:
    ext-pack create my-pack ./ext-a ./ext-b --bundle
    ext-pack create my-pack --scan ~/dev/extensions
    ext-pack install my-pack.extpack --browser brave
    ext-pack install "https://ifaka.github.io/extension-pack-hub/#eyJ2Ijoz..."
    ext-pack info my-pack.extpack
    ext-pack share my-pack.extpack
    ext-pack publish my-pack.extpack
    ext-pack search privacy --tag security
    ext-pack list
    ext-pack remove my-pack

Every command accepts --json for machine-readable output.
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Optional

from extpack import __version__
from extpack.core.browser import get_browser
from extpack.core.bundle_codec import ExclusionPolicy, bundle_extension, calculate_bundle_size
from extpack.core.config import DEFAULT_HOME, ExtPackConfig
from extpack.core.errors import ExtPackError, InvalidPackFileError, SchemaInvalidError
from extpack.core.installer import PackInstaller, ProgressEvent
from extpack.core.manifest import analyze_permissions, validate_extension
from extpack.core.pack_codec import (
    PACK_SUFFIX,
    create_pack,
    generate_url,
    pack_filename,
    parse_url,
    read_pack_file,
    write_pack_file,
)
from extpack.core.publisher import PackPublisher, get_github_token
from extpack.core.registry import InstalledPackRegistry
from extpack.core.registry_client import SORT_KEYS, RegistryClient
from extpack.core.scanner import scan_directory

logger = logging.getLogger("extpack.cli")

REASON_HINTS = {
    "browser_running": "Close the browser and retry, or run without --no-auto-kill.",
    "kill_failed": "Close the browser manually and retry.",
    "launch_failed": "Check that the browser is installed, or pick one with --browser.",
    "no_extensions": "Nothing in this pack can be loaded automatically. See the errors above.",
}

# Share URLs longer than this get truncated by some browsers and chat apps
_URL_WARN_LENGTH = 8000


class CommandError(Exception):
    """A user-facing failure of a CLI command."""

    def __init__(self, message: str, hint: Optional[str] = None, **details):
        super().__init__(message)
        self.hint = hint
        self.details = details


def _emit(data: dict):
    print(json.dumps(data, indent=2, ensure_ascii=False, default=str))


def _size(num_bytes: int) -> str:
    if num_bytes >= 1024 * 1024:
        return f"{num_bytes / 1024 / 1024:.2f} MB"
    return f"{num_bytes / 1024:.1f} KB"


# ── create ──

def cmd_create(args, config: ExtPackConfig) -> int:
    extensions = []
    warnings = []

    for directory in args.dirs:
        extensions.append(validate_extension(directory))

    if args.scan:
        result = scan_directory(args.scan)
        extensions.extend(result.extensions)
        warnings.extend(f"{e['path']}: {e['error']}" for e in result.errors)

    if not extensions:
        raise CommandError(
            "No extensions found",
            hint="Pass extension directories or --scan a folder that contains them.",
        )

    if args.bundle:
        policy = ExclusionPolicy.from_config(config.bundle)
        extensions = [bundle_extension(ext.path, policy) for ext in extensions]

    pack = create_pack(
        name=args.name,
        description=args.description or "",
        author=args.author or "",
        extensions=extensions,
        version=args.pack_version,
        tags=args.tag,
    )

    output = Path(args.output) if args.output else config.packs_dir / pack_filename(args.name)
    write_pack_file(output, pack)

    if args.json:
        _emit({
            "success": True,
            "file": str(output),
            "extensions": [{"name": e.name, "type": e.type} for e in pack.extensions],
            "warnings": warnings,
        })
        return 0

    for warning in warnings:
        print(f"  ! Skipped {warning}")
    print(f"✓ Created {output}")
    for ext in pack.extensions:
        line = f"  • {ext.name} v{ext.version} [{ext.type}]"
        if ext.type == "bundled":
            line += f" {_size(calculate_bundle_size(ext))}"
        print(line)
    return 0


# ── install ──

def _load_pack_source(source: str, config: ExtPackConfig):
    """Return (pack, pack_path) for a file path, share URL or registry id."""
    if source.startswith(("http://", "https://")) and "#" in source:
        pack = parse_url(source)
        if pack is None:
            raise CommandError("Could not decode a pack from that URL", hint="Check that the link was copied completely.")
        return pack, None

    path = Path(source).expanduser()
    if path.exists() or source.endswith(PACK_SUFFIX):
        return None, path

    client = RegistryClient(config.registry)
    try:
        target = config.cache_dir / "packs" / pack_filename(source)
        client.download_pack(source, target)
    finally:
        client.close()
    return None, target


def cmd_install(args, config: ExtPackConfig) -> int:
    pack, pack_path = _load_pack_source(args.pack, config)

    # A missing browser is reported by the installer, after no_extensions
    browser = get_browser(args.browser, config.browser.preference) if args.relaunch else None

    def on_progress(event: ProgressEvent):
        if args.json:
            return
        if event.download_progress is not None:
            end = "\n" if event.download_progress >= 100 else ""
            print(f"\r  downloading {event.extension.name}: {event.download_progress:5.1f}%", end=end, flush=True)
        else:
            print(f"  [{event.current}/{event.total}] {event.extension.name} ({event.type})")

    def on_countdown(remaining: int):
        if not args.json:
            print(f"  Closing {browser.display_name} in {remaining}...")

    installer = PackInstaller(config)
    options = dict(
        auto_kill=False if args.no_auto_kill else None,
        countdown=args.countdown,
        on_progress=on_progress,
        on_countdown=on_countdown,
        relaunch=args.relaunch,
    )
    try:
        if pack is not None:
            result = installer.install_pack(pack, browser, source=args.pack, **options)
        else:
            result = installer.install(pack_path, browser, **options)
    finally:
        installer.close()

    hint = REASON_HINTS.get(result.get("reason"))
    if not result["success"] and args.relaunch and browser is None and result.get("reason") == "launch_failed":
        wanted = args.browser or ", ".join(config.browser.preference)
        result = {**result, "message": f"No supported browser found ({wanted})"}
        hint = "Install Brave, Chrome, Chromium or Edge, or pass --no-relaunch."

    report = result["results"]
    if args.json:
        _emit({**result, "results": report.to_dict(), "hint": hint})
        return 0 if result["success"] else 1

    for entry in report.manual:
        print(f"  → Install manually: {entry.extension.name} — {entry.url}")
    for entry in report.errors:
        print(f"  ✗ {getattr(entry.extension, 'name', '?')}: {entry.error}")

    if not result["success"]:
        raise CommandError(result["message"], hint=hint)

    print(f"✓ {result['message']}")
    return 0


# ── info ──

def cmd_info(args, config: ExtPackConfig) -> int:
    pack = read_pack_file(args.pack)

    if args.json:
        _emit(pack.to_dict())
        return 0

    print(f"  Name:        {pack.name}")
    print(f"  Version:     {pack.resolved_version}")
    if pack.description:
        print(f"  Description: {pack.description}")
    if pack.author_name:
        print(f"  Author:      {pack.author_name}")
    print(f"  Extensions:  {len(pack.extensions)}")
    if pack.tags:
        print(f"  Tags:        {' '.join('#' + t for t in pack.tags)}")
    if pack.created:
        print(f"  Created:     {pack.created}")

    for i, ext in enumerate(pack.extensions, start=1):
        version = f" v{ext.version}" if ext.version else ""
        print(f"\n  {i}. {ext.name}{version} [{ext.type}]")
        if ext.description:
            print(f"     {ext.description}")
        if ext.type == "bundled":
            print(f"     Size: {_size(calculate_bundle_size(ext))} (compressed)")
        for warning in analyze_permissions(ext.permissions):
            print(f"     ! {warning['permission']}: {warning['description']} ({warning['level']})")

    print(f"\n  Install: ext-pack install {args.pack}")
    return 0


# ── list ──

def cmd_list(args, config: ExtPackConfig) -> int:
    installed = InstalledPackRegistry(config.installed_file).list_packs()
    created = sorted(str(p) for p in config.packs_dir.glob(f"*{PACK_SUFFIX}")) if config.packs_dir.exists() else []

    if args.json:
        _emit({"installed": installed, "created": created})
        return 0

    print("  Installed packs:")
    if not installed:
        print("    (none)")
    for pack in installed:
        count = len(pack.get("extensions") or [])
        print(f"    • {pack['name']} v{pack.get('version', '1.0.0')} ({count} extension(s))")

    print("  Created packs:")
    if not created:
        print("    (none)")
    for path in created:
        print(f"    • {path}")
    return 0


# ── share ──

def cmd_share(args, config: ExtPackConfig) -> int:
    pack = read_pack_file(args.pack)
    url = generate_url(pack, args.base_url or config.registry.share_base_url)

    if args.json:
        _emit({"success": True, "url": url, "length": len(url)})
        return 0

    print(url)
    if len(url) > _URL_WARN_LENGTH:
        print(
            f"  ! URL is {len(url)} characters long; share the {PACK_SUFFIX} file instead "
            "if it gets truncated.",
            file=sys.stderr,
        )
    return 0


# ── publish ──

def cmd_publish(args, config: ExtPackConfig) -> int:
    token = get_github_token()
    publisher = PackPublisher(token, config.registry)
    try:
        result = publisher.publish(args.pack, tag=args.tag)
    finally:
        publisher.close()

    if args.json:
        _emit({"success": True, **result})
        return 0

    metadata = result["metadata"]
    print(f"✓ Published {metadata['name']} v{metadata['version']}")
    print(f"  Release:      {result['release_url']}")
    print(f"  Download:     {result['download_url']}")
    print(f"  Pull request: {result['pr_url']}")
    print("  The pack appears in search once the pull request is merged.")
    return 0


# ── search ──

def cmd_search(args, config: ExtPackConfig) -> int:
    client = RegistryClient(config.registry)
    try:
        results = client.search_packs(args.query or "", tag=args.tag, sort_by=args.sort, limit=args.limit)
    finally:
        client.close()

    if args.json:
        _emit({"success": True, "results": results, "count": len(results)})
        return 0

    if not results:
        print("  No packs found.")
        return 0
    for pack in results:
        print(f"  {pack.get('id')} — {pack.get('name')} ({pack.get('downloads') or 0} downloads)")
        if pack.get("description"):
            print(f"     {pack['description']}")
    return 0


# ── remove ──

def cmd_remove(args, config: ExtPackConfig) -> int:
    registry = InstalledPackRegistry(config.installed_file)
    if not registry.remove_installed_pack(args.name):
        raise CommandError(f'Pack "{args.name}" is not installed', hint="Run: ext-pack list")

    if args.json:
        _emit({"success": True, "name": args.name, "action": "removed"})
    else:
        print(f'✓ Removed "{args.name}". Restart the browser to unload its extensions.')
    return 0


def build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--json", action="store_true", help="machine-readable output")

    parser = argparse.ArgumentParser(
        prog="ext-pack",
        description="Bundle and install browser extensions with zero friction",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-v", "--verbose", action="count", default=0, help="more logging (-vv for debug)")
    parser.add_argument("--home", type=Path, default=None, help=f"config directory (default: {DEFAULT_HOME})")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("create", parents=[common], help="create a pack from extension directories")
    p.add_argument("name")
    p.add_argument("dirs", nargs="*", help="extension directories")
    p.add_argument("--scan", help="directory to scan for extensions")
    p.add_argument("--bundle", action="store_true", help="embed extension files in the pack")
    p.add_argument("--author")
    p.add_argument("--description")
    p.add_argument("--pack-version", dest="pack_version")
    p.add_argument("--tag", action="append", default=[])
    p.add_argument("-o", "--output")
    p.set_defaults(func=cmd_create)

    p = sub.add_parser("install", parents=[common], help="install a pack file, share URL or registry pack")
    p.add_argument("pack")
    p.add_argument("-b", "--browser", help="brave, chrome, chromium or edge")
    p.add_argument("--no-auto-kill", action="store_true", help="fail instead of closing a running browser")
    p.add_argument("--countdown", type=int, default=None)
    p.add_argument("--no-relaunch", dest="relaunch", action="store_false", help="only prepare extensions")
    p.set_defaults(func=cmd_install)

    p = sub.add_parser("info", parents=[common], help="show pack details")
    p.add_argument("pack")
    p.set_defaults(func=cmd_info)

    p = sub.add_parser("list", parents=[common], help="list installed and created packs")
    p.set_defaults(func=cmd_list)

    p = sub.add_parser("share", parents=[common], help="print a shareable URL for a pack")
    p.add_argument("pack")
    p.add_argument("--base-url")
    p.set_defaults(func=cmd_share)

    p = sub.add_parser("publish", parents=[common], help="publish a pack to the registry")
    p.add_argument("pack")
    p.add_argument("--tag", help="release tag (default: <id>-v<version>)")
    p.set_defaults(func=cmd_publish)

    p = sub.add_parser("search", parents=[common], help="search the pack registry")
    p.add_argument("query", nargs="?")
    p.add_argument("--tag")
    p.add_argument("--sort", choices=SORT_KEYS, default="downloads")
    p.add_argument("--limit", type=int, default=20)
    p.set_defaults(func=cmd_search)

    p = sub.add_parser("remove", parents=[common], help="forget an installed pack")
    p.add_argument("name")
    p.set_defaults(func=cmd_remove)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    level = logging.WARNING
    if args.verbose == 1:
        level = logging.INFO
    elif args.verbose >= 2:
        level = logging.DEBUG
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    )

    config = ExtPackConfig.load(home=args.home)
    config.ensure_dirs()

    try:
        return args.func(args, config)
    except (ExtPackError, CommandError, OSError, ValueError) as e:
        errors = getattr(e, "errors", None)
        hint = getattr(e, "hint", None)
        logger.debug("Command failed", exc_info=True)

        if args.json:
            _emit({"success": False, "error": str(e), "errors": errors, "hint": hint})
            return 1

        if isinstance(e, (InvalidPackFileError, SchemaInvalidError)) and errors:
            what = "pack file" if isinstance(e, InvalidPackFileError) else "extension manifest"
            print(f"Error: invalid {what}", file=sys.stderr)
            for error in errors:
                print(f"  - {error}", file=sys.stderr)
        else:
            print(f"Error: {e}", file=sys.stderr)
        if hint:
            print(f"Hint: {hint}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
