"""
Pack installer — turns a pack into extension directories on disk and hands
them to the browser.

Resolution is sequential and keeps pack order (it becomes the browser's
load order). A failing entry is recorded and the next one is attempted.

/ Orquesta la instalacion de packs: resuelve cada extension y relanza
/ el navegador.
"""

import logging
import re
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional, Union

from extpack.core.browser import Browser, BrowserLauncher
from extpack.core.bundle_codec import extract_bundled_extension
from extpack.core.config import ExtPackConfig
from extpack.core.descriptors import (
    BundledExtension,
    GithubExtension,
    LocalExtension,
    StoreExtension,
)
from extpack.core.errors import ExtPackError, FetchError, InvalidExtensionError
from extpack.core.github import ReleaseFetcher, find_extension_dir, parse_repo
from extpack.core.manifest import get_extension_info, validate_extension
from extpack.core.pack_codec import Pack, read_pack_file
from extpack.core.registry import InstalledPackRegistry

logger = logging.getLogger("extpack.core.installer")


@dataclass
class ProgressEvent:
    current: int
    total: int
    extension: object
    type: str
    # Percent of a GitHub download, when one is running
    download_progress: Optional[float] = None


ProgressCallback = Callable[[ProgressEvent], None]


@dataclass
class ResolvedExtension:
    extension: object
    path: str
    # ready | extracted | cached | downloaded
    status: str
    info: Optional[LocalExtension] = None


@dataclass
class ManualInstall:
    extension: StoreExtension
    message: str = "Chrome Web Store extensions require manual installation"
    status: str = "manual_required"

    @property
    def url(self) -> str:
        return self.extension.store_url


@dataclass
class ResolutionError:
    extension: object
    error: str


@dataclass
class ResolutionReport:
    ready: list[ResolvedExtension] = field(default_factory=list)
    manual: list[ManualInstall] = field(default_factory=list)
    errors: list[ResolutionError] = field(default_factory=list)

    @property
    def paths(self) -> list[str]:
        return [r.path for r in self.ready]

    def to_dict(self) -> dict:
        return {
            "ready": [
                {"name": r.extension.name, "type": r.extension.type, "path": r.path, "status": r.status}
                for r in self.ready
            ],
            "manual": [
                {
                    "name": m.extension.name,
                    "id": m.extension.store_id,
                    "url": m.url,
                    "status": m.status,
                    "message": m.message,
                }
                for m in self.manual
            ],
            "errors": [
                {"name": getattr(e.extension, "name", None), "type": getattr(e.extension, "type", None), "error": e.error}
                for e in self.errors
            ],
        }


def _slug(text: str) -> str:
    return re.sub(r"[^A-Za-z0-9._-]+", "-", text).strip("-").lower() or "unnamed"


class PackInstaller:
    """
    Resolves packs and installs them into a browser.

    All collaborators are injectable; defaults are built from ``config``.
    """

    def __init__(
        self,
        config: ExtPackConfig,
        fetcher: Optional[ReleaseFetcher] = None,
        launcher: Optional[BrowserLauncher] = None,
        registry: Optional[InstalledPackRegistry] = None,
    ):
        self.config = config
        self._fetcher = fetcher
        self._owns_fetcher = False
        self.launcher = launcher or BrowserLauncher()
        self.registry = registry or InstalledPackRegistry(config.installed_file)

    @property
    def fetcher(self) -> ReleaseFetcher:
        # Created lazily: packs without GitHub entries never open a client
        if self._fetcher is None:
            self._fetcher = ReleaseFetcher(timeout=self.config.registry.timeout)
            self._owns_fetcher = True
        return self._fetcher

    def close(self):
        """Close the HTTP client of a fetcher this installer created."""
        if self._owns_fetcher:
            self._fetcher.close()
            self._fetcher = None
            self._owns_fetcher = False

    # ── Per-type resolution ──

    def _resolve_local(self, ext: LocalExtension) -> ResolvedExtension:
        if not Path(ext.path).exists():
            raise FileNotFoundError(f"Extension not found at: {ext.path}")
        try:
            info = validate_extension(ext.path)
        except ExtPackError as e:
            raise InvalidExtensionError(f"Invalid extension at: {ext.path} ({e})") from e
        return ResolvedExtension(extension=ext, path=info.path, status="ready", info=info)

    def bundled_target(self, pack: Pack, index: int) -> Path:
        """Deterministic extraction directory for the bundled entry at ``index``."""
        ext = pack.extensions[index]
        # The position keeps same-name, same-version entries apart
        return (
            self.config.cache_dir / "bundled" / _slug(pack.name)
            / f"{index}-{_slug(ext.name)}-{_slug(ext.version)}"
        )

    def _resolve_bundled(self, pack: Pack, index: int) -> ResolvedExtension:
        ext = pack.extensions[index]
        target = self.bundled_target(pack, index)
        # Stale files from an older bundle must not leak into this one
        if target.exists():
            shutil.rmtree(target)
        extract_bundled_extension(ext, target)
        return ResolvedExtension(
            extension=ext,
            path=str(target),
            status="extracted",
            info=get_extension_info(target),
        )

    def _resolve_github(
        self,
        ext: GithubExtension,
        on_download: Optional[Callable[[float], None]] = None,
    ) -> ResolvedExtension:
        owner, repo = parse_repo(ext.repo)
        tag = ext.tag
        cache_path = self.config.cache_dir / f"{owner}-{repo}-{tag}"

        if cache_path.exists():
            try:
                extension_dir = find_extension_dir(cache_path)
                info = validate_extension(extension_dir)
                logger.debug(f"Using cached {owner}/{repo}@{tag}")
                return ResolvedExtension(
                    extension=ext, path=str(extension_dir), status="cached", info=info,
                )
            except (FetchError, ExtPackError) as e:
                logger.info(f"Cache for {owner}/{repo}@{tag} is invalid ({e}), re-downloading")

        def _progress(percent: float, downloaded: int, total: int):
            if on_download:
                on_download(percent)

        extension_dir = self.fetcher.fetch(owner, repo, tag, cache_path, on_progress=_progress)
        info = get_extension_info(extension_dir)
        if info is None:
            raise InvalidExtensionError(f"Downloaded extension {owner}/{repo}@{tag} is invalid")

        return ResolvedExtension(
            extension=ext, path=str(extension_dir), status="downloaded", info=info,
        )

    # ── Public API ──

    def resolve(self, pack: Pack, on_progress: Optional[ProgressCallback] = None) -> ResolutionReport:
        """
        Resolve every descriptor of ``pack`` in order.

        / Resuelve cada extension del pack, en orden.
        """
        report = ResolutionReport()
        total = len(pack.extensions)

        for current, ext in enumerate(pack.extensions, start=1):
            if on_progress:
                on_progress(ProgressEvent(current=current, total=total, extension=ext, type=ext.type))

            try:
                if isinstance(ext, LocalExtension):
                    report.ready.append(self._resolve_local(ext))
                elif isinstance(ext, BundledExtension):
                    report.ready.append(self._resolve_bundled(pack, current - 1))
                elif isinstance(ext, GithubExtension):
                    def _on_download(percent: float, _current=current, _ext=ext):
                        if on_progress:
                            on_progress(ProgressEvent(
                                current=_current,
                                total=total,
                                extension=_ext,
                                type="github",
                                download_progress=percent,
                            ))

                    report.ready.append(self._resolve_github(ext, _on_download))
                elif isinstance(ext, StoreExtension):
                    report.manual.append(ManualInstall(extension=ext))
                else:
                    raise ValueError(f"Unsupported extension type: {type(ext).__name__}")
            except Exception as e:  # one bad entry must not block the rest
                logger.warning(f"Failed to resolve '{getattr(ext, 'name', ext)}': {e}")
                report.errors.append(ResolutionError(extension=ext, error=str(e)))

        return report

    def install(
        self,
        pack_path: Union[str, Path],
        browser: Optional[Browser],
        **options,
    ) -> dict:
        """
        Read a pack file and install it. See install_pack() for options.

        Raises InvalidPackFileError if the file is not a valid pack.
        """
        pack = read_pack_file(pack_path)
        return self.install_pack(pack, browser, source=str(Path(pack_path).resolve()), **options)

    def install_pack(
        self,
        pack: Pack,
        browser: Optional[Browser],
        source: Optional[str] = None,
        auto_kill: Optional[bool] = None,
        countdown: Optional[int] = None,
        on_progress: Optional[ProgressCallback] = None,
        on_countdown: Optional[Callable[[int], None]] = None,
        relaunch: bool = True,
    ) -> dict:
        """
        Resolve ``pack`` and relaunch ``browser`` with its extensions.

        Returns:
            {"success", "message", "results": ResolutionReport,
             "reason" (on failure), "extension_count" (on success)}
        """
        browser_config = self.config.browser
        auto_kill = browser_config.auto_kill if auto_kill is None else auto_kill
        countdown = browser_config.countdown if countdown is None else countdown

        report = self.resolve(pack, on_progress)
        paths = report.paths

        if not paths:
            return {
                "success": False,
                "reason": "no_extensions",
                "message": "No extensions to install",
                "results": report,
            }

        if relaunch:
            if browser is None:
                return {
                    "success": False,
                    "reason": "launch_failed",
                    "message": "No supported browser found",
                    "results": report,
                }
            launch_result = self.launcher.relaunch(
                browser,
                paths,
                auto_kill=auto_kill,
                countdown=countdown,
                on_countdown=on_countdown,
                user_data_dir=browser_config.user_data_dir,
            )
        else:
            launch_result = {
                "success": True,
                "message": f"{len(paths)} extension(s) ready; browser not relaunched",
            }

        if not launch_result.get("success"):
            return {**launch_result, "results": report}

        try:
            self.registry.record_installed_pack({
                "name": pack.name,
                "file": source,
                "version": pack.resolved_version,
                "extensions": [
                    {"name": r.extension.name, "path": r.path, "status": "loaded"}
                    for r in report.ready
                ],
            })
        except Exception as e:  # recording is best-effort
            logger.warning(f"Failed to record installed pack '{pack.name}': {e}")

        return {
            **launch_result,
            "success": True,
            "results": report,
            "extension_count": len(paths),
        }
