"""
Extension scanner — find extensions below a directory.

Stops descending as soon as a directory with a manifest is found, so an
extension's own subfolders are never reported as separate extensions.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Optional, Union

from extpack.core.descriptors import LocalExtension
from extpack.core.errors import ExtPackError
from extpack.core.manifest import is_extension_directory, validate_extension

logger = logging.getLogger("extpack.core.scanner")

DEFAULT_EXCLUDE_DIRS = ("node_modules", ".git", "dist", "build", ".next")


@dataclass
class ScanResult:
    extensions: list[LocalExtension] = field(default_factory=list)
    # [{"path": ..., "error": ...}]
    errors: list[dict] = field(default_factory=list)


def scan_directory(
    root: Union[str, Path],
    max_depth: int = 3,
    exclude_dirs: Optional[Iterable[str]] = None,
) -> ScanResult:
    """
    Recursively scan ``root`` for extension directories.

    / Busca extensiones recursivamente bajo un directorio.
    """
    excluded = set(DEFAULT_EXCLUDE_DIRS if exclude_dirs is None else exclude_dirs)
    result = ScanResult()

    def _scan(current: Path, depth: int):
        if depth > max_depth:
            return

        if is_extension_directory(current):
            try:
                result.extensions.append(validate_extension(current))
            except ExtPackError as e:
                result.errors.append({"path": str(current), "error": str(e)})
            return

        try:
            children = sorted(p for p in current.iterdir() if p.is_dir())
        except OSError as e:
            result.errors.append({
                "path": str(current),
                "error": f"Failed to scan directory: {e}",
            })
            return

        for child in children:
            if child.name not in excluded:
                _scan(child, depth + 1)

    _scan(Path(root), 0)
    logger.debug(
        f"Scanned {root}: {len(result.extensions)} extension(s), {len(result.errors)} error(s)"
    )
    return result
