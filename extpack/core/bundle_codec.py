"""
Bundle codec

Turns a live extension directory into a portable file map and back.
Every file is gzip-compressed on its own and stored as base64 text under
its extension-relative, forward-slash path.

/ Empaqueta una extension en un mapa de archivos comprimidos y la restaura.
"""

import base64
import binascii
import gzip
import logging
import os
import stat
import zlib
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Optional, Union

from extpack.core.config import BundleConfig
from extpack.core.descriptors import BundledExtension
from extpack.core.errors import (
    BundleIOError,
    CorruptBundleError,
    ManifestMalformedError,
    ManifestMissingError,
    SchemaInvalidError,
    InvalidExtensionError,
)
from extpack.core.manifest import validate_extension

logger = logging.getLogger("extpack.core.bundle_codec")


@dataclass
class ExclusionPolicy:
    """
    Which files stay out of a bundle.

    ``names`` match any path component (so ``node_modules`` excludes the
    whole tree at any depth). ``suffixes`` match the end of the path.
    """

    names: frozenset[str] = field(default_factory=frozenset)
    suffixes: tuple[str, ...] = ()

    @classmethod
    def from_config(cls, config: Optional[BundleConfig] = None) -> "ExclusionPolicy":
        config = config or BundleConfig()
        return cls(
            names=frozenset(config.exclude_names),
            suffixes=tuple(config.exclude_suffixes),
        )

    def excludes(self, relative_path: str) -> bool:
        parts = PurePosixPath(relative_path).parts
        if any(part in self.names for part in parts):
            return True
        return relative_path.endswith(self.suffixes) if self.suffixes else False


def _encode(content: bytes) -> str:
    # mtime=0 keeps bundles byte-identical across runs
    return base64.b64encode(gzip.compress(content, mtime=0)).decode("ascii")


def _decode(entry: str, blob: str) -> bytes:
    try:
        return gzip.decompress(base64.b64decode(blob, validate=True))
    except (binascii.Error, ValueError, TypeError) as e:
        raise CorruptBundleError(entry, f"invalid base64 ({e})") from e
    except (OSError, EOFError, zlib.error) as e:
        raise CorruptBundleError(entry, f"invalid gzip data ({e})") from e


def _walk_files(root: Path, policy: ExclusionPolicy):
    """Yield (absolute path, relative posix path) for every included file."""

    def _raise(err: OSError):
        raise err

    for current, dirs, files in os.walk(root, onerror=_raise):
        current_path = Path(current)
        rel_dir = current_path.relative_to(root).as_posix()
        prefix = "" if rel_dir == "." else rel_dir + "/"

        dirs[:] = sorted(d for d in dirs if not policy.excludes(prefix + d))
        for name in sorted(files):
            rel = prefix + name
            if policy.excludes(rel):
                continue
            full = current_path / name
            # Dangling links and vanished files raise here instead of being skipped
            mode = full.stat().st_mode
            if not stat.S_ISREG(mode):
                logger.debug(f"Skipping special file {rel}")
                continue
            yield full, rel


def bundle_extension(
    extension_path: Union[str, Path],
    policy: Optional[ExclusionPolicy] = None,
) -> BundledExtension:
    """
    Bundle an extension directory into a ``bundled`` descriptor.

    Raises:
        InvalidExtensionError: the directory is not a valid extension.
        BundleIOError: a file could not be read; nothing is skipped silently.

    / Empaqueta un directorio de extension en un descriptor "bundled".
    """
    try:
        info = validate_extension(extension_path)
    except (ManifestMissingError, ManifestMalformedError, SchemaInvalidError) as e:
        raise InvalidExtensionError(f"Invalid extension at: {extension_path} ({e})") from e

    root = Path(info.path)
    policy = policy or ExclusionPolicy.from_config()

    files: dict[str, str] = {}
    try:
        for full, rel in _walk_files(root, policy):
            files[rel] = _encode(full.read_bytes())
    except OSError as e:
        raise BundleIOError(f"Cannot read {getattr(e, 'filename', None) or root}: {e}") from e

    logger.info(f"Bundled {info.name} v{info.version}: {len(files)} file(s)")

    return BundledExtension(
        name=info.name,
        version=info.version,
        description=info.description,
        manifest_version=info.manifest_version,
        permissions=info.permissions,
        icons=info.icons,
        files=files,
    )


def _safe_target(target: Path, relative_path: str) -> Path:
    rel = PurePosixPath(relative_path.replace("\\", "/"))
    if rel.is_absolute() or not rel.parts or ".." in rel.parts or ":" in rel.parts[0]:
        raise CorruptBundleError(relative_path, "path escapes the extension directory")
    return target.joinpath(*rel.parts)


def extract_bundled_extension(extension: BundledExtension, target_path: Union[str, Path]) -> Path:
    """
    Write every bundled file under ``target_path``.

    Entries are independent; directories are implied by file paths.
    On CorruptBundleError the files already written are left in place and
    the directory must be treated as unusable.
    """
    target = Path(target_path)
    target.mkdir(parents=True, exist_ok=True)

    for relative_path, blob in extension.files.items():
        destination = _safe_target(target, relative_path)
        content = _decode(relative_path, blob)
        destination.parent.mkdir(parents=True, exist_ok=True)
        destination.write_bytes(content)

    logger.debug(f"Extracted {len(extension.files)} file(s) of {extension.name} to {target}")
    return target


def calculate_bundle_size(extension) -> int:
    """Total length of the encoded blobs. Display only."""
    if not isinstance(extension, BundledExtension):
        return 0
    return sum(len(blob) for blob in extension.files.values())


def compression_stats(
    extension_path: Union[str, Path],
    extension: BundledExtension,
    policy: Optional[ExclusionPolicy] = None,
) -> dict:
    """Compare the on-disk size of the bundled files with the bundle size."""
    root = Path(extension_path).resolve()
    policy = policy or ExclusionPolicy.from_config()

    original_size = sum(full.stat().st_size for full, _ in _walk_files(root, policy))
    bundled_size = calculate_bundle_size(extension)
    ratio = bundled_size / original_size if original_size > 0 else 0

    return {
        "original_size": original_size,
        "bundled_size": bundled_size,
        "compression_ratio": ratio,
        "saved_bytes": original_size - bundled_size,
        "file_count": len(extension.files),
    }
