"""
Pack codec

Builds, validates, reads and writes ``.extpack`` documents, upgrades older
schema versions, and encodes whole packs into share URLs.

Document shape (UTF-8 JSON):

    {
      "v": 3,
      "name": "...",
      "description": "...",
      "author": "..." | {"name": "...", "github": "..."},
      "version": "1.0.0",          (optional)
      "tags": ["..."],             (optional)
      "created": "YYYY-MM-DD",
      "updated": "ISO timestamp",  (optional)
      "extensions": [ descriptor, ... ]
    }

/ Codec de packs: crear, validar, leer, escribir y compartir.
"""

import base64
import binascii
import dataclasses
import json
import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Optional, Union
from urllib.parse import unquote, urlsplit

from extpack.core.descriptors import (
    DESCRIPTOR_TYPES,
    ExtensionDescriptor,
    descriptor_from_dict,
)
from extpack.core.errors import InvalidPackFileError, UnknownSchemaVersionError

logger = logging.getLogger("extpack.core.pack_codec")

CURRENT_VERSION = 3
SUPPORTED_VERSIONS = (2, 3)
DEFAULT_PACK_VERSION = "1.0.0"
DEFAULT_SHARE_URL = "https://ifaka.github.io/extension-pack-hub"
PACK_SUFFIX = ".extpack"


@dataclass
class Pack:
    """An in-memory pack document."""

    name: str
    description: str = ""
    author: Union[str, dict, None] = None
    extensions: list[ExtensionDescriptor] = field(default_factory=list)
    v: int = CURRENT_VERSION
    version: Optional[str] = None
    tags: list[str] = field(default_factory=list)
    created: Optional[str] = None
    updated: Optional[str] = None

    @property
    def resolved_version(self) -> str:
        return self.version or DEFAULT_PACK_VERSION

    @property
    def author_name(self) -> str:
        if isinstance(self.author, dict):
            return self.author.get("name") or self.author.get("github") or ""
        return self.author or ""

    def to_dict(self) -> dict:
        data = {
            "v": self.v,
            "name": self.name,
            "description": self.description,
            "author": self.author,
        }
        if self.version is not None:
            data["version"] = self.version
        if self.tags:
            data["tags"] = list(self.tags)
        if self.created is not None:
            data["created"] = self.created
        if self.updated is not None:
            data["updated"] = self.updated
        data["extensions"] = [ext.to_dict() for ext in self.extensions]
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Pack":
        """Build a Pack from a document that already passed validate()."""
        tags: dict[str, None] = {}
        for tag in data.get("tags") or ():
            if isinstance(tag, str):
                tags.setdefault(tag, None)
        return cls(
            v=data["v"],
            name=data["name"],
            description=data.get("description") or "",
            author=data.get("author"),
            version=data.get("version"),
            tags=list(tags),
            created=data.get("created"),
            updated=data.get("updated"),
            extensions=[descriptor_from_dict(ext) for ext in data["extensions"]],
        )


def create_pack(
    name: str,
    description: str,
    author,
    extensions: list,
    version: Optional[str] = None,
    tags: Optional[list[str]] = None,
) -> Pack:
    """Build a new pack stamped with the current schema version. No validation."""
    return Pack(
        v=CURRENT_VERSION,
        name=name,
        description=description,
        author=author,
        extensions=list(extensions),
        version=version,
        tags=list(tags or []),
        created=date.today().isoformat(),
    )


def _is_string_list(value) -> bool:
    return isinstance(value, list) and all(isinstance(item, str) for item in value)


# Type-specific required field -> missing-field message
_REQUIRED_FIELDS = {
    "store": ("id", "store ID is required"),
    "github": ("repo", "GitHub repo is required"),
    "local": ("path", "local path is required"),
}


def _descriptor_errors(index: int, ext) -> list[str]:
    if not isinstance(ext, dict):
        return [f"Extension {index}: must be an object"]

    errors = []
    ext_type = ext.get("type")
    if ext_type not in DESCRIPTOR_TYPES:
        errors.append(
            f"Extension {index}: invalid type (must be 'store', 'github', 'local', or 'bundled')"
        )
    name = ext.get("name")
    if not name:
        errors.append(f"Extension {index}: name is required")
    elif not isinstance(name, str):
        errors.append(f"Extension {index}: name must be a string")

    if ext_type in _REQUIRED_FIELDS:
        key, missing = _REQUIRED_FIELDS[ext_type]
        value = ext.get(key)
        if not value:
            errors.append(f"Extension {index}: {missing}")
        elif not isinstance(value, str):
            errors.append(f"Extension {index}: '{key}' must be a string")
    elif ext_type == "bundled":
        files = ext.get("files")
        if not isinstance(files, dict):
            errors.append(f"Extension {index}: bundled type requires 'files' object")
        elif not all(isinstance(blob, str) for blob in files.values()):
            errors.append(f"Extension {index}: 'files' values must be strings")
        if not ext.get("version"):
            errors.append(f"Extension {index}: bundled type requires 'version' field")

    if "permissions" in ext and not _is_string_list(ext["permissions"]):
        errors.append(f"Extension {index}: 'permissions' must be a list of strings")
    if ext.get("icons") is not None and not isinstance(ext["icons"], dict):
        errors.append(f"Extension {index}: 'icons' must be an object")
    return errors


def validate(pack: Union[Pack, dict]) -> list[str]:
    """
    Check a pack and return every violation found.

    An empty list means the pack is valid.
    """
    data = pack.to_dict() if isinstance(pack, Pack) else pack
    if not isinstance(data, dict):
        return ["Pack must be a JSON object"]

    errors = []

    v = data.get("v")
    if not isinstance(v, int) or isinstance(v, bool) or v not in SUPPORTED_VERSIONS:
        errors.append("Invalid or missing version (must be 2 or 3)")

    name = data.get("name")
    if not name or not isinstance(name, str):
        errors.append("Pack name is required")

    if "tags" in data and not _is_string_list(data["tags"]):
        errors.append("Tags must be a list of strings")

    extensions = data.get("extensions")
    if not isinstance(extensions, list):
        errors.append("Extensions array is required")
    else:
        for i, ext in enumerate(extensions):
            errors.extend(_descriptor_errors(i, ext))

    return errors


def upgrade(pack: Pack) -> Pack:
    """
    Migrate a pack to the current schema version.

    v2 and v3 share the descriptor shape, so upgrading only bumps the
    version tag and stamps ``updated``.
    """
    if pack.v == CURRENT_VERSION:
        return pack
    if pack.v == 2:
        logger.info(f"Upgrading pack '{pack.name}' from v2 to v{CURRENT_VERSION}")
        return dataclasses.replace(
            pack,
            v=CURRENT_VERSION,
            updated=datetime.now(timezone.utc).isoformat(),
        )
    raise UnknownSchemaVersionError(pack.v)


def read_pack_file(path: Union[str, Path]) -> Pack:
    """
    Read, validate and (if needed) upgrade a pack file.

    Raises:
        InvalidPackFileError: unparseable or invalid document.
        OSError: the file cannot be read.
    """
    path = Path(path)
    try:
        data = json.loads(path.read_text(encoding="utf-8-sig"))
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise InvalidPackFileError([f"Malformed JSON: {e}"], str(path)) from e

    errors = validate(data)
    if errors:
        raise InvalidPackFileError(errors, str(path))

    pack = Pack.from_dict(data)
    if pack.v != CURRENT_VERSION:
        pack = upgrade(pack)
    return pack


def write_pack_file(path: Union[str, Path], pack: Pack) -> Path:
    """Validate and write a pack as indented JSON. Refuses invalid packs."""
    errors = validate(pack)
    if errors:
        raise InvalidPackFileError(errors, str(path))

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(
        json.dumps(pack.to_dict(), indent=2, ensure_ascii=False) + "\n",
        encoding="utf-8",
    )
    logger.info(f"Wrote pack '{pack.name}' ({len(pack.extensions)} extension(s)) to {path}")
    return path


# ── Share links ──

def encode(pack: Pack) -> str:
    """Serialize a pack to base64 text for a URL fragment."""
    payload = json.dumps(pack.to_dict(), ensure_ascii=False, separators=(",", ":"))
    return base64.b64encode(payload.encode("utf-8")).decode("ascii")


def decode(encoded: str) -> Optional[Pack]:
    """
    Decode a share payload. Returns None for anything malformed.

    Used speculatively on arbitrary links, so it never raises.
    """
    try:
        text = unquote(encoded.strip())
        # Some share targets strip base64 padding
        text += "=" * (-len(text) % 4)
        data = json.loads(base64.b64decode(text, validate=True).decode("utf-8"))
    except (AttributeError, binascii.Error, ValueError, UnicodeDecodeError) as e:
        logger.debug(f"Failed to decode pack: {e}")
        return None

    if validate(data):
        logger.debug("Decoded payload is not a valid pack")
        return None
    try:
        return Pack.from_dict(data)
    except (ValueError, KeyError, TypeError) as e:
        logger.debug(f"Failed to build pack from payload: {e}")
        return None


def generate_url(pack: Pack, base_url: str = DEFAULT_SHARE_URL) -> str:
    return f"{base_url.rstrip('/')}/#{encode(pack)}"


def parse_url(url: str) -> Optional[Pack]:
    """Extract a pack from a share URL's fragment, or None."""
    try:
        fragment = urlsplit(url).fragment
    except (AttributeError, ValueError):
        return None
    if not fragment:
        return None
    return decode(fragment)


def pack_filename(name: str) -> str:
    """File name for a pack: lowercase slug plus .extpack."""
    slug = re.sub(r"[^A-Za-z0-9._-]+", "-", name).strip("-").lower()
    return f"{slug or 'pack'}{PACK_SUFFIX}"
