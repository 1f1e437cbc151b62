"""
Extension validator

Decides whether a directory is a usable browser extension and extracts the
metadata declared in its manifest.json.

/ Valida directorios de extensiones y extrae los metadatos del manifiesto.
"""

import json
import logging
import re
from pathlib import Path
from typing import Optional, Union

from extpack.core.descriptors import LocalExtension
from extpack.core.errors import (
    ManifestMalformedError,
    ManifestMissingError,
    SchemaInvalidError,
)

logger = logging.getLogger("extpack.core.manifest")

MANIFEST_FILE = "manifest.json"

_MSG_RE = re.compile(r"^__MSG_(\w+)__$")

# Permissions worth a warning before install
DANGEROUS_PERMISSIONS = {
    "<all_urls>": "Access to all websites",
    "http://*/*": "Access to all HTTP websites",
    "https://*/*": "Access to all HTTPS websites",
    "*://*/*": "Access to all websites",
    "webRequest": "Can intercept network traffic",
    "webRequestBlocking": "Can block network requests",
    "nativeMessaging": "Can run local programs",
    "management": "Can control other extensions",
    "debugger": "Can debug other pages",
    "cookies": "Can access cookies",
    "history": "Can access browsing history",
    "tabs": "Can access tab information",
}


def is_extension_directory(path: Union[str, Path]) -> bool:
    """True if ``path`` holds a manifest.json regular file."""
    try:
        return (Path(path) / MANIFEST_FILE).is_file()
    except OSError:
        return False


def _read_manifest(directory: Path) -> dict:
    manifest_path = directory / MANIFEST_FILE
    if not manifest_path.is_file():
        raise ManifestMissingError(f"No {MANIFEST_FILE} found in {directory}")

    try:
        # utf-8-sig: some editors still save manifests with a BOM
        data = json.loads(manifest_path.read_text(encoding="utf-8-sig"))
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ManifestMalformedError(f"Cannot parse {manifest_path}: {e}") from e
    except OSError as e:
        raise ManifestMissingError(f"Cannot read {manifest_path}: {e}") from e

    if not isinstance(data, dict):
        raise ManifestMalformedError(f"{manifest_path} must contain a JSON object")
    return data


def _schema_errors(manifest: dict) -> list[str]:
    errors = []
    if not manifest.get("name") or not isinstance(manifest.get("name"), str):
        errors.append('Missing or invalid "name" field')
    if not manifest.get("version") or not isinstance(manifest.get("version"), str):
        errors.append('Missing or invalid "version" field')
    if not manifest.get("manifest_version"):
        errors.append('Missing "manifest_version" field')
    return errors


def _load_messages(directory: Path, locale: str) -> dict:
    path = directory / "_locales" / locale / "messages.json"
    data = json.loads(path.read_text(encoding="utf-8-sig"))
    # Chrome matches message names case-insensitively
    return {str(k).lower(): v for k, v in data.items()}


def resolve_message(
    directory: Union[str, Path],
    value,
    locale: Optional[str] = None,
    default_locale: Optional[str] = None,
):
    """
    Resolve a ``__MSG_key__`` placeholder against the extension's
    _locales catalogs.

    Tries the requested locale, its language part, the manifest's
    default_locale and finally "en". Never raises: on any failure the
    placeholder is returned unchanged.
    """
    if not isinstance(value, str):
        return value
    match = _MSG_RE.match(value)
    if not match:
        return value

    key = match.group(1).lower()
    candidates = []
    for loc in (locale, locale.split("_")[0] if locale else None, default_locale, "en"):
        if loc and loc not in candidates:
            candidates.append(loc)

    for loc in candidates:
        try:
            entry = _load_messages(Path(directory), loc).get(key)
            if isinstance(entry, dict) and isinstance(entry.get("message"), str):
                return entry["message"]
        except (OSError, ValueError, AttributeError, TypeError) as e:
            logger.debug(f"No '{loc}' catalog for {value} in {directory}: {e}")
            continue

    return value


def validate_extension(path: Union[str, Path], locale: Optional[str] = None) -> LocalExtension:
    """
    Validate an extension directory.

    Returns:
        A ``local`` descriptor with the manifest metadata.

    Raises:
        ManifestMissingError, ManifestMalformedError, SchemaInvalidError.

    / Valida un directorio de extension y devuelve su descriptor local.
    """
    directory = Path(path).resolve()
    manifest = _read_manifest(directory)

    errors = _schema_errors(manifest)
    if errors:
        raise SchemaInvalidError(errors)

    default_locale = manifest.get("default_locale")
    name = resolve_message(directory, manifest["name"], locale, default_locale)
    description = resolve_message(directory, manifest.get("description"), locale, default_locale)

    declared = list(manifest.get("permissions") or []) + list(manifest.get("host_permissions") or [])
    permissions: dict[str, None] = {}
    for perm in declared:
        # MV2 allows object entries (e.g. usbDevices); only strings are permissions
        if isinstance(perm, str):
            permissions.setdefault(perm, None)

    icons = manifest.get("icons")

    return LocalExtension(
        path=str(directory),
        name=name,
        version=manifest["version"],
        description=description or None,
        manifest_version=manifest["manifest_version"],
        permissions=tuple(permissions),
        icons=dict(icons) if isinstance(icons, dict) and icons else None,
    )


def get_extension_info(path: Union[str, Path], locale: Optional[str] = None) -> Optional[LocalExtension]:
    """Validate ``path``; return None instead of raising."""
    try:
        return validate_extension(path, locale)
    except (ManifestMissingError, ManifestMalformedError, SchemaInvalidError) as e:
        logger.debug(f"Not a valid extension at {path}: {e}")
        return None


def analyze_permissions(permissions) -> list[dict]:
    """
    Flag permissions known to grant broad access.

    / Marca permisos peligrosos antes de instalar.
    """
    warnings = []
    for perm in permissions or ():
        description = DANGEROUS_PERMISSIONS.get(perm)
        if description is None:
            continue
        level = "high" if "all" in perm or perm == "nativeMessaging" else "medium"
        warnings.append({
            "permission": perm,
            "description": description,
            "level": level,
        })
    return warnings
