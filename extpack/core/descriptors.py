"""
Extension descriptors — one entry of a pack.

A descriptor is one of four shapes, selected by its ``type`` tag:

    local    path on this machine
    github   GitHub release of owner/repo (optional tag)
    store    Chrome Web Store id (manual install only)
    bundled  files embedded in the pack itself

Each shape is its own dataclass carrying only the fields it needs.
"""

from dataclasses import dataclass, field
from typing import ClassVar, Optional, Union


@dataclass(frozen=True, kw_only=True)
class _Descriptor:
    type: ClassVar[str] = ""

    name: str
    version: Optional[str] = None
    description: Optional[str] = None
    manifest_version: Optional[int] = None
    permissions: tuple[str, ...] = ()
    icons: Optional[dict[str, str]] = None

    def _common_dict(self) -> dict:
        data = {"type": self.type, "name": self.name}
        if self.version is not None:
            data["version"] = self.version
        if self.description is not None:
            data["description"] = self.description
        if self.manifest_version is not None:
            data["manifestVersion"] = self.manifest_version
        if self.permissions:
            data["permissions"] = list(self.permissions)
        if self.icons:
            data["icons"] = dict(self.icons)
        return data

    def to_dict(self) -> dict:
        return self._common_dict()


@dataclass(frozen=True, kw_only=True)
class LocalExtension(_Descriptor):
    type: ClassVar[str] = "local"

    path: str

    def to_dict(self) -> dict:
        return {**self._common_dict(), "path": self.path}


@dataclass(frozen=True, kw_only=True)
class GithubExtension(_Descriptor):
    type: ClassVar[str] = "github"

    repo: str
    release_tag: Optional[str] = None

    @property
    def owner(self) -> str:
        return self.repo.split("/", 1)[0]

    @property
    def repo_name(self) -> str:
        return self.repo.split("/", 1)[-1]

    @property
    def tag(self) -> str:
        return self.release_tag or "latest"

    def to_dict(self) -> dict:
        data = {**self._common_dict(), "repo": self.repo}
        if self.release_tag:
            data["releaseTag"] = self.release_tag
        return data


@dataclass(frozen=True, kw_only=True)
class StoreExtension(_Descriptor):
    type: ClassVar[str] = "store"

    store_id: str

    @property
    def store_url(self) -> str:
        return f"https://chromewebstore.google.com/detail/{self.store_id}"

    def to_dict(self) -> dict:
        return {**self._common_dict(), "id": self.store_id}


@dataclass(frozen=True, kw_only=True)
class BundledExtension(_Descriptor):
    type: ClassVar[str] = "bundled"

    version: str
    # relative posix path -> base64(gzip(file bytes))
    files: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {**self._common_dict(), "files": dict(self.files)}


ExtensionDescriptor = Union[LocalExtension, GithubExtension, StoreExtension, BundledExtension]

DESCRIPTOR_TYPES: dict[str, type] = {
    cls.type: cls
    for cls in (LocalExtension, GithubExtension, StoreExtension, BundledExtension)
}


def _unique(values) -> tuple[str, ...]:
    seen: dict[str, None] = {}
    for value in values or ():
        if isinstance(value, str):
            seen.setdefault(value, None)
    return tuple(seen)


def descriptor_from_dict(data: dict) -> ExtensionDescriptor:
    """
    Build a descriptor from its on-disk (camelCase) shape.

    Raises ValueError for unknown types or missing type-specific fields.
    Callers that need every problem at once should run
    pack_codec.validate() first.
    """
    if not isinstance(data, dict):
        raise ValueError("Extension entry must be an object")

    ext_type = data.get("type")
    if ext_type not in DESCRIPTOR_TYPES:
        raise ValueError(f"Unknown extension type: {ext_type!r}")
    if not data.get("name"):
        raise ValueError("Extension name is required")

    common = {
        "name": data["name"],
        "version": data.get("version"),
        "description": data.get("description"),
        "manifest_version": data.get("manifestVersion"),
        "permissions": _unique(data.get("permissions")),
        "icons": data.get("icons") or None,
    }

    try:
        if ext_type == "local":
            return LocalExtension(path=data["path"], **common)
        if ext_type == "github":
            return GithubExtension(
                repo=data["repo"],
                release_tag=data.get("releaseTag"),
                **common,
            )
        if ext_type == "store":
            return StoreExtension(store_id=data["id"], **common)

        if not isinstance(data.get("files"), dict):
            raise ValueError("Bundled extension requires a 'files' object")
        if not common["version"]:
            raise ValueError("Bundled extension requires a 'version'")
        return BundledExtension(files=dict(data["files"]), **common)
    except KeyError as e:
        raise ValueError(f"{ext_type} extension requires '{e.args[0]}'") from None
