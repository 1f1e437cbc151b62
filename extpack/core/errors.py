"""
ext-pack error taxonomy.

Codec and validator failures are exceptions. Installer outcomes such as
``no_extensions`` or ``browser_running`` are reported as result dicts
(see extpack.core.installer and extpack.core.browser).
"""

from typing import Optional


class ExtPackError(Exception):
    """Base class for all ext-pack errors."""

    # Short remediation hint shown by the CLI, if any
    hint: Optional[str] = None


# ── Extension validator ──

class ManifestMissingError(ExtPackError):
    hint = "Point ext-pack at the directory that contains manifest.json."


class ManifestMalformedError(ExtPackError):
    pass


class SchemaInvalidError(ExtPackError):
    """Manifest parsed but required fields are missing or wrong."""

    def __init__(self, errors: list[str]):
        self.errors = list(errors)
        super().__init__(", ".join(self.errors))


# ── Bundle codec ──

class InvalidExtensionError(ExtPackError):
    pass


class BundleIOError(ExtPackError, OSError):
    """A file inside the extension could not be read while bundling."""


class CorruptBundleError(ExtPackError):
    def __init__(self, entry: str, reason: str):
        self.entry = entry
        super().__init__(f"Corrupt bundle entry '{entry}': {reason}")


# ── Pack codec ──

class InvalidPackFileError(ExtPackError):
    """Pack document failed validation. ``errors`` lists every violation."""

    hint = "Fix every listed problem and try again."

    def __init__(self, errors: list[str], path: Optional[str] = None):
        self.errors = list(errors)
        self.path = path
        where = f" {path}" if path else ""
        super().__init__(f"Invalid pack file{where}: {', '.join(self.errors)}")


class UnknownSchemaVersionError(ExtPackError):
    def __init__(self, version):
        self.version = version
        super().__init__(f"Cannot upgrade pack from unknown version: {version!r}")


# ── Remote release fetcher ──

class FetchError(ExtPackError):
    pass


class ReleaseNotFoundError(FetchError):
    hint = "Check the repository name and release tag."


class RateLimitedError(FetchError):
    hint = "GitHub rate limit reached. Wait a while or set GITHUB_TOKEN."


class NetworkUnreachableError(FetchError):
    hint = "Check your internet connection."


# ── Registry publisher ──

class PublishError(ExtPackError):
    pass


class AuthenticationRequiredError(PublishError):
    hint = "Set GITHUB_TOKEN or run: gh auth login"


class ReleaseExistsError(PublishError):
    hint = "Bump the pack version or pass --tag with a different tag."
