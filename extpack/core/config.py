"""
ext-pack Configuration Manager

Handles loading, saving, and validating configuration.
The config object is passed explicitly to the installer and the CLI,
so nothing reads the home directory behind the caller's back.
"""

import json
import os
from dataclasses import dataclass, field, asdict
from typing import Optional
from pathlib import Path


# Default config location: ~/.ext-pack/config.json
# EXT_PACK_HOME overrides the whole tree (used by tests and portable installs)
DEFAULT_HOME = Path(os.environ.get("EXT_PACK_HOME", str(Path.home() / ".ext-pack")))
CONFIG_FILENAME = "config.json"


@dataclass
class BrowserConfig:
    """Browser selection and relaunch behavior."""

    # First installed browser in this list wins when --browser is omitted
    preference: list[str] = field(default_factory=lambda: [
        "brave", "chrome", "chromium", "edge",
    ])

    # Kill a running browser before relaunching it with the pack loaded
    auto_kill: bool = True

    # Seconds to count down before killing the browser
    countdown: int = 3

    # Optional isolated profile directory (--user-data-dir)
    user_data_dir: Optional[str] = None


@dataclass
class BundleConfig:
    """Files left out of bundled extensions."""

    # Matched against every path component (directories and file names)
    exclude_names: list[str] = field(default_factory=lambda: [
        # Version control
        ".git", ".svn", ".hg",
        # Dependencies and lockfiles
        "node_modules", "package-lock.json", "yarn.lock", "pnpm-lock.yaml",
        # OS metadata
        ".DS_Store", "Thumbs.db",
        # Docs and licenses
        "README.md", "CLAUDE.md", "LICENSE", "LICENSE.md", "LICENSE.txt",
    ])

    # Matched against the end of the relative path
    exclude_suffixes: list[str] = field(default_factory=lambda: [".map"])


@dataclass
class RegistryConfig:
    """Remote pack registry and share links."""

    index_url: str = "https://raw.githubusercontent.com/ext-pack/registry/main/registry.json"
    share_base_url: str = "https://ifaka.github.io/extension-pack-hub"

    # Repository that receives published packs (releases + registry.json PRs)
    publish_owner: str = "IFAKA"
    publish_repo: str = "ext-pack-registry"

    # In-memory lifetime of the fetched registry index (seconds)
    cache_ttl: int = 3600

    # HTTP timeout for registry and GitHub requests (seconds)
    timeout: float = 30.0


@dataclass
class ExtPackConfig:
    """Root configuration for ext-pack."""

    browser: BrowserConfig = field(default_factory=BrowserConfig)
    bundle: BundleConfig = field(default_factory=BundleConfig)
    registry: RegistryConfig = field(default_factory=RegistryConfig)

    # Root of config, cache and created packs
    home: Path = field(default=DEFAULT_HOME, repr=False)

    @property
    def config_file(self) -> Path:
        return self.home / CONFIG_FILENAME

    @property
    def cache_dir(self) -> Path:
        """Downloaded releases and extracted bundles."""
        return self.home / "downloads"

    @property
    def packs_dir(self) -> Path:
        """Packs created on this machine."""
        return self.home / "packs"

    @property
    def installed_file(self) -> Path:
        return self.home / "installed.json"

    def ensure_dirs(self):
        """Create necessary directories."""
        self.home.mkdir(parents=True, exist_ok=True)
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        self.packs_dir.mkdir(parents=True, exist_ok=True)

    def save(self, path: Optional[Path] = None):
        """Save configuration to JSON file."""
        config_path = path or self.config_file
        config_path.parent.mkdir(parents=True, exist_ok=True)

        data = asdict(self)
        # The home directory is where the file lives, not part of it
        data.pop("home", None)

        with open(config_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)

    @classmethod
    def load(cls, path: Optional[Path] = None, home: Optional[Path] = None) -> "ExtPackConfig":
        """Load configuration from JSON file. Creates default if not found."""
        home = home or (path.parent if path else DEFAULT_HOME)
        config_path = path or home / CONFIG_FILENAME

        if not config_path.exists():
            config = cls(home=home)
            config.save(config_path)
            return config

        try:
            with open(config_path, "r", encoding="utf-8") as f:
                data = json.load(f)

            browser = BrowserConfig(**data.get("browser", {}))
            bundle = BundleConfig(**data.get("bundle", {}))
            registry = RegistryConfig(**data.get("registry", {}))

            return cls(
                browser=browser,
                bundle=bundle,
                registry=registry,
                home=home,
            )
        except (json.JSONDecodeError, TypeError, KeyError, AttributeError):
            # Corrupted or outdated config, fall back to defaults
            config = cls(home=home)
            config.save(config_path)
            return config
