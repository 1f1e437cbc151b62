"""Shared fixtures: throwaway extension directories and an isolated config."""

import json

import pytest

from extpack.core.config import ExtPackConfig


def write_extension(root, manifest=None, files=None):
    """Create an extension directory with a manifest and extra files."""
    root.mkdir(parents=True, exist_ok=True)
    if manifest is None:
        manifest = {"name": "X", "version": "1.0", "manifest_version": 3}
    if isinstance(manifest, dict):
        (root / "manifest.json").write_text(json.dumps(manifest, indent=2), encoding="utf-8")
    else:
        (root / "manifest.json").write_text(manifest, encoding="utf-8")

    for rel, content in (files or {}).items():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(content, bytes):
            path.write_bytes(content)
        else:
            path.write_text(content, encoding="utf-8")
    return root


@pytest.fixture
def make_extension(tmp_path):
    """Factory: make_extension("name", manifest=..., files=...) -> Path."""

    def _make(name="ext", manifest=None, files=None):
        return write_extension(tmp_path / name, manifest, files)

    return _make


@pytest.fixture
def config(tmp_path):
    """Config rooted in a temporary home directory."""
    cfg = ExtPackConfig(home=tmp_path / "home")
    cfg.ensure_dirs()
    return cfg


@pytest.fixture
def extension_writer():
    """write_extension() for tests that need a directory outside tmp_path/name."""
    return write_extension
