"""
Tests for the extension validator — manifest parsing, schema errors,
permission extraction and _locales message lookup.
"""

import json

import pytest

from extpack.core.descriptors import LocalExtension
from extpack.core.errors import ManifestMalformedError, ManifestMissingError, SchemaInvalidError
from extpack.core.manifest import (
    analyze_permissions,
    get_extension_info,
    is_extension_directory,
    resolve_message,
    validate_extension,
)


# ─────────────────────────────────────────────────────────────
# Valid manifests
# ─────────────────────────────────────────────────────────────

class TestValidManifest:

    def test_minimal_manifest(self, make_extension):
        path = make_extension()
        ext = validate_extension(path)

        assert isinstance(ext, LocalExtension)
        assert ext.type == "local"
        assert ext.name == "X"
        assert ext.version == "1.0"
        assert ext.manifest_version == 3
        assert ext.description is None
        assert ext.permissions == ()
        assert ext.icons is None
        assert ext.path == str(path.resolve())

    def test_permissions_are_union_without_duplicates(self, make_extension):
        path = make_extension(manifest={
            "name": "P", "version": "2.0", "manifest_version": 3,
            "permissions": ["tabs", "storage", "tabs"],
            "host_permissions": ["<all_urls>", "storage"],
        })
        ext = validate_extension(path)
        assert sorted(ext.permissions) == ["<all_urls>", "storage", "tabs"]

    def test_object_permissions_ignored(self, make_extension):
        path = make_extension(manifest={
            "name": "P", "version": "2.0", "manifest_version": 2,
            "permissions": ["tabs", {"usbDevices": [{"vendorId": 1}]}],
        })
        assert validate_extension(path).permissions == ("tabs",)

    def test_icons_and_description(self, make_extension):
        path = make_extension(manifest={
            "name": "I", "version": "1", "manifest_version": 3,
            "description": "Does things",
            "icons": {"16": "icon16.png", "128": "icon128.png"},
        })
        ext = validate_extension(path)
        assert ext.description == "Does things"
        assert ext.icons == {"16": "icon16.png", "128": "icon128.png"}

    def test_manifest_with_bom(self, make_extension):
        path = make_extension(manifest="\ufeff" + json.dumps(
            {"name": "B", "version": "1", "manifest_version": 3}
        ))
        assert validate_extension(path).name == "B"


# ─────────────────────────────────────────────────────────────
# Invalid manifests
# ─────────────────────────────────────────────────────────────

class TestInvalidManifest:

    def test_missing_manifest(self, tmp_path):
        with pytest.raises(ManifestMissingError):
            validate_extension(tmp_path)

    def test_malformed_json(self, make_extension):
        path = make_extension(manifest="{not json")
        with pytest.raises(ManifestMalformedError):
            validate_extension(path)

    def test_non_object_root(self, make_extension):
        path = make_extension(manifest="[1, 2, 3]")
        with pytest.raises(ManifestMalformedError):
            validate_extension(path)

    def test_every_schema_violation_reported(self, make_extension):
        path = make_extension(manifest={"name": 42, "description": "no version"})
        with pytest.raises(SchemaInvalidError) as exc:
            validate_extension(path)

        assert len(exc.value.errors) == 3
        message = str(exc.value)
        assert '"name"' in message
        assert '"version"' in message
        assert '"manifest_version"' in message

    def test_single_violation(self, make_extension):
        path = make_extension(manifest={"name": "X", "version": "1.0"})
        with pytest.raises(SchemaInvalidError) as exc:
            validate_extension(path)
        assert exc.value.errors == ['Missing "manifest_version" field']

    def test_get_extension_info_returns_none(self, make_extension, tmp_path):
        assert get_extension_info(tmp_path / "missing") is None
        assert get_extension_info(make_extension(manifest="{")) is None


# ─────────────────────────────────────────────────────────────
# Extension directory predicate
# ─────────────────────────────────────────────────────────────

class TestIsExtensionDirectory:

    def test_true_with_manifest(self, make_extension):
        assert is_extension_directory(make_extension()) is True

    def test_false_without_manifest(self, tmp_path):
        assert is_extension_directory(tmp_path) is False

    def test_false_when_manifest_is_directory(self, tmp_path):
        (tmp_path / "manifest.json").mkdir()
        assert is_extension_directory(tmp_path) is False

    def test_false_for_missing_path(self, tmp_path):
        assert is_extension_directory(tmp_path / "nope") is False


# ─────────────────────────────────────────────────────────────
# Localised names
# ─────────────────────────────────────────────────────────────

def _write_messages(root, locale, messages):
    path = root / "_locales" / locale / "messages.json"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps({k: {"message": v} for k, v in messages.items()}), encoding="utf-8")


class TestMessageLookup:

    def test_name_resolved_from_default_locale(self, make_extension):
        path = make_extension(manifest={
            "name": "__MSG_appName__", "description": "__MSG_appDesc__",
            "version": "1.0", "manifest_version": 3, "default_locale": "en",
        })
        _write_messages(path, "en", {"appName": "Ad Blocker", "appDesc": "Blocks ads"})

        ext = validate_extension(path)
        assert ext.name == "Ad Blocker"
        assert ext.description == "Blocks ads"

    def test_requested_locale_wins(self, make_extension):
        path = make_extension(manifest={
            "name": "__MSG_appName__", "version": "1.0",
            "manifest_version": 3, "default_locale": "en",
        })
        _write_messages(path, "en", {"appName": "Blocker"})
        _write_messages(path, "es", {"appName": "Bloqueador"})

        assert validate_extension(path, locale="es_MX").name == "Bloqueador"

    def test_keys_are_case_insensitive(self, make_extension):
        path = make_extension()
        _write_messages(path, "en", {"AppName": "Cased"})
        assert resolve_message(path, "__MSG_appname__") == "Cased"

    def test_missing_catalog_keeps_placeholder(self, make_extension):
        path = make_extension()
        assert resolve_message(path, "__MSG_appName__", default_locale="fr") == "__MSG_appName__"

    def test_missing_key_keeps_placeholder(self, make_extension):
        path = make_extension()
        _write_messages(path, "en", {"other": "value"})
        assert resolve_message(path, "__MSG_appName__") == "__MSG_appName__"

    def test_corrupt_catalog_never_raises(self, make_extension):
        path = make_extension()
        catalog = path / "_locales" / "en" / "messages.json"
        catalog.parent.mkdir(parents=True)
        catalog.write_text("[broken", encoding="utf-8")
        assert resolve_message(path, "__MSG_appName__") == "__MSG_appName__"

    def test_plain_values_untouched(self, tmp_path):
        assert resolve_message(tmp_path, "Plain name") == "Plain name"
        assert resolve_message(tmp_path, None) is None


# ─────────────────────────────────────────────────────────────
# Permission warnings
# ─────────────────────────────────────────────────────────────

class TestAnalyzePermissions:

    def test_all_urls_is_high(self):
        warnings = analyze_permissions(["<all_urls>"])
        assert warnings == [{
            "permission": "<all_urls>",
            "description": "Access to all websites",
            "level": "high",
        }]

    def test_native_messaging_is_high(self):
        assert analyze_permissions(["nativeMessaging"])[0]["level"] == "high"

    def test_tabs_is_medium(self):
        assert analyze_permissions(["tabs"])[0]["level"] == "medium"

    def test_harmless_permissions_ignored(self):
        assert analyze_permissions(["storage", "alarms"]) == []

    def test_empty(self):
        assert analyze_permissions(None) == []
