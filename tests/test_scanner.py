"""Tests for the extension scanner."""

from extpack.core.scanner import scan_directory


class TestScanDirectory:

    def test_finds_extensions_at_several_depths(self, make_extension, tmp_path):
        make_extension("projects/adblock", manifest={"name": "Ad", "version": "1", "manifest_version": 3})
        make_extension("projects/work/tabs", manifest={"name": "Tabs", "version": "2", "manifest_version": 3})

        result = scan_directory(tmp_path / "projects")

        assert sorted(e.name for e in result.extensions) == ["Ad", "Tabs"]
        assert result.errors == []

    def test_does_not_descend_into_an_extension(self, make_extension, tmp_path):
        make_extension("root/outer", manifest={"name": "Outer", "version": "1", "manifest_version": 3})
        make_extension("root/outer/vendor/inner", manifest={"name": "Inner", "version": "1", "manifest_version": 3})

        result = scan_directory(tmp_path / "root")
        assert [e.name for e in result.extensions] == ["Outer"]

    def test_root_itself_is_an_extension(self, make_extension):
        path = make_extension("single")
        result = scan_directory(path)
        assert [e.path for e in result.extensions] == [str(path.resolve())]

    def test_default_exclusions(self, make_extension, tmp_path):
        make_extension("root/node_modules/dep")
        make_extension("root/.git/hooks")
        make_extension("root/dist/built")

        assert scan_directory(tmp_path / "root").extensions == []

    def test_custom_exclusions(self, make_extension, tmp_path):
        make_extension("root/dist/built")
        result = scan_directory(tmp_path / "root", exclude_dirs=["skip"])
        assert len(result.extensions) == 1

    def test_max_depth(self, make_extension, tmp_path):
        make_extension("root/a/b/c/d/deep")

        assert scan_directory(tmp_path / "root").extensions == []
        assert len(scan_directory(tmp_path / "root", max_depth=5).extensions) == 1

    def test_invalid_manifest_reported_and_scan_continues(self, make_extension, tmp_path):
        make_extension("root/broken", manifest="{nope")
        make_extension("root/good")

        result = scan_directory(tmp_path / "root")

        assert [e.name for e in result.extensions] == ["X"]
        assert len(result.errors) == 1
        assert result.errors[0]["path"].endswith("broken")

    def test_missing_root(self, tmp_path):
        result = scan_directory(tmp_path / "absent")
        assert result.extensions == []
        assert "Failed to scan directory" in result.errors[0]["error"]
