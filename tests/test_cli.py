"""
End-to-end tests for the ext-pack command line.

Every test runs against a temporary --home; browsers and the remote
registry are replaced where a command would reach them.
"""

import json

import pytest

from extpack import cli
from extpack.core.browser import Browser
from extpack.core.pack_codec import parse_url


@pytest.fixture
def home(tmp_path):
    return tmp_path / "home"


@pytest.fixture
def run(home, capsys):
    """run("create", ...) -> (exit code, stdout, stderr)"""

    def _run(*argv):
        code = cli.main(["--home", str(home), *[str(a) for a in argv]])
        out, err = capsys.readouterr()
        return code, out, err

    return _run


@pytest.fixture
def run_json(run):
    def _run(*argv):
        code, out, _ = run(*argv, "--json")
        return code, json.loads(out)

    return _run


# ─────────────────────────────────────────────────────────────
# create
# ─────────────────────────────────────────────────────────────

class TestCreate:

    def test_create_from_directories(self, run_json, make_extension, home):
        a = make_extension("a", manifest={"name": "Alpha", "version": "1.0", "manifest_version": 3})
        b = make_extension("b", manifest={"name": "Beta", "version": "2.0", "manifest_version": 3})

        code, data = run_json("create", "My Pack", a, b, "--author", "ana", "--tag", "dev")

        assert code == 0
        assert data["file"] == str(home / "packs" / "my-pack.extpack")
        assert [e["name"] for e in data["extensions"]] == ["Alpha", "Beta"]
        written = json.loads((home / "packs" / "my-pack.extpack").read_text())
        assert written["v"] == 3
        assert written["tags"] == ["dev"]
        assert written["extensions"][0]["type"] == "local"

    def test_create_bundled_with_output(self, run, make_extension, tmp_path):
        a = make_extension("a", files={"background.js": "console.log(1)"})
        out_file = tmp_path / "out" / "bundle.extpack"

        code, out, _ = run("create", "Bundle", a, "--bundle", "-o", out_file)

        assert code == 0
        assert "✓ Created" in out
        assert "[bundled]" in out
        written = json.loads(out_file.read_text())
        assert set(written["extensions"][0]["files"]) == {"manifest.json", "background.js"}

    def test_create_with_scan(self, run_json, make_extension, tmp_path):
        make_extension("dev/one")
        make_extension("dev/two")
        make_extension("dev/broken", manifest="{")

        code, data = run_json("create", "Scanned", "--scan", tmp_path / "dev")

        assert code == 0
        assert len(data["extensions"]) == 2
        assert len(data["warnings"]) == 1

    def test_create_without_extensions(self, run, tmp_path):
        (tmp_path / "empty").mkdir()
        code, _, err = run("create", "Nothing", "--scan", tmp_path / "empty")

        assert code == 1
        assert "No extensions found" in err
        assert "Hint:" in err

    def test_create_from_invalid_directory(self, run_json, make_extension):
        bad = make_extension("bad", manifest={"name": "Bad"})
        code, data = run_json("create", "Bad", bad)

        assert code == 1
        assert data["success"] is False
        assert len(data["errors"]) == 2


# ─────────────────────────────────────────────────────────────
# info / share
# ─────────────────────────────────────────────────────────────

class TestInfoAndShare:

    @pytest.fixture
    def pack_file(self, run, make_extension, tmp_path):
        ext = make_extension("a", manifest={
            "name": "Alpha", "version": "1.0", "manifest_version": 3,
            "permissions": ["<all_urls>"],
        })
        path = tmp_path / "alpha.extpack"
        run("create", "Alpha Pack", ext, "--description", "Just alpha", "-o", path)
        return path

    def test_info(self, run, pack_file):
        code, out, _ = run("info", pack_file)

        assert code == 0
        assert "Alpha Pack" in out
        assert "Just alpha" in out
        assert "Access to all websites" in out

    def test_info_json(self, run_json, pack_file):
        code, data = run_json("info", pack_file)
        assert code == 0
        assert data["name"] == "Alpha Pack"
        assert data["extensions"][0]["permissions"] == ["<all_urls>"]

    def test_info_lists_every_problem(self, run, tmp_path):
        bad = tmp_path / "bad.extpack"
        bad.write_text(json.dumps({"v": 3, "name": "", "extensions": [{"type": "bogus"}]}))

        code, _, err = run("info", bad)

        assert code == 1
        assert "Pack name is required" in err
        assert "invalid type" in err

    def test_info_mistyped_tags_json(self, run_json, tmp_path):
        bad = tmp_path / "bad.extpack"
        bad.write_text(json.dumps({"v": 3, "name": "P", "extensions": [], "tags": 5}))

        code, data = run_json("info", bad)

        assert code == 1
        assert data["success"] is False
        assert data["errors"] == ["Tags must be a list of strings"]

    def test_share_url_roundtrip(self, run_json, pack_file):
        code, data = run_json("share", pack_file, "--base-url", "https://hub.test")

        assert code == 0
        assert data["url"].startswith("https://hub.test/#")

        assert parse_url(data["url"]).name == "Alpha Pack"


# ─────────────────────────────────────────────────────────────
# install / list / remove
# ─────────────────────────────────────────────────────────────

class TestInstallListRemove:

    def test_install_without_relaunch(self, run_json, make_extension, tmp_path):
        ext = make_extension("a")
        pack_path = tmp_path / "p.extpack"
        run_json("create", "Local", ext, "-o", pack_path)

        code, data = run_json("install", pack_path, "--no-relaunch")

        assert code == 0
        assert data["success"] is True
        assert data["results"]["ready"][0]["status"] == "ready"

        code, listing = run_json("list")
        assert [p["name"] for p in listing["installed"]] == ["Local"]

        code, removed = run_json("remove", "Local")
        assert removed == {"success": True, "name": "Local", "action": "removed"}

        code, data = run_json("remove", "Local")
        assert code == 1
        assert "not installed" in data["error"]

    def test_install_from_share_url(self, run_json, make_extension, tmp_path):
        ext = make_extension("a")
        pack_path = tmp_path / "p.extpack"
        run_json("create", "Shared", ext, "-o", pack_path)
        _, shared = run_json("share", pack_path)

        code, data = run_json("install", shared["url"], "--no-relaunch")

        assert code == 0
        assert data["extension_count"] == 1

    def test_install_with_browser(self, run, make_extension, tmp_path, monkeypatch):
        ext = make_extension("a")
        pack_path = tmp_path / "p.extpack"
        run("create", "Launch", ext, "-o", pack_path)
        brave = Browser(name="brave", path="/usr/bin/brave", process_name="brave", display_name="Brave")
        launched = []

        monkeypatch.setattr(cli, "get_browser", lambda name, preference: brave)
        monkeypatch.setattr(
            "extpack.core.browser.BrowserLauncher.relaunch",
            lambda self, browser, paths, **kw: launched.append(paths) or {"success": True, "pid": 1, "message": "Brave launched with 1 extension(s)"},
        )

        code, out, _ = run("install", pack_path)

        assert code == 0
        assert "✓ Brave launched" in out
        assert launched == [[str(ext.resolve())]]

    def test_install_no_browser(self, run, make_extension, tmp_path, monkeypatch):
        ext = make_extension("a")
        pack_path = tmp_path / "p.extpack"
        run("create", "P", ext, "-o", pack_path)
        monkeypatch.setattr(cli, "get_browser", lambda name, preference: None)

        code, _, err = run("install", pack_path, "-b", "edge")

        assert code == 1
        assert "No supported browser found (edge)" in err

    def test_install_store_only_pack(self, run, tmp_path):
        pack_path = tmp_path / "store.extpack"
        pack_path.write_text(json.dumps({
            "v": 3, "name": "Store", "extensions": [{"type": "store", "name": "uBlock", "id": "abc"}],
        }))

        code, out, err = run("install", pack_path, "--no-relaunch")

        assert code == 1
        assert "chromewebstore.google.com/detail/abc" in out
        assert "No extensions to install" in err

    def test_store_only_pack_without_browser(self, run_json, tmp_path, monkeypatch):
        pack_path = tmp_path / "store.extpack"
        pack_path.write_text(json.dumps({
            "v": 3, "name": "Store", "extensions": [{"type": "store", "name": "uBlock", "id": "abc"}],
        }))
        monkeypatch.setattr(cli, "get_browser", lambda name, preference: None)

        code, data = run_json("install", pack_path)

        assert code == 1
        assert data["reason"] == "no_extensions"
        assert data["results"]["manual"][0]["id"] == "abc"

    def test_install_closes_installer(self, run_json, make_extension, tmp_path, monkeypatch):
        ext = make_extension("a")
        pack_path = tmp_path / "p.extpack"
        run_json("create", "P", ext, "-o", pack_path)
        closed = []
        monkeypatch.setattr("extpack.core.installer.PackInstaller.close", lambda self: closed.append(True))

        code, _ = run_json("install", pack_path, "--no-relaunch")

        assert code == 0
        assert closed == [True]

    def test_list_empty(self, run):
        code, out, _ = run("list")
        assert code == 0
        assert out.count("(none)") == 2


# ─────────────────────────────────────────────────────────────
# publish
# ─────────────────────────────────────────────────────────────

class FakePublisher:
    published = []

    def __init__(self, token, config=None):
        self.token = token

    def publish(self, pack_path, tag=None):
        FakePublisher.published.append((str(pack_path), tag, self.token))
        return {
            "release_url": "https://github.test/release/1",
            "download_url": "https://github.test/download/p.extpack",
            "pr_url": "https://github.test/pull/2",
            "metadata": {"id": "p", "name": "P", "version": "1.0.0"},
        }

    def close(self):
        pass


class TestPublish:

    def test_publish(self, run, make_extension, tmp_path, monkeypatch):
        ext = make_extension("a")
        pack_path = tmp_path / "p.extpack"
        run("create", "P", ext, "-o", pack_path)
        FakePublisher.published = []
        monkeypatch.setattr(cli, "get_github_token", lambda: "gho_x")
        monkeypatch.setattr(cli, "PackPublisher", FakePublisher)

        code, out, _ = run("publish", pack_path, "--tag", "p-v1")

        assert code == 0
        assert "✓ Published P v1.0.0" in out
        assert "https://github.test/pull/2" in out
        assert FakePublisher.published == [(str(pack_path), "p-v1", "gho_x")]

    def test_publish_without_auth(self, run_json, tmp_path, monkeypatch):
        def no_gh(args, **kw):
            raise FileNotFoundError("gh")

        monkeypatch.delenv("GITHUB_TOKEN", raising=False)
        monkeypatch.setattr("extpack.core.publisher.subprocess.run", no_gh)

        code, data = run_json("publish", tmp_path / "p.extpack")

        assert code == 1
        assert data["success"] is False
        assert "gh auth login" in data["hint"]


# ─────────────────────────────────────────────────────────────
# search
# ─────────────────────────────────────────────────────────────

class FakeRegistryClient:
    def __init__(self, config=None):
        self.closed = False

    def search_packs(self, query, tag=None, sort_by="downloads", limit=None):
        packs = [{"id": "privacy", "name": "Privacy Kit", "downloads": 3, "description": "Blocks trackers"}]
        return [p for p in packs if query.lower() in p["name"].lower()]

    def close(self):
        self.closed = True


class TestSearch:

    @pytest.fixture(autouse=True)
    def fake_registry(self, monkeypatch):
        monkeypatch.setattr(cli, "RegistryClient", FakeRegistryClient)

    def test_search(self, run):
        code, out, _ = run("search", "privacy")
        assert code == 0
        assert "privacy — Privacy Kit (3 downloads)" in out

    def test_search_json_no_results(self, run_json):
        code, data = run_json("search", "zzz")
        assert data == {"success": True, "results": [], "count": 0}

    def test_invalid_sort(self, run):
        with pytest.raises(SystemExit):
            run("search", "--sort", "random")
