"""
Registry publisher

Publishes a pack to the community registry on GitHub:

    1. create a release in the registry repository
    2. upload the .extpack file as a release asset
    3. add the pack to registry.json on a branch (or the user's fork)
    4. open a pull request against the registry

/ Publica un pack en el registro de GitHub mediante release + pull request.
"""

import base64
import json
import logging
import os
import subprocess
import time
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Callable, Optional, Union

import httpx

from extpack import __version__
from extpack.core.bundle_codec import calculate_bundle_size
from extpack.core.config import RegistryConfig
from extpack.core.errors import (
    AuthenticationRequiredError,
    NetworkUnreachableError,
    PublishError,
    ReleaseExistsError,
)
from extpack.core.github import GITHUB_API_URL
from extpack.core.pack_codec import Pack, read_pack_file

logger = logging.getLogger("extpack.core.publisher")

UPLOADS_URL = "https://uploads.github.com"
REGISTRY_FILE = "registry.json"


def get_github_token() -> str:
    """GITHUB_TOKEN from the environment, else the gh CLI's token."""
    token = os.environ.get("GITHUB_TOKEN")
    if token:
        return token

    try:
        result = subprocess.run(
            ["gh", "auth", "token"],
            capture_output=True,
            text=True,
            timeout=10,
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        raise AuthenticationRequiredError(f"GitHub authentication required ({e})") from e

    token = result.stdout.strip()
    if result.returncode != 0 or not token:
        raise AuthenticationRequiredError("GitHub authentication required")
    return token


def has_github_auth() -> bool:
    try:
        get_github_token()
        return True
    except AuthenticationRequiredError:
        return False


def calculate_pack_metadata(pack: Pack) -> dict:
    """The registry.json entry describing ``pack``."""
    return {
        "id": "-".join(pack.name.lower().split()),
        "name": pack.name,
        "description": pack.description or "",
        "author": pack.author or {},
        "version": pack.resolved_version,
        "extensions": len(pack.extensions),
        "size": sum(calculate_bundle_size(ext) for ext in pack.extensions),
        "tags": list(pack.tags),
        "created": pack.created or date.today().isoformat(),
        "updated": datetime.now(timezone.utc).isoformat(),
        "downloads": 0,
        "stars": 0,
    }


def _pull_request_body(metadata: dict) -> str:
    return (
        f"## {metadata['name']}\n\n"
        f"{metadata['description']}\n\n"
        f"**Extensions:** {metadata['extensions']}\n"
        f"**Size:** {metadata['size'] / 1024 / 1024:.2f} MB\n"
        f"**Tags:** {', '.join(metadata['tags']) or 'none'}\n\n"
        "---\n"
        "*Automated PR from ext-pack*"
    )


class PackPublisher:
    """
    GitHub REST client for publishing packs.

    The httpx client and ``sleep`` are injectable for tests.
    """

    def __init__(
        self,
        token: str,
        config: Optional[RegistryConfig] = None,
        client: Optional[httpx.Client] = None,
        api_url: str = GITHUB_API_URL,
        uploads_url: str = UPLOADS_URL,
        sleep: Callable[[float], None] = time.sleep,
    ):
        config = config or RegistryConfig()
        self.owner = config.publish_owner
        self.repo = config.publish_repo
        self.api_url = api_url.rstrip("/")
        self.uploads_url = uploads_url.rstrip("/")
        self._client = client or httpx.Client(timeout=config.timeout, follow_redirects=True)
        self._headers = {
            "Accept": "application/vnd.github+json",
            "Authorization": f"Bearer {token}",
            "User-Agent": f"ext-pack/{__version__}",
        }
        self._sleep = sleep

    def close(self):
        self._client.close()

    # ── HTTP helpers ──

    def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        if not url.startswith("http"):
            url = f"{self.api_url}{url}"
        headers = {**self._headers, **kwargs.pop("headers", {})}
        try:
            response = self._client.request(method, url, headers=headers, **kwargs)
        except httpx.TransportError as e:
            raise NetworkUnreachableError(f"Cannot reach GitHub: {e}") from e

        if response.status_code == 401:
            raise AuthenticationRequiredError("GitHub rejected the token (HTTP 401)")
        return response

    def _expect(self, response: httpx.Response, what: str) -> dict:
        if response.status_code >= 400:
            try:
                detail = response.json().get("message", "")
            except ValueError:
                detail = response.text[:200]
            raise PublishError(f"Failed to {what}: HTTP {response.status_code} {detail}".rstrip())
        return response.json()

    # ── GitHub operations ──

    def get_username(self) -> str:
        return self._expect(self._request("GET", "/user"), "read the authenticated user")["login"]

    def release_exists(self, tag: str) -> bool:
        response = self._request("GET", f"/repos/{self.owner}/{self.repo}/releases/tags/{tag}")
        if response.status_code == 404:
            return False
        self._expect(response, f"look up release {tag}")
        return True

    def create_release(self, tag: str, name: str, body: str) -> dict:
        response = self._request(
            "POST",
            f"/repos/{self.owner}/{self.repo}/releases",
            json={
                "tag_name": tag,
                "name": name,
                "body": body,
                "draft": False,
                "prerelease": False,
            },
        )
        return self._expect(response, f"create release {tag}")

    def upload_asset(self, release: dict, name: str, data: bytes) -> dict:
        response = self._request(
            "POST",
            f"{self.uploads_url}/repos/{self.owner}/{self.repo}/releases/{release['id']}/assets",
            params={"name": name},
            content=data,
            headers={"Content-Type": "application/octet-stream"},
        )
        return self._expect(response, f"upload {name}")

    def ensure_fork(self, username: str):
        """Fork the registry into ``username``'s account unless it exists."""
        response = self._request("GET", f"/repos/{username}/{self.repo}")
        if response.status_code != 404:
            self._expect(response, f"look up fork {username}/{self.repo}")
            return

        logger.info(f"Forking {self.owner}/{self.repo} into {username}")
        self._expect(
            self._request("POST", f"/repos/{self.owner}/{self.repo}/forks"),
            "fork the registry",
        )
        # GitHub creates forks asynchronously
        self._sleep(2)

    def create_branch(self, branch: str, base: str = "main"):
        ref = self._expect(
            self._request("GET", f"/repos/{self.owner}/{self.repo}/git/ref/heads/{base}"),
            f"read branch {base}",
        )
        self._expect(
            self._request(
                "POST",
                f"/repos/{self.owner}/{self.repo}/git/refs",
                json={"ref": f"refs/heads/{branch}", "sha": ref["object"]["sha"]},
            ),
            f"create branch {branch}",
        )

    def update_registry_file(self, owner: str, metadata: dict, branch: Optional[str] = None):
        """Add or replace ``metadata`` in ``owner``'s copy of registry.json."""
        path = f"/repos/{owner}/{self.repo}/contents/{REGISTRY_FILE}"
        params = {"ref": branch} if branch else None
        current = self._expect(self._request("GET", path, params=params), f"read {REGISTRY_FILE}")

        registry = json.loads(base64.b64decode(current["content"]).decode("utf-8"))
        registry.setdefault("packs", {})[metadata["id"]] = metadata
        registry["updated"] = datetime.now(timezone.utc).isoformat()

        payload = {
            "message": f"Add {metadata['name']} v{metadata['version']}",
            "content": base64.b64encode(
                json.dumps(registry, indent=2, ensure_ascii=False).encode("utf-8")
            ).decode("ascii"),
            "sha": current["sha"],
        }
        if branch:
            payload["branch"] = branch
        self._expect(self._request("PUT", path, json=payload), f"update {REGISTRY_FILE}")

    def open_pull_request(self, head: str, metadata: dict) -> str:
        pr = self._expect(
            self._request(
                "POST",
                f"/repos/{self.owner}/{self.repo}/pulls",
                json={
                    "title": f"Add {metadata['name']} v{metadata['version']}",
                    "head": head,
                    "base": "main",
                    "body": _pull_request_body(metadata),
                },
            ),
            "open the pull request",
        )
        return pr["html_url"]

    # ── Public API ──

    def publish(self, pack_path: Union[str, Path], tag: Optional[str] = None) -> dict:
        """
        Publish a pack file.

        Returns:
            {"release_url", "download_url", "pr_url", "metadata"}

        Raises:
            InvalidPackFileError, ReleaseExistsError, PublishError,
            AuthenticationRequiredError, NetworkUnreachableError.

        / Publica un pack: release, asset, registry.json y pull request.
        """
        pack_path = Path(pack_path)
        pack = read_pack_file(pack_path)
        metadata = calculate_pack_metadata(pack)

        username = self.get_username()
        tag = tag or f"{metadata['id']}-v{metadata['version']}"
        if self.release_exists(tag):
            raise ReleaseExistsError(f"Release {tag} already exists")

        release = self.create_release(tag, f"{metadata['name']} v{metadata['version']}", metadata["description"])
        asset = self.upload_asset(release, f"{metadata['id']}.extpack", pack_path.read_bytes())
        metadata["url"] = asset["browser_download_url"]

        if username == self.owner:
            branch = f"add-{metadata['id']}-{int(time.time() * 1000)}"
            self.create_branch(branch)
            self.update_registry_file(self.owner, metadata, branch=branch)
            head = branch
        else:
            self.ensure_fork(username)
            self.update_registry_file(username, metadata)
            head = f"{username}:main"

        # Let GitHub register the commit before opening the PR
        self._sleep(1)
        pr_url = self.open_pull_request(head, metadata)
        logger.info(f"Published {metadata['name']} v{metadata['version']}: {pr_url}")

        return {
            "release_url": release.get("html_url"),
            "download_url": asset["browser_download_url"],
            "pr_url": pr_url,
            "metadata": metadata,
        }
