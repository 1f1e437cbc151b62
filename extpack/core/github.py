"""
GitHub release fetcher

Downloads an extension's release archive from GitHub and extracts it into
the download cache. Cache entries are written to a temporary sibling
directory and renamed into place, so a reader never sees a half-written
entry.

/ Descarga releases de GitHub y las extrae en la cache.
"""

import logging
import os
import shutil
import tempfile
import zipfile
from pathlib import Path
from typing import Callable, Optional, Union

import httpx

from extpack import __version__
from extpack.core.errors import (
    FetchError,
    NetworkUnreachableError,
    RateLimitedError,
    ReleaseNotFoundError,
)
from extpack.core.manifest import MANIFEST_FILE

logger = logging.getLogger("extpack.core.github")

GITHUB_API_URL = "https://api.github.com"
_CHUNK_SIZE = 64 * 1024

# (percent, downloaded_bytes, total_bytes)
DownloadProgress = Callable[[float, int, int], None]


def parse_repo(repo: str) -> tuple[str, str]:
    """Split "owner/repo" into its parts."""
    parts = (repo or "").strip().strip("/").split("/")
    if len(parts) != 2 or not all(parts):
        raise ValueError(f"Invalid repo format '{repo}'. Expected: owner/repo")
    return parts[0], parts[1]


def find_extension_dir(extracted_path: Union[str, Path]) -> Path:
    """
    Locate the directory holding manifest.json: the extraction root or one
    of its immediate subdirectories (GitHub zipballs add a top-level folder).
    """
    root = Path(extracted_path)
    if (root / MANIFEST_FILE).is_file():
        return root

    if root.is_dir():
        for entry in sorted(root.iterdir()):
            if entry.is_dir() and (entry / MANIFEST_FILE).is_file():
                return entry

    raise FetchError(f"Could not find {MANIFEST_FILE} in {root}")


def get_asset_download_url(release: dict, asset_name: Optional[str] = None) -> str:
    """Pick the named asset, else the first .zip/.crx asset, else the zipball."""
    for asset in release.get("assets") or []:
        name = asset.get("name", "")
        if (asset_name and name == asset_name) or name.endswith((".zip", ".crx")):
            return asset["browser_download_url"]
    return release["zipball_url"]


class ReleaseFetcher:
    """
    Fetches GitHub releases over HTTPS.

    The httpx client is injectable so tests can use httpx.MockTransport.
    """

    def __init__(
        self,
        client: Optional[httpx.Client] = None,
        api_url: str = GITHUB_API_URL,
        timeout: float = 30.0,
        token: Optional[str] = None,
    ):
        self.api_url = api_url.rstrip("/")
        token = token if token is not None else os.environ.get("GITHUB_TOKEN")

        headers = {
            "Accept": "application/vnd.github+json",
            "User-Agent": f"ext-pack/{__version__}",
        }
        if token:
            headers["Authorization"] = f"Bearer {token}"

        self._client = client or httpx.Client(timeout=timeout, follow_redirects=True)
        self._headers = headers

    def close(self):
        self._client.close()

    # ── HTTP helpers ──

    def _check(self, response: httpx.Response, what: str):
        if response.status_code == 404:
            raise ReleaseNotFoundError(f"{what} not found (HTTP 404)")
        if response.status_code == 429 or (
            response.status_code == 403
            and response.headers.get("x-ratelimit-remaining") == "0"
        ):
            raise RateLimitedError(f"GitHub API rate limit exceeded while fetching {what}")
        if response.status_code >= 400:
            raise FetchError(f"GitHub API error {response.status_code} while fetching {what}")

    def get_release(self, owner: str, repo: str, tag: str = "latest") -> dict:
        if tag == "latest":
            url = f"{self.api_url}/repos/{owner}/{repo}/releases/latest"
        else:
            url = f"{self.api_url}/repos/{owner}/{repo}/releases/tags/{tag}"

        try:
            response = self._client.get(url, headers=self._headers)
        except httpx.TransportError as e:
            raise NetworkUnreachableError(f"Cannot reach GitHub: {e}") from e

        self._check(response, f"Release {owner}/{repo}@{tag}")
        return response.json()

    def _download(self, url: str, destination: Path, on_progress: Optional[DownloadProgress]):
        try:
            with self._client.stream("GET", url, headers=self._headers, follow_redirects=True) as response:
                self._check(response, url)
                total = int(response.headers.get("content-length") or 0)
                downloaded = 0
                with open(destination, "wb") as f:
                    for chunk in response.iter_bytes(_CHUNK_SIZE):
                        f.write(chunk)
                        downloaded += len(chunk)
                        if on_progress and total > 0:
                            on_progress(downloaded / total * 100, downloaded, total)
        except httpx.TransportError as e:
            raise NetworkUnreachableError(f"Download failed: {e}") from e

    # ── Public API ──

    def fetch(
        self,
        owner: str,
        repo: str,
        tag: str,
        target_path: Union[str, Path],
        on_progress: Optional[DownloadProgress] = None,
    ) -> Path:
        """
        Download and extract a release into ``target_path``.

        Returns:
            The directory inside ``target_path`` that holds manifest.json.

        / Descarga y extrae una release; devuelve el directorio con el manifiesto.
        """
        target = Path(target_path)
        target.parent.mkdir(parents=True, exist_ok=True)

        release = self.get_release(owner, repo, tag)
        url = get_asset_download_url(release)
        logger.info(f"Downloading {owner}/{repo}@{tag} from {url}")

        staging = Path(tempfile.mkdtemp(prefix=f".{target.name}-", dir=target.parent))
        try:
            archive = staging / "release.zip"
            extracted = staging / "content"
            self._download(url, archive, on_progress)

            try:
                with zipfile.ZipFile(archive) as zf:
                    zf.extractall(extracted)
            except zipfile.BadZipFile as e:
                raise FetchError(f"Release asset for {owner}/{repo} is not a zip archive") from e

            if target.exists():
                shutil.rmtree(target)
            os.replace(extracted, target)
        finally:
            shutil.rmtree(staging, ignore_errors=True)

        return find_extension_dir(target)
