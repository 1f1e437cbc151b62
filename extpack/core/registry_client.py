"""
Remote pack registry client

Fetches the public registry index (a JSON document hosted on GitHub) to
search for packs and download them by id.
"""

import logging
import time
from pathlib import Path
from typing import Callable, Optional, Union

import httpx

from extpack import __version__
from extpack.core.config import RegistryConfig
from extpack.core.errors import FetchError, NetworkUnreachableError

logger = logging.getLogger("extpack.core.registry_client")

SORT_KEYS = ("downloads", "stars", "updated", "name")


class RegistryClient:
    """
    Registry index reader with an in-memory TTL cache.

    A failed refresh falls back to the stale cached index when there is one.
    """

    def __init__(
        self,
        config: Optional[RegistryConfig] = None,
        client: Optional[httpx.Client] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or RegistryConfig()
        self._client = client or httpx.Client(timeout=self.config.timeout, follow_redirects=True)
        self._headers = {"User-Agent": f"ext-pack/{__version__}"}
        self._clock = clock
        self._cached: Optional[dict] = None
        self._cached_at = 0.0

    def close(self):
        self._client.close()

    def get_index(self, force_refresh: bool = False) -> dict:
        now = self._clock()
        if (
            not force_refresh
            and self._cached is not None
            and now - self._cached_at < self.config.cache_ttl
        ):
            return self._cached

        try:
            response = self._client.get(self.config.index_url, headers=self._headers)
            response.raise_for_status()
            data = response.json()
            if not isinstance(data, dict) or not isinstance(data.get("packs"), dict):
                raise FetchError("Invalid registry format")
        except (httpx.HTTPError, ValueError, FetchError) as e:
            if self._cached is not None:
                logger.warning(f"Using cached registry (fetch failed: {e})")
                return self._cached
            if isinstance(e, httpx.TransportError):
                raise NetworkUnreachableError(f"Failed to fetch registry: {e}") from e
            raise FetchError(f"Failed to fetch registry: {e}") from e

        self._cached = data
        self._cached_at = now
        return data

    def is_accessible(self) -> bool:
        try:
            self.get_index()
            return True
        except FetchError:
            return False

    def search_packs(
        self,
        query: str = "",
        tag: Optional[str] = None,
        sort_by: str = "downloads",
        limit: Optional[int] = None,
    ) -> list[dict]:
        """
        Search packs by name, description or author, optionally by tag.

        / Busca packs por nombre, descripcion o autor.
        """
        packs = []
        for pack_id, pack in self.get_index()["packs"].items():
            packs.append({"id": pack_id, **pack} if "id" not in pack else pack)

        if query:
            needle = query.lower()

            def _matches(pack: dict) -> bool:
                author = pack.get("author")
                author_name = author.get("name") if isinstance(author, dict) else author
                return any(
                    isinstance(value, str) and needle in value.lower()
                    for value in (pack.get("name"), pack.get("description"), author_name)
                )

            packs = [p for p in packs if _matches(p)]

        if tag:
            packs = [p for p in packs if tag in (p.get("tags") or [])]

        if sort_by == "downloads":
            packs.sort(key=lambda p: p.get("downloads") or 0, reverse=True)
        elif sort_by == "stars":
            packs.sort(key=lambda p: p.get("stars") or 0, reverse=True)
        elif sort_by == "updated":
            packs.sort(key=lambda p: p.get("updated") or "", reverse=True)
        elif sort_by == "name":
            packs.sort(key=lambda p: (p.get("name") or "").lower())

        if limit:
            packs = packs[:limit]
        return packs

    def get_pack_info(self, pack_id: str) -> Optional[dict]:
        pack = self.get_index()["packs"].get(pack_id)
        if pack is None:
            return None
        return {"id": pack_id, **pack}

    def get_all_tags(self) -> list[str]:
        tags = set()
        for pack in self.get_index()["packs"].values():
            tags.update(t for t in pack.get("tags") or [] if isinstance(t, str))
        return sorted(tags)

    def download_pack(self, pack_id: str, target_path: Union[str, Path]) -> Path:
        """Download a registry pack's .extpack file to ``target_path``."""
        info = self.get_pack_info(pack_id)
        if info is None:
            raise FetchError(f"Pack not found in registry: {pack_id}")
        if not info.get("url"):
            raise FetchError(f"Pack {pack_id} has no download URL")

        target = Path(target_path)
        target.parent.mkdir(parents=True, exist_ok=True)
        try:
            response = self._client.get(info["url"], headers=self._headers)
            response.raise_for_status()
        except httpx.TransportError as e:
            raise NetworkUnreachableError(f"Download failed: {e}") from e
        except httpx.HTTPStatusError as e:
            raise FetchError(f"Download failed: HTTP {e.response.status_code}") from e

        target.write_bytes(response.content)
        return target
