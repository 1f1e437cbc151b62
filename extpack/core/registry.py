"""
Installed pack registry

Tracks which packs were installed on this machine and where their
extensions were resolved to. Stored as ~/.ext-pack/installed.json:

    {"packs": [{"name", "file", "version", "extensions": [...], "installed"}]}

/ Registro de packs instalados.
"""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

logger = logging.getLogger("extpack.core.registry")


class InstalledPackRegistry:
    """Read/write access to installed.json."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def load(self) -> dict:
        """Load the registry; a missing or corrupt file reads as empty."""
        if self.path.exists():
            try:
                data = json.loads(self.path.read_text(encoding="utf-8"))
                if isinstance(data, dict) and isinstance(data.get("packs"), list):
                    return data
                logger.warning(f"Ignoring malformed registry at {self.path}")
            except (json.JSONDecodeError, OSError) as e:
                logger.warning(f"Failed to load installed registry: {e}")
        return {"packs": []}

    def _save(self, data: dict):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")

    def list_packs(self) -> list[dict]:
        return self.load()["packs"]

    def get_installed_pack(self, name: str) -> Optional[dict]:
        for pack in self.list_packs():
            if pack.get("name") == name:
                return pack
        return None

    def record_installed_pack(self, entry: dict) -> dict:
        """
        Add or replace the entry for ``entry["name"]``.

        / Agrega o reemplaza un pack instalado.
        """
        data = self.load()
        now = datetime.now().isoformat()

        for i, existing in enumerate(data["packs"]):
            if existing.get("name") == entry["name"]:
                record = {**entry, "installed": existing.get("installed", now), "updated": now}
                data["packs"][i] = record
                break
        else:
            record = {**entry, "installed": now}
            data["packs"].append(record)

        self._save(data)
        return record

    def remove_installed_pack(self, name: str) -> bool:
        """Remove a pack record. Returns False if it was not installed."""
        data = self.load()
        remaining = [p for p in data["packs"] if p.get("name") != name]
        if len(remaining) == len(data["packs"]):
            return False
        data["packs"] = remaining
        self._save(data)
        return True
