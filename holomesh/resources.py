"""Resource lookup: the asynchronous fetch contract and a local resource-pack stack."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Protocol, Sequence


logger = logging.getLogger(__name__)


class ResourceFetcher(Protocol):
    async def fetch(self, path: str) -> bytes | None:
        """Bytes of the resource at ``path`` (relative to a pack root), or ``None`` if absent."""


class LocalResourcePack:
    """One or more resource pack directories; earlier directories take priority."""

    def __init__(self, roots: Sequence[str | Path]) -> None:
        if not roots:
            raise ValueError("At least one resource pack directory is required")
        self.roots = [Path(root) for root in roots]

    def _find(self, path: str) -> Path | None:
        rel = path.lstrip("/")
        for root in self.roots:
            candidate = root / rel
            if candidate.is_file():
                return candidate
        return None

    async def fetch(self, path: str) -> bytes | None:
        found = self._find(path)
        if found is None:
            return None
        return await asyncio.to_thread(found.read_bytes)


async def fetch_json(fetcher: ResourceFetcher, path: str) -> Any | None:
    """Fetch and parse a JSON resource; missing or malformed files log and yield ``None``."""

    data = await fetcher.fetch(path)
    if data is None:
        logger.warning("Resource %s not found", path)
        return None
    try:
        return json.loads(data.decode("utf-8-sig"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        logger.error("Could not parse %s: %s", path, exc)
        return None
