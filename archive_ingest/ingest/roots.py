"""Server id → sandbox root lookup.

The record store itself lives elsewhere; ingestion only needs this one query.
Resolvers are passed in explicitly. When caching is wanted, wrap a resolver in
:class:`CachedServerRoots` and call :meth:`CachedServerRoots.invalidate` when a
server record changes or is deleted.
"""

from __future__ import annotations

import json
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Protocol

from archive_ingest.errors import ServerNotFound


class ServerRootResolver(Protocol):
    async def root_for(self, server_id: str) -> Path: ...


class StaticServerRoots:
    def __init__(self, roots: Mapping[str, Path | str]) -> None:
        self._roots = {k: Path(os.path.abspath(v)) for k, v in roots.items()}

    @classmethod
    def from_json(cls, path: Path) -> StaticServerRoots:
        """Load a ``{"<server id>": "<root directory>"}`` mapping."""
        data = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            raise ValueError(f"Expected a JSON object in {path}")
        return cls(data)

    async def root_for(self, server_id: str) -> Path:
        try:
            return self._roots[server_id]
        except KeyError:
            raise ServerNotFound(server_id) from None


class CachedServerRoots:
    def __init__(self, inner: ServerRootResolver) -> None:
        self._inner = inner
        self._cache: dict[str, Path] = {}

    async def root_for(self, server_id: str) -> Path:
        cached = self._cache.get(server_id)
        if cached is not None:
            return cached
        root = Path(os.path.abspath(await self._inner.root_for(server_id)))
        self._cache[server_id] = root
        return root

    def invalidate(self, server_id: str | None = None) -> None:
        if server_id is None:
            self._cache.clear()
        else:
            self._cache.pop(server_id, None)
