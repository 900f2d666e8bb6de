"""Request-scoped staging directories.

Archives are decoded into a ``.temp-extract-<ms>-<random>`` directory created
inside the destination, so the final moves are same-volume renames. Any such
directory found outside an active extraction is a crash artifact and can be
removed with :func:`sweep_stale`.
"""

from __future__ import annotations

import re
import secrets
import shutil
import time
from dataclasses import dataclass
from pathlib import Path

import anyio
import anyio.to_thread

from archive_ingest.logging import get_logger
from archive_ingest.types import ExtractionRequest

STAGING_PREFIX = ".temp-extract-"
_STAGING_NAME = re.compile(r"^\.temp-extract-\d+(?:-[0-9a-z]+)?$")

log = get_logger("archive_ingest.staging")


def is_staging_dir_name(name: str) -> bool:
    return bool(_STAGING_NAME.match(name))


def _staging_name() -> str:
    return f"{STAGING_PREFIX}{time.time_ns() // 1_000_000}-{secrets.token_hex(5)}"


def _ignore_missing(func, path, exc: BaseException) -> None:
    if isinstance(exc, FileNotFoundError):
        return
    raise exc


def _remove_tree(path: Path) -> bool:
    """Remove *path* recursively. Returns False (after logging) if removal failed."""
    try:
        shutil.rmtree(path, onexc=_ignore_missing)
    except FileNotFoundError:
        return True
    except OSError as exc:
        log.warning(f"Failed to clean up staging directory {path}: {exc}")
        return False
    return True


@dataclass
class StagingArea:
    path: Path
    owner: ExtractionRequest | None = None

    @classmethod
    async def create(
        cls, parent_dir: Path | str, owner: ExtractionRequest | None = None
    ) -> StagingArea:
        parent = anyio.Path(parent_dir)
        await parent.mkdir(parents=True, exist_ok=True)
        path = parent / _staging_name()
        # exist_ok=False: a name collision must fail rather than share a directory
        await path.mkdir()
        log.info(f"Created staging directory: {path}")
        return cls(path=Path(path), owner=owner)

    async def dispose(self) -> bool:
        """Remove the staging directory; safe to call repeatedly."""
        removed = await anyio.to_thread.run_sync(_remove_tree, self.path)
        if removed:
            log.info(f"Cleaned up staging directory: {self.path}")
        return removed

    async def __aenter__(self) -> StagingArea:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.dispose()


async def sweep_stale(parent_dir: Path | str) -> list[Path]:
    """Delete leftover staging directories directly under *parent_dir*."""
    parent = anyio.Path(parent_dir)
    if not await parent.is_dir():
        return []
    removed: list[Path] = []
    async for child in parent.iterdir():
        if is_staging_dir_name(child.name) and await child.is_dir():
            if await anyio.to_thread.run_sync(_remove_tree, Path(child)):
                removed.append(Path(child))
    if removed:
        log.info(f"Swept {len(removed)} stale staging directories under {parent}")
    return removed
