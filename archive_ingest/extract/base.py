"""Extraction capability contract.

An extractor decodes an archive into a staging directory and returns the
relative paths (``/``-separated) of the files it produced. Two implementations
exist, the native tool and the in-process stream decoder; the coordinator
picks between them at runtime, falling back when the native one raises
:class:`~archive_ingest.errors.ToolUnavailable`.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Protocol

import anyio.to_thread

from archive_ingest.types import Strategy


class Extractor(Protocol):
    name: Strategy

    async def extract(self, archive: Path, staging: Path) -> list[str]: ...


def _walk_files(root: Path) -> list[str]:
    files: list[str] = []
    for dirpath, dirnames, filenames in os.walk(root):
        rel_dir = os.path.relpath(dirpath, root)
        # os.walk does not descend into symlinked directories; report the link
        # itself so validation can refuse it
        links = [d for d in dirnames if os.path.islink(os.path.join(dirpath, d))]
        for fn in filenames + links:
            rel = fn if rel_dir == "." else os.path.join(rel_dir, fn)
            files.append(rel.replace(os.sep, "/"))
    return sorted(files)


async def list_staged_files(root: Path) -> list[str]:
    """Enumerate every file below *root* (directories are not reported)."""
    return await anyio.to_thread.run_sync(_walk_files, root)
