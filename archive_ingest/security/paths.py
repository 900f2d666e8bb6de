"""Path containment checks (zip-slip guard).

Guards against:
- ``../`` traversal, including traversal hidden mid-path (``a/../../b``)
- absolute paths pointing elsewhere
- prefix confusion (``/srv/world-evil`` is not inside ``/srv/world``)

Everything here is lexical: no filesystem access, so it is cheap enough to run
for every archive entry.
"""

from __future__ import annotations

import os
from pathlib import Path

from archive_ingest.errors import PathTraversalRejected


def _normalize(path: str) -> str:
    return os.path.normcase(os.path.normpath(path))


def resolve_within(root: Path | str, candidate: Path | str) -> Path | None:
    """Return the absolute form of *candidate* under *root*, or None if it escapes.

    Relative candidates are joined onto *root*; absolute ones are taken as-is
    and accepted only when they already point inside *root*.
    """
    base = os.path.normpath(os.path.abspath(root))
    target = os.path.normpath(os.path.join(base, os.fspath(candidate)))

    nbase, ntarget = _normalize(base), _normalize(target)
    if ntarget == nbase:
        return Path(target)
    # rstrip handles a filesystem root such as "/" that already ends in sep
    if ntarget.startswith(nbase.rstrip(os.sep) + os.sep):
        return Path(target)
    return None


def is_within(root: Path | str, candidate: Path | str) -> bool:
    return resolve_within(root, candidate) is not None


def require_within(root: Path | str, candidate: Path | str) -> Path:
    """Like :func:`resolve_within` but raises :class:`PathTraversalRejected`."""
    resolved = resolve_within(root, candidate)
    if resolved is None:
        raise PathTraversalRejected(root, os.fspath(candidate))
    return resolved
