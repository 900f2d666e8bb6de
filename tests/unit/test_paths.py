from __future__ import annotations

import os
from pathlib import Path

import pytest

from archive_ingest.errors import PathTraversalRejected
from archive_ingest.security.paths import is_within, require_within, resolve_within


def test_relative_paths_resolve_under_root(tmp_path: Path) -> None:
    assert resolve_within(tmp_path, "mods/a.jar") == tmp_path / "mods" / "a.jar"
    assert resolve_within(tmp_path, "mods/../b.txt") == tmp_path / "b.txt"
    assert resolve_within(tmp_path, ".") == tmp_path


@pytest.mark.parametrize(
    "candidate",
    ["../escape.txt", "../../escape.txt", "mods/../../escape.txt", "a/b/../../../x"],
)
def test_traversal_is_rejected(tmp_path: Path, candidate: str) -> None:
    root = tmp_path / "world"
    assert resolve_within(root, candidate) is None
    assert not is_within(root, candidate)


def test_absolute_paths_only_accepted_inside_root(tmp_path: Path) -> None:
    root = tmp_path / "world"
    assert resolve_within(root, str(root / "level.dat")) == root / "level.dat"
    assert resolve_within(root, os.path.abspath(os.sep + "etc/passwd")) is None


def test_sibling_with_shared_prefix_is_not_inside(tmp_path: Path) -> None:
    """``/x/world-evil`` must not pass as being inside ``/x/world``."""
    root = tmp_path / "world"
    assert resolve_within(root, "../world-evil/pwn.txt") is None
    assert resolve_within(root, str(tmp_path / "world-evil")) is None


def test_no_filesystem_access_needed(tmp_path: Path) -> None:
    root = tmp_path / "does" / "not" / "exist"
    assert resolve_within(root, "x.txt") == root / "x.txt"
    assert not root.exists()


def test_require_within_raises(tmp_path: Path) -> None:
    assert require_within(tmp_path, "ok.txt") == tmp_path / "ok.txt"
    with pytest.raises(PathTraversalRejected) as info:
        require_within(tmp_path, "../nope.txt")
    assert info.value.candidate == "../nope.txt"
