from __future__ import annotations

import zipfile
from collections.abc import Callable, Mapping
from pathlib import Path

import pytest


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def make_zip(tmp_path: Path) -> Callable[..., Path]:
    """Write a zip with the given ``{arcname: bytes}`` entries, in order."""

    def _make(entries: Mapping[str, bytes], name: str = "bundle.zip", where: Path | None = None) -> Path:
        path = (where or tmp_path) / name
        path.parent.mkdir(parents=True, exist_ok=True)
        with zipfile.ZipFile(path, "w", compression=zipfile.ZIP_DEFLATED) as z:
            for arcname, data in entries.items():
                z.writestr(arcname, data)
        return path

    return _make


def snapshot(root: Path) -> dict[str, bytes | None]:
    """Map every path under *root* to its bytes (None for directories)."""
    return {
        p.relative_to(root).as_posix(): (None if p.is_dir() else p.read_bytes())
        for p in sorted(root.rglob("*"))
    }


@pytest.fixture
def tree_snapshot() -> Callable[[Path], dict[str, bytes | None]]:
    return snapshot
