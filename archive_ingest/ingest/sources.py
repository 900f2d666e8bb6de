"""Where the CLI gets upload bytes from: a local file or an http(s) URL."""

from __future__ import annotations

from pathlib import Path
from urllib.parse import unquote, urlparse

import httpx


def _looks_like_url(s: str) -> bool:
    try:
        u = urlparse(s)
        return u.scheme in {"http", "https"} and bool(u.netloc)
    except ValueError:
        return False


def _download(url: str, timeout: float = 60) -> bytes:
    chunks: list[bytes] = []
    with httpx.stream("GET", url, timeout=timeout, follow_redirects=True) as r:
        r.raise_for_status()
        for chunk in r.iter_bytes():
            chunks.append(chunk)
    return b"".join(chunks)


def read_source(source: str) -> tuple[str, bytes]:
    """Return ``(file name, content)`` for *source*."""
    if _looks_like_url(source):
        name = Path(unquote(urlparse(source).path)).name or "download"
        return name, _download(source)
    p = Path(source)
    if not p.is_file():
        raise FileNotFoundError(f"No such file: {source}")
    return p.name, p.read_bytes()
