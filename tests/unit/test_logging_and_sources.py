from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest

from archive_ingest.ingest import sources
from archive_ingest.logging import JsonFormatter, get_logger


def test_json_formatter_includes_extra_fields() -> None:
    record = logging.makeLogRecord(
        {"name": "archive_ingest.core", "levelname": "WARNING", "msg": "skipped %s", "args": ("x",)}
    )
    record.state = "validated"

    payload = json.loads(JsonFormatter().format(record))

    assert payload["level"] == "WARNING"
    assert payload["name"] == "archive_ingest.core"
    assert payload["msg"] == "skipped x"
    assert payload["state"] == "validated"
    assert "ts" in payload


def test_module_loggers_share_one_handler() -> None:
    child = get_logger("archive_ingest.tests")
    assert child.handlers == []
    assert len(logging.getLogger("archive_ingest").handlers) == 1


def test_read_local_source(tmp_path: Path) -> None:
    f = tmp_path / "pack.zip"
    f.write_bytes(b"PK")
    assert sources.read_source(str(f)) == ("pack.zip", b"PK")


def test_read_missing_local_source(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        sources.read_source(str(tmp_path / "missing.zip"))


def test_read_url_source(monkeypatch) -> None:
    seen = []

    def fake_download(url: str, timeout: float = 60) -> bytes:
        seen.append(url)
        return b"remote"

    monkeypatch.setattr(sources, "_download", fake_download)

    name, data = sources.read_source("https://cdn.example.com/mods/My%20Pack.zip?sig=1")

    assert name == "My Pack.zip"
    assert data == b"remote"
    assert seen == ["https://cdn.example.com/mods/My%20Pack.zip?sig=1"]
