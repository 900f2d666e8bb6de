from __future__ import annotations

import logging
import zipfile
from pathlib import Path

import pytest

from archive_ingest.config import IngestSettings
from archive_ingest.errors import ArchiveRejected, ExtractionProcessFailed
from archive_ingest.extract.stream import StreamExtractor

pytestmark = pytest.mark.anyio


async def test_extracts_files_in_archive_order(tmp_path: Path, make_zip) -> None:
    archive = make_zip({"mods/": b"", "mods/a.jar": b"AAA", "mods/b.jar": b"BBB", "readme.txt": b"hi"})
    staging = tmp_path / "stage"
    staging.mkdir()

    files = await StreamExtractor().extract(archive, staging)

    assert files == ["mods/a.jar", "mods/b.jar", "readme.txt"]
    assert (staging / "mods" / "a.jar").read_bytes() == b"AAA"
    assert (staging / "readme.txt").read_bytes() == b"hi"


async def test_dangerous_entries_never_touch_disk(tmp_path: Path, make_zip, caplog) -> None:
    archive = make_zip({"../../escape.txt": b"pwned", "ok.txt": b"fine", "/abs.txt": b"pwned"})
    staging = tmp_path / "a" / "b" / "stage"
    staging.mkdir(parents=True)

    with caplog.at_level(logging.WARNING):
        files = await StreamExtractor().extract(archive, staging)

    assert files == ["ok.txt"]
    assert not list(tmp_path.rglob("escape.txt"))
    assert not list(tmp_path.rglob("abs.txt"))
    assert any("../../escape.txt" in r.getMessage() for r in caplog.records)


async def test_strict_mode_rejects_archive(tmp_path: Path, make_zip) -> None:
    archive = make_zip({"../escape.txt": b"x", "ok.txt": b"y"})
    extractor = StreamExtractor(IngestSettings(strict_entries=True))
    with pytest.raises(ArchiveRejected) as info:
        await extractor.extract(archive, tmp_path)
    assert info.value.rejected == ["../escape.txt"]


async def test_many_entries_all_reported(tmp_path: Path, make_zip) -> None:
    entries = {f"d{i % 7}/f{i:03}.bin": (b"%d" % i) * (i + 1) for i in range(150)}
    archive = make_zip(entries)
    staging = tmp_path / "stage"
    staging.mkdir()

    files = await StreamExtractor(IngestSettings(stream_concurrency=16, chunk_size=7)).extract(
        archive, staging
    )

    assert files == list(entries)
    for name, data in entries.items():
        assert (staging / name).read_bytes() == data


async def test_not_a_zip(tmp_path: Path) -> None:
    bogus = tmp_path / "bogus.zip"
    bogus.write_bytes(b"this is not a zip file at all")
    with pytest.raises(ExtractionProcessFailed):
        await StreamExtractor().extract(bogus, tmp_path)


async def test_corrupt_member_fails_whole_operation(tmp_path: Path) -> None:
    archive = tmp_path / "corrupt.zip"
    payload = b"0123456789" * 200
    with zipfile.ZipFile(archive, "w", compression=zipfile.ZIP_STORED) as z:
        z.writestr("good.txt", b"ok")
        z.writestr("bad.txt", payload)
    raw = bytearray(archive.read_bytes())
    # Flip a byte inside bad.txt's stored data so its CRC no longer matches
    offset = raw.index(payload) + 100
    raw[offset] ^= 0xFF
    archive.write_bytes(bytes(raw))

    staging = tmp_path / "stage"
    staging.mkdir()
    with pytest.raises(ExtractionProcessFailed) as info:
        await StreamExtractor().extract(archive, staging)
    assert "decode" in str(info.value)


async def test_repeated_entry_name_keeps_last_copy(tmp_path: Path) -> None:
    archive = tmp_path / "dupes.zip"
    with zipfile.ZipFile(archive, "w") as z:
        z.writestr("config.yml", b"first")
        z.writestr("other.txt", b"o")
        with pytest.warns(UserWarning, match="Duplicate name"):
            z.writestr("config.yml", b"second")
    staging = tmp_path / "stage"
    staging.mkdir()

    files = await StreamExtractor().extract(archive, staging)

    assert files == ["config.yml", "other.txt"]
    assert (staging / "config.yml").read_bytes() == b"second"
