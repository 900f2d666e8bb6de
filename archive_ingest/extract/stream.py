"""In-process zip decoder, used when the host has no extraction tool.

Members are enumerated in archive order and each one is decompressed chunk by
chunk straight into its staging file, so memory use stays flat regardless of
archive size. Writes run in worker threads and may finish in any order; the
returned list is only produced once every write has completed.
"""

from __future__ import annotations

import os
import shutil
import zipfile
import zlib
from pathlib import Path

import anyio
import anyio.to_thread

from archive_ingest.config import IngestSettings
from archive_ingest.errors import ArchiveRejected, ExtractionProcessFailed
from archive_ingest.logging import get_logger
from archive_ingest.security.paths import resolve_within
from archive_ingest.types import Strategy

log = get_logger("archive_ingest.stream")

# RuntimeError: zipfile's "File is encrypted, password required"
_DECODE_ERRORS = (zipfile.BadZipFile, zlib.error, EOFError, NotImplementedError, RuntimeError)


def _first_leaf(group: BaseExceptionGroup) -> BaseException:
    exc: BaseException = group
    while isinstance(exc, BaseExceptionGroup):
        exc = exc.exceptions[0]
    return exc


class StreamExtractor:
    name: Strategy = "stream"

    def __init__(self, settings: IngestSettings | None = None) -> None:
        self.settings = settings or IngestSettings()

    def _copy_member(self, zf: zipfile.ZipFile, info: zipfile.ZipInfo, target: Path) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        with zf.open(info) as src, open(target, "wb") as out:
            shutil.copyfileobj(src, out, self.settings.chunk_size)

    async def _write_entry(
        self,
        zf: zipfile.ZipFile,
        info: zipfile.ZipInfo,
        target: Path,
        limiter: anyio.CapacityLimiter,
    ) -> None:
        await anyio.to_thread.run_sync(self._copy_member, zf, info, target, limiter=limiter)

    async def extract(self, archive: Path, staging: Path) -> list[str]:
        try:
            zf = await anyio.to_thread.run_sync(zipfile.ZipFile, archive)
        except (zipfile.BadZipFile, OSError) as exc:
            raise ExtractionProcessFailed(f"Cannot open archive {archive}", output=str(exc)) from exc

        staging_root = os.path.normpath(os.path.abspath(staging))
        limiter = anyio.CapacityLimiter(self.settings.stream_concurrency)
        # rel -> (member, target); a repeated name keeps its first position but
        # the last member's data, as `unzip -o` does
        pending: dict[str, tuple[zipfile.ZipInfo, Path]] = {}
        dropped: list[str] = []

        try:
            for info in zf.infolist():
                if info.is_dir():
                    continue
                target = resolve_within(staging_root, info.filename)
                if target is None or str(target) == staging_root:
                    log.warning(f"Skipping dangerous path in archive: {info.filename}")
                    dropped.append(info.filename)
                    continue
                rel = Path(os.path.relpath(target, staging_root)).as_posix()
                if rel in pending:
                    log.warning(f"Duplicate archive entry {info.filename}; keeping the last copy")
                pending[rel] = (info, target)

            async with anyio.create_task_group() as tg:
                for info, target in pending.values():
                    tg.start_soon(self._write_entry, zf, info, target, limiter)
        except ExceptionGroup as group:
            cause = _first_leaf(group)
            if not isinstance(cause, (*_DECODE_ERRORS, OSError)):
                raise
            action = "write archive entry from" if isinstance(cause, OSError) else "decode archive"
            raise ExtractionProcessFailed(f"Failed to {action} {archive}", output=str(cause)) from cause
        finally:
            zf.close()

        if dropped and self.settings.strict_entries:
            raise ArchiveRejected(dropped)

        log.info(f"Extracted {len(pending)} files to staging directory")
        return list(pending)
