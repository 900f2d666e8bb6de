"""Upload entry point: write the file, optionally extract it in place.

Behavior:
- The target path is checked against the server's sandbox root first; a path
  escaping it rejects the whole upload.
- Archives (by extension) are extracted into the directory they were written
  to, then the archive itself is deleted. On failure the archive is deleted
  as well, so a retry starts from a clean directory.
- Extractions into the same directory run one at a time.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from pathlib import Path

import anyio

from archive_ingest.config import IngestSettings
from archive_ingest.core import ExtractionCoordinator
from archive_ingest.errors import ExtractionFailed, PathTraversalRejected
from archive_ingest.ingest.roots import ServerRootResolver
from archive_ingest.logging import get_logger
from archive_ingest.security.paths import require_within
from archive_ingest.types import ExtractionRequest, UploadResult

log = get_logger("archive_ingest.upload")


@dataclass
class _LockSlot:
    lock: anyio.Lock = field(default_factory=anyio.Lock)
    users: int = 0


class IngestionService:
    def __init__(
        self,
        roots: ServerRootResolver,
        settings: IngestSettings | None = None,
        coordinator: ExtractionCoordinator | None = None,
    ) -> None:
        self.roots = roots
        self.settings = settings or IngestSettings()
        self.coordinator = coordinator or ExtractionCoordinator(self.settings)
        self._locks: dict[Path, _LockSlot] = {}

    @asynccontextmanager
    async def _locked(self, destination: Path) -> AsyncIterator[None]:
        # A slot lives only while someone holds or waits on it
        slot = self._locks.get(destination)
        if slot is None:
            slot = self._locks[destination] = _LockSlot()
        slot.users += 1
        try:
            async with slot.lock:
                yield
        finally:
            slot.users -= 1
            if slot.users == 0:
                del self._locks[destination]

    def is_archive(self, name: str) -> bool:
        return name.lower().endswith(self.settings.archive_extension.lower())

    async def _remove_archive(self, archive: Path) -> None:
        try:
            await anyio.Path(archive).unlink(missing_ok=True)
        except OSError as exc:
            log.warning(f"Failed to remove archive {archive}: {exc}")

    async def upload(
        self,
        server_id: str,
        target_path: str,
        data: bytes,
        auto_extract: bool = True,
    ) -> UploadResult:
        root = await self.roots.root_for(server_id)
        absolute = require_within(root, target_path)
        if absolute == root:
            raise PathTraversalRejected(root, target_path)

        await anyio.Path(absolute.parent).mkdir(parents=True, exist_ok=True)
        await anyio.Path(absolute).write_bytes(data)
        log.info(f"File uploaded: {target_path} for server {server_id}")

        if not (auto_extract and self.is_archive(absolute.name)):
            return UploadResult(file_name=absolute.name, size=len(data))

        destination = absolute.parent
        request = ExtractionRequest(archive=absolute, destination_root=destination)
        async with self._locked(destination):
            try:
                result = await self.coordinator.extract(request)
            except Exception as exc:
                log.error(f"Failed to extract archive {target_path}: {exc}")
                await self._remove_archive(absolute)
                raise ExtractionFailed(f"Failed to extract archive: {exc}") from exc

            if absolute.name in result.extracted_paths:
                # The archive carried a file with its own name; that file replaced it.
                log.info(f"Archive {target_path} was overwritten by its own contents")
            else:
                await anyio.Path(absolute).unlink(missing_ok=True)

        log.info(f"Archive extracted and deleted: {target_path} for server {server_id}")
        return UploadResult(
            file_name=absolute.name,
            size=len(data),
            extracted_files=result.extracted_paths,
        )
