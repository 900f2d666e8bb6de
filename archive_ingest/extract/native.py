"""Extraction through the host's own archive utility.

POSIX hosts use Info-ZIP ``unzip``; Windows uses PowerShell's
``Expand-Archive``. The tool's own output is not trusted to describe what it
wrote: after a clean exit the staging directory is walked instead.

Info-ZIP does not refuse unsafe member names, it rewrites them (``../../x``
becomes ``x``). Member names are therefore read from the central directory
before the tool runs, and whatever the tool made of an unsafe member is
removed from staging afterwards.
"""

from __future__ import annotations

import os
import shutil
import sys
import zipfile
from pathlib import Path

import anyio
import anyio.to_thread

from archive_ingest.config import IngestSettings
from archive_ingest.errors import ArchiveRejected, ExtractionProcessFailed, ToolUnavailable
from archive_ingest.extract.base import list_staged_files
from archive_ingest.logging import get_logger
from archive_ingest.security.paths import resolve_within
from archive_ingest.types import Strategy

log = get_logger("archive_ingest.native")

# Info-ZIP: "warnings, but processing completed"
_UNZIP_WARNING = 1


def escape_powershell_literal(value: str) -> str:
    """Escape *value* for use inside a single-quoted PowerShell string."""
    return value.replace("'", "''")


def build_command(
    archive: Path,
    staging: Path,
    *,
    platform: str | None = None,
    settings: IngestSettings | None = None,
) -> list[str]:
    settings = settings or IngestSettings()
    platform = platform or sys.platform
    if platform == "win32":
        script = (
            f"Expand-Archive -LiteralPath '{escape_powershell_literal(str(archive))}' "
            f"-DestinationPath '{escape_powershell_literal(str(staging))}' -Force"
        )
        return [settings.powershell_command, "-NoProfile", "-NonInteractive", "-Command", script]
    # -o: overwrite without prompting, -q: keep the captured output small
    return [settings.unzip_command, "-o", "-q", str(archive), "-d", str(staging)]


def _decode(data: bytes | None) -> str:
    return (data or b"").decode("utf-8", errors="replace")


def scan_members(archive: Path, staging: Path) -> tuple[dict[str, zipfile.ZipInfo], list[str]]:
    """Split archive members into safe staging paths and unsafe raw names.

    Safe members map their ``/``-separated staging path to the last member
    carrying that name, which is the copy ``unzip -o`` leaves on disk.
    """
    root = os.path.normpath(os.path.abspath(staging))
    safe: dict[str, zipfile.ZipInfo] = {}
    unsafe: list[str] = []
    with zipfile.ZipFile(archive) as zf:
        for info in zf.infolist():
            if info.is_dir():
                continue
            target = resolve_within(root, info.filename)
            if target is None or str(target) == root:
                unsafe.append(info.filename)
                continue
            safe[Path(os.path.relpath(target, root)).as_posix()] = info
    return safe, unsafe


def _rewritten_name(name: str) -> str:
    # Where Info-ZIP puts an unsafe member: "/", "." and ".." parts dropped
    return "/".join(p for p in name.replace("\\", "/").split("/") if p not in ("", ".", ".."))


class NativeExtractor:
    name: Strategy = "native"

    def __init__(self, settings: IngestSettings | None = None, platform: str | None = None) -> None:
        self.settings = settings or IngestSettings()
        self.platform = platform or sys.platform

    def _reconcile(
        self,
        archive: Path,
        staging: Path,
        staged: list[str],
        safe: dict[str, zipfile.ZipInfo],
        unsafe: list[str],
    ) -> list[str]:
        """Drop files that belong to no safe member and undo clobbered ones."""
        kept: list[str] = []
        for rel in staged:
            if rel in safe:
                kept.append(rel)
                continue
            log.warning(f"Removing file written for an unsafe archive entry: {rel}")
            (staging / rel).unlink()

        clobbered = sorted({_rewritten_name(n) for n in unsafe} & set(kept))
        if clobbered:
            with zipfile.ZipFile(archive) as zf:
                for rel in clobbered:
                    target = staging / rel
                    target.unlink()
                    with zf.open(safe[rel]) as src, open(target, "wb") as out:
                        shutil.copyfileobj(src, out, self.settings.chunk_size)
        return kept

    async def extract(self, archive: Path, staging: Path) -> list[str]:
        cmd = build_command(archive, staging, platform=self.platform, settings=self.settings)
        if shutil.which(cmd[0]) is None:
            raise ToolUnavailable(cmd[0])

        try:
            safe, unsafe = await anyio.to_thread.run_sync(scan_members, archive, staging)
        except (zipfile.BadZipFile, OSError) as exc:
            raise ExtractionProcessFailed(f"Cannot open archive {archive}", output=str(exc)) from exc
        for name in unsafe:
            log.warning(f"Skipping dangerous path in archive: {name}")
        if unsafe and self.settings.strict_entries:
            raise ArchiveRejected(unsafe)

        log.info(f"Running extraction: {' '.join(cmd)}")
        try:
            proc = await anyio.run_process(cmd, input=b"", check=False)
        except FileNotFoundError as exc:
            # Removed between the lookup and the spawn
            raise ToolUnavailable(cmd[0]) from exc

        # Stripping unsafe names is reported as a warning by some unzip builds
        tolerated = {0, _UNZIP_WARNING} if unsafe and self.platform != "win32" else {0}
        if proc.returncode not in tolerated:
            output = _decode(proc.stderr) or _decode(proc.stdout)
            raise ExtractionProcessFailed(
                f"Extraction failed with code {proc.returncode}",
                returncode=proc.returncode,
                output=output,
            )

        staged = await list_staged_files(staging)
        try:
            files = await anyio.to_thread.run_sync(
                self._reconcile, archive, staging, staged, safe, unsafe
            )
        except (zipfile.BadZipFile, OSError) as exc:
            raise ExtractionProcessFailed(
                f"Failed to clean up staged files from {archive}", output=str(exc)
            ) from exc
        log.info(f"Extracted {len(files)} files to staging directory")
        return files
