"""Extraction orchestration: stage → extract → validate → move (→ roll back).

Neither extractor needs rollback logic of its own. Everything they write goes
into a staging directory, and disposing that directory is the universal abort.
The move phase is the only place the real destination is touched, so it alone
keeps a ledger: every committed move is recorded and undone in order when a
later move fails. Files that a move overwrites are parked inside the staging
directory first, so a rollback puts the destination back exactly as it was.
"""

from __future__ import annotations

import os
import secrets
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

import anyio
import anyio.to_thread

from archive_ingest.config import IngestSettings
from archive_ingest.errors import (
    ArchiveRejected,
    ExtractionError,
    ExtractionProcessFailed,
    PartialMoveFailure,
    ToolUnavailable,
)
from archive_ingest.extract.base import Extractor
from archive_ingest.extract.native import NativeExtractor
from archive_ingest.extract.staging import StagingArea
from archive_ingest.extract.stream import StreamExtractor
from archive_ingest.logging import get_logger
from archive_ingest.security.paths import is_within, resolve_within
from archive_ingest.types import (
    ExtractionRequest,
    ExtractionResult,
    ExtractionState,
    ValidatedEntry,
)

log = get_logger("archive_ingest.core")

StrategyChoice = Literal["auto", "native", "stream"]


@dataclass
class MovedEntry:
    entry: ValidatedEntry
    parked: Path | None = None
    created_dirs: list[Path] = field(default_factory=list)


def default_extractors(
    settings: IngestSettings, strategy: StrategyChoice = "auto"
) -> list[Extractor]:
    if strategy == "native":
        return [NativeExtractor(settings)]
    if strategy == "stream" or not settings.native_enabled:
        return [StreamExtractor(settings)]
    return [NativeExtractor(settings), StreamExtractor(settings)]


# ---------------------------------------------------------------------------
# Move phase helpers (run in worker threads)
# ---------------------------------------------------------------------------


def _missing_parents(path: Path, stop: Path) -> list[Path]:
    """Parent directories of *path* below *stop* that do not exist yet, outermost first."""
    missing: list[Path] = []
    parent = path.parent
    while parent != stop and not parent.exists():
        missing.append(parent)
        parent = parent.parent
    return list(reversed(missing))


def _prune_dirs(dirs: Sequence[Path]) -> bool:
    ok = True
    for d in reversed(dirs):
        try:
            d.rmdir()
        except FileNotFoundError:
            pass
        except OSError as exc:
            log.warning(f"Failed to remove directory {d} during rollback: {exc}")
            ok = False
    return ok


def _move_entry(entry: ValidatedEntry, destination_root: Path, park_dir: Path) -> MovedEntry:
    """Move one staged file into place, parking whatever it replaces."""
    dst = entry.destination_path
    moved = MovedEntry(entry=entry, created_dirs=_missing_parents(dst, destination_root))
    try:
        dst.parent.mkdir(parents=True, exist_ok=True)
        if dst.is_file() or dst.is_symlink():
            park_dir.mkdir(exist_ok=True)
            parked = park_dir / secrets.token_hex(8)
            os.replace(dst, parked)
            moved.parked = parked
        # Staging lives inside the destination, so this is a same-volume rename;
        # it fails on a directory target instead of moving into it
        os.replace(entry.staged_path, dst)
    except BaseException:
        if moved.parked is not None:
            os.replace(moved.parked, dst)
        _prune_dirs(moved.created_dirs)
        raise
    return moved


def _undo_move(moved: MovedEntry) -> bool:
    dst = moved.entry.destination_path
    ok = True
    try:
        dst.unlink(missing_ok=True)
        log.info(f"Rolled back moved file: {dst}")
    except OSError as exc:
        log.warning(f"Failed to roll back moved file {dst}: {exc}")
        return False
    if moved.parked is not None:
        try:
            os.replace(moved.parked, dst)
        except OSError as exc:
            log.warning(f"Failed to restore overwritten file {dst}: {exc}")
            ok = False
    return _prune_dirs(moved.created_dirs) and ok


# ---------------------------------------------------------------------------
# Coordinator
# ---------------------------------------------------------------------------


class ExtractionCoordinator:
    """Runs extraction attempts; one instance may serve concurrent requests."""

    def __init__(
        self,
        settings: IngestSettings | None = None,
        extractors: Sequence[Extractor] | None = None,
        strategy: StrategyChoice = "auto",
    ) -> None:
        self.settings = settings or IngestSettings()
        self.extractors: list[Extractor] = (
            list(extractors)
            if extractors is not None
            else default_extractors(self.settings, strategy)
        )
        if not self.extractors:
            raise ValueError("At least one extractor is required")

    def _enter(self, request: ExtractionRequest, state: ExtractionState) -> None:
        log.debug(
            f"Extraction of {request.archive.name} -> {state.value}",
            extra={"state": state.value, "archive": str(request.archive)},
        )

    async def _run_extractors(
        self, request: ExtractionRequest, staging: Path
    ) -> tuple[Extractor, list[str]]:
        for idx, extractor in enumerate(self.extractors):
            self._enter(
                request,
                ExtractionState.NATIVE_ATTEMPTED
                if extractor.name == "native"
                else ExtractionState.STREAM_ATTEMPTED,
            )
            try:
                return extractor, await extractor.extract(request.archive, staging)
            except ToolUnavailable as exc:
                if idx == len(self.extractors) - 1:
                    raise ExtractionProcessFailed(
                        "No extraction strategy available", output=str(exc)
                    ) from exc
                log.info(f"{exc}; falling back to {self.extractors[idx + 1].name} extractor")
        raise AssertionError("unreachable")

    def _validate(
        self, staged: Sequence[str], staging: Path, destination: Path
    ) -> tuple[list[ValidatedEntry], list[str]]:
        validated: list[ValidatedEntry] = []
        rejected: list[str] = []
        for rel in staged:
            src = resolve_within(staging, rel)
            if src is None:
                log.warning(f"Skipping extraction: source path traversal detected in {rel}")
                rejected.append(rel)
                continue
            dst = resolve_within(destination, rel)
            if dst is None or is_within(staging, dst):
                log.warning(f"Skipping extraction: destination path traversal detected in {rel}")
                rejected.append(rel)
                continue
            if src.is_symlink():
                log.warning(f"Skipping extraction: symbolic link in archive at {rel}")
                rejected.append(rel)
                continue
            validated.append(
                ValidatedEntry(relative_path=rel, staged_path=src, destination_path=dst)
            )
        return validated, rejected

    async def _rollback(self, ledger: list[MovedEntry]) -> bool:
        ok = True
        for moved in ledger:
            if not await anyio.to_thread.run_sync(_undo_move, moved):
                ok = False
        return ok

    async def extract(self, request: ExtractionRequest) -> ExtractionResult:
        destination = Path(os.path.abspath(request.destination_root))
        self._enter(request, ExtractionState.IDLE)
        await anyio.Path(destination).mkdir(parents=True, exist_ok=True)

        staging = await StagingArea.create(destination, owner=request)
        self._enter(request, ExtractionState.STAGED)
        try:
            extractor, staged = await self._run_extractors(request, staging.path)

            validated, rejected = self._validate(staged, staging.path, destination)
            self._enter(request, ExtractionState.VALIDATED)
            if rejected and self.settings.strict_entries:
                raise ArchiveRejected(rejected)

            self._enter(request, ExtractionState.MOVING)
            park_dir = staging.path / f".parked-{secrets.token_hex(4)}"
            ledger: list[MovedEntry] = []
            for entry in validated:
                try:
                    moved = await anyio.to_thread.run_sync(
                        _move_entry, entry, destination, park_dir
                    )
                except OSError as exc:
                    self._enter(request, ExtractionState.ROLLING_BACK)
                    log.error(f"Move failed for {entry.relative_path}; rolling back {len(ledger)} files")
                    complete = await self._rollback(ledger)
                    raise PartialMoveFailure(
                        f"Failed to move {entry.relative_path}: {exc}",
                        rollback_completed=complete,
                    ) from exc
                ledger.append(moved)
            self._enter(request, ExtractionState.DONE)
        except ExtractionError:
            raise
        except OSError as exc:
            raise ExtractionProcessFailed("Extraction failed", output=str(exc)) from exc
        finally:
            await staging.dispose()
            self._enter(request, ExtractionState.CLEANED)

        log.info(
            f"Extracted {len(validated)} files from {request.archive.name} "
            f"via {extractor.name} extractor"
        )
        return ExtractionResult(
            extracted_paths=[e.relative_path for e in validated],
            rejected_paths=rejected,
            strategy=extractor.name,
        )


async def extract_archive(
    archive: Path | str,
    destination: Path | str,
    *,
    settings: IngestSettings | None = None,
    strategy: StrategyChoice = "auto",
) -> ExtractionResult:
    request = ExtractionRequest(archive=Path(archive), destination_root=Path(destination))
    return await ExtractionCoordinator(settings, strategy=strategy).extract(request)
