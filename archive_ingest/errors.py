"""Error taxonomy for archive ingestion."""

from __future__ import annotations

from pathlib import Path


class IngestError(Exception):
    """Base class for every error raised by archive_ingest."""

    @property
    def reason(self) -> str:
        return str(self)


class ToolUnavailable(IngestError):
    """The native extraction utility is not installed on this host."""

    def __init__(self, command: str) -> None:
        super().__init__(f"Extraction tool not available: {command}")
        self.command = command


class ExtractionError(IngestError):
    """Terminal failure of one extraction attempt."""


class ExtractionProcessFailed(ExtractionError):
    """The native tool exited non-zero, or the stream decoder hit bad data."""

    def __init__(self, message: str, *, returncode: int | None = None, output: str = "") -> None:
        detail = f"{message}: {output.strip()}" if output.strip() else message
        super().__init__(detail)
        self.returncode = returncode
        self.output = output


class PartialMoveFailure(ExtractionError):
    def __init__(self, message: str, *, rollback_completed: bool) -> None:
        super().__init__(message)
        self.rollback_completed = rollback_completed


class ArchiveRejected(ExtractionError):
    """Strict mode: the archive carried at least one entry escaping its root."""

    def __init__(self, rejected: list[str]) -> None:
        super().__init__(f"Archive rejected, unsafe entries: {', '.join(rejected)}")
        self.rejected = rejected


class PathTraversalRejected(IngestError):
    def __init__(self, root: Path | str, candidate: str) -> None:
        super().__init__(f"Access denied: {candidate!r} is outside {str(root)!r}")
        self.root = Path(root)
        self.candidate = candidate


class ServerNotFound(IngestError):
    def __init__(self, server_id: str) -> None:
        super().__init__(f"Server not found: {server_id}")
        self.server_id = server_id


class ExtractionFailed(IngestError):
    """Single caller-facing error for a failed upload-with-extraction."""
