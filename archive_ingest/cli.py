"""archive-ingest CLI: extract archives and run uploads from the shell.

Commands:
- extract ARCHIVE DEST   (--strategy auto|native|stream, --strict)
- upload SOURCE          (--server, --to, --servers, --no-extract)
- sweep DIR              (remove stale .temp-extract-* directories)
"""

from __future__ import annotations

import functools
from pathlib import Path
from typing import NoReturn

import anyio
import httpx
import typer
from rich import print as rprint
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from archive_ingest.config import IngestSettings
from archive_ingest.core import ExtractionCoordinator
from archive_ingest.errors import IngestError
from archive_ingest.extract.staging import sweep_stale
from archive_ingest.ingest.roots import StaticServerRoots
from archive_ingest.ingest.sources import read_source
from archive_ingest.ingest.upload import IngestionService
from archive_ingest.logging import set_level
from archive_ingest.types import ExtractionRequest

app = typer.Typer(add_completion=False, help="Safely ingest uploaded archives")
console = Console()


def _settings(strict: bool = False) -> IngestSettings:
    settings = IngestSettings.from_env()
    if strict:
        settings = settings.model_copy(update={"strict_entries": True})
    set_level(settings.log_level)
    return settings


def _fail(exc: Exception) -> NoReturn:
    rprint(f"[red]Error:[/red] {escape(str(exc))}")
    raise typer.Exit(code=1)


def _files_table(title: str, files: list[str]) -> Table:
    table = Table(title=title)
    table.add_column("File", style="cyan")
    for f in files:
        table.add_row(f)
    return table


@app.command()
def extract(
    archive: str = typer.Argument(..., help="Path to the archive"),
    dest: str = typer.Argument(..., help="Directory to extract into"),
    strategy: str = typer.Option("auto", help='"auto" | "native" | "stream"'),
    strict: bool = typer.Option(False, "--strict", help="Reject archives with unsafe entries"),
) -> None:
    if strategy not in {"auto", "native", "stream"}:
        raise typer.BadParameter(f"unknown strategy {strategy!r}", param_hint="--strategy")
    coordinator = ExtractionCoordinator(_settings(strict), strategy=strategy)
    request = ExtractionRequest(archive=Path(archive), destination_root=Path(dest))
    try:
        result = anyio.run(coordinator.extract, request)
    except IngestError as exc:
        _fail(exc)

    console.print(_files_table(f"Extracted ({result.strategy})", result.extracted_paths))
    if result.rejected_paths:
        rprint(f"[yellow]Skipped unsafe entries:[/yellow] {', '.join(result.rejected_paths)}")


@app.command()
def upload(
    source: str = typer.Argument(..., help="Local file or http(s) URL"),
    server: str = typer.Option(..., "--server", help="Server id"),
    servers: str = typer.Option(
        ..., "--servers", help='JSON file mapping server ids to root directories'
    ),
    to: str | None = typer.Option(
        None, "--to", help="Target path inside the server root (default: source file name)"
    ),
    no_extract: bool = typer.Option(False, "--no-extract", help="Keep archives as-is"),
) -> None:
    try:
        roots = StaticServerRoots.from_json(Path(servers))
        name, data = read_source(source)
    except (OSError, ValueError, httpx.HTTPError) as exc:
        _fail(exc)

    service = IngestionService(roots, _settings())
    call = functools.partial(service.upload, server, to or name, data, auto_extract=not no_extract)
    try:
        res = anyio.run(call)
    except IngestError as exc:
        _fail(exc)

    rprint(f"[green]Uploaded:[/green] {res.file_name} ({res.size} bytes)")
    if res.extracted_files:
        console.print(_files_table("Extracted", res.extracted_files))


@app.command()
def sweep(path: str = typer.Argument(".", help="Directory to clean")) -> None:
    removed = anyio.run(sweep_stale, Path(path))
    if not removed:
        rprint("[green]No stale staging directories.[/green]")
    for p in removed:
        rprint(f"[yellow]Removed:[/yellow] {p}")


if __name__ == "__main__":
    app()
