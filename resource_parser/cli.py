"""
CLI Interface
=============
Command-line interface for the resource parser.

Usage:
    python -m resource_parser parse <pdf_path_or_url> [options]
    python -m resource_parser batch <directory> [options]
    python -m resource_parser validate <json_path>
    python -m resource_parser info <pdf_path_or_url>
"""

from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse

import click
import fitz  # PyMuPDF
import requests
from pydantic import ValidationError
from rich.console import Console
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
    TimeRemainingColumn,
)
from rich.table import Table

from . import __version__
from .diagram_extractor import DEFAULT_MAX_DIAGRAMS_PER_PAGE
from .engine import DEFAULT_MAX_PAGES, ParserConfig, ParserEngine
from .exceptions import ParserError, SourceError
from .models import ParsedResult, ValidationReport
from .validator import ResultValidator

console = Console()

LOG_LEVELS = click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"])


# ─── Source Loading ───────────────────────────────────────────────────────────


def read_resource_bytes(source: str, public_dir: str = "public", timeout: float = 60.0) -> bytes:
    """
    Read PDF bytes from a local path or an http(s) URL.

    A path starting with ``/`` that does not exist on disk is looked up
    under ``public_dir``, matching URLs produced by local diagram storage.

    Raises:
        SourceError: If the source is empty or cannot be read.
    """
    source = (source or "").strip()
    if not source:
        raise SourceError(source, "Resource source is empty")

    if urlparse(source).scheme in ("http", "https"):
        try:
            response = requests.get(source, timeout=timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            raise SourceError(source, f"Failed to fetch resource: {e}", cause=e) from e
        return response.content

    path = Path(source)
    if not path.exists() and source.startswith("/"):
        path = Path(public_dir) / source.lstrip("/")

    try:
        return path.read_bytes()
    except OSError as e:
        raise SourceError(source, f"Failed to read resource: {e}", cause=e) from e


def _default_resource_id(source: str) -> str:
    name = urlparse(source).path if "://" in source else source
    return Path(name).stem or "resource"


# ─── Commands ─────────────────────────────────────────────────────────────────


@click.group()
@click.version_option(version=__version__, prog_name="resource-parser")
def cli():
    """Resource Parser: PDF line, diagram and question extractor."""
    pass


@cli.command()
@click.argument("source")
@click.option(
    "--resource-id", "-r",
    default=None,
    help="Resource identifier (defaults to the file name)",
)
@click.option(
    "--grade", "-g",
    default="unassigned",
    help="Grade/category label used in storage keys",
)
@click.option(
    "--max-pages",
    default=DEFAULT_MAX_PAGES,
    type=int,
    help="Maximum number of pages to process",
)
@click.option(
    "--max-diagrams",
    default=DEFAULT_MAX_DIAGRAMS_PER_PAGE,
    type=int,
    help="Maximum number of diagrams kept per page",
)
@click.option(
    "--public-dir",
    default="public",
    help="Directory for locally stored diagrams",
)
@click.option(
    "--output", "-o",
    default=None,
    help="Write the result JSON to this file",
)
@click.option(
    "--log-level",
    default="INFO",
    type=LOG_LEVELS,
    help="Logging level",
)
@click.option(
    "--log-file",
    default=None,
    help="Path to log file",
)
@click.option(
    "--json-output",
    is_flag=True,
    default=False,
    help="Output only JSON result to stdout (for programmatic use)",
)
def parse(
    source: str,
    resource_id: Optional[str],
    grade: str,
    max_pages: int,
    max_diagrams: int,
    public_dir: str,
    output: Optional[str],
    log_level: str,
    log_file: Optional[str],
    json_output: bool,
):
    """Parse a single PDF (path or URL) into lines, diagrams and questions."""

    if json_output:
        # Suppress console output for JSON mode
        log_level = "ERROR"

    resource_id = resource_id or _default_resource_id(source)

    config = ParserConfig(
        max_pages=max_pages,
        max_diagrams_per_page=max_diagrams,
        public_dir=public_dir,
        log_level=log_level,
        log_file=log_file,
    )

    if not json_output:
        console.print()
        console.print(
            Panel.fit(
                f"[bold cyan]Resource Parser v{__version__}[/]\n"
                f"[dim]Parsing: {source}[/]",
                border_style="cyan",
            )
        )
        console.print()

    try:
        pdf_bytes = read_resource_bytes(source, public_dir=public_dir)
        engine = ParserEngine(config)

        if json_output:
            result = engine.parse(resource_id, grade, pdf_bytes)
            click.echo(result.to_json())
        else:
            with Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                BarColumn(),
                MofNCompleteColumn(),
                TimeElapsedColumn(),
                console=console,
            ) as progress:
                task = progress.add_task("Parsing pages...", total=None)

                def on_page(page_num: int, total: int):
                    progress.update(task, completed=page_num, total=total)

                result, report = engine.parse_with_report(
                    resource_id, grade, pdf_bytes, progress_callback=on_page
                )

            _display_results(result, report)

        if output:
            _save_json(result, Path(output))
            if not json_output:
                console.print(f"[dim]Saved: {output}[/]")

    except ParserError as e:
        console.print(f"[red]Error:[/] {e}")
        sys.exit(1)


@cli.command()
@click.argument("directory", type=click.Path(exists=True, file_okay=False))
@click.option("--output", "-o", default="output", help="Output directory")
@click.option("--grade", "-g", default="unassigned", help="Grade/category label")
@click.option("--public-dir", default="public", help="Directory for stored diagrams")
@click.option("--max-pages", default=DEFAULT_MAX_PAGES, type=int, help="Page limit")
@click.option(
    "--max-diagrams",
    default=DEFAULT_MAX_DIAGRAMS_PER_PAGE,
    type=int,
    help="Diagram limit per page",
)
@click.option("--log-level", default="WARNING", type=LOG_LEVELS, help="Logging level")
def batch(
    directory: str,
    output: str,
    grade: str,
    public_dir: str,
    max_pages: int,
    max_diagrams: int,
    log_level: str,
):
    """Batch parse all PDFs in a directory (resource id = file name)."""

    pdf_files = sorted(Path(directory).glob("*.pdf"))

    if not pdf_files:
        console.print(f"[yellow]No PDF files found in: {directory}[/]")
        return

    console.print()
    console.print(
        Panel.fit(
            f"[bold cyan]Batch Resource Parser[/]\n"
            f"[dim]Found {len(pdf_files)} PDFs in: {directory}[/]",
            border_style="cyan",
        )
    )
    console.print()

    output_dir = Path(output)
    output_dir.mkdir(parents=True, exist_ok=True)

    engine = ParserEngine(ParserConfig(
        max_pages=max_pages,
        max_diagrams_per_page=max_diagrams,
        public_dir=public_dir,
        log_level=log_level,
    ))

    results = []
    errors = []

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        TimeRemainingColumn(),
        console=console,
    ) as progress:
        task = progress.add_task("Processing PDFs...", total=len(pdf_files))

        for pdf_file in pdf_files:
            progress.update(task, description=f"Parsing: {pdf_file.name}")

            try:
                result = engine.parse(pdf_file.stem, grade, pdf_file.read_bytes())
                _save_json(result, output_dir / f"{pdf_file.stem}_parsed.json")
                results.append((pdf_file.name, result))
            except (ParserError, OSError) as e:
                errors.append((pdf_file.name, str(e)))

            progress.advance(task)

    _display_batch_summary(results, errors)


@cli.command()
@click.argument("json_path", type=click.Path(exists=True, dir_okay=False))
def validate(json_path: str):
    """Validate a previously generated parse result JSON."""

    try:
        result = ParsedResult.model_validate_json(
            Path(json_path).read_text(encoding="utf-8")
        )
    except ValidationError as e:
        console.print(f"[red]Invalid parse result:[/] {e}")
        sys.exit(1)

    console.print()
    console.print(
        Panel.fit(
            f"[bold cyan]Validation Report[/]\n"
            f"[dim]File: {json_path}[/]",
            border_style="cyan",
        )
    )

    report = ResultValidator().validate(result)
    _display_validation_table(report)

    if not report.is_valid:
        sys.exit(1)


@cli.command()
@click.argument("source")
@click.option("--public-dir", default="public", help="Base directory for /-rooted paths")
def info(source: str, public_dir: str):
    """Display PDF file information."""

    try:
        pdf_bytes = read_resource_bytes(source, public_dir=public_dir)
        doc = fitz.open(stream=pdf_bytes, filetype="pdf")
    except SourceError as e:
        console.print(f"[red]Error:[/] {e}")
        sys.exit(1)
    except (RuntimeError, ValueError) as e:
        console.print(f"[red]Error:[/] Not a readable PDF: {e}")
        sys.exit(1)

    with doc:
        console.print()
        table = Table(title="PDF Information", border_style="cyan")
        table.add_column("Property", style="bold")
        table.add_column("Value")

        table.add_row("Source", os.path.basename(source) or source)
        table.add_row("Pages", str(doc.page_count))
        table.add_row("File Size", f"{len(pdf_bytes) / 1024 / 1024:.2f} MB")

        metadata = doc.metadata or {}
        for key in ["title", "author", "subject", "creator", "producer"]:
            val = metadata.get(key, "")
            if val:
                table.add_row(key.title(), val)

        total_images = 0
        sizes = set()
        for page in doc:
            total_images += len(page.get_images(full=True))
            sizes.add(f"{page.rect.width:.0f} x {page.rect.height:.0f}")

        table.add_row("Page Sizes", ", ".join(sorted(sizes)) or "-")
        table.add_row("Total Images", str(total_images))

    console.print(table)
    console.print()


# ─── Display Helpers ──────────────────────────────────────────────────────────


def _save_json(result: ParsedResult, filepath: Path):
    """Write a ParsedResult as camelCase JSON."""
    filepath.parent.mkdir(parents=True, exist_ok=True)
    filepath.write_text(result.to_json(), encoding="utf-8")


def _display_results(result: ParsedResult, report: ValidationReport):
    """Display parse results in formatted tables."""
    console.print()

    table = Table(title="Pages", border_style="cyan")
    table.add_column("Page", justify="right", style="bold")
    table.add_column("Size")
    table.add_column("Lines", justify="right")
    table.add_column("Diagrams", justify="right")
    table.add_column("Questions", justify="right")

    for page in result.pages:
        table.add_row(
            str(page.page_number),
            f"{page.width:.0f} x {page.height:.0f}",
            str(len(page.lines)),
            str(len(page.diagrams)),
            str(report.questions_per_page.get(page.page_number, 0)),
        )
    console.print(table)
    console.print()

    if result.questions:
        q_table = Table(title="Questions", border_style="green")
        q_table.add_column("#", justify="right")
        q_table.add_column("Label", style="bold")
        q_table.add_column("Page", justify="right")
        q_table.add_column("Lines", justify="right")
        q_table.add_column("Text")

        for q in result.questions:
            first_line = q.text.split("\n", 1)[0]
            q_table.add_row(
                str(q.index),
                q.label,
                str(q.page_number),
                f"{q.start_line}-{q.end_line}",
                first_line[:60],
            )
        console.print(q_table)
        console.print()

    _display_validation_table(report)

    console.print(
        f"[dim]Resource {result.resource_id} | "
        f"Version {result.version} | "
        f"Extracted: {result.extracted_at}[/]"
    )
    console.print()


def _display_validation_table(report: ValidationReport):
    """Display validation report as a rich table."""
    table = Table(title="Validation Report", border_style="green")
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")
    table.add_column("Status", justify="center")

    table.add_row(
        "Pages",
        str(report.total_pages),
        "[green]✓[/]" if report.total_pages > 0 else "[red]✗[/]",
    )
    table.add_row("Lines", str(report.total_lines), "")
    table.add_row("Diagrams", str(report.total_diagrams), "")
    table.add_row(
        "Diagrams Without Line",
        str(report.diagrams_without_line),
        "[green]✓[/]" if report.diagrams_without_line == 0 else "[yellow]⚠[/]",
    )
    table.add_row(
        "Questions",
        str(report.total_questions),
        "[green]✓[/]" if report.total_questions > 0 else "[yellow]⚠[/]",
    )
    table.add_row(
        "Issues",
        str(len(report.issues)),
        "[green]✓[/]" if report.is_valid else "[red]✗[/]",
    )

    console.print(table)
    console.print()

    for issue in report.issues:
        console.print(f"  [red]•[/] {issue}")
    if report.issues:
        console.print()


def _display_batch_summary(results, errors):
    """Display batch processing summary."""
    console.print()

    table = Table(title="Batch Processing Summary", border_style="cyan")
    table.add_column("PDF", style="bold")
    table.add_column("Pages", justify="right")
    table.add_column("Diagrams", justify="right")
    table.add_column("Questions", justify="right")
    table.add_column("Status", justify="center")

    total_questions = 0

    for name, result in results:
        diagram_count = sum(len(p.diagrams) for p in result.pages)
        total_questions += len(result.questions)
        table.add_row(
            name,
            str(len(result.pages)),
            str(diagram_count),
            str(len(result.questions)),
            "[green]✓[/]",
        )

    for name, error in errors:
        table.add_row(name, "-", "-", "-", "[red]✗ FAILED[/]")

    console.print(table)
    console.print()
    for name, error in errors:
        console.print(f"  [red]{name}:[/] {error}")
    console.print(
        f"[bold]Total:[/] {total_questions} questions from "
        f"{len(results)} PDFs, {len(errors)} failures"
    )
    console.print()


# ─── Entry point (for python -m resource_parser.cli) ─────────────────────────


if __name__ == "__main__":
    cli()
