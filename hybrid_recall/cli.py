"""Command line interface for a local hybrid-recall store."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from pathlib import Path
import re
from typing import TypeVar

from rich.console import Console
from rich.table import Table
import typer

from hybrid_recall.config import Config, set_config
from hybrid_recall.exceptions import HybridRecallError
from hybrid_recall.logging import configure_logging
from hybrid_recall.memory import MemoryEngine, create_memory_engine

T = TypeVar("T")

MARKDOWN_SUFFIXES = {".md", ".markdown"}

app = typer.Typer(help="hybrid-recall - index and search markdown memory files")
console = Console()


@app.callback()
def main(
    config: str = typer.Option("", "-c", "--config", help="Path to config file"),
    store: str = typer.Option("", "-s", "--store", help="Override key-value store path"),
    verbose: bool = typer.Option(False, "-v", "--verbose", help="Debug logging"),
) -> None:
    """Load configuration and logging before any command runs."""
    try:
        cfg = Config.from_yaml(config) if config else Config.load()
    except HybridRecallError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=2) from exc
    if store:
        cfg.storage.path = store
    set_config(cfg)
    configure_logging("DEBUG" if verbose else None)


def _run(action: Callable[[MemoryEngine], Awaitable[T]]) -> T:
    async def runner() -> T:
        engine = create_memory_engine()
        try:
            await engine.start()
            return await action(engine)
        finally:
            await engine.close()

    try:
        return asyncio.run(runner())
    except HybridRecallError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1) from exc


def collect_markdown_files(paths: list[Path]) -> list[tuple[str, str]]:
    """Expand files/directories into ``(posix path, content)`` pairs."""
    files: list[tuple[str, str]] = []
    for raw in paths:
        path = raw.expanduser()
        if path.is_dir():
            candidates = sorted(
                p for p in path.rglob("*") if p.is_file() and p.suffix.lower() in MARKDOWN_SUFFIXES
            )
        elif path.is_file():
            candidates = [path]
        else:
            console.print(f"[yellow]Skipping missing path:[/yellow] {path}")
            continue
        for candidate in candidates:
            files.append((candidate.as_posix(), candidate.read_text(encoding="utf-8", errors="ignore")))
    return files


@app.command()
def index(paths: list[Path] = typer.Argument(..., help="Markdown files or directories")) -> None:
    """Index markdown files, persisting once at the end."""
    files = collect_markdown_files(paths)

    async def action(engine: MemoryEngine) -> int:
        return await engine.files.index_files(files)

    changed = _run(action)
    console.print(f"Indexed {changed} changed file(s) of {len(files)} scanned.")


@app.command()
def search(
    query: str = typer.Argument(..., help="Search query"),
    limit: int = typer.Option(5, "-n", "--limit", help="Maximum results"),
    path: str = typer.Option("", "-p", "--path", help="Restrict to one indexed path"),
) -> None:
    """Keyword search over indexed memory files."""

    async def action(engine: MemoryEngine):
        return engine.files.search_keyword(query, limit, source_path=path or None)

    results = _run(action)
    if not results:
        console.print("No matches.")
        return
    table = Table(title=f"Results for {query!r}")
    table.add_column("Score", justify="right")
    table.add_column("Location")
    table.add_column("Snippet")
    for item in results:
        snippet = re.sub(r"\s+", " ", item.text).strip()
        table.add_row(
            f"{item.score:.3f}",
            f"{item.path}:{item.start_line}-{item.end_line}",
            snippet[:120] + ("..." if len(snippet) > 120 else ""),
        )
    console.print(table)


@app.command()
def files() -> None:
    """List indexed file paths."""

    async def action(engine: MemoryEngine) -> list[str]:
        return engine.files.list_files()

    for path in _run(action):
        console.print(path)


@app.command()
def remove(path: str = typer.Argument(..., help="Indexed path to drop")) -> None:
    """Remove one file from the index."""

    async def action(engine: MemoryEngine) -> bool:
        if not engine.files.has_file(path):
            return False
        await engine.forget_file(path)
        return True

    if _run(action):
        console.print(f"Removed {path}")
    else:
        console.print(f"[yellow]Not indexed:[/yellow] {path}")
        raise typer.Exit(code=1)


@app.command()
def stats() -> None:
    """Show store statistics."""

    async def action(engine: MemoryEngine) -> dict:
        return engine.files.stats()

    table = Table(title="Memory store")
    table.add_column("Key")
    table.add_column("Value", justify="right")
    for key, value in _run(action).items():
        table.add_row(key, str(value))
    console.print(table)


if __name__ == "__main__":
    app()
