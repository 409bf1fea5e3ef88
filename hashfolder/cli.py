from __future__ import annotations

import asyncio
import logging
from pathlib import Path, PurePath

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from hashfolder.config import load_config
from hashfolder.errors import HashfolderError
from hashfolder.hashes import HASH_ALGORITHMS, normalize_algorithm, validate_algorithms
from hashfolder.models import EntryType
from hashfolder.state_db import open_index
from hashfolder.update import update_index


app = typer.Typer(help="Hash folders recursively and keep the hashes in a SQLite index.")
console = Console()
err_console = Console(stderr=True)


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


def index_path(path: str) -> str:
    """Normalize a user supplied path to the form used as index key."""
    return PurePath(path).as_posix()


async def _show_async(db_file: Path, path: str, algorithm: str | None) -> int:
    path = index_path(path)
    async with await open_index(db_file, readonly=True) as index:
        record = await index.get_file(path)
        if record is None:
            console.print(f"[red]Path not found in the index: {path}[/red]")
            return 1
        hashes = await index.get_file_hashes(path)
    if algorithm is not None:
        algorithm = normalize_algorithm(algorithm)
        hashes = [item for item in hashes if item.algorithm == algorithm]
        if not hashes:
            console.print(f"[red]No {algorithm} hash stored for {path}[/red]")
            return 1
    for item in hashes:
        console.print(f"{item.algorithm}\t{item.digest.hex()}", highlight=False, soft_wrap=True)
    return 0


@app.command()
def show(
    db_file: Path = typer.Argument(..., help="SQLite hashfolder database file."),
    path: str = typer.Argument(".", help="Path of the file or folder, relative to the indexed folder."),
    algorithm: str | None = typer.Option(None, "--algorithm", "-a", help="Only show this algorithm."),
) -> None:
    """Show the hash(es) of the given file in the database."""
    raise typer.Exit(code=_run(_show_async(db_file, path, algorithm)))


async def _find_checksum_async(db_file: Path, checksum: str, algorithm: str | None) -> int:
    try:
        digest = bytes.fromhex(checksum.strip())
    except ValueError as exc:
        raise ValueError(f"Invalid hexadecimal checksum: {checksum}") from exc
    async with await open_index(db_file, readonly=True) as index:
        if algorithm is not None:
            algorithm = await index.require_algorithm(normalize_algorithm(algorithm))
        records = await index.list_by_digest(digest, algorithm)

    if not records:
        console.print("The given checksum was not found in the database.")
        return 0

    table = Table()
    table.add_column("Type")
    table.add_column("Size", justify="right")
    table.add_column("Path")
    for record in records:
        table.add_row(record.type.value, str(record.size), record.path)
    console.print(table)
    return 0


@app.command("find-checksum")
def find_checksum(
    db_file: Path = typer.Argument(..., help="SQLite hashfolder database file."),
    checksum: str = typer.Argument(..., help="Hexadecimal checksum to look for."),
    algorithm: str | None = typer.Option(None, "--algorithm", "-a", help="Only match this algorithm."),
) -> None:
    """List all files with the given checksum."""
    raise typer.Exit(code=_run(_find_checksum_async(db_file, checksum, algorithm)))


async def _find_duplicates_async(db_file: Path, algorithm: str | None) -> int:
    async with await open_index(db_file, readonly=True) as index:
        if algorithm is not None:
            algorithm = normalize_algorithm(algorithm)
        algorithm = await index.require_algorithm(algorithm)
        groups = await index.list_duplicates(algorithm)

    if not groups:
        console.print("There is no duplicate file.")
        return 0

    duplicate_files = 0
    duplicate_size = 0
    table = Table(title=f"Duplicates ({algorithm})")
    table.add_column("Checksum")
    table.add_column("Type")
    table.add_column("Copies", justify="right")
    table.add_column("Size", justify="right")
    for group in groups:
        if group.type is EntryType.FILE:
            extra_files = group.count - 1
            duplicate_files += extra_files
            duplicate_size += extra_files * group.size
        table.add_row(group.digest.hex(), group.type.value, str(group.count), str(group.size))
    console.print(table)
    console.print(f"{duplicate_files} duplicate file(s), {duplicate_size} bytes")
    return 0


@app.command("find-duplicates")
def find_duplicates(
    db_file: Path = typer.Argument(..., help="SQLite hashfolder database file."),
    algorithm: str | None = typer.Option(
        None,
        "--algorithm",
        "-a",
        help="Algorithm to compare. Defaults to the first one available in the index.",
    ),
) -> None:
    """List duplicate files (having the same hash and size)."""
    raise typer.Exit(code=_run(_find_duplicates_async(db_file, algorithm)))


async def _update_async(
    db_file: Path,
    folder: Path,
    algorithms: tuple[str, ...],
    concurrency: int,
    recompute_all: bool,
    chunk_size: int,
) -> int:
    algorithms_list = validate_algorithms(algorithms)
    async with await open_index(db_file) as index:
        with console.status(f"Hashing [bold]{folder}[/bold] ..."):
            result = await update_index(
                index,
                folder,
                algorithms_list,
                concurrency=concurrency,
                recompute_all=recompute_all,
                chunk_size=chunk_size,
            )

    for algorithm in algorithms_list:
        console.print(f"{algorithm}\t{result.root.digests[algorithm].hex()}", highlight=False, soft_wrap=True)
    stats = result.stats
    err_console.print(
        f"Hashed: {stats.hashed} | Reused: {stats.reused} | Folders: {stats.folders} "
        f"| Skipped: {stats.skipped} | Removed: {stats.reclaimed}"
    )
    return 0


@app.command()
def update(
    db_file: Path = typer.Argument(..., help="SQLite hashfolder database file to update or create."),
    folder: Path = typer.Argument(..., help="Folder to index."),
    algorithm: list[str] | None = typer.Option(
        None,
        "--algorithm",
        "-a",
        help="Hash algorithm(s) to compute (repeatable), e.g. SHA256 or GIT-SHA1.",
    ),
    concurrency: int | None = typer.Option(
        None,
        "--concurrency",
        "-c",
        min=1,
        help="Maximum number of files/folders to read in parallel. Defaults to the CPU count.",
    ),
    recompute_all: bool = typer.Option(
        False,
        "--recompute-all",
        help="Hash every file again instead of reusing hashes of unchanged files.",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log every hashed entry."),
) -> None:
    """Update (or create) the database from folder, and show the hash of the full folder content."""
    _setup_logging(verbose)
    try:
        config = load_config()
    except ValueError as exc:
        err_console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1)
    raise typer.Exit(
        code=_run(
            _update_async(
                db_file,
                folder,
                tuple(algorithm or config.algorithms),
                concurrency or config.concurrency,
                recompute_all,
                config.chunk_size,
            )
        )
    )


async def _algorithms_async(db_file: Path | None) -> int:
    if db_file is None:
        names = list(HASH_ALGORITHMS)
    else:
        async with await open_index(db_file, readonly=True) as index:
            names = await index.available_algorithms()
    for name in names:
        console.print(name, highlight=False, soft_wrap=True)
    return 0


@app.command()
def algorithms(
    db_file: Path | None = typer.Argument(
        None, help="List the algorithms stored in this database instead of all supported ones."
    ),
) -> None:
    """List hash algorithm names."""
    raise typer.Exit(code=_run(_algorithms_async(db_file)))


def _run(coro) -> int:
    try:
        return asyncio.run(coro)
    except KeyboardInterrupt:
        err_console.print("[yellow]Interrupted.[/yellow] The index may be partially updated.")
        return 130
    except (HashfolderError, OSError, ValueError) as exc:
        err_console.print(f"[red]{exc}[/red]")
        return 1
